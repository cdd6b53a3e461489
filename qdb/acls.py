"""
qdb.acls
~~~~~~~~
Authorization gate.  ``authorize`` is a pure decision over
(session, required roles, registry); turning a DENY into a redirect is the
route layer's job.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable, Optional, Sequence

from .permissions import DEFAULT_REGISTRY, LOGGED_IN, PermissionRegistry, RoleLike, UnknownRole

if TYPE_CHECKING:
    from .auth import Session

log = logging.getLogger(__name__)


class DenyReason(enum.Enum):
    NOT_LOGGED_IN = "not_logged_in"
    INSUFFICIENT_PERMISSIONS = "insufficient_permissions"


@dataclass(frozen=True, slots=True)
class Decision:
    allowed: bool
    reason: Optional[DenyReason] = None

    @classmethod
    def deny(cls, reason: DenyReason) -> "Decision":
        return cls(False, reason)

    def __bool__(self) -> bool:
        return self.allowed


ALLOW = Decision(True)


class AuthorizationError(Exception):
    """A DENY on its way to the route layer.  Always answered with a redirect."""

    reason = DenyReason.INSUFFICIENT_PERMISSIONS

    @classmethod
    def for_decision(cls, decision: Decision) -> "AuthorizationError":
        if decision.reason is DenyReason.NOT_LOGGED_IN:
            return NotLoggedIn()
        return InsufficientPermissions()


class NotLoggedIn(AuthorizationError):
    reason = DenyReason.NOT_LOGGED_IN


class InsufficientPermissions(AuthorizationError):
    reason = DenyReason.INSUFFICIENT_PERMISSIONS


def authorize(
    session: "Session",
    required_roles: Sequence[RoleLike],
    registry: PermissionRegistry = DEFAULT_REGISTRY,
) -> Decision:
    # logged_in only asks for a username and skips every real-role check,
    # even when other roles are listed next to it.
    if LOGGED_IN in required_roles:
        return ALLOW if session.username else Decision.deny(DenyReason.NOT_LOGGED_IN)

    if not session.username:
        return Decision.deny(DenyReason.NOT_LOGGED_IN)

    allowed = len(required_roles) > 0
    for role in required_roles:
        try:
            bit = registry.bit_for(role)
        except UnknownRole:
            log.warning("denying request for unknown role %r", role)
            return Decision.deny(DenyReason.INSUFFICIENT_PERMISSIONS)
        allowed = allowed and (session.flags & bit) != 0

    return ALLOW if allowed else Decision.deny(DenyReason.INSUFFICIENT_PERMISSIONS)


class ACLChecker:
    """Binds a registry to the gate and validates route role lists up front."""

    def __init__(self, registry: PermissionRegistry = DEFAULT_REGISTRY):
        self.registry = registry

    def check_roles(self, roles: Iterable[RoleLike]) -> None:
        for role in roles:
            if role != LOGGED_IN:
                self.registry.resolve(role)

    def permit(self, session: "Session", roles: Sequence[RoleLike]) -> Decision:
        return authorize(session, roles, self.registry)

"""
qdb.auth
~~~~~~~~
Password hashing, the per-client ``Session`` record and the session
lifecycle: login, logout, registration, self-service password change and
deletion, and moderator flag changes.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass
from typing import List, Optional

from .logger import ModerationLog
from .permissions import DEFAULT_REGISTRY, PermissionRegistry, Role
from .store import PersistenceError, Store, User

log = logging.getLogger(__name__)

_PBKDF2_ITERATIONS = 240_000


def hash_password(plain: str, iterations: int = _PBKDF2_ITERATIONS) -> str:
    salt = secrets.token_bytes(16)
    digest = hashlib.pbkdf2_hmac("sha256", plain.encode(), salt, iterations)
    return f"pbkdf2_sha256${iterations}${salt.hex()}${digest.hex()}"


def verify_password(hashed: str, candidate: str) -> bool:
    try:
        scheme, iterations, salt, expected = hashed.split("$")
        if scheme != "pbkdf2_sha256":
            return False
        digest = hashlib.pbkdf2_hmac(
            "sha256", candidate.encode(), bytes.fromhex(salt), int(iterations)
        )
    except ValueError:
        return False
    return hmac.compare_digest(digest.hex(), expected)


class AuthenticationError(Exception):
    pass


class UserNotFound(AuthenticationError):
    pass


class InvalidCredentials(AuthenticationError):
    pass


class AlreadyLoggedIn(AuthenticationError):
    pass


class PasswordMismatch(AuthenticationError):
    pass


@dataclass(slots=True)
class Session:
    username: Optional[str] = None
    user_id: Optional[int] = None
    flags: int = 0

    @property
    def logged_in(self) -> bool:
        return self.username is not None

    def populate(self, username: str, user_id: int, flags: int) -> None:
        self.username, self.user_id, self.flags = username, user_id, flags

    def clear(self) -> None:
        self.username, self.user_id, self.flags = None, None, 0

    def roles(self, registry: PermissionRegistry = DEFAULT_REGISTRY) -> List[str]:
        return registry.roles_of(self.flags) if self.logged_in else []


class SessionManager:
    def __init__(
        self,
        store: Store,
        moderation_log: ModerationLog,
        registry: PermissionRegistry = DEFAULT_REGISTRY,
    ):
        self.store = store
        self.moderation_log = moderation_log
        self.registry = registry

    # ------------------------------------------------------------------ #
    # login / logout
    # ------------------------------------------------------------------ #

    def login(self, session: Session, name: str, password: str) -> Session:
        if session.logged_in:
            raise AlreadyLoggedIn(f"already logged in as {session.username}")

        user = self.store.find_user_by_name(name)
        if user is None:
            raise UserNotFound(name)
        if not verify_password(user.password, password):
            raise InvalidCredentials(name)

        # Snapshot: later changes to the stored flags don't reach this session.
        session.populate(user.name, user.id, int(self.registry.from_flags(user.flags)))
        log.info("user %s logged in", user.name)
        return session

    def logout(self, session: Session) -> None:
        session.clear()

    # ------------------------------------------------------------------ #
    # account self-service
    # ------------------------------------------------------------------ #

    def register(self, name: str, password: str) -> User:
        user = self.store.create_user(name, hash_password(password), flags=0)
        log.info("registered user %s (id=%s)", user.name, user.id)
        return user

    def current_user(self, session: Session) -> User:
        user = self.store.find_user_by_id(session.user_id) if session.logged_in else None
        if user is None:
            raise UserNotFound(session.username or "-")
        return user

    def change_password(
        self, session: Session, old: str, new: str, confirm: str
    ) -> User:
        user = self.current_user(session)
        if not verify_password(user.password, old):
            raise InvalidCredentials(user.name)
        if new != confirm:
            raise PasswordMismatch(user.name)

        user.password = hash_password(new)
        if not self.store.persist(user):
            raise PersistenceError(f"user {user.id} vanished while saving")
        return user

    def delete_self(self, session: Session) -> None:
        user = self.current_user(session)
        if not self.store.delete_user(user.id):
            raise PersistenceError(f"user {user.id} could not be deleted")
        session.clear()
        log.info("user %s deleted their account", user.name)

    # ------------------------------------------------------------------ #
    # moderation
    # ------------------------------------------------------------------ #

    def set_flags(self, target_user_id: int, new_flags: int, acting_session: Session) -> User:
        """Store *new_flags* on the target user as given.

        The caller has already authorized *acting_session* for set_flags.
        Bits outside the registry are kept in storage; sessions only ever
        see the known bits.
        """
        if new_flags < 0:
            raise ValueError(f"flags must be non-negative, got {new_flags}")

        user = self.store.find_user_by_id(target_user_id)
        if user is None:
            raise UserNotFound(str(target_user_id))

        user.flags = new_flags
        if not self.store.persist(user):
            raise PersistenceError(f"user {target_user_id} vanished while saving")

        self.moderation_log.record(
            acting_session.username,
            ":" + Role.SET_FLAGS.tag,
            f"{target_user_id} -> {user.flags}",
        )
        return user

"""
qdb.permissions
~~~~~~~~~~~~~~~
Fixed permission registry.  Every role owns one power-of-two bit; a user's
flags are the OR of the bits they hold:

    post_quotes     1
    edit_quotes     2
    delete_quotes   4
    list_users      8
    approve_quotes 16
    set_flags      32

The bitmask is only the storage / form representation.  In-process code
works with ``Role`` values (an ``IntFlag``, so a combination is a set).
"""

from __future__ import annotations

from enum import IntFlag
from types import MappingProxyType
from typing import List, Mapping, Union

# Pseudo-role: "any authenticated user", never stored as a bit.
LOGGED_IN = "logged_in"


class Role(IntFlag):
    POST_QUOTES = 1
    EDIT_QUOTES = 2
    DELETE_QUOTES = 4
    LIST_USERS = 8
    APPROVE_QUOTES = 16
    SET_FLAGS = 32

    @property
    def tag(self) -> str:
        """Lower-case role name as used in routes and the moderation log."""
        return self.name.lower()


RoleLike = Union[Role, str]


class ConfigurationError(Exception):
    pass


class UnknownRole(ConfigurationError):
    def __init__(self, role: object):
        self.role = role
        super().__init__(f"Unknown role: {role!r}")


_AUTH_FLAGS = {
    "post_quotes": Role.POST_QUOTES,
    "edit_quotes": Role.EDIT_QUOTES,
    "delete_quotes": Role.DELETE_QUOTES,
    "list_users": Role.LIST_USERS,
    "approve_quotes": Role.APPROVE_QUOTES,
    "set_flags": Role.SET_FLAGS,
}


class PermissionRegistry:
    def __init__(self, table: Mapping[str, int]):
        bits = {}
        seen = 0
        for name, bit in table.items():
            bit = int(bit)
            if bit <= 0 or bit & (bit - 1) or bit & seen:
                raise ConfigurationError(
                    f"role {name!r} needs a distinct power-of-two bit, got {bit}"
                )
            seen |= bit
            bits[name] = Role(bit)
        self._bits: Mapping[str, Role] = MappingProxyType(bits)
        self.all_bits = seen

    # ------------------------------------------------------------------ #
    # public
    # ------------------------------------------------------------------ #

    def __iter__(self):
        return iter(self._bits.values())

    def __len__(self) -> int:
        return len(self._bits)

    def resolve(self, role: RoleLike) -> Role:
        """Map *role* (a ``Role`` member or its lower-case name) to a ``Role``."""
        if isinstance(role, Role):
            if role.name is not None and role.tag in self._bits:
                return role
        elif isinstance(role, str) and role in self._bits:
            return self._bits[role]
        raise UnknownRole(role)

    def bit_for(self, role: RoleLike) -> int:
        return int(self.resolve(role))

    def from_flags(self, flags: int) -> Role:
        """Known roles contained in *flags*; bits outside the registry are dropped."""
        return Role(flags & self.all_bits)

    def roles_of(self, flags: int) -> List[str]:
        return [name for name, bit in self._bits.items() if flags & bit]


DEFAULT_REGISTRY = PermissionRegistry(_AUTH_FLAGS)

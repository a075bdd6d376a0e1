"""
User roles and their total order.

Weights are spaced so a higher-privilege role always observes everything a
lower-privilege role can.

Usage:
    from shared.security.roles import Role, role_dominates

    if role_dominates(principal.role, Role.STAFF):
        ...
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Final


class Role(str, Enum):
    """Roles issued by the authentication layer."""

    SERVER = "SERVER"
    ADMIN = "ADMIN"
    STAFF = "STAFF"
    USER = "USER"


ROLE_WEIGHTS: Final = MappingProxyType({
    Role.SERVER: 1000,
    Role.ADMIN: 100,
    Role.STAFF: 50,
    Role.USER: 10,
})


def parse_role(value: str | Role) -> Role:
    """
    Coerce a claim value into a Role.

    Raises:
        ValueError: If the value is not a known role.
    """
    if isinstance(value, Role):
        return value
    try:
        return Role(str(value).upper())
    except ValueError:
        raise ValueError(f"Unknown role: {value!r}") from None


def role_weight(role: str | Role) -> int:
    return ROLE_WEIGHTS[parse_role(role)]


def role_dominates(source: str | Role, target: str | Role) -> bool:
    """True if `source` has a weight greater than or equal to `target`."""
    return role_weight(source) >= role_weight(target)


@dataclass(frozen=True, slots=True)
class Principal:
    """Authenticated caller as supplied by the authentication layer."""

    principal_id: str
    role: Role
    name: str | None = None

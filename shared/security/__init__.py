"""
Security module: roles and token verification.
"""

from shared.security.roles import (
    Role,
    ROLE_WEIGHTS,
    Principal,
    parse_role,
    role_weight,
    role_dominates,
)
from shared.security.auth import (
    sign_jwt,
    verify_jwt,
    principal_from_token,
    current_principal,
)

__all__ = [
    "Role",
    "ROLE_WEIGHTS",
    "Principal",
    "parse_role",
    "role_weight",
    "role_dominates",
    "sign_jwt",
    "verify_jwt",
    "principal_from_token",
    "current_principal",
]

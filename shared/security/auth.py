"""
Authentication helpers.

Tokens are issued by the platform's authentication layer; this module only
verifies them and turns the claims into a Principal. `sign_jwt` exists for
server-to-server callers (role SERVER), the CLI and tests.
"""

from __future__ import annotations

import time
import uuid
from typing import Any

import jwt
from fastapi import Header

from shared.config.logging import get_logger
from shared.config.settings import settings
from shared.security.roles import Principal, Role, parse_role
from shared.utils.exceptions import UnauthorizedError

logger = get_logger(__name__)

ACCESS_TOKEN_TTL_SECONDS = 15 * 60


def sign_jwt(
    principal_id: str,
    role: Role | str,
    ttl_seconds: int = ACCESS_TOKEN_TTL_SECONDS,
    **claims: Any,
) -> str:
    """
    Sign an access token for a principal.

    Args:
        principal_id: Subject (user id).
        role: Role claim.
        ttl_seconds: Token lifetime in seconds.

    Returns:
        Signed JWT token string.
    """
    now = int(time.time())
    data = {
        **claims,
        "sub": str(principal_id),
        "role": parse_role(role).value,
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
        "iat": now,
        "exp": now + ttl_seconds,
        "type": "access",
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(data, settings.jwt_secret, algorithm="HS256")


def verify_jwt(token: str) -> dict[str, Any]:
    """
    Verify and decode a JWT token.

    Returns:
        Decoded token claims.

    Raises:
        UnauthorizedError: If token is invalid, expired or lacks required claims.
    """
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=["HS256"],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
        )
    except jwt.ExpiredSignatureError:
        raise UnauthorizedError("Token has expired")
    except jwt.InvalidTokenError as e:
        # Log the actual error, return a generic message to the client
        logger.warning("JWT validation failed", error=str(e))
        raise UnauthorizedError("Invalid token")

    if not payload.get("sub"):
        raise UnauthorizedError("Invalid token: missing subject claim")

    if payload.get("type") not in ("access", None):
        raise UnauthorizedError("Invalid token: invalid type claim")

    return payload


def principal_from_token(token: str) -> Principal:
    """
    Verify a token and build the Principal it identifies.

    Raises:
        UnauthorizedError: If the token is invalid or carries an unknown role.
    """
    payload = verify_jwt(token)
    try:
        role = parse_role(payload.get("role", Role.USER))
    except ValueError:
        raise UnauthorizedError("Invalid token: unknown role claim")
    return Principal(
        principal_id=str(payload["sub"]),
        role=role,
        name=payload.get("name"),
    )


def current_principal(authorization: str | None = Header(default=None)) -> Principal:
    """
    FastAPI dependency resolving the bearer token of an HTTP request.

    Raises:
        UnauthorizedError: If the header is missing or malformed.
    """
    if not authorization or not authorization.lower().startswith("bearer "):
        raise UnauthorizedError("Missing bearer token")
    return principal_from_token(authorization.split(" ", 1)[1].strip())

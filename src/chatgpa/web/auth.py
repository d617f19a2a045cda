"""Bearer token handling.

The ``sub`` claim of the JWT is the user id. With a configured secret the
signature is verified (HS256 by default); without one the token is only
decoded, leaving verification to whoever issued it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import jwt
import structlog
from fastapi import Request

from chatgpa.config.app_config import SecurityConfig
from chatgpa.web.errors import ApiError

logger = structlog.get_logger(__name__)

BEARER_PREFIX = "Bearer "


@dataclass
class AuthUser:
    """Authenticated caller."""

    user_id: str
    token: str
    claims: dict[str, Any] = field(default_factory=dict)


def bearer_token(request: Request) -> str | None:
    """Token from ``Authorization: Bearer <token>``, or None."""
    header = request.headers.get("authorization", "")
    if not header.startswith(BEARER_PREFIX):
        return None
    token = header[len(BEARER_PREFIX):].strip()
    return token or None


def decode_token(token: str, security: SecurityConfig) -> AuthUser:
    """Decode a JWT and extract the user id.

    Raises:
        ApiError: 401 UNAUTHORIZED if the token is malformed, fails
            verification or has no ``sub``
    """
    try:
        if security.jwt_secret:
            claims = jwt.decode(
                token,
                security.jwt_secret,
                algorithms=[security.jwt_algorithm],
                options={"verify_aud": False},
            )
        else:
            claims = jwt.decode(token, options={"verify_signature": False})
    except jwt.PyJWTError as e:
        logger.warning("auth_invalid_token", error=str(e))
        raise ApiError("UNAUTHORIZED", "Invalid token format", 401) from e

    sub = claims.get("sub")
    if not sub or not isinstance(sub, str):
        raise ApiError("UNAUTHORIZED", "Token has no subject", 401)

    return AuthUser(user_id=sub, token=token, claims=claims)


def authenticate(request: Request, security: SecurityConfig, required: bool = True) -> AuthUser | None:
    """Resolve the caller of a request.

    Args:
        request: Incoming request
        security: Token settings
        required: Raise when no valid token is present

    Returns:
        AuthUser, or None when auth is optional and missing/invalid

    Raises:
        ApiError: 401 when ``required`` and the header is missing or invalid
    """
    token = bearer_token(request)
    if token is None:
        if required:
            raise ApiError("UNAUTHORIZED", "Authorization: Bearer <token> header required", 401)
        return None

    try:
        return decode_token(token, security)
    except ApiError:
        if required:
            raise
        return None

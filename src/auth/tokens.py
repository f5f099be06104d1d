"""Password hashing and bearer token handling.

Passwords are stored as bcrypt hashes. Tokens are HS256 JWTs signed with
JWT_SECRET; claims: sub (user id), role, name, aud, iat, exp, jti.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

import bcrypt
import jwt
import structlog
from jwt.exceptions import DecodeError, InvalidTokenError

from src.config import Settings

log = structlog.get_logger(__name__)

_REQUIRED_CLAIMS = ("sub", "role")


class TokenValidationError(Exception):
    """Raised when a JWT cannot be validated."""


def hash_password(password: str) -> str:
    """Hash a password using bcrypt."""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its bcrypt hash."""
    try:
        return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))
    except ValueError:
        # Malformed hash in the database
        log.warning("auth.invalid_password_hash")
        return False


def create_access_token(
    *,
    user_id: uuid.UUID,
    role: str,
    settings: Settings,
    name: str | None = None,
    expires_in: timedelta | None = None,
) -> str:
    now = datetime.now(UTC)
    lifetime = expires_in or timedelta(minutes=settings.jwt_expiry_minutes)
    payload: dict[str, Any] = {
        "sub": str(user_id),
        "role": role,
        "name": name or "",
        "aud": settings.jwt_audience,
        "iat": int(now.timestamp()),
        "exp": int((now + lifetime).timestamp()),
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(payload, settings.jwt_secret.get_secret_value(), algorithm="HS256")


def validate_token(token: str, settings: Settings) -> dict[str, Any]:
    """Validate a JWT and return its claims.

    Raises TokenValidationError if the token is invalid, expired, or
    has an incorrect audience.
    """
    try:
        claims: dict[str, Any] = jwt.decode(
            token,
            settings.jwt_secret.get_secret_value(),
            algorithms=["HS256"],
            audience=settings.jwt_audience,
            options={"verify_exp": True, "verify_aud": True},
        )
    except (DecodeError, InvalidTokenError) as exc:
        raise TokenValidationError(f"Token validation failed: {exc}") from exc

    missing = [c for c in _REQUIRED_CLAIMS if not claims.get(c)]
    if missing:
        raise TokenValidationError(f"Missing required JWT claims: {missing}")
    try:
        uuid.UUID(str(claims["sub"]))
    except ValueError as exc:
        raise TokenValidationError("Claim 'sub' is not a user id") from exc
    return claims

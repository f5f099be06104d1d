"""Request authentication for the dashboard API.

get_current_user turns ``Authorization: Bearer <jwt>`` into the matching
User row. Tokens only identify an account; the account itself (role, active
flag) is always read from the database, so a deactivated user is locked out
immediately even while their token is still valid.

require_role(...) narrows an endpoint to some roles. Finer checks
(capabilities, application membership) happen in the services.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import structlog
from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.auth.tokens import TokenValidationError, validate_token
from src.config import Settings, get_settings
from src.database import get_db_session
from src.models.user import Role, User
from src.telemetry import bind_user_context

log = structlog.get_logger(__name__)


@dataclass
class AuthenticatedUser:
    """The caller's User row plus the claims of the token they presented."""

    user: User
    claims: dict[str, Any] = field(default_factory=dict)

    @property
    def id(self) -> uuid.UUID:
        return self.user.id

    @property
    def role(self) -> Role:
        return Role(self.user.role)

    @property
    def username(self) -> str:
        return self.user.username


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _bearer_claims(request: Request, settings: Settings) -> dict[str, Any]:
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise _unauthorized("Missing bearer token")
    try:
        return validate_token(token.strip(), settings)
    except TokenValidationError as exc:
        log.info("auth.token_rejected", error=str(exc))
        raise _unauthorized("Invalid or expired token") from exc


async def get_current_user(
    request: Request,
    db: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_settings),
) -> AuthenticatedUser:
    claims = _bearer_claims(request, settings)
    user = await db.get(User, uuid.UUID(claims["sub"]))
    if user is None:
        raise _unauthorized("Token subject does not exist")
    if not user.is_active:
        log.info("auth.inactive_user", user_id=str(user.id))
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is deactivated")

    bind_user_context(user.id, role=user.role)
    return AuthenticatedUser(user=user, claims=claims)


def require_role(*allowed_roles: Role) -> Callable[..., Any]:
    """Build a dependency admitting only users whose role is in allowed_roles.

        current_user: AuthenticatedUser = Depends(require_role(Role.CONTROLLER, Role.DPO))
    """

    async def _check_role(
        current_user: AuthenticatedUser = Depends(get_current_user),
    ) -> AuthenticatedUser:
        if current_user.role not in allowed_roles:
            log.info("auth.role_rejected", user_id=str(current_user.id), role=current_user.role)
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires role: {', '.join(r.value for r in allowed_roles)}",
            )
        return current_user

    return _check_role

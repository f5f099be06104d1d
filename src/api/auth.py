"""Authentication endpoints.

POST /api/v1/auth/login   - Exchange username/password for a bearer token
GET  /api/v1/auth/me      - The authenticated user and their capabilities
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.schemas import UserSummary
from src.auth.dependencies import AuthenticatedUser, get_current_user
from src.auth.tokens import create_access_token
from src.config import Settings, get_settings
from src.core.policy import capabilities_for
from src.database import get_db_session
from src.services.provisioning import ProvisioningService

log = structlog.get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=128)
    password: str = Field(..., min_length=1, max_length=256)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserSummary


class MeResponse(BaseModel):
    user: UserSummary
    capabilities: list[str]


@router.post("/login", response_model=TokenResponse)
async def login(
    body: LoginRequest,
    db: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_settings),
) -> TokenResponse:
    user = await ProvisioningService(db).authenticate(body.username, body.password)
    token = create_access_token(
        user_id=user.id,
        role=user.role,
        name=user.name,
        settings=settings,
    )
    return TokenResponse(
        access_token=token,
        expires_in=settings.jwt_expiry_minutes * 60,
        user=UserSummary.model_validate(user),
    )


@router.get("/me", response_model=MeResponse)
async def me(current_user: AuthenticatedUser = Depends(get_current_user)) -> MeResponse:
    return MeResponse(
        user=UserSummary.model_validate(current_user.user),
        capabilities=sorted(capabilities_for(current_user.role)),
    )

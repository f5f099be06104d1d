"""Contact endpoints.

GET /api/v1/contacts                   - Users the current user may message
GET /api/v1/contacts/{user_id}/apps    - Applications shared with a contact
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.schemas import ApplicationResponse, UserSummary
from src.auth.dependencies import AuthenticatedUser, get_current_user
from src.core.policy import Capability, RoleResolver
from src.database import get_db_session
from src.services.associations import AssociationDirectory

router = APIRouter(prefix="/contacts", tags=["contacts"])


@router.get("", response_model=list[UserSummary])
async def list_contacts(
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> list[UserSummary]:
    user = await RoleResolver(db).require(current_user.id, Capability.CONTACTS_READ)
    contacts = await AssociationDirectory(db).contacts(user)
    return [UserSummary.model_validate(c) for c in contacts]


@router.get("/{user_id}/apps", response_model=list[ApplicationResponse])
async def common_apps(
    user_id: uuid.UUID,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> list[ApplicationResponse]:
    apps = await AssociationDirectory(db).common_applications(current_user.id, user_id)
    return [ApplicationResponse.model_validate(a) for a in apps]

"""Privacy notice endpoints.

GET  /api/v1/privacy-notices                           - Latest notice of each of the caller's apps
GET  /api/v1/privacy-notices/template                  - Sections of the standard notice template
POST /api/v1/privacy-notices/template/render           - Render a notice from template answers
GET  /api/v1/privacy-notices/{notice_id}               - One notice version
GET  /api/v1/apps/{app_id}/privacy-notices             - Version history of an app
GET  /api/v1/apps/{app_id}/privacy-notices/latest      - Current notice of an app
POST /api/v1/apps/{app_id}/privacy-notices             - Publish a new version (Controller/DPO)
"""

from __future__ import annotations

import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict, Field, model_validator
from sqlalchemy.ext.asyncio import AsyncSession

from src.auth.dependencies import AuthenticatedUser, get_current_user
from src.core.errors import AuthorizationError
from src.database import get_db_session
from src.notifications.dispatcher import NotificationDispatcher, get_dispatcher
from src.services.associations import AssociationDirectory
from src.services.privacy_notices import (
    TEMPLATE_SECTIONS,
    PrivacyNoticeRegistry,
    build_from_template,
)

router = APIRouter(tags=["privacy-notices"])


class PrivacyNoticeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    application_id: uuid.UUID
    version: int
    content: str
    published_by: uuid.UUID | None
    published_at: datetime


class PrivacyNoticePublish(BaseModel):
    content: str | None = Field(default=None, max_length=100_000)
    sections: dict[str, str] | None = None

    @model_validator(mode="after")
    def _one_source(self) -> PrivacyNoticePublish:
        if (self.content is None) == (self.sections is None):
            raise ValueError("Provide exactly one of 'content' or 'sections'")
        return self


class TemplateSection(BaseModel):
    key: str
    heading: str


class TemplateRender(BaseModel):
    sections: dict[str, str]
    title: str | None = None


class RenderedNotice(BaseModel):
    content: str


@router.get("/privacy-notices", response_model=list[PrivacyNoticeResponse])
async def my_privacy_notices(
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> list[PrivacyNoticeResponse]:
    notices = await PrivacyNoticeRegistry(db, dispatcher).for_user(current_user.id)
    return [PrivacyNoticeResponse.model_validate(n) for n in notices]


@router.get("/privacy-notices/template", response_model=list[TemplateSection])
async def notice_template(
    current_user: AuthenticatedUser = Depends(get_current_user),
) -> list[TemplateSection]:
    return [TemplateSection(key=key, heading=heading) for key, heading in TEMPLATE_SECTIONS]


@router.post("/privacy-notices/template/render", response_model=RenderedNotice)
async def render_template(
    body: TemplateRender,
    current_user: AuthenticatedUser = Depends(get_current_user),
) -> RenderedNotice:
    return RenderedNotice(content=build_from_template(body.sections, title=body.title))


@router.get("/privacy-notices/{notice_id}", response_model=PrivacyNoticeResponse)
async def get_notice(
    notice_id: uuid.UUID,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> PrivacyNoticeResponse:
    notice = await PrivacyNoticeRegistry(db, dispatcher).get(notice_id)
    await AssociationDirectory(db).require_association(
        current_user.id, notice.application_id, error=AuthorizationError
    )
    return PrivacyNoticeResponse.model_validate(notice)


@router.get("/apps/{app_id}/privacy-notices", response_model=list[PrivacyNoticeResponse])
async def notice_history(
    app_id: uuid.UUID,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> list[PrivacyNoticeResponse]:
    await AssociationDirectory(db).require_association(current_user.id, app_id, error=AuthorizationError)
    notices = await PrivacyNoticeRegistry(db, dispatcher).history(app_id)
    return [PrivacyNoticeResponse.model_validate(n) for n in notices]


@router.get("/apps/{app_id}/privacy-notices/latest", response_model=PrivacyNoticeResponse)
async def latest_notice(
    app_id: uuid.UUID,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> PrivacyNoticeResponse:
    await AssociationDirectory(db).require_association(current_user.id, app_id, error=AuthorizationError)
    notice = await PrivacyNoticeRegistry(db, dispatcher).latest(app_id)
    return PrivacyNoticeResponse.model_validate(notice)


@router.post(
    "/apps/{app_id}/privacy-notices",
    response_model=PrivacyNoticeResponse,
    status_code=status.HTTP_201_CREATED,
)
async def publish_notice(
    app_id: uuid.UUID,
    body: PrivacyNoticePublish,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> PrivacyNoticeResponse:
    content = body.content if body.content is not None else build_from_template(body.sections or {})
    notice = await PrivacyNoticeRegistry(db, dispatcher).publish(current_user.id, app_id, content)
    return PrivacyNoticeResponse.model_validate(notice)

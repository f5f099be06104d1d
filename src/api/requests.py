"""GDPR request endpoints.

POST /api/v1/requests                    - Subject files a request
GET  /api/v1/requests                    - Requests visible to the caller
GET  /api/v1/requests/{id}               - One request
POST /api/v1/requests/{id}/response      - Controller/DPO answers a pending request
"""

from __future__ import annotations

import uuid
from datetime import datetime

import structlog
from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from src.auth.dependencies import AuthenticatedUser, get_current_user
from src.database import get_db_session
from src.models.gdpr_request import RequestStatus, RequestType
from src.notifications.dispatcher import NotificationDispatcher, get_dispatcher
from src.services.gdpr_workflow import GDPRWorkflow

log = structlog.get_logger(__name__)

router = APIRouter(prefix="/requests", tags=["gdpr-requests"])


class GDPRRequestCreate(BaseModel):
    application_id: uuid.UUID
    request_type: RequestType
    details: str | None = Field(default=None, max_length=10_000)
    other: str | None = Field(default=None, max_length=10_000)


class GDPRRequestAnswer(BaseModel):
    response: str = Field(..., min_length=1, max_length=10_000)


class GDPRRequestResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    subject_id: uuid.UUID
    application_id: uuid.UUID
    request_type: str
    status: str
    details: str | None
    other: str | None
    created_at: datetime
    response: str | None
    responded_by: uuid.UUID | None
    responded_at: datetime | None


@router.post("", response_model=GDPRRequestResponse, status_code=status.HTTP_201_CREATED)
async def submit_request(
    body: GDPRRequestCreate,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> GDPRRequestResponse:
    record = await GDPRWorkflow(db, dispatcher).submit(
        current_user.id,
        body.application_id,
        body.request_type,
        details=body.details,
        other=body.other,
    )
    return GDPRRequestResponse.model_validate(record)


@router.get("", response_model=list[GDPRRequestResponse])
async def list_requests(
    status_filter: RequestStatus | None = Query(default=None, alias="status"),
    application_id: uuid.UUID | None = Query(default=None),
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> list[GDPRRequestResponse]:
    records = await GDPRWorkflow(db, dispatcher).list_for_user(
        current_user.id,
        status=status_filter,
        application_id=application_id,
    )
    return [GDPRRequestResponse.model_validate(r) for r in records]


@router.get("/{request_id}", response_model=GDPRRequestResponse)
async def get_request(
    request_id: uuid.UUID,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> GDPRRequestResponse:
    record = await GDPRWorkflow(db, dispatcher).get(current_user.id, request_id)
    return GDPRRequestResponse.model_validate(record)


@router.post("/{request_id}/response", response_model=GDPRRequestResponse)
async def respond_to_request(
    request_id: uuid.UUID,
    body: GDPRRequestAnswer,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> GDPRRequestResponse:
    record = await GDPRWorkflow(db, dispatcher).respond(current_user.id, request_id, body.response)
    return GDPRRequestResponse.model_validate(record)

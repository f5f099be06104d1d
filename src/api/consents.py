"""Consent endpoints (Subjects only).

GET    /api/v1/consents                 - Current consents of the caller
POST   /api/v1/consents                 - Grant consent for a purpose
DELETE /api/v1/consents                 - Revoke consent for a purpose
DELETE /api/v1/consents/{app_id}        - Revoke every consent for an application
GET    /api/v1/consents/history         - The caller's consent event log
"""

from __future__ import annotations

import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from src.auth.dependencies import AuthenticatedUser, get_current_user
from src.database import get_db_session
from src.services.consent_ledger import ConsentLedger

router = APIRouter(prefix="/consents", tags=["consents"])


class ConsentChange(BaseModel):
    application_id: uuid.UUID
    purpose: str = Field(..., min_length=1, max_length=255)


class ConsentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    application_id: uuid.UUID
    purpose: str
    granted: bool
    updated_at: datetime


class ConsentEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    application_id: uuid.UUID
    purpose: str
    action: str
    occurred_at: datetime


class RevokeAllResponse(BaseModel):
    application_id: uuid.UUID
    revoked: list[str]


@router.get("", response_model=list[ConsentResponse])
async def list_consents(
    application_id: uuid.UUID | None = Query(default=None),
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> list[ConsentResponse]:
    consents = await ConsentLedger(db).list_consents(current_user.id, application_id=application_id)
    return [ConsentResponse.model_validate(c) for c in consents]


@router.post("", response_model=ConsentResponse)
async def grant_consent(
    body: ConsentChange,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> ConsentResponse:
    consent = await ConsentLedger(db).grant(current_user.id, body.application_id, body.purpose)
    return ConsentResponse.model_validate(consent)


@router.delete("", response_model=ConsentResponse)
async def revoke_consent(
    application_id: uuid.UUID = Query(...),
    purpose: str = Query(..., min_length=1, max_length=255),
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> ConsentResponse:
    consent = await ConsentLedger(db).revoke(current_user.id, application_id, purpose)
    return ConsentResponse.model_validate(consent)


@router.get("/history", response_model=list[ConsentEventResponse])
async def consent_history(
    application_id: uuid.UUID | None = Query(default=None),
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> list[ConsentEventResponse]:
    events = await ConsentLedger(db).history(current_user.id, application_id=application_id)
    return [ConsentEventResponse.model_validate(e) for e in events]


@router.delete("/{app_id}", response_model=RevokeAllResponse)
async def revoke_all_for_app(
    app_id: uuid.UUID,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> RevokeAllResponse:
    revoked = await ConsentLedger(db).revoke_all(current_user.id, app_id)
    return RevokeAllResponse(application_id=app_id, revoked=revoked)

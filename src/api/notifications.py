"""Notification inbox endpoints.

GET    /api/v1/notifications               - The caller's notifications, newest first
GET    /api/v1/notifications/unread-count  - Number of unread notifications
PATCH  /api/v1/notifications/{id}          - Mark read / unread
DELETE /api/v1/notifications/{id}          - Delete a notification
"""

from __future__ import annotations

import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict
from sqlalchemy.ext.asyncio import AsyncSession

from src.auth.dependencies import AuthenticatedUser, get_current_user
from src.database import get_db_session
from src.notifications.inbox import NotificationInbox

router = APIRouter(prefix="/notifications", tags=["notifications"])


class NotificationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    sender_id: uuid.UUID | None
    kind: str
    description: str
    object_id: str | None
    is_read: bool
    created_at: datetime


class NotificationUpdate(BaseModel):
    is_read: bool


class UnreadCount(BaseModel):
    unread: int


@router.get("", response_model=list[NotificationResponse])
async def list_notifications(
    unread_only: bool = Query(default=False),
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> list[NotificationResponse]:
    notifications = await NotificationInbox(db).list_for_user(current_user.id, unread_only=unread_only)
    return [NotificationResponse.model_validate(n) for n in notifications]


@router.get("/unread-count", response_model=UnreadCount)
async def unread_count(
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> UnreadCount:
    return UnreadCount(unread=await NotificationInbox(db).unread_count(current_user.id))


@router.patch("/{notification_id}", response_model=NotificationResponse)
async def update_notification(
    notification_id: uuid.UUID,
    body: NotificationUpdate,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> NotificationResponse:
    notification = await NotificationInbox(db).mark_read(
        current_user.id, notification_id, is_read=body.is_read
    )
    return NotificationResponse.model_validate(notification)


@router.delete("/{notification_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_notification(
    notification_id: uuid.UUID,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> None:
    await NotificationInbox(db).delete(current_user.id, notification_id)

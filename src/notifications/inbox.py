"""In-app notification inbox: listing, read flags and deletion."""

from __future__ import annotations

import uuid

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.errors import AuthorizationError, NotFoundError
from src.core.policy import Capability, RoleResolver
from src.models.notification import Notification

log = structlog.get_logger(__name__)


class NotificationInbox:
    def __init__(self, db: AsyncSession) -> None:
        self._db = db
        self._roles = RoleResolver(db)

    async def list_for_user(
        self,
        user_id: uuid.UUID,
        *,
        unread_only: bool = False,
    ) -> list[Notification]:
        """Newest first."""
        await self._roles.require(user_id, Capability.NOTIFICATION_READ)
        stmt = select(Notification).where(Notification.recipient_id == user_id)
        if unread_only:
            stmt = stmt.where(Notification.is_read.is_(False))
        result = await self._db.execute(stmt.order_by(Notification.created_at.desc()))
        return list(result.scalars().all())

    async def unread_count(self, user_id: uuid.UUID) -> int:
        result = await self._db.execute(
            select(func.count())
            .select_from(Notification)
            .where(Notification.recipient_id == user_id, Notification.is_read.is_(False))
        )
        return int(result.scalar_one())

    async def mark_read(
        self,
        user_id: uuid.UUID,
        notification_id: uuid.UUID,
        *,
        is_read: bool = True,
    ) -> Notification:
        notification = await self._owned(user_id, notification_id)
        notification.is_read = is_read
        await self._db.flush()
        return notification

    async def delete(self, user_id: uuid.UUID, notification_id: uuid.UUID) -> None:
        notification = await self._owned(user_id, notification_id)
        await self._db.delete(notification)
        await self._db.flush()
        log.info("notification.deleted", notification_id=str(notification_id))

    async def _owned(self, user_id: uuid.UUID, notification_id: uuid.UUID) -> Notification:
        notification = await self._db.get(Notification, notification_id)
        if notification is None:
            raise NotFoundError(f"Notification {notification_id} not found")
        if notification.recipient_id != user_id:
            raise AuthorizationError("Notification belongs to another user")
        return notification

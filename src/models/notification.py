"""In-app notification inbox rows, written by the notification dispatcher."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import StrEnum

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from src.database import Base


class NotificationKind(StrEnum):
    MESSAGE_RECEIVED = "message_received"
    PRIVACY_NOTICE_UPDATED = "privacy_notice_updated"
    REQUEST_SUBMITTED = "request_submitted"
    REQUEST_STATUS_CHANGED = "request_status_changed"


class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    recipient_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    sender_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    kind: Mapped[str] = mapped_column(String(64), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    object_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        comment="Id of the message / request / notice the event refers to",
    )
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
    )

    __table_args__ = (
        Index("ix_notifications_recipient_read", "recipient_id", "is_read"),
    )

    def __repr__(self) -> str:
        return f"<Notification id={self.id} to={self.recipient_id} kind={self.kind!r}>"

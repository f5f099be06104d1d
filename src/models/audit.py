"""AuditLog model - immutable record of every state transition.

Design principles:
- Append-only: rows are never deleted. The one update is erasure clearing
  the summary of entries that quote the erased subject
- Only completed operations are recorded; a refused call raises before it
  writes anything and is left to the structured log
- Written in the same transaction as the change it describes, so the entity
  update and its audit entry commit together or not at all
- Summaries are truncated to avoid storing message bodies at full fidelity
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from sqlalchemy import JSON, DateTime, Index, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from src.database import Base


class AuditStatus(StrEnum):
    SUCCESS = "success"


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    # No FK - audit rows survive the erasure of the actor's data
    actor_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True, index=True)

    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        index=True,
    )

    # Action identifier, e.g. "consent.grant", "gdpr.respond", "message.send"
    action: Mapped[str] = mapped_column(String(128), nullable=False, index=True)

    resource_type: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        comment="e.g. 'gdpr_request', 'consent', 'message'",
    )
    resource_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=AuditStatus.SUCCESS,
    )
    summary: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        comment="First 500 chars of the relevant free text",
    )
    extra: Mapped[dict[str, Any]] = mapped_column(
        JSON().with_variant(JSONB, "postgresql"),
        nullable=False,
        default=dict,
    )

    __table_args__ = (
        Index("ix_audit_actor_timestamp", "actor_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<AuditLog id={self.id} action={self.action!r} status={self.status}>"

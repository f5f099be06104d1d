"""Consent ledger models.

ConsentEvent is the append-only log: one row per grant / revoke / erase,
never updated or deleted. Consent is the projection of that log, one row per
(subject, application, purpose) holding the current state.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import StrEnum

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from src.database import Base


class ConsentAction(StrEnum):
    GRANTED = "granted"
    REVOKED = "revoked"
    ERASED = "erased"


class Consent(Base):
    __tablename__ = "consents"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    subject_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    application_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("applications.id", ondelete="CASCADE"),
        nullable=False,
    )
    purpose: Mapped[str] = mapped_column(String(255), nullable=False)
    granted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
    )

    __table_args__ = (
        Index(
            "ix_consents_subject_app_purpose",
            "subject_id",
            "application_id",
            "purpose",
            unique=True,
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<Consent subject={self.subject_id} app={self.application_id} "
            f"purpose={self.purpose!r} granted={self.granted}>"
        )


class ConsentEvent(Base):
    __tablename__ = "consent_events"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    # No FK to users.id - the log outlives the projection it was derived from
    subject_id: Mapped[uuid.UUID] = mapped_column(nullable=False, index=True)
    application_id: Mapped[uuid.UUID] = mapped_column(nullable=False)
    purpose: Mapped[str] = mapped_column(String(255), nullable=False)
    action: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        comment="granted | revoked | erased",
    )
    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
    )

    __table_args__ = (
        Index("ix_consent_events_subject_time", "subject_id", "occurred_at"),
    )

    def __repr__(self) -> str:
        return f"<ConsentEvent subject={self.subject_id} purpose={self.purpose!r} action={self.action}>"

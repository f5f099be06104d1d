"""SQLAlchemy ORM model for GDPR data subject requests.

A request is filed by a Subject against one application and answered by a
Controller or DPO of that application. Status only moves pending -> handled.

``version`` is the optimistic lock counter: every UPDATE is issued with
``WHERE version = <loaded version>`` so a responder working from a stale row
fails at flush time instead of overwriting the winner's response.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import StrEnum

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from src.database import Base


class RequestType(StrEnum):
    ACCESS = "access"
    INFO = "info"
    ERASURE = "erasure"
    COMPLAINT = "complaint"
    WITHDRAW_CONSENT = "withdraw_consent"
    DELETE_EVERYTHING = "delete_everything"
    PORTABILITY = "portability"


class RequestStatus(StrEnum):
    PENDING = "pending"
    HANDLED = "handled"


class GDPRRequestRecord(Base):
    """Persistent record of a GDPR data subject rights request."""

    __tablename__ = "gdpr_requests"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
        comment="GDPR request primary key",
    )
    subject_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Data subject who filed the request",
    )
    application_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("applications.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    request_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="access | info | erasure | complaint | withdraw_consent | delete_everything | portability",
    )
    status: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default=RequestStatus.PENDING,
        comment="pending | handled",
    )
    details: Mapped[str | None] = mapped_column(Text, nullable=True)
    other: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        comment="Free-text request type when none of the predefined ones fit",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        comment="UTC timestamp of request submission",
    )

    response: Mapped[str | None] = mapped_column(Text, nullable=True)
    responded_by: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    responded_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_gdpr_requests_app_status", "application_id", "status"),
    )

    @property
    def is_handled(self) -> bool:
        return self.status == RequestStatus.HANDLED

    def __repr__(self) -> str:
        return (
            f"<GDPRRequestRecord id={self.id} subject={self.subject_id} "
            f"type={self.request_type!r} status={self.status!r}>"
        )

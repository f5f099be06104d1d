"""Application and user/application association models.

A UserAppRelation row means the user belongs to the application: Subjects
use it, Controllers and DPOs are responsible for it. Everything else in the
dashboard (requests, messages, notices) is gated on these rows.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from sqlalchemy import JSON, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from src.database import Base


class QuestionnaireVote(StrEnum):
    RED = "red"
    ORANGE = "orange"
    GREEN = "green"


class Application(Base):
    __tablename__ = "applications"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    questionnaire_vote: Mapped[str | None] = mapped_column(
        String(16),
        nullable=True,
        comment="red | orange | green, set by the GDPR questionnaire",
    )
    detail_vote: Mapped[list[Any]] = mapped_column(
        JSON().with_variant(JSONB, "postgresql"),
        nullable=False,
        default=list,
        comment="Questionnaire answers, keyed by question id",
    )
    optional_answers: Mapped[list[Any]] = mapped_column(
        JSON().with_variant(JSONB, "postgresql"),
        nullable=False,
        default=list,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
    )

    def __repr__(self) -> str:
        return f"<Application id={self.id} name={self.name!r}>"


class UserAppRelation(Base):
    __tablename__ = "user_app_relations"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    application_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("applications.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
    )

    __table_args__ = (
        Index("ix_user_app_unique", "user_id", "application_id", unique=True),
    )

    def __repr__(self) -> str:
        return f"<UserAppRelation user={self.user_id} app={self.application_id}>"

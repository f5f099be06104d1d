"""User model - one account, exactly one role.

Users are provisioned up front (admin scripts or demo seeding); the role is
fixed at creation time and can never be reassigned on a persisted row.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import StrEnum

from sqlalchemy import Boolean, DateTime, String, inspect
from sqlalchemy.orm import Mapped, mapped_column, validates

from src.core.errors import ValidationError
from src.database import Base


class Role(StrEnum):
    SUBJECT = "subject"
    CONTROLLER = "controller"
    DPO = "dpo"


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    username: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        unique=True,
        comment="Login name",
    )
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    mail: Mapped[str | None] = mapped_column(String(320), nullable=True)
    role: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        comment="subject | controller | dpo (immutable)",
    )
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
    )

    @validates("role")
    def _validate_role(self, key: str, value: str) -> str:
        try:
            role = Role(value)
        except ValueError:
            raise ValidationError(f"Unknown role: {value!r}") from None
        state = inspect(self)
        current = state.dict.get("role")
        if state.has_identity and current is not None and current != role:
            raise ValidationError("A user's role cannot be changed once created")
        return role

    @property
    def is_subject(self) -> bool:
        return self.role == Role.SUBJECT

    @property
    def is_staff(self) -> bool:
        """Controllers and DPOs act on behalf of an application."""
        return self.role in (Role.CONTROLLER, Role.DPO)

    def __repr__(self) -> str:
        return f"<User id={self.id} username={self.username!r} role={self.role}>"

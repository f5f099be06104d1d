"""Tests for the User model role rules.

Coverage:
- Unknown roles are rejected at construction
- A persisted user's role cannot be reassigned
- Re-assigning the same role is harmless
"""

from __future__ import annotations

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.errors import ValidationError
from src.models.user import Role, User


def test_unknown_role_rejected() -> None:
    with pytest.raises(ValidationError):
        User(username="mallory", role="admin", password_hash="x")


def test_role_coerced_to_enum() -> None:
    user = User(username="erin", role="dpo", password_hash="x")
    assert user.role is Role.DPO
    assert user.is_staff
    assert not user.is_subject


def test_transient_user_role_can_be_set_again() -> None:
    user = User(username="frank", role=Role.SUBJECT, password_hash="x")
    user.role = Role.CONTROLLER
    assert user.role == Role.CONTROLLER


async def test_persisted_role_is_immutable(db: AsyncSession, world) -> None:
    with pytest.raises(ValidationError):
        world.alice.role = Role.DPO

    await db.refresh(world.alice)
    assert world.alice.role == Role.SUBJECT


async def test_persisted_role_same_value_allowed(db: AsyncSession, world) -> None:
    world.bob.role = Role.CONTROLLER
    await db.commit()
    assert world.bob.role == Role.CONTROLLER

"""Tests for the in-app notification inbox."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.errors import AuthorizationError, NotFoundError
from src.models.notification import Notification, NotificationKind
from src.notifications.inbox import NotificationInbox


@pytest.fixture
async def alice_notifications(db: AsyncSession, world) -> list[Notification]:
    now = datetime.now(UTC)
    notifications = [
        Notification(
            recipient_id=world.alice.id,
            sender_id=world.bob.id,
            kind=NotificationKind.MESSAGE_RECEIVED,
            description=f"message {n}",
            created_at=now + timedelta(seconds=n),
        )
        for n in range(3)
    ]
    db.add_all(notifications)
    db.add(Notification(recipient_id=world.bob.id, kind=NotificationKind.REQUEST_SUBMITTED, description="new"))
    await db.commit()
    return notifications


async def test_list_newest_first(db, world, alice_notifications) -> None:
    listed = await NotificationInbox(db).list_for_user(world.alice.id)
    assert [n.description for n in listed] == ["message 2", "message 1", "message 0"]


async def test_mark_read_and_unread_count(db, world, alice_notifications) -> None:
    inbox = NotificationInbox(db)
    assert await inbox.unread_count(world.alice.id) == 3

    await inbox.mark_read(world.alice.id, alice_notifications[0].id)
    await db.commit()
    assert await inbox.unread_count(world.alice.id) == 2
    unread = await inbox.list_for_user(world.alice.id, unread_only=True)
    assert len(unread) == 2

    await inbox.mark_read(world.alice.id, alice_notifications[0].id, is_read=False)
    assert await inbox.unread_count(world.alice.id) == 3


async def test_delete(db, world, alice_notifications) -> None:
    inbox = NotificationInbox(db)
    await inbox.delete(world.alice.id, alice_notifications[1].id)
    await db.commit()
    assert [n.description for n in await inbox.list_for_user(world.alice.id)] == ["message 2", "message 0"]


async def test_other_users_notification(db, world, alice_notifications) -> None:
    inbox = NotificationInbox(db)
    with pytest.raises(AuthorizationError):
        await inbox.mark_read(world.bob.id, alice_notifications[0].id)
    with pytest.raises(AuthorizationError):
        await inbox.delete(world.dave.id, alice_notifications[0].id)


async def test_unknown_notification(db, world) -> None:
    with pytest.raises(NotFoundError):
        await NotificationInbox(db).mark_read(world.alice.id, uuid.uuid4())


async def test_unknown_user_cannot_list(db, world) -> None:
    with pytest.raises(AuthorizationError):
        await NotificationInbox(db).list_for_user(uuid.uuid4())

"""Tests for the consent ledger.

Coverage:
- grant creates one projection row and one event
- granting twice leaves the projection unchanged except for the timestamp
- revoke requires an active consent
- revoke_all revokes every active purpose for one application
- the event log is append-only and keeps every prior state
- only subjects manage consents, only for applications they use
- a first grant racing another first grant reuses the row instead of failing
"""

from __future__ import annotations

import asyncio

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.core.audit import AuditService
from src.core.errors import AuthorizationError, NotFoundError, ValidationError
from src.models.consent import Consent, ConsentAction, ConsentEvent
from src.services.consent_ledger import ConsentLedger


def _state(consents) -> list[tuple]:
    return [(c.application_id, c.purpose, c.granted) for c in consents]


class TestGrant:
    async def test_grant_creates_consent(self, db: AsyncSession, world) -> None:
        ledger = ConsentLedger(db)
        consent = await ledger.grant(world.alice.id, world.app_x.id, "analytics")
        await db.commit()

        assert consent.granted is True
        assert _state(await ledger.list_consents(world.alice.id)) == [
            (world.app_x.id, "analytics", True)
        ]
        events = await ledger.history(world.alice.id)
        assert [e.action for e in events] == [ConsentAction.GRANTED]

    async def test_grant_twice_is_idempotent(self, db: AsyncSession, world) -> None:
        ledger = ConsentLedger(db)
        first = await ledger.grant(world.alice.id, world.app_x.id, "analytics")
        await db.commit()
        before = _state(await ledger.list_consents(world.alice.id))
        first_timestamp = first.updated_at

        await asyncio.sleep(0.01)
        second = await ledger.grant(world.alice.id, world.app_x.id, "analytics")
        await db.commit()

        assert second.id == first.id
        assert _state(await ledger.list_consents(world.alice.id)) == before
        assert second.updated_at > first_timestamp

    async def test_purpose_is_trimmed(self, db: AsyncSession, world) -> None:
        consent = await ConsentLedger(db).grant(world.alice.id, world.app_x.id, "  marketing ")
        assert consent.purpose == "marketing"

    async def test_blank_purpose_rejected(self, db: AsyncSession, world) -> None:
        with pytest.raises(ValidationError):
            await ConsentLedger(db).grant(world.alice.id, world.app_x.id, "   ")

    async def test_unassociated_application_rejected(self, db: AsyncSession, world) -> None:
        with pytest.raises(ValidationError):
            await ConsentLedger(db).grant(world.dave.id, world.app_y.id, "analytics")

    async def test_staff_cannot_grant(self, db: AsyncSession, world) -> None:
        with pytest.raises(AuthorizationError):
            await ConsentLedger(db).grant(world.bob.id, world.app_x.id, "analytics")

    async def test_grant_is_audited(self, db: AsyncSession, world) -> None:
        await ConsentLedger(db).grant(world.alice.id, world.app_x.id, "analytics")
        await db.commit()
        entries = await AuditService(db).entries_for(actor_id=world.alice.id)
        assert [e.action for e in entries] == ["consent.grant"]
        assert entries[0].resource_id == f"{world.app_x.id}:analytics"


class TestRevoke:
    async def test_revoke_active_consent(self, db: AsyncSession, world) -> None:
        ledger = ConsentLedger(db)
        await ledger.grant(world.alice.id, world.app_x.id, "analytics")
        consent = await ledger.revoke(world.alice.id, world.app_x.id, "analytics")
        await db.commit()

        assert consent.granted is False
        assert _state(await ledger.list_consents(world.alice.id)) == [
            (world.app_x.id, "analytics", False)
        ]

    async def test_revoke_without_consent_fails(self, db: AsyncSession, world) -> None:
        with pytest.raises(NotFoundError):
            await ConsentLedger(db).revoke(world.alice.id, world.app_x.id, "analytics")

    async def test_revoke_twice_fails(self, db: AsyncSession, world) -> None:
        ledger = ConsentLedger(db)
        await ledger.grant(world.alice.id, world.app_x.id, "analytics")
        await ledger.revoke(world.alice.id, world.app_x.id, "analytics")
        with pytest.raises(NotFoundError):
            await ledger.revoke(world.alice.id, world.app_x.id, "analytics")

    async def test_revoke_all(self, db: AsyncSession, world) -> None:
        ledger = ConsentLedger(db)
        await ledger.grant(world.alice.id, world.app_x.id, "marketing")
        await ledger.grant(world.alice.id, world.app_x.id, "analytics")
        await ledger.grant(world.alice.id, world.app_y.id, "analytics")
        await ledger.revoke(world.alice.id, world.app_x.id, "marketing")

        revoked = await ledger.revoke_all(world.alice.id, world.app_x.id)
        await db.commit()

        assert revoked == ["analytics"]
        current = {(c.application_id, c.purpose): c.granted for c in await ledger.list_consents(world.alice.id)}
        assert current[(world.app_x.id, "analytics")] is False
        assert current[(world.app_y.id, "analytics")] is True

    async def test_revoke_all_nothing_active(self, db: AsyncSession, world) -> None:
        assert await ConsentLedger(db).revoke_all(world.alice.id, world.app_x.id) == []


class TestHistory:
    async def test_history_keeps_every_state(self, db: AsyncSession, world) -> None:
        ledger = ConsentLedger(db)
        await ledger.grant(world.alice.id, world.app_x.id, "analytics")
        await ledger.revoke(world.alice.id, world.app_x.id, "analytics")
        await ledger.grant(world.alice.id, world.app_x.id, "analytics")
        await db.commit()

        events = await ledger.history(world.alice.id, application_id=world.app_x.id)
        assert [e.action for e in events] == [
            ConsentAction.GRANTED,
            ConsentAction.REVOKED,
            ConsentAction.GRANTED,
        ]

    async def test_list_consents_filters_by_application(self, db: AsyncSession, world) -> None:
        ledger = ConsentLedger(db)
        await ledger.grant(world.alice.id, world.app_x.id, "analytics")
        await ledger.grant(world.alice.id, world.app_y.id, "telemetry")
        consents = await ledger.list_consents(world.alice.id, application_id=world.app_y.id)
        assert [c.purpose for c in consents] == ["telemetry"]

    async def test_failed_grant_leaves_no_event(self, db: AsyncSession, world) -> None:
        with pytest.raises(ValidationError):
            await ConsentLedger(db).grant(world.dave.id, world.app_y.id, "analytics")
        await db.rollback()

        count = await db.execute(select(func.count()).select_from(ConsentEvent))
        assert count.scalar_one() == 0


async def test_erase_subject(db: AsyncSession, world) -> None:
    ledger = ConsentLedger(db)
    await ledger.grant(world.alice.id, world.app_x.id, "analytics")
    await ledger.grant(world.alice.id, world.app_y.id, "telemetry")
    await ledger.grant(world.dave.id, world.app_x.id, "analytics")

    erased = await ledger.erase_subject(world.alice.id)
    await db.commit()

    assert erased == 2
    assert await ledger.list_consents(world.alice.id) == []
    assert len(await ledger.list_consents(world.dave.id)) == 1
    actions = [e.action for e in await ledger.history(world.alice.id)]
    assert actions.count(ConsentAction.ERASED) == 2


class TestConcurrentGrant:
    async def test_first_grants_race_onto_one_row(
        self,
        db: AsyncSession,
        session_factory: async_sessionmaker[AsyncSession],
        world,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """Two first-time grants for one purpose: the later one joins the row the earlier one made."""
        async with session_factory() as first, session_factory() as second:
            winner = ConsentLedger(first)
            loser = ConsentLedger(second)

            # the loser looked before the winner committed, so it saw no row
            original = loser._locked
            misses = [None]

            async def _stale_lookup(*args):
                if misses:
                    return misses.pop()
                return await original(*args)

            monkeypatch.setattr(loser, "_locked", _stale_lookup)

            await winner.grant(world.alice.id, world.app_x.id, "analytics")
            await first.commit()

            consent = await loser.grant(world.alice.id, world.app_x.id, "analytics")
            await second.commit()

        assert consent.granted is True
        rows = await db.execute(select(func.count()).select_from(Consent))
        assert rows.scalar_one() == 1
        actions = [e.action for e in await ConsentLedger(db).history(world.alice.id)]
        assert actions == [ConsentAction.GRANTED, ConsentAction.GRANTED]

"""Consent ledger - append-only event log with a current-state projection.

Every grant, revoke and erase appends a ConsentEvent; the Consent table
holds one row per (subject, application, purpose) reflecting the latest
event. The projection row is locked (SELECT ... FOR UPDATE) while it is
being changed so concurrent grant/revoke calls for the same purpose
serialize instead of interleaving. A first grant has no row to lock yet, so it
inserts with ON CONFLICT DO NOTHING and then locks whichever row won.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

import structlog
from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.audit import AuditService
from src.core.errors import NotFoundError, ValidationError
from src.core.policy import Capability, RoleResolver
from src.models.consent import Consent, ConsentAction, ConsentEvent
from src.services.associations import AssociationDirectory

log = structlog.get_logger(__name__)

_MAX_PURPOSE_LENGTH = 255


def _normalize_purpose(purpose: str) -> str:
    cleaned = (purpose or "").strip()
    if not cleaned:
        raise ValidationError("Consent purpose must not be empty")
    if len(cleaned) > _MAX_PURPOSE_LENGTH:
        raise ValidationError(f"Consent purpose exceeds {_MAX_PURPOSE_LENGTH} characters")
    return cleaned


class ConsentLedger:
    """
    Usage:
        ledger = ConsentLedger(db)
        await ledger.grant(subject_id, app_id, "analytics")
        await ledger.revoke(subject_id, app_id, "analytics")
        consents = await ledger.list_consents(subject_id)
    """

    def __init__(self, db: AsyncSession) -> None:
        self._db = db
        self._roles = RoleResolver(db)
        self._associations = AssociationDirectory(db)
        self._audit = AuditService(db)

    async def grant(
        self,
        subject_id: uuid.UUID,
        application_id: uuid.UUID,
        purpose: str,
    ) -> Consent:
        """Grant consent. Re-granting refreshes the timestamp and nothing else."""
        await self._roles.require(subject_id, Capability.CONSENT_MANAGE)
        purpose = _normalize_purpose(purpose)
        await self._associations.require_association(subject_id, application_id)

        now = datetime.now(UTC)
        consent = await self._locked(subject_id, application_id, purpose)
        if consent is None:
            consent = await self._insert_or_lock(subject_id, application_id, purpose, now)
        consent.granted = True
        consent.updated_at = now

        self._append(subject_id, application_id, purpose, ConsentAction.GRANTED, now)
        await self._audit.log(
            actor_id=subject_id,
            action="consent.grant",
            resource_type="consent",
            resource_id=f"{application_id}:{purpose}",
        )
        await self._db.flush()
        log.info(
            "consent.granted",
            subject_id=str(subject_id),
            application_id=str(application_id),
            purpose=purpose,
        )
        return consent

    async def revoke(
        self,
        subject_id: uuid.UUID,
        application_id: uuid.UUID,
        purpose: str,
    ) -> Consent:
        """Revoke an active consent; NotFoundError if none is active."""
        await self._roles.require(subject_id, Capability.CONSENT_MANAGE)
        purpose = _normalize_purpose(purpose)

        consent = await self._locked(subject_id, application_id, purpose)
        if consent is None or not consent.granted:
            raise NotFoundError(f"No active consent for purpose {purpose!r}")

        now = datetime.now(UTC)
        consent.granted = False
        consent.updated_at = now
        self._append(subject_id, application_id, purpose, ConsentAction.REVOKED, now)
        await self._audit.log(
            actor_id=subject_id,
            action="consent.revoke",
            resource_type="consent",
            resource_id=f"{application_id}:{purpose}",
        )
        await self._db.flush()
        log.info(
            "consent.revoked",
            subject_id=str(subject_id),
            application_id=str(application_id),
            purpose=purpose,
        )
        return consent

    async def revoke_all(self, subject_id: uuid.UUID, application_id: uuid.UUID) -> list[str]:
        """Revoke every active consent for one application; returns the purposes."""
        await self._roles.require(subject_id, Capability.CONSENT_MANAGE)
        result = await self._db.execute(
            select(Consent)
            .where(
                Consent.subject_id == subject_id,
                Consent.application_id == application_id,
                Consent.granted.is_(True),
            )
            .with_for_update()
        )
        now = datetime.now(UTC)
        revoked: list[str] = []
        for consent in result.scalars().all():
            consent.granted = False
            consent.updated_at = now
            self._append(subject_id, application_id, consent.purpose, ConsentAction.REVOKED, now)
            revoked.append(consent.purpose)

        if revoked:
            await self._audit.log(
                actor_id=subject_id,
                action="consent.revoke_all",
                resource_type="application",
                resource_id=application_id,
                extra={"purposes": revoked},
            )
            await self._db.flush()
        log.info("consent.revoked_all", subject_id=str(subject_id), count=len(revoked))
        return sorted(revoked)

    async def list_consents(
        self,
        subject_id: uuid.UUID,
        *,
        application_id: uuid.UUID | None = None,
    ) -> list[Consent]:
        """Current state per (application, purpose)."""
        stmt = select(Consent).where(Consent.subject_id == subject_id)
        if application_id is not None:
            stmt = stmt.where(Consent.application_id == application_id)
        result = await self._db.execute(stmt.order_by(Consent.application_id, Consent.purpose))
        return list(result.scalars().all())

    async def history(
        self,
        subject_id: uuid.UUID,
        *,
        application_id: uuid.UUID | None = None,
    ) -> list[ConsentEvent]:
        """The event log for a subject, oldest first."""
        stmt = select(ConsentEvent).where(ConsentEvent.subject_id == subject_id)
        if application_id is not None:
            stmt = stmt.where(ConsentEvent.application_id == application_id)
        result = await self._db.execute(stmt.order_by(ConsentEvent.occurred_at))
        return list(result.scalars().all())

    async def erase_subject(self, subject_id: uuid.UUID) -> int:
        """Drop the subject's projection rows, logging an ``erased`` event each.

        Only the delete-everything cascade calls this; it runs inside the
        responder's transaction.
        """
        result = await self._db.execute(
            select(Consent).where(Consent.subject_id == subject_id).with_for_update()
        )
        consents = list(result.scalars().all())
        now = datetime.now(UTC)
        for consent in consents:
            self._append(subject_id, consent.application_id, consent.purpose, ConsentAction.ERASED, now)
        await self._db.execute(delete(Consent).where(Consent.subject_id == subject_id))
        await self._db.flush()
        log.info("consent.erased", subject_id=str(subject_id), count=len(consents))
        return len(consents)

    async def _insert_or_lock(
        self,
        subject_id: uuid.UUID,
        application_id: uuid.UUID,
        purpose: str,
        now: datetime,
    ) -> Consent:
        """Create the projection row, or take the one a concurrent grant just created."""
        insert = pg_insert if self._db.get_bind().dialect.name == "postgresql" else sqlite_insert
        await self._db.execute(
            insert(Consent)
            .values(
                id=uuid.uuid4(),
                subject_id=subject_id,
                application_id=application_id,
                purpose=purpose,
                granted=True,
                updated_at=now,
            )
            .on_conflict_do_nothing(index_elements=["subject_id", "application_id", "purpose"])
        )
        consent = await self._locked(subject_id, application_id, purpose)
        if consent is None:
            raise RuntimeError(f"Consent row for {purpose!r} vanished after insert")
        return consent

    async def _locked(
        self,
        subject_id: uuid.UUID,
        application_id: uuid.UUID,
        purpose: str,
    ) -> Consent | None:
        result = await self._db.execute(
            select(Consent)
            .where(
                Consent.subject_id == subject_id,
                Consent.application_id == application_id,
                Consent.purpose == purpose,
            )
            .with_for_update()
        )
        return result.scalar_one_or_none()

    def _append(
        self,
        subject_id: uuid.UUID,
        application_id: uuid.UUID,
        purpose: str,
        action: ConsentAction,
        occurred_at: datetime,
    ) -> None:
        self._db.add(
            ConsentEvent(
                subject_id=subject_id,
                application_id=application_id,
                purpose=purpose,
                action=action,
                occurred_at=occurred_at,
            )
        )

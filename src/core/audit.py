"""Audit logging service.

Every state transition in the dashboard (consent change, request
submission/response, message, notice publication) writes an audit entry.

Design:
- Audit writes share the caller's session and transaction. If the audit
  flush fails the whole operation fails, so an entity update is never
  committed without its audit record.
- Summaries are capped at 500 characters to avoid storing message bodies
  at full fidelity in the audit table.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.models.audit import AuditLog, AuditStatus

log = structlog.get_logger(__name__)

_SUMMARY_MAX_CHARS = 500


def _truncate(text: str | None, max_chars: int = _SUMMARY_MAX_CHARS) -> str | None:
    if text is None:
        return None
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + "..."


class AuditService:
    """Append-only access to the audit_logs table through the caller's session."""

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def log(
        self,
        *,
        action: str,
        actor_id: uuid.UUID | None = None,
        resource_type: str | None = None,
        resource_id: uuid.UUID | str | None = None,
        status: AuditStatus = AuditStatus.SUCCESS,
        summary: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> AuditLog:
        """Add one entry and flush it; committing is left to the caller."""
        entry = AuditLog(
            actor_id=actor_id,
            timestamp=datetime.now(UTC),
            action=action,
            resource_type=resource_type,
            resource_id=str(resource_id) if resource_id else None,
            status=status,
            summary=_truncate(summary),
            extra=extra or {},
        )
        self._db.add(entry)
        await self._db.flush()
        log.debug("audit.written", action=action, resource_id=entry.resource_id)
        return entry

    async def entries_for(
        self,
        *,
        resource_type: str | None = None,
        resource_id: uuid.UUID | str | None = None,
        actor_id: uuid.UUID | None = None,
    ) -> list[AuditLog]:
        """Return matching audit entries, oldest first."""
        stmt = select(AuditLog)
        if resource_type is not None:
            stmt = stmt.where(AuditLog.resource_type == resource_type)
        if resource_id is not None:
            stmt = stmt.where(AuditLog.resource_id == str(resource_id))
        if actor_id is not None:
            stmt = stmt.where(AuditLog.actor_id == actor_id)
        result = await self._db.execute(stmt.order_by(AuditLog.timestamp))
        return list(result.scalars().all())

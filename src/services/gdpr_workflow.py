"""GDPR data subject request workflow.

A Subject files a request against one application; a Controller or DPO of
that application answers it. The state machine has two states:

    pending --respond()--> handled

``handled`` is terminal. Responding twice is a ConflictError and leaves the
first response untouched.

Concurrency:
- respond() re-reads the row with SELECT ... FOR UPDATE and
  populate_existing, so it always decides on the committed status
- the row carries an optimistic version counter; a flush against a stale
  version raises StaleDataError, reported as ConflictError
Either way exactly one of two simultaneous responders wins.

delete_everything:
When a delete_everything request is handled, the subject's consents,
messages, notifications and other requests are removed in the same
transaction as the status change. That includes notifications the subject
caused in other users' inboxes. Audit entries stay, but any summary
quoting the subject is cleared. The request record itself is kept as
evidence that the erasure was carried out.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import UTC, datetime

import structlog
from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from src.core.audit import AuditService
from src.core.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from src.core.policy import Capability, RoleResolver
from src.models.application import UserAppRelation
from src.models.audit import AuditLog
from src.models.gdpr_request import GDPRRequestRecord, RequestStatus, RequestType
from src.models.message import Message
from src.models.notification import Notification, NotificationKind
from src.models.user import User
from src.notifications.dispatcher import NotificationDispatcher, get_dispatcher
from src.services.associations import AssociationDirectory
from src.services.consent_ledger import ConsentLedger

log = structlog.get_logger(__name__)

_MAX_TEXT_LENGTH = 10_000


@dataclass
class ErasureResult:
    """What the delete_everything cascade removed."""

    subject_id: uuid.UUID
    consents_erased: int
    messages_deleted: int
    notifications_deleted: int
    requests_deleted: int

    def as_dict(self) -> dict[str, str | int]:
        return {
            "subject_id": str(self.subject_id),
            "consents_erased": self.consents_erased,
            "messages_deleted": self.messages_deleted,
            "notifications_deleted": self.notifications_deleted,
            "requests_deleted": self.requests_deleted,
        }


def _parse_request_type(value: str | RequestType) -> RequestType:
    try:
        return RequestType(value)
    except ValueError:
        allowed = ", ".join(t.value for t in RequestType)
        raise ValidationError(f"Unknown request type {value!r}; expected one of: {allowed}") from None


def _clean_text(value: str | None, field: str) -> str | None:
    if value is None:
        return None
    value = value.strip()
    if len(value) > _MAX_TEXT_LENGTH:
        raise ValidationError(f"{field} exceeds {_MAX_TEXT_LENGTH} characters")
    return value or None


class GDPRWorkflow:
    """
    Usage:
        workflow = GDPRWorkflow(db)
        request = await workflow.submit(alice.id, app.id, RequestType.ACCESS)
        await workflow.respond(bob.id, request.id, "here is your data")
    """

    def __init__(self, db: AsyncSession, notifier: NotificationDispatcher | None = None) -> None:
        self._db = db
        self._notifier = notifier
        self._roles = RoleResolver(db)
        self._associations = AssociationDirectory(db)
        self._audit = AuditService(db)

    @property
    def _dispatcher(self) -> NotificationDispatcher:
        return self._notifier or get_dispatcher()

    async def submit(
        self,
        subject_id: uuid.UUID,
        application_id: uuid.UUID,
        request_type: str | RequestType,
        *,
        details: str | None = None,
        other: str | None = None,
    ) -> GDPRRequestRecord:
        """File a new request in state ``pending``.

        Raises ValidationError if the subject does not use the application.
        """
        subject = await self._roles.require(subject_id, Capability.REQUEST_SUBMIT)
        kind = _parse_request_type(request_type)
        await self._associations.require_association(subject.id, application_id)

        record = GDPRRequestRecord(
            subject_id=subject.id,
            application_id=application_id,
            request_type=kind,
            status=RequestStatus.PENDING,
            details=_clean_text(details, "details"),
            other=_clean_text(other, "other"),
            created_at=datetime.now(UTC),
        )
        self._db.add(record)
        await self._db.flush()

        await self._audit.log(
            actor_id=subject.id,
            action="gdpr.submit",
            resource_type="gdpr_request",
            resource_id=record.id,
            extra={
                "request_type": kind.value,
                "application_id": str(application_id),
                "has_details": record.details is not None,
            },
        )

        for staff in await self._associations.staff_of(application_id):
            self._dispatcher.notify_on_commit(
                self._db,
                staff.id,
                NotificationKind.REQUEST_SUBMITTED,
                {
                    "sender_id": subject.id,
                    "object_id": record.id,
                    "description": f"{subject.name or subject.username} filed a {kind.value} request",
                },
            )

        log.info(
            "gdpr.request_submitted",
            request_id=str(record.id),
            subject_id=str(subject.id),
            application_id=str(application_id),
            request_type=kind.value,
        )
        return record

    async def respond(
        self,
        responder_id: uuid.UUID,
        request_id: uuid.UUID,
        response_text: str,
    ) -> GDPRRequestRecord:
        """Answer a pending request and move it to ``handled``.

        Raises:
            NotFoundError: unknown request id
            AuthorizationError: responder is not a Controller/DPO of the app
            ConflictError: the request is already handled
        """
        responder = await self._roles.resolve_user(responder_id)
        text = _clean_text(response_text, "response")
        if not text:
            raise ValidationError("Response text must not be empty")

        record = await self._load_for_update(request_id)
        await self._check_responder(responder, record)

        if record.status != RequestStatus.PENDING:
            log.info(
                "gdpr.respond_conflict",
                request_id=str(record.id),
                responder_id=str(responder.id),
                status=record.status,
            )
            raise ConflictError(f"Request {record.id} is already {record.status}")

        record.status = RequestStatus.HANDLED
        record.response = text
        record.responded_by = responder.id
        record.responded_at = datetime.now(UTC)
        try:
            await self._db.flush()
        except StaleDataError as exc:
            log.info("gdpr.respond_stale", request_id=str(record.id), responder_id=str(responder.id))
            raise ConflictError(f"Request {record.id} was handled concurrently") from exc

        erasure: ErasureResult | None = None
        if record.request_type == RequestType.DELETE_EVERYTHING:
            erasure = await self._delete_everything(record)

        await self._audit.log(
            actor_id=responder.id,
            action="gdpr.respond",
            resource_type="gdpr_request",
            resource_id=record.id,
            extra={
                "request_type": record.request_type,
                "response_length": len(text),
                "erasure": erasure.as_dict() if erasure else None,
            },
        )

        self._dispatcher.notify_on_commit(
            self._db,
            record.subject_id,
            NotificationKind.REQUEST_STATUS_CHANGED,
            {
                "sender_id": responder.id,
                "object_id": record.id,
                "description": f"Your {record.request_type} request has been handled",
                "status": record.status,
            },
        )
        log.info(
            "gdpr.request_handled",
            request_id=str(record.id),
            responder_id=str(responder.id),
            request_type=record.request_type,
        )
        return record

    async def get(self, viewer_id: uuid.UUID, request_id: uuid.UUID) -> GDPRRequestRecord:
        """Read one request; visible to its subject and to the app's staff."""
        viewer = await self._roles.resolve_user(viewer_id)
        record = await self._db.get(GDPRRequestRecord, request_id)
        if record is None:
            raise NotFoundError(f"GDPR request {request_id} not found")
        if viewer.is_subject:
            if record.subject_id != viewer.id:
                raise AuthorizationError("Request belongs to another subject")
        else:
            await self._associations.require_association(
                viewer.id, record.application_id, error=AuthorizationError
            )
        return record

    async def list_for_user(
        self,
        user_id: uuid.UUID,
        *,
        status: RequestStatus | None = None,
        application_id: uuid.UUID | None = None,
    ) -> list[GDPRRequestRecord]:
        """Subjects get their own requests, staff get their applications' ones."""
        user = await self._roles.resolve_user(user_id)
        stmt = select(GDPRRequestRecord)
        if user.is_subject:
            stmt = stmt.where(GDPRRequestRecord.subject_id == user.id)
        else:
            stmt = stmt.join(
                UserAppRelation,
                UserAppRelation.application_id == GDPRRequestRecord.application_id,
            ).where(UserAppRelation.user_id == user.id)
        if status is not None:
            stmt = stmt.where(GDPRRequestRecord.status == status)
        if application_id is not None:
            stmt = stmt.where(GDPRRequestRecord.application_id == application_id)
        result = await self._db.execute(stmt.order_by(GDPRRequestRecord.created_at.desc()))
        return list(result.scalars().all())

    async def _load_for_update(self, request_id: uuid.UUID) -> GDPRRequestRecord:
        result = await self._db.execute(
            select(GDPRRequestRecord)
            .where(GDPRRequestRecord.id == request_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        record = result.scalar_one_or_none()
        if record is None:
            raise NotFoundError(f"GDPR request {request_id} not found")
        return record

    async def _check_responder(self, responder: User, record: GDPRRequestRecord) -> None:
        await self._roles.require(responder.id, Capability.REQUEST_RESPOND)
        await self._associations.require_association(
            responder.id, record.application_id, error=AuthorizationError
        )

    async def _delete_everything(self, record: GDPRRequestRecord) -> ErasureResult:
        subject_id = record.subject_id
        consents = await ConsentLedger(self._db).erase_subject(subject_id)

        message_ids = list(
            (
                await self._db.execute(
                    select(Message.id).where(
                        or_(Message.sender_id == subject_id, Message.recipient_id == subject_id)
                    )
                )
            ).scalars()
        )
        request_ids = list(
            (
                await self._db.execute(
                    select(GDPRRequestRecord.id).where(
                        GDPRRequestRecord.subject_id == subject_id,
                        GDPRRequestRecord.id != record.id,
                    )
                )
            ).scalars()
        )
        erased_keys = [str(i) for i in message_ids + request_ids]

        # Notifications caused by the subject sit in other users' inboxes and
        # may quote the subject's messages.
        notification_filter = or_(
            Notification.recipient_id == subject_id,
            Notification.sender_id == subject_id,
        )
        if erased_keys:
            notification_filter = or_(notification_filter, Notification.object_id.in_(erased_keys))
        notifications = await self._db.execute(delete(Notification).where(notification_filter))
        messages = await self._db.execute(delete(Message).where(Message.id.in_(message_ids)))
        requests = await self._db.execute(
            delete(GDPRRequestRecord).where(GDPRRequestRecord.id.in_(request_ids))
        )

        # The audit trail itself is kept; only free text tied to the subject goes.
        audit_filter = AuditLog.actor_id == subject_id
        if erased_keys:
            audit_filter = or_(audit_filter, AuditLog.resource_id.in_(erased_keys))
        await self._db.execute(
            update(AuditLog)
            .where(audit_filter, AuditLog.summary.is_not(None))
            .values(summary=None)
            .execution_options(synchronize_session=False)
        )
        await self._db.flush()

        result = ErasureResult(
            subject_id=subject_id,
            consents_erased=consents,
            messages_deleted=messages.rowcount or 0,
            notifications_deleted=notifications.rowcount or 0,
            requests_deleted=requests.rowcount or 0,
        )
        log.info(
            "gdpr.delete_everything_completed",
            request_id=str(record.id),
            subject_id=str(subject_id),
            consents=result.consents_erased,
            messages=result.messages_deleted,
            notifications=result.notifications_deleted,
            requests=result.requests_deleted,
        )
        return result

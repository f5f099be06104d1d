"""Messaging relay - point-to-point messages between users of an application.

Rules:
- sender and recipient must both belong to the application the message is
  sent under
- at least one side must be a Controller or DPO (Subjects are not each
  other's contacts)
- one call stores exactly one message and notifies the recipient
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field

import structlog
from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.audit import AuditService
from src.core.errors import AuthorizationError, ValidationError
from src.core.policy import Capability, RoleResolver
from src.models.message import Message
from src.models.notification import NotificationKind
from src.models.user import User
from src.notifications.dispatcher import NotificationDispatcher, get_dispatcher
from src.services.associations import AssociationDirectory

log = structlog.get_logger(__name__)

_MAX_BODY_LENGTH = 10_000
_PREVIEW_CHARS = 80


@dataclass
class Conversation:
    """All messages exchanged with one contact, oldest first."""

    contact: User
    messages: list[Message] = field(default_factory=list)

    @property
    def last_message(self) -> Message | None:
        return self.messages[-1] if self.messages else None


class MessagingRelay:
    def __init__(self, db: AsyncSession, notifier: NotificationDispatcher | None = None) -> None:
        self._db = db
        self._notifier = notifier
        self._roles = RoleResolver(db)
        self._associations = AssociationDirectory(db)
        self._audit = AuditService(db)

    @property
    def _dispatcher(self) -> NotificationDispatcher:
        return self._notifier or get_dispatcher()

    async def send(
        self,
        sender_id: uuid.UUID,
        recipient_id: uuid.UUID,
        application_id: uuid.UUID,
        body: str,
    ) -> Message:
        text = (body or "").strip()
        if not text:
            raise ValidationError("Message body must not be empty")
        if len(text) > _MAX_BODY_LENGTH:
            raise ValidationError(f"Message body exceeds {_MAX_BODY_LENGTH} characters")
        if sender_id == recipient_id:
            raise ValidationError("Cannot send a message to yourself")

        sender = await self._roles.require(sender_id, Capability.MESSAGE_SEND)
        recipient = await self._roles.resolve_user(recipient_id)

        if sender.is_subject and recipient.is_subject:
            raise AuthorizationError("Subjects can only message Controllers and DPOs")
        if not await self._associations.share_application(sender.id, recipient.id, application_id):
            log.info(
                "message.not_shared",
                sender_id=str(sender.id),
                recipient_id=str(recipient.id),
                application_id=str(application_id),
            )
            raise AuthorizationError("Sender and recipient do not share this application")

        message = Message(
            sender_id=sender.id,
            recipient_id=recipient.id,
            application_id=application_id,
            body=text,
        )
        self._db.add(message)
        await self._db.flush()

        await self._audit.log(
            actor_id=sender.id,
            action="message.send",
            resource_type="message",
            resource_id=message.id,
            extra={"recipient_id": str(recipient.id), "length": len(text)},
        )
        preview = text if len(text) <= _PREVIEW_CHARS else text[:_PREVIEW_CHARS] + "..."
        self._dispatcher.notify_on_commit(
            self._db,
            recipient.id,
            NotificationKind.MESSAGE_RECEIVED,
            {
                "sender_id": sender.id,
                "object_id": message.id,
                "description": f"{sender.name or sender.username}: {preview}",
            },
        )
        log.info(
            "message.sent",
            message_id=str(message.id),
            sender_id=str(sender.id),
            recipient_id=str(recipient.id),
        )
        return message

    async def conversation(self, user_id: uuid.UUID, other_id: uuid.UUID) -> list[Message]:
        """Messages between two users, oldest first."""
        user = await self._roles.require(user_id, Capability.CONTACTS_READ)
        result = await self._db.execute(
            select(Message)
            .where(
                or_(
                    and_(Message.sender_id == user.id, Message.recipient_id == other_id),
                    and_(Message.sender_id == other_id, Message.recipient_id == user.id),
                )
            )
            .order_by(Message.created_at)
        )
        return list(result.scalars().all())

    async def conversations(self, user_id: uuid.UUID) -> list[Conversation]:
        """Every message of the user grouped by contact, most recent first."""
        user = await self._roles.require(user_id, Capability.CONTACTS_READ)
        result = await self._db.execute(
            select(Message)
            .where(or_(Message.sender_id == user.id, Message.recipient_id == user.id))
            .order_by(Message.created_at)
        )

        grouped: dict[uuid.UUID, list[Message]] = {}
        last_seen: dict[uuid.UUID, int] = {}
        for position, message in enumerate(result.scalars().all()):
            other = message.recipient_id if message.sender_id == user.id else message.sender_id
            grouped.setdefault(other, []).append(message)
            last_seen[other] = position
        if not grouped:
            return []

        contacts = await self._db.execute(select(User).where(User.id.in_(list(grouped))))
        by_id = {contact.id: contact for contact in contacts.scalars().all()}
        ordered = sorted(grouped, key=lambda contact_id: last_seen[contact_id], reverse=True)
        return [
            Conversation(contact=by_id[contact_id], messages=grouped[contact_id])
            for contact_id in ordered
            if contact_id in by_id
        ]

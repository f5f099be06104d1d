"""Notification delivery channels.

Each channel turns a NotificationEvent into one side effect:
- InAppChannel: a Notification row in the recipient's inbox
- EmailChannel: a plain-text mail via aiosmtplib (only when SMTP is configured)
- WebhookChannel: an HTTP POST of the event as JSON via httpx
- LogChannel: a structured log entry, used when nothing else is configured

Channels raise on failure. Retrying, logging and dead-lettering are the
dispatcher's job, not theirs.
"""

from __future__ import annotations

import email.mime.text
import email.utils
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol

import aiosmtplib
import httpx
import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import Settings
from src.models.notification import Notification, NotificationKind
from src.models.user import User

log = structlog.get_logger(__name__)


_SUBJECT_LINES: dict[str, str] = {
    NotificationKind.MESSAGE_RECEIVED: "You have a new message",
    NotificationKind.PRIVACY_NOTICE_UPDATED: "A privacy notice you rely on has changed",
    NotificationKind.REQUEST_SUBMITTED: "New GDPR request to handle",
    NotificationKind.REQUEST_STATUS_CHANGED: "Your GDPR request has been answered",
}


@dataclass
class NotificationEvent:
    """A notification on its way from the dispatcher queue to the channels."""

    user_id: uuid.UUID
    kind: str
    payload: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def description(self) -> str:
        return str(self.payload.get("description") or _SUBJECT_LINES.get(self.kind, self.kind))

    def as_json(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": str(self.user_id),
            "kind": self.kind,
            "description": self.description,
            "payload": {k: str(v) if isinstance(v, uuid.UUID) else v for k, v in self.payload.items()},
            "created_at": self.created_at.isoformat(),
        }


class Channel(Protocol):
    name: str

    async def deliver(self, event: NotificationEvent) -> None: ...


class InAppChannel:
    """Persists the event as a Notification row, in its own session."""

    name = "in_app"

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def deliver(self, event: NotificationEvent) -> None:
        sender_id = event.payload.get("sender_id")
        object_id = event.payload.get("object_id")
        async with self._session_factory() as session:
            session.add(
                Notification(
                    recipient_id=event.user_id,
                    sender_id=uuid.UUID(str(sender_id)) if sender_id else None,
                    kind=event.kind,
                    description=event.description,
                    object_id=str(object_id) if object_id else None,
                    created_at=event.created_at,
                )
            )
            await session.commit()


class EmailChannel:
    """Sends a short plain-text mail to the recipient's address, if any."""

    name = "email"

    def __init__(
        self,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        self._settings = settings
        self._session_factory = session_factory

    async def deliver(self, event: NotificationEvent) -> None:
        async with self._session_factory() as session:
            user = await session.get(User, event.user_id)
        if user is None or not user.mail:
            log.debug("notification.email_skipped", user_id=str(event.user_id), reason="no_address")
            return

        cfg = self._settings
        message = email.mime.text.MIMEText(event.description, "plain", "utf-8")
        message["From"] = cfg.smtp_from
        message["To"] = user.mail
        message["Subject"] = _SUBJECT_LINES.get(event.kind, "Privacy dashboard notification")
        message["Date"] = email.utils.formatdate(localtime=True)
        message["Message-ID"] = email.utils.make_msgid()

        smtp_kwargs: dict[str, Any] = {
            "hostname": cfg.smtp_host,
            "port": cfg.smtp_port,
            "use_tls": cfg.smtp_use_tls,
        }
        if cfg.smtp_user:
            smtp_kwargs["username"] = cfg.smtp_user
        if cfg.smtp_password:
            smtp_kwargs["password"] = cfg.smtp_password.get_secret_value()

        await aiosmtplib.send(message, **smtp_kwargs)
        log.info("notification.email_sent", to=user.mail, kind=event.kind)


class WebhookChannel:
    name = "webhook"

    def __init__(self, url: str, *, timeout: float = 10.0) -> None:
        self._url = url
        self._timeout = timeout

    async def deliver(self, event: NotificationEvent) -> None:
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.post(self._url, json=event.as_json())
        response.raise_for_status()
        log.info("notification.webhook_sent", kind=event.kind, status=response.status_code)


class LogChannel:
    name = "log"

    async def deliver(self, event: NotificationEvent) -> None:
        log.info(
            "notification.logged",
            user_id=str(event.user_id),
            kind=event.kind,
            description=event.description,
        )


def channels_from_settings(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
) -> list[Channel]:
    """Build the channel list for the running app.

    The in-app inbox is always on; email and webhook are added when their
    settings are present.
    """
    channels: list[Channel] = [InAppChannel(session_factory)]
    if settings.smtp_host:
        channels.append(EmailChannel(settings, session_factory))
    if settings.webhook_url:
        channels.append(WebhookChannel(settings.webhook_url, timeout=settings.webhook_timeout_seconds))
    return channels

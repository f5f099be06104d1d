"""Privacy notice registry.

Notices are versioned per application: publish() always inserts version
N+1 and never edits an existing row, so every version a subject was ever
shown stays retrievable. Publishing notifies every Subject of the
application.

Controllers usually author notices from the standard template: a fixed list
of sections, each filled from one answer (see build_from_template()).
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.audit import AuditService
from src.core.errors import AuthorizationError, NotFoundError, ValidationError
from src.core.policy import Capability, RoleResolver
from src.models.application import Application, UserAppRelation
from src.models.notification import NotificationKind
from src.models.privacy_notice import PrivacyNotice
from src.notifications.dispatcher import NotificationDispatcher, get_dispatcher
from src.services.associations import AssociationDirectory

log = structlog.get_logger(__name__)

# (key, heading) in the order they appear in the rendered notice
TEMPLATE_SECTIONS: tuple[tuple[str, str], ...] = (
    ("data_collected", "What data do we collect?"),
    ("collection", "How do we collect the data?"),
    ("usage", "How will we use the data?"),
    ("storage", "How do we store your data?"),
    ("marketing", "Marketing"),
    ("rights", "What are the user data protection rights?"),
    ("cookies", "What are cookies?"),
    ("cookie_usage", "How do we use cookies?"),
    ("cookie_types", "What types of cookies do we use?"),
    ("cookie_management", "How to manage cookies"),
    ("other_websites", "Privacy policies of other websites"),
    ("changes", "Changes to our privacy policy"),
    ("contact", "How to contact us"),
    ("authority", "How to contact the appropriate authority"),
)

_TEMPLATE_KEYS = frozenset(key for key, _ in TEMPLATE_SECTIONS)


def build_from_template(answers: Mapping[str, str], *, title: str | None = None) -> str:
    """Render the standard notice; missing answers leave an empty section.

    Raises ValidationError for keys that are not template sections.
    """
    unknown = set(answers) - _TEMPLATE_KEYS
    if unknown:
        raise ValidationError(f"Unknown privacy notice sections: {', '.join(sorted(unknown))}")

    parts: list[str] = []
    if title:
        parts.append(f"# {title}\n")
    for key, heading in TEMPLATE_SECTIONS:
        body = (answers.get(key) or "").strip()
        parts.append(f"## {heading}\n\n{body}\n" if body else f"## {heading}\n")
    return "\n".join(parts)


class PrivacyNoticeRegistry:
    def __init__(self, db: AsyncSession, notifier: NotificationDispatcher | None = None) -> None:
        self._db = db
        self._notifier = notifier
        self._roles = RoleResolver(db)
        self._associations = AssociationDirectory(db)
        self._audit = AuditService(db)

    @property
    def _dispatcher(self) -> NotificationDispatcher:
        return self._notifier or get_dispatcher()

    async def publish(
        self,
        author_id: uuid.UUID,
        application_id: uuid.UUID,
        content: str,
    ) -> PrivacyNotice:
        """Publish a new version of the application's notice."""
        author = await self._roles.require(author_id, Capability.PRIVACY_NOTICE_PUBLISH)
        text = (content or "").strip()
        if not text:
            raise ValidationError("Privacy notice content must not be empty")
        app = await self._associations.get_application(application_id)
        await self._associations.require_association(
            author.id, app.id, error=AuthorizationError
        )

        # Lock the application row so concurrent publishers get distinct versions
        await self._db.execute(
            select(Application.id).where(Application.id == app.id).with_for_update()
        )
        result = await self._db.execute(
            select(func.max(PrivacyNotice.version)).where(PrivacyNotice.application_id == app.id)
        )
        version = (result.scalar_one_or_none() or 0) + 1

        notice = PrivacyNotice(
            application_id=app.id,
            version=version,
            content=text,
            published_by=author.id,
        )
        self._db.add(notice)
        await self._db.flush()

        await self._audit.log(
            actor_id=author.id,
            action="privacy_notice.publish",
            resource_type="privacy_notice",
            resource_id=notice.id,
            extra={"application_id": str(app.id), "version": version},
        )
        for subject in await self._associations.subjects_of(app.id):
            self._dispatcher.notify_on_commit(
                self._db,
                subject.id,
                NotificationKind.PRIVACY_NOTICE_UPDATED,
                {
                    "sender_id": author.id,
                    "object_id": notice.id,
                    "description": f"The privacy notice of {app.name} was updated (version {version})",
                },
            )
        log.info(
            "privacy_notice.published",
            application_id=str(app.id),
            version=version,
            author_id=str(author.id),
        )
        return notice

    async def latest(self, application_id: uuid.UUID) -> PrivacyNotice:
        result = await self._db.execute(
            select(PrivacyNotice)
            .where(PrivacyNotice.application_id == application_id)
            .order_by(PrivacyNotice.version.desc())
            .limit(1)
        )
        notice = result.scalar_one_or_none()
        if notice is None:
            raise NotFoundError(f"Application {application_id} has no privacy notice")
        return notice

    async def history(self, application_id: uuid.UUID) -> list[PrivacyNotice]:
        """All versions, newest first."""
        result = await self._db.execute(
            select(PrivacyNotice)
            .where(PrivacyNotice.application_id == application_id)
            .order_by(PrivacyNotice.version.desc())
        )
        return list(result.scalars().all())

    async def get(self, notice_id: uuid.UUID) -> PrivacyNotice:
        notice = await self._db.get(PrivacyNotice, notice_id)
        if notice is None:
            raise NotFoundError(f"Privacy notice {notice_id} not found")
        return notice

    async def for_user(self, user_id: uuid.UUID) -> list[PrivacyNotice]:
        """Latest notice of every application the user belongs to."""
        user = await self._roles.require(user_id, Capability.PRIVACY_NOTICE_READ)
        latest_versions = (
            select(
                PrivacyNotice.application_id,
                func.max(PrivacyNotice.version).label("version"),
            )
            .join(UserAppRelation, UserAppRelation.application_id == PrivacyNotice.application_id)
            .where(UserAppRelation.user_id == user.id)
            .group_by(PrivacyNotice.application_id)
            .subquery()
        )
        result = await self._db.execute(
            select(PrivacyNotice)
            .join(
                latest_versions,
                (PrivacyNotice.application_id == latest_versions.c.application_id)
                & (PrivacyNotice.version == latest_versions.c.version),
            )
            .order_by(PrivacyNotice.published_at.desc())
        )
        return list(result.scalars().all())

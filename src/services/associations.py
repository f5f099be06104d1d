"""User/application association directory.

Answers "who belongs to which application" for every other service:
request routing, messaging contacts and notice fan-out all go through here.

Contact rules:
- Subjects see the Controllers and DPOs of the applications they use
- Controllers and DPOs see everyone sharing at least one application
"""

from __future__ import annotations

import uuid

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from src.core.errors import NotFoundError, PrivacyDashboardError, ValidationError
from src.models.application import Application, UserAppRelation
from src.models.user import Role, User

log = structlog.get_logger(__name__)

_STAFF_ROLES = (Role.CONTROLLER, Role.DPO)


class AssociationDirectory:
    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def is_associated(self, user_id: uuid.UUID, application_id: uuid.UUID) -> bool:
        result = await self._db.execute(
            select(UserAppRelation.id).where(
                UserAppRelation.user_id == user_id,
                UserAppRelation.application_id == application_id,
            )
        )
        return result.first() is not None

    async def require_association(
        self,
        user_id: uuid.UUID,
        application_id: uuid.UUID,
        *,
        error: type[PrivacyDashboardError] = ValidationError,
    ) -> None:
        """Raise ``error`` unless the user belongs to the application."""
        if not await self.is_associated(user_id, application_id):
            log.info(
                "association.missing",
                user_id=str(user_id),
                application_id=str(application_id),
            )
            raise error(f"User {user_id} is not associated with application {application_id}")

    async def get_application(self, application_id: uuid.UUID) -> Application:
        app = await self._db.get(Application, application_id)
        if app is None:
            raise NotFoundError(f"Application {application_id} not found")
        return app

    async def applications_for(self, user_id: uuid.UUID) -> list[Application]:
        result = await self._db.execute(
            select(Application)
            .join(UserAppRelation, UserAppRelation.application_id == Application.id)
            .where(UserAppRelation.user_id == user_id)
            .order_by(Application.name)
        )
        return list(result.scalars().all())

    async def members(
        self,
        application_id: uuid.UUID,
        *,
        roles: tuple[Role, ...] | None = None,
    ) -> list[User]:
        stmt = (
            select(User)
            .join(UserAppRelation, UserAppRelation.user_id == User.id)
            .where(UserAppRelation.application_id == application_id)
        )
        if roles:
            stmt = stmt.where(User.role.in_([r.value for r in roles]))
        result = await self._db.execute(stmt.order_by(User.username))
        return list(result.scalars().all())

    async def staff_of(self, application_id: uuid.UUID) -> list[User]:
        """Controllers and DPOs responsible for the application."""
        return await self.members(application_id, roles=_STAFF_ROLES)

    async def subjects_of(self, application_id: uuid.UUID) -> list[User]:
        return await self.members(application_id, roles=(Role.SUBJECT,))

    async def contacts(self, user: User) -> list[User]:
        """Users sharing at least one application with ``user``."""
        mine = aliased(UserAppRelation)
        theirs = aliased(UserAppRelation)
        stmt = (
            select(User)
            .join(theirs, theirs.user_id == User.id)
            .join(mine, mine.application_id == theirs.application_id)
            .where(mine.user_id == user.id, User.id != user.id)
            .distinct()
            .order_by(User.username)
        )
        if user.role == Role.SUBJECT:
            stmt = stmt.where(User.role.in_([r.value for r in _STAFF_ROLES]))
        result = await self._db.execute(stmt)
        return list(result.scalars().all())

    async def common_applications(
        self,
        user_id: uuid.UUID,
        other_id: uuid.UUID,
    ) -> list[Application]:
        mine = aliased(UserAppRelation)
        theirs = aliased(UserAppRelation)
        result = await self._db.execute(
            select(Application)
            .join(mine, mine.application_id == Application.id)
            .join(theirs, theirs.application_id == Application.id)
            .where(mine.user_id == user_id, theirs.user_id == other_id)
            .order_by(Application.name)
        )
        return list(result.scalars().all())

    async def share_application(
        self,
        user_id: uuid.UUID,
        other_id: uuid.UUID,
        application_id: uuid.UUID,
    ) -> bool:
        return await self.is_associated(user_id, application_id) and await self.is_associated(
            other_id, application_id
        )

"""User and application provisioning, demo accounts and password login.

The dashboard has no self-registration: accounts and applications are
created by operators (scripts/seed.py) or, in dev, by the demo seeding that
runs on startup.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.auth.tokens import hash_password, verify_password
from src.core.audit import AuditService
from src.core.errors import AuthorizationError, ValidationError
from src.models.application import Application, UserAppRelation
from src.models.user import Role, User

log = structlog.get_logger(__name__)

DEMO_APPLICATION = "Smart Home Hub"

# username -> (role, display name); the password equals the username
DEMO_ACCOUNTS: dict[str, tuple[Role, str]] = {
    "UserSubject": (Role.SUBJECT, "Demo Subject"),
    "UserController": (Role.CONTROLLER, "Demo Controller"),
    "UserDPO": (Role.DPO, "Demo DPO"),
}


@dataclass
class DemoWorld:
    application: Application
    users: dict[str, User]


class ProvisioningService:
    def __init__(self, db: AsyncSession) -> None:
        self._db = db
        self._audit = AuditService(db)

    async def get_user_by_username(self, username: str) -> User | None:
        result = await self._db.execute(select(User).where(User.username == username))
        return result.scalar_one_or_none()

    async def create_user(
        self,
        *,
        username: str,
        role: Role | str,
        password: str,
        name: str | None = None,
        mail: str | None = None,
    ) -> User:
        username = (username or "").strip()
        if not username:
            raise ValidationError("Username must not be empty")
        if not password:
            raise ValidationError("Password must not be empty")
        if await self.get_user_by_username(username) is not None:
            raise ValidationError(f"Username {username!r} is already taken")

        user = User(
            username=username,
            role=role,
            password_hash=hash_password(password),
            name=name,
            mail=mail,
        )
        self._db.add(user)
        await self._db.flush()
        await self._audit.log(
            action="user.create",
            resource_type="user",
            resource_id=user.id,
            extra={"role": user.role},
        )
        log.info("provisioning.user_created", user_id=str(user.id), role=user.role)
        return user

    async def create_application(self, name: str, description: str | None = None) -> Application:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Application name must not be empty")
        existing = await self._db.execute(select(Application).where(Application.name == name))
        if existing.scalar_one_or_none() is not None:
            raise ValidationError(f"Application {name!r} already exists")

        app = Application(name=name, description=description)
        self._db.add(app)
        await self._db.flush()
        await self._audit.log(action="application.create", resource_type="application", resource_id=app.id)
        log.info("provisioning.application_created", application_id=str(app.id), name=name)
        return app

    async def associate(self, user_id: uuid.UUID, application_id: uuid.UUID) -> UserAppRelation:
        """Link a user to an application; linking twice is a no-op."""
        result = await self._db.execute(
            select(UserAppRelation).where(
                UserAppRelation.user_id == user_id,
                UserAppRelation.application_id == application_id,
            )
        )
        relation = result.scalar_one_or_none()
        if relation is not None:
            return relation

        relation = UserAppRelation(user_id=user_id, application_id=application_id)
        self._db.add(relation)
        await self._db.flush()
        log.info(
            "provisioning.user_associated",
            user_id=str(user_id),
            application_id=str(application_id),
        )
        return relation

    async def seed_demo_accounts(self) -> DemoWorld:
        """Create the demo accounts and application if missing. Idempotent."""
        result = await self._db.execute(
            select(Application).where(Application.name == DEMO_APPLICATION)
        )
        app = result.scalar_one_or_none()
        if app is None:
            app = await self.create_application(
                DEMO_APPLICATION,
                "Demo IoT application shared by the demo accounts",
            )

        users: dict[str, User] = {}
        for username, (role, display_name) in DEMO_ACCOUNTS.items():
            user = await self.get_user_by_username(username)
            if user is None:
                user = await self.create_user(
                    username=username,
                    role=role,
                    password=username,
                    name=display_name,
                )
            await self.associate(user.id, app.id)
            users[username] = user

        log.info("provisioning.demo_seeded", application_id=str(app.id))
        return DemoWorld(application=app, users=users)

    async def authenticate(self, username: str, password: str) -> User:
        """Return the user for valid credentials, else AuthorizationError."""
        user = await self.get_user_by_username(username)
        if user is None or not verify_password(password, user.password_hash):
            log.info("auth.login_failed", username=username)
            raise AuthorizationError("Invalid username or password")
        if not user.is_active:
            raise AuthorizationError("User account is deactivated")
        log.info("auth.login_succeeded", user_id=str(user.id))
        return user

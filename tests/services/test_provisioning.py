"""Tests for user provisioning, demo seeding and password login."""

from __future__ import annotations

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.errors import AuthorizationError, ValidationError
from src.models.application import UserAppRelation
from src.models.user import Role, User
from src.services.associations import AssociationDirectory
from src.services.provisioning import DEMO_ACCOUNTS, DEMO_APPLICATION, ProvisioningService
from tests.conftest import TEST_PASSWORD


class TestCreateUser:
    async def test_create_user_hashes_password(self, db: AsyncSession) -> None:
        user = await ProvisioningService(db).create_user(
            username="erin", role=Role.DPO, password="s3cret", mail="erin@example.com"
        )
        assert user.role == Role.DPO
        assert user.password_hash != "s3cret"
        assert user.password_hash.startswith("$2")

    async def test_duplicate_username(self, db: AsyncSession, world) -> None:
        with pytest.raises(ValidationError):
            await ProvisioningService(db).create_user(username="alice", role=Role.SUBJECT, password="x")

    async def test_invalid_role(self, db: AsyncSession) -> None:
        with pytest.raises(ValidationError):
            await ProvisioningService(db).create_user(username="mallory", role="root", password="x")

    async def test_blank_username(self, db: AsyncSession) -> None:
        with pytest.raises(ValidationError):
            await ProvisioningService(db).create_user(username="  ", role=Role.SUBJECT, password="x")


class TestApplications:
    async def test_duplicate_application(self, db: AsyncSession, world) -> None:
        with pytest.raises(ValidationError):
            await ProvisioningService(db).create_application("Fitness Tracker")

    async def test_associate_is_idempotent(self, db: AsyncSession, world) -> None:
        service = ProvisioningService(db)
        first = await service.associate(world.carol.id, world.app_x.id)
        second = await service.associate(world.carol.id, world.app_x.id)
        assert first.id == second.id
        assert await AssociationDirectory(db).is_associated(world.carol.id, world.app_x.id)


class TestDemoSeed:
    async def test_seed_creates_accounts(self, db: AsyncSession) -> None:
        demo = await ProvisioningService(db).seed_demo_accounts()
        await db.commit()

        assert demo.application.name == DEMO_APPLICATION
        assert set(demo.users) == set(DEMO_ACCOUNTS)
        assert demo.users["UserDPO"].role == Role.DPO
        members = await AssociationDirectory(db).members(demo.application.id)
        assert len(members) == 3

    async def test_seed_is_idempotent(self, db: AsyncSession) -> None:
        service = ProvisioningService(db)
        await service.seed_demo_accounts()
        await service.seed_demo_accounts()
        await db.commit()

        users = await db.execute(select(func.count()).select_from(User))
        relations = await db.execute(select(func.count()).select_from(UserAppRelation))
        assert users.scalar_one() == 3
        assert relations.scalar_one() == 3

    async def test_demo_password_is_username(self, db: AsyncSession) -> None:
        service = ProvisioningService(db)
        await service.seed_demo_accounts()
        user = await service.authenticate("UserController", "UserController")
        assert user.role == Role.CONTROLLER


class TestAuthenticate:
    async def test_valid_credentials(self, db: AsyncSession, world) -> None:
        user = await ProvisioningService(db).authenticate("alice", TEST_PASSWORD)
        assert user.id == world.alice.id

    async def test_wrong_password(self, db: AsyncSession, world) -> None:
        with pytest.raises(AuthorizationError):
            await ProvisioningService(db).authenticate("alice", "wrong")

    async def test_unknown_user(self, db: AsyncSession, world) -> None:
        with pytest.raises(AuthorizationError):
            await ProvisioningService(db).authenticate("nobody", TEST_PASSWORD)

    async def test_inactive_user(self, db: AsyncSession, world) -> None:
        world.dave.is_active = False
        await db.commit()
        with pytest.raises(AuthorizationError):
            await ProvisioningService(db).authenticate("dave", TEST_PASSWORD)

"""
Shared test fixtures for pytest.

Every test gets its own SQLite database file (aiosqlite) with the full
schema, so services run against real SQL rather than session mocks.

Fixtures:
- settings: Test configuration pointing at the per-test database
- engine / session_factory / db: Async engine, session factory and one session
- world: Seeded users and applications (see World)
- recorder / dispatcher: A running NotificationDispatcher whose only channel
  records events in memory
- test_app / client: FastAPI app with the DB and dispatcher dependencies
  overridden, and an httpx client talking to it over ASGI
- auth_headers: Helper building Bearer headers for a user
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from dataclasses import dataclass
from pathlib import Path

import httpx
import pytest
from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from src.auth.tokens import create_access_token, hash_password
from src.config import Environment, Settings, get_settings
from src.database import Base, build_session_factory, get_db_session
from src.models.application import Application, UserAppRelation
from src.models.user import Role, User
from src.notifications.channels import NotificationEvent
from src.notifications.dispatcher import NotificationDispatcher, get_dispatcher, set_dispatcher

TEST_JWT_SECRET = "test-jwt-secret-for-unit-tests"
TEST_PASSWORD = "correct horse battery staple"

# bcrypt is deliberately slow; hash once for every seeded user
_PASSWORD_HASH = hash_password(TEST_PASSWORD)


# ------------------------------------------------------------------ #
# Settings
# ------------------------------------------------------------------ #

@pytest.fixture(autouse=True)
def _clear_settings_cache():
    """Clear the lru_cache on get_settings so test overrides take effect."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Test environment settings with safe defaults."""
    return Settings(
        environment=Environment.TEST,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'dashboard.db'}",
        jwt_secret=TEST_JWT_SECRET,
        seed_demo_accounts=False,
        db_echo_sql=False,
    )


# ------------------------------------------------------------------ #
# Database
# ------------------------------------------------------------------ #

@pytest.fixture
async def engine(settings: Settings) -> AsyncGenerator[AsyncEngine, None]:
    import src.models  # noqa: F401

    engine = create_async_engine(settings.database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(engine)


@pytest.fixture
async def db(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# ------------------------------------------------------------------ #
# Seeded users and applications
# ------------------------------------------------------------------ #

@dataclass
class World:
    """
    app_x ("Fitness Tracker"): alice (subject), dave (subject), bob (controller)
    app_y ("Smart Home Hub"):  alice (subject), carol (dpo)

    carol is a DPO who is NOT associated with app_x.
    """

    app_x: Application
    app_y: Application
    alice: User
    bob: User
    carol: User
    dave: User


async def _user(db: AsyncSession, username: str, role: Role) -> User:
    user = User(
        username=username,
        name=username.capitalize(),
        mail=f"{username}@example.com",
        role=role,
        password_hash=_PASSWORD_HASH,
    )
    db.add(user)
    return user


@pytest.fixture
async def world(db: AsyncSession) -> World:
    app_x = Application(name="Fitness Tracker", description="Step counter and heart rate")
    app_y = Application(name="Smart Home Hub", description="Thermostat and door locks")
    db.add_all([app_x, app_y])

    alice = await _user(db, "alice", Role.SUBJECT)
    bob = await _user(db, "bob", Role.CONTROLLER)
    carol = await _user(db, "carol", Role.DPO)
    dave = await _user(db, "dave", Role.SUBJECT)
    await db.flush()

    for user, app in (
        (alice, app_x),
        (dave, app_x),
        (bob, app_x),
        (alice, app_y),
        (carol, app_y),
    ):
        db.add(UserAppRelation(user_id=user.id, application_id=app.id))
    await db.commit()
    return World(app_x=app_x, app_y=app_y, alice=alice, bob=bob, carol=carol, dave=dave)


# ------------------------------------------------------------------ #
# Notifications
# ------------------------------------------------------------------ #

class RecordingChannel:
    """Channel that keeps every delivered event in memory."""

    name = "recording"

    def __init__(self) -> None:
        self.events: list[NotificationEvent] = []

    async def deliver(self, event: NotificationEvent) -> None:
        self.events.append(event)

    def kinds_for(self, user_id) -> list[str]:
        return [e.kind for e in self.events if e.user_id == user_id]


@pytest.fixture
def recorder() -> RecordingChannel:
    return RecordingChannel()


@pytest.fixture
async def dispatcher(recorder: RecordingChannel) -> AsyncGenerator[NotificationDispatcher, None]:
    dispatcher = NotificationDispatcher([recorder], workers=1, retry_delay=0)
    await dispatcher.start()
    set_dispatcher(dispatcher)
    yield dispatcher
    await dispatcher.shutdown(drain=True, timeout=2.0)
    set_dispatcher(None)


# ------------------------------------------------------------------ #
# HTTP
# ------------------------------------------------------------------ #

@pytest.fixture
def test_app(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    dispatcher: NotificationDispatcher,
) -> FastAPI:
    """FastAPI app wired to the per-test database and dispatcher.

    The lifespan does not run under ASGITransport, so everything it would
    set up is provided through dependency overrides instead.
    """
    from src.main import create_app

    app = create_app()

    async def _db_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db_session] = _db_session
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    return app


@pytest.fixture
async def client(test_app: FastAPI) -> AsyncGenerator[httpx.AsyncClient, None]:
    transport = httpx.ASGITransport(app=test_app)  # type: ignore[arg-type]
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac


@pytest.fixture
def auth_headers(settings: Settings) -> Callable[[User], dict[str, str]]:
    """Return a function building Bearer headers for a seeded user."""

    def _headers(user: User) -> dict[str, str]:
        token = create_access_token(user_id=user.id, role=user.role, name=user.name, settings=settings)
        return {"Authorization": f"Bearer {token}"}

    return _headers

"""Tests for the public health endpoints."""

from __future__ import annotations

import httpx
import pytest

from src.config import Settings
from src.database import close_db, init_db
from src.notifications.dispatcher import set_dispatcher


async def test_liveness(client: httpx.AsyncClient) -> None:
    response = await client.get("/health/live")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


async def test_ready_without_database(client: httpx.AsyncClient) -> None:
    response = await client.get("/health/ready")
    assert response.status_code == 503
    assert response.json()["status"] == "not_ready"


@pytest.fixture
async def initialized_db(settings: Settings):
    init_db(settings)
    yield
    await close_db()


async def test_ready(client: httpx.AsyncClient, initialized_db, dispatcher) -> None:
    response = await client.get("/health/ready")
    assert response.status_code == 200
    body = response.json()
    assert body["database"] == "ok"
    assert body["notifications"] == "ok"


async def test_ready_without_dispatcher(client: httpx.AsyncClient, initialized_db, dispatcher) -> None:
    set_dispatcher(None)
    response = await client.get("/health/ready")
    assert response.status_code == 503
    assert response.json()["notifications"] == "not_configured"

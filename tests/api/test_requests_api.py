"""End-to-end tests for the GDPR request endpoints.

Covers the full submit -> respond flow over HTTP, the error mapping
(422 / 403 / 404 / 409) and that a broken notification channel never
fails the request that triggered it.
"""

from __future__ import annotations

import uuid

import httpx
from fastapi import FastAPI

from src.models.notification import NotificationKind
from src.notifications.dispatcher import NotificationDispatcher, get_dispatcher


async def _submit(client: httpx.AsyncClient, headers: dict[str, str], app_id, request_type="access") -> httpx.Response:
    return await client.post(
        "/api/v1/requests",
        json={"application_id": str(app_id), "request_type": request_type, "details": "all of it"},
        headers=headers,
    )


async def test_submit_and_respond(client, world, auth_headers, dispatcher, recorder) -> None:
    submitted = await _submit(client, auth_headers(world.alice), world.app_x.id)
    assert submitted.status_code == 201
    body = submitted.json()
    assert body["status"] == "pending"
    request_id = body["id"]

    await dispatcher.join()
    assert recorder.kinds_for(world.bob.id) == [NotificationKind.REQUEST_SUBMITTED]

    listed = await client.get("/api/v1/requests", params={"status": "pending"}, headers=auth_headers(world.bob))
    assert [r["id"] for r in listed.json()] == [request_id]

    answered = await client.post(
        f"/api/v1/requests/{request_id}/response",
        json={"response": "here is your data"},
        headers=auth_headers(world.bob),
    )
    assert answered.status_code == 200
    assert answered.json()["status"] == "handled"
    assert answered.json()["responded_by"] == str(world.bob.id)

    await dispatcher.join()
    assert NotificationKind.REQUEST_STATUS_CHANGED in recorder.kinds_for(world.alice.id)

    fetched = await client.get(f"/api/v1/requests/{request_id}", headers=auth_headers(world.alice))
    assert fetched.json()["response"] == "here is your data"


async def test_second_response_conflicts(client, world, auth_headers) -> None:
    request_id = (await _submit(client, auth_headers(world.alice), world.app_x.id)).json()["id"]
    url = f"/api/v1/requests/{request_id}/response"

    first = await client.post(url, json={"response": "first"}, headers=auth_headers(world.bob))
    assert first.status_code == 200
    second = await client.post(url, json={"response": "second"}, headers=auth_headers(world.bob))
    assert second.status_code == 409
    assert second.json()["code"] == "conflict"

    fetched = await client.get(f"/api/v1/requests/{request_id}", headers=auth_headers(world.bob))
    assert fetched.json()["response"] == "first"


async def test_unassociated_dpo_forbidden(client, world, auth_headers) -> None:
    request_id = (await _submit(client, auth_headers(world.alice), world.app_x.id)).json()["id"]

    response = await client.post(
        f"/api/v1/requests/{request_id}/response",
        json={"response": "not mine"},
        headers=auth_headers(world.carol),
    )
    assert response.status_code == 403

    fetched = await client.get(f"/api/v1/requests/{request_id}", headers=auth_headers(world.alice))
    assert fetched.json()["status"] == "pending"


async def test_submit_unassociated_app(client, world, auth_headers) -> None:
    response = await _submit(client, auth_headers(world.dave), world.app_y.id)
    assert response.status_code == 422
    assert response.json()["code"] == "validation_error"


async def test_submit_unknown_type(client, world, auth_headers) -> None:
    response = await _submit(client, auth_headers(world.alice), world.app_x.id, request_type="forget_me")
    assert response.status_code == 422


async def test_unknown_request(client, world, auth_headers) -> None:
    response = await client.get(f"/api/v1/requests/{uuid.uuid4()}", headers=auth_headers(world.alice))
    assert response.status_code == 404


async def test_requires_authentication(client, world) -> None:
    response = await client.get("/api/v1/requests")
    assert response.status_code == 401


async def test_channel_failure_does_not_fail_submit(test_app: FastAPI, client, world, auth_headers) -> None:
    class BrokenChannel:
        name = "broken"

        async def deliver(self, event) -> None:
            raise ConnectionError("smtp down")

    broken = NotificationDispatcher([BrokenChannel()], max_retries=1, retry_delay=0)
    await broken.start()
    test_app.dependency_overrides[get_dispatcher] = lambda: broken
    try:
        response = await _submit(client, auth_headers(world.alice), world.app_x.id)
        await broken.join()
    finally:
        await broken.shutdown(drain=False)

    assert response.status_code == 201
    assert len(broken.dead_letters) == 1
    assert broken.dead_letters[0].channel == "broken"

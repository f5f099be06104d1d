"""End-to-end tests for the remaining dashboard endpoints.

Covers apps and contacts, consents, messages, privacy notices,
questionnaire submission and the notification inbox.
"""

from __future__ import annotations

import httpx
import pytest
from fastapi import FastAPI

from src.notifications.channels import InAppChannel
from src.notifications.dispatcher import NotificationDispatcher, get_dispatcher
from src.services.questionnaire import QUESTIONS


class TestApps:
    async def test_my_apps(self, client, world, auth_headers) -> None:
        response = await client.get("/api/v1/apps", headers=auth_headers(world.alice))
        assert [a["name"] for a in response.json()] == ["Fitness Tracker", "Smart Home Hub"]

    async def test_foreign_app_forbidden(self, client, world, auth_headers) -> None:
        response = await client.get(f"/api/v1/apps/{world.app_x.id}", headers=auth_headers(world.carol))
        assert response.status_code == 403

    async def test_members_hide_other_subjects(self, client, world, auth_headers) -> None:
        as_subject = await client.get(f"/api/v1/apps/{world.app_x.id}/members", headers=auth_headers(world.alice))
        assert [m["username"] for m in as_subject.json()] == ["bob"]

        as_staff = await client.get(f"/api/v1/apps/{world.app_x.id}/members", headers=auth_headers(world.bob))
        assert [m["username"] for m in as_staff.json()] == ["alice", "bob", "dave"]

    async def test_contacts(self, client, world, auth_headers) -> None:
        response = await client.get("/api/v1/contacts", headers=auth_headers(world.alice))
        assert [c["username"] for c in response.json()] == ["bob", "carol"]

        shared = await client.get(f"/api/v1/contacts/{world.bob.id}/apps", headers=auth_headers(world.alice))
        assert [a["name"] for a in shared.json()] == ["Fitness Tracker"]

    async def test_questionnaire(self, client, world, auth_headers) -> None:
        questions = await client.get("/api/v1/apps/questionnaire/questions", headers=auth_headers(world.bob))
        assert len(questions.json()) == len(QUESTIONS)
        assert questions.json()[2]["depends_on"] == 1

        answers = ["yes", "no", None, "yes", "no", None, "yes", "yes", "yes"]
        response = await client.put(
            f"/api/v1/apps/{world.app_x.id}/questionnaire",
            json={"answers": answers},
            headers=auth_headers(world.bob),
        )
        assert response.status_code == 200
        assert response.json()["vote"] == "green"
        assert response.json()["application"]["questionnaire_vote"] == "green"

        denied = await client.put(
            f"/api/v1/apps/{world.app_x.id}/questionnaire",
            json={"answers": answers},
            headers=auth_headers(world.alice),
        )
        assert denied.status_code == 403


class TestConsents:
    async def test_grant_list_revoke(self, client, world, auth_headers) -> None:
        headers = auth_headers(world.alice)
        body = {"application_id": str(world.app_x.id), "purpose": "analytics"}

        granted = await client.post("/api/v1/consents", json=body, headers=headers)
        assert granted.status_code == 200
        assert granted.json()["granted"] is True
        again = await client.post("/api/v1/consents", json=body, headers=headers)
        assert again.status_code == 200

        listed = await client.get("/api/v1/consents", headers=headers)
        assert [(c["purpose"], c["granted"]) for c in listed.json()] == [("analytics", True)]

        revoked = await client.delete(
            "/api/v1/consents",
            params={"application_id": str(world.app_x.id), "purpose": "analytics"},
            headers=headers,
        )
        assert revoked.json()["granted"] is False

        history = await client.get("/api/v1/consents/history", headers=headers)
        assert [e["action"] for e in history.json()] == ["granted", "granted", "revoked"]

    async def test_revoke_unknown_purpose(self, client, world, auth_headers) -> None:
        response = await client.delete(
            "/api/v1/consents",
            params={"application_id": str(world.app_x.id), "purpose": "marketing"},
            headers=auth_headers(world.alice),
        )
        assert response.status_code == 404

    async def test_revoke_all(self, client, world, auth_headers) -> None:
        headers = auth_headers(world.alice)
        for purpose in ("analytics", "marketing"):
            await client.post(
                "/api/v1/consents",
                json={"application_id": str(world.app_x.id), "purpose": purpose},
                headers=headers,
            )
        response = await client.delete(f"/api/v1/consents/{world.app_x.id}", headers=headers)
        assert response.json()["revoked"] == ["analytics", "marketing"]

    async def test_staff_cannot_grant(self, client, world, auth_headers) -> None:
        response = await client.post(
            "/api/v1/consents",
            json={"application_id": str(world.app_x.id), "purpose": "analytics"},
            headers=auth_headers(world.bob),
        )
        assert response.status_code == 403


class TestMessages:
    async def test_send_and_read(self, client, world, auth_headers) -> None:
        sent = await client.post(
            "/api/v1/messages",
            json={"recipient_id": str(world.bob.id), "application_id": str(world.app_x.id), "body": "Hello"},
            headers=auth_headers(world.alice),
        )
        assert sent.status_code == 201

        conversations = await client.get("/api/v1/messages/conversations", headers=auth_headers(world.bob))
        assert conversations.json()[0]["contact"]["username"] == "alice"
        assert conversations.json()[0]["messages"][0]["body"] == "Hello"

        thread = await client.get(
            f"/api/v1/messages/conversations/{world.alice.id}",
            headers=auth_headers(world.bob),
        )
        assert [m["body"] for m in thread.json()] == ["Hello"]

    async def test_subject_to_subject_forbidden(self, client, world, auth_headers) -> None:
        response = await client.post(
            "/api/v1/messages",
            json={"recipient_id": str(world.dave.id), "application_id": str(world.app_x.id), "body": "hi"},
            headers=auth_headers(world.alice),
        )
        assert response.status_code == 403


class TestPrivacyNotices:
    async def test_publish_and_read(self, client, world, auth_headers) -> None:
        url = f"/api/v1/apps/{world.app_x.id}/privacy-notices"
        first = await client.post(url, json={"content": "Version one"}, headers=auth_headers(world.bob))
        assert first.status_code == 201
        second = await client.post(
            url,
            json={"sections": {"data_collected": "Steps", "contact": "dpo@example.com"}},
            headers=auth_headers(world.bob),
        )
        assert second.json()["version"] == 2
        assert "## What data do we collect?" in second.json()["content"]

        latest = await client.get(f"{url}/latest", headers=auth_headers(world.alice))
        assert latest.json()["version"] == 2
        history = await client.get(url, headers=auth_headers(world.alice))
        assert [n["version"] for n in history.json()] == [2, 1]

        one = await client.get(f"/api/v1/privacy-notices/{first.json()['id']}", headers=auth_headers(world.alice))
        assert one.json()["content"] == "Version one"

        mine = await client.get("/api/v1/privacy-notices", headers=auth_headers(world.dave))
        assert [n["version"] for n in mine.json()] == [2]

    @pytest.mark.parametrize("body", [{}, {"content": "x", "sections": {"usage": "y"}}])
    async def test_publish_needs_exactly_one_source(self, client, world, auth_headers, body) -> None:
        response = await client.post(
            f"/api/v1/apps/{world.app_x.id}/privacy-notices",
            json=body,
            headers=auth_headers(world.bob),
        )
        assert response.status_code == 422

    async def test_subject_cannot_publish(self, client, world, auth_headers) -> None:
        response = await client.post(
            f"/api/v1/apps/{world.app_x.id}/privacy-notices",
            json={"content": "mine"},
            headers=auth_headers(world.alice),
        )
        assert response.status_code == 403

    async def test_outsider_cannot_read_history(self, client, world, auth_headers) -> None:
        response = await client.get(
            f"/api/v1/apps/{world.app_x.id}/privacy-notices",
            headers=auth_headers(world.carol),
        )
        assert response.status_code == 403

    async def test_template(self, client, world, auth_headers) -> None:
        sections = await client.get("/api/v1/privacy-notices/template", headers=auth_headers(world.bob))
        assert len(sections.json()) == 14

        rendered = await client.post(
            "/api/v1/privacy-notices/template/render",
            json={"sections": {"usage": "Counting steps"}, "title": "Fitness Tracker"},
            headers=auth_headers(world.bob),
        )
        assert rendered.json()["content"].startswith("# Fitness Tracker")


class TestNotificationInbox:
    @pytest.fixture
    async def in_app(self, test_app: FastAPI, session_factory):
        dispatcher = NotificationDispatcher([InAppChannel(session_factory)], workers=1, retry_delay=0)
        await dispatcher.start()
        test_app.dependency_overrides[get_dispatcher] = lambda: dispatcher
        yield dispatcher
        await dispatcher.shutdown(drain=True, timeout=2.0)

    async def test_message_lands_in_inbox(self, client: httpx.AsyncClient, world, auth_headers, in_app) -> None:
        await client.post(
            "/api/v1/messages",
            json={"recipient_id": str(world.bob.id), "application_id": str(world.app_x.id), "body": "Ping"},
            headers=auth_headers(world.alice),
        )
        await in_app.join()

        headers = auth_headers(world.bob)
        inbox = await client.get("/api/v1/notifications", headers=headers)
        assert len(inbox.json()) == 1
        notification = inbox.json()[0]
        assert notification["kind"] == "message_received"
        assert notification["sender_id"] == str(world.alice.id)

        count = await client.get("/api/v1/notifications/unread-count", headers=headers)
        assert count.json() == {"unread": 1}

        marked = await client.patch(
            f"/api/v1/notifications/{notification['id']}",
            json={"is_read": True},
            headers=headers,
        )
        assert marked.json()["is_read"] is True
        count = await client.get("/api/v1/notifications/unread-count", headers=headers)
        assert count.json() == {"unread": 0}

        stolen = await client.delete(f"/api/v1/notifications/{notification['id']}", headers=auth_headers(world.alice))
        assert stolen.status_code == 403

        deleted = await client.delete(f"/api/v1/notifications/{notification['id']}", headers=headers)
        assert deleted.status_code == 204
        assert (await client.get("/api/v1/notifications", headers=headers)).json() == []

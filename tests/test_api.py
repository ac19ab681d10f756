"""HTTP routes: auth, alerts, events and chat history."""

import asyncio

import pytest
from fastapi.testclient import TestClient

from community_alert.main import create_app
from community_alert.services.rooms import community_room
from conftest import FakeSio


@pytest.fixture
def app(db_path):
    return create_app(db_path, sio=FakeSio())


@pytest.fixture
def client(app):
    return TestClient(app)


def register(client, username, community="oak", password="secret123"):
    response = client.post(
        "/api/auth/register",
        json={"username": username, "password": password, "community": community},
    )
    assert response.status_code == 200, response.text
    data = response.json()["data"]
    return {"id": data["id"], "headers": {"Authorization": f"Bearer {data['token']}"}}


def watch_community(app, sid, community):
    """Put a bare sid in a community room so it receives notifications."""
    asyncio.run(app.state.realtime.registry.join(community_room(community), sid))


def create_alert(client, headers, **overrides):
    body = {
        "title": "Water main break",
        "description": "Flooding on 3rd Ave",
        "category": "infrastructure",
        "severity": "high",
        "location": "3rd Ave",
        **overrides,
    }
    return client.post("/api/alerts", json=body, headers=headers)


def create_event(client, headers, **overrides):
    body = {
        "title": "Park cleanup",
        "description": "Bring gloves",
        "date": "2026-11-01T09:00:00",
        "location": "Oak park",
        "category": "cleanup",
        **overrides,
    }
    return client.post("/api/events", json=body, headers=headers)


class TestAuth:
    def test_register_login_me(self, client):
        user = register(client, "alice")

        me = client.get("/api/auth/me", headers=user["headers"]).json()
        assert me["data"]["username"] == "alice"
        assert me["data"]["community"] == "oak"

        response = client.post("/api/auth/login", json={"username": "alice", "password": "secret123"})
        assert response.status_code == 200
        assert response.json()["data"]["token"]

    def test_duplicate_username(self, client):
        register(client, "alice")
        response = client.post(
            "/api/auth/register", json={"username": "alice", "password": "secret123"}
        )
        assert response.status_code == 400
        assert response.json()["detail"] == "Username already taken"

    def test_concurrent_registration_of_same_name(self, app, client, monkeypatch):
        register(client, "alice")
        store = app.state.store

        async def nobody_found(kind, filter=None, sort=None, limit=None):
            # the other request has not committed yet when this one checks
            return []

        monkeypatch.setattr(store, "find", nobody_found)

        response = client.post(
            "/api/auth/register", json={"username": "alice", "password": "secret123"}
        )
        assert response.status_code == 400
        assert response.json()["detail"] == "Username already taken"

    def test_wrong_password(self, client):
        register(client, "alice")
        response = client.post("/api/auth/login", json={"username": "alice", "password": "nope-nope"})
        assert response.status_code == 401

    def test_me_without_token(self, client):
        assert client.get("/api/auth/me").json() == {"success": True, "data": None, "error": None}

    def test_protected_route_requires_token(self, client):
        assert client.get("/api/alerts").status_code == 401


class TestAlerts:
    def test_create_notifies_own_community_only(self, app, client):
        alice = register(client, "alice", "oak")
        watch_community(app, "oak-watcher", "oak")
        watch_community(app, "pine-watcher", "pine")

        response = create_alert(client, alice["headers"])

        assert response.status_code == 201
        alert = response.json()["data"]
        assert alert["community"] == "oak"
        assert alert["created_by"] == {"id": alice["id"], "username": "alice"}
        sio = app.state.sio
        assert sio.recipients("alert_broadcast") == {"oak-watcher"}
        assert sio.events_for("oak-watcher", "alert_broadcast")[0][1]["id"] == alert["id"]

    def test_list_is_scoped_to_community(self, client):
        alice = register(client, "alice", "oak")
        bob = register(client, "bob", "pine")
        create_alert(client, alice["headers"], title="First")
        create_alert(client, alice["headers"], title="Second")

        titles = [a["title"] for a in client.get("/api/alerts", headers=alice["headers"]).json()["data"]]
        assert titles == ["Second", "First"]
        assert client.get("/api/alerts", headers=bob["headers"]).json()["data"] == []

    def test_status_update_and_delete(self, app, client):
        alice = register(client, "alice", "oak")
        bob = register(client, "bob", "oak")
        watch_community(app, "oak-watcher", "oak")
        alert_id = create_alert(client, alice["headers"]).json()["data"]["id"]

        denied = client.patch(
            f"/api/alerts/{alert_id}/status", json={"status": "resolved"}, headers=bob["headers"]
        )
        assert denied.status_code == 403
        assert denied.json()["detail"] == "Only the alert creator can update this alert"

        updated = client.patch(
            f"/api/alerts/{alert_id}/status", json={"status": "resolved"}, headers=alice["headers"]
        )
        assert updated.status_code == 200
        assert updated.json()["data"]["status"] == "resolved"
        assert app.state.sio.events_for("oak-watcher", "alert_updated")[0][1]["status"] == "resolved"

        deleted = client.delete(f"/api/alerts/{alert_id}", headers=alice["headers"])
        assert deleted.status_code == 200
        assert app.state.sio.events_for("oak-watcher", "alert_deleted") == [("alert_deleted", alert_id)]
        assert client.get("/api/alerts", headers=alice["headers"]).json()["data"] == []

    def test_alert_deleted_during_update(self, app, client, monkeypatch):
        alice = register(client, "alice", "oak")
        alert_id = create_alert(client, alice["headers"]).json()["data"]["id"]
        store = app.state.store
        real_update = store.update

        async def delete_then_update(kind, record_id, fields):
            await store.delete(kind, record_id)
            return await real_update(kind, record_id, fields)

        monkeypatch.setattr(store, "update", delete_then_update)

        response = client.patch(
            f"/api/alerts/{alert_id}/status", json={"status": "closed"}, headers=alice["headers"]
        )
        assert response.status_code == 404
        assert response.json()["detail"] == "Alert not found"
        assert app.state.sio.recipients("alert_updated") == set()

    def test_other_community_alert_is_hidden(self, client):
        alice = register(client, "alice", "oak")
        mallory = register(client, "mallory", "pine")
        alert_id = create_alert(client, alice["headers"]).json()["data"]["id"]

        response = client.delete(f"/api/alerts/{alert_id}", headers=mallory["headers"])
        assert response.status_code == 404

    def test_invalid_category(self, client):
        alice = register(client, "alice", "oak")
        assert create_alert(client, alice["headers"], category="aliens").status_code == 422


class TestEvents:
    def test_creator_attends_and_capacity_is_enforced(self, app, client):
        alice = register(client, "alice", "oak")
        bob = register(client, "bob", "oak")
        carol = register(client, "carol", "oak")
        watch_community(app, "oak-watcher", "oak")

        created = create_event(client, alice["headers"], max_attendees=2)
        assert created.status_code == 201
        event = created.json()["data"]
        assert [a["username"] for a in event["attendees"]] == ["alice"]
        assert app.state.sio.recipients("event_broadcast") == {"oak-watcher"}

        joined = client.post(f"/api/events/{event['id']}/join", headers=bob["headers"])
        assert joined.status_code == 200
        assert [a["username"] for a in joined.json()["data"]["attendees"]] == ["alice", "bob"]
        notice = app.state.sio.events_for("oak-watcher", "event_joined")[0][1]
        assert notice["user"] == {"id": bob["id"], "username": "bob"}

        again = client.post(f"/api/events/{event['id']}/join", headers=bob["headers"])
        assert again.status_code == 400
        assert again.json()["detail"] == "Already joined this event"

        full = client.post(f"/api/events/{event['id']}/join", headers=carol["headers"])
        assert full.status_code == 400
        assert full.json()["detail"] == "Event is full"

    def test_leave(self, app, client):
        alice = register(client, "alice", "oak")
        bob = register(client, "bob", "oak")
        event_id = create_event(client, alice["headers"]).json()["data"]["id"]
        client.post(f"/api/events/{event_id}/join", headers=bob["headers"])

        left = client.post(f"/api/events/{event_id}/leave", headers=bob["headers"])
        assert left.status_code == 200
        assert [a["username"] for a in left.json()["data"]["attendees"]] == ["alice"]

        again = client.post(f"/api/events/{event_id}/leave", headers=bob["headers"])
        assert again.status_code == 400
        assert again.json()["detail"] == "Not attending this event"

    def test_list_sorted_by_date(self, client):
        alice = register(client, "alice", "oak")
        create_event(client, alice["headers"], title="Later", date="2026-12-01T10:00:00")
        create_event(client, alice["headers"], title="Sooner", date="2026-11-01T10:00:00")

        titles = [e["title"] for e in client.get("/api/events", headers=alice["headers"]).json()["data"]]
        assert titles == ["Sooner", "Later"]


class TestMessages:
    def test_alert_history_roundtrip(self, client):
        alice = register(client, "alice", "oak")
        alert_id = create_alert(client, alice["headers"]).json()["data"]["id"]

        sent = client.post(
            f"/api/alert-messages/{alert_id}",
            json={"message": "Crews are on site", "timestamp": "2026-10-19T10:00:00Z"},
            headers=alice["headers"],
        )
        assert sent.status_code == 201
        assert sent.json()["data"]["alertId"] == alert_id

        history = client.get(f"/api/alert-messages/{alert_id}", headers=alice["headers"]).json()["data"]
        assert [m["message"] for m in history] == ["Crews are on site"]
        assert history[0]["timestamp"] == "2026-10-19T10:00:00Z"

    def test_alert_history_of_other_community(self, client):
        alice = register(client, "alice", "oak")
        mallory = register(client, "mallory", "pine")
        alert_id = create_alert(client, alice["headers"]).json()["data"]["id"]

        response = client.get(f"/api/alert-messages/{alert_id}", headers=mallory["headers"])
        assert response.status_code == 403
        assert response.json()["detail"] == "Access denied"

    def test_event_messages_need_attendance(self, client):
        alice = register(client, "alice", "oak")
        bob = register(client, "bob", "oak")
        event_id = create_event(client, alice["headers"]).json()["data"]["id"]

        response = client.post(
            f"/api/event-messages/{event_id}", json={"message": "hello"}, headers=bob["headers"]
        )
        assert response.status_code == 403
        assert response.json()["detail"] == "You must be attending the event to send messages"

        assert client.get("/api/event-messages/999", headers=alice["headers"]).status_code == 404

    def test_empty_message(self, client):
        alice = register(client, "alice", "oak")
        alert_id = create_alert(client, alice["headers"]).json()["data"]["id"]

        response = client.post(
            f"/api/alert-messages/{alert_id}", json={"message": "   "}, headers=alice["headers"]
        )
        assert response.status_code == 400
        assert response.json()["detail"] == "Message cannot be empty"


def test_health(client):
    body = client.get("/api/health").json()
    assert body["status"] == "ok"
    assert body["sessions"] == 0
    assert body["rooms"] == 0

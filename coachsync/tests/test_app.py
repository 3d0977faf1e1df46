"""
Tests for the HTTP / WebSocket surface
"""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect


SECRET = "app-test-secret"
NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _token(user_id, team_id, role="rep"):
    from jose import jwt

    return jwt.encode({"userId": user_id, "teamId": team_id, "role": role}, SECRET, algorithm="HS256")


def _auth(token):
    return {"Authorization": f"Bearer {token}"}


REP = _token("rep-1", "team-1")
COACH = _token("coach-1", "team-1", role="coach")
OTHER_TEAM = _token("rep-9", "team-2")


@pytest.fixture
def client():
    from coachsync.sync.app import create_app
    from coachsync.sync.auth import JWTCredentialVerifier
    from coachsync.sync.content_store import InMemoryContentStore
    from coachsync.sync.server import SyncServer

    server = SyncServer(
        InMemoryContentStore(clock=lambda: NOW),
        JWTCredentialVerifier(SECRET),
        history_retention=timedelta(days=30),
    )
    with TestClient(create_app(sync_server=server)) as test_client:
        yield test_client


OBJECTION = {"name": "No Capital", "category": "price", "variations": ["I don't have the capital"], "rank": 1}


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["initialized"] is True


class TestContentSync:

    def test_requires_credential(self, client):
        assert client.get("/api/content/sync").status_code == 401
        assert client.get("/api/content/sync", headers=_auth("garbage")).status_code == 401

    def test_full_then_incremental(self, client):
        created = client.post("/api/admin/content/objection", json={"payload": OBJECTION}, headers=_auth(COACH))
        assert created.status_code == 201

        full = client.get("/api/content/sync", headers=_auth(REP)).json()
        assert full["fullSync"] is True
        assert [o["payload"]["name"] for o in full["objections"]] == ["No Capital"]

        client.delete(f"/api/admin/content/objection/{created.json()['id']}", headers=_auth(COACH))

        incremental = client.get(
            "/api/content/sync", params={"since": full["syncedAt"]}, headers=_auth(REP),
        ).json()
        assert incremental["fullSync"] is False
        assert [(o["id"], o["active"]) for o in incremental["objections"]] == [(created.json()["id"], False)]

    def test_stale_watermark_is_410(self, client):
        since = (NOW - timedelta(days=90)).isoformat()

        response = client.get("/api/content/sync", params={"since": since}, headers=_auth(REP))

        assert response.status_code == 410
        assert response.json() == {"detail": "stale_watermark"}

    def test_team_scoping(self, client):
        client.post("/api/admin/content/objection", json={"payload": OBJECTION}, headers=_auth(COACH))

        other = client.get("/api/content/sync", headers=_auth(OTHER_TEAM)).json()
        assert other["objections"] == []

    def test_system_prompt(self, client):
        client.post("/api/admin/content/objection", json={"payload": OBJECTION}, headers=_auth(COACH))

        response = client.get("/api/content/system-prompt", headers=_auth(REP))

        assert response.status_code == 200
        assert "No Capital" in response.json()["prompt"]


class TestAdminRoutes:

    def test_rep_cannot_write(self, client):
        response = client.post("/api/admin/content/objection", json={"payload": OBJECTION}, headers=_auth(REP))

        assert response.status_code == 403

    def test_invalid_payload_is_422(self, client):
        response = client.post(
            "/api/admin/content/objection", json={"payload": {"category": "price"}}, headers=_auth(COACH),
        )

        assert response.status_code == 422

    def test_unknown_kind_is_422(self, client):
        response = client.post("/api/admin/content/widget", json={"payload": {}}, headers=_auth(COACH))

        assert response.status_code == 422

    def test_update_and_not_found(self, client):
        created = client.post(
            "/api/admin/content/objection", json={"payload": OBJECTION}, headers=_auth(COACH),
        ).json()

        updated = client.put(
            f"/api/admin/content/objection/{created['id']}",
            json={"payload": {"category": "timing"}},
            headers=_auth(COACH),
        )
        assert updated.status_code == 200
        assert updated.json()["payload"]["category"] == "timing"
        assert updated.json()["payload"]["name"] == "No Capital"

        missing = client.put("/api/admin/content/objection/nope", json={"payload": {}}, headers=_auth(COACH))
        assert missing.status_code == 404
        assert client.delete("/api/admin/content/objection/nope", headers=_auth(COACH)).status_code == 404

    def test_clients_listing(self, client):
        with client.websocket_connect(f"/ws?token={REP}") as ws:
            ws.send_json({"type": "ping"})
            assert ws.receive_json()["type"] == "pong"

            listing = client.get("/api/admin/clients", headers=_auth(COACH)).json()
            assert listing["count"] == 1
            assert listing["clients"][0]["userId"] == "rep-1"


class TestContentListing:

    def test_rep_lists_active_records_in_rank_order(self, client):
        second = {**OBJECTION, "name": "Spouse Approval", "category": "authority", "rank": 2}
        client.post("/api/admin/content/objection", json={"payload": second}, headers=_auth(COACH))
        client.post("/api/admin/content/objection", json={"payload": OBJECTION}, headers=_auth(COACH))

        response = client.get("/api/content/objection", headers=_auth(REP))

        assert response.status_code == 200
        assert response.json()["kind"] == "objection"
        assert response.json()["count"] == 2
        assert [r["payload"]["name"] for r in response.json()["records"]] == ["No Capital", "Spouse Approval"]

    def test_listing_is_per_kind_and_per_team(self, client):
        client.post("/api/admin/content/objection", json={"payload": OBJECTION}, headers=_auth(COACH))

        assert client.get("/api/content/playbook", headers=_auth(REP)).json()["count"] == 0
        assert client.get("/api/content/objection", headers=_auth(OTHER_TEAM)).json()["count"] == 0

    def test_admin_listing_includes_deleted(self, client):
        created = client.post(
            "/api/admin/content/objection", json={"payload": OBJECTION}, headers=_auth(COACH),
        ).json()
        client.delete(f"/api/admin/content/objection/{created['id']}", headers=_auth(COACH))

        assert client.get("/api/content/objection", headers=_auth(REP)).json()["records"] == []

        admin = client.get("/api/admin/content/objection", headers=_auth(COACH)).json()
        assert [(r["id"], r["active"]) for r in admin["records"]] == [(created["id"], False)]

    def test_admin_listing_needs_writer(self, client):
        assert client.get("/api/admin/content/objection", headers=_auth(REP)).status_code == 403
        assert client.get("/api/content/objection").status_code == 401

    def test_unknown_kind_is_422(self, client):
        assert client.get("/api/content/widget", headers=_auth(REP)).status_code == 422
        assert client.get("/api/admin/content/widget", headers=_auth(COACH)).status_code == 422


class TestWebSocket:

    def test_bad_credential_gets_auth_error_and_4401(self, client):
        with client.websocket_connect("/ws?token=forged") as ws:
            assert ws.receive_json()["type"] == "auth:error"
            with pytest.raises(WebSocketDisconnect) as exc:
                ws.receive_json()

        assert exc.value.code == 4401
        assert client.get("/api/admin/clients", headers=_auth(COACH)).json()["count"] == 0

    def test_sync_request(self, client):
        client.post("/api/admin/content/objection", json={"payload": OBJECTION}, headers=_auth(COACH))

        with client.websocket_connect(f"/ws?token={REP}") as ws:
            ws.send_json({"type": "sync:request"})
            message = ws.receive_json()

        assert message["type"] == "sync:response"
        assert message["fullSync"] is True
        assert len(message["objections"]) == 1

    def test_stale_sync_request(self, client):
        with client.websocket_connect(f"/ws?token={REP}") as ws:
            ws.send_json({"type": "sync:request", "since": (NOW - timedelta(days=90)).isoformat()})
            message = ws.receive_json()

        assert message == {"type": "sync:error", "reason": "stale_watermark"}

    def test_change_pushed_to_connected_rep(self, client):
        with client.websocket_connect(f"/ws?token={REP}") as ws:
            ws.send_json({"type": "ping"})
            assert ws.receive_json()["type"] == "pong"
            client.post("/api/admin/content/objection", json={"payload": OBJECTION}, headers=_auth(COACH))
            message = ws.receive_json()

        assert message["type"] == "content:change"
        assert message["entityKind"] == "objection"
        assert message["action"] == "created"
        assert message["record"]["payload"]["name"] == "No Capital"

    def test_broadcast_refresh(self, client):
        with client.websocket_connect(f"/ws?token={REP}") as ws:
            ws.send_json({"type": "ping"})
            assert ws.receive_json()["type"] == "pong"
            response = client.post("/api/admin/broadcast", json={"message": "Reload"}, headers=_auth(COACH))
            message = ws.receive_json()

        assert response.json()["delivered"] == 1
        assert message["type"] == "content:refresh"
        assert message["message"] == "Reload"

"""
Tests for the Sync Client and reconnect backoff
"""

import json
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

import httpx
import pytest


SECRET = "client-test-secret"
NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _token(team_id="team-1", role="rep"):
    from jose import jwt

    return jwt.encode({"userId": "rep-1", "teamId": team_id, "role": role}, SECRET, algorithm="HS256")


class Sleeper:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


class FakeSocket:
    def __init__(self, messages, error=None):
        self._messages = messages
        self._error = error

    async def _iterate(self):
        for message in self._messages:
            yield json.dumps(message)
        if self._error is not None:
            raise self._error

    def __aiter__(self):
        return self._iterate()


class FakeConnect:
    """Each call plays the next script: an exception to raise, a socket, or messages to deliver"""

    def __init__(self, *scripts):
        self._scripts = list(scripts)
        self.urls = []

    def __call__(self, url, **kwargs):
        self.urls.append(url)
        return self._open(self._scripts.pop(0))

    @asynccontextmanager
    async def _open(self, script):
        if isinstance(script, Exception):
            raise script
        yield script if isinstance(script, FakeSocket) else FakeSocket(script)


@pytest.fixture
def server():
    from coachsync.sync.auth import JWTCredentialVerifier
    from coachsync.sync.content_store import InMemoryContentStore
    from coachsync.sync.server import SyncServer

    return SyncServer(
        InMemoryContentStore(clock=lambda: NOW),
        JWTCredentialVerifier(SECRET),
        history_retention=timedelta(days=30),
    )


@pytest.fixture
def sleeper():
    return Sleeper()


def _client(server, sleeper, token=None, transport=None, ws_connect=None, max_retries=3):
    from coachsync.sync.app import create_app
    from coachsync.sync.backoff import BackoffPolicy
    from coachsync.sync.client import SyncClient
    from coachsync.sync.client_cache import ClientCache

    transport = transport or httpx.ASGITransport(app=create_app(sync_server=server))
    return SyncClient(
        ClientCache("team-1"),
        "http://testserver",
        token or _token(),
        http_client=httpx.AsyncClient(transport=transport, base_url="http://testserver"),
        backoff=BackoffPolicy(jitter=False, max_retries=max_retries),
        sleep=sleeper,
        ws_connect=ws_connect,
    )


def _objection(name, category="price"):
    return {"name": name, "category": category, "variations": []}


class TestSync:

    @pytest.mark.asyncio
    async def test_first_sync_is_full_then_incremental(self, server, sleeper):
        from coachsync.common.schemas import EntityKind

        await server.create_record("team-1", EntityKind.OBJECTION, _objection("No Capital"))
        client = _client(server, sleeper)

        first = await client.sync()
        assert first.full_sync is True
        assert len(client.cache) == 1

        await server.create_record("team-1", EntityKind.OBJECTION, _objection("Spouse", "authority"))
        second = await client.sync()

        assert second.full_sync is False
        assert [r.payload["name"] for r in second.objections] == ["Spouse"]
        assert len(client.cache) == 2

    @pytest.mark.asyncio
    async def test_stale_watermark_falls_back_to_full_sync(self, server, sleeper):
        from coachsync.common.schemas import ChangeAction, ChangeEvent, ContentRecord, EntityKind

        await server.create_record("team-1", EntityKind.OBJECTION, _objection("No Capital"))
        client = _client(server, sleeper)
        ancient = ContentRecord(
            id="ancient", team_id="team-1", kind=EntityKind.OBJECTION,
            payload=_objection("Old"), updated_at=NOW - timedelta(days=90),
        )
        client.cache.apply_event(ChangeEvent.for_record(ChangeAction.CREATED, ancient))

        response = await client.sync()

        assert response.full_sync is True
        assert [r.payload["name"] for r in client.cache.active()] == ["No Capital"]

    @pytest.mark.asyncio
    async def test_authentication_failure_not_retried(self, server, sleeper):
        from coachsync.common.errors import AuthenticationError

        client = _client(server, sleeper, token="not-a-jwt")

        with pytest.raises(AuthenticationError):
            await client.sync_with_retry()
        assert sleeper.delays == []

    @pytest.mark.asyncio
    async def test_connectivity_failures_retried_with_backoff(self, server, sleeper):
        from coachsync.sync.app import create_app

        inner = httpx.ASGITransport(app=create_app(sync_server=server))
        calls = {"n": 0}

        async def flaky(request):
            calls["n"] += 1
            if calls["n"] <= 2:
                raise httpx.ConnectError("connection refused", request=request)
            return await inner.handle_async_request(request)

        client = _client(server, sleeper, transport=httpx.MockTransport(flaky))

        response = await client.sync_with_retry()

        assert response.full_sync is True
        assert sleeper.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_retry_budget_exhausted_leaves_cache_untouched(self, server, sleeper):
        from coachsync.common.errors import ConnectivityError

        def down(request):
            return httpx.Response(503, json={"detail": "unavailable"})

        client = _client(server, sleeper, transport=httpx.MockTransport(down), max_retries=3)
        revision = client.cache.revision

        with pytest.raises(ConnectivityError):
            await client.sync_with_retry()

        assert sleeper.delays == [1.0, 2.0, 4.0]
        assert client.cache.revision == revision
        assert client.cache.watermark is None


class TestHandleMessage:

    @pytest.mark.asyncio
    async def test_change_event_applied(self, server, sleeper):
        client = _client(server, sleeper)

        changed = await client.handle_message({
            "type": "content:change",
            "entityKind": "objection",
            "action": "created",
            "record": {
                "id": "a", "teamId": "team-1", "kind": "objection",
                "payload": _objection("No Capital"), "updatedAt": NOW.isoformat(), "active": True,
            },
        })

        assert changed is True
        assert client.cache.get("a") is not None

    @pytest.mark.asyncio
    async def test_malformed_change_ignored(self, server, sleeper):
        client = _client(server, sleeper)

        assert await client.handle_message({"type": "content:change", "record": {"id": "a"}}) is False

    @pytest.mark.asyncio
    async def test_refresh_triggers_sync(self, server, sleeper):
        from coachsync.common.schemas import EntityKind

        await server.create_record("team-1", EntityKind.OBJECTION, _objection("No Capital"))
        client = _client(server, sleeper)

        assert await client.handle_message({"type": "content:refresh", "message": "Reload"}) is True
        assert len(client.cache) == 1

    @pytest.mark.asyncio
    async def test_malformed_sync_response_ignored(self, server, sleeper):
        client = _client(server, sleeper)

        assert await client.handle_message({"type": "sync:response", "objections": "garbage"}) is False
        assert client.cache.revision == 0

    @pytest.mark.asyncio
    async def test_auth_error_raises(self, server, sleeper):
        from coachsync.common.errors import AuthenticationError

        client = _client(server, sleeper)

        with pytest.raises(AuthenticationError):
            await client.handle_message({"type": "auth:error"})


class TestRun:

    @pytest.mark.asyncio
    async def test_applies_pushes_and_stops_on_auth_error(self, server, sleeper):
        from coachsync.common.errors import AuthenticationError

        pushed = {
            "type": "content:change",
            "entityKind": "objection",
            "action": "created",
            "record": {
                "id": "pushed", "teamId": "team-1", "kind": "objection",
                "payload": _objection("Think It Over", "timing"),
                "updatedAt": (NOW + timedelta(minutes=1)).isoformat(), "active": True,
            },
        }
        connect = FakeConnect([pushed], [{"type": "auth:error", "message": "expired"}])
        client = _client(server, sleeper, ws_connect=connect)

        with pytest.raises(AuthenticationError):
            await client.run()

        assert client.cache.get("pushed") is not None
        assert len(connect.urls) == 2
        assert connect.urls[0].startswith("ws://testserver/ws?token=")

    @pytest.mark.asyncio
    async def test_gives_up_after_retry_budget(self, server, sleeper):
        from coachsync.common.errors import ConnectivityError

        connect = FakeConnect(*[OSError("refused") for _ in range(4)])
        client = _client(server, sleeper, ws_connect=connect, max_retries=3)

        with pytest.raises(ConnectivityError):
            await client.run()

        assert len(connect.urls) == 4
        assert sleeper.delays == [1.0, 2.0, 4.0]

    @pytest.mark.asyncio
    async def test_established_connection_resets_retry_budget(self, server, sleeper):
        from websockets.exceptions import WebSocketException

        from coachsync.common.errors import AuthenticationError

        drops = [FakeSocket([], error=WebSocketException("connection dropped")) for _ in range(5)]
        connect = FakeConnect(*drops, [{"type": "auth:error", "message": "expired"}])
        client = _client(server, sleeper, ws_connect=connect, max_retries=3)

        with pytest.raises(AuthenticationError):
            await client.run()

        assert len(connect.urls) == 6
        assert sleeper.delays == [1.0] * 5

    @pytest.mark.asyncio
    async def test_outage_after_drop_gets_fresh_budget(self, server, sleeper):
        from websockets.exceptions import WebSocketException

        from coachsync.common.errors import ConnectivityError

        connect = FakeConnect(
            OSError("refused"),
            OSError("refused"),
            FakeSocket([], error=WebSocketException("connection dropped")),
            *[OSError("refused") for _ in range(3)],
        )
        client = _client(server, sleeper, ws_connect=connect, max_retries=3)

        with pytest.raises(ConnectivityError):
            await client.run()

        assert len(connect.urls) == 6
        assert sleeper.delays == [1.0, 2.0, 1.0, 2.0, 4.0]

    @pytest.mark.asyncio
    async def test_malformed_push_does_not_end_listen_loop(self, server, sleeper):
        from coachsync.common.errors import AuthenticationError

        connect = FakeConnect([
            {"type": "sync:response", "objections": "garbage"},
            {
                "type": "content:change",
                "entityKind": "objection",
                "action": "created",
                "record": {
                    "id": "after", "teamId": "team-1", "kind": "objection",
                    "payload": _objection("Spouse", "authority"),
                    "updatedAt": (NOW + timedelta(minutes=1)).isoformat(), "active": True,
                },
            },
            {"type": "auth:error", "message": "expired"},
        ])
        client = _client(server, sleeper, ws_connect=connect)

        with pytest.raises(AuthenticationError):
            await client.run()

        assert client.cache.get("after") is not None
        assert len(connect.urls) == 1


class TestBackoffPolicy:

    def test_exponential_and_capped(self):
        from coachsync.sync.backoff import BackoffPolicy

        policy = BackoffPolicy(base=1.0, cap=5.0, jitter=False)

        assert [policy.delay(n) for n in range(5)] == [1.0, 2.0, 4.0, 5.0, 5.0]

    def test_jitter_stays_within_half_and_full_delay(self):
        from coachsync.sync.backoff import BackoffPolicy

        low = BackoffPolicy(rand=lambda: 0.0)
        high = BackoffPolicy(rand=lambda: 1.0)

        assert low.delay(2) == 2.0
        assert high.delay(2) == 4.0
        assert high.delay(10) == 5.0

    def test_exhausted(self):
        from coachsync.sync.backoff import BackoffPolicy

        policy = BackoffPolicy(max_retries=10)

        assert policy.exhausted(9) is False
        assert policy.exhausted(10) is True


class TestSyncClientUrls:

    def test_ws_url(self):
        from coachsync.sync.client import SyncClient
        from coachsync.sync.client_cache import ClientCache

        client = SyncClient(ClientCache("team-1"), "https://sync.example.com/", "a b")

        assert client.ws_url == "wss://sync.example.com/ws?token=a%20b"

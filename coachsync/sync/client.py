"""
Sync Client

Keeps a ClientCache in step with the sync server.

- sync(): incremental from the cache watermark, full when there is none or
  the server refuses the watermark as stale
- sync_with_retry(): retries connectivity failures with backoff; the cache
  is left untouched on failure and stays usable offline
- run(): WebSocket listen loop; syncs on every (re)connect, applies pushed
  changes, re-syncs on refresh signals, reconnects with backoff

Authentication failures are never retried.
"""

import asyncio
import json
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional
from urllib.parse import quote

import httpx
import websockets
from pydantic import ValidationError
from websockets.exceptions import WebSocketException

from ..common.errors import AuthenticationError, ConnectivityError, StaleWatermarkError
from ..common.schemas import ChangeEvent, SyncResponse
from .backoff import BackoffPolicy
from .client_cache import ClientCache

logger = logging.getLogger("coachsync.sync.client")


class SyncClient:
    """
    Network side of a client installation.

    Usage:
        cache = ClientCache(team_id="team-1")
        client = SyncClient(cache, "http://localhost:3001", token)
        await client.sync_with_retry()
        await client.run()  # until cancelled
    """

    def __init__(
        self,
        cache: ClientCache,
        server_url: str,
        token: str,
        http_client: Optional[httpx.AsyncClient] = None,
        backoff: Optional[BackoffPolicy] = None,
        timeout: float = 10.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        ws_connect: Optional[Callable[..., Any]] = None,
    ):
        """
        Initialize sync client.

        Args:
            cache: Cache to keep up to date
            server_url: Base URL of the sync server (http or https)
            token: Bearer credential
            http_client: Pre-built httpx client (owned by the caller)
            backoff: Retry policy for sync and reconnects
            timeout: Per-request timeout in seconds
            sleep: Awaitable sleep used between retries
            ws_connect: WebSocket connect function (websockets.connect by default)
        """
        self._cache = cache
        self._server_url = server_url.rstrip("/")
        self._token = token
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(
            base_url=self._server_url,
            timeout=httpx.Timeout(timeout),
        )
        self._backoff = backoff or BackoffPolicy()
        self._timeout = timeout
        self._sleep = sleep
        self._ws_connect = ws_connect or websockets.connect

    @property
    def cache(self) -> ClientCache:
        return self._cache

    @property
    def ws_url(self) -> str:
        if self._server_url.startswith("https://"):
            base = "wss://" + self._server_url[len("https://"):]
        elif self._server_url.startswith("http://"):
            base = "ws://" + self._server_url[len("http://"):]
        else:
            base = self._server_url
        return f"{base}/ws?token={quote(self._token)}"

    async def close(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    # =========================================================================
    # HTTP sync
    # =========================================================================

    async def fetch(self, since: Optional[datetime] = None) -> SyncResponse:
        """
        Request a sync response without touching the cache.

        Raises:
            AuthenticationError: 401 from the server
            StaleWatermarkError: 410 (watermark outside retained history)
            ConnectivityError: Transport failure or unexpected response
        """
        params = {"since": since.isoformat()} if since is not None else None
        try:
            response = await self._http.get(
                "/api/content/sync",
                params=params,
                headers={"Authorization": f"Bearer {self._token}"},
            )
        except httpx.HTTPError as e:
            raise ConnectivityError(f"Sync request failed: {e or type(e).__name__}")

        if response.status_code == 401:
            raise AuthenticationError(response.json().get("detail", "Unauthorized"))
        if response.status_code == 410:
            raise StaleWatermarkError(since, None)
        if response.status_code != 200:
            raise ConnectivityError(f"Sync request failed with HTTP {response.status_code}")

        try:
            return SyncResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise ConnectivityError(f"Malformed sync response: {e}")

    async def sync(self) -> SyncResponse:
        """Bring the cache up to date once"""
        since = self._cache.watermark
        if since is None:
            response = await self.fetch()
        else:
            try:
                response = await self.fetch(since)
            except StaleWatermarkError:
                logger.info("Watermark %s is stale, falling back to full sync", since.isoformat())
                response = await self.fetch()

        self._cache.apply_sync(response)
        return response

    async def sync_with_retry(self) -> SyncResponse:
        """sync() with backoff on connectivity failures"""
        attempt = 0
        while True:
            try:
                return await self.sync()
            except ConnectivityError as e:
                if self._backoff.exhausted(attempt):
                    logger.error("Giving up sync after %d retries: %s", attempt, e)
                    raise
                delay = self._backoff.delay(attempt)
                logger.warning("Sync failed (%s), retrying in %.1fs", e, delay)
                await self._sleep(delay)
                attempt += 1

    # =========================================================================
    # Push channel
    # =========================================================================

    async def handle_message(self, data: Dict[str, Any]) -> bool:
        """
        Apply one server push message.

        Returns:
            True if the cache changed
        """
        message_type = data.get("type")

        if message_type == "content:change":
            try:
                event = ChangeEvent.model_validate(data)
            except ValidationError as e:
                logger.warning("Discarding malformed change event: %s", e)
                return False
            return self._cache.apply_event(event)

        if message_type == "content:refresh":
            logger.info("Refresh requested by server: %s", data.get("message", ""))
            before = self._cache.revision
            await self.sync()
            return self._cache.revision != before

        if message_type == "sync:response":
            try:
                response = SyncResponse.model_validate(data)
            except ValidationError as e:
                logger.warning("Discarding malformed sync response: %s", e)
                return False
            return self._cache.apply_sync(response)

        if message_type == "auth:error":
            raise AuthenticationError(data.get("message", "Credential refused"))

        logger.debug("Ignoring message type: %s", message_type)
        return False

    async def _listen(self, on_connected: Callable[[], None]) -> None:
        async with self._ws_connect(self.ws_url, open_timeout=self._timeout) as ws:
            logger.info("Connected to %s", self._server_url)
            await self.sync()
            on_connected()
            async for raw in ws:
                try:
                    data = json.loads(raw)
                except (TypeError, ValueError):
                    logger.debug("Ignoring non-JSON push message")
                    continue
                if isinstance(data, dict):
                    await self.handle_message(data)

    async def run(self) -> None:
        """
        Listen for pushed changes until cancelled.

        Raises:
            AuthenticationError: Credential refused (not retried)
            ConnectivityError: Reconnect budget exhausted
        """
        attempt = 0
        while True:
            established = []
            try:
                await self._listen(lambda: established.append(True))
                logger.info("Connection closed by server")
            except AuthenticationError:
                logger.error("Authentication failed, not reconnecting")
                raise
            except (OSError, asyncio.TimeoutError, WebSocketException, ConnectivityError) as e:
                logger.warning("Connection lost: %s", e or type(e).__name__)

            # Budget and delay are per outage
            if established:
                attempt = 0

            if self._backoff.exhausted(attempt):
                raise ConnectivityError(f"Could not reconnect after {attempt} retries")
            delay = self._backoff.delay(attempt)
            logger.info("Reconnecting in %.1fs", delay)
            await self._sleep(delay)
            attempt += 1

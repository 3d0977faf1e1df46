"""
Sync Server

Single source of truth fan-out for team content.

Responsibilities:
- Answer full and incremental sync requests for a team
- Admit authenticated connections into their team room
- Broadcast change events to a team room after every store mutation
- Mediate writes: validate, persist through the content store, broadcast

Delivery is at-least-once and fire-and-forget. A connection that cannot be
reached misses the event and is dropped from its room; the client heals
itself with an incremental sync when it reconnects.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from ..common.errors import (
    AuthenticationError,
    ContentValidationError,
    RecordNotFoundError,
    StaleWatermarkError,
)
from ..common.schemas import (
    ChangeAction,
    ChangeEvent,
    ContentRecord,
    EntityKind,
    PAYLOAD_MODELS,
    SyncResponse,
    render_coaching_prompt,
    utcnow,
)
from .auth import CredentialVerifier, Principal
from .content_store import ContentStore
from .registry import Connection, ConnectionRegistry, Sender

logger = logging.getLogger("coachsync.sync.server")


def _group(records: List[ContentRecord]) -> Dict[str, List[ContentRecord]]:
    """Split records into sync response lists, in display order"""
    grouped: Dict[str, List[ContentRecord]] = {kind.collection: [] for kind in EntityKind}
    for record in records:
        grouped[record.kind.collection].append(record)

    grouped["objections"].sort(
        key=lambda r: (r.payload.get("rank") is None, r.payload.get("rank") or 0, r.id)
    )
    grouped["patterns"].sort(key=lambda r: (-(r.payload.get("priority") or 0), r.id))
    for name in ("playbooks", "testimonials"):
        grouped[name].sort(key=lambda r: (r.updated_at, r.id))
    return grouped


class SyncServer:
    """
    Authoritative sync endpoint for every team of one deployment.

    Usage:
        server = SyncServer(store, JWTCredentialVerifier(secret))
        connection = server.admit(token, websocket_send)
        response = await server.full_sync(connection.team_id)
        await server.update_record(team_id, EntityKind.OBJECTION, record_id, {...})
    """

    def __init__(
        self,
        store: ContentStore,
        verifier: CredentialVerifier,
        registry: Optional[ConnectionRegistry] = None,
        history_retention: Optional[timedelta] = timedelta(days=30),
        send_timeout: float = 5.0,
    ):
        """
        Initialize sync server.

        Args:
            store: Content store holding the authoritative records
            verifier: Identity collaborator used to admit connections
            registry: Connection registry (a fresh one by default)
            history_retention: Oldest watermark served incrementally
                (None serves any watermark)
            send_timeout: Upper bound for one delivery to one connection
        """
        self._store = store
        self._verifier = verifier
        self._registry = registry or ConnectionRegistry()
        self._history_retention = history_retention
        self._send_timeout = send_timeout
        self._team_locks: Dict[str, asyncio.Lock] = {}

    @property
    def registry(self) -> ConnectionRegistry:
        return self._registry

    @property
    def store(self) -> ContentStore:
        return self._store

    def _team_lock(self, team_id: str) -> asyncio.Lock:
        lock = self._team_locks.get(team_id)
        if lock is None:
            lock = self._team_locks[team_id] = asyncio.Lock()
        return lock

    # =========================================================================
    # Sync queries
    # =========================================================================

    def history_floor(self) -> Optional[datetime]:
        """Oldest watermark that can still be served incrementally"""
        if not self._history_retention:
            return None
        return self._store.now() - self._history_retention

    async def full_sync(self, team_id: str) -> SyncResponse:
        """All active records of a team"""
        records, high_water = await self._store.read_team(team_id)
        response = SyncResponse(**_group(records), synced_at=high_water, full_sync=True)
        logger.debug("Full sync for team %s: %s", team_id, response.counts())
        return response

    async def incremental_sync(self, team_id: str, since: datetime) -> SyncResponse:
        """
        Records changed after since, tombstones included.

        Raises:
            StaleWatermarkError: If since predates the retained history
        """
        if since.tzinfo is None:
            since = since.replace(tzinfo=timezone.utc)

        floor = self.history_floor()
        if floor is not None and since < floor:
            raise StaleWatermarkError(since, floor)

        records, high_water = await self._store.read_team(team_id, since=since, include_inactive=True)
        synced_at = max(high_water, since) if high_water is not None else since
        response = SyncResponse(**_group(records), synced_at=synced_at, full_sync=False)
        logger.debug("Incremental sync for team %s since %s: %s", team_id, since, response.counts())
        return response

    async def sync(self, team_id: str, since: Optional[datetime] = None) -> SyncResponse:
        """Full sync without a watermark, incremental otherwise"""
        if since is None:
            return await self.full_sync(team_id)
        return await self.incremental_sync(team_id, since)

    async def coaching_prompt(self, team_id: str) -> str:
        """Coaching brief rendered from the team's active content"""
        records, _ = await self._store.read_team(team_id)
        grouped = _group(records)
        return render_coaching_prompt(grouped["objections"], grouped["patterns"])

    async def list_records(
        self, team_id: str, kind: EntityKind, include_inactive: bool = False,
    ) -> List[ContentRecord]:
        """One kind of a team's records, in display order"""
        records, _ = await self._store.read_team(team_id, include_inactive=include_inactive)
        return _group([r for r in records if r.kind == kind])[kind.collection]

    # =========================================================================
    # Connections
    # =========================================================================

    def authenticate(self, token: Optional[str]) -> Principal:
        """Verify a bearer credential (raises AuthenticationError)"""
        return self._verifier.verify(token)

    def admit(self, token: Optional[str], send: Sender) -> Connection:
        """
        Admit a connection into its team room.

        The credential is verified before anything is registered, so a
        rejected connection never appears in any room.

        Raises:
            AuthenticationError: If the credential is refused
        """
        try:
            principal = self.authenticate(token)
        except AuthenticationError as e:
            logger.info("Connection refused: %s", e)
            raise

        connection = Connection(
            user_id=principal.user_id,
            team_id=principal.team_id,
            role=principal.role,
            send=send,
        )
        self._registry.add(connection)
        logger.info(
            "Client connected: %s (team: %s, room size: %d)",
            principal.user_id, principal.team_id, self._registry.count(principal.team_id),
        )
        return connection

    def disconnect(self, connection: Connection) -> None:
        if self._registry.remove(connection):
            logger.info("Client disconnected: %s (team: %s)", connection.user_id, connection.team_id)

    def connected_clients(self, team_id: str) -> List[Dict[str, Any]]:
        return [c.describe() for c in self._registry.room(team_id)]

    # =========================================================================
    # Broadcast
    # =========================================================================

    async def _deliver(self, connection: Connection, message: Dict[str, Any]) -> bool:
        try:
            await asyncio.wait_for(connection.send(message), timeout=self._send_timeout)
            return True
        except Exception as e:
            logger.warning(
                "Dropping unreachable client %s (team: %s): %s",
                connection.user_id, connection.team_id, e or type(e).__name__,
            )
            self._registry.remove(connection)
            return False

    async def _broadcast(self, team_id: str, message: Dict[str, Any]) -> int:
        targets = self._registry.room(team_id)
        if not targets:
            return 0
        results = await asyncio.gather(*(self._deliver(c, message) for c in targets))
        return sum(1 for ok in results if ok)

    async def on_mutation(self, action: ChangeAction, record: ContentRecord) -> int:
        """
        Broadcast a change event for a record the store has just written.

        Events for one team are sent in the order this method is called.

        Returns:
            Number of connections the event was handed to
        """
        async with self._team_lock(record.team_id):
            return await self._publish(action, record)

    async def _publish(self, action: ChangeAction, record: ContentRecord) -> int:
        event = ChangeEvent.for_record(action, record)
        delivered = await self._broadcast(record.team_id, event.model_dump(mode="json", by_alias=True))
        logger.info(
            "Broadcast %s %s %s to %d client(s) of team %s",
            record.kind.value, action.value, record.id, delivered, record.team_id,
        )
        return delivered

    async def broadcast_refresh(self, team_id: str, message: str = "Content updated") -> int:
        """Ask every client of a team to re-sync now"""
        async with self._team_lock(team_id):
            return await self._broadcast(team_id, {
                "type": "content:refresh",
                "message": message,
                "timestamp": utcnow().isoformat(),
            })

    # =========================================================================
    # Mediated writes
    # =========================================================================

    @staticmethod
    def _validate(kind: EntityKind, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            model = PAYLOAD_MODELS[kind].model_validate(payload)
        except ValidationError as e:
            raise ContentValidationError(f"Invalid {kind.value} payload: {e}")
        return model.model_dump(mode="json")

    async def _require(self, team_id: str, kind: EntityKind, record_id: str) -> ContentRecord:
        existing = await self._store.get(team_id, record_id)
        if existing is None or existing.kind != kind:
            raise RecordNotFoundError(f"{kind.value} {record_id} not found")
        return existing

    async def create_record(
        self,
        team_id: str,
        kind: EntityKind,
        payload: Dict[str, Any],
        record_id: Optional[str] = None,
    ) -> ContentRecord:
        """Validate, persist and broadcast a new record"""
        clean = self._validate(kind, payload)
        async with self._team_lock(team_id):
            record = await self._store.create(team_id, kind, clean, record_id=record_id)
            await self._publish(ChangeAction.CREATED, record)
        return record

    async def update_record(
        self,
        team_id: str,
        kind: EntityKind,
        record_id: str,
        payload: Optional[Dict[str, Any]] = None,
        active: Optional[bool] = None,
    ) -> ContentRecord:
        """Validate the merged payload, persist and broadcast an update"""
        async with self._team_lock(team_id):
            existing = await self._require(team_id, kind, record_id)
            clean = None
            if payload:
                clean = self._validate(kind, {**existing.payload, **payload})
            record = await self._store.update(team_id, record_id, payload=clean, active=active)
            action = ChangeAction.UPDATED if record.active else ChangeAction.DELETED
            await self._publish(action, record)
        return record

    async def delete_record(self, team_id: str, kind: EntityKind, record_id: str) -> ContentRecord:
        """Soft delete and broadcast the tombstone"""
        async with self._team_lock(team_id):
            await self._require(team_id, kind, record_id)
            record = await self._store.soft_delete(team_id, record_id)
            await self._publish(ChangeAction.DELETED, record)
        return record

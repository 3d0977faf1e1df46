"""
Content Store

Authoritative, team-scoped content with timestamps and soft deletes.

The production store is an external collaborator; ContentStore is the
interface the sync server consumes. InMemoryContentStore is the reference
implementation used for local runs and tests.

Timestamp rule:
Every mutation gets an updated_at strictly greater than any earlier
mutation of the same team, so a client watermark taken from a sync response
can never hide a later write.
"""

import asyncio
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..common.errors import RecordNotFoundError
from ..common.schemas import ContentRecord, EntityKind, utcnow

_TICK = timedelta(microseconds=1)


class ContentStore(ABC):
    """Interface of the external content store"""

    @abstractmethod
    async def read_team(
        self,
        team_id: str,
        since: Optional[datetime] = None,
        include_inactive: bool = False,
    ) -> Tuple[List[ContentRecord], Optional[datetime]]:
        """
        Read a team's records, atomically with the team's high-water mark.

        Args:
            team_id: Team to read
            since: Only records with updated_at > since (None = all)
            include_inactive: Include soft-deleted records (tombstones)

        Returns:
            (records, high_water) where high_water >= every updated_at
            the team has ever been assigned, or None for an empty team
        """
        pass

    @abstractmethod
    async def get(self, team_id: str, record_id: str) -> Optional[ContentRecord]:
        pass

    @abstractmethod
    async def create(
        self,
        team_id: str,
        kind: EntityKind,
        payload: Dict[str, Any],
        record_id: Optional[str] = None,
    ) -> ContentRecord:
        pass

    @abstractmethod
    async def update(
        self,
        team_id: str,
        record_id: str,
        payload: Optional[Dict[str, Any]] = None,
        active: Optional[bool] = None,
    ) -> ContentRecord:
        """Merge payload fields into the record; raises RecordNotFoundError"""
        pass

    @abstractmethod
    async def soft_delete(self, team_id: str, record_id: str) -> ContentRecord:
        """Mark the record inactive and return the tombstone"""
        pass

    @abstractmethod
    def now(self) -> datetime:
        """Store clock (authoritative for all timestamps)"""
        pass


class InMemoryContentStore(ContentStore):
    """
    Process-local content store.

    Mutations are serialized by a single asyncio lock, which also makes
    read_team consistent with the returned high-water mark.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or utcnow
        self._records: Dict[str, Dict[str, ContentRecord]] = {}
        self._high_water: Dict[str, datetime] = {}
        self._lock = asyncio.Lock()

    def now(self) -> datetime:
        return self._clock()

    def _next_timestamp(self, team_id: str) -> datetime:
        ts = self._clock()
        previous = self._high_water.get(team_id)
        if previous is not None and ts <= previous:
            ts = previous + _TICK
        self._high_water[team_id] = ts
        return ts

    def _require(self, team_id: str, record_id: str) -> ContentRecord:
        record = self._records.get(team_id, {}).get(record_id)
        if record is None:
            raise RecordNotFoundError(f"Record {record_id} not found for team {team_id}")
        return record

    async def read_team(
        self,
        team_id: str,
        since: Optional[datetime] = None,
        include_inactive: bool = False,
    ) -> Tuple[List[ContentRecord], Optional[datetime]]:
        async with self._lock:
            records = [
                r for r in self._records.get(team_id, {}).values()
                if (include_inactive or r.active)
                and (since is None or r.updated_at > since)
            ]
            return records, self._high_water.get(team_id)

    async def get(self, team_id: str, record_id: str) -> Optional[ContentRecord]:
        async with self._lock:
            return self._records.get(team_id, {}).get(record_id)

    async def create(
        self,
        team_id: str,
        kind: EntityKind,
        payload: Dict[str, Any],
        record_id: Optional[str] = None,
    ) -> ContentRecord:
        async with self._lock:
            record = ContentRecord(
                id=record_id or str(uuid.uuid4()),
                team_id=team_id,
                kind=kind,
                payload=dict(payload),
                updated_at=self._next_timestamp(team_id),
                active=True,
            )
            self._records.setdefault(team_id, {})[record.id] = record
            return record

    async def update(
        self,
        team_id: str,
        record_id: str,
        payload: Optional[Dict[str, Any]] = None,
        active: Optional[bool] = None,
    ) -> ContentRecord:
        async with self._lock:
            existing = self._require(team_id, record_id)
            changes: Dict[str, Any] = {"updated_at": self._next_timestamp(team_id)}
            if payload:
                changes["payload"] = {**existing.payload, **payload}
            if active is not None:
                changes["active"] = active
            record = existing.model_copy(update=changes)
            self._records[team_id][record_id] = record
            return record

    async def soft_delete(self, team_id: str, record_id: str) -> ContentRecord:
        async with self._lock:
            existing = self._require(team_id, record_id)
            record = existing.tombstone(self._next_timestamp(team_id))
            self._records[team_id][record_id] = record
            return record

    def team_ids(self) -> List[str]:
        return sorted(self._records)

"""
Client Cache

Per-installation replica of one team's content.

Merge rule (last-write-wins on the server clock):
- A record is replaced only by a version with a strictly newer updated_at
- Deletions are kept as inactive tombstones, so an older event arriving late
  can never bring a deleted record back
- The watermark only moves forward

Every merge that changes state bumps the revision and rebuilds the matcher
corpus; readers holding the previous corpus keep a consistent view.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional

from ..common.matcher_corpus import MatcherCorpus
from ..common.schemas import ChangeAction, ChangeEvent, ContentRecord, EntityKind, SyncResponse

logger = logging.getLogger("coachsync.sync.client_cache")


class ClientCache:
    """
    Team content snapshot with watermark and derived matcher corpus.

    Usage:
        cache = ClientCache(team_id="team-1")
        cache.apply_sync(await client.fetch())
        cache.apply_event(ChangeEvent.model_validate(message))
        entry, score = cache.corpus.find_best_match(text)
    """

    def __init__(self, team_id: str, min_word_length: int = 3):
        self._team_id = team_id
        self._min_word_length = min_word_length
        self._records: Dict[str, ContentRecord] = {}
        self._watermark: Optional[datetime] = None
        self._full_sync_floor: Optional[datetime] = None
        self._revision = 0
        self._corpus = MatcherCorpus(min_word_length=min_word_length)

    @property
    def team_id(self) -> str:
        return self._team_id

    @property
    def watermark(self) -> Optional[datetime]:
        """Highest updated_at observed (None before the first sync)"""
        return self._watermark

    @property
    def revision(self) -> int:
        return self._revision

    @property
    def corpus(self) -> MatcherCorpus:
        """Matcher corpus built from the current revision"""
        return self._corpus

    # =========================================================================
    # Merging
    # =========================================================================

    def _advance(self, ts: Optional[datetime]) -> None:
        if ts is not None and (self._watermark is None or ts > self._watermark):
            self._watermark = ts

    def _merge(self, record: ContentRecord) -> bool:
        """Apply one record under last-write-wins; returns True if state changed"""
        existing = self._records.get(record.id)
        if existing is not None:
            if record.updated_at <= existing.updated_at:
                return False
        elif self._full_sync_floor is not None and record.updated_at <= self._full_sync_floor:
            # Already reflected by the last full sync, where it was absent
            return False

        self._records[record.id] = record
        return True

    def _commit(self) -> None:
        self._revision += 1
        self._corpus = MatcherCorpus.from_records(
            self._records.values(),
            version=self._revision,
            min_word_length=self._min_word_length,
        )

    def apply_event(self, event: ChangeEvent) -> bool:
        """
        Merge a pushed change event.

        Replays and out-of-order deliveries are harmless: the event is a
        no-op unless it is newer than what the cache holds.

        Returns:
            True if the snapshot changed
        """
        record = event.record
        if record.team_id != self._team_id:
            logger.warning("Discarding event for team %s (cache team %s)", record.team_id, self._team_id)
            return False

        if event.action == ChangeAction.DELETED and record.active:
            record = record.model_copy(update={"active": False})

        if not self._merge(record):
            logger.debug("Ignoring stale event for %s %s", record.kind.value, record.id)
            return False

        self._advance(record.updated_at)
        self._commit()
        logger.debug("Applied %s %s %s (revision %d)", record.kind.value, event.action.value, record.id, self._revision)
        return True

    def apply_sync(self, response: SyncResponse, full: Optional[bool] = None) -> bool:
        """
        Merge a sync response.

        A full sync replaces the snapshot wholesale; an incremental one is
        merged record by record with the same rule as pushed events.

        Args:
            response: Server sync response
            full: Override response.full_sync

        Returns:
            True if the snapshot changed
        """
        is_full = response.full_sync if full is None else full
        records = [r for r in response.records() if r.team_id == self._team_id]
        if len(records) != len(response.records()):
            logger.warning("Dropped %d records of another team from sync response",
                           len(response.records()) - len(records))

        if is_full:
            self._records = {r.id: r for r in records}
            self._full_sync_floor = response.synced_at
            changed = True
        else:
            changed = False
            for record in records:
                changed = self._merge(record) or changed

        for record in records:
            self._advance(record.updated_at)
        self._advance(response.synced_at)

        if changed:
            self._commit()
        logger.info(
            "Applied %s sync for team %s: %s (revision %d)",
            "full" if is_full else "incremental", self._team_id, response.counts(), self._revision,
        )
        return changed

    # =========================================================================
    # Reads
    # =========================================================================

    def get(self, record_id: str) -> Optional[ContentRecord]:
        """Active record by id"""
        record = self._records.get(record_id)
        return record if record is not None and record.active else None

    def active(self, kind: Optional[EntityKind] = None) -> List[ContentRecord]:
        """Active records, optionally of one kind, ordered by id"""
        return sorted(
            (r for r in self._records.values() if r.active and (kind is None or r.kind == kind)),
            key=lambda r: r.id,
        )

    def tombstones(self) -> List[ContentRecord]:
        return sorted((r for r in self._records.values() if not r.active), key=lambda r: r.id)

    def state(self) -> Dict[str, ContentRecord]:
        """Active records keyed by id; equal states mean converged replicas"""
        return {r.id: r for r in self.active()}

    def __len__(self) -> int:
        return len(self.active())

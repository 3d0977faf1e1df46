"""
Matcher Corpus

Index of known objection phrasings built from a team's synced content.
Used by the detection engine to map transcript fragments to objection ids.

The corpus is derived data: it is rebuilt from the client cache after every
successful merge and is never persisted.
"""

import string
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np
from pydantic import ValidationError

from .schemas import ContentRecord, EntityKind, PatternPayload

logger = logging.getLogger("coachsync.common.matcher_corpus")


@dataclass
class MatcherEntry:
    """One objection as seen by the matcher"""
    objection_id: str
    name: str
    category: str
    search_text: str  # lower-cased name + variations + category
    rank: Optional[int] = None
    win_rate: Optional[float] = None
    script: str = ""


@dataclass
class PatternEntry:
    """One danger pattern rule as synced from the content store"""
    pattern_id: str
    pattern: PatternPayload


def tokenize(text: str) -> List[str]:
    """Lower-case, whitespace-split words with surrounding punctuation removed"""
    words = (w.strip(string.punctuation) for w in text.lower().split())
    return [w for w in words if w]


class MatcherCorpus:
    """
    Versioned word-overlap index over active objections and patterns.

    Scoring:
    A fragment's score against an objection is the fraction of the
    fragment's words that are long enough (>= min_word_length) and appear
    in the objection's indexed text. The best match wins; equal scores are
    broken by the lower objection rank, then by objection id.
    """

    def __init__(self, min_word_length: int = 3):
        """
        Initialize an empty corpus.

        Args:
            min_word_length: Shortest fragment word that can count as a hit
        """
        self._min_word_length = min_word_length
        self._entries: List[MatcherEntry] = []
        self._patterns: List[PatternEntry] = []
        self._by_id: Dict[str, MatcherEntry] = {}
        self._ranks: np.ndarray = np.zeros(0)
        self._version = 0
        self._loaded = False

    @classmethod
    def from_records(
        cls,
        records: Iterable[ContentRecord],
        version: int = 0,
        min_word_length: int = 3,
    ) -> "MatcherCorpus":
        """Build a corpus from content records (inactive ones are skipped)"""
        corpus = cls(min_word_length=min_word_length)
        corpus.load_records(records, version=version)
        return corpus

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    @property
    def version(self) -> int:
        """Revision of the cache snapshot this corpus was built from"""
        return self._version

    @property
    def entry_count(self) -> int:
        return len(self._entries)

    @property
    def entries(self) -> List[MatcherEntry]:
        return list(self._entries)

    @property
    def patterns(self) -> List[PatternEntry]:
        """Active patterns, highest priority first"""
        return list(self._patterns)

    def load_records(self, records: Iterable[ContentRecord], version: int = 0) -> int:
        """
        Replace the index with the active objections and patterns in records.

        Args:
            records: Content records of any kind
            version: Snapshot revision the records come from

        Returns:
            Number of objections indexed
        """
        entries = []
        patterns = []

        for record in records:
            if not record.active:
                continue
            try:
                if record.kind == EntityKind.OBJECTION:
                    entries.append(self._make_entry(record))
                elif record.kind == EntityKind.PATTERN:
                    patterns.append(PatternEntry(pattern_id=record.id, pattern=record.as_pattern()))
            except ValidationError as e:
                logger.warning("Skipping malformed %s %s: %s", record.kind.value, record.id, e)

        # Stable order: rank (missing last), then id
        entries.sort(key=lambda e: (e.rank is None, e.rank or 0, e.objection_id))
        patterns.sort(key=lambda p: (-p.pattern.priority, p.pattern_id))

        self._entries = entries
        self._patterns = patterns
        self._by_id = {e.objection_id: e for e in entries}
        self._ranks = np.array(
            [np.inf if e.rank is None else float(e.rank) for e in entries],
            dtype=float,
        )
        self._version = version
        self._loaded = True
        return len(entries)

    @staticmethod
    def _make_entry(record: ContentRecord) -> MatcherEntry:
        objection = record.as_objection()
        search_text = " ".join([objection.name, *objection.variations, objection.category]).lower()
        return MatcherEntry(
            objection_id=record.id,
            name=objection.name,
            category=objection.category,
            search_text=search_text,
            rank=objection.rank,
            win_rate=objection.win_rate,
            script=objection.primary_script(),
        )

    def score(self, text: str) -> np.ndarray:
        """
        Score text against every indexed objection.

        Returns:
            Array of scores aligned with entries, each in [0, 1]
        """
        scores = np.zeros(len(self._entries), dtype=float)
        words = tokenize(text)
        if not words or not self._entries:
            return scores

        eligible = [w for w in words if len(w) >= self._min_word_length]
        if not eligible:
            return scores

        hits = np.array(
            [[w in e.search_text for e in self._entries] for w in eligible],
            dtype=float,
        )
        return hits.sum(axis=0) / len(words)

    def _ranked(self, scores: np.ndarray) -> np.ndarray:
        """Indices ordered by score desc, rank asc, position asc"""
        positions = np.arange(len(scores))
        return np.lexsort((positions, self._ranks, -scores))

    def find_best_match(
        self,
        text: str,
        threshold: float = 0.3
    ) -> Tuple[Optional[MatcherEntry], float]:
        """
        Find the best matching objection for a fragment.

        Args:
            text: Fragment text
            threshold: Score the best match must exceed

        Returns:
            (entry, score), or (None, best_score) if nothing exceeds threshold
        """
        if not self._entries or not text.strip():
            return (None, 0.0)

        scores = self.score(text)
        best_idx = int(self._ranked(scores)[0])
        best_score = float(scores[best_idx])

        if best_score > threshold:
            return (self._entries[best_idx], best_score)

        return (None, best_score)

    def find_top_matches(
        self,
        text: str,
        top_k: int = 5,
        threshold: float = 0.0
    ) -> List[Tuple[MatcherEntry, float]]:
        """
        Find the top-k objections for a fragment, best first.

        Only scores strictly above threshold are returned.
        """
        if not self._entries or not text.strip():
            return []

        scores = self.score(text)
        results = []
        for idx in self._ranked(scores)[:top_k]:
            score = float(scores[idx])
            if score > threshold:
                results.append((self._entries[idx], score))
        return results

    def get_entry(self, objection_id: str) -> Optional[MatcherEntry]:
        return self._by_id.get(objection_id)

    def get_entries_by_category(self, category: str) -> List[MatcherEntry]:
        """All objections whose category contains the keyword"""
        keyword = category.lower()
        return [e for e in self._entries if keyword in e.category.lower()]

    def categories(self) -> List[str]:
        """Sorted unique categories"""
        return sorted(set(e.category for e in self._entries))

    def clear(self) -> None:
        """Drop all entries and patterns"""
        self._entries = []
        self._patterns = []
        self._by_id = {}
        self._ranks = np.zeros(0)
        self._loaded = False

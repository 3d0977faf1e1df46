"""
Call Session

Ephemeral per-call detection state. Lives only as long as the call.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List

from ..common.matcher_corpus import MatcherEntry
from ..common.schemas import utcnow


class SessionState(str, Enum):
    """IDLE -> LISTENING -> (MATCHING -> LISTENING)* -> CLOSED"""
    IDLE = "idle"
    LISTENING = "listening"
    MATCHING = "matching"
    CLOSED = "closed"


@dataclass
class CallSession:
    """Detection state of one live call"""
    session_id: str
    team_id: str = ""
    state: SessionState = SessionState.IDLE
    detected: Dict[str, MatcherEntry] = field(default_factory=dict)  # objection id -> entry, in detection order
    fragments_processed: int = 0
    fragments_matched: int = 0
    started_at: datetime = field(default_factory=utcnow)

    @property
    def is_closed(self) -> bool:
        return self.state == SessionState.CLOSED

    @property
    def detected_ids(self) -> List[str]:
        return list(self.detected)

    @property
    def detected_count(self) -> int:
        return len(self.detected)

    def add_detection(self, entry: MatcherEntry) -> bool:
        """Record a detected objection; returns False if it was already detected"""
        if entry.objection_id in self.detected:
            return False
        self.detected[entry.objection_id] = entry
        return True

    def entries_in_category(self, keyword: str) -> List[MatcherEntry]:
        """Detected objections whose category contains keyword (case-insensitive)"""
        keyword = keyword.lower()
        return [e for e in self.detected.values() if keyword in e.category.lower()]

    def close(self) -> None:
        """Terminal; drops the detected set"""
        self.state = SessionState.CLOSED
        self.detected.clear()

    def summary(self) -> dict:
        return {
            "sessionId": self.session_id,
            "teamId": self.team_id,
            "state": self.state.value,
            "detected": [
                {"id": e.objection_id, "name": e.name, "category": e.category}
                for e in self.detected.values()
            ],
            "fragmentsProcessed": self.fragments_processed,
            "fragmentsMatched": self.fragments_matched,
            "startedAt": self.started_at.isoformat(),
        }

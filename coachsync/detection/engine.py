"""
Detection Engine

Turns one call's transcript fragments into objection detections and alert
candidates.

Pipeline per fragment:
1. Validate the fragment (malformed ones are discarded untouched)
2. Score it against the current matcher corpus
3. Add the best match above threshold to the session's detected set
4. Evaluate danger rules and append hits to the session's alert channel

The engine never talks to the presentation layer; the alert coordinator
drains the channel.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

from ..common.errors import MalformedFragmentError
from ..common.matcher_corpus import MatcherCorpus, MatcherEntry
from ..common.schemas import TranscriptFragment
from .alerts import AlertCandidate, AlertChannel
from .rules import Rule, build_rules, evaluate_rules
from .session import CallSession, SessionState

logger = logging.getLogger("coachsync.detection.engine")

CorpusProvider = Callable[[], MatcherCorpus]


@dataclass
class DetectionResult:
    """Outcome of one fragment"""
    accepted: bool
    matched: Optional[MatcherEntry] = None
    score: float = 0.0
    is_new: bool = False
    candidates: List[AlertCandidate] = field(default_factory=list)

    @property
    def objection_id(self) -> Optional[str]:
        return self.matched.objection_id if self.matched else None


def coerce_fragment(fragment: Any) -> TranscriptFragment:
    """
    Accept a TranscriptFragment, a plain string or a {"text": ...} dict.

    Raises:
        MalformedFragmentError: If there is no non-blank text
    """
    if isinstance(fragment, TranscriptFragment):
        parsed = fragment
    elif isinstance(fragment, str):
        parsed = TranscriptFragment(text=fragment)
    elif isinstance(fragment, dict) and isinstance(fragment.get("text"), str):
        parsed = TranscriptFragment(
            text=fragment["text"],
            timestamp=fragment.get("timestamp") if isinstance(fragment.get("timestamp"), (int, float)) else None,
            speaker=fragment.get("speaker") if isinstance(fragment.get("speaker"), str) else None,
        )
    else:
        raise MalformedFragmentError(f"Unusable fragment of type {type(fragment).__name__}")

    if not parsed.text.strip():
        raise MalformedFragmentError("Empty fragment")
    return parsed


class DetectionEngine:
    """
    Per-session objection detector.

    Usage:
        engine = DetectionEngine(CallSession("call-1"), lambda: cache.corpus)
        result = engine.on_fragment("I need to ask my spouse")
        alerts = coordinator.drain("call-1", engine.channel)
    """

    def __init__(
        self,
        session: CallSession,
        corpus_provider: CorpusProvider,
        channel: Optional[AlertChannel] = None,
        threshold: float = 0.3,
    ):
        """
        Initialize detection engine.

        Args:
            session: Session this engine owns
            corpus_provider: Returns the current matcher corpus; read per fragment
                so content synced mid-call takes effect on the next fragment
            channel: Outgoing alert candidate channel
            threshold: Score a match must exceed
        """
        self._session = session
        self._corpus_provider = corpus_provider
        self._channel = channel or AlertChannel()
        self._threshold = threshold
        self._rules: List[Rule] = []
        self._rules_corpus: Optional[MatcherCorpus] = None
        self._discarded = 0

    @property
    def session(self) -> CallSession:
        return self._session

    @property
    def channel(self) -> AlertChannel:
        return self._channel

    @property
    def threshold(self) -> float:
        return self._threshold

    @property
    def discarded(self) -> int:
        """Malformed fragments dropped so far"""
        return self._discarded

    def _rules_for(self, corpus: MatcherCorpus) -> List[Rule]:
        if corpus is not self._rules_corpus:
            self._rules = build_rules(corpus.patterns)
            self._rules_corpus = corpus
        return self._rules

    def on_fragment(self, fragment: Any) -> DetectionResult:
        """
        Process one fragment in arrival order.

        Args:
            fragment: TranscriptFragment, str or {"text": ..., "timestamp": ...}

        Returns:
            DetectionResult (accepted=False for closed sessions and malformed input)
        """
        if self._session.is_closed:
            logger.debug("Fragment ignored, session %s is closed", self._session.session_id)
            return DetectionResult(accepted=False)

        try:
            parsed = coerce_fragment(fragment)
        except MalformedFragmentError as e:
            self._discarded += 1
            logger.debug("Discarded fragment for session %s: %s", self._session.session_id, e)
            return DetectionResult(accepted=False)

        session = self._session
        session.state = SessionState.MATCHING
        session.fragments_processed += 1
        try:
            corpus = self._corpus_provider()
            entry, score = corpus.find_best_match(parsed.text, threshold=self._threshold)

            is_new = False
            if entry is not None:
                session.fragments_matched += 1
                is_new = session.add_detection(entry)
                if is_new:
                    logger.info(
                        "Session %s: detected %s (%s, score %.2f)",
                        session.session_id, entry.name, entry.category, score,
                    )

            candidates = [
                AlertCandidate(session_id=session.session_id, kind=kind, payload=payload)
                for kind, payload in evaluate_rules(self._rules_for(corpus), session)
            ]
            for candidate in candidates:
                self._channel.put(candidate)
        finally:
            session.state = SessionState.LISTENING

        return DetectionResult(
            accepted=True,
            matched=entry,
            score=score,
            is_new=is_new,
            candidates=candidates,
        )

    def close(self) -> None:
        """End the session; later fragments are ignored"""
        self._session.close()
        self._channel.drain()
        logger.info("Session %s closed", self._session.session_id)

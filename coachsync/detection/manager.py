"""
Session Manager

Runs many call sessions side by side. Each session has its own engine and
alert channel; the alert coordinator is shared but keyed by session, so no
session can observe or disturb another.
"""

import logging
import uuid
from typing import Any, AsyncIterable, AsyncIterator, Dict, List, Optional

from ..common.schemas import Alert
from .alerts import AlertCoordinator
from .engine import CorpusProvider, DetectionEngine
from .session import CallSession

logger = logging.getLogger("coachsync.detection.manager")


class SessionManager:
    """
    Usage:
        manager = SessionManager(lambda: cache.corpus)
        session = manager.start_session("call-1", team_id="team-1")
        alerts = manager.feed("call-1", "I need to ask my spouse")
        manager.end_session("call-1")
    """

    def __init__(
        self,
        corpus_provider: CorpusProvider,
        coordinator: Optional[AlertCoordinator] = None,
        threshold: float = 0.3,
    ):
        self._corpus_provider = corpus_provider
        self._coordinator = coordinator or AlertCoordinator()
        self._threshold = threshold
        self._engines: Dict[str, DetectionEngine] = {}

    @property
    def coordinator(self) -> AlertCoordinator:
        return self._coordinator

    def start_session(self, session_id: Optional[str] = None, team_id: str = "") -> CallSession:
        """
        Create a session in IDLE state.

        Raises:
            ValueError: If a session with this id is already running
        """
        session_id = session_id or uuid.uuid4().hex
        if session_id in self._engines:
            raise ValueError(f"Session {session_id} already active")

        session = CallSession(session_id=session_id, team_id=team_id)
        self._engines[session_id] = DetectionEngine(
            session,
            self._corpus_provider,
            threshold=self._threshold,
        )
        logger.info("Session %s started (team: %s)", session_id, team_id or "-")
        return session

    def get_session(self, session_id: str) -> Optional[CallSession]:
        engine = self._engines.get(session_id)
        return engine.session if engine else None

    def active_sessions(self) -> List[str]:
        return sorted(self._engines)

    def feed(self, session_id: str, fragment: Any) -> List[Alert]:
        """
        Process one fragment and return the alerts it fired.

        Unknown sessions and processing errors yield no alerts; errors are
        logged and stay within the session.
        """
        engine = self._engines.get(session_id)
        if engine is None:
            logger.warning("Fragment for unknown session %s ignored", session_id)
            return []

        try:
            engine.on_fragment(fragment)
            return self._coordinator.drain(session_id, engine.channel)
        except Exception as e:
            logger.exception("Error processing fragment for session %s: %s", session_id, e)
            engine.channel.drain()
            return []

    async def stream(self, session_id: str, fragments: AsyncIterable[Any]) -> AsyncIterator[Alert]:
        """
        Feed an async fragment stream in arrival order, yielding alerts.

        The session is started if needed; it stays open when the stream ends.
        """
        if session_id not in self._engines:
            self.start_session(session_id)

        async for fragment in fragments:
            for alert in self.feed(session_id, fragment):
                yield alert

    def end_session(self, session_id: str) -> bool:
        """Close a session and discard all of its state"""
        engine = self._engines.pop(session_id, None)
        if engine is None:
            return False
        engine.close()
        self._coordinator.clear_session(session_id)
        return True

    def disconnect(self, session_id: str) -> bool:
        """Transport went away; same as ending the session"""
        return self.end_session(session_id)

    def close_all(self) -> None:
        for session_id in list(self._engines):
            self.end_session(session_id)

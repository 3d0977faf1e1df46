"""
Alert Coordinator

Turns alert candidates into outward alerts without flooding the rep.

Cooldown is tracked per (session, kind): a threshold alert never suppresses
a combo alert or the other way around, and sessions never share state.
"""

import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, List, Optional, Tuple

from ..common.schemas import Alert, AlertKind, AlertPayload

logger = logging.getLogger("coachsync.detection.alerts")


@dataclass
class AlertCandidate:
    """Rule hit waiting for the coordinator"""
    session_id: str
    kind: AlertKind
    payload: AlertPayload


class AlertChannel:
    """Outgoing candidate queue of one session; the engine only appends"""

    def __init__(self):
        self._queue: Deque[AlertCandidate] = deque()

    def put(self, candidate: AlertCandidate) -> None:
        self._queue.append(candidate)

    def drain(self) -> List[AlertCandidate]:
        """Remove and return every queued candidate, oldest first"""
        items = list(self._queue)
        self._queue.clear()
        return items

    def __len__(self) -> int:
        return len(self._queue)


class AlertCoordinator:
    """
    Cooldown gate shared by every session of a process.

    Usage:
        coordinator = AlertCoordinator(cooldown_seconds=30)
        alerts = coordinator.drain(session_id, channel)
    """

    def __init__(
        self,
        cooldown_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize alert coordinator.

        Args:
            cooldown_seconds: Minimum gap between two alerts of one kind in one session
            clock: Monotonic seconds source
        """
        self._cooldown = cooldown_seconds
        self._clock = clock
        self._last_fired: Dict[Tuple[str, AlertKind], float] = {}

    @property
    def cooldown_seconds(self) -> float:
        return self._cooldown

    def last_fired(self, session_id: str, kind: AlertKind) -> Optional[float]:
        return self._last_fired.get((session_id, kind))

    def consider(self, session_id: str, kind: AlertKind, payload: AlertPayload) -> Optional[Alert]:
        """
        Fire an alert unless one of the same kind fired within the cooldown.

        Returns:
            The alert, or None if suppressed
        """
        now = self._clock()
        key = (session_id, kind)
        last = self._last_fired.get(key)

        if last is not None and now - last < self._cooldown:
            logger.debug("Suppressed %s alert for session %s (%.1fs since last)", kind.value, session_id, now - last)
            return None

        self._last_fired[key] = now
        alert = Alert.from_payload(session_id, kind, payload)
        logger.info("Alert %s for session %s: %s", kind.value, session_id, alert.message)
        return alert

    def drain(self, session_id: str, channel: AlertChannel) -> List[Alert]:
        """Consume a session's pending candidates and return the alerts that fired"""
        fired = []
        for candidate in channel.drain():
            if candidate.session_id != session_id:
                logger.warning("Dropping candidate of session %s from channel of %s",
                               candidate.session_id, session_id)
                continue
            alert = self.consider(session_id, candidate.kind, candidate.payload)
            if alert is not None:
                fired.append(alert)
        return fired

    def clear_session(self, session_id: str) -> None:
        for key in [k for k in self._last_fired if k[0] == session_id]:
            del self._last_fired[key]

    def active_sessions(self) -> List[str]:
        return sorted(set(k[0] for k in self._last_fired))

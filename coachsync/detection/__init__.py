"""
CoachSync Detection Module

Streaming objection detection for live calls:
- DetectionEngine: fragments -> detections -> alert candidates
- AlertCoordinator: per (session, kind) cooldown
- SessionManager: many isolated sessions in one process
"""

from .session import CallSession, SessionState
from .rules import ComboRule, ThresholdRule, build_rules
from .alerts import AlertCandidate, AlertChannel, AlertCoordinator
from .engine import DetectionEngine, DetectionResult
from .manager import SessionManager

__all__ = [
    "CallSession",
    "SessionState",
    "ComboRule",
    "ThresholdRule",
    "build_rules",
    "AlertCandidate",
    "AlertChannel",
    "AlertCoordinator",
    "DetectionEngine",
    "DetectionResult",
    "SessionManager",
]

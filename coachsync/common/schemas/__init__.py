"""
CoachSync Schemas

Team content records, sync wire messages, transcript fragments and alerts.
"""

from .content import (
    ContentRecord,
    ChangeEvent,
    SyncResponse,
    EntityKind,
    ChangeAction,
    Difficulty,
    PatternType,
    ObjectionPayload,
    PatternPayload,
    PlaybookPayload,
    TestimonialPayload,
    PAYLOAD_MODELS,
    utcnow,
)
from .alerts import Alert, AlertKind, AlertPayload, TranscriptFragment
from .templates import render_coaching_prompt, COACHING_PROMPT_HEADER

__all__ = [
    "ContentRecord",
    "ChangeEvent",
    "SyncResponse",
    "EntityKind",
    "ChangeAction",
    "Difficulty",
    "PatternType",
    "ObjectionPayload",
    "PatternPayload",
    "PlaybookPayload",
    "TestimonialPayload",
    "PAYLOAD_MODELS",
    "utcnow",
    "Alert",
    "AlertKind",
    "AlertPayload",
    "TranscriptFragment",
    "render_coaching_prompt",
    "COACHING_PROMPT_HEADER",
]

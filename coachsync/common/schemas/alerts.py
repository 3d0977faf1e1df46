"""
Call Session Schemas

Transcript fragments consumed by the detection engine and the coaching
alerts it produces for the presentation layer.
"""

from datetime import datetime
from typing import List, Optional
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from .content import utcnow


class AlertKind(str, Enum):
    """Alert kinds; cooldown is tracked per (session, kind)"""
    THRESHOLD = "threshold"
    COMBO = "combo"


class TranscriptFragment(BaseModel):
    """One incrementally-arriving piece of a live transcript"""
    text: str
    timestamp: Optional[float] = None  # seconds, as reported by the transcriber
    speaker: Optional[str] = None


class AlertPayload(BaseModel):
    """Content of an alert candidate before cooldown is applied"""
    model_config = ConfigDict(populate_by_name=True)

    message: str
    recommended_script: str = Field(default="", alias="recommendedScript")
    rule_id: Optional[str] = Field(default=None, alias="ruleId")
    win_rate: Optional[float] = Field(default=None, alias="winRate")
    objection_ids: List[str] = Field(default_factory=list, alias="objectionIds")


class Alert(BaseModel):
    """Outward coaching alert"""
    model_config = ConfigDict(populate_by_name=True)

    kind: AlertKind
    message: str
    recommended_script: str = Field(default="", alias="recommendedScript")
    session_id: str = Field(..., alias="sessionId")
    rule_id: Optional[str] = Field(default=None, alias="ruleId")
    win_rate: Optional[float] = Field(default=None, alias="winRate")
    objection_ids: List[str] = Field(default_factory=list, alias="objectionIds")
    fired_at: datetime = Field(default_factory=utcnow, alias="firedAt")

    @classmethod
    def from_payload(cls, session_id: str, kind: AlertKind, payload: AlertPayload) -> "Alert":
        return cls(
            kind=kind,
            message=payload.message,
            recommended_script=payload.recommended_script,
            session_id=session_id,
            rule_id=payload.rule_id,
            win_rate=payload.win_rate,
            objection_ids=list(payload.objection_ids),
        )

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)

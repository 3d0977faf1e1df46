"""
Team Content Schemas

Shared, team-scoped coaching content and the messages that carry it between
the sync server and client caches.

Every record has a stable id, a team id, a free-form payload, a server-assigned
updated_at and an active flag. Soft deletes keep the record (active=False) so
that the deletion itself propagates as a tombstone.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Literal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# Enums
# ============================================================================

class EntityKind(str, Enum):
    """Kinds of shared content"""
    OBJECTION = "objection"
    PLAYBOOK = "playbook"
    TESTIMONIAL = "testimonial"
    PATTERN = "pattern"

    @property
    def collection(self) -> str:
        """Name of the sync response list holding this kind"""
        return f"{self.value}s"


class ChangeAction(str, Enum):
    """Mutation types broadcast to team rooms"""
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


class Difficulty(str, Enum):
    """How hard an objection is to overcome"""
    FAVORABLE = "favorable"
    MODERATE = "moderate"
    CHALLENGING = "challenging"


class PatternType(str, Enum):
    """Danger pattern rule types"""
    THRESHOLD = "threshold"
    COMBO = "combo"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Typed payloads
# ============================================================================

class ObjectionPayload(BaseModel):
    """A known objection with its phrasings and response scripts"""
    model_config = ConfigDict(extra="allow")

    name: str = Field(..., min_length=1)
    category: str = Field(..., min_length=1, description="e.g. price, authority, timing")
    variations: List[str] = Field(default_factory=list, description="Known phrasings")
    win_rate: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    difficulty: Difficulty = Difficulty.MODERATE
    frequency: int = 0
    rank: Optional[int] = None
    responses: Dict[str, Any] = Field(default_factory=dict)
    warning: Optional[str] = None

    def primary_script(self) -> str:
        """First primary_script found across responders, in key order"""
        for response in self.responses.values():
            if isinstance(response, dict) and response.get("primary_script"):
                return str(response["primary_script"])
        return ""


class PatternPayload(BaseModel):
    """A danger pattern (threshold or category combo) with its action script"""
    model_config = ConfigDict(extra="allow")

    type: PatternType
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    trigger_conditions: Dict[str, Any]
    action_script: Optional[str] = None
    win_rate: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    priority: int = 0


class PlaybookPayload(BaseModel):
    """One phase of a sales playbook"""
    model_config = ConfigDict(extra="allow")

    author: str = Field(..., min_length=1)
    phase: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    content: Dict[str, Any] = Field(default_factory=dict)
    duration_minutes: Optional[int] = None


class TestimonialPayload(BaseModel):
    """Customer story used as social proof"""
    model_config = ConfigDict(extra="allow")

    name: str = Field(..., min_length=1)
    quote: str = Field(..., min_length=1)
    title: Optional[str] = None
    business_name: Optional[str] = None
    location: Optional[str] = None
    timeline: Optional[str] = None
    results: Dict[str, Any] = Field(default_factory=dict)
    tags: List[str] = Field(default_factory=list)
    objection_counters: List[str] = Field(default_factory=list)


PAYLOAD_MODELS = {
    EntityKind.OBJECTION: ObjectionPayload,
    EntityKind.PLAYBOOK: PlaybookPayload,
    EntityKind.TESTIMONIAL: TestimonialPayload,
    EntityKind.PATTERN: PatternPayload,
}


# ============================================================================
# Records and wire messages
# ============================================================================

class ContentRecord(BaseModel):
    """One team-scoped piece of coaching content"""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    team_id: str = Field(..., alias="teamId")
    kind: EntityKind
    payload: Dict[str, Any] = Field(default_factory=dict)
    updated_at: datetime = Field(..., alias="updatedAt")
    active: bool = True

    def as_objection(self) -> ObjectionPayload:
        return ObjectionPayload.model_validate(self.payload)

    def as_pattern(self) -> PatternPayload:
        return PatternPayload.model_validate(self.payload)

    def tombstone(self, updated_at: datetime) -> "ContentRecord":
        """Copy of this record marked soft-deleted at updated_at"""
        return self.model_copy(update={"active": False, "updated_at": updated_at})


class ChangeEvent(BaseModel):
    """Broadcast to a team room after a successful store mutation"""
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["content:change"] = "content:change"
    entity_kind: EntityKind = Field(..., alias="entityKind")
    action: ChangeAction
    record: ContentRecord

    @classmethod
    def for_record(cls, action: ChangeAction, record: ContentRecord) -> "ChangeEvent":
        return cls(entity_kind=record.kind, action=action, record=record)


class SyncResponse(BaseModel):
    """Full or incremental sync payload"""
    model_config = ConfigDict(populate_by_name=True)

    objections: List[ContentRecord] = Field(default_factory=list)
    playbooks: List[ContentRecord] = Field(default_factory=list)
    testimonials: List[ContentRecord] = Field(default_factory=list)
    patterns: List[ContentRecord] = Field(default_factory=list)
    synced_at: Optional[datetime] = Field(default=None, alias="syncedAt")
    full_sync: bool = Field(default=False, alias="fullSync")

    def records(self) -> List[ContentRecord]:
        """All records in the response, regardless of kind"""
        return [*self.objections, *self.playbooks, *self.testimonials, *self.patterns]

    def counts(self) -> Dict[str, int]:
        return {
            "objections": len(self.objections),
            "playbooks": len(self.playbooks),
            "testimonials": len(self.testimonials),
            "patterns": len(self.patterns),
        }

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

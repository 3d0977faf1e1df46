"""
Danger Pattern Rules

Rules are data: synced 'pattern' records (threshold or combo) are turned into
rule objects here. When a team's corpus carries no pattern of a type, the
defaults below apply. They use the same shape as pattern payloads.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from ..common.matcher_corpus import PatternEntry
from ..common.schemas import AlertKind, AlertPayload, PatternPayload, PatternType
from .session import CallSession

logger = logging.getLogger("coachsync.detection.rules")


DEFAULT_PATTERNS: Dict[str, Dict[str, Any]] = {
    "default-three-objections": {
        "type": "threshold",
        "name": "Three Objection Threshold",
        "description": "Win rate drops significantly with 3+ objections",
        "trigger_conditions": {"objection_count": {"gte": 3}},
        "action_script": 'Re-qualify: "On a scale of 1-10, how serious are you about starting in the next 90 days?"',
        "win_rate": 0.31,
        "priority": 100,
    },
    "default-price-authority": {
        "type": "combo",
        "name": "Danger Combo: price + authority",
        "description": "Dangerous objection combination with very low win rate",
        "trigger_conditions": {"objection_categories": ["price", "authority"]},
        "action_script": "1. Address financing FIRST\n2. Schedule three-way call with spouse\n3. DO NOT send info and wait",
        "win_rate": 0.18,
        "priority": 90,
    },
}


def _percent(win_rate: Optional[float]) -> str:
    return f"{round(win_rate * 100)}%"


class Rule(ABC):
    """A danger pattern evaluated against a session's detected set"""
    rule_id: str
    kind: AlertKind
    priority: int

    @abstractmethod
    def evaluate(self, session: CallSession) -> Optional[AlertPayload]:
        """Alert payload if the rule holds for the session, else None"""
        pass


@dataclass
class ThresholdRule(Rule):
    """Fires when at least min_count distinct objections were detected"""
    rule_id: str
    min_count: int = 3
    script: str = ""
    win_rate: Optional[float] = None
    priority: int = 0
    message: Optional[str] = None
    kind: AlertKind = field(default=AlertKind.THRESHOLD, init=False)

    def describe(self) -> str:
        if self.message:
            return self.message
        if self.win_rate is None:
            return f"{self.min_count}+ objections detected"
        return f"{self.min_count}+ objections detected - Win rate drops to {_percent(self.win_rate)}"

    def evaluate(self, session: CallSession) -> Optional[AlertPayload]:
        if session.detected_count < self.min_count:
            return None
        return AlertPayload(
            message=self.describe(),
            recommended_script=self.script,
            rule_id=self.rule_id,
            win_rate=self.win_rate,
            objection_ids=session.detected_ids,
        )


@dataclass
class ComboRule(Rule):
    """
    Fires when every category keyword is matched by some detected objection.

    Matching is case-insensitive substring containment in the objection's
    category, so 'price' matches 'price' and 'price_sensitivity'. Each keyword
    needs its own objection: one objection filed under 'price_authority' does
    not make a combo on its own.
    """
    rule_id: str
    categories: List[str] = field(default_factory=list)
    script: str = ""
    win_rate: Optional[float] = None
    priority: int = 0
    message: Optional[str] = None
    kind: AlertKind = field(default=AlertKind.COMBO, init=False)

    def describe(self) -> str:
        if self.message:
            return self.message
        names = " + ".join(c.title() for c in self.categories)
        if self.win_rate is None:
            return f"DANGER: {names} combo detected"
        return f"DANGER: {names} combo detected - {_percent(self.win_rate)} win rate"

    def evaluate(self, session: CallSession) -> Optional[AlertPayload]:
        if not self.categories:
            return None

        options: List[List[str]] = []
        involved: List[str] = []
        for keyword in self.categories:
            matches = session.entries_in_category(keyword)
            if not matches:
                return None
            options.append([entry.objection_id for entry in matches])
            for entry in matches:
                if entry.objection_id not in involved:
                    involved.append(entry.objection_id)

        if not _distinct_assignment(options):
            return None

        return AlertPayload(
            message=self.describe(),
            recommended_script=self.script,
            rule_id=self.rule_id,
            win_rate=self.win_rate,
            objection_ids=involved,
        )


def _distinct_assignment(options: List[List[str]]) -> bool:
    """True if every keyword can be matched by a different objection"""
    def assign(index: int, used: frozenset) -> bool:
        if index == len(options):
            return True
        return any(assign(index + 1, used | {oid}) for oid in options[index] if oid not in used)

    return assign(0, frozenset())


def rule_from_pattern(pattern_id: str, pattern: PatternPayload) -> Optional[Rule]:
    """Build a rule from a pattern payload; None if its trigger is unusable"""
    trigger = pattern.trigger_conditions
    message = (pattern.model_extra or {}).get("message")

    if pattern.type == PatternType.THRESHOLD:
        count = trigger.get("objection_count")
        min_count = count.get("gte") if isinstance(count, dict) else count
        if not isinstance(min_count, int) or isinstance(min_count, bool) or min_count < 1:
            logger.warning("Pattern %s has no usable objection_count trigger", pattern_id)
            return None
        return ThresholdRule(
            rule_id=pattern_id,
            min_count=min_count,
            script=pattern.action_script or "",
            win_rate=pattern.win_rate,
            priority=pattern.priority,
            message=message,
        )

    categories = trigger.get("objection_categories")
    if not isinstance(categories, list) or len(categories) < 2 or not all(
        isinstance(c, str) and c.strip() for c in categories
    ):
        logger.warning("Pattern %s has no usable objection_categories trigger", pattern_id)
        return None
    return ComboRule(
        rule_id=pattern_id,
        categories=[c.strip().lower() for c in categories],
        script=pattern.action_script or "",
        win_rate=pattern.win_rate,
        priority=pattern.priority,
        message=message,
    )


def default_rules() -> List[Rule]:
    rules = []
    for pattern_id, data in DEFAULT_PATTERNS.items():
        rule = rule_from_pattern(pattern_id, PatternPayload.model_validate(data))
        if rule is not None:
            rules.append(rule)
    return rules


def build_rules(patterns: List[PatternEntry]) -> List[Rule]:
    """
    Rules for a corpus, highest priority first.

    Defaults fill in for every pattern type the synced patterns do not cover.
    """
    rules: List[Rule] = []
    for entry in patterns:
        rule = rule_from_pattern(entry.pattern_id, entry.pattern)
        if rule is not None:
            rules.append(rule)

    covered = {rule.kind for rule in rules}
    rules.extend(rule for rule in default_rules() if rule.kind not in covered)

    rules.sort(key=lambda r: (-r.priority, r.rule_id))
    return rules


def evaluate_rules(rules: List[Rule], session: CallSession) -> List[Tuple[AlertKind, AlertPayload]]:
    """(kind, payload) for every rule that holds, in rule order"""
    hits = []
    for rule in rules:
        payload = rule.evaluate(session)
        if payload is not None:
            hits.append((rule.kind, payload))
    return hits

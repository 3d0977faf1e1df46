"""
Seed Import

Loads an objections.json style document into a content store:

    {
      "objections": [{"name": ..., "category": ..., "variations": [...], ...}],
      "patterns": {
        "multiple_objections": {"three_plus_objections": {"script": ..., "win_rate": 0.31}},
        "dangerous_combos": [{"objections": ["price", "authority"], "protocol": [...], "win_rate": 0.18}]
      },
      "playbooks": [...],       # optional, playbook payloads
      "testimonials": [...]     # optional, testimonial payloads
    }
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError

from ..common.schemas import EntityKind, PatternType, PAYLOAD_MODELS
from .content_store import ContentStore

logger = logging.getLogger("coachsync.sync.seed")

THRESHOLD_PRIORITY = 100
COMBO_PRIORITY = 90


def patterns_from_seed(patterns: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Convert the seed 'patterns' section into pattern payloads"""
    payloads = []

    multi = (patterns.get("multiple_objections") or {}).get("three_plus_objections")
    if multi:
        payloads.append({
            "type": PatternType.THRESHOLD.value,
            "name": "Three Objection Threshold",
            "description": "Win rate drops significantly with 3+ objections",
            "trigger_conditions": {"objection_count": {"gte": 3}},
            "action_script": multi.get("script"),
            "win_rate": multi.get("win_rate") or 0.31,
            "priority": THRESHOLD_PRIORITY,
        })

    for combo in patterns.get("dangerous_combos") or []:
        categories = combo.get("objections") or []
        if len(categories) < 2:
            logger.warning("Skipping combo with fewer than two categories: %s", categories)
            continue
        protocol = combo.get("protocol")
        payloads.append({
            "type": PatternType.COMBO.value,
            "name": f"Danger Combo: {' + '.join(categories)}",
            "description": "Dangerous objection combination with very low win rate",
            "trigger_conditions": {"objection_categories": list(categories)},
            "action_script": "\n".join(protocol) if protocol else None,
            "win_rate": combo.get("win_rate"),
            "priority": COMBO_PRIORITY,
        })

    return payloads


async def _import(
    store: ContentStore,
    team_id: str,
    kind: EntityKind,
    items: List[Dict[str, Any]],
) -> int:
    model = PAYLOAD_MODELS[kind]
    count = 0
    for item in items:
        try:
            payload = model.model_validate(item).model_dump(mode="json", exclude={"id"})
        except ValidationError as e:
            logger.warning("Skipping invalid %s %r: %s", kind.value, item.get("name"), e)
            continue
        await store.create(team_id, kind, payload, record_id=item.get("id"))
        count += 1
    return count


async def load_seed(store: ContentStore, team_id: str, data: Dict[str, Any]) -> Dict[str, int]:
    """
    Import seed content for a team.

    Args:
        store: Target content store
        team_id: Team that owns the imported content
        data: Parsed seed document

    Returns:
        Number of records imported per kind
    """
    counts = {
        "objections": await _import(store, team_id, EntityKind.OBJECTION, data.get("objections") or []),
        "playbooks": await _import(store, team_id, EntityKind.PLAYBOOK, data.get("playbooks") or []),
        "testimonials": await _import(
            store, team_id, EntityKind.TESTIMONIAL,
            data.get("testimonials") or data.get("full_testimonials") or [],
        ),
        "patterns": await _import(
            store, team_id, EntityKind.PATTERN, patterns_from_seed(data.get("patterns") or {}),
        ),
    }
    logger.info("Seeded team %s: %s", team_id, counts)
    return counts


async def load_seed_file(
    store: ContentStore,
    team_id: str,
    path: Union[str, Path],
) -> Optional[Dict[str, int]]:
    """Import a seed JSON file; returns None if the file cannot be read"""
    try:
        with open(path) as f:
            data = json.load(f)
    except (json.JSONDecodeError, IOError) as e:
        logger.warning("Could not load seed file %s: %s", path, e)
        return None
    return await load_seed(store, team_id, data)

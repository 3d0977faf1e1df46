"""
Coaching Prompt Templates

Renders a team's active objections and danger patterns into the Markdown
brief handed to the live-call coaching model.
"""

from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from .content import ContentRecord


COACHING_PROMPT_HEADER = """You are a real-time sales coach helping sales reps handle objections on live calls.

## YOUR ROLE
- Listen to the conversation between sales rep and prospect
- Detect objections as they arise
- Provide immediate script suggestions to overcome objections
- Alert on dangerous patterns
- Keep suggestions SHORT - the rep is on a live call

## RESPONSE FORMAT
- OBJECTION: [name]
- SAY THIS: "[script]"
- KEY: [one-liner principle]

## OBJECTION PLAYBOOK
"""

COACHING_PROMPT_FOOTER = """
## REMEMBER
- You are helping a LIVE call - keep it brief
- Scripts should be copy-paste ready
- Flag objections THE MOMENT you hear them
"""


def _format_win_rate(win_rate) -> str:
    """Format a 0..1 win rate as a percentage"""
    if win_rate is None:
        return "N/A"
    return f"{round(win_rate * 100)}%"


def _format_responses(responses: dict) -> str:
    """First responder is the primary script, the next one the alternative"""
    lines = []
    scripted = [
        (who, r) for who, r in responses.items()
        if isinstance(r, dict) and r.get("primary_script")
    ]
    for i, (who, response) in enumerate(scripted[:2]):
        label = "SAY THIS" if i == 0 else "ALT"
        lines.append(f'{label} ({who.title()}): "{response["primary_script"]}"')
        principles = response.get("key_principles") or []
        if i == 0 and principles:
            lines.append(f"KEY: {principles[0]}")
    return "\n".join(lines)


def _format_objection(record: "ContentRecord") -> str:
    objection = record.as_objection()
    lines = [
        f'### "{objection.name}"',
        f"Win Rate: {_format_win_rate(objection.win_rate)} | Difficulty: {objection.difficulty.value}",
        f"Variations: {', '.join(objection.variations)}",
    ]
    responses = _format_responses(objection.responses)
    if responses:
        lines.append(responses)
    return "\n".join(lines)


def _format_pattern(record: "ContentRecord") -> str:
    pattern = record.as_pattern()
    heading = f"### {pattern.name}"
    if pattern.win_rate is not None:
        heading += f" (Win Rate: {_format_win_rate(pattern.win_rate)})"
    lines = [heading]
    if pattern.description:
        lines.append(pattern.description)
    if pattern.action_script:
        lines.append(f"ACTION: {pattern.action_script}")
    return "\n".join(lines)


def render_coaching_prompt(
    objections: Iterable["ContentRecord"],
    patterns: Iterable["ContentRecord"],
) -> str:
    """
    Render the coaching brief for one team.

    Inactive records are skipped, so the brief always reflects what a
    freshly synced client would see.
    """
    sections = [COACHING_PROMPT_HEADER]

    for record in objections:
        if record.active:
            sections.append(_format_objection(record))

    sections.append("## DANGER PATTERNS")
    for record in patterns:
        if record.active:
            sections.append(_format_pattern(record))

    sections.append(COACHING_PROMPT_FOOTER)
    text = "\n\n".join(s.strip("\n") for s in sections)

    while "\n\n\n" in text:
        text = text.replace("\n\n\n", "\n\n")

    return text.strip() + "\n"

#!/usr/bin/env python3
"""
Transcript Replay Script

Replays a recorded call transcript against a team's seeded content and prints
every coaching alert it would have raised. Useful for checking new objection
phrasings and danger patterns before pushing them to reps.

Usage:
    python scripts/replay_transcript.py --seed objections.json transcript.txt
    python scripts/replay_transcript.py --seed objections.json --cooldown 0 --json transcript.txt

The transcript holds one fragment per line; blank lines are skipped.
"""

import sys
import json
import asyncio
import argparse
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))


class ReplayClock:
    """Monotonic clock advanced by a fixed step per fragment"""

    def __init__(self, step: float):
        self.step = step
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    def tick(self) -> None:
        self.now += self.step


async def replay(args) -> int:
    from coachsync.common.config import configure_logging, load_config
    from coachsync.common.schemas import EntityKind, SyncResponse
    from coachsync.detection import AlertCoordinator, SessionManager
    from coachsync.sync import ClientCache, InMemoryContentStore, load_seed_file

    config = load_config()
    configure_logging(args.log_level or "WARNING")

    store = InMemoryContentStore()
    counts = await load_seed_file(store, args.team, args.seed)
    if counts is None:
        print(f"[Replay] ERROR: Could not read seed file {args.seed}")
        return 1
    print(f"[Replay] Seeded team '{args.team}': {counts}")

    records, synced_at = await store.read_team(args.team)
    grouped = {kind.collection: [r for r in records if r.kind == kind] for kind in EntityKind}
    cache = ClientCache(args.team, min_word_length=config.detection.min_word_length)
    cache.apply_sync(SyncResponse(**grouped, synced_at=synced_at, full_sync=True))
    print(f"[Replay] Corpus: {cache.corpus.entry_count} objections, {len(cache.corpus.patterns)} patterns")

    clock = ReplayClock(args.step)
    cooldown = config.detection.alert_cooldown_seconds if args.cooldown is None else args.cooldown
    manager = SessionManager(
        lambda: cache.corpus,
        coordinator=AlertCoordinator(cooldown_seconds=cooldown, clock=clock),
        threshold=config.detection.similarity_threshold if args.threshold is None else args.threshold,
    )
    session = manager.start_session("replay", team_id=args.team)

    total = 0
    with open(args.transcript) as f:
        for line_no, line in enumerate(f, start=1):
            text = line.strip()
            if not text:
                continue
            for alert in manager.feed("replay", text):
                total += 1
                if args.json:
                    print(json.dumps({"line": line_no, **alert.to_wire()}))
                else:
                    print(f"[Replay] line {line_no}: {alert.kind.value.upper()} - {alert.message}")
                    if alert.recommended_script:
                        print(f"         SAY: {alert.recommended_script}")
            clock.tick()

    summary = session.summary()
    manager.end_session("replay")
    print(f"[Replay] Detected: {', '.join(d['name'] for d in summary['detected']) or 'none'}")
    print(f"[Replay] {summary['fragmentsProcessed']} fragments, {summary['fragmentsMatched']} matched, {total} alerts")
    return 0


def main():
    parser = argparse.ArgumentParser(description="Replay a call transcript through objection detection")
    parser.add_argument("transcript", type=str, help="Text file with one transcript fragment per line")
    parser.add_argument("--seed", type=str, required=True, help="Seed JSON (objections.json layout)")
    parser.add_argument("--team", type=str, default="default", help="Team id to seed")
    parser.add_argument("--step", type=float, default=5.0, help="Seconds of call time per fragment")
    parser.add_argument("--cooldown", type=float, default=None, help="Alert cooldown override in seconds")
    parser.add_argument("--threshold", type=float, default=None, help="Match threshold override")
    parser.add_argument("--json", action="store_true", help="Print alerts as JSON lines")
    parser.add_argument("--log-level", type=str, default=None, help="Logging level (default WARNING)")
    args = parser.parse_args()

    sys.exit(asyncio.run(replay(args)))


if __name__ == "__main__":
    main()

"""
CoachSync Common Module

Shared infrastructure for the sync protocol and the detection engine.
"""

from .config import CoachSyncConfig, load_config
from .matcher_corpus import MatcherCorpus, MatcherEntry, PatternEntry

__all__ = [
    "CoachSyncConfig",
    "load_config",
    "MatcherCorpus",
    "MatcherEntry",
    "PatternEntry",
]

"""
CoachSync

Team content sync and live objection detection for sales calls.

Packages:
- common: Configuration, schemas, errors and the matcher corpus
- sync: Sync server, client cache and sync client
- detection: Detection engine, alert coordinator and session manager
"""

__version__ = "0.1.0"

"""
Competition & Assessment Engine
Tracks candidates through timed assessments and multi-round events.

Architecture:
- Scoring primitives: pure graders for every question type
- Proctoring monitor: tab-switch counting and auto-flagging
- Attempt / round state machines: the only code that mutates attempts and participants
- Leaderboard: read-only ranking recomputed on every request
- MongoDB: assessments, attempts, events (participants embedded), audit trail
"""

__version__ = "1.0.0"
__author__ = "Placement Platform Team"

"""
State Tracking Module

Durable record of applied migration units.
"""

from .records import AppliedRecord, Outcome, SchemaState
from .state_tracker import DEFAULT_HISTORY_TABLE, DEFAULT_LOCK_TABLE, StateTracker

__all__ = [
    "StateTracker",
    "AppliedRecord",
    "Outcome",
    "SchemaState",
    "DEFAULT_HISTORY_TABLE",
    "DEFAULT_LOCK_TABLE",
]

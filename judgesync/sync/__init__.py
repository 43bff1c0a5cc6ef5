"""
JudgeSync - Sync Managers

Court, judge and decision managers sharing one run loop (base.SyncManager).
"""

from .base import Candidate, SyncManager
from .court_sync import CourtSyncManager
from .decision_sync import DecisionSyncManager
from .judge_sync import JudgeSyncManager
from .runner import MANAGERS, create_sync_manager, run_sync

__all__ = [
    "Candidate",
    "SyncManager",
    "CourtSyncManager",
    "JudgeSyncManager",
    "DecisionSyncManager",
    "MANAGERS",
    "create_sync_manager",
    "run_sync",
]

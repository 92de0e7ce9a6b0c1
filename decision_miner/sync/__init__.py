"""
Repository sync: cursor bookkeeping and the sync orchestrator.
"""

from .cursor import Cursor, CursorManager
from .orchestrator import SyncOrchestrator, SyncStartResult, SyncTriggerResult

__all__ = [
    "Cursor",
    "CursorManager",
    "SyncOrchestrator",
    "SyncStartResult",
    "SyncTriggerResult",
]

"""
Synchronisation components for Tidemark.

This package provides:
- The sync engine and its cycle state machine
- Watermark and merge logic for incremental pulls
- Outbound queue reconciliation with bounded retry
- Deferred caller operations, observers and completion callbacks
"""

from .callbacks import PendingCallbacks, call_handler
from .deferred import DeferredQueue, DeferredOperation
from .engine import SyncEngine, SyncResult, SyncPhase, SetupState
from .observers import ObserverRegistry
from .queue import DrainReport, Outcome, QueueReconciler, RetryPolicy, SubmissionOutcome

__all__ = [
    'SyncEngine',
    'SyncResult',
    'SyncPhase',
    'SetupState',
    'PendingCallbacks',
    'call_handler',
    'DeferredQueue',
    'DeferredOperation',
    'ObserverRegistry',
    'DrainReport',
    'Outcome',
    'QueueReconciler',
    'RetryPolicy',
    'SubmissionOutcome',
]

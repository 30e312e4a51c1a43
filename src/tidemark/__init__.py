"""
Tidemark - offline-first record synchronisation for asyncio.

This package keeps a local mirror of named record collections, lets callers
mutate records while disconnected, and reconciles with a remote source of
truth through:
- Watermark-based incremental pulls
- A durable outbound mutation queue with bounded retry
- Pluggable local stores (SQLite, JSON files, memory) and an HTTP transport
"""

__version__ = "0.1.0"

from .models import CollectionSpec, Envelope, SyncState
from .sync import SyncEngine, SyncResult, SyncPhase, SetupState

__all__ = [
    'SyncEngine',
    'SyncResult',
    'SyncPhase',
    'SetupState',
    'SyncState',
    'CollectionSpec',
    'Envelope',
    '__version__',
]

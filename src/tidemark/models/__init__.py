"""
Data models for Tidemark.
"""

from .paths import FieldPath
from .record import (
    SyncState,
    Record,
    EPOCH,
    REPLACED_TIMESTAMP,
    SYNC_STATE_FIELD,
    SYNC_ATTEMPTS_FIELD,
    generate_timestamp,
    normalize_timestamp,
    generate_primary_key,
)
from .envelope import Envelope, wrap_for_write
from .collection import (
    CollectionSpec,
    CollectionSnapshot,
    Collection,
    CollectionRegistry,
    MergeResult,
)

__all__ = [
    'FieldPath',
    'SyncState',
    'Record',
    'EPOCH',
    'REPLACED_TIMESTAMP',
    'SYNC_STATE_FIELD',
    'SYNC_ATTEMPTS_FIELD',
    'generate_timestamp',
    'normalize_timestamp',
    'generate_primary_key',
    'Envelope',
    'wrap_for_write',
    'CollectionSpec',
    'CollectionSnapshot',
    'Collection',
    'CollectionRegistry',
    'MergeResult',
]

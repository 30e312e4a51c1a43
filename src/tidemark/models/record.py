"""
Record model for Tidemark.

Records are plain JSON-compatible dicts. The engine owns two bookkeeping
keys on every record (``syncState`` and ``syncAttempts``); the primary key and
timestamp live at the field paths declared by the record's collection.
"""

from datetime import datetime, timezone
from enum import IntEnum
from typing import Any, Dict, Optional
import copy
import uuid


SYNC_STATE_FIELD = "syncState"
SYNC_ATTEMPTS_FIELD = "syncAttempts"
ENGINE_FIELDS = frozenset({SYNC_STATE_FIELD, SYNC_ATTEMPTS_FIELD})

# Initial watermark
EPOCH = "1970-01-01T00:00:00.000Z"

# Timestamp given to replaced records; sorts before EPOCH so every pull window
# starting at a real watermark is later than it.
REPLACED_TIMESTAMP = "1969-01-01T00:00:00.000Z"

Record = Dict[str, Any]


class SyncState(IntEnum):
    """Per-record synchronisation state."""
    PENDING_CREATE = 0
    SYNCED = 1
    PENDING_UPDATE = 2

    @property
    def is_pending(self) -> bool:
        return self is not SyncState.SYNCED


def generate_timestamp(now: Optional[datetime] = None) -> str:
    """ISO-8601 UTC instant with millisecond precision, e.g. 2016-01-01T00:00:00.000Z."""
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def normalize_timestamp(value: Any) -> Optional[str]:
    """Coerce a stored timestamp into the canonical comparable form.

    Returns None when the value cannot be read as an instant.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return generate_timestamp(value)
    if not isinstance(value, str) or not value:
        return None
    if value in (EPOCH, REPLACED_TIMESTAMP):
        return value
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return generate_timestamp(parsed)


def generate_primary_key() -> str:
    return str(uuid.uuid4())


def sync_state_of(record: Record) -> Optional[SyncState]:
    """The record's sync state, or None if it has never been through the engine."""
    value = record.get(SYNC_STATE_FIELD)
    if value is None:
        return None
    try:
        return SyncState(int(value))
    except (TypeError, ValueError):
        return None


def set_sync_state(record: Record, state: SyncState) -> Record:
    record[SYNC_STATE_FIELD] = int(state)
    return record


def sync_attempts_of(record: Record) -> int:
    return int(record.get(SYNC_ATTEMPTS_FIELD) or 0)


def clear_sync_attempts(record: Record) -> Record:
    record.pop(SYNC_ATTEMPTS_FIELD, None)
    return record


def copy_record(record: Record) -> Record:
    return copy.deepcopy(record)


def strip_engine_fields(record: Record) -> Record:
    """Copy of the record without engine bookkeeping, as sent to the remote."""
    return {k: copy.deepcopy(v) for k, v in record.items() if k not in ENGINE_FIELDS}


def shape_of(record: Record) -> frozenset:
    """Top-level field names, ignoring engine bookkeeping."""
    return frozenset(k for k in record.keys() if k not in ENGINE_FIELDS)


def is_pending(record: Record) -> bool:
    state = sync_state_of(record)
    return state is not None and state.is_pending


__all__ = [
    'SyncState',
    'Record',
    'SYNC_STATE_FIELD',
    'SYNC_ATTEMPTS_FIELD',
    'ENGINE_FIELDS',
    'EPOCH',
    'REPLACED_TIMESTAMP',
    'generate_timestamp',
    'normalize_timestamp',
    'generate_primary_key',
    'sync_state_of',
    'set_sync_state',
    'sync_attempts_of',
    'clear_sync_attempts',
    'copy_record',
    'strip_engine_fields',
    'shape_of',
    'is_pending',
]

"""
Watermark and merge helpers.

The engine keeps one global ``last_checked`` cursor (an ISO-8601 instant).
Incremental pulls ask the remote for records changed since that cursor; the
cursor only ever moves forward. Timestamps are compared as canonical
``YYYY-MM-DDTHH:MM:SS.mmmZ`` strings, for which lexicographic order is
chronological order.
"""

from typing import Any, List, Optional, Tuple
import json

from ..models import (
    Collection,
    CollectionSpec,
    Envelope,
    EPOCH,
    REPLACED_TIMESTAMP,
    Record,
    SyncState,
    generate_timestamp,
)
from ..models.record import clear_sync_attempts, copy_record, set_sync_state, shape_of
from ..utils.logging import get_logger


logger = get_logger("tidemark.sync.watermark")


def raise_watermark(current: str, candidate: Optional[str]) -> str:
    """``candidate`` if it is strictly later than ``current``, else ``current``."""
    if candidate and candidate > current:
        return candidate
    return current


def restore_candidate(collection: Collection) -> Optional[str]:
    """Watermark implied by a restored collection.

    The latest timestamp among synced records; without any, the timestamp of
    the last queued record in stored order.
    """
    synced, queued = collection.partition_by_queue_state()
    stamps = [ts for ts in (collection.timestamp_of(r) for r in synced) if ts]
    if stamps:
        return max(stamps)
    if queued:
        return collection.timestamp_of(queued[-1])
    return None


def has_newer_than(collection: Collection, watermark: str) -> bool:
    return any((collection.timestamp_of(r) or EPOCH) > watermark for r in collection.records)


def pull_window(collection: Collection, last_checked: str) -> str:
    """Start of the pull window for one collection.

    Collections holding replaced records pull from the replace sentinel so
    the remote's version of those records comes back.
    """
    if collection.has_replaced_records():
        return REPLACED_TIMESTAMP
    return last_checked


def decode_payload(data: Any) -> Any:
    """Decode JSON text bodies; other values pass through."""
    if isinstance(data, (bytes, bytearray)):
        data = data.decode("utf-8")
    if isinstance(data, str):
        if not data.strip():
            return []
        return json.loads(data)
    return data


def extract_records(data: Any, spec: CollectionSpec) -> Tuple[List[Any], Optional[Envelope]]:
    """Records carried by a pull response, plus its envelope when wrapped.

    Raises ValueError for bodies that carry no records at all.
    """
    data = decode_payload(data)
    wrapper = spec.read_wrapper
    if wrapper is not None and isinstance(data, dict):
        envelope, records = Envelope.unwrap(data, wrapper)
        return records, envelope
    if data is None:
        return [], None
    if isinstance(data, list):
        return data, None
    if isinstance(data, dict):
        return [data], None
    raise ValueError(f"Unexpected pull payload of type {type(data).__name__}")


def prepare_pulled(records: List[Any], collection: Collection, now: Optional[str] = None) -> List[Record]:
    """Copies of pulled records marked Synced, timestamps in canonical form.

    Records without a readable timestamp are stamped with ``now``.
    """
    now = now or generate_timestamp()
    prepared = []
    for raw in records:
        if not isinstance(raw, dict):
            logger.warning("non_object_record_skipped", collection=collection.name, value_type=type(raw).__name__)
            continue
        record = copy_record(raw)
        set_sync_state(record, SyncState.SYNCED)
        clear_sync_attempts(record)
        timestamp = collection.timestamp_of(record)
        if timestamp is None:
            original = collection.spec.timestamp_path.get(record)
            if original is not None:
                logger.warning(
                    "pulled_timestamp_unreadable",
                    collection=collection.name,
                    primary_key=collection.primary_key_of(record),
                    value=repr(original)
                )
            timestamp = now
        collection.set_timestamp(record, timestamp)
        prepared.append(record)
    return prepared


def close_replaced(collection: Collection, pulled_at: str) -> int:
    """Restamp replaced records a sentinel pull did not bring back.

    The remote no longer has them, so they stop holding the collection's
    pull window at the sentinel.
    """
    closed = 0
    for record in collection.records:
        if collection.timestamp_of(record) == REPLACED_TIMESTAMP:
            collection.set_timestamp(record, pulled_at)
            closed += 1
    if closed:
        logger.info("replaced_records_closed", collection=collection.name, records=closed, timestamp=pulled_at)
    return closed


def shape_drifted(collection: Collection, pulled: List[Any]) -> bool:
    """Whether the first pulled record's field names differ from the first stored record's."""
    if not collection.records or not pulled or not isinstance(pulled[0], dict):
        return False
    return shape_of(pulled[0]) != collection.shape()


__all__ = [
    'raise_watermark',
    'restore_candidate',
    'has_newer_than',
    'pull_window',
    'decode_payload',
    'extract_records',
    'prepare_pulled',
    'close_replaced',
    'shape_drifted',
]

"""
Collection models for Tidemark.

A collection is a named, independently synchronised set of records with its
own remote endpoints. This module holds the declaration (``CollectionSpec``),
the in-memory mirror (``Collection``), its persisted form
(``CollectionSnapshot``) and the registry that owns all declared collections.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple
import copy

from .envelope import Envelope
from .paths import FieldPath
from .record import (
    Record,
    SyncState,
    REPLACED_TIMESTAMP,
    normalize_timestamp,
    shape_of,
    sync_state_of,
)
from ..utils.errors import (
    CollectionNotFoundError,
    DuplicateCollectionError,
    InvalidCollectionError,
)
from ..utils.logging import get_logger


logger = get_logger("tidemark.collections")

REQUIRED_FIELDS = (
    "name",
    "primary_key_field",
    "timestamp_field",
    "read_endpoint",
    "create_endpoint",
)


@dataclass(frozen=True)
class CollectionSpec:
    """Declaration of a collection."""
    name: str
    primary_key_field: str
    timestamp_field: str
    read_endpoint: str
    create_endpoint: str
    update_endpoint: Optional[str] = None
    read_wrapper_path: Optional[str] = None
    write_wrapper_path: Optional[str] = None

    def __post_init__(self):
        missing = [name for name in REQUIRED_FIELDS if not getattr(self, name)]
        if missing:
            raise InvalidCollectionError(missing)
        if not self.update_endpoint:
            object.__setattr__(self, "update_endpoint", self.create_endpoint)
        for attr in ("primary_key_field", "timestamp_field", "read_wrapper_path", "write_wrapper_path"):
            value = getattr(self, attr)
            if value is not None:
                try:
                    FieldPath.parse(value)
                except ValueError as e:
                    raise InvalidCollectionError([attr], cause=e) from e

    @property
    def primary_key_path(self) -> FieldPath:
        return FieldPath.parse(self.primary_key_field)

    @property
    def timestamp_path(self) -> FieldPath:
        return FieldPath.parse(self.timestamp_field)

    @property
    def read_wrapper(self) -> Optional[FieldPath]:
        return FieldPath.parse(self.read_wrapper_path) if self.read_wrapper_path else None

    @property
    def write_wrapper(self) -> Optional[FieldPath]:
        return FieldPath.parse(self.write_wrapper_path) if self.write_wrapper_path else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "primary_key_field": self.primary_key_field,
            "timestamp_field": self.timestamp_field,
            "read_endpoint": self.read_endpoint,
            "create_endpoint": self.create_endpoint,
            "update_endpoint": self.update_endpoint,
            "read_wrapper_path": self.read_wrapper_path,
            "write_wrapper_path": self.write_wrapper_path,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CollectionSpec":
        return cls(
            name=data.get("name"),
            primary_key_field=data.get("primary_key_field"),
            timestamp_field=data.get("timestamp_field"),
            read_endpoint=data.get("read_endpoint"),
            create_endpoint=data.get("create_endpoint"),
            update_endpoint=data.get("update_endpoint"),
            read_wrapper_path=data.get("read_wrapper_path"),
            write_wrapper_path=data.get("write_wrapper_path"),
        )


@dataclass
class CollectionSnapshot:
    """Persisted form of one collection: its spec, records and envelope."""
    name: str
    spec: Dict[str, Any]
    records: List[Record] = field(default_factory=list)
    envelope: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "spec": self.spec,
            "records": self.records,
            "envelope": self.envelope,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CollectionSnapshot":
        return cls(
            name=data["name"],
            spec=data.get("spec") or {},
            records=list(data.get("records") or []),
            envelope=data.get("envelope"),
        )


@dataclass
class MergeResult:
    """Outcome of merging a batch of records into a collection."""
    created: int = 0
    updated: int = 0
    skipped: int = 0

    @property
    def total(self) -> int:
        return self.created + self.updated


class Collection:
    """In-memory mirror of one collection's records."""

    def __init__(self, spec: CollectionSpec):
        self.spec = spec
        self.records: List[Record] = []
        self.envelope: Optional[Envelope] = None
        self._index: Dict[Any, int] = {}

    @property
    def name(self) -> str:
        return self.spec.name

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self) -> Iterator[Record]:
        return iter(self.records)

    def primary_key_of(self, record: Record) -> Any:
        return self.spec.primary_key_path.get(record)

    def timestamp_of(self, record: Record) -> Optional[str]:
        return normalize_timestamp(self.spec.timestamp_path.get(record))

    def set_primary_key(self, record: Record, key: Any) -> Record:
        self.spec.primary_key_path.set(record, key)
        return record

    def set_timestamp(self, record: Record, timestamp: str) -> Record:
        self.spec.timestamp_path.set(record, timestamp)
        return record

    def get(self, key: Any) -> Optional[Record]:
        position = self._index.get(key)
        return self.records[position] if position is not None else None

    def merge(self, incoming: List[Record]) -> MergeResult:
        """Apply records keyed by primary key: replace in place or append."""
        result = MergeResult()
        for record in incoming:
            key = self.primary_key_of(record)
            if key is None:
                result.skipped += 1
                logger.warning("record_without_primary_key", collection=self.name)
                continue
            position = self._index.get(key)
            if position is not None:
                self.records[position] = record
                result.updated += 1
            else:
                self._index[key] = len(self.records)
                self.records.append(record)
                result.created += 1
        return result

    def replace_all(self, records: List[Record]) -> MergeResult:
        self.clear()
        return self.merge(records)

    def clear(self) -> None:
        self.records = []
        self._index = {}
        self.envelope = None

    def pending(self, state: SyncState) -> List[Record]:
        return [r for r in self.records if sync_state_of(r) is state]

    def partition_by_queue_state(self) -> Tuple[List[Record], List[Record]]:
        """Split into (synced, queued) records, preserving stored order."""
        synced, queued = [], []
        for record in self.records:
            (synced if sync_state_of(record) is SyncState.SYNCED else queued).append(record)
        return synced, queued

    def has_replaced_records(self) -> bool:
        return any(self.timestamp_of(r) == REPLACED_TIMESTAMP for r in self.records)

    def shape(self) -> Optional[frozenset]:
        return shape_of(self.records[0]) if self.records else None

    def read(self) -> Any:
        """Current records, re-wrapped in the captured envelope if there is one."""
        if self.envelope is not None:
            return self.envelope.wrap(self.records)
        return copy.deepcopy(self.records)

    def to_snapshot(self) -> CollectionSnapshot:
        return CollectionSnapshot(
            name=self.name,
            spec=self.spec.to_dict(),
            records=copy.deepcopy(self.records),
            envelope=self.envelope.to_dict() if self.envelope else None,
        )

    def load_snapshot(self, snapshot: CollectionSnapshot) -> MergeResult:
        result = self.replace_all(copy.deepcopy(snapshot.records))
        self.envelope = Envelope.from_dict(snapshot.envelope)
        return result

    def describe(self) -> Dict[str, Any]:
        """Spec metadata without record payloads."""
        info = self.spec.to_dict()
        info["record_count"] = len(self.records)
        info["pending"] = sum(1 for r in self.records if sync_state_of(r) is not SyncState.SYNCED)
        return info


class CollectionRegistry:
    """Declared collections, addressable by name, in declaration order."""

    def __init__(self):
        self._collections: Dict[str, Collection] = {}

    def declare(self, spec: CollectionSpec) -> Collection:
        if spec.name in self._collections:
            raise DuplicateCollectionError(spec.name)
        collection = Collection(spec)
        self._collections[spec.name] = collection
        logger.info("collection_declared", collection=spec.name)
        return collection

    def get(self, name: str) -> Collection:
        try:
            return self._collections[name]
        except KeyError:
            raise CollectionNotFoundError(name) from None

    def __contains__(self, name: object) -> bool:
        return name in self._collections

    def __iter__(self) -> Iterator[Collection]:
        return iter(list(self._collections.values()))

    def __len__(self) -> int:
        return len(self._collections)

    def names(self) -> List[str]:
        return list(self._collections.keys())

    def total_records(self) -> int:
        return sum(len(c) for c in self._collections.values())

    def specs(self) -> List[Dict[str, Any]]:
        return [c.describe() for c in self._collections.values()]


__all__ = [
    'CollectionSpec',
    'CollectionSnapshot',
    'Collection',
    'CollectionRegistry',
    'MergeResult',
]

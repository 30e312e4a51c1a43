"""
Unit tests for collection declarations, merge and the registry.
"""

import pytest

from tidemark.models import (
    Collection,
    CollectionRegistry,
    CollectionSnapshot,
    CollectionSpec,
    Envelope,
    FieldPath,
    SyncState,
)
from tidemark.utils.errors import (
    CollectionNotFoundError,
    ConfigurationError,
    DuplicateCollectionError,
    InvalidCollectionError,
)

from tests.fixtures import RecordFixtures


class TestCollectionSpec:
    """Test collection declarations."""

    def test_update_endpoint_defaults_to_create(self):
        spec = CollectionSpec(**RecordFixtures.NOTES)

        assert spec.update_endpoint == "/notes"

    def test_missing_fields_reported(self):
        declaration = dict(RecordFixtures.TODOS, timestamp_field="", read_endpoint=None)

        with pytest.raises(InvalidCollectionError) as exc_info:
            CollectionSpec(**declaration)

        assert exc_info.value.missing == ["timestamp_field", "read_endpoint"]
        assert isinstance(exc_info.value, ConfigurationError)

    def test_bad_wrapper_path_rejected(self):
        with pytest.raises(InvalidCollectionError):
            CollectionSpec(**dict(RecordFixtures.TODOS, read_wrapper_path="a..b"))

    def test_dict_form(self):
        spec = CollectionSpec(**RecordFixtures.TODOS)

        assert CollectionSpec.from_dict(spec.to_dict()) == spec


class TestCollectionMerge:
    """Test keyed merge."""

    def test_merge_appends_and_replaces_in_place(self, todos):
        todos.merge([
            RecordFixtures.todo("a", "first"),
            RecordFixtures.todo("b", "second"),
        ])

        result = todos.merge([
            RecordFixtures.todo("a", "first, edited"),
            RecordFixtures.todo("c", "third"),
        ])

        assert (result.created, result.updated) == (1, 1)
        assert [r["id"] for r in todos.records] == ["a", "b", "c"]
        assert todos.get("a")["title"] == "first, edited"

    def test_merge_is_idempotent(self, todos):
        batch = [RecordFixtures.todo("a"), RecordFixtures.todo("b")]

        todos.merge([dict(r) for r in batch])
        once = [dict(r) for r in todos.records]
        todos.merge([dict(r) for r in batch])

        assert todos.records == once

    def test_records_without_key_skipped(self, todos):
        result = todos.merge([{"title": "no key"}, RecordFixtures.todo("a")])

        assert result.skipped == 1
        assert len(todos) == 1

    def test_nested_key_and_timestamp(self):
        notes = Collection(CollectionSpec(**RecordFixtures.NOTES))
        record = {"body": "hi"}
        notes.set_primary_key(record, "n1")
        notes.set_timestamp(record, "2020-01-01T00:00:00Z")

        assert record == {"body": "hi", "meta": {"id": "n1", "updatedAt": "2020-01-01T00:00:00Z"}}
        assert notes.primary_key_of(record) == "n1"
        assert notes.timestamp_of(record) == "2020-01-01T00:00:00.000Z"

    def test_partition_preserves_order(self, todos):
        todos.merge([
            dict(RecordFixtures.todo("a"), syncState=0),
            dict(RecordFixtures.todo("b"), syncState=1),
            dict(RecordFixtures.todo("c"), syncState=2),
        ])

        synced, queued = todos.partition_by_queue_state()

        assert [r["id"] for r in synced] == ["b"]
        assert [r["id"] for r in queued] == ["a", "c"]
        assert [r["id"] for r in todos.pending(SyncState.PENDING_UPDATE)] == ["c"]

    def test_snapshot_round_trip(self, todos):
        todos.merge([RecordFixtures.todo("b"), RecordFixtures.todo("a")])
        todos.envelope = Envelope(FieldPath.parse("items"), {"items": [], "total": 2})

        snapshot = CollectionSnapshot.from_dict(todos.to_snapshot().to_dict())
        restored = Collection(todos.spec)
        restored.load_snapshot(snapshot)

        assert [r["id"] for r in restored.records] == ["b", "a"]
        assert restored.envelope == todos.envelope
        assert restored.get("a") is not None

    def test_read_rewraps_envelope(self, todos):
        todos.merge([RecordFixtures.todo("a")])
        assert todos.read() == [RecordFixtures.todo("a")]

        todos.envelope = Envelope(FieldPath.parse("items"), {"items": [], "total": 1})
        assert todos.read() == {"items": [RecordFixtures.todo("a")], "total": 1}


class TestCollectionRegistry:
    """Test the registry of declared collections."""

    def test_duplicate_declaration_rejected(self):
        registry = CollectionRegistry()
        first = registry.declare(CollectionSpec(**RecordFixtures.TODOS))

        with pytest.raises(DuplicateCollectionError):
            registry.declare(CollectionSpec(**dict(RecordFixtures.TODOS, create_endpoint="/other")))

        assert registry.get("todos") is first
        assert len(registry) == 1

    def test_unknown_collection(self):
        registry = CollectionRegistry()

        with pytest.raises(CollectionNotFoundError) as exc_info:
            registry.get("nope")

        assert isinstance(exc_info.value, ConfigurationError)
        assert "nope" in str(exc_info.value)

    def test_specs_exclude_records(self):
        registry = CollectionRegistry()
        registry.declare(CollectionSpec(**RecordFixtures.TODOS)).merge([
            dict(RecordFixtures.todo("a"), syncState=0),
        ])

        specs = registry.specs()

        assert specs[0]["name"] == "todos"
        assert specs[0]["record_count"] == 1
        assert specs[0]["pending"] == 1
        assert "records" not in specs[0]

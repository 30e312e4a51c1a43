"""
Unit tests for field paths, records and envelopes.
"""

import re

import pytest

from tidemark.models import (
    EPOCH,
    REPLACED_TIMESTAMP,
    Envelope,
    FieldPath,
    SyncState,
    generate_primary_key,
    generate_timestamp,
    normalize_timestamp,
    wrap_for_write,
)
from tidemark.models.record import shape_of, strip_engine_fields, sync_state_of


TIMESTAMP_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z$")


class TestFieldPath:
    """Test dotted path addressing."""

    def test_get_nested(self):
        record = {"meta": {"id": "a1", "tags": ["x", "y"]}}

        assert FieldPath.parse("meta.id").get(record) == "a1"
        assert FieldPath.parse("meta.tags.1").get(record) == "y"
        assert FieldPath.parse("meta.missing").get(record) is None
        assert FieldPath.parse("meta.missing").get(record, "default") == "default"

    def test_set_creates_intermediate_containers(self):
        record = {}
        FieldPath.parse("payload.items").set(record, [1, 2])
        FieldPath.parse("pages.0.name").set(record, "first")

        assert record == {"payload": {"items": [1, 2]}, "pages": [{"name": "first"}]}

    def test_has_distinguishes_none_from_missing(self):
        path = FieldPath.parse("a.b")

        assert path.has({"a": {"b": None}})
        assert not path.has({"a": {}})

    @pytest.mark.parametrize("bad", ["", "  ", "a..b", ".a", None])
    def test_invalid_paths_rejected(self, bad):
        with pytest.raises(ValueError):
            FieldPath.parse(bad)

    def test_str_round_trips(self):
        assert str(FieldPath.parse("payload.0.items")) == "payload.0.items"


class TestRecords:
    """Test record helpers."""

    def test_generate_timestamp_format(self):
        assert TIMESTAMP_RE.match(generate_timestamp())

    def test_sentinel_sorts_before_epoch(self):
        assert REPLACED_TIMESTAMP < EPOCH

    def test_normalize_timestamp(self):
        assert normalize_timestamp("2016-01-01T00:00:00Z") == "2016-01-01T00:00:00.000Z"
        assert normalize_timestamp("2016-01-01T02:00:00.500+02:00") == "2016-01-01T00:00:00.500Z"
        assert normalize_timestamp(EPOCH) == EPOCH
        assert normalize_timestamp("yesterday") is None
        assert normalize_timestamp(None) is None

    def test_generated_keys_are_unique(self):
        assert generate_primary_key() != generate_primary_key()

    def test_sync_state_of(self):
        assert sync_state_of({"syncState": 2}) is SyncState.PENDING_UPDATE
        assert sync_state_of({}) is None
        assert sync_state_of({"syncState": "bogus"}) is None

    def test_strip_engine_fields(self):
        record = {"id": "a", "syncState": 0, "syncAttempts": 2, "nested": {"v": 1}}
        stripped = strip_engine_fields(record)

        assert stripped == {"id": "a", "nested": {"v": 1}}
        stripped["nested"]["v"] = 2
        assert record["nested"]["v"] == 1

    def test_shape_ignores_engine_fields(self):
        assert shape_of({"id": 1, "syncState": 1}) == shape_of({"id": 2})


class TestEnvelope:
    """Test payload envelopes."""

    def test_unwrap_leaves_payload_untouched(self):
        payload = {"meta": {"page": 1}, "payload": {"items": [{"id": "a"}]}}

        envelope, records = Envelope.unwrap(payload, FieldPath.parse("payload.items"))

        assert records == [{"id": "a"}]
        assert envelope.value == {"meta": {"page": 1}, "payload": {"items": []}}
        assert payload["payload"]["items"] == [{"id": "a"}]

    def test_unwrap_single_object(self):
        envelope, records = Envelope.unwrap({"data": {"id": "a"}}, FieldPath.parse("data"))

        assert records == [{"id": "a"}]
        assert envelope.value == {"data": []}

    def test_wrap_builds_new_payload(self):
        envelope, _ = Envelope.unwrap({"meta": 1, "items": []}, FieldPath.parse("items"))

        wrapped = envelope.wrap([{"id": "b"}])

        assert wrapped == {"meta": 1, "items": [{"id": "b"}]}
        assert envelope.value == {"meta": 1, "items": []}

    def test_dict_form(self):
        envelope = Envelope(FieldPath.parse("payload.items"), {"payload": {"items": []}})

        restored = Envelope.from_dict(envelope.to_dict())

        assert restored == envelope
        assert Envelope.from_dict(None) is None

    def test_wrap_for_write(self):
        record = {"id": "a"}

        assert wrap_for_write(record, None) is record
        assert wrap_for_write(record, FieldPath.parse("data.todo")) == {"data": {"todo": {"id": "a"}}}

"""Tests for the JSON-backed record and hash sources."""

import json
from datetime import datetime, timezone

import pytest

from leasecore.deduplication.audit_system import DeduplicationAudit
from leasecore.deduplication.models import BatchFilter
from leasecore.deduplication.sources import (
    EmptyHashStore,
    GroupRepository,
    HashStore,
    JsonHashStore,
    JsonRecordSource,
    RecordSource,
)
from leasecore.errors import ConfigurationError


RAW_RECORDS = [
    {"id": "old", "owner_id": "o1", "title": "Loft", "status": "active", "created_at": "2024-01-01T00:00:00"},
    {"id": "new", "owner_id": "o2", "title": "Loft", "status": "active", "created_at": "2024-06-01T00:00:00+00:00"},
    {"id": "draft", "owner_id": "o1", "title": "Studio", "status": "draft", "created_at": "2024-03-01T00:00:00Z"},
    {"id": "undated", "owner_id": "o2", "title": "Villa"},
]


@pytest.fixture
def records_file(tmp_path):
    path = tmp_path / "records.json"
    path.write_text(json.dumps(RAW_RECORDS))
    return str(path)


class TestJsonRecordSource:

    def test_newest_first(self, records_file):
        records = JsonRecordSource(records_file).fetch_records(BatchFilter())
        assert [r.id for r in records] == ["new", "draft", "old", "undated"]

    def test_filters(self, records_file):
        source = JsonRecordSource(records_file)

        assert [r.id for r in source.fetch_records(BatchFilter(owner_id="o1"))] == ["draft", "old"]
        assert [r.id for r in source.fetch_records(BatchFilter(status="active"))] == ["new", "old"]
        since = datetime(2024, 2, 1, tzinfo=timezone.utc)
        assert [r.id for r in source.fetch_records(BatchFilter(created_since=since))] == ["new", "draft"]
        assert [r.id for r in source.fetch_records(BatchFilter(limit=1))] == ["new"]

    def test_wrapped_export(self, tmp_path):
        path = tmp_path / "export.json"
        path.write_text(json.dumps({"records": RAW_RECORDS[:2]}))

        assert len(JsonRecordSource(str(path)).fetch_records(BatchFilter())) == 2

    def test_invalid_record(self, tmp_path):
        path = tmp_path / "records.json"
        path.write_text(json.dumps([{"title": "no id"}]))

        with pytest.raises(ConfigurationError) as exc_info:
            JsonRecordSource(str(path)).fetch_records(BatchFilter())
        assert "index 0" in exc_info.value.message

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            JsonRecordSource(str(tmp_path / "none.json")).fetch_records(BatchFilter())


class TestHashStores:

    def test_json_hash_store(self, tmp_path):
        path = tmp_path / "hashes.json"
        path.write_text(json.dumps([
            {"record_id": "a", "media_url": "u1", "hash_algorithm": "phash", "hash_value": "ff00"},
            {"record_id": "b", "media_url": "u2", "hash_algorithm": "phash", "hash_value": "ff01"},
        ]))

        rows = JsonHashStore(str(path)).fetch_hashes(["a", "z"])
        assert [r.record_id for r in rows] == ["a"]

    def test_empty_hash_store(self):
        assert EmptyHashStore().fetch_hashes(["a"]) == []


class TestProtocols:

    def test_implementations_satisfy_protocols(self, tmp_path, records_file):
        assert isinstance(JsonRecordSource(records_file), RecordSource)
        assert isinstance(EmptyHashStore(), HashStore)
        assert isinstance(DeduplicationAudit(str(tmp_path / "g.db")), GroupRepository)

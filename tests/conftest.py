"""Shared fixtures for the duplicate detection tests."""

from typing import List, Sequence

import pytest

from leasecore.deduplication.audit_system import DeduplicationAudit
from leasecore.deduplication.models import (
    BatchFilter,
    MatchResult,
    MediaHashRow,
    PropertyRecord,
)


BASE_LISTING = {
    "owner_id": "owner-1",
    "title": "Bright 2BR apartment near the park",
    "street_name": "Main Street",
    "street_number": "12",
    "city": "Springfield",
    "zip_code": "12345",
    "bedrooms": 2,
    "bathrooms": 1,
    "square_meters": 75,
    "monthly_rent": 1200,
}


class StaticRecordSource:
    """Record source serving a fixed list, ignoring everything but the limit."""

    def __init__(self, records: Sequence[PropertyRecord]):
        self.records = list(records)
        self.calls: List[BatchFilter] = []

    def fetch_records(self, batch_filter: BatchFilter) -> List[PropertyRecord]:
        self.calls.append(batch_filter)
        return self.records[:batch_filter.limit]


class StaticHashStore:
    def __init__(self, rows: Sequence[MediaHashRow] = ()):
        self.rows = list(rows)

    def fetch_hashes(self, record_ids):
        wanted = set(record_ids)
        return [row for row in self.rows if row.record_id in wanted]


@pytest.fixture
def make_record():
    """Factory for listings based on a complete two-bedroom flat."""

    def _make(record_id: str, **overrides) -> PropertyRecord:
        data = dict(BASE_LISTING)
        data.update(overrides)
        return PropertyRecord(id=record_id, **data)

    return _make


@pytest.fixture
def make_match():
    def _make(left_id: str, right_id: str, confidence: float, **kwargs) -> MatchResult:
        kwargs.setdefault("reasons", ["identical_title"])
        kwargs.setdefault("field_scores", {"title": 1.0, "address": 0.9})
        return MatchResult(left_id=left_id, right_id=right_id, confidence=confidence, **kwargs)

    return _make


@pytest.fixture
def store(tmp_path):
    """Fresh SQLite group store per test."""
    return DeduplicationAudit(str(tmp_path / "groups.db"))


@pytest.fixture
def record_source():
    return StaticRecordSource


@pytest.fixture
def hash_store():
    return StaticHashStore


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep host LEASECORE_* settings out of the tests."""
    for name in (
        "LEASECORE_DB_PATH",
        "LEASECORE_SCAN_THRESHOLD",
        "LEASECORE_INCLUDE_SAME_OWNER",
        "LEASECORE_MAX_WORKERS",
        "LEASECORE_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)

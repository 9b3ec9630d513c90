"""
Record and Hash Sources

Interfaces for the collaborators the engine reads from (the listing store,
the perceptual-hash store and the group repository), plus file-backed
implementations used by the command line tool.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence, runtime_checkable

from pydantic import ValidationError

from ..errors import ConfigurationError
from .models import (
    AuditEntry,
    BatchFilter,
    DuplicateGroup,
    DuplicateGroupMember,
    GroupStatus,
    MediaHashRow,
    PropertyRecord,
)

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    """Treat naive timestamps as UTC so they compare with aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@runtime_checkable
class RecordSource(Protocol):
    def fetch_records(self, batch_filter: BatchFilter) -> List[PropertyRecord]:
        """Return records matching the filter, with media attached."""
        ...


@runtime_checkable
class HashStore(Protocol):
    def fetch_hashes(self, record_ids: Sequence[str]) -> List[MediaHashRow]:
        """Return every stored perceptual hash for the given records."""
        ...


@runtime_checkable
class GroupRepository(Protocol):
    """Group membership store and audit sink."""

    def has_pending_group(self, record_id: str) -> bool: ...

    def create_group(self, confidence: float) -> DuplicateGroup: ...

    def add_members(self, group_id: str, members: List[DuplicateGroupMember]) -> None: ...

    def delete_group(self, group_id: str) -> bool: ...

    def get_group(self, group_id: str) -> Optional[DuplicateGroup]: ...

    def list_groups(self, status: Optional[str] = None,
                    limit: Optional[int] = None) -> List[DuplicateGroup]: ...

    def apply_decision(
        self,
        group_id: str,
        status: GroupStatus,
        actor_id: str,
        notes: Optional[str] = None,
        merge_target_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        merged_records: Optional[List[Dict[str, Any]]] = None,
    ) -> AuditEntry: ...

    def get_audit_history(self, group_id: Optional[str] = None,
                          limit: int = 100) -> List[AuditEntry]: ...

    def is_fingerprint_merged(self, fingerprint: str) -> bool: ...


def _load_json_list(path: Path, kind: str) -> List[Dict[str, Any]]:
    if not path.exists():
        raise ConfigurationError(f"{kind} file not found: {path}", key=kind)
    try:
        with open(path, "r") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"{kind} file is not valid JSON: {path}", key=kind, cause=e) from e

    if isinstance(data, dict):
        # Accept {"records": [...]} style exports as well as bare lists
        data = next((v for v in data.values() if isinstance(v, list)), [])
    if not isinstance(data, list):
        raise ConfigurationError(f"{kind} file must contain a JSON list: {path}", key=kind)
    return data


class JsonRecordSource:
    """Reads listings from a JSON export and applies the batch filter in memory."""

    def __init__(self, path: str):
        self.path = Path(path)
        self._records: Optional[List[PropertyRecord]] = None

    def _load(self) -> List[PropertyRecord]:
        if self._records is None:
            records = []
            for index, raw in enumerate(_load_json_list(self.path, "records")):
                try:
                    records.append(PropertyRecord.model_validate(raw))
                except ValidationError as e:
                    raise ConfigurationError(
                        f"Invalid record at index {index} in {self.path}: {e.errors()[0]['msg']}",
                        key="records",
                        cause=e,
                    ) from e
            self._records = records
            logger.info(f"Loaded {len(records)} records from {self.path}")
        return self._records

    def fetch_records(self, batch_filter: BatchFilter) -> List[PropertyRecord]:
        selected = []
        for record in self._load():
            if batch_filter.owner_id and record.owner_id != batch_filter.owner_id:
                continue
            if batch_filter.status and record.status != batch_filter.status:
                continue
            if batch_filter.created_since:
                if record.created_at is None or (
                    _as_utc(record.created_at) < _as_utc(batch_filter.created_since)
                ):
                    continue
            selected.append(record)

        # Newest first, as a listing feed would return them
        selected.sort(
            key=lambda r: _as_utc(r.created_at).timestamp() if r.created_at else float("-inf"),
            reverse=True,
        )
        return selected[:batch_filter.limit]


class JsonHashStore:
    """Reads perceptual hash rows from a JSON file."""

    def __init__(self, path: str):
        self.path = Path(path)
        self._rows: Optional[List[MediaHashRow]] = None

    def fetch_hashes(self, record_ids: Sequence[str]) -> List[MediaHashRow]:
        if self._rows is None:
            self._rows = [MediaHashRow.model_validate(raw) for raw in _load_json_list(self.path, "hashes")]
        wanted = set(record_ids)
        return [row for row in self._rows if row.record_id in wanted]


class EmptyHashStore:
    """Hash store used when no hash data is available."""

    def fetch_hashes(self, record_ids: Sequence[str]) -> List[MediaHashRow]:
        return []

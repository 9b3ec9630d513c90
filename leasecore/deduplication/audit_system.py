"""
Duplicate Group Store and Audit Trail

SQLite-backed repository for duplicate groups, their members, the append-only
audit log of review decisions and the tracking table of records merged away.
Membership writes and review transitions run inside ``BEGIN IMMEDIATE``
transactions so that the pending-membership check and the write it guards
cannot interleave with another writer.
"""

import json
import logging
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from ..errors import (
    GroupConflictError,
    GroupNotFoundError,
    InvalidTransitionError,
    PersistenceError,
)
from .models import (
    AuditAction,
    AuditEntry,
    DuplicateGroup,
    DuplicateGroupMember,
    GroupStatus,
    utc_now,
)

logger = logging.getLogger(__name__)

_MEMBERLESS_PENDING = (
    "g.status = 'pending' AND NOT EXISTS "
    "(SELECT 1 FROM duplicate_group_members m WHERE m.group_id = g.id)"
)


class DeduplicationAudit:
    """
    Persistent store for duplicate groups and their review history.

    A record may belong to at most one pending group. The check is enforced
    at member-insert time inside a serialized write transaction.
    """

    def __init__(self, db_path: Optional[str] = None, busy_timeout: float = 5.0):
        """Initialize the store and create tables if needed.

        Args:
            db_path: SQLite database file
            busy_timeout: Seconds to wait for a competing writer's lock
        """
        self.db_path = db_path or "duplicate_groups.db"
        self.busy_timeout = busy_timeout
        self.init_database()

        self.stats = {
            "groups_created": 0,
            "groups_deleted": 0,
            "member_conflicts": 0,
            "merge_operations": 0,
            "dismiss_operations": 0,
        }

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=self.busy_timeout, isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _transaction(self):
        """Serialized write transaction; commits on success, rolls back on any error."""
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.execute("COMMIT")
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    @contextmanager
    def _reader(self):
        conn = self._connect()
        try:
            yield conn
        finally:
            conn.close()

    def init_database(self):
        """Initialize the group and audit tables."""
        try:
            with self._transaction() as conn:
                conn.execute('''
                    CREATE TABLE IF NOT EXISTS duplicate_groups (
                        id TEXT PRIMARY KEY,
                        confidence REAL NOT NULL,
                        status TEXT NOT NULL DEFAULT 'pending'
                            CHECK (status IN ('pending', 'resolved', 'dismissed')),
                        merge_target_id TEXT,
                        reviewed_by TEXT,
                        reviewed_at TEXT,
                        notes TEXT,
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    )
                ''')

                conn.execute('''
                    CREATE TABLE IF NOT EXISTS duplicate_group_members (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        group_id TEXT NOT NULL
                            REFERENCES duplicate_groups(id) ON DELETE CASCADE,
                        record_id TEXT NOT NULL,
                        similarity_reasons TEXT NOT NULL,
                        created_at TEXT NOT NULL,
                        UNIQUE (group_id, record_id)
                    )
                ''')

                conn.execute('''
                    CREATE TABLE IF NOT EXISTS audit_entries (
                        id TEXT PRIMARY KEY,
                        group_id TEXT NOT NULL,
                        actor_id TEXT NOT NULL,
                        action TEXT NOT NULL,
                        affected_properties TEXT NOT NULL,
                        details TEXT NOT NULL,
                        created_at TEXT NOT NULL
                    )
                ''')

                conn.execute('''
                    CREATE TABLE IF NOT EXISTS merged_records (
                        id TEXT PRIMARY KEY,
                        original_record_id TEXT NOT NULL,
                        target_record_id TEXT NOT NULL,
                        group_id TEXT,
                        merged_by TEXT NOT NULL,
                        fingerprint TEXT NOT NULL,
                        merge_reason TEXT,
                        original_data TEXT,
                        created_at TEXT NOT NULL
                    )
                ''')

                conn.execute('CREATE INDEX IF NOT EXISTS idx_groups_status ON duplicate_groups(status)')
                conn.execute('CREATE INDEX IF NOT EXISTS idx_members_record ON duplicate_group_members(record_id)')
                conn.execute('CREATE INDEX IF NOT EXISTS idx_audit_group ON audit_entries(group_id)')
                conn.execute('CREATE INDEX IF NOT EXISTS idx_merged_fingerprint ON merged_records(fingerprint)')

            logger.debug(f"Group store initialized at {self.db_path}")

        except sqlite3.Error as e:
            logger.error(f"Failed to initialize group store: {e}")
            raise PersistenceError("Failed to initialize group store", cause=e) from e

    # Group membership

    @staticmethod
    def _pending_conflicts(conn: sqlite3.Connection, record_ids: Iterable[str],
                           exclude_group_id: Optional[str] = None) -> List[str]:
        ids = list(record_ids)
        if not ids:
            return []
        placeholders = ",".join("?" for _ in ids)
        query = f'''
            SELECT DISTINCT m.record_id
            FROM duplicate_group_members m
            JOIN duplicate_groups g ON g.id = m.group_id
            WHERE g.status = 'pending' AND m.record_id IN ({placeholders})
        '''
        params: List[Any] = list(ids)
        if exclude_group_id is not None:
            query += " AND g.id != ?"
            params.append(exclude_group_id)
        return sorted(row["record_id"] for row in conn.execute(query, params))

    def has_pending_group(self, record_id: str) -> bool:
        """Whether the record is a member of any pending group."""
        try:
            with self._reader() as conn:
                return bool(self._pending_conflicts(conn, [record_id]))
        except sqlite3.Error as e:
            logger.error(f"Failed to check pending membership for {record_id}: {e}")
            raise PersistenceError("Failed to check pending membership", cause=e) from e

    def create_group(self, confidence: float) -> DuplicateGroup:
        """Insert a new pending group without members."""
        now = utc_now()
        group = DuplicateGroup(
            id=str(uuid.uuid4()),
            confidence=confidence,
            status=GroupStatus.PENDING,
            created_at=now,
            updated_at=now,
        )

        try:
            with self._transaction() as conn:
                conn.execute('''
                    INSERT INTO duplicate_groups (id, confidence, status, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?)
                ''', (
                    group.id,
                    group.confidence,
                    GroupStatus.PENDING.value,
                    now.isoformat(),
                    now.isoformat(),
                ))
        except sqlite3.Error as e:
            logger.error(f"Failed to create duplicate group: {e}")
            raise PersistenceError("Failed to create duplicate group", cause=e) from e

        self.stats["groups_created"] += 1
        return group

    def add_members(self, group_id: str, members: List[DuplicateGroupMember]) -> None:
        """Attach members to a group after re-checking pending membership.

        Raises:
            GroupConflictError: a member already belongs to another pending group
            PersistenceError: the write failed
        """
        now = utc_now().isoformat()
        try:
            with self._transaction() as conn:
                conflicts = self._pending_conflicts(
                    conn, [m.record_id for m in members], exclude_group_id=group_id
                )
                if conflicts:
                    self.stats["member_conflicts"] += 1
                    raise GroupConflictError(
                        f"Records already in a pending group: {', '.join(conflicts)}",
                        record_ids=conflicts,
                    )

                conn.executemany('''
                    INSERT INTO duplicate_group_members
                    (group_id, record_id, similarity_reasons, created_at)
                    VALUES (?, ?, ?, ?)
                ''', [
                    (group_id, m.record_id, json.dumps(m.similarity_reasons), now)
                    for m in members
                ])
        except sqlite3.Error as e:
            logger.error(f"Failed to add members to group {group_id}: {e}")
            raise PersistenceError(f"Failed to add members to group {group_id}", cause=e) from e

    def delete_group(self, group_id: str) -> bool:
        """Remove a group and its members. Used as a compensating action."""
        try:
            with self._transaction() as conn:
                conn.execute('DELETE FROM duplicate_group_members WHERE group_id = ?', (group_id,))
                cursor = conn.execute('DELETE FROM duplicate_groups WHERE id = ?', (group_id,))
                deleted = cursor.rowcount > 0
        except sqlite3.Error as e:
            logger.error(f"Failed to delete group {group_id}: {e}")
            raise PersistenceError(f"Failed to delete group {group_id}", cause=e) from e

        if deleted:
            self.stats["groups_deleted"] += 1
        return deleted

    # Reads

    @staticmethod
    def _row_to_group(row: sqlite3.Row, member_rows: List[sqlite3.Row]) -> DuplicateGroup:
        return DuplicateGroup(
            id=row["id"],
            confidence=row["confidence"],
            status=row["status"],
            merge_target_id=row["merge_target_id"],
            reviewed_by=row["reviewed_by"],
            reviewed_at=row["reviewed_at"],
            notes=row["notes"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            members=[
                DuplicateGroupMember(
                    group_id=m["group_id"],
                    record_id=m["record_id"],
                    similarity_reasons=json.loads(m["similarity_reasons"]),
                )
                for m in member_rows
            ],
        )

    @staticmethod
    def _member_rows(conn: sqlite3.Connection, group_id: str) -> List[sqlite3.Row]:
        return conn.execute('''
            SELECT group_id, record_id, similarity_reasons
            FROM duplicate_group_members WHERE group_id = ? ORDER BY id
        ''', (group_id,)).fetchall()

    def get_group(self, group_id: str) -> Optional[DuplicateGroup]:
        try:
            with self._reader() as conn:
                row = conn.execute(
                    'SELECT * FROM duplicate_groups WHERE id = ?', (group_id,)
                ).fetchone()
                if row is None:
                    return None
                return self._row_to_group(row, self._member_rows(conn, group_id))
        except sqlite3.Error as e:
            logger.error(f"Failed to load group {group_id}: {e}")
            raise PersistenceError(f"Failed to load group {group_id}", cause=e) from e

    def list_groups(self, status: Optional[str] = None, limit: Optional[int] = None) -> List[DuplicateGroup]:
        """Groups ordered by descending confidence, optionally filtered by status.

        Pending groups without members are left out. They exist only between
        group creation and member insertion, or after a failed compensating
        delete, and cannot be reviewed.
        """
        query = f'SELECT * FROM duplicate_groups g WHERE NOT ({_MEMBERLESS_PENDING})'
        params: List[Any] = []
        if status:
            query += ' AND g.status = ?'
            params.append(GroupStatus(status).value)
        query += ' ORDER BY confidence DESC, created_at ASC'
        if limit:
            query += ' LIMIT ?'
            params.append(limit)

        try:
            with self._reader() as conn:
                rows = conn.execute(query, params).fetchall()
                return [self._row_to_group(row, self._member_rows(conn, row["id"])) for row in rows]
        except sqlite3.Error as e:
            logger.error(f"Failed to list groups: {e}")
            raise PersistenceError("Failed to list groups", cause=e) from e

    # Review transitions

    def apply_decision(
        self,
        group_id: str,
        status: GroupStatus,
        actor_id: str,
        notes: Optional[str] = None,
        merge_target_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        merged_records: Optional[List[Dict[str, Any]]] = None,
    ) -> AuditEntry:
        """Move a pending group to a terminal status and write its audit entry.

        The status update is a compare-and-swap on ``status = 'pending'`` and
        shares one transaction with the audit insert and any merged-record
        tracking rows.

        Raises:
            GroupNotFoundError: no such group
            InvalidTransitionError: the group is no longer pending
        """
        status = GroupStatus(status)
        action = AuditAction.MERGE if status == GroupStatus.RESOLVED else AuditAction.DISMISS
        now = utc_now()

        try:
            with self._transaction() as conn:
                row = conn.execute(
                    'SELECT status FROM duplicate_groups WHERE id = ?', (group_id,)
                ).fetchone()
                if row is None:
                    raise GroupNotFoundError(f"Duplicate group {group_id} not found", group_id=group_id)

                cursor = conn.execute('''
                    UPDATE duplicate_groups
                    SET status = ?, merge_target_id = ?, reviewed_by = ?, reviewed_at = ?,
                        notes = ?, updated_at = ?
                    WHERE id = ? AND status = 'pending'
                ''', (
                    status.value,
                    merge_target_id,
                    actor_id,
                    now.isoformat(),
                    notes,
                    now.isoformat(),
                    group_id,
                ))
                if cursor.rowcount == 0:
                    raise InvalidTransitionError(
                        f"Group {group_id} is {row['status']}, expected pending",
                        group_id=group_id,
                        current_status=row["status"],
                    )

                affected = [m["record_id"] for m in self._member_rows(conn, group_id)]
                entry = AuditEntry(
                    id=str(uuid.uuid4()),
                    group_id=group_id,
                    actor_id=actor_id,
                    action=action,
                    affected_properties=affected,
                    details=details or {},
                    created_at=now,
                )
                conn.execute('''
                    INSERT INTO audit_entries
                    (id, group_id, actor_id, action, affected_properties, details, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                ''', (
                    entry.id,
                    entry.group_id,
                    entry.actor_id,
                    action.value,
                    json.dumps(entry.affected_properties),
                    json.dumps(entry.details, default=str),
                    now.isoformat(),
                ))

                for merged in merged_records or []:
                    self._insert_merged_record(conn, group_id, actor_id, merged, now)

        except sqlite3.Error as e:
            logger.error(f"Failed to apply decision to group {group_id}: {e}")
            raise PersistenceError(f"Failed to apply decision to group {group_id}", cause=e) from e

        if action == AuditAction.MERGE:
            self.stats["merge_operations"] += 1
        else:
            self.stats["dismiss_operations"] += 1

        logger.info(f"Group {group_id} {status.value} by {actor_id}")
        return entry

    def get_audit_history(self, group_id: Optional[str] = None, limit: int = 100) -> List[AuditEntry]:
        """Audit entries, newest first."""
        query = 'SELECT * FROM audit_entries'
        params: List[Any] = []
        if group_id:
            query += ' WHERE group_id = ?'
            params.append(group_id)
        query += ' ORDER BY created_at DESC LIMIT ?'
        params.append(limit)

        try:
            with self._reader() as conn:
                return [
                    AuditEntry(
                        id=row["id"],
                        group_id=row["group_id"],
                        actor_id=row["actor_id"],
                        action=row["action"],
                        affected_properties=json.loads(row["affected_properties"]),
                        details=json.loads(row["details"]),
                        created_at=row["created_at"],
                    )
                    for row in conn.execute(query, params)
                ]
        except sqlite3.Error as e:
            logger.error(f"Failed to get audit history: {e}")
            raise PersistenceError("Failed to get audit history", cause=e) from e

    # Merged-record tracking

    @staticmethod
    def _insert_merged_record(conn: sqlite3.Connection, group_id: str, actor_id: str,
                              merged: Dict[str, Any], now: datetime) -> None:
        conn.execute('''
            INSERT INTO merged_records
            (id, original_record_id, target_record_id, group_id, merged_by,
             fingerprint, merge_reason, original_data, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        ''', (
            str(uuid.uuid4()),
            merged["original_record_id"],
            merged["target_record_id"],
            group_id,
            actor_id,
            merged["fingerprint"],
            merged.get("merge_reason"),
            json.dumps(merged.get("original_data"), default=str),
            now.isoformat(),
        ))

    def is_fingerprint_merged(self, fingerprint: str) -> bool:
        """Whether a record with this fingerprint was previously merged away."""
        try:
            with self._reader() as conn:
                row = conn.execute(
                    'SELECT 1 FROM merged_records WHERE fingerprint = ? LIMIT 1', (fingerprint,)
                ).fetchone()
                return row is not None
        except sqlite3.Error as e:
            logger.error(f"Failed to look up merged fingerprint: {e}")
            raise PersistenceError("Failed to look up merged fingerprint", cause=e) from e

    def get_merged_records(self, target_record_id: Optional[str] = None) -> List[Dict[str, Any]]:
        query = 'SELECT * FROM merged_records'
        params: List[Any] = []
        if target_record_id:
            query += ' WHERE target_record_id = ?'
            params.append(target_record_id)
        query += ' ORDER BY created_at'

        try:
            with self._reader() as conn:
                results = []
                for row in conn.execute(query, params):
                    record = dict(row)
                    record["original_data"] = json.loads(record["original_data"]) if record["original_data"] else None
                    results.append(record)
                return results
        except sqlite3.Error as e:
            logger.error(f"Failed to get merged records: {e}")
            raise PersistenceError("Failed to get merged records", cause=e) from e

    def get_statistics(self) -> Dict[str, Any]:
        """Group counts by status plus in-process operation counters."""
        try:
            with self._reader() as conn:
                by_status = {
                    row["status"]: row["n"]
                    for row in conn.execute(
                        'SELECT status, COUNT(*) AS n FROM duplicate_groups GROUP BY status'
                    )
                }
                audit_count = conn.execute('SELECT COUNT(*) FROM audit_entries').fetchone()[0]
                memberless = conn.execute(
                    f'SELECT COUNT(*) FROM duplicate_groups g WHERE {_MEMBERLESS_PENDING}'
                ).fetchone()[0]
        except sqlite3.Error as e:
            logger.error(f"Failed to get statistics: {e}")
            raise PersistenceError("Failed to get statistics", cause=e) from e

        return {
            "groups_by_status": {s.value: by_status.get(s.value, 0) for s in GroupStatus},
            "audit_entries": audit_count,
            "memberless_pending_groups": memberless,
            **self.stats,
        }

"""Tests for the SQLite group store."""

import sqlite3
from unittest.mock import patch

import pytest

from leasecore.deduplication.audit_system import DeduplicationAudit
from leasecore.deduplication.models import DuplicateGroupMember, GroupStatus
from leasecore.errors import (
    GroupConflictError,
    GroupNotFoundError,
    InvalidTransitionError,
    PersistenceError,
)


def members(group_id, *record_ids):
    return [
        DuplicateGroupMember(group_id=group_id, record_id=r, similarity_reasons=["identical_title"])
        for r in record_ids
    ]


class TestDeduplicationAudit:

    def test_empty_store(self, store):
        stats = store.get_statistics()
        assert stats["groups_by_status"] == {"pending": 0, "resolved": 0, "dismissed": 0}
        assert stats["audit_entries"] == 0
        assert store.list_groups() == []

    def test_reopening_keeps_data(self, tmp_path):
        path = str(tmp_path / "groups.db")
        first = DeduplicationAudit(path)
        group = first.create_group(0.8)

        second = DeduplicationAudit(path)
        assert second.get_group(group.id).confidence == 0.8

    def test_create_and_read_group(self, store):
        group = store.create_group(0.87)
        store.add_members(group.id, members(group.id, "a", "b"))

        loaded = store.get_group(group.id)
        assert loaded.status == GroupStatus.PENDING
        assert loaded.member_ids == ["a", "b"]
        assert loaded.members[0].similarity_reasons == ["identical_title"]

    def test_missing_group(self, store):
        assert store.get_group("missing") is None

    def test_pending_membership_conflict(self, store):
        """A record cannot join a second pending group."""
        first = store.create_group(0.9)
        store.add_members(first.id, members(first.id, "a", "b"))

        second = store.create_group(0.8)
        with pytest.raises(GroupConflictError) as exc_info:
            store.add_members(second.id, members(second.id, "b", "c"))

        assert exc_info.value.record_ids == ["b"]
        assert store.get_group(second.id).members == []
        assert not store.has_pending_group("c")

    def test_terminal_groups_do_not_conflict(self, store):
        first = store.create_group(0.9)
        store.add_members(first.id, members(first.id, "a", "b"))
        store.apply_decision(first.id, GroupStatus.DISMISSED, "admin-1")

        second = store.create_group(0.9)
        store.add_members(second.id, members(second.id, "a", "b"))
        assert store.has_pending_group("a")

    def test_delete_group(self, store):
        group = store.create_group(0.9)
        store.add_members(group.id, members(group.id, "a", "b"))

        assert store.delete_group(group.id)
        assert store.get_group(group.id) is None
        assert not store.has_pending_group("a")
        assert not store.delete_group(group.id)

    def test_list_groups_by_status(self, store):
        low = store.create_group(0.75)
        high = store.create_group(0.95)
        store.add_members(low.id, members(low.id, "a", "b"))
        store.add_members(high.id, members(high.id, "c", "d"))
        store.apply_decision(low.id, GroupStatus.DISMISSED, "admin-1")

        assert [g.id for g in store.list_groups()] == [high.id, low.id]
        assert [g.id for g in store.list_groups("pending")] == [high.id]
        assert [g.id for g in store.list_groups("dismissed")] == [low.id]

    def test_apply_decision_is_compare_and_swap(self, store):
        group = store.create_group(0.9)
        store.add_members(group.id, members(group.id, "a", "b"))

        entry = store.apply_decision(group.id, GroupStatus.RESOLVED, "admin-1", merge_target_id="a")
        assert entry.affected_properties == ["a", "b"]

        with pytest.raises(InvalidTransitionError):
            store.apply_decision(group.id, GroupStatus.DISMISSED, "admin-2")
        assert len(store.get_audit_history()) == 1

    def test_apply_decision_unknown_group(self, store):
        with pytest.raises(GroupNotFoundError):
            store.apply_decision("missing", GroupStatus.DISMISSED, "admin-1")

    def test_audit_history_filter(self, store):
        one = store.create_group(0.9)
        two = store.create_group(0.9)
        store.apply_decision(one.id, GroupStatus.DISMISSED, "admin-1", details={"notes": "x"})
        store.apply_decision(two.id, GroupStatus.DISMISSED, "admin-1")

        history = store.get_audit_history(one.id)
        assert len(history) == 1
        assert history[0].details == {"notes": "x"}
        assert len(store.get_audit_history()) == 2

    def test_unwritable_path(self, tmp_path):
        """SQLite failures surface as PersistenceError."""
        with pytest.raises(PersistenceError):
            DeduplicationAudit(str(tmp_path))

    def test_memberless_pending_groups_are_hidden(self, store):
        """A group whose members were never written is not offered for review."""
        orphan = store.create_group(0.99)
        group = store.create_group(0.9)
        store.add_members(group.id, members(group.id, "a", "b"))

        assert [g.id for g in store.list_groups()] == [group.id]
        assert [g.id for g in store.list_groups("pending")] == [group.id]
        assert store.get_group(orphan.id) is not None
        assert store.get_statistics()["memberless_pending_groups"] == 1


class TestDecisionAtomicity:

    @pytest.fixture
    def group(self, store):
        group = store.create_group(0.9)
        store.add_members(group.id, members(group.id, "a", "b"))
        return group

    def assert_untouched(self, store, group_id):
        loaded = store.get_group(group_id)
        assert loaded.status == GroupStatus.PENDING
        assert loaded.reviewed_by is None
        assert store.get_audit_history(group_id) == []
        assert store.get_merged_records() == []

    def test_failed_merged_record_insert_rolls_back(self, store, group):
        merged = [{"original_record_id": "b", "target_record_id": "a", "fingerprint": "f" * 32}]

        with patch.object(
            DeduplicationAudit,
            "_insert_merged_record",
            side_effect=sqlite3.OperationalError("disk I/O error"),
        ):
            with pytest.raises(PersistenceError):
                store.apply_decision(
                    group.id, GroupStatus.RESOLVED, "admin-1",
                    merge_target_id="a", merged_records=merged,
                )

        self.assert_untouched(store, group.id)
        store.apply_decision(group.id, GroupStatus.RESOLVED, "admin-1", merge_target_id="a")
        assert len(store.get_audit_history(group.id)) == 1

    def test_failed_audit_insert_rolls_back(self, store, group):
        conn = sqlite3.connect(store.db_path)
        conn.execute('''
            CREATE TRIGGER reject_audit BEFORE INSERT ON audit_entries
            BEGIN SELECT RAISE(ABORT, 'audit sink unavailable'); END
        ''')
        conn.commit()
        conn.close()

        with pytest.raises(PersistenceError):
            store.apply_decision(group.id, GroupStatus.DISMISSED, "admin-1")

        self.assert_untouched(store, group.id)

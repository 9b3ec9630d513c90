"""Tests for greedy group formation."""

from unittest.mock import Mock

import pytest

from leasecore.deduplication.group_formation import GroupFormer, member_reasons
from leasecore.deduplication.models import DuplicateGroup, GroupStatus
from leasecore.errors import GroupConflictError, PersistenceError


class TestGroupFormer:

    @pytest.fixture
    def former(self, store):
        return GroupFormer(store)

    def test_single_match_creates_group(self, former, store, make_match):
        result = former.form_groups([make_match("a", "b", 0.9)])

        assert result.groups_created == 1
        group = store.get_group(result.group_ids[0])
        assert group.status == GroupStatus.PENDING
        assert group.confidence == 0.9
        assert sorted(group.member_ids) == ["a", "b"]

    def test_overlapping_matches_are_skipped(self, former, store, make_match):
        """A-B is taken first; B-C is skipped because B is already pending."""
        result = former.form_groups([make_match("b", "c", 0.8), make_match("a", "b", 0.9)])

        assert result.groups_created == 1
        assert result.groups_skipped == 1
        assert store.has_pending_group("a")
        assert store.has_pending_group("b")
        assert not store.has_pending_group("c")

    def test_rescan_is_idempotent(self, former, make_match):
        matches = [make_match("a", "b", 0.9), make_match("c", "d", 0.8)]
        former.form_groups(matches)

        second = former.form_groups(matches)
        assert second.groups_created == 0
        assert second.groups_skipped == 2

    def test_dismissed_records_can_be_regrouped(self, former, store, make_match):
        first = former.form_groups([make_match("a", "b", 0.9)])
        store.apply_decision(first.group_ids[0], GroupStatus.DISMISSED, "admin-1")

        again = former.form_groups([make_match("a", "b", 0.9)])
        assert again.groups_created == 1

    def test_member_reasons_carry_scores(self, former, store, make_match):
        match = make_match(
            "a", "b", 0.9,
            reasons=["very_similar_title", "identical_address"],
            field_scores={"title": 0.84213, "address": 1.0},
        )
        result = former.form_groups([match])

        group = store.get_group(result.group_ids[0])
        for member in group.members:
            assert member.similarity_reasons == [
                "very_similar_title",
                "identical_address",
                "title_score:0.842",
                "address_score:1.000",
                "specs_score:0.000",
                "description_score:0.000",
                "images_score:0.000",
            ]

    def test_member_reasons_helper(self, make_match):
        match = make_match(
            "a", "b", 0.9,
            reasons=["similar_images"],
            field_scores={"title": 1.0, "address": 0.5, "specs": 0.75, "media": 0.5},
        )
        assert member_reasons(match) == [
            "similar_images",
            "title_score:1.000",
            "address_score:0.500",
            "specs_score:0.750",
            "description_score:0.000",
            "images_score:0.500",
        ]


class TestGroupFormerFailures:

    @pytest.fixture
    def repository(self):
        repo = Mock()
        repo.has_pending_group.return_value = False
        repo.create_group.return_value = DuplicateGroup(id="g1", confidence=0.9)
        return repo

    def test_member_failure_is_compensated(self, repository, make_match):
        """A failed member insert deletes the new group and counts as failed."""
        repository.add_members.side_effect = PersistenceError("disk full")

        result = GroupFormer(repository).form_groups([make_match("a", "b", 0.9)])

        assert result.groups_failed == 1
        assert result.groups_created == 0
        repository.delete_group.assert_called_once_with("g1")

    def test_lost_race_is_skipped(self, repository, make_match):
        repository.add_members.side_effect = GroupConflictError("taken", record_ids=["a"])

        result = GroupFormer(repository).form_groups([make_match("a", "b", 0.9)])

        assert result.groups_skipped == 1
        assert result.groups_failed == 0
        repository.delete_group.assert_called_once_with("g1")

    def test_create_failure(self, repository, make_match):
        repository.create_group.side_effect = PersistenceError("locked")

        result = GroupFormer(repository).form_groups([make_match("a", "b", 0.9)])

        assert result.groups_failed == 1
        repository.add_members.assert_not_called()
        repository.delete_group.assert_not_called()

    def test_failed_compensation_still_counts(self, repository, make_match):
        repository.add_members.side_effect = PersistenceError("disk full")
        repository.delete_group.side_effect = PersistenceError("disk full")

        result = GroupFormer(repository).form_groups([make_match("a", "b", 0.9)])
        assert result.groups_failed == 1

    def test_scan_continues_after_failure(self, repository, make_match):
        repository.add_members.side_effect = [PersistenceError("disk full"), None]

        result = GroupFormer(repository).form_groups(
            [make_match("a", "b", 0.9), make_match("c", "d", 0.8)]
        )
        assert result.groups_failed == 1
        assert result.groups_created == 1

"""
Review Workflow

Terminal decisions on pending duplicate groups. A reviewer either resolves a
group by naming the record to keep or dismisses it as a false positive. Each
decision is applied exactly once and leaves one audit entry behind.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from ..errors import (
    GroupNotFoundError,
    InvalidMergeTargetError,
    InvalidTransitionError,
    WorkflowError,
)
from .fingerprints import property_fingerprint
from .models import AuditEntry, DuplicateGroup, GroupStatus, PropertyRecord
from .sources import GroupRepository

logger = logging.getLogger(__name__)

DEFAULT_MERGE_REASON = "duplicate_group_resolution"


class ReviewWorkflow:
    """
    Applies reviewer decisions to duplicate groups.

    Only pending groups can transition. The repository performs the status
    change as a compare-and-swap together with the audit insert, so two
    reviewers acting on the same group cannot both succeed.
    """

    def __init__(self, repository: GroupRepository):
        self.repository = repository

        self.stats = {
            "groups_resolved": 0,
            "groups_dismissed": 0,
            "rejected_decisions": 0,
        }

    def _load_pending_group(self, group_id: str, actor_id: str) -> DuplicateGroup:
        if not actor_id:
            raise WorkflowError("An actor id is required to review a group", group_id=group_id)

        group = self.repository.get_group(group_id)
        if group is None:
            self.stats["rejected_decisions"] += 1
            raise GroupNotFoundError(f"Duplicate group {group_id} not found", group_id=group_id)

        if group.status != GroupStatus.PENDING:
            self.stats["rejected_decisions"] += 1
            raise InvalidTransitionError(
                f"Group {group_id} is {group.status}, expected pending",
                group_id=group_id,
                current_status=group.status,
            )
        return group

    def resolve(
        self,
        group_id: str,
        merge_target_id: str,
        actor_id: str,
        notes: Optional[str] = None,
        records: Optional[Iterable[PropertyRecord]] = None,
    ) -> AuditEntry:
        """Resolve a pending group, keeping ``merge_target_id``.

        Args:
            group_id: Group to resolve
            merge_target_id: Member record that survives the merge
            actor_id: Reviewer performing the action
            notes: Optional free-text notes
            records: Member records; when given, the fingerprints of the
                excluded records are tracked so re-imports can be recognised

        Raises:
            GroupNotFoundError, InvalidTransitionError, InvalidMergeTargetError
        """
        group = self._load_pending_group(group_id, actor_id)

        member_ids = group.member_ids
        if not merge_target_id or merge_target_id not in member_ids:
            self.stats["rejected_decisions"] += 1
            raise InvalidMergeTargetError(
                f"Merge target {merge_target_id!r} is not a member of group {group_id}",
                group_id=group_id,
                merge_target_id=merge_target_id,
            )

        excluded = [record_id for record_id in member_ids if record_id != merge_target_id]
        details = {
            "original_confidence": group.confidence,
            "action": "merge",
            "notes": notes,
            "merge_target_id": merge_target_id,
            "excluded_properties": excluded,
        }

        entry = self.repository.apply_decision(
            group_id,
            GroupStatus.RESOLVED,
            actor_id,
            notes=notes,
            merge_target_id=merge_target_id,
            details=details,
            merged_records=self._merged_records(records, excluded, merge_target_id, notes),
        )

        self.stats["groups_resolved"] += 1
        logger.info(f"Resolved group {group_id}: kept {merge_target_id}, excluded {excluded}")
        return entry

    def dismiss(self, group_id: str, actor_id: str, notes: Optional[str] = None) -> AuditEntry:
        """Dismiss a pending group as a false positive."""
        group = self._load_pending_group(group_id, actor_id)

        details = {
            "original_confidence": group.confidence,
            "action": "dismiss",
            "notes": notes,
        }
        entry = self.repository.apply_decision(
            group_id, GroupStatus.DISMISSED, actor_id, notes=notes, details=details
        )

        self.stats["groups_dismissed"] += 1
        logger.info(f"Dismissed group {group_id}")
        return entry

    @staticmethod
    def _merged_records(
        records: Optional[Iterable[PropertyRecord]],
        excluded: List[str],
        merge_target_id: str,
        notes: Optional[str],
    ) -> List[Dict[str, Any]]:
        if not records:
            return []
        by_id = {record.id: record for record in records}
        return [
            {
                "original_record_id": record_id,
                "target_record_id": merge_target_id,
                "fingerprint": property_fingerprint(by_id[record_id]),
                "merge_reason": notes or DEFAULT_MERGE_REASON,
                "original_data": by_id[record_id].model_dump(mode="json"),
            }
            for record_id in excluded
            if record_id in by_id
        ]

    def get_statistics(self) -> Dict[str, int]:
        return self.stats.copy()

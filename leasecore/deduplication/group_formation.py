"""
Group Formation

Turns a ranked list of pairwise matches into non-overlapping pending review
groups. Assignment is greedy: matches are taken highest confidence first and
a match is skipped when either record already sits in a pending group.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import List, Sequence

from ..errors import GroupConflictError, PersistenceError
from .models import DuplicateGroupMember, MatchResult
from .sources import GroupRepository

logger = logging.getLogger(__name__)

CREATED = "created"
SKIPPED = "skipped"
FAILED = "failed"


@dataclass
class FormationResult:
    """Outcome counts of one group formation pass."""
    groups_created: int = 0
    groups_skipped: int = 0
    groups_failed: int = 0
    group_ids: List[str] = field(default_factory=list)


# (field score key, tag prefix) in the order tags are written
SCORE_TAGS = (
    ("title", "title"),
    ("address", "address"),
    ("specs", "specs"),
    ("description", "description"),
    ("media", "images"),
)


def member_reasons(match: MatchResult) -> List[str]:
    """Reason tags followed by one score tag per dimension, e.g. ``title_score:0.842``.

    All five tags are always written; a dimension that was not scored reads
    ``0.000``. Media scores are tagged ``images_score``.
    """
    return list(match.reasons) + [
        f"{tag}_score:{match.field_scores.get(name, 0.0):.3f}" for name, tag in SCORE_TAGS
    ]


class GroupFormer:
    """Creates pending duplicate groups from scan matches.

    Formation passes are serialized within the process. The repository
    re-checks pending membership when members are inserted, so a record
    claimed by another writer in the meantime turns into a skip rather than
    an overlapping group.
    """

    def __init__(self, repository: GroupRepository):
        self.repository = repository
        self._lock = threading.Lock()

    def form_groups(self, matches: Sequence[MatchResult]) -> FormationResult:
        result = FormationResult()
        ordered = sorted(matches, key=lambda m: (-m.confidence, m.left_id, m.right_id))

        with self._lock:
            for match in ordered:
                outcome, group_id = self._form_group(match)
                if outcome == CREATED:
                    result.groups_created += 1
                    result.group_ids.append(group_id)
                elif outcome == SKIPPED:
                    result.groups_skipped += 1
                else:
                    result.groups_failed += 1

        logger.info(
            f"Group formation: {result.groups_created} created, "
            f"{result.groups_skipped} skipped, {result.groups_failed} failed"
        )
        return result

    def _form_group(self, match: MatchResult):
        try:
            if (
                self.repository.has_pending_group(match.left_id)
                or self.repository.has_pending_group(match.right_id)
            ):
                logger.debug(f"Skipping {match.left_id}/{match.right_id}: already in a pending group")
                return SKIPPED, None
            group = self.repository.create_group(match.confidence)
        except PersistenceError as e:
            logger.error(f"Failed to create group for {match.left_id}/{match.right_id}: {e}")
            return FAILED, None

        reasons = member_reasons(match)
        members = [
            DuplicateGroupMember(group_id=group.id, record_id=record_id, similarity_reasons=reasons)
            for record_id in (match.left_id, match.right_id)
        ]

        try:
            self.repository.add_members(group.id, members)
        except GroupConflictError as e:
            logger.info(f"Group {group.id} lost a membership race: {e.message}")
            self._compensate(group.id)
            return SKIPPED, None
        except PersistenceError as e:
            logger.error(f"Failed to add members to group {group.id}: {e}")
            self._compensate(group.id)
            return FAILED, None

        logger.debug(f"Created group {group.id} for {match.left_id}/{match.right_id}")
        return CREATED, group.id

    def _compensate(self, group_id: str) -> None:
        """Delete a group whose members could not be written."""
        try:
            self.repository.delete_group(group_id)
        except PersistenceError as e:
            # The group stays behind without members; the outcome is already counted
            logger.error(f"Compensating delete of group {group_id} failed: {e}")

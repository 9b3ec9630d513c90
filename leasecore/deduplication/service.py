"""Service layer tying the record source, scan engine, group store and review workflow together."""

from typing import Iterable, List, Optional
from uuid import uuid4

import structlog

from ..config import Config
from ..errors import ConfigurationError, ErrorHandler
from ..logging_config import log_context
from .audit_system import DeduplicationAudit
from .core_engine import DuplicateScanner, attach_hashes, load_hashes
from .fingerprints import find_exact_duplicates, property_fingerprint
from .group_formation import GroupFormer
from .match_evaluator import MatchEvaluator
from .models import AuditEntry, BatchFilter, DuplicateGroup, PropertyRecord, ScanSummary
from .review_interface import ReviewWorkflow
from .sources import GroupRepository, HashStore, RecordSource


logger = structlog.get_logger()


class DeduplicationService:
    """Entry point for scans and review decisions."""

    def __init__(
        self,
        record_source: Optional[RecordSource] = None,
        hash_store: Optional[HashStore] = None,
        repository: Optional[GroupRepository] = None,
        config: Optional[Config] = None,
    ):
        self.config = config or Config()
        self.record_source = record_source
        self.hash_store = hash_store
        self.repository = repository or DeduplicationAudit(
            self.config.storage.db_path, busy_timeout=self.config.storage.busy_timeout
        )
        self.group_former = GroupFormer(self.repository)
        self.review = ReviewWorkflow(self.repository)
        self.error_handler = ErrorHandler()

    def _scanner(self, cross_owner_only: bool) -> DuplicateScanner:
        evaluator = MatchEvaluator.from_config(
            self.config.scoring, include_same_owner=not cross_owner_only
        )
        return DuplicateScanner(
            evaluator,
            max_workers=self.config.scan.max_workers,
            progress_interval=self.config.scan.progress_interval,
        )

    def _fetch(self, batch_filter: Optional[BatchFilter]) -> List[PropertyRecord]:
        if self.record_source is None:
            raise ConfigurationError("No record source configured", key="records")
        batch_filter = batch_filter or BatchFilter(limit=self.config.scan.batch_limit)
        return list(self.record_source.fetch_records(batch_filter))

    def scan(
        self,
        batch_filter: Optional[BatchFilter] = None,
        threshold: Optional[float] = None,
        cross_owner_only: Optional[bool] = None,
    ) -> ScanSummary:
        """Scan a batch for duplicates and open pending groups for the matches.

        Args:
            batch_filter: Which records to scan
            threshold: Minimum confidence, defaults to the configured scan threshold
            cross_owner_only: Skip pairs sharing an owner, defaults to configuration

        Returns:
            ScanSummary with match and group counts and the top matches
        """
        scan_config = self.config.scan
        if threshold is None:
            threshold = scan_config.threshold
        if cross_owner_only is None:
            cross_owner_only = not scan_config.include_same_owner

        scan_id = str(uuid4())
        with log_context(scan_id=scan_id), self.error_handler.error_context(
            operation="scan", resource_type="property_batch", resource_id=scan_id
        ):
            try:
                records = self._fetch(batch_filter)
                logger.info("Loaded records for scan", count=len(records))

                # Hash lookup failures abort before any group is written
                if self.hash_store is not None and records:
                    rows = load_hashes(
                        self.hash_store, [r.id for r in records], scan_config.hash_lookup_timeout
                    )
                    records = attach_hashes(records, rows)
                    logger.info("Attached media hashes", rows=len(rows))

                scan_result = self._scanner(cross_owner_only).scan(records, threshold)
                formation = self.group_former.form_groups(scan_result.matches)
            except Exception as e:
                self.error_handler.handle_error(e, operation="scan")
        summary = ScanSummary(
            properties_scanned=scan_result.records_scanned,
            comparisons_made=scan_result.comparisons_made,
            matches_found=len(scan_result.matches),
            groups_created=formation.groups_created,
            groups_skipped=formation.groups_skipped,
            groups_failed=formation.groups_failed,
            top_matches=scan_result.matches[:scan_config.top_matches],
        )
        logger.info(
            "Duplicate scan complete",
            scan_id=scan_id,
            properties_scanned=summary.properties_scanned,
            matches_found=summary.matches_found,
            groups_created=summary.groups_created,
            groups_skipped=summary.groups_skipped,
            groups_failed=summary.groups_failed,
            duration_s=round(scan_result.processing_time, 3),
        )
        return summary

    def resolve(
        self,
        group_id: str,
        merge_target_id: str,
        actor_id: str,
        notes: Optional[str] = None,
        records: Optional[Iterable[PropertyRecord]] = None,
    ) -> AuditEntry:
        with self.error_handler.error_context(
            operation="resolve", resource_type="duplicate_group", resource_id=group_id, actor_id=actor_id
        ):
            try:
                entry = self.review.resolve(group_id, merge_target_id, actor_id, notes=notes, records=records)
            except Exception as e:
                self.error_handler.handle_error(e)
        logger.info("Group resolved", group_id=group_id, merge_target_id=merge_target_id, actor_id=actor_id)
        return entry

    def dismiss(self, group_id: str, actor_id: str, notes: Optional[str] = None) -> AuditEntry:
        with self.error_handler.error_context(
            operation="dismiss", resource_type="duplicate_group", resource_id=group_id, actor_id=actor_id
        ):
            try:
                entry = self.review.dismiss(group_id, actor_id, notes=notes)
            except Exception as e:
                self.error_handler.handle_error(e)
        logger.info("Group dismissed", group_id=group_id, actor_id=actor_id)
        return entry

    def list_groups(self, status: Optional[str] = None) -> List[DuplicateGroup]:
        return self.repository.list_groups(status)

    def get_group(self, group_id: str) -> Optional[DuplicateGroup]:
        return self.repository.get_group(group_id)

    def get_audit_history(self, group_id: Optional[str] = None, limit: int = 100) -> List[AuditEntry]:
        return self.repository.get_audit_history(group_id, limit=limit)

    def is_previously_merged(self, record: PropertyRecord) -> bool:
        """Whether an incoming record matches a listing that was merged away."""
        return self.repository.is_fingerprint_merged(property_fingerprint(record))

    def find_exact_duplicates(self, batch_filter: Optional[BatchFilter] = None) -> List[List[str]]:
        """Report ids sharing title, street and city. Nothing is deleted."""
        groups = find_exact_duplicates(self._fetch(batch_filter))
        logger.info("Exact duplicate report", groups=len(groups))
        return groups

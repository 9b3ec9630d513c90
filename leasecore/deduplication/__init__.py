"""
Rental Listing Duplicate Detection

Scores pairs of property listings for likelihood of describing the same unit,
groups likely duplicates for human review and records every review decision.

Main Components:
- similarity_scoring: string and hash similarity primitives
- field_comparators: per-field scores and reason tags
- match_evaluator: combined confidence and emission policy
- core_engine: pairwise scan over a record batch
- group_formation: greedy, non-overlapping pending groups
- review_interface: resolve / dismiss workflow
- audit_system: SQLite group store and audit trail
"""

from .audit_system import DeduplicationAudit
from .core_engine import DuplicateScanner, ScanResult
from .field_comparators import (
    AddressComparator,
    BaseFieldComparator,
    DescriptionComparator,
    MediaComparator,
    SpecsComparator,
    TitleComparator,
)
from .fingerprints import find_exact_duplicates, property_fingerprint
from .group_formation import FormationResult, GroupFormer
from .match_evaluator import EmissionPolicy, MatchEvaluator
from .models import (
    AuditEntry,
    BatchFilter,
    DuplicateGroup,
    DuplicateGroupMember,
    FieldScore,
    MatchResult,
    MediaAsset,
    PerceptualHash,
    PropertyRecord,
    ScanSummary,
)
from .review_interface import ReviewWorkflow
from .service import DeduplicationService
from .similarity_scoring import ConfidenceThresholds, text_similarity

__all__ = [
    "DeduplicationService",
    "DuplicateScanner",
    "ScanResult",
    "MatchEvaluator",
    "EmissionPolicy",
    "BaseFieldComparator",
    "TitleComparator",
    "AddressComparator",
    "SpecsComparator",
    "DescriptionComparator",
    "MediaComparator",
    "GroupFormer",
    "FormationResult",
    "ReviewWorkflow",
    "DeduplicationAudit",
    "ConfidenceThresholds",
    "text_similarity",
    "property_fingerprint",
    "find_exact_duplicates",
    "PropertyRecord",
    "MediaAsset",
    "PerceptualHash",
    "FieldScore",
    "MatchResult",
    "DuplicateGroup",
    "DuplicateGroupMember",
    "AuditEntry",
    "BatchFilter",
    "ScanSummary",
]

__version__ = "0.1.0"

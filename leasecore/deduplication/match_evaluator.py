"""
Match Evaluator

Combines field comparator scores into a single confidence for a record pair
and decides whether the pair is worth reporting as a candidate duplicate.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .field_comparators import BaseFieldComparator, default_comparators
from .models import MatchResult, PropertyRecord
from .similarity_scoring import DEFAULT_THRESHOLDS, ConfidenceThresholds

logger = logging.getLogger(__name__)

CONFIDENCE_PRECISION = 4


@dataclass
class EmissionPolicy:
    """When a scored pair is reported.

    A pair is emitted when its confidence is high on its own, when it is
    medium and backed by enough distinct reasons, or when a strong single
    indicator is present.
    """

    weights: Dict[str, float] = field(default_factory=lambda: {
        "title": 0.30,
        "address": 0.35,
        "specs": 0.20,
        "description": 0.10,
        "media": 0.05,
    })
    high_confidence: float = 0.85
    medium_confidence: float = 0.70
    min_reasons: int = 2
    strong_title: float = 0.8
    strong_address: float = 0.8
    exact_address: float = 0.95
    strong_media: float = 0.9

    def has_strong_indicator(self, scores: Dict[str, float]) -> bool:
        title = scores.get("title", 0.0)
        address = scores.get("address", 0.0)
        media = scores.get("media", 0.0)
        return (
            (title >= self.strong_title and address >= self.strong_address)
            or address >= self.exact_address
            or media >= self.strong_media
        )

    def should_emit(self, confidence: float, reasons: List[str], scores: Dict[str, float]) -> bool:
        if confidence >= self.high_confidence:
            return True
        if confidence >= self.medium_confidence and len(set(reasons)) >= self.min_reasons:
            return True
        return self.has_strong_indicator(scores)


class MatchEvaluator:
    """Scores record pairs and filters out pairs that are not worth review."""

    def __init__(
        self,
        policy: Optional[EmissionPolicy] = None,
        include_same_owner: bool = False,
        thresholds: ConfidenceThresholds = DEFAULT_THRESHOLDS,
        comparators: Optional[Dict[str, BaseFieldComparator]] = None,
    ):
        """Initialize the evaluator.

        Args:
            policy: Weights and emission thresholds
            include_same_owner: Compare records that share an owner
            thresholds: Reason-tag cut-offs handed to the comparators
            comparators: Override comparators by field name
        """
        self.policy = policy or EmissionPolicy()
        self.include_same_owner = include_same_owner
        self.comparators = default_comparators(thresholds)
        if comparators:
            self.comparators.update(comparators)

    @classmethod
    def from_config(cls, scoring_config, include_same_owner: bool = False) -> "MatchEvaluator":
        """Build an evaluator from a ``ScoringConfig`` section."""
        policy = EmissionPolicy(
            weights=scoring_config.weights.model_dump(),
            high_confidence=scoring_config.high_confidence,
            medium_confidence=scoring_config.medium_confidence,
            min_reasons=scoring_config.min_reasons,
            strong_title=scoring_config.strong_title,
            strong_address=scoring_config.strong_address,
            exact_address=scoring_config.exact_address,
            strong_media=scoring_config.strong_media,
        )
        return cls(policy=policy, include_same_owner=include_same_owner)

    def is_comparable(self, record_a: PropertyRecord, record_b: PropertyRecord) -> bool:
        """Same-record and (by default) same-owner pairs are never compared."""
        if record_a.id == record_b.id:
            return False
        if (
            not self.include_same_owner
            and record_a.owner_id is not None
            and record_a.owner_id == record_b.owner_id
        ):
            return False
        return True

    def score(self, record_a: PropertyRecord, record_b: PropertyRecord) -> MatchResult:
        """Compute confidence, reasons and per-field breakdown without filtering."""
        field_scores: Dict[str, float] = {}
        reasons: List[str] = []

        for name, comparator in self.comparators.items():
            if not comparator.is_applicable(record_a, record_b):
                continue
            result = comparator.compare(record_a, record_b)
            field_scores[name] = result.score
            for reason in result.reasons:
                if reason not in reasons:
                    reasons.append(reason)

        # An absent description contributes nothing; its weight is not redistributed
        confidence = sum(
            self.policy.weights.get(name, 0.0) * value
            for name, value in field_scores.items()
        )

        left_id, right_id = sorted((record_a.id, record_b.id))
        return MatchResult(
            left_id=left_id,
            right_id=right_id,
            confidence=round(confidence, CONFIDENCE_PRECISION),
            reasons=reasons,
            field_scores=field_scores,
        )

    def evaluate(self, record_a: PropertyRecord, record_b: PropertyRecord) -> Optional[MatchResult]:
        """Return a MatchResult for a candidate duplicate pair, or None.

        None covers both rejected pairs (same id, same owner) and pairs whose
        evidence does not meet the emission policy.
        """
        if not self.is_comparable(record_a, record_b):
            return None

        result = self.score(record_a, record_b)
        if not self.policy.should_emit(result.confidence, result.reasons, result.field_scores):
            return None

        logger.debug(
            f"Candidate pair {result.left_id}/{result.right_id} "
            f"confidence={result.confidence:.4f} reasons={result.reasons}"
        )
        return result

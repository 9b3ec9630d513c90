"""
Field Comparators

One comparator per comparison dimension of a rental listing (title, address,
specifications, description, media). Each turns a pair of records into a
FieldScore: a score in [0, 1] plus the reason tags it earned. Missing fields
lower the score and never raise.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Tuple

from .models import FieldScore, MediaAsset, PropertyRecord
from .similarity_scoring import (
    DEFAULT_THRESHOLDS,
    ConfidenceThresholds,
    extract_filename,
    hash_similarity,
    jaro_winkler_similarity,
    text_similarity,
)

logger = logging.getLogger(__name__)

# Rent bases in order of preference when both records carry more than one
RENT_FIELDS = ("monthly_rent", "weekly_rent", "daily_rent")


class BaseFieldComparator(ABC):
    """Base class for field comparators."""

    #: key used in MatchResult.field_scores
    field_name: str = ""

    def __init__(self, thresholds: ConfidenceThresholds = DEFAULT_THRESHOLDS):
        self.thresholds = thresholds

    @abstractmethod
    def compare(self, record_a: PropertyRecord, record_b: PropertyRecord) -> FieldScore:
        """Score the pair on this dimension."""
        pass

    def is_applicable(self, record_a: PropertyRecord, record_b: PropertyRecord) -> bool:
        """Whether this dimension should be computed at all for the pair."""
        return True

    def tiered_reasons(self, score: float, tiers: List[Tuple[float, str]]) -> List[str]:
        """Return the tag of the first tier whose cut-off the score reaches."""
        for cutoff, tag in tiers:
            if score >= cutoff:
                return [tag]
        return []


class TitleComparator(BaseFieldComparator):
    field_name = "title"

    def compare(self, record_a: PropertyRecord, record_b: PropertyRecord) -> FieldScore:
        score = text_similarity(record_a.title, record_b.title)
        t = self.thresholds
        return FieldScore(
            score=score,
            reasons=self.tiered_reasons(score, [
                (t.identical, "identical_title"),
                (t.very_similar, "very_similar_title"),
                (t.similar, "similar_title"),
            ]),
        )


class AddressComparator(BaseFieldComparator):
    """Component-wise address match blended with a whole-address comparison.

    Components are weighted street 0.4 (plus 0.2 when both street numbers are
    present and equal), city 0.3 and postal code 0.1, normalized by the
    weights actually present. The component score contributes 70% and the
    Jaro-Winkler similarity of the assembled address string the other 30%.
    """

    field_name = "address"

    STREET_WEIGHT = 0.4
    NUMBER_WEIGHT = 0.2
    CITY_WEIGHT = 0.3
    ZIP_WEIGHT = 0.1
    COMPONENT_SHARE = 0.7
    WHOLE_SHARE = 0.3

    @staticmethod
    def build_address(record: PropertyRecord) -> str:
        parts = [
            record.street_number or "",
            record.street_name or "",
            record.city or "",
            record.zip_code or "",
        ]
        return " ".join(p for p in parts if p).lower().strip()

    def address_score(self, record_a: PropertyRecord, record_b: PropertyRecord) -> float:
        addr_a = self.build_address(record_a)
        addr_b = self.build_address(record_b)

        if not addr_a or not addr_b:
            return 0.0
        if addr_a == addr_b:
            return 1.0

        component_score = 0.0
        component_weight = 0.0

        if record_a.street_name and record_b.street_name:
            street = text_similarity(record_a.street_name, record_b.street_name)
            component_score += street * self.STREET_WEIGHT
            component_weight += self.STREET_WEIGHT

            # Number bonus only counts alongside a street comparison
            if (
                record_a.street_number
                and record_b.street_number
                and record_a.street_number.strip() == record_b.street_number.strip()
            ):
                component_score += self.NUMBER_WEIGHT
                component_weight += self.NUMBER_WEIGHT

        if record_a.city and record_b.city:
            city = text_similarity(record_a.city, record_b.city)
            component_score += city * self.CITY_WEIGHT
            component_weight += self.CITY_WEIGHT

        if record_a.zip_code and record_b.zip_code:
            zip_match = (
                1.0
                if record_a.zip_code.strip().lower() == record_b.zip_code.strip().lower()
                else 0.0
            )
            component_score += zip_match * self.ZIP_WEIGHT
            component_weight += self.ZIP_WEIGHT

        overall = jaro_winkler_similarity(addr_a, addr_b)

        if component_weight > 0:
            final = (
                component_score / component_weight * self.COMPONENT_SHARE
                + overall * self.WHOLE_SHARE
            )
        else:
            final = overall

        return max(0.0, min(final, 1.0))

    def compare(self, record_a: PropertyRecord, record_b: PropertyRecord) -> FieldScore:
        score = self.address_score(record_a, record_b)
        t = self.thresholds
        return FieldScore(
            score=score,
            reasons=self.tiered_reasons(score, [
                (t.identical, "identical_address"),
                (t.very_similar, "very_similar_address"),
                (t.similar, "similar_address"),
            ]),
        )


class SpecsComparator(BaseFieldComparator):
    """Bedrooms, bathrooms, floor area and rent with partial credit for near values."""

    field_name = "specs"

    BEDROOM_WEIGHT = 0.25
    BATHROOM_WEIGHT = 0.15
    AREA_WEIGHT = 0.30
    PRICE_WEIGHT = 0.30

    @staticmethod
    def _positive(value: Optional[float]) -> Optional[float]:
        if value is None or value <= 0:
            return None
        return value

    @classmethod
    def rent_pair(
        cls, record_a: PropertyRecord, record_b: PropertyRecord
    ) -> Optional[Tuple[float, float]]:
        """First rent basis present on both records."""
        for field in RENT_FIELDS:
            rent_a = cls._positive(getattr(record_a, field))
            rent_b = cls._positive(getattr(record_b, field))
            if rent_a is not None and rent_b is not None:
                return rent_a, rent_b
        return None

    @staticmethod
    def _tolerance_score(a: float, b: float, tolerance: float, full: float, close: float, near: float) -> float:
        diff = abs(a - b)
        band = (a + b) / 2 * tolerance
        if diff == 0:
            return full
        if diff <= band:
            return close
        if diff <= band * 2:
            return near
        return 0.0

    def specs_score(self, record_a: PropertyRecord, record_b: PropertyRecord) -> float:
        score = 0.0
        max_score = 0.0

        if record_a.bedrooms is not None and record_b.bedrooms is not None:
            max_score += self.BEDROOM_WEIGHT
            if record_a.bedrooms == record_b.bedrooms:
                score += self.BEDROOM_WEIGHT
            elif abs(record_a.bedrooms - record_b.bedrooms) == 1:
                score += 0.15

        if record_a.bathrooms is not None and record_b.bathrooms is not None:
            max_score += self.BATHROOM_WEIGHT
            if record_a.bathrooms == record_b.bathrooms:
                score += self.BATHROOM_WEIGHT
            elif abs(record_a.bathrooms - record_b.bathrooms) <= 1:
                score += 0.10

        area_a = self._positive(record_a.square_meters)
        area_b = self._positive(record_b.square_meters)
        if area_a is not None and area_b is not None:
            max_score += self.AREA_WEIGHT
            score += self._tolerance_score(area_a, area_b, 0.05, self.AREA_WEIGHT, 0.25, 0.15)

        rents = self.rent_pair(record_a, record_b)
        if rents is not None:
            max_score += self.PRICE_WEIGHT
            score += self._tolerance_score(rents[0], rents[1], 0.10, self.PRICE_WEIGHT, 0.25, 0.15)

        return score / max_score if max_score > 0 else 0.0

    def compare(self, record_a: PropertyRecord, record_b: PropertyRecord) -> FieldScore:
        score = self.specs_score(record_a, record_b)
        t = self.thresholds
        return FieldScore(
            score=score,
            reasons=self.tiered_reasons(score, [
                (t.identical_specs, "identical_specifications"),
                (t.similar_specs, "similar_specifications"),
            ]),
        )


class DescriptionComparator(BaseFieldComparator):
    field_name = "description"

    def is_applicable(self, record_a: PropertyRecord, record_b: PropertyRecord) -> bool:
        return bool(
            record_a.description and record_a.description.strip()
            and record_b.description and record_b.description.strip()
        )

    def compare(self, record_a: PropertyRecord, record_b: PropertyRecord) -> FieldScore:
        if not self.is_applicable(record_a, record_b):
            return FieldScore()
        score = text_similarity(record_a.description, record_b.description)
        t = self.thresholds
        return FieldScore(
            score=score,
            reasons=self.tiered_reasons(score, [
                (t.very_similar, "very_similar_description"),
                (t.similar, "similar_description"),
            ]),
        )


class MediaComparator(BaseFieldComparator):
    """Compare attached photos and floor plans.

    For every asset pair: an identical URL is an exact match; otherwise a
    shared hash algorithm gives ``1 - hamming/len`` (above 0.95 counts as
    exact, above 0.8 contributes at a 0.8 discount); with neither available,
    a near-identical filename contributes at a 0.6 discount. Exact matches
    dominate the final score.
    """

    field_name = "media"

    EXACT_BOOST = 1.2
    HASH_DISCOUNT = 0.8
    FILENAME_DISCOUNT = 0.6

    @staticmethod
    def _hashes_by_algorithm(asset: MediaAsset) -> Dict[str, str]:
        return {h.algorithm: h.value for h in asset.hashes if h.value}

    def _pair_similarity(self, asset_a: MediaAsset, asset_b: MediaAsset) -> Tuple[bool, float]:
        """Return (is_exact, discounted_similarity) for one asset pair."""
        t = self.thresholds

        if asset_a.url == asset_b.url:
            return True, 1.0

        hashes_a = self._hashes_by_algorithm(asset_a)
        hashes_b = self._hashes_by_algorithm(asset_b)
        shared = sorted(set(hashes_a) & set(hashes_b))

        if shared:
            similarity = max(hash_similarity(hashes_a[alg], hashes_b[alg]) for alg in shared)
            if similarity > t.hash_exact:
                return True, similarity
            if similarity > t.hash_similar:
                return False, similarity * self.HASH_DISCOUNT
            return False, 0.0

        name_a = extract_filename(asset_a.url)
        name_b = extract_filename(asset_b.url)
        if name_a and name_b:
            name_similarity = text_similarity(name_a, name_b)
            if name_similarity > t.filename_similar:
                return False, name_similarity * self.FILENAME_DISCOUNT

        return False, 0.0

    def media_score(self, record_a: PropertyRecord, record_b: PropertyRecord) -> float:
        media_a = record_a.media
        media_b = record_b.media
        if not media_a or not media_b:
            return 0.0

        exact_matches = 0
        max_similarity = 0.0

        for asset_a in media_a:
            for asset_b in media_b:
                is_exact, similarity = self._pair_similarity(asset_a, asset_b)
                if is_exact:
                    exact_matches += 1
                max_similarity = max(max_similarity, similarity)

        if exact_matches > 0:
            ratio = exact_matches / min(len(media_a), len(media_b))
            return min(ratio * self.EXACT_BOOST, 1.0)

        return min(max_similarity, 1.0)

    def compare(self, record_a: PropertyRecord, record_b: PropertyRecord) -> FieldScore:
        score = self.media_score(record_a, record_b)
        t = self.thresholds
        return FieldScore(
            score=score,
            reasons=self.tiered_reasons(score, [
                (t.identical_images, "identical_images"),
                (t.similar_images, "similar_images"),
            ]),
        )


def default_comparators(
    thresholds: ConfidenceThresholds = DEFAULT_THRESHOLDS,
) -> Dict[str, BaseFieldComparator]:
    """Comparators for every dimension, keyed by field name."""
    comparators = [
        TitleComparator(thresholds),
        AddressComparator(thresholds),
        SpecsComparator(thresholds),
        DescriptionComparator(thresholds),
        MediaComparator(thresholds),
    ]
    return {c.field_name: c for c in comparators}

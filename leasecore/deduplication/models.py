"""Data models for property records, matches, duplicate groups and audit entries."""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class MediaKind(str, Enum):
    PHOTO = "photo"
    FLOORPLAN = "floorplan"


class GroupStatus(str, Enum):
    """Lifecycle of a duplicate group. Only PENDING may transition."""

    PENDING = "pending"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"


class AuditAction(str, Enum):
    MERGE = "merge"
    DISMISS = "dismiss"


class PerceptualHash(BaseModel):
    """Opaque fixed-length perceptual hash of one image."""

    model_config = ConfigDict(frozen=True)

    algorithm: str
    value: str


class MediaAsset(BaseModel):
    """A photo or floor plan attached to a listing."""

    model_config = ConfigDict(frozen=True, use_enum_values=True)

    url: str
    kind: MediaKind = MediaKind.PHOTO
    hashes: List[PerceptualHash] = Field(default_factory=list)


class PropertyRecord(BaseModel):
    """Immutable snapshot of a rental listing as read from the record store.

    Any comparison field may be missing. Missing values lower the
    corresponding field score instead of raising.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    owner_id: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    street_name: Optional[str] = None
    street_number: Optional[str] = None
    city: Optional[str] = None
    zip_code: Optional[str] = None
    bedrooms: Optional[int] = None
    bathrooms: Optional[float] = None
    square_meters: Optional[float] = None
    monthly_rent: Optional[float] = None
    weekly_rent: Optional[float] = None
    daily_rent: Optional[float] = None
    status: Optional[str] = None
    created_at: Optional[datetime] = None
    media: List[MediaAsset] = Field(default_factory=list)


class MediaHashRow(BaseModel):
    """One perceptual hash as returned by the hash store."""

    record_id: str
    media_url: str
    hash_algorithm: str
    hash_value: str


class FieldScore(BaseModel):
    """Score for a single comparison dimension plus the reasons it earned."""

    score: float = 0.0
    reasons: List[str] = Field(default_factory=list)


class MatchResult(BaseModel):
    """Evaluated candidate duplicate pair."""

    model_config = ConfigDict(frozen=True)

    left_id: str
    right_id: str
    confidence: float
    reasons: List[str] = Field(default_factory=list)
    field_scores: Dict[str, float] = Field(default_factory=dict)

    @property
    def pair(self) -> Tuple[str, str]:
        return (self.left_id, self.right_id)


class DuplicateGroupMember(BaseModel):
    group_id: str
    record_id: str
    similarity_reasons: List[str] = Field(default_factory=list)


class DuplicateGroup(BaseModel):
    """A set of records proposed as the same unit, awaiting or past review."""

    model_config = ConfigDict(use_enum_values=True)

    id: str
    confidence: float
    status: GroupStatus = GroupStatus.PENDING
    merge_target_id: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    members: List[DuplicateGroupMember] = Field(default_factory=list)

    @property
    def member_ids(self) -> List[str]:
        return [m.record_id for m in self.members]


class AuditEntry(BaseModel):
    """Append-only record of one terminal review decision."""

    model_config = ConfigDict(use_enum_values=True)

    id: str
    group_id: str
    actor_id: str
    action: AuditAction
    affected_properties: List[str] = Field(default_factory=list)
    details: Dict = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utc_now)


class BatchFilter(BaseModel):
    """Selection of records for a scan, applied by the record source."""

    created_since: Optional[datetime] = None
    owner_id: Optional[str] = None
    status: Optional[str] = None
    limit: int = Field(1000, ge=1)


class ScanSummary(BaseModel):
    properties_scanned: int = 0
    comparisons_made: int = 0
    matches_found: int = 0
    groups_created: int = 0
    groups_skipped: int = 0
    groups_failed: int = 0
    top_matches: List[MatchResult] = Field(default_factory=list)

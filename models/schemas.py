"""
Pydantic schemas for the album organization pipeline.

These models define the data structures passed between pipeline components:
per-track metadata read from tags, the resolved album identity, the
organization plan, move journal entries and duplicate detection records.
"""

from enum import Enum
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class QualityClass(str, Enum):
    """Audio quality class of an album, derived from its file formats."""

    LOSSLESS = "Lossless"
    LOSSY = "Lossy"
    MIXED = "Mixed"
    UNKNOWN = "Unknown"


class OrganizationStrategy(str, Enum):
    """Configured strategy for choosing an organization mode."""

    ARTIST = "artist"
    LABEL = "label"
    SERIES = "series"
    HYBRID = "hybrid"


class OrganizationMode(str, Enum):
    """Layout actually chosen for one album."""

    ARTIST = "Artist"
    LABEL = "Label"
    SERIES = "Series"
    COMPILATION = "Compilation"
    REMIX_SEPARATED = "RemixSeparated"


class RunMode(str, Enum):
    """Whether filesystem changes are performed or only logged."""

    DRY_RUN = "dry_run"
    LIVE = "live"


class IdentitySource(str, Enum):
    TAGS = "tags"
    RECONSTRUCTION = "reconstruction"


class PlanStatus(str, Enum):
    PLANNED = "Planned"
    ALREADY_ORGANIZED = "AlreadyOrganized"


class MoveStatus(str, Enum):
    """Move journal states: Planned -> InProgress -> Committed | RolledBack."""

    PLANNED = "Planned"
    IN_PROGRESS = "InProgress"
    COMMITTED = "Committed"
    ROLLED_BACK = "RolledBack"


class ProcessingStatus(str, Enum):
    """Status stored by the state tracker for a directory."""

    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"
    HELD = "held"


class AlbumOutcome(str, Enum):
    PROCESSED = "processed"
    SKIPPED = "skipped"
    ALREADY_ORGANIZED = "already_organized"
    HELD = "held"
    FAILED = "failed"


class ResolutionStatus(str, Enum):
    PENDING = "pending"
    RESOLVED = "resolved"


def _blank_to_none(v):
    if v is None:
        return None
    if isinstance(v, str):
        v = v.strip()
        return v or None
    return v


class TrackMetadata(BaseModel):
    """Tags and stream information read from one audio file."""

    path: Path = Field(..., description="Absolute path to the audio file")
    file_type: str = Field(..., description="Upper-case format name (FLAC, MP3, ALAC, ...)")
    artist: Optional[str] = Field(default=None, description="Track artist tag")
    album_artist: Optional[str] = Field(default=None, description="Album artist tag")
    album: Optional[str] = Field(default=None, description="Album title tag")
    title: Optional[str] = Field(default=None, description="Track title tag")
    track_number: Optional[int] = Field(default=None, description="Track number within its disc")
    disc_number: Optional[int] = Field(default=None, description="Disc number for multi-disc sets")
    year: Optional[str] = Field(default=None, description="Raw year or date tag")
    label: Optional[str] = Field(default=None, description="Record label or publisher tag")
    catalog_number: Optional[str] = Field(default=None, description="Catalog number tag")
    bitrate: int = Field(default=0, description="Bitrate in kbps", ge=0)
    duration: float = Field(default=0.0, description="Duration in seconds", ge=0)
    size_bytes: int = Field(default=0, description="File size in bytes", ge=0)

    @field_validator('artist', 'album_artist', 'album', 'title', 'year', 'label', 'catalog_number', mode='before')
    @classmethod
    def strip_text(cls, v):
        """Strip whitespace and turn empty strings into None."""
        return _blank_to_none(v)

    @field_validator('track_number', 'disc_number', mode='before')
    @classmethod
    def parse_position(cls, v):
        """Accept '3', '3/12' or (3, 12) forms and drop unparseable values."""
        if v is None or v == "":
            return None
        if isinstance(v, (tuple, list)):
            v = v[0] if v else None
            if v is None:
                return None
        if isinstance(v, str):
            v = v.split('/')[0].strip()
        try:
            number = int(v)
        except (ValueError, TypeError):
            return None
        return number if number > 0 else None

    @field_validator('file_type')
    @classmethod
    def upper_file_type(cls, v):
        return v.lstrip('.').upper()


class AlbumIdentity(BaseModel):
    """Who and what an album is, built up progressively by the pipeline."""

    album_artist: str = Field(default="", description="Resolved album artist")
    album_title: str = Field(default="", description="Resolved album title")
    year: Optional[str] = Field(default=None, description="Four-digit release year")
    label: Optional[str] = Field(default=None, description="Record label")
    catalog_number: Optional[str] = Field(default=None, description="Catalog number")
    is_compilation: bool = Field(default=False, description="Whether this is a various-artists release")
    is_remix: bool = Field(default=False, description="Whether this is a remix release")
    remixer: Optional[str] = Field(default=None, description="Remixing artist when detectable")
    source: IdentitySource = Field(default=IdentitySource.TAGS, description="Where the identity came from")

    @field_validator('year', 'label', 'catalog_number', 'remixer', mode='before')
    @classmethod
    def strip_optional(cls, v):
        return _blank_to_none(v)

    @field_validator('album_artist', 'album_title', mode='before')
    @classmethod
    def strip_required(cls, v):
        return (v or "").strip()

    def missing_fields(self) -> List[str]:
        missing = []
        if not self.album_artist:
            missing.append("album_artist")
        if not self.album_title:
            missing.append("album_title")
        return missing

    @property
    def is_complete(self) -> bool:
        return not self.missing_fields()


class ReconstructionResult(BaseModel):
    """Identity inferred from a directory name, with its confidence."""

    directory_name: str
    matcher: Optional[str] = Field(default=None, description="Name of the matcher that fired")
    artist: Optional[str] = None
    title: Optional[str] = None
    year: Optional[str] = None
    label: Optional[str] = None
    catalog_number: Optional[str] = None
    confidence: int = Field(..., description="Raw confidence score, may exceed 100")
    accepted: bool
    reason: Optional[str] = Field(default=None, description="Why the result was rejected")

    @property
    def display_confidence(self) -> int:
        return min(self.confidence, 100)

    def to_identity(self) -> AlbumIdentity:
        return AlbumIdentity(
            album_artist=self.artist or "",
            album_title=self.title or "",
            year=self.year,
            label=self.label,
            catalog_number=self.catalog_number,
            source=IdentitySource.RECONSTRUCTION,
        )


class OrganizationPlan(BaseModel):
    """Where an album should live, and whether it already lives there."""

    source: Path
    destination: Path
    mode: OrganizationMode
    quality: QualityClass
    status: PlanStatus = PlanStatus.PLANNED

    @property
    def already_organized(self) -> bool:
        return self.status == PlanStatus.ALREADY_ORGANIZED


class MoveOperation(BaseModel):
    """One journaled directory relocation."""

    operation_id: str
    source_path: str
    dest_path: str
    status: MoveStatus = MoveStatus.PLANNED
    created_at: float
    updated_at: float
    error_message: Optional[str] = None


class ProcessedDirectoryRecord(BaseModel):
    """State tracker row for one album directory."""

    path: str
    content_signature: str
    status: ProcessingStatus
    timestamp: float


class DuplicateCandidate(BaseModel):
    """An organized album as seen by the duplicate detector."""

    id: Optional[int] = None
    path: str
    album_artist: str
    album_title: str
    normalized_artist: str
    normalized_title: str
    year: Optional[str] = None
    track_count: int = Field(..., ge=0)
    total_size_bytes: int = Field(default=0, ge=0)
    quality_class: QualityClass = QualityClass.UNKNOWN
    avg_bitrate: int = Field(default=0, ge=0)
    format_mix: str = Field(default="", description="Comma-separated sorted set of formats")
    identity_hash: str

    @property
    def formats(self) -> List[str]:
        return [f for f in self.format_mix.split(',') if f]


class DuplicateMember(BaseModel):
    candidate: DuplicateCandidate
    quality_score: int
    keep: bool = False


class DuplicateGroup(BaseModel):
    """Albums sharing one identity hash, ranked by quality score."""

    group_id: Optional[int] = None
    identity_hash: str
    members: List[DuplicateMember] = Field(default_factory=list)
    status: ResolutionStatus = ResolutionStatus.PENDING

    @property
    def keeper(self) -> Optional[DuplicateMember]:
        for member in self.members:
            if member.keep:
                return member
        return None

    @property
    def recommended_keeper_id(self) -> Optional[int]:
        keeper = self.keeper
        return keeper.candidate.id if keeper else None

    @property
    def removable(self) -> List[DuplicateMember]:
        return [m for m in self.members if not m.keep]

    @property
    def reclaimable_bytes(self) -> int:
        return sum(m.candidate.total_size_bytes for m in self.removable)


class AlbumProcessingResult(BaseModel):
    """Result of processing a single album directory."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    album_path: Path
    outcome: AlbumOutcome
    identity: Optional[AlbumIdentity] = None
    plan: Optional[OrganizationPlan] = None
    message: Optional[str] = None
    processing_time_seconds: float = 0.0


class BatchSummary(BaseModel):
    """Outcome counters for a batch run."""

    processed: int = 0
    skipped: int = 0
    already_organized: int = 0
    held: int = 0
    failed: int = 0

    def record(self, outcome: AlbumOutcome):
        setattr(self, outcome.value, getattr(self, outcome.value) + 1)

    def merge(self, other: "BatchSummary") -> "BatchSummary":
        return BatchSummary(
            processed=self.processed + other.processed,
            skipped=self.skipped + other.skipped,
            already_organized=self.already_organized + other.already_organized,
            held=self.held + other.held,
            failed=self.failed + other.failed,
        )

    @property
    def total(self) -> int:
        return self.processed + self.skipped + self.already_organized + self.held + self.failed

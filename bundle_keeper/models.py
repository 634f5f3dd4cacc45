"""Data models for bundle keeper."""

from dataclasses import dataclass, asdict, field
from enum import Enum
from typing import Optional

from .errors import InvalidTransition


class Pool(Enum):
    """Snapshot pools of a managed unit."""
    OFFICIAL = "official"
    CUSTOM = "custom"
    MERGED = "merged"


class PendingState(Enum):
    """Progress of a detected upstream update."""
    DETECTED = "detected"
    DOWNLOADED = "downloaded"
    MERGED = "merged"


class Resolution(Enum):
    """Ways to resolve a conflict region."""
    UPSTREAM = "upstream"
    LOCAL = "local"
    BOTH = "both"


@dataclass
class FileInfo:
    """Information about a file including metadata and hash."""
    relative_path: str
    absolute_path: str
    hash: str
    size: int
    modified_time: float

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "FileInfo":
        return cls(**data)

    def same_content(self, other: Optional["FileInfo"]) -> bool:
        return other is not None and self.size == other.size and self.hash == other.hash


@dataclass
class SourceDescriptor:
    """Where a managed unit's upstream versions come from."""
    kind: str
    location: str
    branch: Optional[str] = None

    @property
    def key(self) -> str:
        return f"{self.kind}:{self.location}"

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "SourceDescriptor":
        return cls(**data)


@dataclass
class CustomChange:
    """One entry of a unit's custom-change log."""
    date: str
    comment: str


@dataclass
class PendingUpdate:
    """An upstream version detected but not yet confirmed."""
    version: str
    downloaded: bool = False
    merged: bool = False
    merged_version: Optional[str] = None

    @property
    def state(self) -> PendingState:
        if self.merged:
            return PendingState.MERGED
        if self.downloaded:
            return PendingState.DOWNLOADED
        return PendingState.DETECTED

    def mark_downloaded(self) -> None:
        if self.state is not PendingState.DETECTED:
            raise InvalidTransition(
                f"Update {self.version} is already {self.state.value}"
            )
        self.downloaded = True

    def mark_merged(self, merged_version: str) -> None:
        # Re-merging an already merged update is allowed; it yields a new snapshot.
        if self.state is PendingState.DETECTED:
            raise InvalidTransition(
                f"Update {self.version} must be downloaded before merging"
            )
        self.merged = True
        self.merged_version = merged_version

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "PendingUpdate":
        return cls(**data)


@dataclass
class ManagedUnit:
    """A named bundle of third-party code under version tracking."""
    name: str
    source: SourceDescriptor
    official_version: str
    active_version: str
    active_pool: Pool = Pool.OFFICIAL
    has_custom_changes: bool = False
    custom_base: Optional[str] = None
    custom_version: Optional[str] = None
    custom_changes: list[CustomChange] = field(default_factory=list)
    pending: Optional[PendingUpdate] = None
    last_checked: Optional[str] = None
    created_at: Optional[str] = None


@dataclass
class SnapshotInfo:
    """One version directory inside a pool."""
    unit: str
    pool: Pool
    version: str
    path: str
    created_at: str
    is_active: bool = False

    @property
    def ref(self) -> tuple[Pool, str]:
        return self.pool, self.version


@dataclass
class CheckResult:
    """Summary produced by an update check."""
    unit: str
    current_version: str
    latest_version: str
    has_update: bool
    has_custom_changes: bool


@dataclass
class ConflictRegion:
    """One conflicting line pair inside a merged file."""
    file: str
    line_number: int
    upstream: str
    local: str
    resolved: bool = False
    resolution: Optional[str] = None
    resolved_at: Optional[str] = None


@dataclass
class ConflictInfo:
    """A merged file that contains conflict markers."""
    file: str
    line_number: int
    resolved: bool = False
    resolution: Optional[str] = None
    regions: list[ConflictRegion] = field(default_factory=list)


@dataclass
class DiffResult:
    """Classification of every path in base and upstream."""
    added: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    modified: list[str] = field(default_factory=list)
    conflicting: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)

    def all_paths(self) -> set[str]:
        return (set(self.added) | set(self.deleted) | set(self.modified)
                | set(self.conflicting) | set(self.unchanged))


@dataclass
class TreeDiff:
    """Two-way comparison of an old and a new tree."""
    added: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    changed: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.removed or self.changed)


@dataclass
class MergeResult:
    """Outcome of merging an upstream update into a custom branch."""
    success: bool
    merged_version: str
    conflicts: list[ConflictInfo] = field(default_factory=list)
    added_files: list[str] = field(default_factory=list)
    modified_files: list[str] = field(default_factory=list)
    deleted_files: list[str] = field(default_factory=list)
    kept_local: list[str] = field(default_factory=list)
    kept_upstream: list[str] = field(default_factory=list)
    binary_conflicts: list[str] = field(default_factory=list)

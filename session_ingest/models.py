import enum
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import List, Optional, Tuple


class MediaKind(enum.Enum):
    IMAGE = "image"
    VIDEO = "video"


class TimestampSource(enum.Enum):
    """Which level of the fallback chain produced a capture time."""
    EXIF = "exif"
    CONTAINER = "container"
    MEDIAINFO = "mediainfo"
    FILESYSTEM = "filesystem"


class FileStatus(enum.Enum):
    PENDING = "pending"
    COPIED = "copied"


class IssueKind(enum.Enum):
    NO_SEQUENCE = "no_sequence"
    TIMESTAMP_UNAVAILABLE = "timestamp_unavailable"
    UNREADABLE = "unreadable"
    DUPLICATE_SEQUENCE = "duplicate_sequence"   # warning only
    COPY_FAILED = "copy_failed"


@dataclass(frozen=True)
class FileRecord:
    """
    A scanned media file. Built once, never mutated.
    """
    path: Path
    sequence: int
    captured_at: datetime   # timezone-aware
    kind: MediaKind
    size_bytes: int
    timestamp_source: TimestampSource = TimestampSource.FILESYSTEM

    @property
    def name(self) -> str:
        return self.path.name


@dataclass(frozen=True)
class Session:
    """
    A contiguous run of records (in sequence order) that shares one folder.
    """
    records: Tuple[FileRecord, ...]
    date: date
    suffix: Optional[str] = None

    @property
    def folder_name(self) -> str:
        base = self.date.strftime("%Y-%m-%d")
        return f"{base}_{self.suffix}" if self.suffix else base

    @property
    def total_bytes(self) -> int:
        return sum(r.size_bytes for r in self.records)

    def __len__(self) -> int:
        return len(self.records)


@dataclass(frozen=True)
class FileIssue:
    path: Path
    kind: IssueKind
    message: str

    @property
    def is_warning(self) -> bool:
        return self.kind == IssueKind.DUPLICATE_SEQUENCE


@dataclass(frozen=True)
class CopyEvent:
    """Per-file completion event handed to progress observers."""
    path: Path
    bytes_copied: int
    position: int       # 1-based position in the sorted sequence
    total: int
    skipped: bool = False


@dataclass
class CopyResult:
    copied: List[Path] = field(default_factory=list)
    skipped: List[Path] = field(default_factory=list)
    previewed: List[Path] = field(default_factory=list)
    failed: List[FileIssue] = field(default_factory=list)
    bytes_copied: int = 0


@dataclass
class RunResult:
    """Summary of a whole invocation."""
    files_found: int = 0
    sessions: List[Session] = field(default_factory=list)
    copy: CopyResult = field(default_factory=CopyResult)
    issues: List[FileIssue] = field(default_factory=list)     # per-file errors
    warnings: List[FileIssue] = field(default_factory=list)
    dry_run: bool = False
    state_cleared: bool = False
    exit_code: int = 0

    @property
    def errors(self) -> List[FileIssue]:
        return self.issues + self.copy.failed

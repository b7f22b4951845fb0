"""
Configuration constants and the per-run configuration value.
"""
import math
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .models import MediaKind

# --- File Type Definitions ---
IMAGE_EXTS = {'.cr2'}
VIDEO_EXTS = {'.mp4'}

# Extension to Kind Mapping
EXT_TO_KIND = {}
for ext in IMAGE_EXTS: EXT_TO_KIND[ext] = MediaKind.IMAGE
for ext in VIDEO_EXTS: EXT_TO_KIND[ext] = MediaKind.VIDEO

# --- Metadata Parsing ---
DATE_TAGS = [
    'EXIF DateTimeOriginal',
    'EXIF DateTimeDigitized',
    'Image DateTime',
]
OFFSET_TAGS = {
    'EXIF DateTimeOriginal': 'EXIF OffsetTimeOriginal',
    'EXIF DateTimeDigitized': 'EXIF OffsetTimeDigitized',
    'Image DateTime': 'EXIF OffsetTime',
}

# MediaInfo General-track fields that are read from the container header.
# file_last_modification_date is deliberately absent: that is the filesystem level.
MEDIAINFO_DATE_FIELDS = [
    'encoded_date',
    'tagged_date',
    'recorded_date',
]

# QuickTime/MP4 timestamps count seconds from this epoch
MP4_EPOCH = datetime(1904, 1, 1, tzinfo=timezone.utc)

# Container times outside this window are camera clocks that were never set,
# or garbage that no timezone conversion can represent
MIN_PLAUSIBLE_YEAR = 1970
MAX_PLAUSIBLE_YEAR = 2100

# --- Sessions ---
DEFAULT_GAP_HOURS = 6.0

# --- Transfer ---
# FAT/exFAT cards store modification times with 2 second resolution
MTIME_TOLERANCE_SECONDS = 2.0

# Content check for files already at the destination: full SHA-256 below the
# threshold, header/middle/footer samples above it
SPARSE_HASH_THRESHOLD = 5 * 1024 * 1024  # 5 MB
SPARSE_SAMPLE_SIZE = 4096
HASH_CHUNK_SIZE = 64 * 1024

# --- Transfer State ---
STATE_FILENAME = ".session-ingest-state.json"
STATE_VERSION = 1
LOG_FILENAME = "session-ingest.log"

# --- Exit Codes ---
EXIT_OK = 0
EXIT_FATAL = 1
EXIT_PARTIAL = 3


def parse_timezone(name: Optional[str]) -> Optional[tzinfo]:
    """
    Turns a CLI timezone string into a tzinfo.
    'local' (or empty) returns None, meaning the system local timezone.
    """
    if not name or name.lower() == 'local':
        return None
    if name.upper() in ('UTC', 'Z'):
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError(f"Unknown timezone: {name}")


@dataclass(frozen=True)
class RunConfig:
    """Immutable run configuration, passed explicitly through the pipeline."""
    input_dir: Path
    output_dir: Path
    gap_hours: float = DEFAULT_GAP_HOURS
    dry_run: bool = False
    tz: Optional[tzinfo] = None       # None = system local time
    show_progress: bool = True
    mirror_state: bool = True          # best-effort state copy in the input dir
    report_csv: Optional[Path] = None

    def __post_init__(self):
        if not math.isfinite(self.gap_hours) or self.gap_hours <= 0:
            raise ValueError(f"gap_hours must be a positive number, got {self.gap_hours}")
        # Absolute paths, so the fingerprint and state keys do not depend on the working directory
        object.__setattr__(self, 'input_dir', Path(self.input_dir).expanduser().resolve())
        object.__setattr__(self, 'output_dir', Path(self.output_dir).expanduser().resolve())

    def fingerprint(self) -> dict:
        """The parameters that decide session assignment; stale state is detected with it."""
        return {
            'input_dir': str(self.input_dir),
            'output_dir': str(self.output_dir),
            'gap_hours': float(self.gap_hours),
        }

    @property
    def state_dirs(self) -> list:
        """Primary state location first, then the best-effort mirror."""
        dirs = [self.output_dir]
        if self.mirror_state:
            dirs.append(self.input_dir)
        return dirs

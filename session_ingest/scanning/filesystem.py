import os
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, List, Optional, Set

from tqdm import tqdm

from .. import config
from ..exceptions import NoSequenceFound, TimestampUnavailable
from ..metadata.extract import MetadataExtractor
from ..models import FileIssue, FileRecord, IssueKind
from .sequence import parse_sequence_number


@dataclass
class ScanResult:
    records: List[FileRecord] = field(default_factory=list)
    issues: List[FileIssue] = field(default_factory=list)


class DiskScanner:
    def __init__(self, extractor: Optional[MetadataExtractor] = None, show_progress: bool = True):
        self.metadata = extractor or MetadataExtractor()
        self.show_progress = show_progress

    def scan(self, root: Path, skip_dirs: Optional[Set[Path]] = None) -> ScanResult:
        """
        Finds every recognized media file under root and builds its FileRecord.

        Files that cannot be ordered or dated are reported as issues, never
        silently dropped. Record order is traversal order; sorting is the
        grouper's job.
        """
        candidates = list(self.iter_candidates(root, skip_dirs or set()))
        logging.info(f"Found {len(candidates)} candidate files under {root}")

        result = ScanResult()
        for path in tqdm(candidates, desc="Reading metadata", unit="file", disable=not self.show_progress):
            try:
                result.records.append(self.build_record(path))
            except NoSequenceFound as e:
                logging.warning(f"Skipping {path}: {e}")
                result.issues.append(FileIssue(path, IssueKind.NO_SEQUENCE, str(e)))
            except TimestampUnavailable as e:
                logging.warning(f"Skipping {path}: {e}")
                result.issues.append(FileIssue(path, IssueKind.TIMESTAMP_UNAVAILABLE, str(e)))
            except OSError as e:
                logging.warning(f"Cannot read {path}: {e}")
                result.issues.append(FileIssue(path, IssueKind.UNREADABLE, str(e)))

        return result

    def build_record(self, path: Path) -> FileRecord:
        kind = config.EXT_TO_KIND[path.suffix.lower()]
        sequence = parse_sequence_number(path.name)
        size_bytes = path.stat().st_size
        captured_at, source = self.metadata.extract_with_source(path, kind)

        return FileRecord(
            path=path,
            sequence=sequence,
            captured_at=captured_at,
            kind=kind,
            size_bytes=size_bytes,
            timestamp_source=source,
        )

    def iter_candidates(self, root: Path, skip_dirs: Set[Path]) -> Iterator[Path]:
        """Yields media files with a recognized extension."""
        for path in self._iter_files(root, skip_dirs):
            # macOS AppleDouble companions ("._IMG_0001.CR2") are not media
            if path.name.startswith("._"):
                continue
            if path.suffix.lower() in config.EXT_TO_KIND:
                yield path

    def _iter_files(self, root: Path, skip_dirs: Set[Path]) -> Iterator[Path]:
        """
        Depth-first over the card. Each folder's files are yielded before its
        subfolders are entered; symlinks are never followed and skip_dirs
        prunes whole subtrees.
        """
        pending = [root]
        while pending:
            current = pending.pop()
            if skip_dirs and any(sd == current or sd in current.parents for sd in skip_dirs):
                continue

            try:
                with os.scandir(current) as it:
                    entries = list(it)
            except OSError as e:
                logging.warning(f"Cannot list {current}: {e}")
                continue

            # Case-insensitive name order
            entries.sort(key=lambda e: e.name.lower())

            subfolders = []
            for entry in entries:
                if entry.is_dir(follow_symlinks=False):
                    subfolders.append(Path(entry.path))
                elif entry.is_file(follow_symlinks=False):
                    yield Path(entry.path)

            # pop() takes from the end
            pending.extend(reversed(subfolders))

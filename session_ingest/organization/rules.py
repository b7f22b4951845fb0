import logging
from collections import defaultdict
from pathlib import Path
from typing import Dict, List, Optional

from .. import config
from ..models import FileRecord, Session
from ..scanning.hasher import FileHasher


def matches_source(record: FileRecord, dest: Path) -> bool:
    """
    True when dest is already a copy of record: same size, same modification
    time (within FAT/exFAT resolution) and same content fingerprint.
    """
    try:
        src_stat = record.path.stat()
        dest_stat = dest.stat()
    except OSError:
        return False

    if dest_stat.st_size != src_stat.st_size:
        return False
    if abs(dest_stat.st_mtime - src_stat.st_mtime) > config.MTIME_TOLERANCE_SECONDS:
        return False

    hasher = FileHasher()
    try:
        return hasher.fingerprint(record.path) == hasher.fingerprint(dest)
    except OSError as e:
        logging.warning(f"Could not compare {record.path} with {dest}: {e}")
        return False


class DestinationPlanner:
    def __init__(self, claimed: Optional[Dict[Path, Path]] = None):
        # Destinations an interrupted run of the same transfer already assigned
        self.claimed = dict(claimed or {})
        # Names already handed out per folder, so one run never maps two files to one path
        self.used_names = defaultdict(set)
        # Lowercased name -> actual name of files already in each folder
        self._on_disk: Dict[Path, Dict[str, str]] = {}

    def plan(self, sessions: List[Session], dest_root: Path) -> Dict[Path, Path]:
        """
        Maps every source path to dest_root/<session folder>/<file name>.

        Names claimed by an interrupted run are kept so a resume writes to
        the same paths. Files already in a folder are never planned over
        unless they are a copy of the same source; anything else pushes the
        new file to the next free `_N` name.
        """
        assigned: Dict[Path, Path] = {}

        for session in sessions:
            folder = dest_root / session.folder_name
            for record in session.records:
                dest = self.claimed.get(record.path)
                if dest is None or dest.parent != folder:
                    continue
                if dest.name.lower() in self.used_names[folder]:
                    continue
                self.used_names[folder].add(dest.name.lower())
                assigned[record.path] = dest

        plan: Dict[Path, Path] = {}
        for session in sessions:
            folder = dest_root / session.folder_name
            for record in session.records:
                dest = assigned.get(record.path)
                plan[record.path] = dest if dest is not None else self._resolve_collision(folder, record)
        return plan

    def _resolve_collision(self, folder: Path, record: FileRecord) -> Path:
        """Ensures the file name is free in the destination folder (case-insensitively)."""
        filename = record.name
        stem = Path(filename).stem
        ext = Path(filename).suffix
        existing = self._existing(folder)
        candidate = filename
        counter = 1

        while (candidate.lower() in self.used_names[folder]
               or self._taken_on_disk(folder, existing, candidate, record)):
            candidate = f"{stem}_{counter}{ext}"
            counter += 1

        if candidate != filename:
            logging.warning(f"Name collision in {folder.name}: {filename} stored as {candidate}")
        self.used_names[folder].add(candidate.lower())
        return folder / candidate

    def _taken_on_disk(self, folder: Path, existing: Dict[str, str], candidate: str, record: FileRecord) -> bool:
        actual = existing.get(candidate.lower())
        if actual is None:
            return False
        return not matches_source(record, folder / actual)

    def _existing(self, folder: Path) -> Dict[str, str]:
        if folder not in self._on_disk:
            try:
                self._on_disk[folder] = {p.name.lower(): p.name for p in folder.iterdir()}
            except OSError:
                self._on_disk[folder] = {}
        return self._on_disk[folder]

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from .. import config
from ..exceptions import StateCorrupt
from ..models import FileRecord, FileStatus
from .schema import TransferState, from_document, to_document


class TransferStateStore:
    """
    Persists which source files have been copied, so an interrupted run can
    pick up where it stopped.

    The first directory holds the authoritative state file. Any further
    directories (normally the input card) get a best-effort mirror.
    Every write goes to a temporary file in the same directory and is then
    renamed over the old one, so the file on disk is always a complete JSON
    document.
    """

    def __init__(self, state_dirs: List[Path], persist: bool = True):
        if not state_dirs:
            raise ValueError("At least one state directory is required")
        self.path = state_dirs[0] / config.STATE_FILENAME
        self.mirrors = [d / config.STATE_FILENAME for d in state_dirs[1:]]
        self.persist = persist
        self.state: Optional[TransferState] = None
        # Destinations this transfer had already claimed before the current run
        self._claimed: Dict[str, str] = {}
        self._mirrors_enabled = True

    @classmethod
    def for_config(cls, run_config: config.RunConfig) -> "TransferStateStore":
        # Dry runs read prior state but never write it
        return cls(run_config.state_dirs, persist=not run_config.dry_run)

    # --- Loading ---

    def load(self, fingerprint: dict) -> TransferState:
        """
        Returns the saved state if it was written for the same configuration,
        otherwise a fresh empty state.
        """
        for path in [self.path] + self.mirrors:
            try:
                state = self._read(path)
            except StateCorrupt as e:
                logging.warning(f"Ignoring unusable transfer state {path}: {e}")
                continue

            if state is None:
                continue
            if state.fingerprint != fingerprint:
                logging.info(f"Transfer state {path} was written for a different configuration; starting fresh.")
                continue

            logging.info(f"Resuming transfer {state.transfer_id}: {state.copied_count()} files marked copied")
            self.state = state
            self._claimed = dict(state.destinations)
            return state

        self.state = TransferState(fingerprint=dict(fingerprint))
        self._claimed = {}
        return self.state

    def _read(self, path: Path) -> Optional[TransferState]:
        if not path.exists():
            return None
        try:
            data = json.loads(path.read_text(encoding='utf-8'))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise StateCorrupt(str(e))
        return from_document(data)

    # --- Status ---

    def begin(self, records: Iterable[FileRecord], destinations: Optional[Dict[Path, Path]] = None):
        """
        Registers this run's files as pending, keeping existing copied marks,
        and records where each one is going.
        """
        state = self._require()
        records = list(records)
        state.files = {
            str(r.path): state.files.get(str(r.path), FileStatus.PENDING)
            for r in records
        }
        if destinations is not None:
            state.destinations = {
                str(r.path): str(destinations[r.path]) for r in records if r.path in destinations
            }
        state.total_files = len(records)
        state.total_bytes = sum(r.size_bytes for r in records)
        self.flush()

    def mark_copied(self, source: Path):
        """Records a verified copy. Returns only after the state is on disk."""
        self._require().files[str(source)] = FileStatus.COPIED
        self.flush()

    def is_copied(self, source: Path, destination: Path, expected_size: int) -> bool:
        """
        A copied mark only counts if the destination is still there with the
        right size; otherwise the file goes back to pending.
        """
        state = self._require()
        key = str(source)
        if state.files.get(key) != FileStatus.COPIED:
            return False

        try:
            actual = destination.stat().st_size
        except OSError:
            actual = None

        if actual != expected_size:
            logging.warning(
                f"{source} is marked copied but {destination} is "
                f"{'missing' if actual is None else f'{actual} bytes, expected {expected_size}'}; will copy again"
            )
            state.files[key] = FileStatus.PENDING
            return False
        return True

    def status(self, source: Path) -> FileStatus:
        return self._require().files.get(str(source), FileStatus.PENDING)

    def claimed_destinations(self) -> Dict[Path, Path]:
        """Destinations an interrupted run of this transfer assigned, by source."""
        return {Path(src): Path(dest) for src, dest in self._claimed.items()}

    def owns(self, source: Path, destination: Path) -> bool:
        """
        True when an earlier run of this transfer already sent source to
        destination, so whatever is there is our own partial copy.
        """
        return self._claimed.get(str(source)) == str(destination)

    # --- Persistence ---

    def flush(self):
        if not self.persist:
            return
        document = to_document(self._require())
        self._atomic_write(self.path, document)

        if not self._mirrors_enabled:
            return
        for mirror in self.mirrors:
            try:
                self._atomic_write(mirror, document)
            except OSError as e:
                # Read-only cards are expected; stop trying for this run
                logging.warning(f"Could not write state mirror {mirror}: {e}")
                self._mirrors_enabled = False
                break

    def clear(self):
        """Deletes the state file(s). Only call after every file verified as copied."""
        if not self.persist:
            return
        for path in [self.path] + self.mirrors:
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                logging.warning(f"Could not remove transfer state {path}: {e}")
        self.state = None
        logging.info("Transfer state cleared.")

    def _require(self) -> TransferState:
        if self.state is None:
            raise RuntimeError("Transfer state not loaded; call load() first")
        return self.state

    def _atomic_write(self, target: Path, document: dict):
        fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=f"{target.name}.", suffix=".tmp")
        tmp = Path(tmp_name)
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(document, f, indent=2, ensure_ascii=False)
                f.write("\n")
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, target)
        except BaseException:
            tmp.unlink(missing_ok=True)
            raise
        _fsync_directory(target.parent)


def _fsync_directory(directory: Path):
    """Makes the rename itself durable. Not supported on every platform."""
    if os.name != 'posix':
        return
    try:
        fd = os.open(directory, os.O_RDONLY)
    except OSError as e:
        logging.debug(f"Cannot open {directory} for fsync: {e}")
        return
    try:
        os.fsync(fd)
    except OSError as e:
        logging.debug(f"Directory fsync failed for {directory}: {e}")
    finally:
        os.close(fd)

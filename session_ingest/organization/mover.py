import shutil
import logging
from pathlib import Path
from typing import Callable, Dict, List, Optional

from tqdm import tqdm

from ..exceptions import CopyFailed
from ..models import CopyEvent, CopyResult, FileIssue, FileRecord, IssueKind, Session
from ..state.store import TransferStateStore
from .rules import matches_source

Observer = Callable[[CopyEvent], None]


class CopyEngine:
    def __init__(self,
                 store: TransferStateStore,
                 dry_run: bool = False,
                 show_progress: bool = True,
                 observers: Optional[List[Observer]] = None):
        self.store = store
        self.dry_run = dry_run
        self.show_progress = show_progress
        self.observers: List[Observer] = list(observers or [])

    def add_observer(self, observer: Observer):
        self.observers.append(observer)

    def execute(self, sessions: List[Session], plan: Dict[Path, Path]) -> CopyResult:
        """
        Copies every record into its planned destination, in sequence order.

        Files already verified as copied are skipped. A failed file is
        reported and left pending; the run moves on to the next one.
        """
        result = CopyResult()
        total = sum(len(s) for s in sessions)
        total_bytes = sum(s.total_bytes for s in sessions)
        position = 0

        logging.info(f"Processing {total} files in {len(sessions)} sessions (DryRun={self.dry_run})...")

        with tqdm(total=total_bytes, desc="Copying", unit="B", unit_scale=True,
                  unit_divisor=1024, disable=not self.show_progress) as bar:
            for session in sessions:
                for record in session.records:
                    position += 1
                    dest = plan[record.path]
                    bar.set_postfix_str(f"{session.folder_name}/{record.name}", refresh=False)

                    if (self.store.is_copied(record.path, dest, record.size_bytes)
                            or self._adopt_existing(record, dest)):
                        logging.debug(f"SKIP (already copied): {record.path}")
                        result.skipped.append(record.path)
                        bar.update(record.size_bytes)
                        self._notify(CopyEvent(record.path, 0, position, total, skipped=True))
                        continue

                    if self.dry_run:
                        logging.info(f"[DRY RUN] Copy {record.path} -> {dest}")
                        result.previewed.append(record.path)
                        bar.update(record.size_bytes)
                        self._notify(CopyEvent(record.path, 0, position, total))
                        continue

                    try:
                        self._transfer(record, dest)
                    except CopyFailed as e:
                        logging.error(f"Failed to copy {record.path} -> {dest}: {e}")
                        result.failed.append(FileIssue(record.path, IssueKind.COPY_FAILED, str(e)))
                        bar.update(record.size_bytes)
                        continue

                    logging.debug(f"COPY: {record.path} -> {dest}")
                    result.copied.append(record.path)
                    result.bytes_copied += record.size_bytes
                    bar.update(record.size_bytes)
                    self._notify(CopyEvent(record.path, record.size_bytes, position, total))

        return result

    def _adopt_existing(self, record: FileRecord, dest: Path) -> bool:
        """
        A destination holding the same bytes as the source is an earlier copy
        whose state was cleared or lost; mark it instead of copying it again.
        """
        if not matches_source(record, dest):
            return False

        try:
            self.store.mark_copied(record.path)
        except OSError as e:
            logging.warning(f"Could not record existing copy {dest}: {e}")
            return False
        return True

    def _transfer(self, record: FileRecord, dest: Path):
        """Copy, verify size, then persist the copied mark. Any failure leaves the file pending."""
        # Only a partial copy this transfer already owns may be replaced
        if dest.exists() and not self.store.owns(record.path, dest):
            raise CopyFailed(f"{dest} already exists and is not a copy of this file", record.path)

        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            # copy2 keeps the source mtime on the copy
            shutil.copy2(str(record.path), str(dest))
            written = dest.stat().st_size
        except OSError as e:
            raise CopyFailed(str(e), record.path) from e

        if written != record.size_bytes:
            raise CopyFailed(
                f"size mismatch after copy: {written} bytes written, expected {record.size_bytes}",
                record.path,
            )

        try:
            self.store.mark_copied(record.path)
        except OSError as e:
            raise CopyFailed(f"copied but transfer state could not be saved: {e}", record.path) from e

    def _notify(self, event: CopyEvent):
        for observer in self.observers:
            observer(event)

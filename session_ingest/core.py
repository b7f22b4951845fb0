import logging
import os
import tempfile
from pathlib import Path
from typing import List, Optional, Set

from . import config
from .config import RunConfig
from .exceptions import InputDirectoryError, OutputDirectoryError
from .metadata.extract import MetadataExtractor
from .models import RunResult
from .organization.grouping import SessionGrouper, sort_records
from .organization.mover import CopyEngine, Observer
from .organization.rules import DestinationPlanner
from .reporting import ReportGenerator
from .scanning.filesystem import DiskScanner
from .state.store import TransferStateStore


class SessionIngestApp:
    def __init__(self, run_config: RunConfig, observers: Optional[List[Observer]] = None):
        self.config = run_config
        self.extractor = MetadataExtractor(tz=run_config.tz)
        self.scanner = DiskScanner(self.extractor, show_progress=run_config.show_progress)
        self.grouper = SessionGrouper(run_config.gap_hours, tz=run_config.tz)
        self.store = TransferStateStore.for_config(run_config)
        self.engine = CopyEngine(
            self.store,
            dry_run=run_config.dry_run,
            show_progress=run_config.show_progress,
            observers=observers,
        )
        self.reporter = ReportGenerator()

    def run(self) -> RunResult:
        """
        Executes the ingest pipeline.
        1. Validate input/output (fatal errors stop here)
        2. Scan & Date
        3. Sort, Group, Plan destinations
        4. Copy with resume state
        5. Final consistency pass, then drop the state file
        """
        result = RunResult(dry_run=self.config.dry_run)

        # --- Step 1: Validation ---
        self.validate()

        # --- Step 2: Scanning ---
        logging.info(f"Scanning {self.config.input_dir}...")
        scan = self.scanner.scan(self.config.input_dir, skip_dirs=self._skip_dirs())
        result.issues.extend(scan.issues)
        result.files_found = len(scan.records) + len(scan.issues)

        if not scan.records:
            logging.info("No media files with a usable sequence number and date found.")
            result.exit_code = self._exit_code(result)
            return result

        # --- Step 3: Grouping ---
        records, warnings = sort_records(scan.records)
        result.warnings.extend(warnings)
        sessions = self.grouper.group(records)
        result.sessions = sessions

        # Loaded first so an interrupted transfer keeps its destinations
        self.store.load(self.config.fingerprint())
        planner = DestinationPlanner(claimed=self.store.claimed_destinations())
        plan = planner.plan(sessions, self.config.output_dir)
        self.reporter.log_plan(sessions)
        if self.config.report_csv:
            self.reporter.write_plan_csv(sessions, plan, self.config.report_csv)

        # --- Step 4: Transfer ---
        self.store.begin(records, plan)
        result.copy = self.engine.execute(sessions, plan)

        # --- Step 5: Consistency pass ---
        if not self.config.dry_run and not result.copy.failed:
            unverified = [r for r in records if not self.store.is_copied(r.path, plan[r.path], r.size_bytes)]
            if unverified:
                logging.warning(
                    f"{len(unverified)} files did not verify after the transfer; keeping resume state."
                )
            else:
                self.store.clear()
                result.state_cleared = True

        result.exit_code = self._exit_code(result)
        return result

    def validate(self):
        """Fatal checks; nothing has been written when these fail."""
        inp = self.config.input_dir
        out = self.config.output_dir

        if not inp.is_dir():
            raise InputDirectoryError(f"Input directory does not exist or is not a directory: {inp}")
        try:
            with os.scandir(inp):
                pass
        except OSError as e:
            raise InputDirectoryError(f"Cannot read input directory {inp}: {e}") from e

        if inp.resolve() == out.resolve():
            raise OutputDirectoryError(f"Output directory must differ from the input directory: {out}")

        if self.config.dry_run:
            return

        try:
            out.mkdir(parents=True, exist_ok=True)
            # Create a real file; permission bits do not reflect read-only mounts
            with tempfile.TemporaryFile(dir=out):
                pass
        except OSError as e:
            raise OutputDirectoryError(f"Cannot write to output directory {out}: {e}") from e

    def _skip_dirs(self) -> Set[Path]:
        """Never re-ingest our own output when it lives under the input tree."""
        out = self.config.output_dir.resolve()
        inp = self.config.input_dir.resolve()
        return {self.config.output_dir} if inp in out.parents else set()

    def _exit_code(self, result: RunResult) -> int:
        return config.EXIT_PARTIAL if result.errors else config.EXIT_OK

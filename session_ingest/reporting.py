import csv
import logging
from pathlib import Path
from typing import Dict, List

from .models import RunResult, Session


class ReportGenerator:
    def log_plan(self, sessions: List[Session]):
        """Prints the folder each session will be copied into."""
        logging.info(f"Organized into {len(sessions)} session(s):")
        for session in sessions:
            first, last = session.records[0], session.records[-1]
            logging.info(
                f"  {session.folder_name} ({len(session)} files, "
                f"#{first.sequence}-#{last.sequence}, "
                f"{first.captured_at:%H:%M}-{last.captured_at:%H:%M})"
            )

    def write_plan_csv(self, sessions: List[Session], plan: Dict[Path, Path], output_csv: Path):
        """
        One row per file: where it goes, when it was taken and which
        metadata source the time came from.
        """
        headers = [
            "Session Folder",
            "Sequence",
            "Source Path",
            "Destination Path",
            "Captured At",
            "Timestamp Source",
            "Media Kind",
            "Size Bytes",
        ]

        output_csv.parent.mkdir(parents=True, exist_ok=True)
        with open(output_csv, "w", newline="", encoding="utf-8") as f:
            writer = csv.writer(f)
            writer.writerow(headers)
            for session in sessions:
                for record in session.records:
                    writer.writerow([
                        session.folder_name,
                        record.sequence,
                        str(record.path),
                        str(plan[record.path]),
                        record.captured_at.isoformat(),
                        record.timestamp_source.value,
                        record.kind.value,
                        record.size_bytes,
                    ])

        logging.info(f"Plan report written: {output_csv}")

    def log_summary(self, result: RunResult):
        copy = result.copy
        logging.info("=" * 60)
        logging.info("Summary:")
        logging.info(f"  Files found:   {result.files_found}")
        logging.info(f"  Sessions:      {len(result.sessions)}")
        if result.dry_run:
            logging.info(f"  Would copy:    {len(copy.previewed)}")
        else:
            logging.info(f"  Copied:        {len(copy.copied)} ({copy.bytes_copied} bytes)")
        logging.info(f"  Already done:  {len(copy.skipped)}")
        logging.info(f"  Errors:        {len(result.errors)}")
        logging.info(f"  Warnings:      {len(result.warnings)}")

        for issue in result.errors:
            logging.info(f"    [{issue.kind.value}] {issue.path}: {issue.message}")
        for issue in result.warnings:
            logging.info(f"    [{issue.kind.value}] {issue.path}: {issue.message}")

        if result.dry_run:
            logging.info("  (DRY RUN -- no files were changed)")
        elif result.state_cleared:
            logging.info("  Transfer complete; resume state removed.")
        logging.info("=" * 60)

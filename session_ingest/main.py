import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from . import __version__, config
from .config import RunConfig, parse_timezone
from .core import SessionIngestApp
from .exceptions import FatalRunError
from .reporting import ReportGenerator


def setup_logging(log_dir: Optional[Path], verbose: bool):
    """Sets up logging to the console and, for real runs, a file in the output directory."""
    log_level = logging.DEBUG if verbose else logging.INFO

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_dir / config.LOG_FILENAME, encoding='utf-8'))

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=handlers,
        force=True,
    )

    # Silence chatty libraries
    logging.getLogger("exifread").setLevel(logging.ERROR)


def _positive_hours(value: str) -> float:
    try:
        hours = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a number: {value}")
    if not hours > 0 or hours == float('inf'):
        raise argparse.ArgumentTypeError(f"must be a positive number of hours: {value}")
    return hours


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="session-ingest",
        description="Copy CR2/MP4 files from a card into dated shooting-session folders.",
    )

    p.add_argument("-i", "--input", type=Path, required=True, help="Input directory (e.g. SD card mount point)")
    p.add_argument("-o", "--output", type=Path, required=True, help="Output directory for session folders")
    p.add_argument("--gap-hours", type=_positive_hours, default=config.DEFAULT_GAP_HOURS,
                   help=f"Gap between consecutive files that starts a new session (default: {config.DEFAULT_GAP_HOURS})")
    p.add_argument("--dry-run", action="store_true", help="Show the session plan without copying anything")
    p.add_argument("--timezone", default="local",
                   help="Timezone for session dates: 'local', 'UTC' or an IANA name (default: local)")
    p.add_argument("--report-csv", type=Path, default=None, help="Write the file-to-folder plan as CSV")
    p.add_argument("--no-mirror-state", action="store_true",
                   help="Keep resume state only in the output directory")
    p.add_argument("--no-progress", action="store_true", help="Disable progress bars")
    p.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    return p


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        tz = parse_timezone(args.timezone)
    except ValueError as e:
        parser.error(str(e))

    input_dir = args.input.expanduser().resolve()
    output_dir = args.output.expanduser().resolve()

    # Dry runs must not touch the output volume, not even for the log file
    log_dir = None if args.dry_run else output_dir
    try:
        setup_logging(log_dir, args.verbose)
    except OSError as e:
        setup_logging(None, args.verbose)
        logging.warning(f"Cannot write log file in {output_dir}: {e}")

    logging.info("=== Session Ingest Started ===")
    logging.info(f"Input:     {input_dir}")
    logging.info(f"Output:    {output_dir}")
    logging.info(f"Gap hours: {args.gap_hours}")
    logging.info(f"Dry run:   {args.dry_run}")

    run_config = RunConfig(
        input_dir=input_dir,
        output_dir=output_dir,
        gap_hours=args.gap_hours,
        dry_run=args.dry_run,
        tz=tz,
        show_progress=not args.no_progress,
        mirror_state=not args.no_mirror_state,
        report_csv=args.report_csv,
    )

    app = SessionIngestApp(run_config)

    try:
        result = app.run()
    except FatalRunError as e:
        logging.error(str(e))
        return config.EXIT_FATAL
    except KeyboardInterrupt:
        logging.warning("Operation cancelled by user. Run again to resume.")
        return config.EXIT_FATAL
    except Exception:
        logging.exception("Fatal error during transfer.")
        return config.EXIT_FATAL

    ReportGenerator().log_summary(result)
    return result.exit_code


if __name__ == "__main__":
    sys.exit(main())

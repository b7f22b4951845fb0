import logging
import math
from collections import Counter, defaultdict
from datetime import date, timedelta, tzinfo
from typing import Dict, Iterable, List, Optional, Tuple

from ..models import FileIssue, FileRecord, IssueKind, Session


def sort_records(records: Iterable[FileRecord]) -> Tuple[List[FileRecord], List[FileIssue]]:
    """
    Orders records by sequence number, breaking ties on the path string.

    Sequence numbers shared by several files (e.g. two cards merged into one
    folder) are reported as warnings; the files themselves are kept.
    """
    ordered = sorted(records, key=lambda r: (r.sequence, str(r.path)))
    counts = Counter(r.sequence for r in ordered)

    warnings = []
    for rec in ordered:
        if counts[rec.sequence] > 1:
            msg = f"Sequence number {rec.sequence} is shared by {counts[rec.sequence]} files"
            logging.warning(f"{rec.path}: {msg}")
            warnings.append(FileIssue(rec.path, IssueKind.DUPLICATE_SEQUENCE, msg))
    return ordered, warnings


def suffix_for(index: int) -> str:
    """0 -> 'a', 25 -> 'z', 26 -> 'aa', 27 -> 'ab', ..."""
    letters = ""
    index += 1
    while index > 0:
        index, rem = divmod(index - 1, 26)
        letters = chr(ord('a') + rem) + letters
    return letters


class SessionGrouper:
    """
    Splits a sequence-ordered record list wherever two neighbours are more
    than gap_hours apart, then names the resulting sessions by date.
    """

    def __init__(self, gap_hours: float, tz: Optional[tzinfo] = None):
        if not math.isfinite(gap_hours) or gap_hours <= 0:
            raise ValueError(f"gap_hours must be a positive number, got {gap_hours}")
        self.gap = timedelta(hours=gap_hours)
        self.tz = tz

    def group(self, records: List[FileRecord]) -> List[Session]:
        if not records:
            return []

        runs: List[List[FileRecord]] = [[records[0]]]
        for prev, cur in zip(records, records[1:]):
            # Out-of-order clocks give negative gaps; only the magnitude matters
            if abs(cur.captured_at - prev.captured_at) > self.gap:
                runs.append([])
            runs[-1].append(cur)

        return self._name(runs)

    def session_date(self, record: FileRecord) -> date:
        return record.captured_at.astimezone(self.tz).date()

    def _name(self, runs: List[List[FileRecord]]) -> List[Session]:
        dates = [self.session_date(run[0]) for run in runs]
        per_date = Counter(dates)
        seen: Dict[date, int] = defaultdict(int)

        sessions = []
        for run, day in zip(runs, dates):
            suffix = None
            if per_date[day] > 1:
                suffix = suffix_for(seen[day])
                seen[day] += 1
            sessions.append(Session(records=tuple(run), date=day, suffix=suffix))
        return sessions

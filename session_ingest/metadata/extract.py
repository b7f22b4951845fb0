import logging
import re
from datetime import datetime, timedelta, timezone, tzinfo
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

import exifread
from pymediainfo import MediaInfo

from .. import config
from ..exceptions import ContainerParseError, TimestampUnavailable
from ..models import MediaKind, TimestampSource
from . import atoms

_OFFSET_RE = re.compile(r'^([+-])(\d{2}):(\d{2})$')

Reader = Callable[[Path], Optional[datetime]]


class MetadataExtractor:
    """
    Produces one capture timestamp per file.

    Strategies, picked by media kind:
      - Images: EXIF date tags via 'exifread'.
      - Video: moov/mvhd creation time (native atom walk) -> 'pymediainfo'.
      - Everything: filesystem modification time as the last resort.

    All timestamps come back timezone-aware, expressed in the reference
    timezone (tz=None means the system local zone).
    """

    def __init__(self, tz: Optional[tzinfo] = None):
        self.tz = tz
        self._chains: Dict[MediaKind, List[Tuple[TimestampSource, Reader]]] = {
            MediaKind.IMAGE: [
                (TimestampSource.EXIF, self._from_exif),
            ],
            MediaKind.VIDEO: [
                (TimestampSource.CONTAINER, self._from_container),
                (TimestampSource.MEDIAINFO, self._from_mediainfo),
            ],
        }

    def extract(self, path: Path, kind: MediaKind) -> datetime:
        """Returns the best available capture time, or raises TimestampUnavailable."""
        return self.extract_with_source(path, kind)[0]

    def extract_with_source(self, path: Path, kind: MediaKind) -> Tuple[datetime, TimestampSource]:
        for source, reader in self._chains.get(kind, []):
            dt = reader(path)
            if dt is not None:
                return dt, source
        return self._from_filesystem(path), TimestampSource.FILESYSTEM

    # --- Embedded Sources ---

    def _from_exif(self, path: Path) -> Optional[datetime]:
        try:
            with path.open('rb') as f:
                # details=False skips makernotes and thumbnails
                tags = exifread.process_file(f, details=False)
        except Exception as e:
            logging.warning(f"ExifRead failed for {path}: {e}")
            return None

        dt = self._parse_exif_date(tags)
        if dt is None:
            logging.debug(f"No EXIF capture date in {path}")
        return dt

    def _from_container(self, path: Path) -> Optional[datetime]:
        try:
            created = atoms.read_creation_time(path)
        except ContainerParseError as e:
            logging.warning(f"Malformed container in {path}: {e}")
            return None
        except OSError as e:
            logging.warning(f"Cannot read container of {path}: {e}")
            return None

        if created is None:
            logging.debug(f"No mvhd creation time in {path}")
            return None
        return self._to_reference(created)

    def _from_mediainfo(self, path: Path) -> Optional[datetime]:
        try:
            mi = MediaInfo.parse(str(path))
        except Exception as e:
            logging.debug(f"MediaInfo failed for {path}: {e}")
            return None

        for track in mi.tracks:
            if track.track_type != "General":
                continue
            for field in config.MEDIAINFO_DATE_FIELDS:
                val = getattr(track, field, None)
                if val:
                    dt = self._parse_mediainfo_date(str(val))
                    if dt:
                        return dt
        return None

    # --- Filesystem Fallback ---

    def _from_filesystem(self, path: Path) -> datetime:
        try:
            mtime = path.stat().st_mtime
        except OSError as e:
            raise TimestampUnavailable(f"Cannot read modification time of {path}: {e}", path)
        try:
            return datetime.fromtimestamp(mtime, tz=timezone.utc).astimezone(self.tz)
        except (OverflowError, ValueError, OSError) as e:
            raise TimestampUnavailable(f"Modification time of {path} is out of range: {e}", path)

    # --- Parsing Helpers ---

    def _parse_exif_date(self, tags) -> Optional[datetime]:
        """EXIF stores wall-clock 'YYYY:MM:DD HH:MM:SS', optionally with an OffsetTime* tag."""
        for tag in config.DATE_TAGS:
            if tag not in tags:
                continue
            raw = str(tags[tag]).strip().rstrip('\x00')
            try:
                naive = datetime.strptime(raw[:19], "%Y:%m:%d %H:%M:%S")
            except ValueError:
                # Unset clocks write "0000:00:00 00:00:00"
                continue

            offset = self._parse_offset(tags.get(config.OFFSET_TAGS[tag]))
            if offset is not None:
                dt = self._to_reference(naive.replace(tzinfo=offset))
            else:
                dt = self._localize(naive)
            if dt is not None:
                return dt
        return None

    def _parse_offset(self, value) -> Optional[timezone]:
        if value is None:
            return None
        match = _OFFSET_RE.match(str(value).strip().rstrip('\x00'))
        if not match:
            return None
        sign, hours, minutes = match.groups()
        delta = timedelta(hours=int(hours), minutes=int(minutes))
        return timezone(-delta if sign == '-' else delta)

    def _parse_mediainfo_date(self, value: str) -> Optional[datetime]:
        """
        MediaInfo writes either 'UTC 2024-01-15 10:00:00' or '2024-01-15 10:00:00 UTC'.
        Values without a UTC marker are wall-clock times.
        """
        is_utc = 'UTC' in value
        clean = value.replace('UTC', '').strip()

        try:
            parsed = datetime.fromisoformat(clean)
        except ValueError:
            try:
                parsed = datetime.strptime(clean.split('.')[0], "%Y-%m-%d %H:%M:%S")
            except ValueError:
                return None

        # Zeroed mvhd fields show up as 1904-01-01
        if not config.MIN_PLAUSIBLE_YEAR <= parsed.year <= config.MAX_PLAUSIBLE_YEAR:
            return None

        if parsed.tzinfo is not None:
            return self._to_reference(parsed)
        if is_utc:
            return self._to_reference(parsed.replace(tzinfo=timezone.utc))
        return self._localize(parsed)

    def _to_reference(self, aware: datetime) -> Optional[datetime]:
        """Converts to the reference timezone; None when the result is not a representable date."""
        try:
            return aware.astimezone(self.tz)
        except (OverflowError, ValueError, OSError) as e:
            logging.warning(f"Ignoring out-of-range timestamp {aware.isoformat()}: {e}")
            return None

    def _localize(self, naive: datetime) -> Optional[datetime]:
        """Reads a naive wall-clock time as being in the reference timezone."""
        if self.tz is None:
            try:
                return naive.astimezone()
            except (OverflowError, ValueError, OSError) as e:
                logging.warning(f"Ignoring out-of-range timestamp {naive.isoformat()}: {e}")
                return None
        return naive.replace(tzinfo=self.tz)

import os
import struct
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from PIL import Image

import session_ingest.metadata.extract as extract_module
from session_ingest import config
from session_ingest.models import FileRecord, MediaKind, TimestampSource

UTC = timezone.utc


class NoMediaInfo:
    """Stands in for pymediainfo so tests never depend on libmediainfo being installed."""
    tracks = []

    @classmethod
    def parse(cls, path):
        return cls()


@pytest.fixture(autouse=True)
def no_mediainfo(monkeypatch):
    monkeypatch.setattr(extract_module, "MediaInfo", NoMediaInfo)


def _atom(kind: bytes, body: bytes) -> bytes:
    return struct.pack('>I4s', 8 + len(body), kind) + body


def mp4_bytes(created: datetime = None, version: int = 0, seconds: int = None) -> bytes:
    """A minimal ftyp/mdat/moov file whose mvhd carries the given creation time."""
    if seconds is None:
        seconds = int((created - config.MP4_EPOCH).total_seconds()) if created else 0
    if version == 1:
        times = struct.pack('>QQIQ', seconds, seconds, 1000, 5000)
    else:
        times = struct.pack('>IIII', seconds, seconds, 1000, 5000)
    mvhd = _atom(b'mvhd', bytes([version, 0, 0, 0]) + times + b'\x00' * 80)
    ftyp = _atom(b'ftyp', b'isom\x00\x00\x02\x00isomiso2mp41')
    mdat = _atom(b'mdat', b'\x11' * 64)
    return ftyp + mdat + _atom(b'moov', mvhd)


def set_mtime(path: Path, when: datetime):
    ts = when.timestamp()
    os.utime(path, (ts, ts))


@pytest.fixture
def atom():
    return _atom


@pytest.fixture
def make_mp4():
    def _make(path: Path, created: datetime = None, **kwargs) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(mp4_bytes(created, **kwargs))
        return path
    return _make


@pytest.fixture
def make_cr2():
    """Writes a JPEG-encoded file with an EXIF DateTime tag; exifread sniffs content, not extension."""
    def _make(path: Path, taken: str = None, mtime: datetime = None) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        img = Image.new("RGB", (8, 8), color=(120, 30, 200))
        exif = Image.Exif()
        if taken:
            exif[0x0132] = taken  # Image DateTime
        img.save(path, format="JPEG", exif=exif)
        if mtime:
            set_mtime(path, mtime)
        return path
    return _make


@pytest.fixture
def make_record():
    """Builds a FileRecord on 2024-01-15 (UTC) without touching the disk."""
    def _make(seq: int, hour: int = 10, minute: int = 0, day: int = 15,
              size: int = 100, kind: MediaKind = MediaKind.IMAGE, name: str = None) -> FileRecord:
        ext = ".CR2" if kind == MediaKind.IMAGE else ".MP4"
        return FileRecord(
            path=Path("/card/DCIM") / (name or f"IMG_{seq:04d}{ext}"),
            sequence=seq,
            captured_at=datetime(2024, 1, day, tzinfo=UTC) + timedelta(hours=hour, minutes=minute),
            kind=kind,
            size_bytes=size,
            timestamp_source=TimestampSource.EXIF,
        )
    return _make


@pytest.fixture
def card(tmp_path, make_cr2):
    """
    An SD card layout with two shoots on 2024-01-15: #1001-#1003 in the
    morning and #1004-#1005 in the evening.
    """
    root = tmp_path / "card"
    dcim = root / "DCIM" / "100CANON"
    shots = [
        (1001, "2024:01:15 10:00:00"),
        (1002, "2024:01:15 10:05:00"),
        (1003, "2024:01:15 10:08:00"),
        (1004, "2024:01:15 19:00:00"),
        (1005, "2024:01:15 19:30:00"),
    ]
    for seq, taken in shots:
        make_cr2(dcim / f"IMG_{seq}.CR2", taken)
    return root


@pytest.fixture
def build_mp4():
    return mp4_bytes


@pytest.fixture
def touch_mtime():
    return set_mtime

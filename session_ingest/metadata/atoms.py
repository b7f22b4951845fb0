"""
Minimal, defensive reader for ISO base media (MP4/QuickTime) atoms.

Only walks far enough to find moov/mvhd and read its creation time.
Anything that does not add up (sizes that overrun their parent, truncated
headers, unknown mvhd versions) raises ContainerParseError so the caller can
fall back to the next timestamp source.
"""
import os
import struct
from datetime import datetime, timedelta
from pathlib import Path
from typing import BinaryIO, Iterator, Optional, Tuple

from .. import config
from ..exceptions import ContainerParseError

_HEADER = struct.Struct('>I4s')
_LARGE_SIZE = struct.Struct('>Q')
_MVHD_V0 = struct.Struct('>II')   # creation_time, modification_time
_MVHD_V1 = struct.Struct('>QQ')


def iter_atoms(f: BinaryIO, start: int, end: int) -> Iterator[Tuple[bytes, int, int]]:
    """
    Yields (type, payload_start, atom_end) for the sibling atoms in [start, end).

    Trailing bytes too short to hold a header are treated as padding.
    """
    pos = start
    while end - pos >= _HEADER.size:
        f.seek(pos)
        header = f.read(_HEADER.size)
        if len(header) < _HEADER.size:
            raise ContainerParseError(f"Truncated atom header at offset {pos}")
        size, kind = _HEADER.unpack(header)
        header_len = _HEADER.size

        if size == 1:
            # 64-bit size follows the type
            large = f.read(_LARGE_SIZE.size)
            if len(large) < _LARGE_SIZE.size:
                raise ContainerParseError(f"Truncated 64-bit atom size at offset {pos}")
            size = _LARGE_SIZE.unpack(large)[0]
            header_len += _LARGE_SIZE.size
        elif size == 0:
            # Atom extends to the end of its parent
            size = end - pos

        if size < header_len:
            raise ContainerParseError(f"Atom {kind!r} at offset {pos} has invalid size {size}")
        if pos + size > end:
            raise ContainerParseError(
                f"Atom {kind!r} at offset {pos} (size {size}) overruns its parent ending at {end}"
            )

        yield kind, pos + header_len, pos + size
        pos += size


def parse_mvhd(payload: bytes) -> Optional[datetime]:
    """
    Decodes the creation time from an mvhd payload (the bytes after its header).
    Returns None when the camera left the field unset.
    """
    if len(payload) < 4:
        raise ContainerParseError("Truncated mvhd atom")

    version = payload[0]
    if version == 0:
        layout = _MVHD_V0
    elif version == 1:
        layout = _MVHD_V1
    else:
        raise ContainerParseError(f"Unsupported mvhd version {version}")

    if len(payload) < 4 + layout.size:
        raise ContainerParseError("Truncated mvhd timestamps")

    creation, _modification = layout.unpack_from(payload, 4)
    if creation == 0:
        return None

    try:
        created = config.MP4_EPOCH + timedelta(seconds=creation)
    except OverflowError:
        raise ContainerParseError(f"mvhd creation time out of range: {creation}")

    if not config.MIN_PLAUSIBLE_YEAR <= created.year <= config.MAX_PLAUSIBLE_YEAR:
        return None
    return created


def read_creation_time(path: Path) -> Optional[datetime]:
    """
    Returns the UTC creation time stored in moov/mvhd.

    None means the file has no usable creation time; ContainerParseError means
    the atom layout itself is broken.
    """
    with path.open('rb') as f:
        f.seek(0, os.SEEK_END)
        file_size = f.tell()

        for kind, body, atom_end in iter_atoms(f, 0, file_size):
            if kind != b'moov':
                continue
            for child, child_body, child_end in iter_atoms(f, body, atom_end):
                if child == b'mvhd':
                    f.seek(child_body)
                    return parse_mvhd(f.read(min(child_end - child_body, 4 + _MVHD_V1.size)))
            return None

    return None

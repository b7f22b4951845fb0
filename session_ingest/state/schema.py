"""
On-disk format of the transfer state file.
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict

from .. import config
from ..exceptions import StateCorrupt
from ..models import FileStatus


@dataclass
class TransferState:
    fingerprint: dict
    files: Dict[str, FileStatus] = field(default_factory=dict)
    # source path -> destination path chosen when the transfer began
    destinations: Dict[str, str] = field(default_factory=dict)
    transfer_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    total_files: int = 0
    total_bytes: int = 0

    def copied_count(self) -> int:
        return sum(1 for s in self.files.values() if s == FileStatus.COPIED)


def to_document(state: TransferState) -> dict:
    return {
        'version': config.STATE_VERSION,
        'transfer_id': state.transfer_id,
        'fingerprint': state.fingerprint,
        'files': {path: status.value for path, status in state.files.items()},
        'destinations': dict(state.destinations),
        'total_files': state.total_files,
        'total_bytes': state.total_bytes,
        'updated_at': datetime.now(timezone.utc).isoformat(timespec='seconds'),
    }


def from_document(data) -> TransferState:
    """
    Validates a decoded JSON document. Unknown fields are ignored so newer
    writers stay readable; unknown status strings count as pending.
    """
    if not isinstance(data, dict):
        raise StateCorrupt("State document is not a JSON object")

    fingerprint = data.get('fingerprint')
    if not isinstance(fingerprint, dict):
        raise StateCorrupt("State document has no fingerprint")

    raw_files = data.get('files', {})
    if not isinstance(raw_files, dict):
        raise StateCorrupt("State 'files' entry is not an object")

    files = {}
    for path, status in raw_files.items():
        files[str(path)] = FileStatus.COPIED if status == FileStatus.COPIED.value else FileStatus.PENDING

    state = TransferState(fingerprint=fingerprint, files=files)
    raw_destinations = data.get('destinations', {})
    if isinstance(raw_destinations, dict):
        state.destinations = {
            str(src): str(dest) for src, dest in raw_destinations.items()
            if isinstance(dest, str)
        }
    if isinstance(data.get('transfer_id'), str):
        state.transfer_id = data['transfer_id']
    if isinstance(data.get('total_files'), int):
        state.total_files = data['total_files']
    if isinstance(data.get('total_bytes'), int):
        state.total_bytes = data['total_bytes']
    return state

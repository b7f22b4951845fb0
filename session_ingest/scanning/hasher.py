import hashlib
import os
from pathlib import Path

from .. import config


class FileHasher:
    def fingerprint(self, path: Path) -> str:
        """
        Content fingerprint used to tell an earlier copy of a file from an
        unrelated file that happens to share its name.

        Small files are hashed in full. Large files (raw stills, clips) are
        sampled at the header, middle and footer, mixed with the size, so a
        second run over a full card does not re-read every byte.
        """
        file_size = path.stat().st_size
        if file_size < config.SPARSE_HASH_THRESHOLD:
            return self._full_sha256(path)
        return self._sparse_hash(path, file_size)

    def _full_sha256(self, path: Path) -> str:
        h = hashlib.sha256()
        with open(path, 'rb') as f:
            while chunk := f.read(config.HASH_CHUNK_SIZE):
                h.update(chunk)
        return h.hexdigest()

    def _sparse_hash(self, path: Path, file_size: int) -> str:
        chunk_size = config.SPARSE_SAMPLE_SIZE
        h = hashlib.sha256()
        h.update(str(file_size).encode('ascii'))

        with open(path, 'rb') as f:
            h.update(f.read(chunk_size))

            f.seek(file_size // 2)
            h.update(f.read(chunk_size))

            f.seek(-chunk_size, os.SEEK_END)
            h.update(f.read(chunk_size))

        return f"s-{h.hexdigest()}"

"""Content-addressed blob store inside the vault control directory."""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

from vaultsync.exceptions import BlobNotFoundError
from vaultsync.filesystem.layout import atomic_write_bytes

if TYPE_CHECKING:
    from pathlib import Path

    from vaultsync.schemas.hashes import FileHash

logger = logging.getLogger(__name__)

_DIGEST_RE = re.compile(r"^[0-9a-f]{64}$")


class BlobStore:
    """Stores file bodies once per distinct sha256 under ``blobs/<sha256>``."""

    def __init__(self, blobs_dir: Path) -> None:
        self.blobs_dir = blobs_dir

    def _blob_path(self, blob_hash: FileHash) -> Path:
        if not _DIGEST_RE.match(blob_hash.value):
            raise ValueError(f"Not a sha256 digest: {blob_hash.value!r}")
        return self.blobs_dir / blob_hash.value

    def has(self, blob_hash: FileHash) -> bool:
        return self._blob_path(blob_hash).is_file()

    def put(self, blob_hash: FileHash, data: bytes) -> bool:
        """Store ``data`` under ``blob_hash``. Returns False when it was already present."""
        target = self._blob_path(blob_hash)
        if target.is_file():
            return False
        atomic_write_bytes(target, data)
        logger.debug("Stored blob %s (%d bytes)", blob_hash.short, len(data))
        return True

    def get(self, blob_hash: FileHash) -> bytes:
        try:
            return self._blob_path(blob_hash).read_bytes()
        except FileNotFoundError as exc:
            raise BlobNotFoundError(blob_hash.value) from exc

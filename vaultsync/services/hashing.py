"""Content hashing."""

from __future__ import annotations

import hashlib
from typing import TYPE_CHECKING

from vaultsync.exceptions import VaultIOError
from vaultsync.schemas.hashes import FileHash

if TYPE_CHECKING:
    from pathlib import Path

_CHUNK_SIZE = 64 * 1024


def hash_file(file_path: Path) -> FileHash:
    """Compute the SHA-256 hash of a file in constant memory.

    Raises VaultIOError when the file cannot be read.
    """
    sha = hashlib.sha256()
    try:
        with open(file_path, "rb") as f:
            for chunk in iter(lambda: f.read(_CHUNK_SIZE), b""):
                sha.update(chunk)
    except OSError as exc:
        raise VaultIOError(str(file_path), exc.strerror or str(exc)) from exc
    return FileHash(value=sha.hexdigest())


def hash_bytes(data: bytes) -> FileHash:
    """Compute the SHA-256 hash of an in-memory body."""
    return FileHash(value=hashlib.sha256(data).hexdigest())

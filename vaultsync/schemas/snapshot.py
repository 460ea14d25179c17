"""Snapshot manifest: full-tree checkpoint used to bootstrap empty vaults."""

from __future__ import annotations

from pydantic import BaseModel, Field

from vaultsync.schemas.hashes import FileHash


class SnapshotFile(BaseModel):
    """One file of a snapshot, carried inline or by blob reference."""

    path: str
    hash: FileHash
    size: int = Field(ge=0)
    mtime: float
    inline_text: str | None = None
    blob_hash: FileHash | None = None


class SnapshotManifest(BaseModel):
    """Complete listing of a vault at one point in time."""

    id: str
    vault_id: str
    created_at: str
    files: list[SnapshotFile] = Field(default_factory=list)

"""Persisted sync state: per-file hashes, conflict decisions and cursors."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, Field

from vaultsync.schemas.hashes import HashField
from vaultsync.services.datetime_service import now_iso


class FileSyncState(BaseModel):
    """Three-hash record used to diff the local and remote replicas."""

    path: str
    last_synced_hash: HashField = None
    last_local_hash: HashField = None
    last_remote_hash: HashField = None
    updated_at: str = Field(default_factory=now_iso)

    @property
    def is_empty(self) -> bool:
        return (
            self.last_synced_hash is None
            and self.last_local_hash is None
            and self.last_remote_hash is None
        )


class SyncStateFile(BaseModel):
    """On-disk shape of ``state/file-sync-state.json``."""

    files: dict[str, FileSyncState] = Field(default_factory=dict)


class ConflictStrategy(StrEnum):
    """How a conflicted path should be resolved."""

    LOCAL = "local"
    REMOTE = "remote"
    MANUAL_MERGE = "manual_merge"


class ConflictDecision(BaseModel):
    """Chosen resolution for one path; survives across passes."""

    path: str
    strategy: ConflictStrategy
    decided_at: str = Field(default_factory=now_iso)


class DecisionsFile(BaseModel):
    """On-disk shape of ``conflicts/decisions.json``."""

    decisions: list[ConflictDecision] = Field(default_factory=list)


class SyncCursor(BaseModel):
    """Opaque position in a remote event stream."""

    value: str

"""Pydantic schemas for every record the engine persists or exchanges."""

from vaultsync.schemas.events import (
    BlobRef,
    ChangeEvent,
    ChangeType,
    EventContent,
    EventOrigin,
    FileChange,
    InlineText,
)
from vaultsync.schemas.hashes import FileHash
from vaultsync.schemas.snapshot import SnapshotFile, SnapshotManifest
from vaultsync.schemas.state import (
    ConflictDecision,
    ConflictStrategy,
    FileSyncState,
    SyncCursor,
)

__all__ = [
    "BlobRef",
    "ChangeEvent",
    "ChangeType",
    "ConflictDecision",
    "ConflictStrategy",
    "EventContent",
    "EventOrigin",
    "FileChange",
    "FileHash",
    "FileSyncState",
    "InlineText",
    "SnapshotFile",
    "SnapshotManifest",
    "SyncCursor",
]

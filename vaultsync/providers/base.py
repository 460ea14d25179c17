"""Remote sync provider protocol."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from vaultsync.schemas.events import ChangeEvent
    from vaultsync.schemas.hashes import FileHash
    from vaultsync.schemas.snapshot import SnapshotManifest


@dataclass
class PullResult:
    """Events after a cursor, and the cursor to save once they are applied."""

    events: list[ChangeEvent] = field(default_factory=list)
    next_cursor: str | None = None


@runtime_checkable
class SyncProvider(Protocol):
    """A remote replica of one vault.

    Implementations raise only ``ProviderError`` subclasses.
    """

    kind: str

    @property
    def namespace(self) -> str:
        """Stable key the local cursor is stored under."""
        ...

    def push_history_events(self, events: list[ChangeEvent]) -> int:
        """Append events, skipping ids already present. Returns the number appended."""
        ...

    def pull_history_events(self, cursor: str | None) -> PullResult:
        """Events strictly after ``cursor``; the full history when it is None."""
        ...

    def has_blob(self, blob_hash: FileHash) -> bool: ...

    def put_blob(self, blob_hash: FileHash, data: bytes) -> None: ...

    def get_blob(self, blob_hash: FileHash) -> bytes:
        """Raises RemoteNotFoundError when the blob does not exist."""
        ...

    def list_snapshots(self) -> list[str]:
        """Snapshot ids, oldest first."""
        ...

    def put_snapshot_manifest(self, manifest: SnapshotManifest) -> None: ...

    def get_snapshot_manifest(self, snapshot_id: str) -> SnapshotManifest:
        """Raises RemoteNotFoundError when the snapshot does not exist."""
        ...

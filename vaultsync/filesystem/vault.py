"""One vault on disk: its layout and every store kept in its control directory."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from vaultsync.config import DEFAULT_CONTROL_DIR
from vaultsync.filesystem.apply_lock import ApplyLock, ExpectedWrites
from vaultsync.filesystem.blob_store import BlobStore
from vaultsync.filesystem.cursor_store import CursorStore
from vaultsync.filesystem.decision_store import ConflictDecisionStore
from vaultsync.filesystem.event_applier import VaultEventApplier
from vaultsync.filesystem.history_repository import HistoryRepository
from vaultsync.filesystem.layout import VaultLayout
from vaultsync.filesystem.snapshot_store import SnapshotStore
from vaultsync.filesystem.sync_state_store import SyncStateStore


@dataclass
class Vault:
    """Stores bound to one vault root. Constructed per use, never shared globally."""

    layout: VaultLayout
    history: HistoryRepository
    states: SyncStateStore
    decisions: ConflictDecisionStore
    cursors: CursorStore
    blobs: BlobStore
    snapshots: SnapshotStore
    apply_lock: ApplyLock
    expected_writes: ExpectedWrites
    applier: VaultEventApplier

    @classmethod
    def open(
        cls,
        root: Path | str,
        control_dir_name: str = DEFAULT_CONTROL_DIR,
        cooldown_seconds: float = 1.5,
    ) -> Vault:
        layout = VaultLayout(Path(root), control_dir_name)
        blobs = BlobStore(layout.blobs_dir)
        apply_lock = ApplyLock(layout.state_dir, cooldown_seconds=cooldown_seconds)
        expected_writes = ExpectedWrites(layout.state_dir)
        return cls(
            layout=layout,
            history=HistoryRepository(layout.history_dir),
            states=SyncStateStore(layout.state_dir),
            decisions=ConflictDecisionStore(layout.conflicts_dir),
            cursors=CursorStore(layout.state_dir),
            blobs=blobs,
            snapshots=SnapshotStore(layout.snapshots_dir),
            apply_lock=apply_lock,
            expected_writes=expected_writes,
            applier=VaultEventApplier(layout, blobs, apply_lock, expected_writes),
        )

    @property
    def root(self) -> Path:
        return self.layout.root

    def ensure_structure(self) -> None:
        """Create the control directory tree (idempotent)."""
        for directory in (
            self.layout.history_dir,
            self.layout.state_dir,
            self.layout.conflicts_dir,
            self.layout.blobs_dir,
            self.layout.snapshots_dir,
        ):
            directory.mkdir(parents=True, exist_ok=True)

"""Local copies of published snapshot manifests."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from pydantic import ValidationError

from vaultsync.filesystem.layout import atomic_write_text
from vaultsync.schemas.snapshot import SnapshotManifest

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)


class SnapshotStore:
    """Stores manifests as ``snapshots/<id>.json``."""

    def __init__(self, snapshots_dir: Path) -> None:
        self.snapshots_dir = snapshots_dir

    def save(self, manifest: SnapshotManifest) -> Path:
        target = self.snapshots_dir / f"{manifest.id}.json"
        atomic_write_text(target, manifest.model_dump_json(indent=2) + "\n")
        return target

    def list_ids(self) -> list[str]:
        if not self.snapshots_dir.is_dir():
            return []
        return sorted(p.stem for p in self.snapshots_dir.glob("*.json") if p.is_file())

    def load(self, snapshot_id: str) -> SnapshotManifest | None:
        target = self.snapshots_dir / f"{snapshot_id}.json"
        try:
            return SnapshotManifest.model_validate_json(target.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except ValidationError as exc:
            logger.warning("Skipping corrupt snapshot %s: %s", target.name, exc.error_count())
            return None

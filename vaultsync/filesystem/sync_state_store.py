"""Per-file three-hash sync state, persisted as one JSON map."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from vaultsync.exceptions import LogParseError
from vaultsync.filesystem.layout import atomic_write_text
from vaultsync.schemas.state import FileSyncState, SyncStateFile
from vaultsync.services.datetime_service import now_iso

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

STATE_FILE_NAME = "file-sync-state.json"

_HASH_FIELDS = frozenset({"last_synced_hash", "last_local_hash", "last_remote_hash"})


def merge_state(current: FileSyncState | None, path: str, fields: dict[str, Any]) -> FileSyncState:
    """Apply ``fields`` to an entry.

    Fields not passed keep their previous values. Unless the baseline is
    passed explicitly, matching local and remote hashes move the baseline
    with them.
    """
    unknown = set(fields) - _HASH_FIELDS
    if unknown:
        raise ValueError(f"Unknown sync state fields: {sorted(unknown)}")
    base = current.model_dump() if current is not None else {}
    updated = FileSyncState.model_validate(
        {**base, **fields, "path": path, "updated_at": now_iso()}
    )
    if "last_synced_hash" not in fields and updated.last_local_hash == updated.last_remote_hash:
        updated = updated.model_copy(update={"last_synced_hash": updated.last_local_hash})
    return updated


class SyncStateStore:
    """Read-modify-write access to ``state/file-sync-state.json``.

    Not safe for concurrent writers; the sync pass is the only writer.
    Entries whose three hashes are all absent are removed.
    """

    def __init__(self, state_dir: Path) -> None:
        self.state_dir = state_dir

    @property
    def state_file(self) -> Path:
        return self.state_dir / STATE_FILE_NAME

    def load_all(self) -> dict[str, FileSyncState]:
        if not self.state_file.is_file():
            return {}
        raw = self.state_file.read_text(encoding="utf-8")
        if not raw.strip():
            return {}
        try:
            return dict(SyncStateFile.model_validate_json(raw).files)
        except ValidationError as exc:
            raise LogParseError(f"Corrupt sync state file {self.state_file}: {exc}") from exc

    def save_all(self, states: dict[str, FileSyncState]) -> None:
        kept = {path: state for path, state in sorted(states.items()) if not state.is_empty}
        payload = SyncStateFile(files=kept).model_dump_json(indent=2)
        atomic_write_text(self.state_file, payload + "\n")

    def get(self, path: str) -> FileSyncState | None:
        return self.load_all().get(path)

    def upsert_many(self, changes: dict[str, dict[str, Any]]) -> None:
        """Apply several upserts with a single write."""
        if not changes:
            return
        states = self.load_all()
        for path, fields in changes.items():
            updated = merge_state(states.get(path), path, fields)
            if updated.is_empty:
                states.pop(path, None)
            else:
                states[path] = updated
        self.save_all(states)

    def upsert(self, path: str, **fields: Any) -> FileSyncState | None:
        """Merge ``fields`` into the entry for ``path``.

        Returns the new entry, or None when all three hashes ended up absent
        and the entry was removed.
        """
        self.upsert_many({path: fields})
        return self.get(path)

    def converge(self, path: str, value: Any) -> FileSyncState | None:
        """Set all three hashes to ``value``; ``None`` removes the entry."""
        return self.upsert(
            path, last_synced_hash=value, last_local_hash=value, last_remote_hash=value
        )

    def remove(self, path: str) -> None:
        states = self.load_all()
        if states.pop(path, None) is not None:
            self.save_all(states)

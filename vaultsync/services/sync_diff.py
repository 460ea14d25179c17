"""Three-hash diff: classify each path from its baseline, local and remote hashes.

Pure functions; nothing here touches the filesystem or the network.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

    from vaultsync.schemas.hashes import FileHash
    from vaultsync.schemas.state import FileSyncState


class SyncStatus(StrEnum):
    SYNCED = "synced"
    LOCAL_ONLY = "local_only"
    REMOTE_ONLY = "remote_only"
    LOCAL_CHANGED = "local_changed"
    REMOTE_CHANGED = "remote_changed"
    CONFLICT = "conflict"


class ConflictType(StrEnum):
    MODIFIED_MODIFIED = "modified_modified"
    DELETED_MODIFIED = "deleted_modified"
    MODIFIED_DELETED = "modified_deleted"


@dataclass(frozen=True)
class Conflict:
    """Both replicas changed one path in incompatible ways."""

    path: str
    type: ConflictType
    local_hash: FileHash | None
    remote_hash: FileHash | None


@dataclass(frozen=True)
class FileComparison:
    path: str
    status: SyncStatus
    conflict: Conflict | None = None


@dataclass
class DiffResult:
    comparisons: list[FileComparison] = field(default_factory=list)
    conflicts: list[Conflict] = field(default_factory=list)

    def status_of(self, path: str) -> SyncStatus | None:
        for comparison in self.comparisons:
            if comparison.path == path:
                return comparison.status
        return None

    @property
    def statuses(self) -> dict[str, SyncStatus]:
        return {c.path: c.status for c in self.comparisons}


def _classify(
    base: FileHash | None, local: FileHash | None, remote: FileHash | None
) -> tuple[SyncStatus, ConflictType | None]:
    # Identical sides: unchanged, convergent edit or double delete.
    if local == remote:
        return SyncStatus.SYNCED, None

    if base is None:
        if local is None:
            return SyncStatus.REMOTE_ONLY, None
        if remote is None:
            return SyncStatus.LOCAL_ONLY, None
        return SyncStatus.CONFLICT, ConflictType.MODIFIED_MODIFIED

    local_changed = local != base
    remote_changed = remote != base
    if local_changed and not remote_changed:
        return SyncStatus.LOCAL_CHANGED, None
    if remote_changed and not local_changed:
        return SyncStatus.REMOTE_CHANGED, None

    if local is None:
        return SyncStatus.CONFLICT, ConflictType.DELETED_MODIFIED
    if remote is None:
        return SyncStatus.CONFLICT, ConflictType.MODIFIED_DELETED
    return SyncStatus.CONFLICT, ConflictType.MODIFIED_MODIFIED


def compare_file_state(state: FileSyncState) -> FileComparison:
    """Classify one path. Deterministic and side-effect free."""
    status, conflict_type = _classify(
        state.last_synced_hash, state.last_local_hash, state.last_remote_hash
    )
    conflict = None
    if conflict_type is not None:
        conflict = Conflict(
            path=state.path,
            type=conflict_type,
            local_hash=state.last_local_hash,
            remote_hash=state.last_remote_hash,
        )
    return FileComparison(path=state.path, status=status, conflict=conflict)


def compare_all_states(states: Iterable[FileSyncState]) -> DiffResult:
    """Classify every path; comparisons and conflicts are sorted by path."""
    result = DiffResult()
    for state in sorted(states, key=lambda s: s.path):
        comparison = compare_file_state(state)
        result.comparisons.append(comparison)
        if comparison.conflict is not None:
            result.conflicts.append(comparison.conflict)
    return result

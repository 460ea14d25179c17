"""Sync service: one bidirectional pass between a vault and its remote.

A pass runs, in order: bootstrap, local observation, remote pull, conflict
resolution, apply, cursor commit, push, snapshot publish. Every step is
idempotent, so a pass interrupted anywhere is safely repeated.
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from vaultsync.config import DEFAULT_CONTROL_DIR
from vaultsync.exceptions import BlobNotFoundError, ProviderError, RemoteNotFoundError
from vaultsync.filesystem.sync_state_store import merge_state
from vaultsync.filesystem.vault import Vault
from vaultsync.schemas.events import BlobRef, EventOrigin
from vaultsync.schemas.state import ConflictStrategy
from vaultsync.services.conflict_resolution import ConflictResolver
from vaultsync.services.events import event_hash, event_signature, latest_by_path, remote_record
from vaultsync.services.hashing import hash_bytes
from vaultsync.services.retry import RetryPolicy, with_retry
from vaultsync.services.snapshot_service import SnapshotService
from vaultsync.services.sync_diff import (
    DiffResult,
    SyncStatus,
    compare_all_states,
    compare_file_state,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from vaultsync.config import Settings
    from vaultsync.providers.base import SyncProvider
    from vaultsync.schemas.events import ChangeEvent
    from vaultsync.schemas.snapshot import SnapshotManifest

logger = logging.getLogger(__name__)

_APPLICABLE = frozenset({SyncStatus.REMOTE_CHANGED, SyncStatus.REMOTE_ONLY})


@dataclass
class SyncRunSummary:
    """Outcome of one pass."""

    pulled: int = 0
    applied: int = 0
    pushed: int = 0
    resolved: int = 0
    conflicts_before: int = 0
    conflicts_after: int = 0
    cursor_before: str | None = None
    cursor_after: str | None = None
    blocked_paths: list[str] = field(default_factory=list)
    bootstrapped_files: list[str] = field(default_factory=list)
    snapshot_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class SyncService:
    """Runs sync passes for vaults against one provider.

    Stores are opened per call from the vault root; nothing is cached
    between passes. Callers must not run two passes on one vault at once.
    """

    def __init__(
        self,
        provider: SyncProvider,
        *,
        vault_id: str = "default",
        control_dir_name: str = DEFAULT_CONTROL_DIR,
        inline_text_max_bytes: int = 64 * 1024,
        apply_lock_cooldown_seconds: float = 1.5,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.provider = provider
        self.vault_id = vault_id
        self.control_dir_name = control_dir_name
        self.inline_text_max_bytes = inline_text_max_bytes
        self.apply_lock_cooldown_seconds = apply_lock_cooldown_seconds
        self.retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings: Settings, provider: SyncProvider) -> SyncService:
        return cls(
            provider,
            vault_id=settings.vault_id,
            control_dir_name=settings.control_dir_name,
            inline_text_max_bytes=settings.inline_text_max_bytes,
            apply_lock_cooldown_seconds=settings.apply_lock_cooldown_seconds,
            retry_policy=RetryPolicy.from_settings(settings),
        )

    def open_vault(self, vault_root: Path | str) -> Vault:
        return Vault.open(
            Path(vault_root),
            control_dir_name=self.control_dir_name,
            cooldown_seconds=self.apply_lock_cooldown_seconds,
        )

    def _remote(self, description: str, operation: Callable[[], Any]) -> Any:
        return with_retry(operation, self.retry_policy, self._sleep, description)

    def _snapshots(self, vault: Vault) -> SnapshotService:
        return SnapshotService(
            vault,
            self.provider,
            self.vault_id,
            inline_text_max_bytes=self.inline_text_max_bytes,
            retry_policy=self.retry_policy,
            sleep=self._sleep,
        )

    def _resolver(self, vault: Vault) -> ConflictResolver:
        return ConflictResolver(
            vault,
            self.provider,
            inline_text_max_bytes=self.inline_text_max_bytes,
            retry_policy=self.retry_policy,
            sleep=self._sleep,
        )

    def status(self, vault_root: Path | str) -> DiffResult:
        """Read model: current comparisons and conflicts, without syncing.

        Local edits logged since the last pass are included; nothing is written.
        """
        vault = self.open_vault(vault_root)
        states = vault.states.load_all()
        for path, event in latest_by_path(vault.history.replay()).items():
            states[path] = merge_state(
                states.get(path), path, {"last_local_hash": event_hash(event)}
            )
        return compare_all_states(state for state in states.values() if not state.is_empty)

    def publish_snapshot(self, vault_root: Path | str) -> SnapshotManifest:
        vault = self.open_vault(vault_root)
        vault.ensure_structure()
        return self._snapshots(vault).publish()

    def sync_once(
        self,
        vault_root: Path | str,
        default_strategy: ConflictStrategy | str = ConflictStrategy.LOCAL,
    ) -> SyncRunSummary:
        """Run one pass. Provider errors that survive retries abort the pass."""
        default_strategy = ConflictStrategy(default_strategy)
        vault = self.open_vault(vault_root)
        vault.ensure_structure()
        summary = SyncRunSummary()

        summary.bootstrapped_files = self._snapshots(vault).bootstrap()

        local_ids = self._observe_local(vault)

        namespace = self.provider.namespace
        summary.cursor_before = vault.cursors.load(namespace)
        cursor_before = summary.cursor_before
        pull = self._remote(
            "pull_history_events", lambda: self.provider.pull_history_events(cursor_before)
        )
        fresh = [event for event in pull.events if event.id not in local_ids]
        summary.pulled = len(fresh)
        latest_remote = latest_by_path(fresh)
        vault.states.upsert_many(
            {path: {"last_remote_hash": event_hash(event)} for path, event in latest_remote.items()}
        )

        remote_history = self._full_history_loader()
        resolved_paths = self._resolve_conflicts(
            vault, default_strategy, summary, remote_history
        )

        summary.applied = self._apply_remote(
            vault, latest_remote, resolved_paths, local_ids, remote_history
        )

        summary.cursor_after = pull.next_cursor or summary.cursor_before
        if summary.cursor_after is not None and summary.cursor_after != summary.cursor_before:
            vault.cursors.save(namespace, summary.cursor_after)

        summary.pushed += self._push_local(vault, summary)

        if summary.pushed > 0:
            try:
                summary.snapshot_id = self._snapshots(vault).publish().id
            except (ProviderError, BlobNotFoundError) as exc:
                logger.warning("Snapshot publish failed; will retry after the next push: %s", exc)

        remaining = compare_all_states(vault.states.load_all().values())
        summary.conflicts_after = len(remaining.conflicts)
        logger.info(
            "Sync pass for %s: pulled=%d applied=%d pushed=%d resolved=%d conflicts=%d->%d",
            vault.root,
            summary.pulled,
            summary.applied,
            summary.pushed,
            summary.resolved,
            summary.conflicts_before,
            summary.conflicts_after,
        )
        return summary

    def _observe_local(self, vault: Vault) -> set[str]:
        """Refresh ``last_local_hash`` from the log; returns every logged id."""
        events = vault.history.replay()
        vault.states.upsert_many(
            {
                path: {"last_local_hash": event_hash(event)}
                for path, event in latest_by_path(events).items()
            }
        )
        return {event.id for event in events}

    def _full_history_loader(self) -> Callable[[], list[ChangeEvent]]:
        """Fetch the whole remote log on first call and reuse it afterwards."""
        full_history: list[ChangeEvent] | None = None

        def remote_history() -> list[ChangeEvent]:
            nonlocal full_history
            if full_history is None:
                full_history = self._remote(
                    "pull_history_events", lambda: self.provider.pull_history_events(None)
                ).events
            return full_history

        return remote_history

    def _resolve_conflicts(
        self,
        vault: Vault,
        default_strategy: ConflictStrategy,
        summary: SyncRunSummary,
        remote_history: Callable[[], list[ChangeEvent]],
    ) -> set[str]:
        diff = compare_all_states(vault.states.load_all().values())
        summary.conflicts_before = len(diff.conflicts)
        if not diff.conflicts:
            return set()

        resolver = self._resolver(vault)
        resolved: set[str] = set()
        for conflict in diff.conflicts:
            decision = vault.decisions.get(conflict.path)
            if decision is None:
                decision = vault.decisions.set(conflict.path, default_strategy)
            outcome = resolver.resolve(conflict, decision.strategy, remote_history)
            if outcome.resolved:
                resolved.add(conflict.path)
                summary.resolved += 1
                summary.pushed += outcome.pushed
        return resolved

    def _materialize_blob(self, vault: Vault, event: ChangeEvent) -> bool:
        """Cache the blob an event references; False when it is unobtainable."""
        content = event.content
        if not isinstance(content, BlobRef) or vault.blobs.has(content.hash):
            return True
        blob_hash = content.hash
        try:
            data = self._remote("get_blob", lambda: self.provider.get_blob(blob_hash))
        except RemoteNotFoundError:
            logger.warning("Blob %s for %s is missing remotely", blob_hash.short, event.path)
            return False
        if hash_bytes(data) != blob_hash:
            logger.warning("Blob %s for %s failed its integrity check", blob_hash.short, event.path)
            return False
        vault.blobs.put(blob_hash, data)
        return True

    def _apply_remote(
        self,
        vault: Vault,
        latest_remote: dict[str, ChangeEvent],
        resolved_paths: set[str],
        local_ids: set[str],
        remote_history: Callable[[], list[ChangeEvent]],
    ) -> int:
        """Apply every path the remote side changed, not only this pull's batch.

        Paths whose apply failed on an earlier pass keep their remote status
        after the cursor has moved on; their content comes from the full log.
        """
        states = vault.states.load_all()
        pending = {
            state.path
            for state in states.values()
            if state.path not in resolved_paths
            and compare_file_state(state).status in _APPLICABLE
        }
        selected = {path: event for path, event in latest_remote.items() if path in pending}
        missed = pending - selected.keys()
        if missed:
            for path, event in latest_by_path(remote_history()).items():
                if path in missed and event_hash(event) == states[path].last_remote_hash:
                    selected[path] = event
            for path in sorted(missed - selected.keys()):
                logger.warning("No remote event matches the remote state of %s", path)
        candidates = [selected[path] for path in sorted(selected)]
        ready = [event for event in candidates if self._materialize_blob(vault, event)]

        applied = vault.applier.apply_events(ready)
        for change in applied:
            record = remote_record(change.event, change.written_hash, local_ids)
            vault.history.append(record)
            local_ids.add(record.id)
            vault.states.converge(change.event.path, change.written_hash)
        return len(applied)

    def _push_local(self, vault: Vault, summary: SyncRunSummary) -> int:
        diff = compare_all_states(vault.states.load_all().values())
        blocked = {conflict.path for conflict in diff.conflicts}
        summary.blocked_paths = sorted(blocked)

        remote_events = self._remote(
            "pull_history_events", lambda: self.provider.pull_history_events(None)
        ).events
        remote_ids = {event.id for event in remote_events}
        seen = {event_signature(event) for event in remote_events}

        local_events = vault.history.replay()
        last_remote_record: dict[str, int] = {}
        for index, event in enumerate(local_events):
            if event.origin == EventOrigin.REMOTE:
                last_remote_record[event.path] = index

        candidates: list[ChangeEvent] = []
        for index, event in enumerate(local_events):
            if event.origin != EventOrigin.LOCAL or event.id in remote_ids:
                continue
            if event.path in blocked:
                continue
            # Superseded by remote content applied after it.
            if last_remote_record.get(event.path, -1) > index:
                continue
            signature = event_signature(event)
            if signature in seen:
                continue
            if not self._upload_blob(vault, event):
                continue
            seen.add(signature)
            candidates.append(event)

        if not candidates:
            return 0
        pushed = self._remote(
            "push_history_events", lambda: self.provider.push_history_events(candidates)
        )
        # The remote now holds the newest logged change of each pushed path.
        on_remote = remote_ids | {event.id for event in candidates}
        latest_local = latest_by_path(local_events)
        vault.states.upsert_many(
            {
                path: {"last_remote_hash": event_hash(latest_local[path])}
                for path in {event.path for event in candidates}
                if latest_local[path].id in on_remote
            }
        )
        return pushed

    def _upload_blob(self, vault: Vault, event: ChangeEvent) -> bool:
        content = event.content
        if not isinstance(content, BlobRef):
            return True
        blob_hash = content.hash
        if self._remote("has_blob", lambda: self.provider.has_blob(blob_hash)):
            return True
        try:
            data = vault.blobs.get(blob_hash)
        except BlobNotFoundError:
            logger.warning(
                "Not pushing %s: blob %s is missing from the local store",
                event.path,
                blob_hash.short,
            )
            return False
        self._remote("put_blob", lambda: self.provider.put_blob(blob_hash, data))
        return True

"""Turns filesystem notifications into local change events."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from vaultsync.exceptions import VaultIOError
from vaultsync.filesystem.watcher import FileEventKind
from vaultsync.schemas.events import ChangeType
from vaultsync.services.events import deletion_event, event_for_file, event_hash, latest_by_path
from vaultsync.services.hashing import hash_file

if TYPE_CHECKING:
    from vaultsync.filesystem.vault import Vault
    from vaultsync.filesystem.watcher import FileChangeEvent, FileWatcher
    from vaultsync.schemas.events import ChangeEvent

logger = logging.getLogger(__name__)


class ChangeRecorder:
    """Appends a local event for every real edit in the vault.

    Reserved and temporary paths are ignored. Writes made by the engine are
    recognized through the expected-write registry, and anything observed
    while the apply lock is active is dropped.
    """

    def __init__(self, vault: Vault, inline_text_max_bytes: int = 64 * 1024) -> None:
        self.vault = vault
        self.inline_text_max_bytes = inline_text_max_bytes

    def attach(self, watcher: FileWatcher) -> None:
        watcher.on_event(self.handle)

    def _latest(self, rel_path: str) -> ChangeEvent | None:
        return latest_by_path(
            event for event in self.vault.history.replay() if event.path == rel_path
        ).get(rel_path)

    def _record(self, event: ChangeEvent) -> ChangeEvent:
        self.vault.history.append(event)
        logger.debug("Recorded %s %s", event.change.change_type, event.path)
        return event

    def handle(self, notification: FileChangeEvent) -> ChangeEvent | None:
        """Process one watcher notification; returns the event recorded, if any."""
        layout = self.vault.layout
        try:
            rel = layout.relative(notification.path)
        except ValueError:
            return None
        if layout.is_ignored(rel):
            return None
        full = layout.root / rel

        if notification.kind == FileEventKind.DELETED or not full.is_file():
            if self.vault.expected_writes.consume(rel, None) or self.vault.apply_lock.is_active():
                return None
            latest = self._latest(rel)
            if latest is None or latest.is_deletion:
                return None
            return self._record(deletion_event(rel))

        try:
            current = hash_file(full)
        except VaultIOError as exc:
            logger.warning("Cannot read %s: %s", rel, exc)
            return None
        if self.vault.expected_writes.consume(rel, current) or self.vault.apply_lock.is_active():
            return None
        latest = self._latest(rel)
        if latest is not None and event_hash(latest) == current:
            return None
        return self._record(self._capture(rel, latest))

    def _capture(self, rel: str, latest: ChangeEvent | None) -> ChangeEvent:
        change_type = (
            ChangeType.CREATED if latest is None or latest.is_deletion else ChangeType.MODIFIED
        )
        return event_for_file(
            self.vault.layout.root / rel,
            rel,
            change_type,
            self.vault.blobs,
            self.inline_text_max_bytes,
        )

    def rescan(self) -> list[ChangeEvent]:
        """Record events for every difference between the working tree and the log."""
        if self.vault.apply_lock.lock_file.exists():
            logger.info("Apply in progress; skipping rescan")
            return []
        latest = latest_by_path(self.vault.history.replay())
        pending = self.vault.expected_writes.pending()
        recorded: list[ChangeEvent] = []
        present: set[str] = set()

        for rel, full in self.vault.layout.iter_files():
            present.add(rel)
            try:
                current = hash_file(full)
            except VaultIOError as exc:
                logger.warning("Cannot read %s: %s", rel, exc)
                continue
            if rel in pending and pending[rel] == current:
                self.vault.expected_writes.consume(rel, current)
            previous = latest.get(rel)
            if previous is not None and event_hash(previous) == current:
                continue
            try:
                recorded.append(self._record(self._capture(rel, previous)))
            except VaultIOError as exc:
                logger.warning("Cannot record %s: %s", rel, exc)

        for rel, previous in sorted(latest.items()):
            if rel in present or previous.is_deletion or self.vault.layout.is_ignored(rel):
                continue
            recorded.append(self._record(deletion_event(rel)))

        if recorded:
            logger.info("Rescan recorded %d change(s)", len(recorded))
        return recorded

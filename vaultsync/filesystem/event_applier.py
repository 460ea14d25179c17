"""Writes remote-derived content into the vault working tree."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from vaultsync.exceptions import BlobNotFoundError, VaultIOError
from vaultsync.filesystem.layout import atomic_write_bytes
from vaultsync.schemas.events import BlobRef, InlineText
from vaultsync.services.hashing import hash_bytes, hash_file

if TYPE_CHECKING:
    from vaultsync.filesystem.apply_lock import ApplyLock, ExpectedWrites
    from vaultsync.filesystem.blob_store import BlobStore
    from vaultsync.filesystem.layout import VaultLayout
    from vaultsync.schemas.events import ChangeEvent
    from vaultsync.schemas.hashes import FileHash

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AppliedChange:
    """A remote event that reached the working tree.

    ``written_hash`` is the hash of the bytes actually on disk after the
    write, or None for a deletion.
    """

    event: ChangeEvent
    written_hash: FileHash | None


class VaultEventApplier:
    """Materializes change events as file writes and deletions.

    ``write`` and ``delete`` expect the caller to hold the apply lock;
    ``apply_events`` takes it itself.
    """

    def __init__(
        self,
        layout: VaultLayout,
        blob_store: BlobStore,
        apply_lock: ApplyLock,
        expected_writes: ExpectedWrites,
    ) -> None:
        self.layout = layout
        self.blob_store = blob_store
        self.apply_lock = apply_lock
        self.expected_writes = expected_writes

    def event_body(self, event: ChangeEvent) -> bytes | None:
        """Bytes an event carries, or None when it carries none.

        Raises BlobNotFoundError when the referenced blob is not cached.
        """
        content = event.content
        if isinstance(content, InlineText):
            return content.text.encode("utf-8")
        if isinstance(content, BlobRef):
            return self.blob_store.get(content.hash)
        return None

    def write(self, rel_path: str, data: bytes) -> FileHash:
        """Atomically write ``data`` and return the hash of what landed on disk."""
        target = self.layout.resolve(rel_path)
        self.expected_writes.expect(rel_path, hash_bytes(data))
        try:
            atomic_write_bytes(target, data)
        except OSError as exc:
            self.expected_writes.discard(rel_path)
            raise VaultIOError(rel_path, exc.strerror or str(exc)) from exc
        written = hash_file(target)
        logger.debug("Wrote %s (%s)", rel_path, written.short)
        return written

    def delete(self, rel_path: str) -> None:
        target = self.layout.resolve(rel_path)
        if not target.exists():
            return
        self.expected_writes.expect(rel_path, None)
        try:
            target.unlink()
        except OSError as exc:
            self.expected_writes.discard(rel_path)
            raise VaultIOError(rel_path, exc.strerror or str(exc)) from exc
        logger.debug("Deleted %s", rel_path)

    def apply_event(self, event: ChangeEvent) -> AppliedChange | None:
        """Apply one event; None when it has no content to write."""
        if event.is_deletion:
            self.delete(event.path)
            return AppliedChange(event=event, written_hash=None)
        body = self.event_body(event)
        if body is None:
            logger.warning("Event %s for %s carries no content; not applied", event.id, event.path)
            return None
        return AppliedChange(event=event, written_hash=self.write(event.path, body))

    def apply_events(self, events: list[ChangeEvent]) -> list[AppliedChange]:
        """Apply events under the apply lock, skipping the ones that fail."""
        applied: list[AppliedChange] = []
        if not events:
            return applied
        with self.apply_lock.held():
            for event in events:
                try:
                    result = self.apply_event(event)
                except (VaultIOError, BlobNotFoundError, ValueError) as exc:
                    logger.warning("Skipping remote change to %s: %s", event.path, exc)
                    continue
                if result is not None:
                    applied.append(result)
        return applied

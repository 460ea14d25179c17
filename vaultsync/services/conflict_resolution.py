"""Conflict resolvers: Keep-Local, Keep-Remote and caller-supplied merges."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from vaultsync.exceptions import BlobNotFoundError, RemoteNotFoundError, VaultIOError
from vaultsync.schemas.events import BlobRef, ChangeType
from vaultsync.schemas.state import ConflictStrategy
from vaultsync.services.datetime_service import sort_key
from vaultsync.services.events import (
    deletion_event,
    event_for_file,
    event_hash,
    remote_record,
)
from vaultsync.services.hashing import hash_bytes
from vaultsync.services.retry import RetryPolicy, with_retry
from vaultsync.services.sync_diff import ConflictType

if TYPE_CHECKING:
    from collections.abc import Callable

    from vaultsync.filesystem.vault import Vault
    from vaultsync.providers.base import SyncProvider
    from vaultsync.schemas.events import ChangeEvent
    from vaultsync.schemas.state import FileSyncState
    from vaultsync.services.sync_diff import Conflict

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolutionOutcome:
    path: str
    strategy: ConflictStrategy
    resolved: bool
    pushed: int = 0
    detail: str = ""


class ConflictResolver:
    """Resolves one conflict at a time against a vault and a provider.

    Content that cannot be obtained leaves the conflict unresolved; it is
    retried on the next pass.
    """

    def __init__(
        self,
        vault: Vault,
        provider: SyncProvider,
        inline_text_max_bytes: int = 64 * 1024,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.vault = vault
        self.provider = provider
        self.inline_text_max_bytes = inline_text_max_bytes
        self.retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep

    def resolve(
        self,
        conflict: Conflict,
        strategy: ConflictStrategy,
        remote_history: Callable[[], list[ChangeEvent]],
    ) -> ResolutionOutcome:
        if strategy == ConflictStrategy.LOCAL:
            outcome = self.keep_local(conflict)
        elif strategy == ConflictStrategy.REMOTE:
            outcome = self.keep_remote(conflict, remote_history())
        else:
            outcome = ResolutionOutcome(
                conflict.path, strategy, resolved=False, detail="awaiting merged content"
            )
        if outcome.resolved:
            logger.info("Resolved %s (%s) with %s", conflict.path, conflict.type, strategy)
        else:
            logger.warning(
                "Conflict on %s (%s) left unresolved: %s",
                conflict.path,
                conflict.type,
                outcome.detail,
            )
        return outcome

    def _push(self, event: ChangeEvent) -> int:
        content = event.content
        if isinstance(content, BlobRef):
            blob_hash = content.hash
            if not with_retry(
                lambda: self.provider.has_blob(blob_hash),
                self.retry_policy,
                self._sleep,
                "has_blob",
            ):
                data = self.vault.blobs.get(blob_hash)
                with_retry(
                    lambda: self.provider.put_blob(blob_hash, data),
                    self.retry_policy,
                    self._sleep,
                    "put_blob",
                )
        return with_retry(
            lambda: self.provider.push_history_events([event]),
            self.retry_policy,
            self._sleep,
            "push_history_events",
        )

    def keep_local(self, conflict: Conflict) -> ResolutionOutcome:
        """Make the local side win and push it."""
        path = conflict.path
        if conflict.type == ConflictType.DELETED_MODIFIED:
            event = deletion_event(path)
            self.vault.history.append(event)
            pushed = self._push(event)
            self.vault.states.converge(path, None)
            return ResolutionOutcome(path, ConflictStrategy.LOCAL, resolved=True, pushed=pushed)

        change_type = (
            ChangeType.CREATED
            if conflict.type == ConflictType.MODIFIED_DELETED
            else ChangeType.MODIFIED
        )
        try:
            full = self.vault.layout.resolve(path)
            event = event_for_file(
                full, path, change_type, self.vault.blobs, self.inline_text_max_bytes
            )
        except (VaultIOError, ValueError) as exc:
            return ResolutionOutcome(path, ConflictStrategy.LOCAL, resolved=False, detail=str(exc))
        self.vault.history.append(event)
        try:
            pushed = self._push(event)
        except BlobNotFoundError as exc:
            return ResolutionOutcome(path, ConflictStrategy.LOCAL, resolved=False, detail=str(exc))
        self.vault.states.converge(path, event_hash(event))
        return ResolutionOutcome(path, ConflictStrategy.LOCAL, resolved=True, pushed=pushed)

    def _remote_body(self, event: ChangeEvent) -> bytes | None:
        """Bytes a remote event carries, fetching and caching its blob if needed."""
        content = event.content
        if content is None:
            return None
        if not isinstance(content, BlobRef):
            return content.text.encode("utf-8")
        blob_hash = content.hash
        if self.vault.blobs.has(blob_hash):
            return self.vault.blobs.get(blob_hash)
        try:
            data = with_retry(
                lambda: self.provider.get_blob(blob_hash),
                self.retry_policy,
                self._sleep,
                "get_blob",
            )
        except RemoteNotFoundError:
            return None
        if hash_bytes(data) != blob_hash:
            logger.warning("Blob %s failed its integrity check", blob_hash.short)
            return None
        self.vault.blobs.put(blob_hash, data)
        return data

    def keep_remote(
        self, conflict: Conflict, remote_events: list[ChangeEvent]
    ) -> ResolutionOutcome:
        """Make the remote side win: write its content, or its deletion, locally."""
        path = conflict.path
        # Newest first; later log position wins ties.
        indexed = [(i, event) for i, event in enumerate(remote_events) if event.path == path]
        history = [
            event
            for _, event in sorted(
                indexed, key=lambda item: (sort_key(item[1].occurred_at), item[0]), reverse=True
            )
        ]
        if not history:
            return ResolutionOutcome(
                path, ConflictStrategy.REMOTE, resolved=False, detail="no remote event for path"
            )
        known_ids = self.vault.history.known_ids()

        if conflict.type == ConflictType.MODIFIED_DELETED or history[0].is_deletion:
            try:
                with self.vault.apply_lock.held():
                    self.vault.applier.delete(path)
            except (VaultIOError, ValueError) as exc:
                return ResolutionOutcome(
                    path, ConflictStrategy.REMOTE, resolved=False, detail=str(exc)
                )
            self.vault.history.append(remote_record(history[0], None, known_ids))
            self.vault.states.converge(path, None)
            return ResolutionOutcome(path, ConflictStrategy.REMOTE, resolved=True)

        # Only content whose hash matches the newest remote event.
        current = event_hash(history[0])
        for event in history:
            if event_hash(event) != current:
                continue
            body = self._remote_body(event)
            if body is None:
                continue
            try:
                with self.vault.apply_lock.held():
                    written = self.vault.applier.write(path, body)
            except (VaultIOError, ValueError) as exc:
                return ResolutionOutcome(
                    path, ConflictStrategy.REMOTE, resolved=False, detail=str(exc)
                )
            self.vault.history.append(remote_record(event, written, known_ids))
            self.vault.states.converge(path, written)
            return ResolutionOutcome(path, ConflictStrategy.REMOTE, resolved=True)

        return ResolutionOutcome(
            path, ConflictStrategy.REMOTE, resolved=False, detail="no retrievable remote content"
        )


def apply_manual_merge(
    vault: Vault, path: str, content: str | bytes, inline_text_max_bytes: int = 64 * 1024
) -> FileSyncState | None:
    """Write caller-merged content as a local edit rebased onto the remote side.

    The baseline becomes the remote hash, so the next pass sees a plain
    local change and pushes it.
    """
    data = content.encode("utf-8") if isinstance(content, str) else content
    full = vault.layout.resolve(path)
    vault.applier.write(path, data)
    event = event_for_file(full, path, ChangeType.MODIFIED, vault.blobs, inline_text_max_bytes)
    vault.history.append(event)
    state = vault.states.get(path)
    remote_hash = state.last_remote_hash if state is not None else None
    logger.info("Recorded merged content for %s", path)
    return vault.states.upsert(
        path, last_synced_hash=remote_hash, last_local_hash=event_hash(event)
    )

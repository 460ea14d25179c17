"""Content lookup for the conflict diff viewer: local, base and remote bodies."""

from __future__ import annotations

import logging
import time
from enum import StrEnum
from typing import TYPE_CHECKING

from vaultsync.exceptions import RemoteNotFoundError
from vaultsync.schemas.events import BlobRef, InlineText
from vaultsync.services.events import event_hash
from vaultsync.services.retry import RetryPolicy, with_retry

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from vaultsync.filesystem.vault import Vault
    from vaultsync.providers.base import SyncProvider
    from vaultsync.schemas.events import ChangeEvent
    from vaultsync.schemas.hashes import FileHash

logger = logging.getLogger(__name__)


class ContentSide(StrEnum):
    LOCAL = "local"
    BASE = "base"
    REMOTE = "remote"


class VaultContentReader:
    """Reads the three versions of a path. Every reader returns None when unavailable."""

    def __init__(
        self,
        vault: Vault,
        provider: SyncProvider | None = None,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.vault = vault
        self.provider = provider
        self.retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep

    def read(self, path: str, side: ContentSide | str) -> bytes | None:
        side = ContentSide(side)
        if side == ContentSide.LOCAL:
            return self.read_local(path)
        if side == ContentSide.BASE:
            return self.read_base(path)
        return self.read_remote(path)

    def read_local(self, path: str) -> bytes | None:
        full = self.vault.layout.resolve(path)
        if not full.is_file():
            return None
        return full.read_bytes()

    def read_base(self, path: str) -> bytes | None:
        state = self.vault.states.get(path)
        if state is None or state.last_synced_hash is None:
            return None
        return self._from_events(path, state.last_synced_hash, self.vault.history.replay())

    def read_remote(self, path: str) -> bytes | None:
        state = self.vault.states.get(path)
        if state is None or state.last_remote_hash is None:
            return None
        wanted = state.last_remote_hash
        body = self._from_events(path, wanted, self.vault.history.replay())
        if body is not None or self.provider is None:
            return body
        provider = self.provider
        remote = with_retry(
            lambda: provider.pull_history_events(None),
            self.retry_policy,
            self._sleep,
            "pull_history_events",
        )
        return self._from_events(path, wanted, remote.events)

    def _from_events(
        self, path: str, wanted: FileHash, events: Iterable[ChangeEvent]
    ) -> bytes | None:
        if self.vault.blobs.has(wanted):
            return self.vault.blobs.get(wanted)
        for event in reversed(list(events)):
            if event.path != path or event_hash(event) != wanted:
                continue
            if isinstance(event.content, InlineText):
                return event.content.text.encode("utf-8")
            if isinstance(event.content, BlobRef):
                body = self._blob(event.content.hash)
                if body is not None:
                    return body
        return None

    def _blob(self, blob_hash: FileHash) -> bytes | None:
        if self.vault.blobs.has(blob_hash):
            return self.vault.blobs.get(blob_hash)
        if self.provider is None:
            return None
        provider = self.provider
        try:
            return with_retry(
                lambda: provider.get_blob(blob_hash), self.retry_policy, self._sleep, "get_blob"
            )
        except RemoteNotFoundError:
            logger.warning("Blob %s is unavailable locally and remotely", blob_hash.short)
            return None

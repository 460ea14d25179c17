"""Snapshot manifests: publish full-tree checkpoints and bootstrap empty vaults."""

from __future__ import annotations

import logging
import time
import uuid
from typing import TYPE_CHECKING

from vaultsync.exceptions import RemoteNotFoundError, VaultIOError
from vaultsync.schemas.events import BlobRef, ChangeType, InlineText
from vaultsync.schemas.snapshot import SnapshotFile, SnapshotManifest
from vaultsync.services.datetime_service import format_iso, now_utc
from vaultsync.services.events import capture_file_content, create_change_event, remote_record
from vaultsync.services.hashing import hash_bytes
from vaultsync.services.retry import RetryPolicy, with_retry

if TYPE_CHECKING:
    from collections.abc import Callable

    from vaultsync.filesystem.vault import Vault
    from vaultsync.providers.base import SyncProvider

logger = logging.getLogger(__name__)


def new_snapshot_id() -> str:
    """Time-ordered id, so the lexicographically last id is the newest."""
    return f"{now_utc():%Y%m%dT%H%M%S%fZ}-{uuid.uuid4().hex[:8]}"


class SnapshotService:
    def __init__(
        self,
        vault: Vault,
        provider: SyncProvider,
        vault_id: str,
        inline_text_max_bytes: int = 64 * 1024,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.vault = vault
        self.provider = provider
        self.vault_id = vault_id
        self.inline_text_max_bytes = inline_text_max_bytes
        self.retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep

    def create_manifest(self) -> SnapshotManifest:
        """List every syncable file; unreadable files are left out."""
        files: list[SnapshotFile] = []
        for rel, full in self.vault.layout.iter_files():
            try:
                captured = capture_file_content(
                    full, rel, self.vault.blobs, self.inline_text_max_bytes
                )
            except VaultIOError as exc:
                logger.warning("Leaving %s out of the snapshot: %s", rel, exc)
                continue
            content = captured.content
            files.append(
                SnapshotFile(
                    path=rel,
                    hash=captured.hash,
                    size=captured.size,
                    mtime=captured.mtime,
                    inline_text=content.text if isinstance(content, InlineText) else None,
                    blob_hash=content.hash if isinstance(content, BlobRef) else None,
                )
            )
        return SnapshotManifest(
            id=new_snapshot_id(),
            vault_id=self.vault_id,
            created_at=format_iso(now_utc()),
            files=files,
        )

    def publish(self) -> SnapshotManifest:
        """Upload missing blobs, then store the manifest locally and remotely."""
        manifest = self.create_manifest()
        for entry in manifest.files:
            if entry.blob_hash is None:
                continue
            blob_hash = entry.blob_hash
            if with_retry(
                lambda: self.provider.has_blob(blob_hash),
                self.retry_policy,
                self._sleep,
                "has_blob",
            ):
                continue
            data = self.vault.blobs.get(blob_hash)
            with_retry(
                lambda: self.provider.put_blob(blob_hash, data),
                self.retry_policy,
                self._sleep,
                "put_blob",
            )
        self.vault.snapshots.save(manifest)
        with_retry(
            lambda: self.provider.put_snapshot_manifest(manifest),
            self.retry_policy,
            self._sleep,
            "put_snapshot_manifest",
        )
        logger.info("Published snapshot %s (%d files)", manifest.id, len(manifest.files))
        return manifest

    def latest_remote_manifest(self) -> SnapshotManifest | None:
        ids = with_retry(
            self.provider.list_snapshots, self.retry_policy, self._sleep, "list_snapshots"
        )
        for snapshot_id in reversed(ids):
            try:
                return with_retry(
                    lambda: self.provider.get_snapshot_manifest(snapshot_id),
                    self.retry_policy,
                    self._sleep,
                    "get_snapshot_manifest",
                )
            except RemoteNotFoundError as exc:
                logger.warning("Skipping snapshot %s: %s", snapshot_id, exc)
        return None

    def _file_body(self, entry: SnapshotFile) -> bytes | None:
        if entry.inline_text is not None:
            return entry.inline_text.encode("utf-8")
        if entry.blob_hash is None:
            return None
        blob_hash = entry.blob_hash
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

    def materialize(self, manifest: SnapshotManifest) -> list[str]:
        """Write every manifest file into the vault; returns the paths written."""
        written_paths: list[str] = []
        known_ids = self.vault.history.known_ids()
        with self.vault.apply_lock.held():
            for entry in manifest.files:
                body = self._file_body(entry)
                if body is None:
                    logger.warning("No content for %s in snapshot %s", entry.path, manifest.id)
                    continue
                try:
                    written = self.vault.applier.write(entry.path, body)
                except (VaultIOError, ValueError) as exc:
                    logger.warning("Could not restore %s: %s", entry.path, exc)
                    continue
                content = (
                    InlineText(text=entry.inline_text)
                    if entry.inline_text is not None
                    else BlobRef(hash=entry.blob_hash or written)
                )
                source = create_change_event(
                    entry.path,
                    ChangeType.CREATED,
                    file_hash=entry.hash,
                    size=entry.size,
                    mtime=entry.mtime,
                    content=content,
                )
                self.vault.history.append(remote_record(source, written, known_ids))
                self.vault.states.converge(entry.path, written)
                written_paths.append(entry.path)
        return written_paths

    def bootstrap(self) -> list[str]:
        """Restore the latest remote snapshot into an empty vault.

        A vault with local history is never bootstrapped, even when the user
        deleted every file.
        """
        if not self.vault.layout.is_empty() or self.vault.history.list_partitions():
            return []
        manifest = self.latest_remote_manifest()
        if manifest is None:
            return []
        restored = self.materialize(manifest)
        logger.info("Bootstrapped %d file(s) from snapshot %s", len(restored), manifest.id)
        return restored

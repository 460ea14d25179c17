"""Shared remote layout: partitioned history, blobs and snapshots.

Every provider stores one vault as::

    vaults/<vault_id>/
        history/YYYY-MM-DD.jsonl   append-only change events
        snapshots/<id>.json        snapshot manifests
        attachments/<sha256>       content-addressed blobs
        cursor.json                position of the newest appended line
        meta.json                  vault metadata

Providers subclass ``RemoteLayoutProvider`` and implement the storage
primitives; cursor handling and idempotent pushes live here.
"""

from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from pydantic import ValidationError

from vaultsync.exceptions import LogParseError, RemoteNotFoundError
from vaultsync.filesystem.history_repository import (
    PARTITION_SUFFIX,
    iter_partition_lines,
    parse_event_line,
)
from vaultsync.providers.base import PullResult
from vaultsync.schemas.snapshot import SnapshotManifest
from vaultsync.services.datetime_service import format_iso, now_utc, partition_name

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from vaultsync.schemas.events import ChangeEvent
    from vaultsync.schemas.hashes import FileHash

logger = logging.getLogger(__name__)

HISTORY = "history"
SNAPSHOTS = "snapshots"
ATTACHMENTS = "attachments"
HEAD_FILE = "cursor.json"
META_FILE = "meta.json"
LAYOUT_VERSION = 1

_CURSOR_RE = re.compile(r"^(\d{4}-\d{2}-\d{2}):(\d+)$")
_PARTITION_FILE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}\.jsonl$")

RemotePath = tuple[str, ...]


def format_cursor(partition: str, index: int) -> str:
    return f"{partition}:{index}"


def parse_cursor(value: str) -> tuple[str, int] | None:
    """Split ``"<partition>:<line index>"``; None when the value is not a cursor."""
    match = _CURSOR_RE.match(value.strip())
    if match is None:
        return None
    return match.group(1), int(match.group(2))


class RemoteLayoutProvider(ABC):
    """Implements the provider protocol over a handful of storage primitives."""

    kind: str = "remote"

    def __init__(self, vault_id: str, clock: Callable[[], datetime] = now_utc) -> None:
        self.vault_id = vault_id
        self._clock = clock

    @property
    def namespace(self) -> str:
        return f"{self.kind}-{self.vault_id}"

    # Storage primitives. Paths are relative to the vault folder.

    @abstractmethod
    def _read_bytes(self, path: RemotePath) -> bytes:
        """Raises RemoteNotFoundError when the object does not exist."""

    @abstractmethod
    def _write_bytes(self, path: RemotePath, data: bytes) -> None:
        """Create or replace an object, creating parent folders."""

    @abstractmethod
    def _list_names(self, folder: RemotePath) -> list[str]:
        """Names in a folder; empty when the folder does not exist."""

    @abstractmethod
    def _exists(self, path: RemotePath) -> bool: ...

    def _append_text(self, path: RemotePath, text: str) -> None:
        try:
            existing = self._read_bytes(path)
        except RemoteNotFoundError:
            existing = b""
        if existing and not existing.endswith(b"\n"):
            existing += b"\n"
        self._write_bytes(path, existing + text.encode("utf-8"))

    def _read_text(self, path: RemotePath) -> str:
        return self._read_bytes(path).decode("utf-8", errors="replace")

    # History

    def _partitions(self) -> list[str]:
        return sorted(
            name.removesuffix(PARTITION_SUFFIX)
            for name in self._list_names((HISTORY,))
            if _PARTITION_FILE_RE.match(name)
        )

    def _partition_path(self, partition: str) -> RemotePath:
        return (HISTORY, f"{partition}{PARTITION_SUFFIX}")

    def _read_partition(self, partition: str) -> str:
        try:
            return self._read_text(self._partition_path(partition))
        except RemoteNotFoundError:
            return ""

    def _append_partition(self, existing: list[str]) -> str:
        """Today's partition, but never one that sorts before existing data."""
        today = partition_name(self._clock())
        if existing and existing[-1] > today:
            return existing[-1]
        return today

    def ensure_layout(self) -> None:
        if not self._exists((META_FILE,)):
            meta = {
                "vault_id": self.vault_id,
                "created_at": format_iso(self._clock()),
                "layout_version": LAYOUT_VERSION,
            }
            self._write_bytes((META_FILE,), json.dumps(meta, indent=2).encode("utf-8"))

    def pull_history_events(self, cursor: str | None) -> PullResult:
        position = parse_cursor(cursor) if cursor else None
        if cursor and position is None:
            logger.warning("Unrecognized cursor %r; pulling full history", cursor)

        events: list[ChangeEvent] = []
        last: tuple[str, int] | None = None
        for partition in self._partitions():
            if position is not None and partition < position[0]:
                continue
            for index, line in iter_partition_lines(self._read_partition(partition)):
                if position is not None and partition == position[0] and index <= position[1]:
                    continue
                last = (partition, index)
                try:
                    events.append(parse_event_line(line))
                except LogParseError as exc:
                    logger.warning("Skipping remote line %s:%d: %s", partition, index, exc)

        if last is not None:
            next_cursor = format_cursor(*last)
        elif position is not None:
            next_cursor = cursor
        else:
            next_cursor = None
        return PullResult(events=events, next_cursor=next_cursor)

    def push_history_events(self, events: list[ChangeEvent]) -> int:
        if not events:
            return 0
        self.ensure_layout()
        partitions = self._partitions()
        texts = {partition: self._read_partition(partition) for partition in partitions}

        known: set[str] = set()
        for text in texts.values():
            for _, line in iter_partition_lines(text):
                try:
                    known.add(parse_event_line(line).id)
                except LogParseError:
                    continue

        fresh: list[ChangeEvent] = []
        for event in events:
            if event.id in known:
                continue
            known.add(event.id)
            fresh.append(event)
        if not fresh:
            return 0

        target = self._append_partition(partitions)
        self._append_text(self._partition_path(target), "".join(e.to_line() + "\n" for e in fresh))
        line_count = sum(1 for _ in iter_partition_lines(texts.get(target, ""))) + len(fresh)
        head = {"value": format_cursor(target, line_count - 1)}
        self._write_bytes((HEAD_FILE,), json.dumps(head).encode("utf-8"))
        logger.info("Pushed %d event(s) to %s/%s", len(fresh), self.namespace, target)
        return len(fresh)

    # Blobs

    def has_blob(self, blob_hash: FileHash) -> bool:
        return self._exists((ATTACHMENTS, blob_hash.value))

    def put_blob(self, blob_hash: FileHash, data: bytes) -> None:
        if self.has_blob(blob_hash):
            return
        self._write_bytes((ATTACHMENTS, blob_hash.value), data)

    def get_blob(self, blob_hash: FileHash) -> bytes:
        return self._read_bytes((ATTACHMENTS, blob_hash.value))

    # Snapshots

    def list_snapshots(self) -> list[str]:
        return sorted(
            name.removesuffix(".json")
            for name in self._list_names((SNAPSHOTS,))
            if name.endswith(".json")
        )

    def put_snapshot_manifest(self, manifest: SnapshotManifest) -> None:
        self.ensure_layout()
        self._write_bytes(
            (SNAPSHOTS, f"{manifest.id}.json"), manifest.model_dump_json(indent=2).encode("utf-8")
        )

    def get_snapshot_manifest(self, snapshot_id: str) -> SnapshotManifest:
        raw = self._read_bytes((SNAPSHOTS, f"{snapshot_id}.json"))
        try:
            return SnapshotManifest.model_validate_json(raw)
        except ValidationError as exc:
            raise RemoteNotFoundError(f"Snapshot {snapshot_id} is unreadable: {exc}") from exc

"""Change event construction and log projections."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING

from vaultsync.exceptions import VaultIOError
from vaultsync.filesystem.layout import is_text_path
from vaultsync.schemas.events import (
    BlobRef,
    ChangeEvent,
    ChangeType,
    EventOrigin,
    FileChange,
    InlineText,
)
from vaultsync.services.datetime_service import now_iso, sort_key
from vaultsync.services.hashing import hash_bytes

if TYPE_CHECKING:
    from collections.abc import Iterable
    from pathlib import Path

    from vaultsync.filesystem.blob_store import BlobStore
    from vaultsync.schemas.events import EventContent
    from vaultsync.schemas.hashes import FileHash

logger = logging.getLogger(__name__)

EventSignature = tuple[str, str, str | None, str]


@dataclass(frozen=True)
class CapturedFile:
    """A file body as an event will carry it."""

    hash: FileHash
    size: int
    mtime: float
    content: EventContent


def new_event_id() -> str:
    return uuid.uuid4().hex


def create_change_event(
    path: str,
    change_type: ChangeType,
    *,
    file_hash: FileHash | None = None,
    size: int | None = None,
    mtime: float | None = None,
    content: EventContent | None = None,
    origin: EventOrigin = EventOrigin.LOCAL,
    occurred_at: str | None = None,
) -> ChangeEvent:
    return ChangeEvent(
        id=new_event_id(),
        occurred_at=occurred_at or now_iso(),
        origin=origin,
        change=FileChange(
            path=path, change_type=change_type, hash=file_hash, size=size, mtime=mtime
        ),
        content=content,
    )


def capture_file_content(
    abs_path: Path, rel_path: str, blob_store: BlobStore, inline_max_bytes: int
) -> CapturedFile:
    """Read a vault file and decide how its body travels.

    Text files up to ``inline_max_bytes`` that decode as UTF-8 are inlined;
    anything else is stored in the blob store and referenced by hash.
    Raises VaultIOError when the file cannot be read.
    """
    try:
        data = abs_path.read_bytes()
        mtime = abs_path.stat().st_mtime
    except OSError as exc:
        raise VaultIOError(rel_path, exc.strerror or str(exc)) from exc
    file_hash = hash_bytes(data)

    content: EventContent | None = None
    if is_text_path(rel_path) and len(data) <= inline_max_bytes:
        try:
            content = InlineText(text=data.decode("utf-8"))
        except UnicodeDecodeError:
            content = None
    if content is None:
        blob_store.put(file_hash, data)
        content = BlobRef(hash=file_hash)
    return CapturedFile(hash=file_hash, size=len(data), mtime=mtime, content=content)


def event_for_file(
    abs_path: Path,
    rel_path: str,
    change_type: ChangeType,
    blob_store: BlobStore,
    inline_max_bytes: int,
    origin: EventOrigin = EventOrigin.LOCAL,
) -> ChangeEvent:
    """Event recording the current body of a vault file."""
    captured = capture_file_content(abs_path, rel_path, blob_store, inline_max_bytes)
    return create_change_event(
        rel_path,
        change_type,
        file_hash=captured.hash,
        size=captured.size,
        mtime=captured.mtime,
        content=captured.content,
        origin=origin,
    )


def deletion_event(path: str, origin: EventOrigin = EventOrigin.LOCAL) -> ChangeEvent:
    return create_change_event(path, ChangeType.DELETED, origin=origin)


def remote_record(
    source: ChangeEvent, written_hash: FileHash | None, known_ids: set[str]
) -> ChangeEvent:
    """Local log entry for remote content that was just written to the vault.

    Stamped with the current time so it supersedes earlier local entries for
    the path regardless of the remote device's clock. Keeps the source id
    when the written bytes match the source hash, so later pulls of the
    source event are recognized as already applied.
    """
    keep_id = written_hash == event_hash(source) and source.id not in known_ids
    change_type = ChangeType.DELETED if written_hash is None else source.change.change_type
    return ChangeEvent(
        id=source.id if keep_id else new_event_id(),
        occurred_at=now_iso(),
        origin=EventOrigin.REMOTE,
        change=FileChange(
            path=source.path,
            change_type=change_type,
            hash=written_hash,
            size=source.change.size,
            mtime=source.change.mtime,
        ),
        content=None if written_hash is None else source.content,
    )


def latest_by_path(events: Iterable[ChangeEvent]) -> dict[str, ChangeEvent]:
    """Latest event per path by ``occurred_at``; log order breaks ties."""
    indexed = list(enumerate(events))
    ordered = sorted(indexed, key=lambda item: (sort_key(item[1].occurred_at), item[0]))
    latest: dict[str, ChangeEvent] = {}
    for _, event in ordered:
        latest[event.path] = event
    return latest


def event_hash(event: ChangeEvent) -> FileHash | None:
    """Hash the path has after this event; None for deletions."""
    if event.is_deletion:
        return None
    if event.change.hash is not None:
        return event.change.hash
    if isinstance(event.content, InlineText):
        return hash_bytes(event.content.text.encode("utf-8"))
    if isinstance(event.content, BlobRef):
        return event.content.hash
    return None


def event_signature(event: ChangeEvent) -> EventSignature:
    """Identity of a change independent of its id, used to dedupe pushes."""
    file_hash = event_hash(event)
    return (
        event.path,
        str(event.change.change_type),
        file_hash.value if file_hash is not None else None,
        event.occurred_at,
    )

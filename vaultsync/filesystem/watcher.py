"""File watcher protocol and its watchdog implementation."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import Protocol, runtime_checkable

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

logger = logging.getLogger(__name__)


class FileEventKind(StrEnum):
    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"


@dataclass(frozen=True)
class FileChangeEvent:
    """A raw watcher notification, before hashing or filtering."""

    kind: FileEventKind
    path: Path


FileEventCallback = Callable[[FileChangeEvent], None]


@runtime_checkable
class FileWatcher(Protocol):
    """Source of filesystem notifications for one vault."""

    def on_event(self, callback: FileEventCallback) -> None:
        """Register the callback receiving every notification."""
        ...

    def start(self) -> None: ...

    def stop(self) -> None: ...


class _WatchdogHandler(FileSystemEventHandler):
    """Adapter between watchdog events and ``FileChangeEvent``."""

    def __init__(self, emit: Callable[[FileChangeEvent], None]) -> None:
        super().__init__()
        self._emit = emit

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        src = Path(str(event.src_path))
        if event.event_type == "created":
            self._emit(FileChangeEvent(FileEventKind.CREATED, src))
        elif event.event_type == "modified":
            self._emit(FileChangeEvent(FileEventKind.MODIFIED, src))
        elif event.event_type == "deleted":
            self._emit(FileChangeEvent(FileEventKind.DELETED, src))
        elif event.event_type == "moved":
            # A rename is a deletion of the source and a creation of the target.
            self._emit(FileChangeEvent(FileEventKind.DELETED, src))
            self._emit(FileChangeEvent(FileEventKind.CREATED, Path(str(event.dest_path))))


class WatchdogFileWatcher:
    """``FileWatcher`` backed by a recursive watchdog observer."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self._callbacks: list[FileEventCallback] = []
        self._observer: Observer | None = None

    def on_event(self, callback: FileEventCallback) -> None:
        self._callbacks.append(callback)

    def _dispatch(self, event: FileChangeEvent) -> None:
        for callback in self._callbacks:
            try:
                callback(event)
            except Exception:
                logger.exception("File event handler failed for %s", event.path)

    def start(self) -> None:
        if self._observer is not None:
            return
        observer = Observer()
        observer.schedule(_WatchdogHandler(self._dispatch), str(self.root), recursive=True)
        observer.start()
        self._observer = observer
        logger.info("Watching %s", self.root)

    def stop(self) -> None:
        if self._observer is None:
            return
        self._observer.stop()
        self._observer.join()
        self._observer = None

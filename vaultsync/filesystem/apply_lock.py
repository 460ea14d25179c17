"""Feedback-loop guards for engine-originated vault writes.

While remote content is written into the vault the file watcher would see
those writes as local edits. Two mechanisms keep them out of the log:

- ``ApplyLock``: a lock file present for the duration of the apply, plus a
  short cooldown after it is released for late watcher notifications.
- ``ExpectedWrites``: the exact ``(path, hash)`` of every engine write; the
  change recorder consumes a matching entry instead of emitting an event.
"""

from __future__ import annotations

import json
import logging
import time
from contextlib import contextmanager
from typing import TYPE_CHECKING

from vaultsync.filesystem.layout import atomic_write_text
from vaultsync.schemas.hashes import FileHash

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator
    from pathlib import Path

logger = logging.getLogger(__name__)

LOCK_FILE_NAME = "applying.lock"
COOLDOWN_FILE_NAME = "apply-cooldown"
EXPECTED_WRITES_FILE_NAME = "expected-writes.json"


def _epoch_ms(clock: Callable[[], float]) -> int:
    return int(clock() * 1000)


class ApplyLock:
    """Marks the vault as being written by the engine."""

    def __init__(
        self,
        state_dir: Path,
        cooldown_seconds: float = 1.5,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.state_dir = state_dir
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock

    @property
    def lock_file(self) -> Path:
        return self.state_dir / LOCK_FILE_NAME

    @property
    def cooldown_file(self) -> Path:
        return self.state_dir / COOLDOWN_FILE_NAME

    @contextmanager
    def held(self) -> Iterator[None]:
        self.state_dir.mkdir(parents=True, exist_ok=True)
        self.lock_file.write_text(str(_epoch_ms(self._clock)), encoding="utf-8")
        try:
            yield
        finally:
            self.lock_file.unlink(missing_ok=True)
            atomic_write_text(self.cooldown_file, str(_epoch_ms(self._clock)))

    def is_active(self) -> bool:
        """True while the lock is held or within the cooldown after release."""
        if self.lock_file.exists():
            return True
        try:
            released_ms = int(self.cooldown_file.read_text(encoding="utf-8").strip())
        except (FileNotFoundError, ValueError):
            return False
        elapsed = _epoch_ms(self._clock) - released_ms
        return 0 <= elapsed < self.cooldown_seconds * 1000


class ExpectedWrites:
    """Registry of writes the engine is about to make, keyed by path.

    A ``None`` hash stands for a deletion.
    """

    def __init__(self, state_dir: Path) -> None:
        self.state_dir = state_dir

    @property
    def registry_file(self) -> Path:
        return self.state_dir / EXPECTED_WRITES_FILE_NAME

    def _load(self) -> dict[str, str | None]:
        try:
            data = json.loads(self.registry_file.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.warning("Discarding unreadable expected-writes registry")
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self, entries: dict[str, str | None]) -> None:
        atomic_write_text(self.registry_file, json.dumps(entries, indent=2, sort_keys=True))

    def expect(self, path: str, file_hash: FileHash | None) -> None:
        entries = self._load()
        entries[path] = file_hash.value if file_hash is not None else None
        self._save(entries)

    def pending(self) -> dict[str, FileHash | None]:
        return {
            path: FileHash(value=value) if value else None
            for path, value in self._load().items()
        }

    def consume(self, path: str, file_hash: FileHash | None) -> bool:
        """Drop the entry for ``path`` if it matches; True when it did."""
        entries = self._load()
        if path not in entries:
            return False
        expected = entries[path]
        actual = file_hash.value if file_hash is not None else None
        if expected != actual:
            return False
        del entries[path]
        self._save(entries)
        return True

    def discard(self, path: str) -> None:
        entries = self._load()
        if path in entries:
            del entries[path]
            self._save(entries)

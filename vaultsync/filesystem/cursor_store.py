"""Remote pull cursor, one file per provider namespace."""

from __future__ import annotations

import json
import logging
import re
from typing import TYPE_CHECKING

from vaultsync.filesystem.layout import atomic_write_text
from vaultsync.schemas.state import SyncCursor

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

LEGACY_CURSOR_FILE = "remote-cursor.json"

_NAMESPACE_RE = re.compile(r"[^A-Za-z0-9._-]+")


def _read_cursor(path: Path) -> str | None:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return None
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.warning("Ignoring unreadable cursor file %s", path)
        return None
    if not isinstance(data, dict):
        return None
    # Older clients stored the position under "cursor".
    value = data.get("value", data.get("cursor"))
    if isinstance(value, str) and value:
        return value
    return None


class CursorStore:
    """Persists the last committed remote cursor."""

    def __init__(self, state_dir: Path) -> None:
        self.state_dir = state_dir

    def cursor_file(self, namespace: str) -> Path:
        safe = _NAMESPACE_RE.sub("_", namespace).strip("_") or "default"
        return self.state_dir / f"remote-cursor.{safe}.json"

    def load(self, namespace: str) -> str | None:
        value = _read_cursor(self.cursor_file(namespace))
        if value is not None:
            return value
        return _read_cursor(self.state_dir / LEGACY_CURSOR_FILE)

    def save(self, namespace: str, cursor: str) -> None:
        payload = SyncCursor(value=cursor).model_dump_json()
        atomic_write_text(self.cursor_file(namespace), payload + "\n")

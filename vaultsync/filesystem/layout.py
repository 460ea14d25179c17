"""Vault layout: control directory paths, ignore rules and safe file writes."""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING

from vaultsync.config import DEFAULT_CONTROL_DIR

if TYPE_CHECKING:
    from collections.abc import Iterator

_IGNORED_SUFFIXES = ("~", ".tmp", ".swp")
_TEXT_SUFFIXES = frozenset({".md", ".txt", ".json", ".yaml", ".yml", ".csv", ".canvas"})


def to_posix(path: str) -> str:
    """Normalize a vault-relative path to forward slashes without a leading slash."""
    return path.replace("\\", "/").lstrip("/")


def is_text_path(rel_path: str) -> bool:
    """Whether a file is expected to hold UTF-8 text, judged by extension."""
    return PurePosixPath(rel_path).suffix.lower() in _TEXT_SUFFIXES


def atomic_write_bytes(target: Path, data: bytes) -> None:
    """Write ``data`` to ``target`` via a temp file and rename.

    A crash leaves either the old or the new body, never a torn file.
    """
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, target)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def atomic_write_text(target: Path, text: str) -> None:
    """Text variant of atomic_write_bytes (UTF-8)."""
    atomic_write_bytes(target, text.encode("utf-8"))


def append_lines(target: Path, text: str) -> None:
    """Append ``text`` to ``target`` and fsync.

    A last line left unterminated by a crash is closed first, so the new
    lines never merge into it.
    """
    data = text.encode("utf-8")
    with open(target, "ab+") as f:
        if f.seek(0, os.SEEK_END) > 0:
            f.seek(-1, os.SEEK_END)
            if f.read(1) != b"\n":
                data = b"\n" + data
        f.write(data)
        f.flush()
        os.fsync(f.fileno())


@dataclass(frozen=True)
class VaultLayout:
    """Paths of one vault and of its reserved control directory."""

    root: Path
    control_dir_name: str = DEFAULT_CONTROL_DIR

    @property
    def control_dir(self) -> Path:
        return self.root / self.control_dir_name

    @property
    def history_dir(self) -> Path:
        return self.control_dir / "history"

    @property
    def state_dir(self) -> Path:
        return self.control_dir / "state"

    @property
    def conflicts_dir(self) -> Path:
        return self.control_dir / "conflicts"

    @property
    def blobs_dir(self) -> Path:
        return self.control_dir / "blobs"

    @property
    def snapshots_dir(self) -> Path:
        return self.control_dir / "snapshots"

    def resolve(self, rel_path: str) -> Path:
        """Absolute path of a vault-relative path.

        Raises ValueError when the path escapes the vault or points into a
        reserved folder.
        """
        rel = to_posix(rel_path)
        full = (self.root / rel).resolve()
        if not full.is_relative_to(self.root.resolve()) or full == self.root.resolve():
            raise ValueError(f"Invalid vault path: {rel_path}")
        if self.is_ignored(rel):
            raise ValueError(f"Path is reserved: {rel_path}")
        return full

    def relative(self, abs_path: Path) -> str:
        """Vault-relative POSIX path of an absolute path inside the vault."""
        return abs_path.resolve().relative_to(self.root.resolve()).as_posix()

    def is_ignored(self, rel_path: str) -> bool:
        """Reserved, hidden or temporary files never take part in sync.

        Dot-prefixed segments cover the control directory, editor folders
        such as ``.obsidian`` and ``.trash``, and OS droppings.
        """
        rel = to_posix(rel_path)
        if not rel:
            return True
        if any(part.startswith(".") for part in rel.split("/")):
            return True
        return rel.endswith(_IGNORED_SUFFIXES)

    def iter_files(self) -> Iterator[tuple[str, Path]]:
        """Yield ``(relative, absolute)`` for every syncable file, sorted."""
        if not self.root.is_dir():
            return
        found: list[tuple[str, Path]] = []
        for dirpath, dirs, files in os.walk(self.root):
            dirs[:] = [d for d in dirs if not d.startswith(".")]
            for filename in files:
                full = Path(dirpath) / filename
                rel = full.relative_to(self.root).as_posix()
                if not self.is_ignored(rel):
                    found.append((rel, full))
        yield from sorted(found)

    def is_empty(self) -> bool:
        """True when the vault has no syncable files."""
        return next(self.iter_files(), None) is None

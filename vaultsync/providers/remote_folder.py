"""Remote replica stored in a plain directory (network share, synced folder)."""

from __future__ import annotations

import errno
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING

from vaultsync.exceptions import AuthError, NetworkError, ProviderError, RemoteNotFoundError
from vaultsync.filesystem.layout import append_lines, atomic_write_bytes
from vaultsync.providers.remote_layout import RemoteLayoutProvider
from vaultsync.services.datetime_service import now_utc

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator
    from datetime import datetime

    from vaultsync.providers.remote_layout import RemotePath

logger = logging.getLogger(__name__)

_TRANSIENT_ERRNOS = frozenset(
    {
        errno.EAGAIN,
        errno.EBUSY,
        errno.EINTR,
        errno.EIO,
        errno.ETIMEDOUT,
        errno.ECONNRESET,
        errno.ECONNABORTED,
        errno.EHOSTUNREACH,
        errno.ENETUNREACH,
        errno.ESTALE,
    }
)


@contextmanager
def _translate_os_errors(target: Path) -> Iterator[None]:
    """Map ``OSError`` onto the provider error set."""
    try:
        yield
    except FileNotFoundError as exc:
        raise RemoteNotFoundError(f"Remote object not found: {target}") from exc
    except PermissionError as exc:
        msg = f"Permission denied on remote folder {target}; check its access rights"
        raise AuthError(msg) from exc
    except OSError as exc:
        if exc.errno in _TRANSIENT_ERRNOS:
            raise NetworkError(f"Remote folder unavailable ({target}): {exc}") from exc
        raise ProviderError(f"Remote folder I/O failed ({target}): {exc}") from exc


class RemoteFolderSyncProvider(RemoteLayoutProvider):
    """Keeps the remote layout under ``<root>/vaults/<vault_id>/``."""

    kind = "folder"

    def __init__(
        self, root: Path | str, vault_id: str, clock: Callable[[], datetime] = now_utc
    ) -> None:
        super().__init__(vault_id, clock=clock)
        self.root = Path(root)

    @property
    def vault_dir(self) -> Path:
        return self.root / "vaults" / self.vault_id

    def _path(self, path: RemotePath) -> Path:
        return self.vault_dir.joinpath(*path)

    def _read_bytes(self, path: RemotePath) -> bytes:
        target = self._path(path)
        with _translate_os_errors(target):
            return target.read_bytes()

    def _write_bytes(self, path: RemotePath, data: bytes) -> None:
        target = self._path(path)
        with _translate_os_errors(target):
            atomic_write_bytes(target, data)

    def _append_text(self, path: RemotePath, text: str) -> None:
        target = self._path(path)
        with _translate_os_errors(target):
            target.parent.mkdir(parents=True, exist_ok=True)
            append_lines(target, text)

    def _list_names(self, folder: RemotePath) -> list[str]:
        target = self._path(folder)
        if not target.is_dir():
            return []
        with _translate_os_errors(target):
            return sorted(p.name for p in target.iterdir() if p.is_file())

    def _exists(self, path: RemotePath) -> bool:
        return self._path(path).is_file()

"""Remote replica stored in Google Drive (Drive v3 REST API over httpx)."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import httpx

from vaultsync.exceptions import (
    AuthError,
    NetworkError,
    ProviderError,
    RateLimitedError,
    RemoteNotFoundError,
    RemoteServerError,
)
from vaultsync.providers.google_auth import GoogleTokenAuth
from vaultsync.providers.remote_layout import RemoteLayoutProvider
from vaultsync.services.datetime_service import now_utc

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime
    from pathlib import Path

    from vaultsync.providers.remote_layout import RemotePath

logger = logging.getLogger(__name__)

DRIVE_API = "https://www.googleapis.com/drive/v3"
UPLOAD_API = "https://www.googleapis.com/upload/drive/v3"
FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
PAGE_SIZE = 1000

_RATE_LIMIT_REASONS = frozenset({"rateLimitExceeded", "userRateLimitExceeded"})


def _quote(value: str) -> str:
    """Escape a literal for the Drive query language."""
    return value.replace("\\", "\\\\").replace("'", "\\'")


def _error_reason(response: httpx.Response) -> tuple[str, str]:
    try:
        error = response.json().get("error", {})
    except ValueError:
        return "", response.text[:200]
    if not isinstance(error, dict):
        return "", str(error)
    reasons = [e.get("reason", "") for e in error.get("errors", []) if isinstance(e, dict)]
    return (reasons[0] if reasons else ""), str(error.get("message", ""))


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def raise_for_drive_status(response: httpx.Response, action: str) -> None:
    """Translate a Drive error response into the provider error set."""
    status = response.status_code
    if status < 400:
        return
    reason, message = _error_reason(response)
    detail = f"{action} failed with HTTP {status}: {message or reason or 'no details'}"
    if status in (408, 429) or (status == 403 and reason in _RATE_LIMIT_REASONS):
        raise RateLimitedError(detail, retry_after=_retry_after(response))
    if status in (401, 403):
        msg = f"{detail}. Check the Google Drive credentials and token file."
        raise AuthError(msg)
    if status == 404:
        raise RemoteNotFoundError(detail)
    if status >= 500:
        raise RemoteServerError(detail, status_code=status)
    raise ProviderError(detail)


class GoogleDriveSyncProvider(RemoteLayoutProvider):
    """Keeps the remote layout under ``<app folder>/vaults/<vault_id>/`` in Drive."""

    kind = "google-drive"

    def __init__(
        self,
        client: httpx.Client,
        vault_id: str,
        app_folder: str = "vaultsync",
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        super().__init__(vault_id, clock=clock)
        self._client = client
        self.app_folder = app_folder
        # Drive ids of folders and files, keyed by their path under the app folder.
        self._ids: dict[tuple[str, ...], str] = {}

    @classmethod
    def from_files(
        cls,
        credentials_file: Path,
        token_file: Path,
        vault_id: str,
        app_folder: str = "vaultsync",
        timeout: float = 30.0,
    ) -> GoogleDriveSyncProvider:
        auth = GoogleTokenAuth(credentials_file, token_file)
        client = httpx.Client(auth=auth, timeout=timeout)
        return cls(client, vault_id, app_folder=app_folder)

    def close(self) -> None:
        self._client.close()

    # HTTP

    def _request(self, method: str, url: str, action: str, **kwargs: Any) -> httpx.Response:
        try:
            response = self._client.request(method, url, **kwargs)
        except httpx.TransportError as exc:
            raise NetworkError(f"{action} failed: {exc}") from exc
        raise_for_drive_status(response, action)
        return response

    def _query(self, q: str) -> list[dict[str, Any]]:
        files: list[dict[str, Any]] = []
        page_token: str | None = None
        while True:
            params: dict[str, Any] = {
                "q": q,
                "fields": "nextPageToken, files(id, name, mimeType)",
                "pageSize": PAGE_SIZE,
                "spaces": "drive",
            }
            if page_token:
                params["pageToken"] = page_token
            payload = self._request("GET", f"{DRIVE_API}/files", "List files", params=params).json()
            files.extend(payload.get("files", []))
            page_token = payload.get("nextPageToken")
            if not page_token:
                return files

    def _find_child(self, parent_id: str, name: str) -> dict[str, Any] | None:
        q = f"'{_quote(parent_id)}' in parents and name = '{_quote(name)}' and trashed = false"
        matches = self._query(q)
        return matches[0] if matches else None

    def _create_folder(self, parent_id: str, name: str) -> str:
        body = {"name": name, "mimeType": FOLDER_MIME_TYPE, "parents": [parent_id]}
        response = self._request(
            "POST",
            f"{DRIVE_API}/files",
            f"Create folder {name}",
            json=body,
            params={"fields": "id"},
        )
        return str(response.json()["id"])

    # Path resolution

    def _full(self, path: RemotePath) -> tuple[str, ...]:
        return ("vaults", self.vault_id, *path)

    def _folder_id(self, parts: tuple[str, ...], create: bool) -> str | None:
        """Id of the folder at ``parts`` under the app folder."""
        cached = self._ids.get(parts)
        if cached is not None:
            return cached
        if parts:
            parent_id = self._folder_id(parts[:-1], create)
            name = parts[-1]
        else:
            parent_id = "root"
            name = self.app_folder
        if parent_id is None:
            return None
        found = self._find_child(parent_id, name)
        if found is not None:
            folder_id = str(found["id"])
        elif create:
            folder_id = self._create_folder(parent_id, name)
            logger.info("Created Drive folder %s", "/".join((self.app_folder, *parts)))
        else:
            return None
        self._ids[parts] = folder_id
        return folder_id

    def _file_id(self, path: RemotePath) -> str | None:
        full = self._full(path)
        cached = self._ids.get(full)
        if cached is not None:
            return cached
        parent_id = self._folder_id(full[:-1], create=False)
        if parent_id is None:
            return None
        found = self._find_child(parent_id, full[-1])
        if found is None:
            return None
        self._ids[full] = str(found["id"])
        return self._ids[full]

    # Storage primitives

    def _read_bytes(self, path: RemotePath) -> bytes:
        file_id = self._file_id(path)
        if file_id is None:
            raise RemoteNotFoundError(f"Drive object not found: {'/'.join(path)}")
        response = self._request(
            "GET",
            f"{DRIVE_API}/files/{file_id}",
            f"Download {'/'.join(path)}",
            params={"alt": "media"},
        )
        return response.content

    def _write_bytes(self, path: RemotePath, data: bytes) -> None:
        full = self._full(path)
        file_id = self._file_id(path)
        if file_id is None:
            parent_id = self._folder_id(full[:-1], create=True)
            assert parent_id is not None
            body = {"name": full[-1], "parents": [parent_id]}
            response = self._request(
                "POST",
                f"{DRIVE_API}/files",
                f"Create {'/'.join(path)}",
                json=body,
                params={"fields": "id"},
            )
            file_id = str(response.json()["id"])
            self._ids[full] = file_id
        self._request(
            "PATCH",
            f"{UPLOAD_API}/files/{file_id}",
            f"Upload {'/'.join(path)}",
            params={"uploadType": "media"},
            content=data,
            headers={"Content-Type": "application/octet-stream"},
        )

    def _list_names(self, folder: RemotePath) -> list[str]:
        folder_id = self._folder_id(self._full(folder), create=False)
        if folder_id is None:
            return []
        children = self._query(f"'{_quote(folder_id)}' in parents and trashed = false")
        return sorted(
            str(child["name"])
            for child in children
            if child.get("mimeType") != FOLDER_MIME_TYPE
        )

    def _exists(self, path: RemotePath) -> bool:
        return self._file_id(path) is not None

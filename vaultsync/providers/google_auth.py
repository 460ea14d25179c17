"""OAuth2 bearer auth for Google APIs, refreshed from a stored refresh token.

The interactive consent flow is out of scope: the token file must already
hold a refresh token (as written by any installed-app OAuth flow).
"""

from __future__ import annotations

import json
import logging
import time
from typing import TYPE_CHECKING, Any

import httpx

from vaultsync.exceptions import AuthError, NetworkError
from vaultsync.filesystem.layout import atomic_write_text

if TYPE_CHECKING:
    from collections.abc import Callable, Generator
    from pathlib import Path

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"
# Refresh slightly before the reported expiry.
_EXPIRY_MARGIN_SECONDS = 60


def _read_json(path: Path, what: str) -> dict[str, Any]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        msg = f"Google {what} file not found: {path}. Run the OAuth setup and try again."
        raise AuthError(msg) from exc
    except (OSError, json.JSONDecodeError) as exc:
        raise AuthError(f"Google {what} file {path} is unreadable: {exc}") from exc
    if not isinstance(data, dict):
        raise AuthError(f"Google {what} file {path} must contain a JSON object")
    return data


def load_client_config(credentials_file: Path) -> dict[str, str]:
    """Client id/secret from an OAuth client file (``installed``/``web`` or flat)."""
    data = _read_json(credentials_file, "credentials")
    section = data.get("installed") or data.get("web") or data
    client_id = section.get("client_id")
    client_secret = section.get("client_secret")
    if not client_id or not client_secret:
        raise AuthError(f"{credentials_file} lacks client_id/client_secret")
    return {
        "client_id": client_id,
        "client_secret": client_secret,
        "token_uri": section.get("token_uri") or GOOGLE_TOKEN_URI,
    }


class GoogleTokenAuth(httpx.Auth):
    """Adds ``Authorization: Bearer``; refreshes on expiry or a 401 once."""

    requires_response_body = True

    def __init__(
        self,
        credentials_file: Path,
        token_file: Path,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.credentials_file = credentials_file
        self.token_file = token_file
        self._clock = clock
        self._client: dict[str, str] | None = None
        self._token: dict[str, Any] | None = None

    def _load(self) -> dict[str, Any]:
        if self._token is None:
            token = _read_json(self.token_file, "token")
            if not token.get("refresh_token"):
                msg = f"{self.token_file} has no refresh_token; re-run the OAuth setup"
                raise AuthError(msg)
            self._token = token
        return self._token

    def _client_config(self) -> dict[str, str]:
        if self._client is None:
            self._client = load_client_config(self.credentials_file)
        return self._client

    def _is_expired(self, token: dict[str, Any]) -> bool:
        if not token.get("access_token"):
            return True
        expires_at = token.get("expires_at")
        if expires_at is None:
            return False
        return float(expires_at) - _EXPIRY_MARGIN_SECONDS <= self._clock()

    def build_refresh_request(self) -> httpx.Request:
        token = self._load()
        client = self._client_config()
        return httpx.Request(
            "POST",
            client["token_uri"],
            data={
                "grant_type": "refresh_token",
                "refresh_token": token["refresh_token"],
                "client_id": client["client_id"],
                "client_secret": client["client_secret"],
            },
        )

    def update_tokens(self, response: httpx.Response) -> None:
        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if response.status_code != 200 or "access_token" not in payload:
            error = payload.get("error", f"HTTP {response.status_code}")
            if error == "invalid_grant":
                msg = "Google refresh token was revoked or expired; re-run the OAuth setup"
                raise AuthError(msg)
            if response.status_code >= 500:
                raise NetworkError(f"Google token endpoint failed: {error}")
            raise AuthError(f"Google token refresh failed: {error}")

        token = dict(self._load())
        token["access_token"] = payload["access_token"]
        if "expires_in" in payload:
            token["expires_at"] = self._clock() + float(payload["expires_in"])
        if payload.get("refresh_token"):
            token["refresh_token"] = payload["refresh_token"]
        self._token = token
        atomic_write_text(self.token_file, json.dumps(token, indent=2))
        logger.debug("Refreshed Google access token")

    def _authorize(self, request: httpx.Request) -> None:
        request.headers["Authorization"] = f"Bearer {self._load()['access_token']}"

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        if self._is_expired(self._load()):
            self.update_tokens((yield self.build_refresh_request()))
        self._authorize(request)
        response = yield request
        if response.status_code == 401:
            self.update_tokens((yield self.build_refresh_request()))
            self._authorize(request)
            yield request

"""Tests for OAuth token refresh against a mocked Google token endpoint."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

import httpx
import pytest

from vaultsync.exceptions import AuthError, NetworkError
from vaultsync.providers.google_auth import (
    GOOGLE_TOKEN_URI,
    GoogleTokenAuth,
    load_client_config,
)

if TYPE_CHECKING:
    from pathlib import Path

API_URL = "https://www.googleapis.com/drive/v3/files"


class FakeClock:
    def __init__(self, now: float = 10_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class GoogleEndpoints:
    """Token endpoint plus one API route that accepts a single access token."""

    def __init__(self) -> None:
        self.valid_token = "fresh-token"
        self.token_responses: list[httpx.Response] = []
        self.refreshes = 0
        self.api_calls: list[str | None] = []

    def handle(self, request: httpx.Request) -> httpx.Response:
        if str(request.url) == GOOGLE_TOKEN_URI:
            self.refreshes += 1
            if self.token_responses:
                return self.token_responses.pop(0)
            return httpx.Response(
                200, json={"access_token": self.valid_token, "expires_in": 3600}
            )
        auth = request.headers.get("Authorization")
        self.api_calls.append(auth)
        if auth != f"Bearer {self.valid_token}":
            return httpx.Response(401, json={"error": {"message": "Invalid Credentials"}})
        return httpx.Response(200, json={"files": []})


def _write_json(path: Path, data: dict[str, Any]) -> Path:
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


@pytest.fixture
def credentials_file(tmp_path: Path) -> Path:
    return _write_json(
        tmp_path / "client.json",
        {"installed": {"client_id": "cid", "client_secret": "secret"}},
    )


@pytest.fixture
def endpoints() -> GoogleEndpoints:
    return GoogleEndpoints()


def _client(auth: GoogleTokenAuth, endpoints: GoogleEndpoints) -> httpx.Client:
    return httpx.Client(auth=auth, transport=httpx.MockTransport(endpoints.handle))


class TestLoadClientConfig:
    @pytest.mark.parametrize("section", ["installed", "web", None])
    def test_formats(self, tmp_path: Path, section: str | None) -> None:
        body = {"client_id": "cid", "client_secret": "secret"}
        data = {section: body} if section else body
        config = load_client_config(_write_json(tmp_path / "c.json", data))
        assert config == {
            "client_id": "cid",
            "client_secret": "secret",
            "token_uri": GOOGLE_TOKEN_URI,
        }

    def test_missing_secret(self, tmp_path: Path) -> None:
        with pytest.raises(AuthError, match="client_secret"):
            load_client_config(_write_json(tmp_path / "c.json", {"client_id": "cid"}))

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(AuthError, match="not found"):
            load_client_config(tmp_path / "absent.json")

    def test_not_json(self, tmp_path: Path) -> None:
        path = tmp_path / "c.json"
        path.write_text("not json", encoding="utf-8")
        with pytest.raises(AuthError, match="unreadable"):
            load_client_config(path)


class TestGoogleTokenAuth:
    def test_valid_token_is_used_without_refresh(
        self, tmp_path: Path, credentials_file: Path, endpoints: GoogleEndpoints
    ) -> None:
        clock = FakeClock()
        token_file = _write_json(
            tmp_path / "token.json",
            {"access_token": "fresh-token", "refresh_token": "r", "expires_at": clock.now + 600},
        )
        auth = GoogleTokenAuth(credentials_file, token_file, clock=clock)
        with _client(auth, endpoints) as client:
            assert client.get(API_URL).status_code == 200
        assert endpoints.refreshes == 0

    def test_expired_token_is_refreshed_and_saved(
        self, tmp_path: Path, credentials_file: Path, endpoints: GoogleEndpoints
    ) -> None:
        clock = FakeClock()
        token_file = _write_json(
            tmp_path / "token.json",
            {"access_token": "stale", "refresh_token": "r", "expires_at": clock.now + 30},
        )
        auth = GoogleTokenAuth(credentials_file, token_file, clock=clock)
        with _client(auth, endpoints) as client:
            assert client.get(API_URL).status_code == 200
        assert endpoints.refreshes == 1
        assert endpoints.api_calls == ["Bearer fresh-token"]
        saved = json.loads(token_file.read_text(encoding="utf-8"))
        assert saved["access_token"] == "fresh-token"
        assert saved["refresh_token"] == "r"
        assert saved["expires_at"] == clock.now + 3600

    def test_rejected_token_is_refreshed_once(
        self, tmp_path: Path, credentials_file: Path, endpoints: GoogleEndpoints
    ) -> None:
        token_file = _write_json(
            tmp_path / "token.json", {"access_token": "revoked", "refresh_token": "r"}
        )
        auth = GoogleTokenAuth(credentials_file, token_file, clock=FakeClock())
        with _client(auth, endpoints) as client:
            assert client.get(API_URL).status_code == 200
        assert endpoints.api_calls == ["Bearer revoked", "Bearer fresh-token"]
        assert endpoints.refreshes == 1

    def test_second_401_is_returned_to_the_caller(
        self, tmp_path: Path, credentials_file: Path, endpoints: GoogleEndpoints
    ) -> None:
        endpoints.token_responses.append(
            httpx.Response(200, json={"access_token": "also-wrong", "expires_in": 3600})
        )
        token_file = _write_json(
            tmp_path / "token.json", {"access_token": "revoked", "refresh_token": "r"}
        )
        auth = GoogleTokenAuth(credentials_file, token_file, clock=FakeClock())
        with _client(auth, endpoints) as client:
            assert client.get(API_URL).status_code == 401
        assert endpoints.refreshes == 1

    def test_invalid_grant_is_auth_error(
        self, tmp_path: Path, credentials_file: Path, endpoints: GoogleEndpoints
    ) -> None:
        endpoints.token_responses.append(httpx.Response(400, json={"error": "invalid_grant"}))
        token_file = _write_json(tmp_path / "token.json", {"refresh_token": "r"})
        auth = GoogleTokenAuth(credentials_file, token_file, clock=FakeClock())
        with _client(auth, endpoints) as client, pytest.raises(AuthError, match="revoked"):
            client.get(API_URL)

    def test_token_endpoint_outage_is_network_error(
        self, tmp_path: Path, credentials_file: Path, endpoints: GoogleEndpoints
    ) -> None:
        endpoints.token_responses.append(httpx.Response(503, text="unavailable"))
        token_file = _write_json(tmp_path / "token.json", {"refresh_token": "r"})
        auth = GoogleTokenAuth(credentials_file, token_file, clock=FakeClock())
        with _client(auth, endpoints) as client, pytest.raises(NetworkError):
            client.get(API_URL)

    def test_missing_refresh_token(
        self, tmp_path: Path, credentials_file: Path, endpoints: GoogleEndpoints
    ) -> None:
        token_file = _write_json(tmp_path / "token.json", {"access_token": "a"})
        auth = GoogleTokenAuth(credentials_file, token_file, clock=FakeClock())
        with _client(auth, endpoints) as client, pytest.raises(AuthError, match="refresh_token"):
            client.get(API_URL)

    def test_missing_token_file(
        self, tmp_path: Path, credentials_file: Path, endpoints: GoogleEndpoints
    ) -> None:
        auth = GoogleTokenAuth(credentials_file, tmp_path / "absent.json")
        with _client(auth, endpoints) as client, pytest.raises(AuthError, match="not found"):
            client.get(API_URL)

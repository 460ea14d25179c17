"""Integration tests for the sync API used by the GUI shell."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from tests.conftest import TEST_VAULT_ID, create_test_client
from vaultsync.exceptions import AuthError, NetworkError
from vaultsync.filesystem.vault import Vault
from vaultsync.providers.remote_folder import RemoteFolderSyncProvider
from vaultsync.services.change_recorder import ChangeRecorder
from vaultsync.services.hashing import hash_bytes

if TYPE_CHECKING:
    from pathlib import Path

    from vaultsync.config import Settings
    from vaultsync.providers.base import PullResult


class BrokenProvider(RemoteFolderSyncProvider):
    """Folder provider whose pulls always fail with ``error``."""

    def __init__(self, root: Path, error: Exception) -> None:
        super().__init__(root, TEST_VAULT_ID)
        self.error = error

    def pull_history_events(self, cursor: str | None) -> PullResult:
        raise self.error


def _record(settings: Settings, rel: str, text: str) -> Vault:
    """Write a file into the vault and log it as a local edit."""
    vault = Vault.open(settings.vault_dir, cooldown_seconds=0)
    target = settings.vault_dir / rel
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(text, encoding="utf-8")
    ChangeRecorder(vault).rescan()
    return vault


class TestHealth:
    async def test_health(self, test_settings: Settings) -> None:
        async with create_test_client(test_settings) as client:
            resp = await client.get("/api/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        assert data["vault"] == "ok"
        assert data["provider"] == f"folder-{TEST_VAULT_ID}"


class TestRun:
    async def test_run_pushes_local_changes(
        self, test_settings: Settings, remote_root: Path
    ) -> None:
        _record(test_settings, "note.md", "hello")
        async with create_test_client(test_settings) as client:
            resp = await client.post("/api/sync/run", json={})
        assert resp.status_code == 200
        data = resp.json()
        assert data["pushed"] == 1
        assert data["conflicts_after"] == 0
        assert data["snapshot_id"] is not None

        remote = RemoteFolderSyncProvider(remote_root, TEST_VAULT_ID)
        assert [e.path for e in remote.pull_history_events(None).events] == ["note.md"]

    async def test_rejects_unknown_strategy(self, test_settings: Settings) -> None:
        async with create_test_client(test_settings) as client:
            resp = await client.post("/api/sync/run", json={"strategy": "newest"})
        assert resp.status_code == 422
        assert resp.json()["detail"][0]["field"] == "strategy"

    async def test_auth_error_maps_to_401(
        self, test_settings: Settings, remote_root: Path
    ) -> None:
        _record(test_settings, "note.md", "x")
        provider = BrokenProvider(remote_root, AuthError("token revoked"))
        async with create_test_client(test_settings, provider) as client:
            resp = await client.post("/api/sync/run", json={})
        assert resp.status_code == 401
        assert "token revoked" in resp.json()["detail"]

    async def test_provider_outage_maps_to_502(
        self, test_settings: Settings, remote_root: Path
    ) -> None:
        _record(test_settings, "note.md", "x")
        provider = BrokenProvider(remote_root, NetworkError("connection reset"))
        async with create_test_client(test_settings, provider) as client:
            resp = await client.post("/api/sync/run", json={})
        assert resp.status_code == 502
        assert resp.json()["detail"] == "Remote sync provider unavailable"


class TestStatus:
    async def test_reports_local_only_files(self, test_settings: Settings) -> None:
        _record(test_settings, "fresh.md", "new")
        async with create_test_client(test_settings) as client:
            resp = await client.get("/api/sync/status")
        assert resp.status_code == 200
        data = resp.json()
        assert data["comparisons"] == [
            {"path": "fresh.md", "status": "local_only", "conflict": None}
        ]
        assert data["conflicts"] == []

    async def test_reports_conflicts_and_decisions(self, test_settings: Settings) -> None:
        vault = _record(test_settings, "a.md", "mine")
        vault.states.upsert(
            "a.md",
            last_synced_hash=hash_bytes(b"base"),
            last_local_hash=hash_bytes(b"mine"),
            last_remote_hash=hash_bytes(b"theirs"),
        )
        vault.decisions.set("a.md", "remote")
        async with create_test_client(test_settings) as client:
            resp = await client.get("/api/sync/status")
        data = resp.json()
        assert data["conflicts"] == [
            {
                "path": "a.md",
                "type": "modified_modified",
                "local_hash": hash_bytes(b"mine").value,
                "remote_hash": hash_bytes(b"theirs").value,
            }
        ]
        assert data["decisions"][0]["strategy"] == "remote"


class TestDecisions:
    async def test_records_decision(self, test_settings: Settings) -> None:
        async with create_test_client(test_settings) as client:
            resp = await client.put(
                "/api/sync/decisions", json={"path": "notes/a.md", "strategy": "manual_merge"}
            )
        assert resp.status_code == 200
        assert resp.json()["strategy"] == "manual_merge"
        decision = Vault.open(test_settings.vault_dir).decisions.get("notes/a.md")
        assert decision is not None

    @pytest.mark.parametrize("path", ["../outside.md", ".vaultsync/state/x.json"])
    async def test_rejects_unsafe_paths(self, test_settings: Settings, path: str) -> None:
        async with create_test_client(test_settings) as client:
            resp = await client.put(
                "/api/sync/decisions", json={"path": path, "strategy": "local"}
            )
        assert resp.status_code == 400

    async def test_rejects_unknown_strategy(self, test_settings: Settings) -> None:
        async with create_test_client(test_settings) as client:
            resp = await client.put("/api/sync/decisions", json={"path": "a.md", "strategy": "x"})
        assert resp.status_code == 422


class TestMergeAndContent:
    async def test_merge_then_read_each_side(self, test_settings: Settings) -> None:
        vault = _record(test_settings, "a.md", "base")
        vault.states.converge("a.md", hash_bytes(b"base"))
        (test_settings.vault_dir / "a.md").write_text("mine", encoding="utf-8")
        ChangeRecorder(vault).rescan()
        vault.states.upsert(
            "a.md", last_local_hash=hash_bytes(b"mine"), last_remote_hash=hash_bytes(b"theirs")
        )

        async with create_test_client(test_settings) as client:
            base = await client.get("/api/sync/content", params={"path": "a.md", "side": "base"})
            assert base.status_code == 200
            assert base.content == b"base"

            resp = await client.post(
                "/api/sync/merge", json={"path": "a.md", "content": "merged"}
            )
            assert resp.status_code == 200
            data = resp.json()
            assert data["last_local_hash"] == hash_bytes(b"merged").value
            assert data["last_synced_hash"] == hash_bytes(b"theirs").value

            local = await client.get("/api/sync/content", params={"path": "a.md"})
            assert local.content == b"merged"

    async def test_missing_content_is_404(self, test_settings: Settings) -> None:
        async with create_test_client(test_settings) as client:
            resp = await client.get(
                "/api/sync/content", params={"path": "nope.md", "side": "remote"}
            )
        assert resp.status_code == 404

    async def test_content_rejects_traversal(self, test_settings: Settings) -> None:
        async with create_test_client(test_settings) as client:
            resp = await client.get("/api/sync/content", params={"path": "../secret.txt"})
        assert resp.status_code == 400

    async def test_merge_rejects_traversal(self, test_settings: Settings) -> None:
        async with create_test_client(test_settings) as client:
            resp = await client.post(
                "/api/sync/merge", json={"path": "../escape.md", "content": "x"}
            )
        assert resp.status_code == 400

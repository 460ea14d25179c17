"""Shared test fixtures for vaultsync."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING

import pytest
from httpx import ASGITransport, AsyncClient

from vaultsync.config import Settings
from vaultsync.filesystem.vault import Vault
from vaultsync.main import create_app
from vaultsync.providers.remote_folder import RemoteFolderSyncProvider
from vaultsync.schemas.state import ConflictStrategy
from vaultsync.services.change_recorder import ChangeRecorder
from vaultsync.services.retry import RetryPolicy
from vaultsync.services.sync_service import SyncRunSummary, SyncService

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Callable
    from pathlib import Path

    from vaultsync.providers.base import SyncProvider

logger = logging.getLogger(__name__)

TEST_VAULT_ID = "notes"


def no_sleep(_seconds: float) -> None:
    """Sleep replacement for retry loops under test."""


def fast_retry_policy(max_attempts: int = 3) -> RetryPolicy:
    return RetryPolicy(max_attempts=max_attempts, base_delay=0.0, random_source=lambda: 0.5)


def make_service(provider: SyncProvider) -> SyncService:
    return SyncService(
        provider,
        vault_id=TEST_VAULT_ID,
        apply_lock_cooldown_seconds=0,
        retry_policy=fast_retry_policy(),
        sleep=no_sleep,
    )


@dataclass
class VaultDevice:
    """One replica of the vault, as a single machine would run it.

    ``write`` and ``delete`` touch the working tree and then rescan, the way
    the watcher would record the edit.
    """

    root: Path
    service: SyncService

    @property
    def vault(self) -> Vault:
        return self.service.open_vault(self.root)

    @property
    def recorder(self) -> ChangeRecorder:
        return ChangeRecorder(self.vault, self.service.inline_text_max_bytes)

    def write(self, rel_path: str, content: str | bytes) -> None:
        target = self.root / rel_path
        target.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, str):
            target.write_text(content, encoding="utf-8")
        else:
            target.write_bytes(content)
        self.recorder.rescan()

    def delete(self, rel_path: str) -> None:
        (self.root / rel_path).unlink()
        self.recorder.rescan()

    def read(self, rel_path: str) -> str:
        return (self.root / rel_path).read_text(encoding="utf-8")

    def exists(self, rel_path: str) -> bool:
        return (self.root / rel_path).is_file()

    def sync(self, strategy: ConflictStrategy | str = ConflictStrategy.LOCAL) -> SyncRunSummary:
        self.recorder.rescan()
        return self.service.sync_once(self.root, strategy)


@asynccontextmanager
async def create_test_client(
    settings: Settings, provider: SyncProvider | None = None
) -> AsyncGenerator[AsyncClient]:
    """Create an HTTP test client with a fully initialized app.

    Manually performs the work of the application lifespan (provider, sync
    service, vault structure) because ASGITransport does not trigger it.
    """
    if provider is None:
        assert settings.remote_dir is not None
        provider = RemoteFolderSyncProvider(settings.remote_dir, settings.vault_id)
    app = create_app(settings, provider=provider)
    settings.vault_dir.mkdir(parents=True, exist_ok=True)
    app.state.sync_service.open_vault(settings.vault_dir).ensure_structure()

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.fixture
def vault_root(tmp_path: Path) -> Path:
    """Create an empty vault directory."""
    root = tmp_path / "vault"
    root.mkdir()
    return root


@pytest.fixture
def remote_root(tmp_path: Path) -> Path:
    """Directory standing in for the shared remote folder."""
    root = tmp_path / "remote"
    root.mkdir()
    return root


@pytest.fixture
def provider(remote_root: Path) -> RemoteFolderSyncProvider:
    return RemoteFolderSyncProvider(remote_root, TEST_VAULT_ID)


@pytest.fixture
def vault(vault_root: Path) -> Vault:
    """Vault stores with the control directory already created."""
    opened = Vault.open(vault_root, cooldown_seconds=0)
    opened.ensure_structure()
    return opened


@pytest.fixture
def make_device(tmp_path: Path, remote_root: Path) -> Callable[[str], VaultDevice]:
    """Factory for devices sharing one remote folder."""

    def factory(name: str) -> VaultDevice:
        root = tmp_path / name
        root.mkdir(exist_ok=True)
        provider = RemoteFolderSyncProvider(remote_root, TEST_VAULT_ID)
        return VaultDevice(root=root, service=make_service(provider))

    return factory


@pytest.fixture
def test_settings(vault_root: Path, remote_root: Path) -> Settings:
    """Create test settings with temporary paths."""
    return Settings(
        _env_file=None,
        debug=True,
        vault_dir=vault_root,
        vault_id=TEST_VAULT_ID,
        provider="folder",
        remote_dir=remote_root,
        apply_lock_cooldown_seconds=0,
        retry_max_attempts=2,
        retry_base_delay_seconds=0,
        retry_max_delay_seconds=0,
    )

"""Shared API dependencies: settings, sync service, vault stores."""

from __future__ import annotations

from fastapi import Request

from vaultsync.config import Settings
from vaultsync.filesystem.vault import Vault
from vaultsync.services.content_reader import VaultContentReader
from vaultsync.services.sync_service import SyncService


def get_settings(request: Request) -> Settings:
    """Get application settings from app state."""
    settings: Settings = request.app.state.settings
    return settings


def get_sync_service(request: Request) -> SyncService:
    """Get the sync service from app state."""
    service: SyncService = request.app.state.sync_service
    return service


def get_vault(request: Request) -> Vault:
    """Open the configured vault's stores for this request."""
    settings = get_settings(request)
    return get_sync_service(request).open_vault(settings.vault_dir)


def get_content_reader(request: Request) -> VaultContentReader:
    service = get_sync_service(request)
    return VaultContentReader(
        get_vault(request), service.provider, retry_policy=service.retry_policy
    )

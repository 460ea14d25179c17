"""Provider registry."""

from __future__ import annotations

from typing import TYPE_CHECKING

from vaultsync.providers.google_drive import GoogleDriveSyncProvider
from vaultsync.providers.remote_folder import RemoteFolderSyncProvider

if TYPE_CHECKING:
    from vaultsync.config import Settings
    from vaultsync.providers.base import SyncProvider

PROVIDERS: dict[str, type[RemoteFolderSyncProvider] | type[GoogleDriveSyncProvider]] = {
    "folder": RemoteFolderSyncProvider,
    "google-drive": GoogleDriveSyncProvider,
}


def create_provider(settings: Settings) -> SyncProvider:
    """Build the provider selected by ``settings.provider``.

    Raises ValueError if the configuration is incomplete.
    """
    settings.validate_runtime()
    if settings.provider == "folder":
        assert settings.remote_dir is not None
        return RemoteFolderSyncProvider(settings.remote_dir, settings.vault_id)
    if settings.provider == "google-drive":
        assert settings.google_credentials_file is not None
        assert settings.google_token_file is not None
        return GoogleDriveSyncProvider.from_files(
            settings.google_credentials_file,
            settings.google_token_file,
            settings.vault_id,
            app_folder=settings.google_app_folder,
        )
    msg = f"Unknown provider: {settings.provider!r}. Available: {list(PROVIDERS)}"
    raise ValueError(msg)


def list_providers() -> list[str]:
    """Return the names of the supported providers."""
    return list(PROVIDERS.keys())

"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CONTROL_DIR = ".vaultsync"


class Settings(BaseSettings):
    """vaultsync settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Core
    debug: bool = False

    # Vault
    vault_dir: Path = Path("./vault")
    vault_id: str = "default"
    control_dir_name: str = DEFAULT_CONTROL_DIR
    default_conflict_strategy: Literal["local", "remote", "manual_merge"] = "local"
    inline_text_max_bytes: int = Field(default=64 * 1024, ge=0)
    apply_lock_cooldown_seconds: float = Field(default=1.5, ge=0)

    # Remote
    provider: Literal["folder", "google-drive"] = "folder"
    remote_dir: Path | None = None
    google_credentials_file: Path | None = None
    google_token_file: Path | None = None
    google_app_folder: str = "vaultsync"

    # Retry
    retry_max_attempts: int = Field(default=5, ge=1)
    retry_base_delay_seconds: float = Field(default=0.3, ge=0)
    retry_max_delay_seconds: float = Field(default=6.0, ge=0)
    retry_jitter_ratio: float = Field(default=0.2, ge=0, le=1)

    # Server
    host: str = "127.0.0.1"
    port: int = Field(default=8765, ge=1, le=65535)

    def validate_runtime(self) -> None:
        """Validate that the configured provider has what it needs."""
        violations: list[str] = []
        if self.provider == "folder" and self.remote_dir is None:
            violations.append("REMOTE_DIR must be set for the folder provider")
        if self.provider == "google-drive":
            if self.google_credentials_file is None:
                violations.append("GOOGLE_CREDENTIALS_FILE must be set for google-drive")
            if self.google_token_file is None:
                violations.append("GOOGLE_TOKEN_FILE must be set for google-drive")
        if not self.vault_id.strip() or "/" in self.vault_id:
            violations.append("VAULT_ID must be a non-empty name without '/'")
        if self.retry_max_delay_seconds < self.retry_base_delay_seconds:
            violations.append("RETRY_MAX_DELAY_SECONDS must be >= RETRY_BASE_DELAY_SECONDS")

        if violations:
            joined = "; ".join(violations)
            raise ValueError(f"Invalid sync configuration: {joined}")

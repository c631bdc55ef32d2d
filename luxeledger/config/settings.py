"""
Configuration Management for Luxe Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Every on-disk location, capacity limit and strategy choice (blob backend,
crypto fallback) is an explicit setting rather than something detected at
runtime.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# ~4.8 MB soft cap for the fast boot mirror
DEFAULT_MIRROR_SOFT_CAP_BYTES = int(4.8 * 1024 * 1024)


class StorageSettings(BaseSettings):
    """Entity snapshot storage configuration (durable backend + mirror)."""

    model_config = SettingsConfigDict(
        env_prefix="LUXELEDGER_STORAGE_",
        extra="ignore"
    )

    data_dir: Path = Field(
        default=Path.home() / ".luxeledger",
        description="Directory holding every persisted file"
    )
    durable_filename: str = Field(
        default="luxeLedgerData.json",
        description="File name of the durable snapshot inside data_dir"
    )
    mirror_filename: str = Field(
        default="luxeLedgerData.mirror.json",
        description="File name of the fast boot mirror inside data_dir"
    )
    mirror_soft_cap_bytes: int = Field(
        default=DEFAULT_MIRROR_SOFT_CAP_BYTES,
        ge=0,
        description="Serialized snapshots at or above this size are never mirrored"
    )
    startup_cache_enabled: bool = Field(
        default=True,
        description="Global switch for the fast boot mirror"
    )
    lock_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="How long a durable write waits for the file lock"
    )

    @property
    def durable_path(self) -> Path:
        return self.data_dir / self.durable_filename

    @property
    def mirror_path(self) -> Path:
        return self.data_dir / self.mirror_filename


class AttachmentSettings(BaseSettings):
    """Attachment store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LUXELEDGER_ATTACHMENTS_",
        extra="ignore"
    )

    database_filename: str = Field(
        default="inventory-v1.sqlite3",
        description="SQLite metadata database inside the storage data_dir"
    )
    blob_backend: Literal["embedded", "external"] = Field(
        default="embedded",
        description="Where attachment bytes live: inside the database or as external files"
    )
    files_dirname: str = Field(
        default="files",
        description="Root directory (inside data_dir) for the external blob backend"
    )
    thumbnail_max_px: int = Field(
        default=320,
        ge=16,
        le=4096,
        description="Maximum thumbnail width/height in pixels"
    )
    thumbnail_quality: int = Field(
        default=82,
        ge=1,
        le=95,
        description="JPEG quality for generated thumbnails"
    )


class CryptoSettings(BaseSettings):
    """Encryption service configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LUXELEDGER_CRYPTO_",
        extra="ignore"
    )

    kdf_iterations: int = Field(
        default=100_000,
        ge=1,
        description="PBKDF2-HMAC-SHA256 iteration count"
    )
    allow_insecure_fallback: bool = Field(
        default=False,
        description=(
            "Permit the reversible, NON-SECURE obfuscation path when "
            "cryptographic primitives are unavailable at startup"
        )
    )


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        description="Root log level"
    )
    log_json: bool = Field(
        default=True,
        description="Render log lines as JSON (False = console renderer)"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @property
    def storage(self) -> StorageSettings:
        return StorageSettings()

    @property
    def attachments(self) -> AttachmentSettings:
        return AttachmentSettings()

    @property
    def crypto(self) -> CryptoSettings:
        return CryptoSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    for name in ("storage", "attachments", "crypto", "app"):
        try:
            _ = getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results

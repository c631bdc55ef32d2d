"""Configuration package."""

from luxeledger.config.settings import (
    DEFAULT_MIRROR_SOFT_CAP_BYTES,
    AppSettings,
    AttachmentSettings,
    CryptoSettings,
    Settings,
    StorageSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "DEFAULT_MIRROR_SOFT_CAP_BYTES",
    "AppSettings",
    "AttachmentSettings",
    "CryptoSettings",
    "Settings",
    "StorageSettings",
    "get_settings",
    "validate_all_settings",
]

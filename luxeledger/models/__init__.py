"""
Data Models Package

This package contains the Pydantic models and schema defaults used by the
Luxe Ledger core.
"""

from luxeledger.models.attachment import (
    BlobLocator,
    FileRecord,
    Folder,
    FolderPathEntry,
    Item,
    Thumbnail,
)
from luxeledger.models.crypto import (
    EncryptedEnvelope,
    PasswordStrength,
    is_encrypted_payload,
)
from luxeledger.models.record import Record
from luxeledger.models.schema import (
    FINANCIAL_KEYS,
    METADATA_KEYS,
    VAULT_KEYS,
    collection_names,
    default_schema,
)

__all__ = [
    # Attachment models
    "BlobLocator",
    "FileRecord",
    "Folder",
    "FolderPathEntry",
    "Item",
    "Thumbnail",
    # Crypto models
    "EncryptedEnvelope",
    "PasswordStrength",
    "is_encrypted_payload",
    # Entity records
    "Record",
    # Schema
    "FINANCIAL_KEYS",
    "METADATA_KEYS",
    "VAULT_KEYS",
    "collection_names",
    "default_schema",
]

"""Services package."""

from luxeledger.services.attachments import (
    AttachmentRepository,
    AttachmentStore,
    BlobNotFoundError,
    EmbeddedBlobBackend,
    ExternalFileBlobBackend,
    FolderCycleError,
    NotEmptyError,
    ThumbnailError,
    URLCache,
)
from luxeledger.services.crypto import (
    CryptoError,
    CryptoService,
    CryptoUnavailableError,
    DecryptionFailedError,
    PasswordRequiredError,
)
from luxeledger.services.storage import (
    CapacityExceededError,
    CorruptDataError,
    EntityStore,
    FileMirror,
    InMemoryDurableBackend,
    InMemoryMirror,
    JsonFileDurableBackend,
    NotFoundError,
    StorageError,
)

__all__ = [
    # Attachment services
    "AttachmentRepository",
    "AttachmentStore",
    "BlobNotFoundError",
    "EmbeddedBlobBackend",
    "ExternalFileBlobBackend",
    "FolderCycleError",
    "NotEmptyError",
    "ThumbnailError",
    "URLCache",
    # Crypto services
    "CryptoError",
    "CryptoService",
    "CryptoUnavailableError",
    "DecryptionFailedError",
    "PasswordRequiredError",
    # Storage services
    "CapacityExceededError",
    "CorruptDataError",
    "EntityStore",
    "FileMirror",
    "InMemoryDurableBackend",
    "InMemoryMirror",
    "JsonFileDurableBackend",
    "NotFoundError",
    "StorageError",
]

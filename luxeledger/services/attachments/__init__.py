"""
Attachment storage: folders, items, files and their bytes.
"""

from luxeledger.services.attachments.blob_backends import (
    EmbeddedBlobBackend,
    ExternalFileBlobBackend,
    FileSystemBridge,
    safe_file_name,
)
from luxeledger.services.attachments.interface import (
    BlobBackend,
    BlobNotFoundError,
    FolderCycleError,
    NotEmptyError,
    PlatformBridge,
    StoredBlob,
)
from luxeledger.services.attachments.repository import AttachmentRepository
from luxeledger.services.attachments.store import ALL, AttachmentStore
from luxeledger.services.attachments.thumbnails import ThumbnailError, make_thumbnail
from luxeledger.services.attachments.url_cache import URLCache

__all__ = [
    "ALL",
    "AttachmentStore",
    "AttachmentRepository",
    "BlobBackend",
    "StoredBlob",
    "PlatformBridge",
    "EmbeddedBlobBackend",
    "ExternalFileBlobBackend",
    "FileSystemBridge",
    "safe_file_name",
    "URLCache",
    "make_thumbnail",
    "BlobNotFoundError",
    "FolderCycleError",
    "NotEmptyError",
    "ThumbnailError",
]

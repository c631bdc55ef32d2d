"""
Attachment Storage Interfaces

DESIGN DECISION: Physical storage of attachment bytes is a strategy.
- EmbeddedBlobBackend keeps the bytes inside the metadata database
- ExternalFileBlobBackend writes files to disk and keeps only a locator

The backend is chosen by configuration, never detected at runtime.
A PlatformBridge turns a locator into a URL the platform can load
directly, used when the bytes cannot be read back.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from luxeledger.models.attachment import BlobLocator, FileRecord
from luxeledger.services.storage.interface import StorageError


@dataclass(frozen=True)
class StoredBlob:
    """
    Result of a blob backend write.

    inline holds the bytes the metadata store must keep in the file row
    (embedded backend); it is None when the bytes live elsewhere.
    """
    locator: BlobLocator
    size: int
    inline: Optional[bytes] = None


class BlobBackend(ABC):
    """Physical storage for attachment bytes."""

    kind: str = ""

    @abstractmethod
    async def write(
        self,
        item_id: str,
        file_id: str,
        name: str,
        mime: str,
        data: bytes,
    ) -> StoredBlob:
        """
        Store the bytes of a new file.

        Returns:
            The locator and size to record in the file metadata

        Raises:
            StorageError: If the bytes cannot be written
        """
        pass

    @abstractmethod
    async def read(self, record: FileRecord) -> bytes:
        """
        Read the bytes of a stored file.

        Raises:
            BlobNotFoundError: If the bytes are missing
            StorageError: If the read fails
        """
        pass

    @abstractmethod
    async def remove(self, record: FileRecord) -> None:
        """Delete the bytes of a file. Missing bytes are ignored."""
        pass


class PlatformBridge(ABC):
    """Resolves a locator to a URL the platform can load without our help."""

    @abstractmethod
    def resolve(self, locator: BlobLocator) -> Optional[str]:
        """
        Returns:
            A loadable URL, or None if the locator cannot be resolved
        """
        pass


class BlobNotFoundError(StorageError):
    """The bytes of a file are missing from its backend."""
    pass


class NotEmptyError(StorageError):
    """Non-cascading delete of a folder that still has children."""
    pass


class FolderCycleError(StorageError):
    """A folder move would make a folder its own ancestor."""
    pass

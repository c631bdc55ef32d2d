"""
Blob backends for attachment bytes.

EmbeddedBlobBackend:
    Bytes go into the metadata database row. One file to back up, no
    path handling, but the database grows with every attachment.

ExternalFileBlobBackend:
    Bytes go to files under a root directory at
    inventory/{item_id}/{file_id}__{name}. The database stays small and
    files can be opened directly by the platform (see FileSystemBridge).
"""

import asyncio
import re
from pathlib import Path
from typing import Optional, Union

from luxeledger.logs import get_logger
from luxeledger.models.attachment import BlobLocator, FileRecord
from luxeledger.services.attachments.interface import (
    BlobBackend,
    BlobNotFoundError,
    PlatformBridge,
    StoredBlob,
)
from luxeledger.services.attachments.repository import AttachmentRepository
from luxeledger.services.storage.interface import StorageError


logger = get_logger(__name__)

BLOB_PREFIX = "inventory"


def safe_file_name(name: str) -> str:
    """Strip characters that are illegal in paths; spaces become hyphens."""
    slug = re.sub(r'[<>:"/\\|?*\n\r\t\x00]', "", name or "")
    slug = slug.strip().replace(" ", "-").lstrip(".")
    return slug or "file"


class EmbeddedBlobBackend(BlobBackend):
    """Keeps bytes inline in the file row of the metadata repository."""

    kind = "embedded"

    def __init__(self, repository: AttachmentRepository):
        self._repository = repository

    async def write(
        self,
        item_id: str,
        file_id: str,
        name: str,
        mime: str,
        data: bytes,
    ) -> StoredBlob:
        return StoredBlob(
            locator=BlobLocator(kind="embedded"),
            size=len(data),
            inline=bytes(data),
        )

    async def read(self, record: FileRecord) -> bytes:
        data = await asyncio.to_thread(self._repository.read_blob, record.id)
        if data is None:
            raise BlobNotFoundError(f"No embedded bytes for file {record.id}")
        return data

    async def remove(self, record: FileRecord) -> None:
        # Bytes live in the file row and go with it
        return None


class ExternalFileBlobBackend(BlobBackend):
    """Writes each file's bytes to its own file under `root`."""

    kind = "external"

    def __init__(self, root: Union[Path, str]):
        self._root = Path(root).expanduser().resolve()

    @property
    def root(self) -> Path:
        return self._root

    def relative_path(self, item_id: str, file_id: str, name: str) -> str:
        return f"{BLOB_PREFIX}/{item_id}/{file_id}__{safe_file_name(name)}"

    def resolve_path(self, uri: str) -> Path:
        """
        Absolute path of a backend-relative uri.

        Raises:
            StorageError: If the uri points outside the blob root
        """
        path = (self._root / uri).resolve()
        if path != self._root and self._root not in path.parents:
            raise StorageError(f"Blob path escapes the blob root: {uri}")
        return path

    async def write(
        self,
        item_id: str,
        file_id: str,
        name: str,
        mime: str,
        data: bytes,
    ) -> StoredBlob:
        uri = self.relative_path(item_id, file_id, name)
        path = self.resolve_path(uri)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)

        try:
            await asyncio.to_thread(_write)
        except OSError as e:
            raise StorageError(f"Failed to write blob {uri}: {e}") from e

        return StoredBlob(locator=BlobLocator(kind="external", uri=uri), size=len(data))

    async def read(self, record: FileRecord) -> bytes:
        path = self._path_of(record)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError as e:
            raise BlobNotFoundError(f"Blob missing for file {record.id}") from e
        except OSError as e:
            raise StorageError(f"Failed to read blob for file {record.id}: {e}") from e

    async def remove(self, record: FileRecord) -> None:
        path = self._path_of(record)

        def _remove() -> None:
            path.unlink(missing_ok=True)
            # Drop the per-item directory once it is empty
            try:
                path.parent.rmdir()
            except OSError:
                pass

        try:
            await asyncio.to_thread(_remove)
        except OSError as e:
            logger.warning("blob_remove_failed", file_id=record.id, error=str(e))

    def _path_of(self, record: FileRecord) -> Path:
        if record.locator.kind != "external" or not record.locator.uri:
            raise BlobNotFoundError(f"File {record.id} has no external locator")
        return self.resolve_path(record.locator.uri)


class FileSystemBridge(PlatformBridge):
    """Resolves external locators to file:// URLs when the file exists."""

    def __init__(self, root: Union[Path, str]):
        self._root = Path(root).expanduser().resolve()

    def resolve(self, locator: BlobLocator) -> Optional[str]:
        if locator.kind != "external" or not locator.uri:
            return None
        path = (self._root / locator.uri).resolve()
        if self._root not in path.parents or not path.is_file():
            return None
        return path.as_uri()

"""
Attachment Store

Hierarchical folders -> items -> files, independent of the entity
snapshot.

DESIGN DECISION: Metadata and bytes are separate concerns.
- AttachmentRepository (SQLite) owns folders, items and file metadata
- A BlobBackend owns the bytes; new files go to the configured backend,
  existing files are always read through the backend named in their
  locator, so switching the setting never orphans old files
- URLCache owns display URLs; a URL is minted once per file and revoked
  only when the file is deleted or the store is cleared

URL resolution and revocation of one file are serialized by a per-file
lock: a URL is never minted for a file whose delete has already revoked.

Deletes cascade: folder -> descendant folders -> items -> files -> bytes.
Metadata rows of one delete go in a single SQLite transaction; bytes of
external blobs are removed after the rows.

Repository queries run in a worker thread, like blob I/O.

TRADEOFFS:
- Removing external bytes after the rows can leave an orphan file if the
  process dies in between, never a row without bytes
- folder_sizes() reads every size on each call instead of maintaining
  running totals, keeping writes simple
"""

import asyncio
import mimetypes
import sqlite3
from collections import defaultdict
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any, Callable, Optional, TypeVar, Union

from luxeledger.config import AttachmentSettings
from luxeledger.logs import get_logger
from luxeledger.models.attachment import FileRecord, Folder, FolderPathEntry, Item
from luxeledger.services.attachments.blob_backends import (
    EmbeddedBlobBackend,
    ExternalFileBlobBackend,
    FileSystemBridge,
)
from luxeledger.services.attachments.interface import (
    BlobBackend,
    FolderCycleError,
    NotEmptyError,
    PlatformBridge,
)
from luxeledger.services.attachments.repository import AttachmentRepository
from luxeledger.services.attachments.thumbnails import (
    DEFAULT_MAX_PX,
    DEFAULT_QUALITY,
    make_thumbnail,
)
from luxeledger.services.attachments.url_cache import URLCache
from luxeledger.services.storage.interface import (
    CorruptDataError,
    NotFoundError,
    StorageError,
)
from luxeledger.utils.ids import new_id
from luxeledger.utils.timestamps import now_iso, now_iso_after


logger = get_logger(__name__)

DEFAULT_MIME = "application/octet-stream"
EXPORT_VERSION = 1

T = TypeVar("T")


class _AllFolders:
    """Sentinel: list items of every folder."""

    def __repr__(self) -> str:
        return "ALL"


ALL = _AllFolders()


class AttachmentStore:
    """Async facade over folders, items, files and their bytes."""

    def __init__(
        self,
        repository: AttachmentRepository,
        backend: Optional[BlobBackend] = None,
        bridge: Optional[PlatformBridge] = None,
        url_cache: Optional[URLCache] = None,
        *,
        readers: Iterable[BlobBackend] = (),
        thumbnail_max_px: int = DEFAULT_MAX_PX,
        thumbnail_quality: int = DEFAULT_QUALITY,
    ):
        """
        Args:
            repository: Metadata store
            backend: Backend for new files (embedded when omitted)
            bridge: Fallback resolver for display URLs
            url_cache: Display URL cache (a private one when omitted)
            readers: Extra backends for reading and removing files stored
                under another kind than `backend`
            thumbnail_max_px: Longest side of generated thumbnails
            thumbnail_quality: JPEG quality of generated thumbnails
        """
        self._repository = repository
        embedded = EmbeddedBlobBackend(repository)
        self._backend = backend or embedded
        self._backends: dict[str, BlobBackend] = {embedded.kind: embedded}
        for reader in readers:
            self._backends[reader.kind] = reader
        self._backends[self._backend.kind] = self._backend
        self._bridge = bridge
        self._urls = url_cache or URLCache()
        self._file_locks: dict[str, asyncio.Lock] = {}
        self._thumbnail_max_px = thumbnail_max_px
        self._thumbnail_quality = thumbnail_quality

    @classmethod
    def from_settings(
        cls,
        settings: AttachmentSettings,
        data_dir: Union[Path, str],
    ) -> "AttachmentStore":
        """
        Build a store under `data_dir` using the configured blob backend.

        Files kept under the files directory stay readable whichever
        backend is configured for new files.
        """
        data_dir = Path(data_dir).expanduser()
        repository = AttachmentRepository(data_dir / settings.database_filename)

        files_root = data_dir / settings.files_dirname
        external = ExternalFileBlobBackend(files_root)
        backend: BlobBackend
        if settings.blob_backend == "external":
            backend = external
        else:
            backend = EmbeddedBlobBackend(repository)

        logger.info("attachment_store_opened", blob_backend=backend.kind)
        return cls(
            repository,
            backend,
            FileSystemBridge(files_root),
            readers=[external],
            thumbnail_max_px=settings.thumbnail_max_px,
            thumbnail_quality=settings.thumbnail_quality,
        )

    @property
    def url_cache(self) -> URLCache:
        return self._urls

    # =========================================================================
    # ITEMS
    # =========================================================================

    async def list_items(self, folder_id: Any = ALL) -> list[Item]:
        """All items, or the items directly in `folder_id` (None = root)."""
        if folder_id is ALL:
            return await self._run(self._repository.list_all_items)
        return await self._run(self._repository.list_items, folder_id)

    async def get_item(self, item_id: str) -> Optional[Item]:
        return await self._run(self._repository.get_item, item_id)

    async def save_item(self, item: Union[Item, Mapping[str, Any]]) -> Item:
        """
        Insert or update an item.

        createdAt is kept from the stored item; updatedAt always moves
        forward.

        Raises:
            NotFoundError: If the item points at an unknown folder
        """
        if not isinstance(item, Item):
            item = Item.model_validate(dict(item))
        await self._require_folder(item.folder_id)

        existing = await self._run(self._repository.get_item, item.id)
        if existing is not None:
            updated_at = now_iso_after(existing.updated_at, existing.created_at)
            item = item.model_copy(update={
                "created_at": existing.created_at,
                "updated_at": updated_at,
            })
        else:
            now = now_iso()
            item = item.model_copy(update={"created_at": now, "updated_at": now})

        await self._run(self._repository.upsert_item, item)
        return item

    async def move_item(self, item_id: str, target_folder_id: Optional[str]) -> Item:
        """
        Move an item to another folder or to root.

        Raises:
            NotFoundError: If the item or the target folder does not exist
        """
        item = await self._run(self._repository.get_item, item_id)
        if item is None:
            raise NotFoundError(f"Item {item_id} not found")
        await self._require_folder(target_folder_id)

        moved = item.model_copy(update={
            "folder_id": target_folder_id,
            "updated_at": now_iso_after(item.updated_at, item.created_at),
        })
        await self._run(self._repository.upsert_item, moved)
        return moved

    async def delete_item(self, item_id: str) -> None:
        """Delete an item and all its files. Unknown ids are ignored."""
        if await self._run(self._repository.get_item, item_id) is None:
            return
        await self._delete_items_and_files([item_id], folder_ids=())

    # =========================================================================
    # FILES
    # =========================================================================

    async def save_file_blob(
        self,
        item_id: str,
        data: bytes,
        name: str,
        mime: Optional[str] = None,
    ) -> FileRecord:
        """
        Store bytes as a new file of an item.

        Raises:
            NotFoundError: If the item does not exist
            StorageError: If the backend cannot store the bytes
        """
        if await self._run(self._repository.get_item, item_id) is None:
            raise NotFoundError(f"Item {item_id} not found")

        mime = mime or mimetypes.guess_type(name)[0] or DEFAULT_MIME
        file_id = new_id()
        stored = await self._backend.write(item_id, file_id, name, mime, bytes(data))
        record = FileRecord(
            id=file_id,
            item_id=item_id,
            name=name,
            mime=mime,
            size=stored.size,
            locator=stored.locator,
        )

        try:
            await self._run(self._repository.insert_file, record, stored.inline)
        except sqlite3.Error as e:
            await self._backend.remove(record)
            raise StorageError(f"Failed to record file {name}: {e}") from e

        logger.info(
            "file_saved",
            file_id=file_id,
            item_id=item_id,
            size=record.size,
            backend=record.locator.kind,
        )
        return record

    async def attach_image(
        self,
        item_id: str,
        data: bytes,
        name: str,
        mime: Optional[str] = None,
    ) -> tuple[Item, FileRecord]:
        """
        Store an image as a file and append its thumbnail to the item.

        Raises:
            NotFoundError: If the item does not exist
            ThumbnailError: If the bytes are not a readable image
        """
        if await self._run(self._repository.get_item, item_id) is None:
            raise NotFoundError(f"Item {item_id} not found")

        thumbnail = await asyncio.to_thread(
            make_thumbnail,
            bytes(data),
            name,
            self._thumbnail_max_px,
            self._thumbnail_quality,
        )
        record = await self.save_file_blob(item_id, data, name, mime)

        item = await self._run(self._repository.get_item, item_id)
        updated = item.model_copy(update={
            "images": [*item.images, thumbnail],
            "updated_at": now_iso_after(item.updated_at, item.created_at),
        })
        await self._run(self._repository.upsert_item, updated)
        return updated, record

    async def list_files(self, item_id: str) -> list[FileRecord]:
        return await self._run(self._repository.list_files, item_id)

    async def get_file(self, file_id: str) -> Optional[FileRecord]:
        return await self._run(self._repository.get_file, file_id)

    async def read_file(self, file_id: str) -> Optional[bytes]:
        """Bytes of a file, or None if the file or its bytes are missing."""
        record = await self._run(self._repository.get_file, file_id)
        if record is None:
            return None
        try:
            return await self._backend_for(record).read(record)
        except StorageError as e:
            logger.warning("file_read_failed", file_id=file_id, error=str(e))
            return None

    async def get_file_url(self, file_id: str) -> Optional[str]:
        """
        A display URL for a file.

        Resolution order: cached URL, then a URL minted over the bytes
        read from the backend, then the platform bridge.

        Returns:
            The URL, or None for unknown files or unresolvable bytes
        """
        async with self._file_lock(file_id):
            record = await self._run(self._repository.get_file, file_id)
            if record is not None:
                return await self._resolve_url(record)
        self._file_locks.pop(file_id, None)
        return None

    async def delete_file(self, file_id: str) -> None:
        """
        Delete a file's metadata and bytes and revoke its URL.

        Raises:
            StorageError: If no backend can remove the file's bytes; the
                file is left in place
        """
        async with self._file_lock(file_id):
            try:
                record = await self._run(self._repository.get_file, file_id)
                if record is not None:
                    backend = self._backend_for(record)
                    await self._run(self._repository.delete_file, file_id)
                    await backend.remove(record)
            finally:
                self._urls.revoke(file_id)
        self._file_locks.pop(file_id, None)

    # =========================================================================
    # FOLDERS
    # =========================================================================

    async def list_folders(self, parent_id: Optional[str] = None) -> list[Folder]:
        return await self._run(self._repository.list_folders, parent_id)

    async def list_all_folders(self) -> list[Folder]:
        return await self._run(self._repository.list_all_folders)

    async def get_folder(self, folder_id: str) -> Optional[Folder]:
        return await self._run(self._repository.get_folder, folder_id)

    async def create_folder(self, name: str, parent_id: Optional[str] = None) -> Folder:
        """
        Raises:
            NotFoundError: If the parent folder does not exist
        """
        await self._require_folder(parent_id)
        folder = Folder(name=name, parent_id=parent_id)
        await self._run(self._repository.upsert_folder, folder)
        return folder

    async def rename_folder(self, folder_id: str, name: str) -> Folder:
        folder = await self._get_folder_or_raise(folder_id)
        renamed = Folder.model_validate({
            **folder.model_dump(),
            "name": name,
            "updated_at": now_iso_after(folder.updated_at, folder.created_at),
        })
        await self._run(self._repository.upsert_folder, renamed)
        return renamed

    async def move_folder(self, folder_id: str, new_parent_id: Optional[str]) -> Folder:
        """
        Reparent a folder.

        Raises:
            NotFoundError: If the folder or the new parent does not exist
            FolderCycleError: If the new parent is the folder itself or one
                of its descendants
        """
        folder = await self._get_folder_or_raise(folder_id)
        if new_parent_id == folder_id:
            raise FolderCycleError(f"Folder {folder_id} cannot be its own parent")
        await self._require_folder(new_parent_id)

        parents = await self._run(self._repository.folder_parents)
        seen: set[str] = set()
        ancestor = new_parent_id
        while ancestor is not None and ancestor not in seen:
            if ancestor == folder_id:
                raise FolderCycleError(
                    f"Folder {folder_id} cannot move under its descendant {new_parent_id}"
                )
            seen.add(ancestor)
            ancestor = parents.get(ancestor)

        moved = folder.model_copy(update={
            "parent_id": new_parent_id,
            "updated_at": now_iso_after(folder.updated_at, folder.created_at),
        })
        await self._run(self._repository.upsert_folder, moved)
        return moved

    async def delete_folder(self, folder_id: str, cascade: bool = True) -> None:
        """
        Delete a folder.

        cascade=True deletes descendant folders (deepest first), then every
        item in the subtree with its files, then the folder. cascade=False
        refuses when the folder has any child folder or item.

        Unknown ids are ignored.

        Raises:
            NotEmptyError: Non-cascading delete of a non-empty folder
        """
        if await self._run(self._repository.get_folder, folder_id) is None:
            return

        if not cascade:
            child_folders = await self._run(self._repository.list_folders, folder_id)
            child_items = await self._run(self._repository.list_items, folder_id)
            if child_folders or child_items:
                raise NotEmptyError(f"Folder {folder_id} is not empty")
            await self._run(self._repository.delete_tree, [folder_id], ())
            return

        children: dict[Optional[str], list[str]] = defaultdict(list)
        parents = await self._run(self._repository.folder_parents)
        for child_id, parent_id in parents.items():
            children[parent_id].append(child_id)

        post_order: list[str] = []
        visited: set[str] = set()

        def walk(node: str) -> None:
            visited.add(node)
            for child in children.get(node, []):
                if child not in visited:
                    walk(child)
            post_order.append(node)

        walk(folder_id)

        subtree = set(post_order)
        item_folders = await self._run(self._repository.item_folders)
        item_ids = [
            item_id
            for item_id, item_folder in item_folders.items()
            if item_folder in subtree
        ]
        await self._delete_items_and_files(item_ids, folder_ids=post_order)
        logger.info(
            "folder_deleted",
            folder_id=folder_id,
            folders=len(post_order),
            items=len(item_ids),
        )

    async def get_folder_path(self, folder_id: Optional[str]) -> list[FolderPathEntry]:
        """Breadcrumbs from the root down to `folder_id`."""
        path: list[FolderPathEntry] = []
        seen: set[str] = set()
        current = folder_id
        while current is not None and current not in seen:
            seen.add(current)
            folder = await self._run(self._repository.get_folder, current)
            if folder is None:
                break
            path.append(FolderPathEntry(id=folder.id, name=folder.name, parent_id=folder.parent_id))
            current = folder.parent_id
        path.reverse()
        return path

    async def folder_sizes(self) -> dict[Optional[str], int]:
        """
        Recursive byte totals per folder.

        The None key holds the total of the whole tree, root items
        included. Each folder's subtree is summed once.
        """
        item_bytes = await self._run(self._repository.item_file_sizes)
        folder_parents = await self._run(self._repository.folder_parents)
        item_folders = await self._run(self._repository.item_folders)

        own: dict[Optional[str], int] = defaultdict(int)
        for item_id, folder_id in item_folders.items():
            if folder_id is not None and folder_id not in folder_parents:
                folder_id = None
            own[folder_id] += item_bytes.get(item_id, 0)

        children: dict[Optional[str], list[str]] = defaultdict(list)
        for folder_id, parent_id in folder_parents.items():
            # Folders whose parent is gone are counted at root
            if parent_id is not None and parent_id not in folder_parents:
                parent_id = None
            children[parent_id].append(folder_id)

        totals: dict[Optional[str], int] = {}

        def total(node: Optional[str]) -> int:
            if node in totals:
                return totals[node]
            totals[node] = 0
            value = own.get(node, 0) + sum(total(child) for child in children.get(node, []))
            totals[node] = value
            return value

        total(None)
        for folder_id in folder_parents:
            total(folder_id)
        return totals

    # =========================================================================
    # BULK
    # =========================================================================

    async def export_json(self) -> dict[str, Any]:
        """Metadata export. Bytes are not included."""
        items = await self._run(self._repository.list_all_items)
        folders = await self._run(self._repository.list_all_folders)
        files = await self._run(self._repository.list_all_files)
        return {
            "version": EXPORT_VERSION,
            "items": [item.to_dict() for item in items],
            "folders": [folder.to_dict() for folder in folders],
            "filesMeta": [f.to_meta_dict() for f in files],
        }

    async def import_json(
        self,
        data: Mapping[str, Any],
        replace: bool = False,
    ) -> dict[str, int]:
        """
        Import folders and items from export_json() output.

        replace=True clears everything first; otherwise records are upserted
        by id. File metadata is not imported since the bytes are not part
        of the export.

        Raises:
            CorruptDataError: If `data` is not an object or a record is invalid
        """
        if not isinstance(data, Mapping):
            raise CorruptDataError("Invalid import data")

        raw_items = data.get("items")
        raw_folders = data.get("folders")
        try:
            folders = [
                Folder.model_validate(f)
                for f in (raw_folders if isinstance(raw_folders, list) else [])
            ]
            items = [
                Item.model_validate(i)
                for i in (raw_items if isinstance(raw_items, list) else [])
            ]
        except ValueError as e:
            raise CorruptDataError(f"Invalid import record: {e}") from e

        if replace:
            await self.clear_all()
        await self._run(self._repository.merge_all, folders, items)

        logger.info("attachments_imported", folders=len(folders), items=len(items), replace=replace)
        return {"importedItems": len(items), "importedFolders": len(folders)}

    async def clear_all(self) -> None:
        """Delete every row and external blob and revoke every URL."""
        files = await self._run(self._repository.list_all_files)
        await self._run(self._repository.clear_all)
        await self._remove_blobs(files)
        await self._revoke_all(files)
        self._urls.clear()

    async def close(self) -> None:
        self._urls.clear()
        self._file_locks.clear()
        self._repository.close()

    # =========================================================================
    # HELPERS
    # =========================================================================

    @staticmethod
    async def _run(func: Callable[..., T], *args: Any) -> T:
        return await asyncio.to_thread(func, *args)

    def _file_lock(self, file_id: str) -> asyncio.Lock:
        lock = self._file_locks.get(file_id)
        if lock is None:
            lock = self._file_locks[file_id] = asyncio.Lock()
        return lock

    async def _resolve_url(self, record: FileRecord) -> Optional[str]:
        # Caller holds the file's lock
        cached = self._urls.get(record.id)
        if cached is not None:
            return cached

        try:
            data = await self._backend_for(record).read(record)
            return self._urls.mint(record.id, data, record.mime)
        except StorageError as e:
            logger.info("file_url_read_failed", file_id=record.id, error=str(e))

        if self._bridge is not None:
            url = self._bridge.resolve(record.locator)
            if url:
                return self._urls.remember(record.id, url)

        logger.warning("file_url_unresolved", file_id=record.id)
        return None

    def _backend_for(self, record: FileRecord) -> BlobBackend:
        backend = self._backends.get(record.locator.kind)
        if backend is None:
            raise StorageError(
                f"No blob backend for {record.locator.kind!r} file {record.id}"
            )
        return backend

    async def _require_folder(self, folder_id: Optional[str]) -> None:
        if folder_id is None:
            return
        if await self._run(self._repository.get_folder, folder_id) is None:
            raise NotFoundError(f"Folder {folder_id} not found")

    async def _get_folder_or_raise(self, folder_id: str) -> Folder:
        folder = await self._run(self._repository.get_folder, folder_id)
        if folder is None:
            raise NotFoundError(f"Folder {folder_id} not found")
        return folder

    async def _delete_items_and_files(
        self,
        item_ids: Iterable[str],
        folder_ids: Iterable[str],
    ) -> None:
        item_ids = list(item_ids)
        files: list[FileRecord] = []
        for item_id in item_ids:
            files.extend(await self._run(self._repository.list_files, item_id))
        await self._run(self._repository.delete_tree, list(folder_ids), item_ids)
        await self._remove_blobs(files)
        await self._revoke_all(files)

    async def _remove_blobs(self, files: Iterable[FileRecord]) -> None:
        for record in files:
            try:
                await self._backend_for(record).remove(record)
            except StorageError as e:
                logger.warning("blob_remove_failed", file_id=record.id, error=str(e))

    async def _revoke_all(self, files: Iterable[FileRecord]) -> None:
        # Waits out any URL resolution already in flight for these files
        for record in files:
            async with self._file_lock(record.id):
                self._urls.revoke(record.id)
            self._file_locks.pop(record.id, None)

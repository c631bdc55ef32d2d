"""
Tests for the AttachmentStore, its blob backends and the URL cache.
"""

import asyncio
import base64
from io import BytesIO

import pytest
from PIL import Image

from luxeledger.config import AttachmentSettings
from luxeledger.models.attachment import Item
from luxeledger.services.attachments import (
    AttachmentRepository,
    AttachmentStore,
    ExternalFileBlobBackend,
    FileSystemBridge,
    FolderCycleError,
    NotEmptyError,
    ThumbnailError,
    URLCache,
    make_thumbnail,
    safe_file_name,
)
from luxeledger.services.storage import CorruptDataError, NotFoundError, StorageError
from luxeledger.utils.timestamps import parse_iso


def decode_thumbnail(data_url: str) -> Image.Image:
    encoded = data_url.split(",", 1)[1]
    return Image.open(BytesIO(base64.b64decode(encoded)))


class UnreadableBackend(ExternalFileBlobBackend):
    """External backend whose reads are always refused."""

    async def read(self, record):
        raise StorageError("read not permitted")


@pytest.fixture
def external_store(tmp_path):
    root = tmp_path / "files"
    repo = AttachmentRepository(tmp_path / "inventory.sqlite3")
    store = AttachmentStore(repo, ExternalFileBlobBackend(root), FileSystemBridge(root))
    yield store
    repo.close()


class TestItems:
    """Tests for item CRUD."""

    @pytest.mark.asyncio
    async def test_save_item_assigns_id_and_keeps_created_at(self, attachments):
        """Test upsert semantics of save_item."""
        saved = await attachments.save_item({"title": "Laptop", "tags": ["work", " work "]})
        assert saved.id
        assert saved.tags == ["work"]

        resaved = await attachments.save_item(saved.model_copy(update={"title": "Laptop Pro"}))
        assert resaved.created_at == saved.created_at
        assert parse_iso(resaved.updated_at) > parse_iso(saved.updated_at)
        assert (await attachments.get_item(saved.id)).title == "Laptop Pro"

    @pytest.mark.asyncio
    async def test_save_item_unknown_folder_raises(self, attachments):
        """Test that items cannot point at a missing folder."""
        with pytest.raises(NotFoundError):
            await attachments.save_item(Item(title="x", folder_id="missing"))

    @pytest.mark.asyncio
    async def test_list_items_by_folder(self, attachments):
        """Test listing all items, root items and folder items."""
        folder = await attachments.create_folder("Docs")
        root_item = await attachments.save_item({"title": "root"})
        inner = await attachments.save_item({"title": "inner", "folderId": folder.id})

        assert [i.id for i in await attachments.list_items()] == [root_item.id, inner.id]
        assert [i.id for i in await attachments.list_items(None)] == [root_item.id]
        assert [i.id for i in await attachments.list_items(folder.id)] == [inner.id]

    @pytest.mark.asyncio
    async def test_move_item(self, attachments):
        """Test moving to a folder and back to root."""
        folder = await attachments.create_folder("Docs")
        item = await attachments.save_item({"title": "x"})

        moved = await attachments.move_item(item.id, folder.id)
        assert moved.folder_id == folder.id
        back = await attachments.move_item(item.id, None)
        assert back.folder_id is None

    @pytest.mark.asyncio
    async def test_move_item_unknown_ids_raise(self, attachments):
        """Test move_item integrity errors."""
        item = await attachments.save_item({"title": "x"})
        with pytest.raises(NotFoundError):
            await attachments.move_item(item.id, "missing-folder")
        with pytest.raises(NotFoundError):
            await attachments.move_item("missing-item", None)

    @pytest.mark.asyncio
    async def test_delete_item_cascades_files(self, attachments):
        """Test that files go with their item."""
        item = await attachments.save_item({"title": "x"})
        record = await attachments.save_file_blob(item.id, b"hello", "a.txt")
        await attachments.get_file_url(record.id)

        await attachments.delete_item(item.id)
        await attachments.delete_item(item.id)

        assert await attachments.get_item(item.id) is None
        assert await attachments.get_file(record.id) is None
        assert record.id not in attachments.url_cache


class TestFiles:
    """Tests for file storage and display URLs."""

    @pytest.mark.asyncio
    async def test_save_file_blob_embedded(self, attachments):
        """Test the embedded backend stores bytes in the database."""
        item = await attachments.save_item({"title": "x"})
        record = await attachments.save_file_blob(item.id, b"%PDF-1.4", "receipt.pdf")

        assert record.size == 8
        assert record.mime == "application/pdf"
        assert record.locator.kind == "embedded"
        assert await attachments.read_file(record.id) == b"%PDF-1.4"
        assert [f.id for f in await attachments.list_files(item.id)] == [record.id]

    @pytest.mark.asyncio
    async def test_save_file_blob_unknown_item_raises(self, attachments):
        """Test that files need an existing item."""
        with pytest.raises(NotFoundError):
            await attachments.save_file_blob("missing", b"x", "a.txt")

    @pytest.mark.asyncio
    async def test_unknown_mime_defaults_to_octet_stream(self, attachments):
        """Test the mime fallback."""
        item = await attachments.save_item({"title": "x"})
        record = await attachments.save_file_blob(item.id, b"x", "blob.unknownext")
        assert record.mime == "application/octet-stream"

    @pytest.mark.asyncio
    async def test_url_minted_once_and_revoked_on_delete(self, attachments):
        """Test the URL lifecycle."""
        item = await attachments.save_item({"title": "x"})
        record = await attachments.save_file_blob(item.id, b"bytes", "a.txt")

        url = await attachments.get_file_url(record.id)
        assert url.startswith("blob:")
        assert await attachments.get_file_url(record.id) == url
        assert len(attachments.url_cache) == 1
        assert attachments.url_cache.resolve(url) == (b"bytes", "text/plain")

        await attachments.delete_file(record.id)

        assert len(attachments.url_cache) == 0
        assert attachments.url_cache.resolve(url) is None
        assert await attachments.get_file_url(record.id) is None

    @pytest.mark.asyncio
    async def test_concurrent_url_requests_share_one_url(self, attachments):
        """Test that overlapping lookups mint a single URL."""
        item = await attachments.save_item({"title": "x"})
        record = await attachments.save_file_blob(item.id, b"bytes", "a.txt")

        first, second = await asyncio.gather(
            attachments.get_file_url(record.id),
            attachments.get_file_url(record.id),
        )

        assert first == second
        assert len(attachments.url_cache) == 1
        assert attachments.url_cache.resolve(first) == (b"bytes", "text/plain")

    @pytest.mark.asyncio
    async def test_delete_during_url_lookup_leaves_no_url(self, attachments):
        """Test that a delete racing a lookup still revokes."""
        item = await attachments.save_item({"title": "x"})
        record = await attachments.save_file_blob(item.id, b"bytes", "a.txt")

        url, _ = await asyncio.gather(
            attachments.get_file_url(record.id),
            attachments.delete_file(record.id),
        )

        assert record.id not in attachments.url_cache
        assert attachments.url_cache.resolve(url) is None
        assert await attachments.get_file(record.id) is None

    @pytest.mark.asyncio
    async def test_item_delete_during_url_lookup_leaves_no_url(self, attachments):
        """Test that cascading deletes also wait for in-flight lookups."""
        item = await attachments.save_item({"title": "x"})
        record = await attachments.save_file_blob(item.id, b"bytes", "a.txt")

        await asyncio.gather(
            attachments.get_file_url(record.id),
            attachments.delete_item(item.id),
        )

        assert len(attachments.url_cache) == 0

    @pytest.mark.asyncio
    async def test_get_file_url_unknown_file(self, attachments):
        """Test that unknown files resolve to None."""
        assert await attachments.get_file_url("missing") is None

    @pytest.mark.asyncio
    async def test_attach_image_adds_thumbnail(self, attachments, png_bytes):
        """Test attach_image stores the file and appends a thumbnail."""
        item = await attachments.save_item({"title": "Camera"})
        updated, record = await attachments.attach_image(item.id, png_bytes, "photo.png")

        assert record.mime == "image/png"
        assert len(updated.images) == 1
        assert updated.images[0].name == "photo.png"
        assert decode_thumbnail(updated.images[0].thumb_data_url).size == (320, 160)
        assert (await attachments.get_item(item.id)).images == updated.images

    @pytest.mark.asyncio
    async def test_attach_image_rejects_non_images(self, attachments):
        """Test that unreadable images store nothing."""
        item = await attachments.save_item({"title": "x"})
        with pytest.raises(ThumbnailError):
            await attachments.attach_image(item.id, b"not an image", "x.png")
        assert await attachments.list_files(item.id) == []


class TestExternalBackend:
    """Tests for the external file blob backend."""

    @pytest.mark.asyncio
    async def test_bytes_written_under_namespaced_path(self, external_store, tmp_path):
        """Test the on-disk layout of external blobs."""
        item = await external_store.save_item({"title": "x"})
        record = await external_store.save_file_blob(item.id, b"abc", "my receipt.pdf")

        expected = f"inventory/{item.id}/{record.id}__my-receipt.pdf"
        assert record.locator.kind == "external"
        assert record.locator.uri == expected
        assert (tmp_path / "files" / expected).read_bytes() == b"abc"
        assert await external_store.read_file(record.id) == b"abc"

    @pytest.mark.asyncio
    async def test_delete_file_removes_bytes(self, external_store, tmp_path):
        """Test that deleting a file removes it from disk."""
        item = await external_store.save_item({"title": "x"})
        record = await external_store.save_file_blob(item.id, b"abc", "a.txt")
        path = tmp_path / "files" / record.locator.uri

        await external_store.delete_file(record.id)

        assert not path.exists()
        assert await external_store.get_file(record.id) is None

    @pytest.mark.asyncio
    async def test_missing_bytes_on_remove_are_ignored(self, external_store, tmp_path):
        """Test that a file already gone from disk still deletes cleanly."""
        item = await external_store.save_item({"title": "x"})
        record = await external_store.save_file_blob(item.id, b"abc", "a.txt")
        (tmp_path / "files" / record.locator.uri).unlink()

        await external_store.delete_file(record.id)
        assert await external_store.get_file(record.id) is None

    @pytest.mark.asyncio
    async def test_missing_bytes_resolve_to_none(self, external_store, tmp_path):
        """Test that neither reading nor the bridge can resolve a lost file."""
        item = await external_store.save_item({"title": "x"})
        record = await external_store.save_file_blob(item.id, b"abc", "a.txt")
        (tmp_path / "files" / record.locator.uri).unlink()

        assert await external_store.read_file(record.id) is None
        assert await external_store.get_file_url(record.id) is None

    @pytest.mark.asyncio
    async def test_bridge_fallback_when_read_fails(self, tmp_path):
        """Test the platform bridge resolves a file:// URL."""
        root = tmp_path / "files"
        repo = AttachmentRepository(":memory:")
        store = AttachmentStore(repo, UnreadableBackend(root), FileSystemBridge(root))

        item = await store.save_item({"title": "x"})
        record = await store.save_file_blob(item.id, b"abc", "a.txt")

        url = await store.get_file_url(record.id)
        assert url == (root / record.locator.uri).resolve().as_uri()
        assert store.url_cache.resolve(url) is None

        await store.delete_file(record.id)
        assert record.id not in store.url_cache
        await store.close()

    def test_safe_file_name(self):
        """Test path characters are stripped from names."""
        assert safe_file_name("../../etc/passwd") == "etcpasswd"
        assert safe_file_name("my file.pdf") == "my-file.pdf"
        assert safe_file_name("") == "file"

    def test_resolve_path_rejects_escape(self, tmp_path):
        """Test that locators cannot leave the blob root."""
        backend = ExternalFileBlobBackend(tmp_path / "files")
        with pytest.raises(StorageError):
            backend.resolve_path("../outside.txt")

    @pytest.mark.asyncio
    async def test_from_settings_external(self, tmp_path):
        """Test the configured backend is used for new files."""
        settings = AttachmentSettings(blob_backend="external")
        store = AttachmentStore.from_settings(settings, tmp_path)

        item = await store.save_item({"title": "x"})
        record = await store.save_file_blob(item.id, b"abc", "a.txt")

        assert (tmp_path / "inventory-v1.sqlite3").exists()
        assert (tmp_path / "files" / record.locator.uri).exists()
        await store.close()

    @pytest.mark.asyncio
    async def test_external_files_survive_backend_switch(self, tmp_path):
        """Test files written externally stay usable once new files go embedded."""
        external = AttachmentStore.from_settings(AttachmentSettings(blob_backend="external"), tmp_path)
        item = await external.save_item({"title": "x"})
        old = await external.save_file_blob(item.id, b"abc", "a.txt")
        await external.close()

        store = AttachmentStore.from_settings(AttachmentSettings(blob_backend="embedded"), tmp_path)
        new = await store.save_file_blob(item.id, b"def", "b.txt")
        path = tmp_path / "files" / old.locator.uri

        assert new.locator.kind == "embedded"
        assert await store.read_file(old.id) == b"abc"
        url = await store.get_file_url(old.id)
        assert store.url_cache.resolve(url) == (b"abc", "text/plain")

        await store.delete_file(old.id)

        assert not path.exists()
        assert old.id not in store.url_cache
        assert await store.read_file(new.id) == b"def"
        await store.close()

    @pytest.mark.asyncio
    async def test_delete_without_backend_keeps_file(self, external_store):
        """Test that a file no backend can remove is not half-deleted."""
        item = await external_store.save_item({"title": "x"})
        record = await external_store.save_file_blob(item.id, b"abc", "a.txt")
        await external_store.get_file_url(record.id)

        embedded_only = AttachmentStore(external_store._repository, url_cache=external_store.url_cache)
        with pytest.raises(StorageError):
            await embedded_only.delete_file(record.id)

        assert await external_store.get_file(record.id) is not None
        assert await external_store.read_file(record.id) == b"abc"
        assert record.id not in external_store.url_cache


class TestFolders:
    """Tests for the folder tree."""

    @pytest.mark.asyncio
    async def test_create_rename_and_path(self, attachments):
        """Test folder CRUD and breadcrumbs."""
        a = await attachments.create_folder("A")
        b = await attachments.create_folder("B", a.id)
        c = await attachments.create_folder("C", b.id)
        renamed = await attachments.rename_folder(b.id, "  Bee ")

        assert renamed.name == "Bee"
        path = await attachments.get_folder_path(c.id)
        assert [(p.id, p.name, p.parent_id) for p in path] == [
            (a.id, "A", None),
            (b.id, "Bee", a.id),
            (c.id, "C", b.id),
        ]
        assert await attachments.get_folder_path(None) == []
        assert [f.id for f in await attachments.list_folders()] == [a.id]
        assert [f.id for f in await attachments.list_folders(a.id)] == [b.id]
        assert len(await attachments.list_all_folders()) == 3

    @pytest.mark.asyncio
    async def test_unknown_folder_ids_raise(self, attachments):
        """Test folder integrity errors."""
        with pytest.raises(NotFoundError):
            await attachments.create_folder("x", "missing")
        with pytest.raises(NotFoundError):
            await attachments.rename_folder("missing", "x")
        with pytest.raises(NotFoundError):
            await attachments.move_folder("missing", None)

    @pytest.mark.asyncio
    async def test_move_folder_rejects_cycles(self, attachments):
        """Test self-parenting and moving under a descendant."""
        a = await attachments.create_folder("A")
        b = await attachments.create_folder("B", a.id)
        c = await attachments.create_folder("C", b.id)

        with pytest.raises(FolderCycleError):
            await attachments.move_folder(a.id, a.id)
        with pytest.raises(FolderCycleError):
            await attachments.move_folder(a.id, c.id)

        moved = await attachments.move_folder(c.id, None)
        assert moved.parent_id is None
        assert (await attachments.move_folder(a.id, c.id)).parent_id == c.id

    @pytest.mark.asyncio
    async def test_receipts_scenario(self, attachments):
        """Test non-cascading and cascading delete of a used folder."""
        items = [await attachments.save_item({"title": f"item {n}"}) for n in range(3)]
        receipts = await attachments.create_folder("Receipts")
        await attachments.move_item(items[0].id, receipts.id)

        with pytest.raises(NotEmptyError):
            await attachments.delete_folder(receipts.id, cascade=False)

        await attachments.delete_folder(receipts.id, cascade=True)

        assert await attachments.get_item(items[0].id) is None
        assert await attachments.get_folder(receipts.id) is None
        assert [i.id for i in await attachments.list_items(None)] == [items[1].id, items[2].id]

    @pytest.mark.asyncio
    async def test_non_cascading_delete_of_empty_folder(self, attachments):
        """Test that an empty folder can be deleted without cascade."""
        folder = await attachments.create_folder("Empty")
        await attachments.delete_folder(folder.id, cascade=False)
        await attachments.delete_folder(folder.id, cascade=False)
        assert await attachments.get_folder(folder.id) is None

    @pytest.mark.asyncio
    async def test_cascade_delete_and_sizes(self, attachments):
        """Test A -> B -> X with file F: everything goes, totals drop by F."""
        a = await attachments.create_folder("A")
        b = await attachments.create_folder("B", a.id)
        x = await attachments.save_item({"title": "X", "folderId": b.id})
        f = await attachments.save_file_blob(x.id, b"f" * 700, "f.bin")
        other = await attachments.save_item({"title": "root"})
        await attachments.save_file_blob(other.id, b"o" * 300, "o.bin")

        before = await attachments.folder_sizes()
        assert before[b.id] == 700
        assert before[a.id] == 700
        assert before[None] == 1000

        await attachments.delete_folder(a.id)

        assert await attachments.get_file(f.id) is None
        assert await attachments.get_item(x.id) is None
        assert await attachments.get_folder(b.id) is None
        assert await attachments.get_folder(a.id) is None

        after = await attachments.folder_sizes()
        assert a.id not in after and b.id not in after
        assert before[None] - after[None] == 700

    @pytest.mark.asyncio
    async def test_folder_sizes_are_recursive(self, attachments):
        """Test totals include every descendant."""
        a = await attachments.create_folder("A")
        b = await attachments.create_folder("B", a.id)
        empty = await attachments.create_folder("Empty")
        in_a = await attachments.save_item({"title": "a", "folderId": a.id})
        in_b = await attachments.save_item({"title": "b", "folderId": b.id})
        await attachments.save_file_blob(in_a.id, b"1" * 5, "a.bin")
        await attachments.save_file_blob(in_b.id, b"2" * 7, "b.bin")
        await attachments.save_file_blob(in_b.id, b"3" * 3, "c.bin")

        sizes = await attachments.folder_sizes()
        assert sizes[b.id] == 10
        assert sizes[a.id] == 15
        assert sizes[empty.id] == 0
        assert sizes[None] == 15


class TestBulk:
    """Tests for export, import and clear."""

    @pytest.mark.asyncio
    async def test_export_then_import_into_fresh_store(self, attachments):
        """Test the metadata export round trip."""
        folder = await attachments.create_folder("Docs")
        item = await attachments.save_item({"title": "Passport", "folderId": folder.id})
        await attachments.save_file_blob(item.id, b"scan", "scan.jpg")

        exported = await attachments.export_json()
        assert exported["version"] == 1
        assert exported["filesMeta"][0]["itemId"] == item.id
        assert "locator" not in exported["filesMeta"][0]

        fresh = AttachmentStore(AttachmentRepository(":memory:"))
        counts = await fresh.import_json(exported, replace=True)

        assert counts == {"importedItems": 1, "importedFolders": 1}
        assert (await fresh.get_item(item.id)).folder_id == folder.id
        await fresh.close()

    @pytest.mark.asyncio
    async def test_import_rejects_invalid_data(self, attachments):
        """Test import_json input checks."""
        with pytest.raises(CorruptDataError):
            await attachments.import_json(["not", "an", "object"])

    @pytest.mark.asyncio
    async def test_clear_all_revokes_urls(self, attachments):
        """Test clear_all empties the store and the URL cache."""
        item = await attachments.save_item({"title": "x"})
        record = await attachments.save_file_blob(item.id, b"abc", "a.txt")
        await attachments.get_file_url(record.id)

        await attachments.clear_all()

        assert await attachments.list_items() == []
        assert len(attachments.url_cache) == 0


class TestWorkerThreads:
    """Tests that database work stays off the event loop."""

    @pytest.mark.asyncio
    async def test_repository_calls_run_in_worker_thread(self, attachments, monkeypatch):
        """Test repository queries go through asyncio.to_thread."""
        calls = []
        real_to_thread = asyncio.to_thread

        async def recording_to_thread(func, *args, **kwargs):
            calls.append(func.__name__)
            return await real_to_thread(func, *args, **kwargs)

        monkeypatch.setattr(asyncio, "to_thread", recording_to_thread)

        item = await attachments.save_item({"title": "x"})
        await attachments.save_file_blob(item.id, b"abc", "a.txt")
        await attachments.folder_sizes()

        assert {
            "get_item",
            "upsert_item",
            "insert_file",
            "item_file_sizes",
            "folder_parents",
            "item_folders",
        } <= set(calls)


class TestUrlCache:
    """Tests for URLCache on its own."""

    def test_one_url_per_file(self):
        """Test that minting again replaces the previous URL."""
        cache = URLCache()
        first = cache.mint("f1", b"a")
        second = cache.mint("f1", b"b")
        assert first != second
        assert len(cache) == 1
        assert cache.resolve(first) is None
        assert cache.get("f1") == second

    def test_remember_and_revoke(self):
        """Test remembered platform URLs."""
        cache = URLCache()
        cache.remember("f1", "file:///tmp/a.txt")
        assert cache.get("f1") == "file:///tmp/a.txt"
        assert cache.revoke("f1") is True
        assert cache.revoke("f1") is False
        assert cache.clear() == 0


class TestThumbnails:
    """Tests for thumbnail generation."""

    def test_large_image_is_scaled_down(self, png_bytes):
        """Test the longest side is capped."""
        thumb = make_thumbnail(png_bytes, "big.png")
        assert thumb.thumb_data_url.startswith("data:image/jpeg;base64,")
        assert decode_thumbnail(thumb.thumb_data_url).size == (320, 160)

    def test_small_image_is_never_upscaled(self, make_image):
        """Test images inside the bound keep their size."""
        thumb = make_thumbnail(make_image(100, 50), "small.png")
        assert decode_thumbnail(thumb.thumb_data_url).size == (100, 50)

    def test_transparent_image_is_flattened(self, make_image):
        """Test RGBA input produces a JPEG."""
        thumb = make_thumbnail(make_image(40, 40, mode="RGBA"), "icon.png")
        assert decode_thumbnail(thumb.thumb_data_url).mode == "RGB"

    def test_invalid_bytes_raise(self):
        """Test undecodable input."""
        with pytest.raises(ThumbnailError):
            make_thumbnail(b"definitely not an image", "x.png")

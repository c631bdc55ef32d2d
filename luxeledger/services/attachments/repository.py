"""
Attachment metadata repository using SQLite.

Stores folders, items and file metadata. For the embedded blob backend the
file bytes live in the same row as the metadata, so a file row and its
bytes are written and deleted together.

Records are kept as JSON in a `data` column; the relational columns
(parent_id, folder_id, item_id, size) exist only for indexed lookups.
"""

import sqlite3
import threading
from collections.abc import Iterable
from pathlib import Path
from typing import Optional, Union

from luxeledger.models.attachment import FileRecord, Folder, Item


class AttachmentRepository:
    """
    SQLite-backed store for attachment metadata.

    Thread-safe: blob reads run in worker threads, so every statement is
    serialized through one lock.
    """

    def __init__(self, db_path: Union[Path, str]):
        """
        Args:
            db_path: Path to the SQLite database file, or ":memory:"
        """
        self._db_path = db_path
        self._lock = threading.RLock()
        self._conn: Optional[sqlite3.Connection] = None
        self._init_db()

    def _init_db(self) -> None:
        """Initialize the SQLite database."""
        if str(self._db_path) != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row

        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS folders (
                id TEXT PRIMARY KEY,
                parent_id TEXT,
                data TEXT NOT NULL
            );
            CREATE TABLE IF NOT EXISTS items (
                id TEXT PRIMARY KEY,
                folder_id TEXT,
                data TEXT NOT NULL
            );
            CREATE TABLE IF NOT EXISTS files (
                id TEXT PRIMARY KEY,
                item_id TEXT NOT NULL,
                size INTEGER NOT NULL DEFAULT 0,
                data TEXT NOT NULL,
                blob BLOB
            );
            CREATE INDEX IF NOT EXISTS idx_folders_parent ON folders(parent_id);
            CREATE INDEX IF NOT EXISTS idx_items_folder ON items(folder_id);
            CREATE INDEX IF NOT EXISTS idx_files_item ON files(item_id);
        """)
        self._conn.commit()

    # -------------------------------------------------------------------------
    # Folders
    # -------------------------------------------------------------------------

    def get_folder(self, folder_id: str) -> Optional[Folder]:
        with self._lock:
            row = self._conn.execute(
                "SELECT data FROM folders WHERE id = ?", (folder_id,)
            ).fetchone()
        return Folder.model_validate_json(row["data"]) if row else None

    def list_folders(self, parent_id: Optional[str]) -> list[Folder]:
        """Direct children of `parent_id` (None lists root folders)."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT data FROM folders WHERE parent_id IS ? ORDER BY rowid",
                (parent_id,),
            ).fetchall()
        return [Folder.model_validate_json(row["data"]) for row in rows]

    def list_all_folders(self) -> list[Folder]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT data FROM folders ORDER BY rowid"
            ).fetchall()
        return [Folder.model_validate_json(row["data"]) for row in rows]

    def upsert_folder(self, folder: Folder) -> None:
        with self._lock:
            self._conn.execute("""
                INSERT INTO folders (id, parent_id, data) VALUES (?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    parent_id = excluded.parent_id,
                    data = excluded.data
            """, (folder.id, folder.parent_id, folder.model_dump_json(by_alias=True)))
            self._conn.commit()

    # -------------------------------------------------------------------------
    # Items
    # -------------------------------------------------------------------------

    def get_item(self, item_id: str) -> Optional[Item]:
        with self._lock:
            row = self._conn.execute(
                "SELECT data FROM items WHERE id = ?", (item_id,)
            ).fetchone()
        return Item.model_validate_json(row["data"]) if row else None

    def list_items(self, folder_id: Optional[str]) -> list[Item]:
        """Items directly inside `folder_id` (None lists root items)."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT data FROM items WHERE folder_id IS ? ORDER BY rowid",
                (folder_id,),
            ).fetchall()
        return [Item.model_validate_json(row["data"]) for row in rows]

    def list_all_items(self) -> list[Item]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT data FROM items ORDER BY rowid"
            ).fetchall()
        return [Item.model_validate_json(row["data"]) for row in rows]

    def upsert_item(self, item: Item) -> None:
        with self._lock:
            self._conn.execute("""
                INSERT INTO items (id, folder_id, data) VALUES (?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    folder_id = excluded.folder_id,
                    data = excluded.data
            """, (item.id, item.folder_id, item.model_dump_json(by_alias=True)))
            self._conn.commit()

    # -------------------------------------------------------------------------
    # Files
    # -------------------------------------------------------------------------

    def get_file(self, file_id: str) -> Optional[FileRecord]:
        with self._lock:
            row = self._conn.execute(
                "SELECT data FROM files WHERE id = ?", (file_id,)
            ).fetchone()
        return FileRecord.model_validate_json(row["data"]) if row else None

    def list_files(self, item_id: str) -> list[FileRecord]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT data FROM files WHERE item_id = ? ORDER BY rowid",
                (item_id,),
            ).fetchall()
        return [FileRecord.model_validate_json(row["data"]) for row in rows]

    def list_all_files(self) -> list[FileRecord]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT data FROM files ORDER BY rowid"
            ).fetchall()
        return [FileRecord.model_validate_json(row["data"]) for row in rows]

    def insert_file(self, record: FileRecord, blob: Optional[bytes] = None) -> None:
        """Insert file metadata, with its bytes when they are embedded."""
        with self._lock:
            self._conn.execute("""
                INSERT OR REPLACE INTO files (id, item_id, size, data, blob)
                VALUES (?, ?, ?, ?, ?)
            """, (
                record.id,
                record.item_id,
                record.size,
                record.model_dump_json(by_alias=True),
                sqlite3.Binary(blob) if blob is not None else None,
            ))
            self._conn.commit()

    def read_blob(self, file_id: str) -> Optional[bytes]:
        """Embedded bytes of a file, or None if the row or bytes are missing."""
        with self._lock:
            row = self._conn.execute(
                "SELECT blob FROM files WHERE id = ?", (file_id,)
            ).fetchone()
        if row is None or row["blob"] is None:
            return None
        return bytes(row["blob"])

    def delete_file(self, file_id: str) -> bool:
        with self._lock:
            cursor = self._conn.execute("DELETE FROM files WHERE id = ?", (file_id,))
            self._conn.commit()
        return cursor.rowcount > 0

    # -------------------------------------------------------------------------
    # Batch deletes
    # -------------------------------------------------------------------------

    def delete_items(self, item_ids: Iterable[str]) -> None:
        """Delete items and all their file rows in one transaction."""
        self.delete_tree(folder_ids=(), item_ids=item_ids)

    def delete_tree(
        self,
        folder_ids: Iterable[str],
        item_ids: Iterable[str],
    ) -> None:
        """
        Delete folders, items and the items' files in one transaction.

        Either every row goes or none does.
        """
        folder_params = [(fid,) for fid in folder_ids]
        item_params = [(iid,) for iid in item_ids]
        with self._lock, self._conn:
            self._conn.executemany("DELETE FROM files WHERE item_id = ?", item_params)
            self._conn.executemany("DELETE FROM items WHERE id = ?", item_params)
            self._conn.executemany("DELETE FROM folders WHERE id = ?", folder_params)

    # -------------------------------------------------------------------------
    # Size aggregation inputs
    # -------------------------------------------------------------------------

    def folder_parents(self) -> dict[str, Optional[str]]:
        """Map of folder id -> parent id for every folder."""
        with self._lock:
            rows = self._conn.execute("SELECT id, parent_id FROM folders").fetchall()
        return {row["id"]: row["parent_id"] for row in rows}

    def item_folders(self) -> dict[str, Optional[str]]:
        """Map of item id -> folder id for every item."""
        with self._lock:
            rows = self._conn.execute("SELECT id, folder_id FROM items").fetchall()
        return {row["id"]: row["folder_id"] for row in rows}

    def item_file_sizes(self) -> dict[str, int]:
        """Map of item id -> total bytes of its files."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT item_id, SUM(size) AS total FROM files GROUP BY item_id"
            ).fetchall()
        return {row["item_id"]: int(row["total"] or 0) for row in rows}

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def replace_all(
        self,
        folders: Iterable[Folder],
        items: Iterable[Item],
    ) -> None:
        """Drop every row and insert `folders` and `items` atomically."""
        with self._lock, self._conn:
            self._conn.execute("DELETE FROM files")
            self._conn.execute("DELETE FROM items")
            self._conn.execute("DELETE FROM folders")
            self._conn.executemany(
                "INSERT OR REPLACE INTO folders (id, parent_id, data) VALUES (?, ?, ?)",
                [(f.id, f.parent_id, f.model_dump_json(by_alias=True)) for f in folders],
            )
            self._conn.executemany(
                "INSERT OR REPLACE INTO items (id, folder_id, data) VALUES (?, ?, ?)",
                [(i.id, i.folder_id, i.model_dump_json(by_alias=True)) for i in items],
            )

    def merge_all(
        self,
        folders: Iterable[Folder],
        items: Iterable[Item],
    ) -> None:
        """Upsert `folders` and `items` atomically, keeping existing rows."""
        with self._lock, self._conn:
            self._conn.executemany("""
                INSERT INTO folders (id, parent_id, data) VALUES (?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    parent_id = excluded.parent_id,
                    data = excluded.data
            """, [(f.id, f.parent_id, f.model_dump_json(by_alias=True)) for f in folders])
            self._conn.executemany("""
                INSERT INTO items (id, folder_id, data) VALUES (?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    folder_id = excluded.folder_id,
                    data = excluded.data
            """, [(i.id, i.folder_id, i.model_dump_json(by_alias=True)) for i in items])

    def clear_all(self) -> None:
        self.replace_all((), ())

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

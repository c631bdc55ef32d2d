"""
Snapshot Backend Implementations

JSON file implementations of DurableBackend and FastBootMirror, plus
in-memory versions for tests and ephemeral sessions.

TRADEOFFS:
- The durable file is rewritten whole on every push (fine for personal
  data volumes; the mirror cap keeps boot fast when it grows)
- Writes go to a temp file and are swapped in with os.replace, so a crash
  mid-write leaves the previous snapshot intact
"""

import asyncio
import copy
import json
import os
from pathlib import Path
from typing import Any, Optional

import filelock

from luxeledger.logs import get_logger
from luxeledger.services.storage.interface import (
    CapacityExceededError,
    CorruptDataError,
    DurableBackend,
    FastBootMirror,
    StorageError,
)
from luxeledger.utils.jsonio import canonical_json, utf8_size


logger = get_logger(__name__)


def _atomic_write_text(target: Path, text: str) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    tmp = target.with_name(target.name + ".tmp")
    with open(tmp, "w", encoding="utf-8") as f:
        f.write(text)
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp, target)


class JsonFileDurableBackend(DurableBackend):
    """
    Durable snapshot stored as one JSON file.

    File I/O runs in a worker thread so the event loop never blocks on
    disk. A file lock guards against a second process writing at the
    same time.
    """

    def __init__(self, path: Path, lock_timeout: float = 10.0):
        self._path = Path(path)
        self._lock_timeout = lock_timeout

    @property
    def path(self) -> Path:
        return self._path

    def _lock(self) -> filelock.FileLock:
        return filelock.FileLock(str(self._path) + ".lock", timeout=self._lock_timeout)

    def _read(self) -> Optional[dict[str, Any]]:
        if not self._path.exists():
            return None
        try:
            with self._lock():
                raw = self._path.read_text(encoding="utf-8")
        except filelock.Timeout as e:
            raise StorageError(f"Timed out waiting for lock on {self._path}") from e
        except OSError as e:
            raise StorageError(f"Failed to read durable snapshot: {e}") from e

        if not raw.strip():
            return None
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise CorruptDataError(f"Durable snapshot is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise CorruptDataError("Durable snapshot is not a JSON object")
        return data

    def _write(self, snapshot: dict[str, Any]) -> None:
        text = canonical_json(snapshot)
        try:
            with self._lock():
                _atomic_write_text(self._path, text)
        except filelock.Timeout as e:
            raise StorageError(f"Timed out waiting for lock on {self._path}") from e
        except OSError as e:
            raise StorageError(f"Failed to write durable snapshot: {e}") from e

    def _unlink(self) -> None:
        try:
            with self._lock():
                self._path.unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to clear durable snapshot: {e}") from e

    async def load(self) -> Optional[dict[str, Any]]:
        return await asyncio.to_thread(self._read)

    async def save(self, snapshot: dict[str, Any]) -> None:
        await asyncio.to_thread(self._write, snapshot)

    async def clear(self) -> None:
        await asyncio.to_thread(self._unlink)


class InMemoryDurableBackend(DurableBackend):
    """
    Durable backend kept in process memory.

    Stores a deep copy so later snapshot changes never leak into the
    "persisted" state, and counts writes for inspection.
    """

    def __init__(self, initial: Optional[dict[str, Any]] = None):
        self._data: Optional[dict[str, Any]] = copy.deepcopy(initial)
        self.save_count = 0

    @property
    def data(self) -> Optional[dict[str, Any]]:
        return self._data

    async def load(self) -> Optional[dict[str, Any]]:
        return copy.deepcopy(self._data)

    async def save(self, snapshot: dict[str, Any]) -> None:
        self._data = copy.deepcopy(snapshot)
        self.save_count += 1

    async def clear(self) -> None:
        self._data = None


class FileMirror(FastBootMirror):
    """Fast boot mirror stored as a JSON text file, read and written synchronously."""

    def __init__(self, path: Path):
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def read(self) -> Optional[str]:
        try:
            return self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.info("mirror_read_failed", path=str(self._path), error=str(e))
            return None

    def write(self, text: str) -> None:
        try:
            _atomic_write_text(self._path, text)
        except OSError as e:
            raise StorageError(f"Failed to write mirror: {e}") from e

    def remove(self) -> None:
        try:
            self._path.unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to remove mirror: {e}") from e


class InMemoryMirror(FastBootMirror):
    """
    Mirror held in memory.

    quota_bytes simulates a storage medium with a hard quota: writes above
    it raise CapacityExceededError the way a browser-style key/value store
    would.
    """

    def __init__(self, text: Optional[str] = None, quota_bytes: Optional[int] = None):
        self._text = text
        self._quota_bytes = quota_bytes

    @property
    def text(self) -> Optional[str]:
        return self._text

    def read(self) -> Optional[str]:
        return self._text

    def write(self, text: str) -> None:
        if self._quota_bytes is not None and utf8_size(text) > self._quota_bytes:
            raise CapacityExceededError(
                f"Mirror quota of {self._quota_bytes} bytes exceeded"
            )
        self._text = text

    def remove(self) -> None:
        self._text = None

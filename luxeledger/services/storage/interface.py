"""
Abstract Storage Interfaces

DESIGN DECISION: The entity snapshot is persisted through two small
interfaces instead of one:
1. DurableBackend - asynchronous, unbounded, source of truth across restarts
2. FastBootMirror - synchronous, capacity-limited, read once at startup

Both store one opaque JSON-able object. Neither knows about collections or
records; that is EntityStore's job. File-backed implementations live in
backends.py, and the in-memory ones double as test doubles.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional


class DurableBackend(ABC):
    """
    Asynchronous read/write of one JSON-able object.

    Any durable implementation (JSON file, SQLite, ...) must implement
    these methods.
    """

    @abstractmethod
    async def load(self) -> Optional[dict[str, Any]]:
        """
        Load the persisted snapshot.

        Returns:
            The snapshot, or None when nothing has been persisted yet

        Raises:
            CorruptDataError: If the persisted payload cannot be parsed
            StorageError: If the backend cannot be read
        """
        pass

    @abstractmethod
    async def save(self, snapshot: dict[str, Any]) -> None:
        """
        Replace the persisted snapshot with `snapshot`.

        Args:
            snapshot: The full snapshot (never a delta)

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def clear(self) -> None:
        """Remove the persisted snapshot entirely."""
        pass


class FastBootMirror(ABC):
    """
    Synchronous, size-capped cache of the serialized snapshot.

    Holds canonical JSON text so a fresh process can paint immediately,
    before the durable backend has been read.
    """

    @abstractmethod
    def read(self) -> Optional[str]:
        """
        Read the mirrored JSON text.

        Returns:
            The text, or None if no mirror exists
        """
        pass

    @abstractmethod
    def write(self, text: str) -> None:
        """
        Store `text` as the mirror.

        Raises:
            CapacityExceededError: If the mirror medium refuses the size
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    def remove(self) -> None:
        """Delete the mirror. Removing a missing mirror is a no-op."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class CorruptDataError(StorageError):
    """A persisted or imported payload could not be parsed."""
    pass


class CapacityExceededError(StorageError):
    """The fast boot mirror cannot hold the snapshot."""
    pass

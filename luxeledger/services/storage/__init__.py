"""
Storage Services Package

Provides the snapshot backend interfaces, their JSON file and in-memory
implementations, and the EntityStore coordinator that composes them.
"""

from luxeledger.services.storage.interface import (
    CapacityExceededError,
    CorruptDataError,
    DurableBackend,
    FastBootMirror,
    NotFoundError,
    StorageError,
)
from luxeledger.services.storage.backends import (
    FileMirror,
    InMemoryDurableBackend,
    InMemoryMirror,
    JsonFileDurableBackend,
)
from luxeledger.services.storage.entity_store import EntityStore

__all__ = [
    # Interfaces
    "DurableBackend",
    "FastBootMirror",
    # Exceptions
    "CapacityExceededError",
    "CorruptDataError",
    "NotFoundError",
    "StorageError",
    # Implementations
    "FileMirror",
    "InMemoryDurableBackend",
    "InMemoryMirror",
    "JsonFileDurableBackend",
    # Coordinator
    "EntityStore",
]

"""
Entity Store

Owns the single in-memory snapshot of all entity data and keeps it
consistent with the fast boot mirror and the durable backend.

DESIGN DECISION: Reads and mutations are synchronous and only touch
memory. Persistence happens after the fact:
- The mirror is refreshed synchronously under a capacity policy
- The full snapshot is pushed to the durable backend in the background

Copy-on-write: collection lists and the top-level mapping are replaced on
every mutation, never changed in place. A list returned by list() stays a
valid, frozen view of the state at the time of the call.

GUARANTEES:
- Storage failures (durable push, mirror write, corrupt payloads) are
  logged and never raised into callers
- Integrity failures (update of an unknown id) are always raised
- Each durable push carries the whole current snapshot, so the newest
  state always lands last
"""

from __future__ import annotations

import asyncio
import copy
import json
from collections.abc import Iterable, Mapping
from typing import Any, Callable, Optional

from luxeledger.config import DEFAULT_MIRROR_SOFT_CAP_BYTES, StorageSettings
from luxeledger.logs import get_logger
from luxeledger.models.record import Record
from luxeledger.models.schema import (
    METADATA_KEYS,
    collection_names,
    default_schema,
    startup_cache_enabled,
)
from luxeledger.services.storage.backends import FileMirror, JsonFileDurableBackend
from luxeledger.services.storage.interface import (
    CapacityExceededError,
    CorruptDataError,
    DurableBackend,
    FastBootMirror,
    NotFoundError,
    StorageError,
)
from luxeledger.utils.ids import new_id
from luxeledger.utils.jsonio import canonical_json, utf8_size
from luxeledger.utils.timestamps import now_iso, now_iso_after


logger = get_logger(__name__)

RecordDict = dict[str, Any]
DataChangedCallback = Callable[[str], None]


class EntityStore:
    """
    Generic collection CRUD plus scalar key/value access over one snapshot.

    Construct one instance at startup and pass it to every collaborator.

    Boot:
    1. Read the mirror synchronously (optimistic, possibly stale)
    2. Fall back to schema defaults if there is no usable mirror
    3. reconcile(): load the durable backend and, if it holds data, merge
       it over the defaults and replace the snapshot
    """

    def __init__(
        self,
        durable: DurableBackend,
        mirror: Optional[FastBootMirror] = None,
        *,
        mirror_soft_cap_bytes: int = DEFAULT_MIRROR_SOFT_CAP_BYTES,
        startup_cache_enabled: bool = True,
    ):
        self._durable = durable
        self._mirror = mirror
        self._mirror_soft_cap_bytes = mirror_soft_cap_bytes
        self._startup_cache_enabled = startup_cache_enabled

        self._subscribers: list[DataChangedCallback] = []
        self._pending: set[asyncio.Task] = set()
        self._push_lock: Optional[asyncio.Lock] = None
        self._push_lock_loop: Optional[asyncio.AbstractEventLoop] = None
        self._sequence = 0
        self._landed_sequence = 0
        self._reconciled = False

        self._booted_from_mirror = False
        self._snapshot: dict[str, Any] = self._boot_snapshot()

    @classmethod
    def from_settings(cls, settings: StorageSettings) -> "EntityStore":
        """Build a store backed by the JSON files configured in `settings`."""
        return cls(
            JsonFileDurableBackend(
                settings.durable_path,
                lock_timeout=settings.lock_timeout_seconds,
            ),
            FileMirror(settings.mirror_path),
            mirror_soft_cap_bytes=settings.mirror_soft_cap_bytes,
            startup_cache_enabled=settings.startup_cache_enabled,
        )

    @classmethod
    async def open(
        cls,
        durable: DurableBackend,
        mirror: Optional[FastBootMirror] = None,
        **kwargs: Any,
    ) -> "EntityStore":
        """Construct and wait for the durable reconciliation to finish."""
        store = cls(durable, mirror, **kwargs)
        await store.reconcile()
        return store

    # =========================================================================
    # BOOT
    # =========================================================================

    def _boot_snapshot(self) -> dict[str, Any]:
        if self._mirror is None:
            return default_schema()

        raw = self._mirror.read()
        if not raw:
            return default_schema()

        try:
            parsed = json.loads(raw)
            if not isinstance(parsed, dict):
                raise CorruptDataError("Mirror does not hold a JSON object")
        except (json.JSONDecodeError, CorruptDataError) as e:
            logger.warning("mirror_corrupt", error=str(e))
            return default_schema()

        self._booted_from_mirror = True
        return {**default_schema(), **parsed}

    async def reconcile(self) -> bool:
        """
        Load the durable backend and snap to its state.

        Returns:
            True if the snapshot was replaced with durable data
        """
        try:
            loaded = await self._durable.load()
        except CorruptDataError as e:
            logger.warning("durable_snapshot_corrupt", error=str(e))
            return False
        except Exception as e:
            logger.warning("durable_load_failed", error=str(e))
            return False

        if isinstance(loaded, dict) and loaded:
            self._snapshot = {**default_schema(), **loaded}
            self._reconciled = True
            self._refresh_mirror()
            logger.info("durable_snapshot_loaded", keys=len(loaded))
            return True

        self._reconciled = True
        if self._booted_from_mirror:
            # Durable store is empty but the mirror had data: migrate it once
            logger.info("durable_snapshot_migrated_from_mirror")
            self._sequence += 1
            self._schedule_persist()
        return False

    def start(self) -> asyncio.Task:
        """Schedule reconcile() on the running event loop."""
        task = asyncio.get_running_loop().create_task(self.reconcile())
        self._track(task)
        return task

    @property
    def is_reconciled(self) -> bool:
        return self._reconciled

    @property
    def booted_from_mirror(self) -> bool:
        return self._booted_from_mirror

    # =========================================================================
    # READS
    # =========================================================================

    @property
    def snapshot(self) -> Mapping[str, Any]:
        """The current snapshot. Treat as read-only."""
        return self._snapshot

    def list(self, collection: str) -> list[RecordDict]:
        """
        All records of a collection in insertion order.

        Returns an empty list for unknown collections. The returned list is
        never modified by the store.
        """
        records = self._snapshot.get(collection)
        return records if isinstance(records, list) else []

    def get(self, collection: str, record_id: str) -> Optional[RecordDict]:
        for record in self.list(collection):
            if isinstance(record, dict) and record.get("id") == record_id:
                return record
        return None

    def get_item(self, key: str) -> Any:
        return self._snapshot.get(key)

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    def create(self, collection: str, partial: Mapping[str, Any]) -> RecordDict:
        """
        Append a new record.

        Args:
            collection: Collection name (created if missing)
            partial: Field values; id and timestamps are always generated

        Returns:
            The stored record
        """
        record = self._new_record(partial, now_iso())
        self._commit({
            **self._snapshot,
            collection: [*self.list(collection), record],
        })
        return record

    def bulk_create(
        self,
        collection: str,
        partials: Iterable[Mapping[str, Any]],
    ) -> list[RecordDict]:
        """Append several records with a single persistence push."""
        now = now_iso()
        records = [self._new_record(partial, now) for partial in partials]
        if not records:
            return []
        self._commit({
            **self._snapshot,
            collection: [*self.list(collection), *records],
        })
        return records

    def update(
        self,
        collection: str,
        record_id: str,
        partial: Mapping[str, Any],
    ) -> RecordDict:
        """
        Merge `partial` into an existing record and bump updated_date.

        Raises:
            NotFoundError: If no record with `record_id` exists
        """
        records = self.list(collection)
        index = next(
            (
                i for i, r in enumerate(records)
                if isinstance(r, dict) and r.get("id") == record_id
            ),
            None,
        )
        if index is None:
            raise NotFoundError(
                f"Record with id {record_id} not found in {collection}"
            )

        current = records[index]
        updated_date = now_iso_after(
            current.get("updated_date"),
            current.get("created_date"),
        )
        merged = {
            **current,
            **copy.deepcopy(dict(partial)),
            "id": current["id"],
            "created_date": current.get("created_date") or updated_date,
            "updated_date": updated_date,
        }
        record = Record.model_validate(merged).to_dict()

        self._commit({
            **self._snapshot,
            collection: [*records[:index], record, *records[index + 1:]],
        })
        return record

    def delete(self, collection: str, record_id: str) -> None:
        """Remove a record. Unknown ids are ignored."""
        records = self.list(collection)
        remaining = [
            r for r in records
            if not (isinstance(r, dict) and r.get("id") == record_id)
        ]
        if len(remaining) == len(records):
            return
        self._commit({**self._snapshot, collection: remaining})

    def set_item(self, key: str, value: Any) -> None:
        self._commit({**self._snapshot, key: copy.deepcopy(value)})

    def remove_item(self, key: str) -> None:
        if key not in self._snapshot:
            return
        self._commit({k: v for k, v in self._snapshot.items() if k != key})

    def set_backup_timestamp(self) -> str:
        stamp = now_iso()
        self.set_item("lastBackupTimestamp", stamp)
        return stamp

    def get_backup_timestamp(self) -> Optional[str]:
        return self.get_item("lastBackupTimestamp")

    # =========================================================================
    # BULK IMPORT / EXPORT
    # =========================================================================

    def import_all(self, data: Mapping[str, Any]) -> None:
        """
        Replace every known key wholesale.

        Starts from schema defaults, takes every default key present in
        `data`, keeps the metadata keys, ignores unknown keys, then emits
        the data-changed signal.

        Raises:
            CorruptDataError: If `data` is not a mapping
        """
        if not isinstance(data, Mapping):
            raise CorruptDataError("Import payload must be a JSON object")

        full = default_schema()
        known_collections = set(collection_names())
        for key, value in data.items():
            if key not in full:
                continue
            if key in known_collections and not isinstance(value, list):
                logger.warning("import_collection_skipped", collection=key)
                continue
            full[key] = copy.deepcopy(value)

        for key in METADATA_KEYS:
            if data.get(key) is not None:
                full[key] = copy.deepcopy(data[key])

        self._commit(full)
        self._notify("import_all")

    def import_subset(
        self,
        data: Mapping[str, Any],
        allowed_keys: Iterable[str],
    ) -> list[str]:
        """
        Replace only `allowed_keys` that are present in `data`.

        Returns:
            The keys that were replaced
        """
        if not isinstance(data, Mapping):
            raise CorruptDataError("Import payload must be a JSON object")

        replaced = [key for key in allowed_keys if key in data]
        if not replaced:
            return []
        self._commit({
            **self._snapshot,
            **{key: copy.deepcopy(data[key]) for key in replaced},
        })
        return replaced

    def export_subset(self, allowed_keys: Iterable[str]) -> dict[str, Any]:
        return {
            key: copy.deepcopy(self._snapshot[key])
            for key in allowed_keys
            if key in self._snapshot
        }

    def export_all(self) -> dict[str, Any]:
        return copy.deepcopy(self._snapshot)

    def clear_all(self) -> None:
        """Reset to schema defaults (not to an empty store)."""
        self._commit(default_schema())
        self._notify("clear_all")

    # =========================================================================
    # NOTIFICATION
    # =========================================================================

    def subscribe(self, callback: DataChangedCallback) -> Callable[[], None]:
        """
        Register a data-changed listener.

        The callback receives the reason ("import_all" or "clear_all").

        Returns:
            A function that removes the listener
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self, reason: str) -> None:
        for callback in list(self._subscribers):
            try:
                callback(reason)
            except Exception as e:
                logger.error("data_changed_listener_failed", reason=reason, error=str(e))

    # =========================================================================
    # PERSISTENCE
    # =========================================================================

    @staticmethod
    def _new_record(partial: Mapping[str, Any], now: str) -> RecordDict:
        fields = copy.deepcopy(dict(partial))
        fields.update(id=new_id(), created_date=now, updated_date=now)
        return Record.model_validate(fields).to_dict()

    def _commit(self, snapshot: dict[str, Any]) -> None:
        self._snapshot = snapshot
        self._sequence += 1
        self._refresh_mirror()
        self._schedule_persist()

    def _refresh_mirror(self) -> None:
        """Write the mirror, or remove it when disabled or over the soft cap."""
        if self._mirror is None:
            return

        try:
            if not (self._startup_cache_enabled and startup_cache_enabled(self._snapshot)):
                self._mirror.remove()
                return
            text = canonical_json(self._snapshot)
            size = utf8_size(text)
            if size >= self._mirror_soft_cap_bytes:
                raise CapacityExceededError(
                    f"Snapshot of {size} bytes exceeds the "
                    f"{self._mirror_soft_cap_bytes} byte mirror cap"
                )
            self._mirror.write(text)
        except CapacityExceededError as e:
            logger.info("startup_cache_skipped", reason=str(e))
            self._discard_mirror()
        except (StorageError, TypeError, ValueError) as e:
            logger.info("startup_cache_write_failed", error=str(e))
            self._discard_mirror()

    def _discard_mirror(self) -> None:
        try:
            self._mirror.remove()
        except StorageError as e:
            logger.warning("startup_cache_remove_failed", error=str(e))

    def _schedule_persist(self) -> None:
        sequence = self._sequence
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is None:
            # No event loop (scripts, sync callers): finish the push inline
            asyncio.run(self._save(self._snapshot, sequence))
            return

        self._track(loop.create_task(self._persist(sequence)))

    def _track(self, task: asyncio.Task) -> None:
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def _lock_for(self, loop: asyncio.AbstractEventLoop) -> asyncio.Lock:
        if self._push_lock is None or self._push_lock_loop is not loop:
            self._push_lock = asyncio.Lock()
            self._push_lock_loop = loop
        return self._push_lock

    async def _persist(self, sequence: int) -> None:
        async with self._lock_for(asyncio.get_running_loop()):
            if sequence <= self._landed_sequence:
                # A later push already wrote a newer snapshot
                return
            await self._save(self._snapshot, self._sequence)

    async def _save(self, snapshot: dict[str, Any], sequence: int) -> None:
        try:
            await self._durable.save(snapshot)
        except Exception as e:
            logger.warning("durable_push_failed", sequence=sequence, error=str(e))
            return
        self._landed_sequence = max(self._landed_sequence, sequence)

    async def flush(self) -> None:
        """Wait for every scheduled durable push (and background reconcile)."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    @property
    def pending_writes(self) -> int:
        return len(self._pending)

"""
Main Orchestrator for LuxeLedger

This module ties together the components and defines the end-to-end
backup flows:
1. Export (stamp -> snapshot -> pretty JSON -> [encrypt] -> [gzip])
2. Import (bytes -> [gunzip] -> JSON -> [decrypt] -> import_all / import_subset)

DESIGN DECISION: The orchestrator owns composition.
- Exactly one EntityStore, AttachmentStore and CryptoService are built
  per process and handed to every collaborator
- Nothing below this module reads global settings

Backup file shape:
    plain:      {"Account": [...], ..., "lastBackupTimestamp": "..."}
    encrypted:  {"isEncrypted": true, "data": "<base64>"}
Either form may be gzip-compressed; compression is detected by magic bytes,
never by file name.
"""

import gzip
import json
import zlib
from dataclasses import dataclass
from datetime import date
from typing import Iterable, Optional, Union

from luxeledger.config import Settings, get_settings
from luxeledger.logs import configure_logging, get_logger
from luxeledger.models.crypto import is_encrypted_payload
from luxeledger.models.schema import METADATA_KEYS, default_schema
from luxeledger.services.attachments import AttachmentStore
from luxeledger.services.crypto import CryptoService, PasswordRequiredError
from luxeledger.services.storage import CorruptDataError, EntityStore
from luxeledger.utils.jsonio import pretty_json
from luxeledger.utils.timestamps import now_iso, utc_now


logger = get_logger(__name__)

GZIP_MAGIC = b"\x1f\x8b"
BACKUP_PREFIX = "luxeledger-BACKUP"
FINANCIAL_BACKUP_KEY = "lastFinancialBackupDate"


class BackupFlow:
    """
    Orchestrates backup export and import.

    Export stamps the backup timestamp before serializing, so the
    backup always contains its own timestamp.
    """

    def __init__(self, entity_store: EntityStore, crypto: CryptoService):
        self._store = entity_store
        self._crypto = crypto

    async def export_backup(
        self,
        password: Optional[str] = None,
        compress: bool = False,
        keys: Optional[Iterable[str]] = None,
    ) -> bytes:
        """
        Serialize the snapshot, or a subset of it, to backup bytes.

        Args:
            password: Encrypt into the envelope when given
            compress: gzip the result
            keys: Only export these keys (partial backup)

        Returns:
            UTF-8 JSON bytes, possibly gzip-compressed
        """
        if keys is None:
            self._store.set_backup_timestamp()
            payload = self._store.export_all()
        else:
            keys = list(keys)
            if FINANCIAL_BACKUP_KEY in keys:
                self._store.set_item(FINANCIAL_BACKUP_KEY, now_iso())
            payload = self._store.export_subset(keys)

        text = pretty_json(payload)
        if password:
            envelope = await self._crypto.encrypt_data(text, password)
            text = pretty_json(envelope.to_dict())

        raw = text.encode("utf-8")
        if compress:
            raw = gzip.compress(raw)

        logger.info(
            "backup_exported",
            keys=len(payload),
            encrypted=bool(password),
            compressed=compress,
            size=len(raw),
        )
        return raw

    async def parse_backup(
        self,
        raw: Union[bytes, str],
        password: Optional[str] = None,
    ) -> dict:
        """
        Decode backup bytes into a snapshot mapping.

        Raises:
            CorruptDataError: If the bytes are not a (gzip) JSON object
            PasswordRequiredError: If the backup is encrypted and no
                password was given
            DecryptionFailedError: If the password is wrong or the payload
                was tampered with
        """
        if isinstance(raw, str):
            raw = raw.encode("utf-8")

        if raw[:2] == GZIP_MAGIC:
            try:
                raw = gzip.decompress(raw)
            except (OSError, EOFError, zlib.error) as e:
                raise CorruptDataError(f"Backup is not valid gzip: {e}") from e

        parsed = self._load_json(raw)

        if is_encrypted_payload(parsed):
            if not password:
                raise PasswordRequiredError("This backup is encrypted; a password is required")
            plaintext = await self._crypto.decrypt_data(parsed, password)
            parsed = self._load_json(plaintext.encode("utf-8"))

        if not isinstance(parsed, dict):
            raise CorruptDataError("Backup must contain a JSON object")
        return parsed

    async def import_backup(
        self,
        raw: Union[bytes, str],
        password: Optional[str] = None,
        keys: Optional[Iterable[str]] = None,
    ) -> list[str]:
        """
        Restore a backup into the entity store.

        Without `keys` every known key is replaced (import_all); with
        `keys` only those present in the backup are.

        Returns:
            The keys taken from the backup
        """
        data = await self.parse_backup(raw, password)

        if keys is not None:
            replaced = self._store.import_subset(data, keys)
            logger.info("backup_imported", mode="subset", keys=len(replaced))
            return replaced

        known = set(default_schema()) | set(METADATA_KEYS)
        self._store.import_all(data)
        imported = [key for key in data if key in known]
        logger.info("backup_imported", mode="full", keys=len(imported))
        return imported

    @staticmethod
    def _load_json(raw: bytes):
        try:
            return json.loads(raw.decode("utf-8-sig"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise CorruptDataError(f"Failed to parse backup: {e}") from e


def backup_filename(
    kind: Optional[str] = None,
    encrypted: bool = False,
    compressed: bool = False,
    on: Optional[date] = None,
) -> str:
    """
    Suggested file name for a backup.

    >>> backup_filename(encrypted=True, on=date(2026, 10, 19))
    'luxeledger-BACKUP-2026-10-19.json.enc'
    >>> backup_filename("financial", on=date(2026, 10, 19))
    'luxeledger-BACKUP(financial)-2026-10-19.json'
    """
    day = (on or utc_now().date()).isoformat()
    label = f"({kind})" if kind else ""
    name = f"{BACKUP_PREFIX}{label}-{day}.json"
    if encrypted:
        name += ".enc"
    if compressed:
        name += ".gz"
    return name


@dataclass
class AppComponents:
    """The single instance of every shared component."""
    settings: Settings
    entity_store: EntityStore
    attachment_store: AttachmentStore
    crypto: CryptoService
    backup_flow: BackupFlow

    async def start(self) -> bool:
        """Reconcile the entity store with its durable backend."""
        return await self.entity_store.reconcile()

    async def close(self) -> None:
        """Wait for pending durable writes and release the attachment database."""
        await self.entity_store.flush()
        await self.attachment_store.close()


def create_app_components(settings: Optional[Settings] = None) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        settings: Settings to build from (the cached global settings when
            omitted)

    Returns:
        AppComponents sharing one instance of each component

    Raises:
        CryptoUnavailableError: If encryption is unavailable and the insecure
            fallback is not allowed
    """
    settings = settings or get_settings()
    app_settings = settings.app
    configure_logging(app_settings.log_level, app_settings.log_json)

    storage_settings = settings.storage
    entity_store = EntityStore.from_settings(storage_settings)
    attachment_store = AttachmentStore.from_settings(
        settings.attachments,
        storage_settings.data_dir,
    )
    crypto = CryptoService.from_settings(settings.crypto)

    logger.info(
        "app_components_created",
        environment=app_settings.app_environment,
        data_dir=str(storage_settings.data_dir),
        booted_from_mirror=entity_store.booted_from_mirror,
        crypto_secure=crypto.is_secure,
    )
    return AppComponents(
        settings=settings,
        entity_store=entity_store,
        attachment_store=attachment_store,
        crypto=crypto,
        backup_flow=BackupFlow(entity_store, crypto),
    )

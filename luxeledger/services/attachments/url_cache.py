"""
Display URL cache.

Minted URLs stand for bytes held in memory and must be revoked to free
them. URLs remembered from the platform bridge cost nothing and are just
dropped. At most one live URL exists per file id.
"""

import threading
import uuid
from dataclasses import dataclass
from typing import Optional


URL_SCHEME = "blob:luxeledger/"


@dataclass
class _CacheEntry:
    url: str
    data: Optional[bytes]
    mime: str
    revocable: bool


class URLCache:
    """Per-file display URLs with explicit revocation."""

    def __init__(self):
        self._lock = threading.Lock()
        self._by_file: dict[str, _CacheEntry] = {}
        self._by_url: dict[str, str] = {}

    def mint(self, file_id: str, data: bytes, mime: str = "application/octet-stream") -> str:
        """Create a revocable URL for `data`, replacing any URL for the file."""
        url = f"{URL_SCHEME}{uuid.uuid4()}"
        self._put(file_id, _CacheEntry(url=url, data=bytes(data), mime=mime, revocable=True))
        return url

    def remember(self, file_id: str, url: str) -> str:
        """Cache a platform URL that needs no revocation."""
        self._put(file_id, _CacheEntry(url=url, data=None, mime="", revocable=False))
        return url

    def get(self, file_id: str) -> Optional[str]:
        with self._lock:
            entry = self._by_file.get(file_id)
        return entry.url if entry else None

    def resolve(self, url: str) -> Optional[tuple[bytes, str]]:
        """Bytes and mime type behind a minted URL, or None."""
        with self._lock:
            file_id = self._by_url.get(url)
            entry = self._by_file.get(file_id) if file_id else None
        if entry is None or entry.data is None:
            return None
        return entry.data, entry.mime

    def revoke(self, file_id: str) -> bool:
        """Drop the URL of a file. Returns True if one was cached."""
        with self._lock:
            entry = self._by_file.pop(file_id, None)
            if entry is not None:
                self._by_url.pop(entry.url, None)
        return entry is not None

    def clear(self) -> int:
        """Revoke every URL. Returns how many were dropped."""
        with self._lock:
            count = len(self._by_file)
            self._by_file.clear()
            self._by_url.clear()
        return count

    def _put(self, file_id: str, entry: _CacheEntry) -> None:
        with self._lock:
            previous = self._by_file.get(file_id)
            if previous is not None:
                self._by_url.pop(previous.url, None)
            self._by_file[file_id] = entry
            self._by_url[entry.url] = file_id

    def __len__(self) -> int:
        return len(self._by_file)

    def __contains__(self, file_id: object) -> bool:
        return file_id in self._by_file

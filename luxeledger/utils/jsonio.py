"""JSON helpers shared by the snapshot backends and backups."""

import json
from typing import Any


def canonical_json(obj: Any) -> str:
    """
    Canonical JSON text of a snapshot.

    Compact separators, insertion order, non-ASCII kept as-is. The mirror
    stores exactly this text and capacity is measured on its UTF-8 bytes.
    """
    return json.dumps(obj, ensure_ascii=False, separators=(",", ":"))


def utf8_size(text: str) -> int:
    return len(text.encode("utf-8"))


def pretty_json(obj: Any) -> str:
    return json.dumps(obj, ensure_ascii=False, indent=2)

"""Shared helpers."""

from luxeledger.utils.ids import new_id
from luxeledger.utils.jsonio import canonical_json, pretty_json, utf8_size
from luxeledger.utils.timestamps import (
    EPOCH_ISO,
    now_iso,
    now_iso_after,
    parse_iso,
    to_iso,
    utc_now,
)

__all__ = [
    "EPOCH_ISO",
    "canonical_json",
    "new_id",
    "now_iso",
    "now_iso_after",
    "parse_iso",
    "pretty_json",
    "to_iso",
    "utc_now",
    "utf8_size",
]

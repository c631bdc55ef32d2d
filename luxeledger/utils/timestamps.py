"""
Timestamp helpers.

All persisted timestamps are ISO-8601 UTC strings with microsecond
precision, so string order equals time order.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional


EPOCH_ISO = "1970-01-01T00:00:00.000000+00:00"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(moment: datetime) -> str:
    """Format an aware datetime as a UTC ISO-8601 string."""
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def now_iso() -> str:
    return to_iso(utc_now())


def parse_iso(value: str) -> datetime:
    """Parse an ISO-8601 string; naive values and a trailing Z are read as UTC."""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    moment = datetime.fromisoformat(value)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


def now_iso_after(*previous: Optional[str]) -> str:
    """
    Current time, strictly later than every timestamp in `previous`.

    Two updates inside the same clock tick (or a clock that stepped
    backwards) still produce strictly increasing timestamps. Missing or
    unparseable values are ignored.
    """
    now = utc_now()
    for value in previous:
        if not isinstance(value, str) or not value:
            continue
        try:
            floor = parse_iso(value)
        except ValueError:
            continue
        if now <= floor:
            now = floor + timedelta(microseconds=1)
    return to_iso(now)

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone

try:  # Python 3.11+
    from datetime import UTC  # type: ignore
except ImportError:  # Python 3.10 fallback
    UTC = timezone.utc


_DURATION_RE = re.compile(r"^(\d+)(ms|s|m|h|d|w)?$", re.I)
_UNIT_MS = {
    "ms": 1,
    "s": 1000,
    "m": 60_000,
    "h": 3_600_000,
    "d": 86_400_000,
    "w": 604_800_000,
}


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def utc_now_iso() -> str:
    return utc_now().replace(microsecond=0).isoformat()


def to_iso(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC).replace(microsecond=0).isoformat()


def parse_iso(value: str) -> datetime:
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


def from_epoch(value: object, *, millis: bool = False) -> str | None:
    """Unix seconds (or milliseconds with millis=True) -> ISO string; falsy/invalid -> None."""
    try:
        ts = int(str(value or "0").strip() or 0)
    except ValueError:
        return None
    if ts <= 0:
        return None
    seconds = ts / 1000 if millis else ts
    try:
        dt = datetime.fromtimestamp(seconds, tz=UTC)
    except (OverflowError, OSError, ValueError):
        return None
    return dt.replace(microsecond=0).isoformat()


def parse_duration(value: str) -> timedelta:
    """
    Parse durations such as "7d", "12h", "30m", "45s", "500ms", "2w" or bare seconds ("3600").
    """
    m = _DURATION_RE.match((value or "").strip())
    if not m:
        raise ValueError(f"unsupported duration format: {value!r}")
    amount = int(m.group(1))
    unit = (m.group(2) or "s").lower()
    return timedelta(milliseconds=amount * _UNIT_MS[unit])

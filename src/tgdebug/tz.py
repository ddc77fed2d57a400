"""Timezone handling for update timestamps.

Bot API `date` fields are unix seconds in UTC. Analytics buckets them by hour
of day and the CLI prints them, both in the zone named by
`Settings.timezone`.
"""

from __future__ import annotations

import datetime
import re
from typing import Final
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

_UTC_ALIASES: Final[frozenset[str]] = frozenset({"UTC", "Z"})
# "8", "08", "0530", "05:30"
_HHMM_RE: Final[re.Pattern[str]] = re.compile(r"(\d{1,2})(?::?(\d{2}))?")


def _parse_offset(raw: str) -> datetime.timedelta | None:
    """Read `[UTC]+HH[:MM]` / `[UTC]-HH[:MM]`.

    Returns `None` when `raw` is not shaped like an offset at all, so the
    caller can try it as a zone name. Raises `ValueError` for an offset with
    out of range fields.
    """

    body = raw.upper().removeprefix("UTC").lstrip()
    sign, digits = body[:1], body[1:].strip()
    if sign not in {"+", "-"}:
        return None
    m = _HHMM_RE.fullmatch(digits)
    if m is None:
        return None
    hours, minutes = int(m[1]), int(m[2] or 0)
    if hours > 23 or minutes > 59:
        raise ValueError(f"UTC offset out of range: {raw!r}")
    offset = datetime.timedelta(hours=hours, minutes=minutes)
    return -offset if sign == "-" else offset


def parse_timezone(value: str) -> datetime.tzinfo:
    """Resolve `value` to a tzinfo.

    "UTC" and "Z" map to `datetime.UTC`. Fixed offsets may carry a "UTC"
    prefix ("UTC+8", "+08:00", "-0530"). Anything else is looked up as an
    IANA zone name. Raises `ValueError` if nothing matches.
    """

    raw = value.strip()
    if not raw:
        raise ValueError("timezone must be a non-empty string")
    if raw.upper() in _UTC_ALIASES:
        return datetime.UTC

    offset = _parse_offset(raw)
    if offset is not None:
        return datetime.timezone(offset)

    try:
        return ZoneInfo(raw)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"Unknown timezone {value!r}") from e


def _local(unix_seconds: int, tz: datetime.tzinfo) -> datetime.datetime:
    return datetime.datetime.fromtimestamp(unix_seconds, tz=tz)


def hour_of_day(unix_seconds: int, *, tz: datetime.tzinfo) -> int:
    return _local(unix_seconds, tz).hour


def format_unix_seconds(unix_seconds: int, *, tz: datetime.tzinfo) -> str:
    """ISO-8601, second precision, with the zone's offset."""

    return _local(unix_seconds, tz).isoformat(timespec="seconds")

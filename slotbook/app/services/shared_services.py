"""Shared time helpers: business-timezone conversion and parsing.

All scheduling math goes through ``TimezoneConverter`` so that wall-clock
values (what clients pick, what providers configure) and stored instants
(UTC) are converted by the same zone rules in both directions.
"""

from __future__ import annotations

import logging
import re
from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from slotbook.app.domain.errors import InvalidArgument

logger = logging.getLogger(__name__)

_DATE_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
_TIME_24H_RE = re.compile(r"^(\d{1,2}):(\d{2})$")
_TIME_12H_RE = re.compile(r"^(\d{1,2}):(\d{2})\s*([AaPp][Mm])$")


# ---------------- Parsing ---------------- #
def parse_local_date(value: date | str) -> date:
    """Parse ``YYYY-MM-DD`` (or pass a ``date`` through)."""
    if isinstance(value, datetime):
        raise InvalidArgument("invalid_date", "expected a calendar date, got a datetime")
    if isinstance(value, date):
        return value
    m = _DATE_RE.match(str(value or "").strip())
    if not m:
        raise InvalidArgument("invalid_date", f"malformed date: {value!r}")
    try:
        return date(int(m.group(1)), int(m.group(2)), int(m.group(3)))
    except ValueError as exc:
        raise InvalidArgument("invalid_date", f"malformed date: {value!r}") from exc


def parse_local_time(value: time | str) -> time:
    """Parse ``HH:MM`` or ``H:MM AM/PM`` (or pass a ``time`` through)."""
    if isinstance(value, time):
        if value.tzinfo is not None:
            raise InvalidArgument("invalid_time", "wall-clock time must be naive")
        return value
    raw = str(value or "").strip()
    m = _TIME_12H_RE.match(raw)
    if m:
        hour, minute, meridiem = int(m.group(1)), int(m.group(2)), m.group(3).upper()
        if not 1 <= hour <= 12 or minute > 59:
            raise InvalidArgument("invalid_time", f"malformed time: {value!r}")
        if meridiem == "AM":
            hour = 0 if hour == 12 else hour
        else:
            hour = 12 if hour == 12 else hour + 12
        return time(hour, minute)
    m = _TIME_24H_RE.match(raw)
    if m:
        hour, minute = int(m.group(1)), int(m.group(2))
        if hour > 23 or minute > 59:
            raise InvalidArgument("invalid_time", f"malformed time: {value!r}")
        return time(hour, minute)
    raise InvalidArgument("invalid_time", f"malformed time: {value!r}")


def format_time_hm(value: time) -> str:
    return f"{value.hour:02d}:{value.minute:02d}"


def format_time_12h(value: time) -> str:
    """Render ``13:30`` as ``1:30 PM``."""
    hour = value.hour % 12 or 12
    meridiem = "AM" if value.hour < 12 else "PM"
    return f"{hour}:{value.minute:02d} {meridiem}"


def weekday_index(day: date) -> int:
    """Day of week with Sunday=0 .. Saturday=6."""
    return (day.weekday() + 1) % 7


# ---------------- Instants ---------------- #
def utc_now() -> datetime:
    """Return current time as an aware UTC datetime."""
    return datetime.now(UTC)


def ensure_utc(dt: datetime | None) -> datetime | None:
    """Convert given datetime to an aware UTC datetime.

    If `dt` is naive, interpret it as UTC (do not guess local timezone).
    Returns None when `dt` is None.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


class TimezoneConverter:
    """Wall clock in the business zone <-> UTC instants.

    Local times are resolved with the zone's rules for that exact date
    (``fold=0``): a time skipped by a spring-forward transition gets the
    pre-transition offset, and a repeated fall-back time maps to its first
    occurrence.
    """

    def __init__(self, tz: ZoneInfo | str) -> None:
        self.tz = tz if isinstance(tz, ZoneInfo) else ZoneInfo(str(tz))

    def to_utc(self, local_date: date | str, local_time: time | str) -> datetime:
        d = parse_local_date(local_date)
        t = parse_local_time(local_time)
        wall = datetime.combine(d, t).replace(tzinfo=self.tz, fold=0)
        return wall.astimezone(UTC)

    def to_local(self, instant: datetime) -> tuple[date, time]:
        if not isinstance(instant, datetime) or instant.tzinfo is None:
            raise InvalidArgument("invalid_instant", "instant must be a timezone-aware datetime")
        local = instant.astimezone(self.tz)
        return local.date(), local.time().replace(tzinfo=None)

    def local_now(self, now: datetime | None = None) -> datetime:
        return (now or utc_now()).astimezone(self.tz)

    def today(self, now: datetime | None = None) -> date:
        return self.local_now(now).date()

    def local_day_bounds_utc(self, day: date | str) -> tuple[datetime, datetime]:
        """UTC bounds of ``[day 00:00 local, day+1 00:00 local)``.

        Transition days are 23 or 25 hours long.
        """
        d = parse_local_date(day)
        return self.to_utc(d, time(0, 0)), self.to_utc(d + timedelta(days=1), time(0, 0))


__all__ = [
    "TimezoneConverter",
    "parse_local_date",
    "parse_local_time",
    "format_time_hm",
    "format_time_12h",
    "weekday_index",
    "utc_now",
    "ensure_utc",
]

"""Date handling for imports and history windows.

Sales history is bucketed by calendar day using ``YYYY-MM-DD`` keys in the
business timezone (Australia/Melbourne by default). Marketplace refund
reports use UK day-first dates, so they get their own parser.
"""

from __future__ import annotations

import re
from datetime import UTC, date, datetime, time, timedelta
from typing import Any, NamedTuple
from zoneinfo import ZoneInfo

import pandas as pd

APP_TIMEZONE = "Australia/Melbourne"

_DATE_KEY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_UK_DATE_RE = re.compile(r"^(\d{1,2})[/\-](\d{1,2})[/\-](\d{4})")

_DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y/%m/%d",
    "%Y/%m/%d %H:%M:%S",
    "%m/%d/%Y",
    "%m/%d/%Y %H:%M:%S",
    "%d %b %Y",
    "%b %d, %Y",
)

_TIME_FORMATS = ("%H:%M:%S", "%H:%M", "%I:%M %p", "%I:%M:%S %p")


def zone(tz: str | ZoneInfo | None = None) -> ZoneInfo:
    if isinstance(tz, ZoneInfo):
        return tz
    return ZoneInfo(tz or APP_TIMEZONE)


def now_in(tz: str | ZoneInfo | None = None) -> datetime:
    return datetime.now(zone(tz))


def parse_datetime(value: Any) -> datetime | None:
    """Best-effort parse of a spreadsheet cell into a datetime.

    Returns naive datetimes for naive input; aware input keeps its offset.
    """
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return None
    # Timestamp before datetime (Timestamp is a subclass)
    if isinstance(value, pd.Timestamp):
        return None if pd.isna(value) else value.to_pydatetime()
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, time())
    s = str(value).strip()
    if not s or s.lower() in ("nan", "nat", "none", "-", "undefined", "null"):
        return None
    try:
        return datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(s, fmt)
        except ValueError:
            continue
    try:
        ts = pd.Timestamp(s)
    except (ValueError, TypeError, OverflowError):
        return None
    return None if pd.isna(ts) else ts.to_pydatetime()


def to_date(value: Any, tz: str | ZoneInfo | None = None) -> date | None:
    """Calendar day of ``value``; aware datetimes are moved into ``tz`` first."""
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    dt = parse_datetime(value)
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(zone(tz))
    return dt.date()


def to_date_key(value: Any, tz: str | ZoneInfo | None = None) -> str | None:
    """Normalize ``value`` into a ``YYYY-MM-DD`` key, or None."""
    if not value and value != 0:
        return None
    if isinstance(value, str) and _DATE_KEY_RE.match(value.strip()):
        return value.strip()
    d = to_date(value, tz)
    return d.isoformat() if d else None


def compare_date_keys(a: str, b: str) -> int:
    return (a > b) - (a < b)


def is_date_key_between(d: str, start: str, end: str) -> bool:
    return start <= d <= end


def add_days(date_key: str, days: int) -> str:
    return (date.fromisoformat(date_key) + timedelta(days=days)).isoformat()


def today_key(now: datetime | None = None, tz: str | ZoneInfo | None = None) -> str:
    if now is None:
        now = now_in(tz)
    elif now.tzinfo is not None:
        now = now.astimezone(zone(tz))
    return now.date().isoformat()


def yesterday_key(now: datetime | None = None, tz: str | ZoneInfo | None = None) -> str:
    return add_days(today_key(now, tz), -1)


# ---------------------------------------------------------------------------
# Trading weeks (Friday -> Thursday)
# ---------------------------------------------------------------------------


class DateRange(NamedTuple):
    start: date
    end: date

    def contains(self, d: date) -> bool:
        return self.start <= d <= self.end


class WeekRanges(NamedTuple):
    current: DateRange
    last: DateRange


def friday_week_start(d: date) -> date:
    """Most recent Friday on or before ``d``."""
    return d - timedelta(days=(d.weekday() + 3) % 7)


def friday_week_ranges(anchor: date | None = None) -> WeekRanges:
    """The trading week containing ``anchor`` and the one before it."""
    if anchor is None:
        anchor = date.today()
    start = friday_week_start(anchor)
    current = DateRange(start, start + timedelta(days=6))
    last_start = start - timedelta(days=7)
    return WeekRanges(current, DateRange(last_start, last_start + timedelta(days=6)))


# ---------------------------------------------------------------------------
# Marketplace report timestamps
# ---------------------------------------------------------------------------


def _localize(dt: datetime, tz: ZoneInfo) -> datetime:
    return dt.replace(tzinfo=tz) if dt.tzinfo is None else dt


def _parse_time(text: str) -> time | None:
    for fmt in _TIME_FORMATS:
        try:
            return datetime.strptime(text, fmt).time()
        except ValueError:
            continue
    return None


def parse_uk_datetime(
    value: Any,
    tz: str | ZoneInfo | None = None,
    now: datetime | None = None,
) -> datetime:
    """Parse a refund-report timestamp into an aware datetime.

    ``DD/MM/YYYY`` (or ``DD-MM-YYYY``) is read day-first. A trailing time is
    kept; without one the timestamp is pinned to noon so timezone shifts
    never move it to another day. Anything unparseable becomes ``now``.
    """
    tzinfo = zone(tz)
    fallback = now or datetime.now(tzinfo)
    if value is None or value == "":
        return fallback
    if isinstance(value, (pd.Timestamp, datetime)):
        return _localize(parse_datetime(value) or fallback, tzinfo)
    if isinstance(value, date):
        return datetime.combine(value, time(12, 0), tzinfo)

    text = str(value).strip()
    match = _UK_DATE_RE.match(text)
    if match:
        day, month, year = (int(g) for g in match.groups())
        try:
            day_value = date(year, month, day)
        except ValueError:
            day_value = None
        if day_value is not None:
            if ":" in text:
                parts = text.split(maxsplit=1)
                parsed_time = _parse_time(parts[1]) if len(parts) > 1 else None
                if parsed_time is not None:
                    return datetime.combine(day_value, parsed_time, tzinfo)
            return datetime.combine(day_value, time(12, 0), tzinfo)

    parsed = parse_datetime(text)
    if parsed is None:
        return fallback
    return _localize(parsed, tzinfo)


def iso_timestamp(dt: datetime) -> str:
    """UTC ISO-8601 with milliseconds, e.g. ``2025-12-22T01:00:00.000Z``."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    dt = dt.astimezone(UTC)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"

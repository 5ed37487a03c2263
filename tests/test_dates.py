"""Tests for date keys, trading weeks and refund timestamps."""

from datetime import UTC, date, datetime
from zoneinfo import ZoneInfo

from sello_hub.dates import (
    add_days,
    friday_week_ranges,
    friday_week_start,
    iso_timestamp,
    parse_datetime,
    parse_uk_datetime,
    to_date,
    to_date_key,
    today_key,
)

LONDON = ZoneInfo("Europe/London")


class TestDateKeys:
    def test_key_passthrough(self):
        assert to_date_key("2025-01-05") == "2025-01-05"

    def test_aware_datetime_moves_into_timezone(self):
        late_utc = datetime(2025, 1, 5, 23, 30, tzinfo=UTC)
        assert to_date_key(late_utc, "Australia/Melbourne") == "2025-01-06"

    def test_empty_is_none(self):
        assert to_date_key("") is None
        assert to_date_key(None) is None

    def test_to_date_from_string(self):
        assert to_date("2025/03/04") == date(2025, 3, 4)

    def test_parse_datetime_garbage(self):
        assert parse_datetime("not a date") is None
        assert parse_datetime("NaT") is None

    def test_add_days_crosses_month(self):
        assert add_days("2025-01-31", 1) == "2025-02-01"

    def test_today_key_uses_timezone(self):
        now = datetime(2025, 1, 5, 14, 0, tzinfo=UTC)
        assert today_key(now, "Australia/Melbourne") == "2025-01-06"


class TestTradingWeeks:
    def test_week_starts_on_friday(self):
        assert friday_week_start(date(2025, 1, 8)) == date(2025, 1, 3)
        assert friday_week_start(date(2025, 1, 3)) == date(2025, 1, 3)

    def test_current_and_last_week(self):
        weeks = friday_week_ranges(date(2025, 1, 8))
        assert weeks.current.start == date(2025, 1, 3)
        assert weeks.current.end == date(2025, 1, 9)
        assert weeks.last.start == date(2024, 12, 27)
        assert weeks.last.end == date(2025, 1, 2)
        assert weeks.current.contains(date(2025, 1, 9))


class TestUkDatetime:
    def test_day_first_without_time_is_noon(self):
        dt = parse_uk_datetime("05/03/2025", tz=LONDON)
        assert (dt.year, dt.month, dt.day, dt.hour) == (2025, 3, 5, 12)
        assert dt.tzinfo == LONDON

    def test_trailing_time_is_kept(self):
        dt = parse_uk_datetime("05/03/2025 14:30", tz=LONDON)
        assert (dt.day, dt.month, dt.hour, dt.minute) == (5, 3, 14, 30)

    def test_unparseable_falls_back_to_now(self):
        now = datetime(2025, 6, 1, 9, 0, tzinfo=LONDON)
        assert parse_uk_datetime("garbage", tz=LONDON, now=now) == now
        assert parse_uk_datetime("", tz=LONDON, now=now) == now

    def test_iso_timestamp(self):
        dt = datetime(2025, 12, 22, 1, 0, tzinfo=UTC)
        assert iso_timestamp(dt) == "2025-12-22T01:00:00.000Z"

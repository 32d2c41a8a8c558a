"""Tests for datetime utilities."""

from datetime import UTC, datetime, timedelta, timezone

from booking_scheduler.core.datetime_utils import (
    duration_ms,
    get_cutoff,
    parse_start_from_time,
    to_naive_utc,
    utc_now,
)


class TestUtcNow:
    """Tests for utc_now."""

    def test_returns_naive(self):
        assert utc_now().tzinfo is None

    def test_cutoff_is_in_the_past(self):
        cutoff = get_cutoff(minutes=120)
        assert timedelta(minutes=119) < utc_now() - cutoff < timedelta(minutes=121)


class TestToNaiveUtc:
    """Tests for to_naive_utc."""

    def test_none(self):
        assert to_naive_utc(None) is None

    def test_naive_passthrough(self):
        dt = datetime(2026, 1, 10, 8, 0)
        assert to_naive_utc(dt) == dt

    def test_aware_converted_to_utc(self):
        paris_winter = timezone(timedelta(hours=1))
        dt = datetime(2026, 1, 10, 9, 0, tzinfo=paris_winter)
        assert to_naive_utc(dt) == datetime(2026, 1, 10, 8, 0)


class TestDurationMs:
    """Tests for duration_ms."""

    def test_three_hours(self):
        start = datetime(2026, 1, 10, 8, 0)
        assert duration_ms(start, start + timedelta(hours=3)) == 10_800_000

    def test_sub_second(self):
        start = datetime(2026, 1, 10, 8, 0)
        assert duration_ms(start, start + timedelta(milliseconds=250)) == 250


class TestParseStartFromTime:
    """Tests for parse_start_from_time."""

    def test_iso_datetime(self):
        assert parse_start_from_time("2026-01-10T08:30:00") == datetime(2026, 1, 10, 8, 30)

    def test_iso_with_offset(self):
        parsed = parse_start_from_time("2026-01-10T09:30:00+01:00")
        assert parsed == datetime(2026, 1, 10, 8, 30)

    def test_date_only_is_midnight(self):
        assert parse_start_from_time("2026-01-10") == datetime(2026, 1, 10, 0, 0)

    def test_iso_without_seconds(self):
        assert parse_start_from_time("2026-01-10T08:30") == datetime(2026, 1, 10, 8, 30)

    def test_hh_mm_is_today(self):
        parsed = parse_start_from_time("06:15")
        today = datetime.now(UTC).date()
        assert parsed.hour == 6
        assert parsed.minute == 15
        assert parsed.second == 0
        assert parsed.date() == today

    def test_empty_and_none(self):
        assert parse_start_from_time(None) is None
        assert parse_start_from_time("") is None
        assert parse_start_from_time("   ") is None

    def test_unparseable_is_none(self):
        assert parse_start_from_time("yesterday") is None
        assert parse_start_from_time("25:99") is None
        assert parse_start_from_time("2026-13-45T00:00:00") is None

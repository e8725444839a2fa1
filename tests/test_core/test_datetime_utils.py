"""Tests for datetime helpers."""

from datetime import UTC, datetime, timedelta, timezone

from fluxdigest.core.datetime_utils import (
    epoch_ms,
    from_epoch_ms,
    hhmm,
    local_date_str,
    parse_instant,
    to_iso,
)


class TestToIso:
    """Tests for to_iso."""

    def test_utc_with_milliseconds_and_z(self):
        """Should render UTC with millisecond precision and a Z suffix."""
        moment = datetime(2024, 6, 3, 12, 30, 15, 123456, tzinfo=UTC)
        assert to_iso(moment) == "2024-06-03T12:30:15.123Z"

    def test_converts_offsets_to_utc(self):
        """Should normalize other offsets to UTC."""
        moment = datetime(2024, 6, 3, 14, 0, tzinfo=timezone(timedelta(hours=2)))
        assert to_iso(moment) == "2024-06-03T12:00:00.000Z"


class TestParseInstant:
    """Tests for parse_instant."""

    def test_iso_string(self):
        parsed = parse_instant("2024-06-03T12:00:00.000Z")
        assert parsed == datetime(2024, 6, 3, 12, 0, tzinfo=UTC)

    def test_epoch_milliseconds(self):
        """Numbers and numeric strings are epoch milliseconds."""
        expected = datetime(2024, 6, 3, 12, 0, tzinfo=UTC)
        ms = epoch_ms(expected)
        assert parse_instant(ms) == expected
        assert parse_instant(str(ms)) == expected

    def test_unparseable_returns_none(self):
        assert parse_instant("yesterday") is None
        assert parse_instant("") is None
        assert parse_instant(None) is None

    def test_naive_datetime_becomes_aware(self):
        parsed = parse_instant(datetime(2024, 6, 3, 12, 0))
        assert parsed.tzinfo is not None


class TestLocalFormatting:
    """Tests for local wall-clock helpers."""

    def test_round_trip_epoch(self):
        moment = datetime(2024, 6, 3, 12, 0, 0, 250000, tzinfo=UTC)
        assert from_epoch_ms(epoch_ms(moment)) == moment

    def test_local_date_and_minute(self):
        """Should format in the process's local timezone."""
        local = datetime(2024, 6, 3, 7, 5).astimezone()
        assert local_date_str(local) == "2024-06-03"
        assert hhmm(local) == "07:05"

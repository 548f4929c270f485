"""Tests for indexsync.core.timestamps."""

from datetime import UTC, datetime, timedelta, timezone

import pytest

from indexsync.core.timestamps import (
    from_epoch_ms,
    from_iso8601,
    generate_ulid,
    parse_instant,
    to_epoch_ms,
    to_iso8601,
    utc_now,
)


class TestUtcNow:
    def test_is_timezone_aware(self):
        assert utc_now().tzinfo is not None


class TestGenerateUlid:
    def test_length_and_alphabet(self):
        ulid = generate_ulid()
        assert len(ulid) == 26
        assert set(ulid) <= set("0123456789ABCDEFGHJKMNPQRSTVWXYZ")

    def test_unique(self):
        assert len({generate_ulid() for _ in range(200)}) == 200


class TestIso8601:
    def test_none_passthrough(self):
        assert to_iso8601(None) is None
        assert from_iso8601(None) is None

    def test_z_suffix(self):
        assert from_iso8601("2024-03-01T12:00:00Z") == datetime(2024, 3, 1, 12, tzinfo=UTC)

    def test_offset_is_normalized_to_utc(self):
        parsed = from_iso8601("2024-03-01T14:00:00+02:00")
        assert parsed == datetime(2024, 3, 1, 12, tzinfo=UTC)
        assert parsed.utcoffset() == timedelta(0)

    def test_naive_string_is_taken_as_utc(self):
        assert from_iso8601("2024-03-01T12:00:00").tzinfo is not None


class TestEpochMs:
    def test_to_epoch_ms(self):
        assert to_epoch_ms(datetime(1970, 1, 1, 0, 0, 1, tzinfo=UTC)) == 1000

    def test_naive_is_utc(self):
        assert to_epoch_ms(datetime(1970, 1, 1, 0, 0, 2)) == 2000

    def test_from_epoch_ms(self):
        assert from_epoch_ms(1_709_294_400_000) == datetime(2024, 3, 1, 12, tzinfo=UTC)

    def test_millisecond_precision_survives(self):
        dt = datetime(2024, 3, 1, 12, 0, 0, 123000, tzinfo=UTC)
        assert from_epoch_ms(to_epoch_ms(dt)) == dt


class TestParseInstant:
    def test_none(self):
        assert parse_instant(None) is None

    def test_epoch_seconds(self):
        assert parse_instant(1_709_294_400) == datetime(2024, 3, 1, 12, tzinfo=UTC)

    def test_fractional_epoch_seconds(self):
        assert parse_instant(1_709_294_400.5).microsecond == 500000

    def test_iso_string(self):
        assert parse_instant("2024-03-01T12:00:00Z") == datetime(2024, 3, 1, 12, tzinfo=UTC)

    def test_datetime_is_converted(self):
        eastern = timezone(timedelta(hours=-5))
        assert parse_instant(datetime(2024, 3, 1, 7, tzinfo=eastern)) == datetime(
            2024, 3, 1, 12, tzinfo=UTC
        )

    @pytest.mark.parametrize("value", [True, "not a date", ["2024"]])
    def test_rejects_garbage(self, value):
        with pytest.raises(ValueError):
            parse_instant(value)

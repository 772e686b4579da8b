"""Unit tests for recurringthings.timezone_utils."""

from datetime import UTC, datetime, timedelta, timezone

import pytest

from recurringthings.exceptions import InputError, TimezoneError
from recurringthings.timezone_utils import (
    CivilTimeConverter,
    ensure_aware_utc,
    get_zone,
    is_gap_time,
    is_valid_zone,
    to_civil,
    to_utc_lenient,
    to_zone,
)

pytestmark = pytest.mark.unit


class TestZoneResolution:
    def test_known_zone_resolves(self, test_timezone):
        assert str(get_zone(test_timezone)) == test_timezone

    @pytest.mark.parametrize("zone_id", ["Not/AZone", "", "Mars/Olympus_Mons"])
    def test_unknown_zone_raises_timezone_error(self, zone_id):
        with pytest.raises(TimezoneError):
            get_zone(zone_id)

    def test_timezone_error_is_input_error(self):
        with pytest.raises(InputError):
            get_zone("Nowhere/Special")

    def test_is_valid_zone(self):
        assert is_valid_zone("Europe/Paris")
        assert not is_valid_zone("Europe/Atlantis")


class TestCivilConversion:
    def test_to_civil_returns_naive_wall_clock(self, test_timezone):
        civil = to_civil(datetime(2025, 5, 1, 13, 0, tzinfo=UTC), test_timezone)
        assert civil == datetime(2025, 5, 1, 9, 0)
        assert civil.tzinfo is None

    def test_to_zone_keeps_instant(self, test_timezone):
        instant = datetime(2025, 1, 15, 15, 0, tzinfo=UTC)
        local = to_zone(instant, test_timezone)
        assert local == instant
        assert local.hour == 10
        assert local.utcoffset() == timedelta(hours=-5)

    def test_normal_time_round_trips(self, test_timezone):
        civil = datetime(2025, 7, 4, 12, 0)
        assert to_civil(to_utc_lenient(civil, test_timezone), test_timezone) == civil

    def test_gap_time_is_pushed_forward(self, test_timezone):
        # 2025-03-09 02:00 -> 03:00 in New York; 02:30 does not exist
        resolved = to_utc_lenient(datetime(2025, 3, 9, 2, 30), test_timezone)
        assert resolved == datetime(2025, 3, 9, 7, 30, tzinfo=UTC)
        assert to_civil(resolved, test_timezone) == datetime(2025, 3, 9, 3, 30)

    def test_overlap_time_resolves_to_earlier_instant(self, test_timezone):
        # 2025-11-02 01:30 happens twice in New York; EDT comes first
        resolved = to_utc_lenient(datetime(2025, 11, 2, 1, 30), test_timezone)
        assert resolved == datetime(2025, 11, 2, 5, 30, tzinfo=UTC)

    def test_lenient_conversion_ignores_input_tzinfo(self, test_timezone):
        civil = datetime(2025, 7, 4, 12, 0, tzinfo=timezone(timedelta(hours=3)))
        assert to_utc_lenient(civil, test_timezone) == datetime(2025, 7, 4, 16, 0, tzinfo=UTC)

    @pytest.mark.parametrize(
        "civil,expected",
        [
            (datetime(2025, 7, 4, 12, 0), CivilTimeConverter.CIVIL_NORMAL),
            (datetime(2025, 3, 9, 2, 30), CivilTimeConverter.CIVIL_GAP),
            (datetime(2025, 11, 2, 1, 30), CivilTimeConverter.CIVIL_OVERLAP),
        ],
    )
    def test_classify_civil_time(self, civil, expected, test_timezone):
        assert CivilTimeConverter().classify_civil_time(civil, test_timezone) == expected

    def test_is_gap_time(self, test_timezone):
        assert is_gap_time(datetime(2025, 3, 9, 2, 15), test_timezone)
        assert not is_gap_time(datetime(2025, 3, 9, 3, 0), test_timezone)
        assert not is_gap_time(datetime(2025, 11, 2, 1, 30), test_timezone)


class TestEnsureAwareUtc:
    def test_naive_datetime_rejected(self):
        with pytest.raises(InputError, match="timezone-aware"):
            ensure_aware_utc(datetime(2025, 5, 1, 9, 0), "start")

    def test_non_datetime_rejected(self):
        with pytest.raises(InputError, match="must be a datetime"):
            ensure_aware_utc("2025-05-01", "start")  # type: ignore[arg-type]

    def test_offset_datetime_normalized_to_utc(self):
        value = datetime(2025, 5, 1, 11, 0, tzinfo=timezone(timedelta(hours=2)))
        normalized = ensure_aware_utc(value, "start")
        assert normalized == datetime(2025, 5, 1, 9, 0, tzinfo=UTC)
        assert normalized.tzinfo is UTC

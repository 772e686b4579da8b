"""Civil time and UTC conversion utilities for recurringthings.

All zone lookups go through zoneinfo backed by the full IANA database, so
historical and future rule changes are honoured. Fixed UTC offsets and
Windows zone names are never accepted.

DST resolution policy for civil -> UTC:
- Gap (spring-forward): the civil time is pushed forward by the gap length,
  e.g. 02:30 on a 02:00 -> 03:00 transition day resolves to 03:30.
- Overlap (fall-back): the earlier instant wins, i.e. the first time the
  wall clock shows that value (pre-transition offset).
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, tzinfo
from functools import lru_cache
from typing import ClassVar
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .exceptions import InputError, TimezoneError

logger = logging.getLogger(__name__)


@lru_cache(maxsize=256)
def _load_zone(zone_id: str) -> ZoneInfo:
    return ZoneInfo(zone_id)


class CivilTimeConverter:
    """Maps UTC instants to wall-clock times and back for an IANA zone."""

    CIVIL_NORMAL: ClassVar[str] = "normal"
    CIVIL_GAP: ClassVar[str] = "gap"
    CIVIL_OVERLAP: ClassVar[str] = "overlap"

    def get_zone(self, zone_id: str) -> ZoneInfo:
        """Resolve an IANA zone identifier.

        Raises:
            TimezoneError: If the identifier is empty or unknown
        """
        if not zone_id or not isinstance(zone_id, str):
            raise TimezoneError(f"TimeZone {zone_id!r} is not a valid IANA time zone identifier.")
        try:
            return _load_zone(zone_id)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise TimezoneError(
                f"TimeZone {zone_id!r} is not a valid IANA time zone identifier."
            ) from e

    def is_valid_zone(self, zone_id: str) -> bool:
        try:
            self.get_zone(zone_id)
        except TimezoneError:
            return False
        return True

    def to_civil(self, utc_instant: datetime, zone_id: str) -> datetime:
        """Return the naive wall-clock time of an instant in the given zone."""
        zone = self.get_zone(zone_id)
        return utc_instant.astimezone(zone).replace(tzinfo=None, fold=0)

    def to_zone(self, utc_instant: datetime, zone_id: str) -> datetime:
        """Return the instant as an aware datetime expressed in the given zone."""
        return utc_instant.astimezone(self.get_zone(zone_id))

    def to_utc_lenient(self, civil: datetime, zone_id: str) -> datetime:
        """Map a wall-clock time to a UTC instant using the lenient DST policy.

        With fold=0, zoneinfo applies the pre-transition offset to both gap
        and overlap times, which yields gap-forward and earlier-overlap
        resolution respectively.
        """
        zone = self.get_zone(zone_id)
        naive = civil.replace(tzinfo=None, fold=0)
        resolved = naive.replace(tzinfo=zone).astimezone(UTC)

        if logger.isEnabledFor(logging.DEBUG):
            kind = self._classify(naive, zone)
            if kind != self.CIVIL_NORMAL:
                logger.debug(
                    "Lenient DST resolution: %s in %s is a %s, resolved to %s",
                    naive.isoformat(),
                    zone_id,
                    kind,
                    resolved.isoformat(),
                )
        return resolved

    def classify_civil_time(self, civil: datetime, zone_id: str) -> str:
        """Report whether a wall-clock time is normal, in a DST gap, or in an overlap."""
        return self._classify(civil.replace(tzinfo=None, fold=0), self.get_zone(zone_id))

    def _classify(self, naive: datetime, zone: tzinfo) -> str:
        first = naive.replace(tzinfo=zone, fold=0)
        second = naive.replace(tzinfo=zone, fold=1)
        if first.utcoffset() == second.utcoffset():
            return self.CIVIL_NORMAL
        # A gap time does not survive the round trip through UTC
        round_trip = first.astimezone(UTC).astimezone(zone).replace(tzinfo=None)
        if round_trip != naive:
            return self.CIVIL_GAP
        return self.CIVIL_OVERLAP


# Singleton instance for global use
_converter = CivilTimeConverter()


def get_zone(zone_id: str) -> ZoneInfo:
    """Resolve an IANA zone (convenience function)."""
    return _converter.get_zone(zone_id)


def is_valid_zone(zone_id: str) -> bool:
    return _converter.is_valid_zone(zone_id)


def to_civil(utc_instant: datetime, zone_id: str) -> datetime:
    """Convert a UTC instant to naive civil time (convenience function)."""
    return _converter.to_civil(utc_instant, zone_id)


def to_zone(utc_instant: datetime, zone_id: str) -> datetime:
    return _converter.to_zone(utc_instant, zone_id)


def to_utc_lenient(civil: datetime, zone_id: str) -> datetime:
    """Convert civil time to UTC with lenient DST handling (convenience function)."""
    return _converter.to_utc_lenient(civil, zone_id)


def is_gap_time(civil: datetime, zone_id: str) -> bool:
    """Return True when the wall-clock time is skipped by a spring-forward transition."""
    return _converter.classify_civil_time(civil, zone_id) == CivilTimeConverter.CIVIL_GAP


def is_aware(value: datetime) -> bool:
    return value.tzinfo is not None and value.utcoffset() is not None


def ensure_aware_utc(value: datetime, name: str) -> datetime:
    """Normalize an aware datetime to UTC.

    Naive datetimes carry no offset and cannot be placed on the timeline, so
    they are rejected instead of guessed.

    Raises:
        InputError: If value is not a datetime or is naive
    """
    if not isinstance(value, datetime):
        raise InputError(f"{name} must be a datetime, got {type(value).__name__}.")
    if not is_aware(value):
        raise InputError(
            f"{name} must be timezone-aware. Naive datetimes are not allowed."
        )
    return value.astimezone(UTC)

"""Request validation for recurringthings.

Every check here runs before any storage I/O and raises an ``InputError``
subclass on failure.
"""

from __future__ import annotations

import calendar
import logging
from collections.abc import Mapping, Sequence
from datetime import datetime, timedelta
from typing import Any, Optional

from .exceptions import InputError, MonthDayOutOfBoundsError, RRuleValidationError
from .models import MonthDayBehavior
from .rrule_expander import ParsedRRule, extract_until, has_count, normalize_rrule
from .timezone_utils import get_zone, to_civil

logger = logging.getLogger(__name__)

MAX_ORGANIZATION_LENGTH = 100
MAX_RESOURCE_PATH_LENGTH = 100
MIN_TYPE_LENGTH = 1
MAX_TYPE_LENGTH = 100
MIN_RRULE_LENGTH = 1
MAX_RRULE_LENGTH = 2000
MIN_TIME_ZONE_LENGTH = 1
MAX_TIME_ZONE_LENGTH = 100
MIN_EXTENSION_KEY_LENGTH = 1
MAX_EXTENSION_KEY_LENGTH = 100
MAX_EXTENSION_VALUE_LENGTH = 1024

# Tolerance when comparing UNTIL against an explicit recurrence end time
UNTIL_TOLERANCE = timedelta(seconds=1)

# Every month has at least this many days
SAFE_MONTH_DAY = 28


def _check_length(name: str, value: Any, min_length: int, max_length: int) -> None:
    if value is None:
        raise InputError(f"{name} cannot be null.")
    if not isinstance(value, str):
        raise InputError(f"{name} must be a string.")
    if len(value) < min_length:
        raise InputError(f"{name} must be at least {min_length} character(s).")
    if len(value) > max_length:
        raise InputError(
            f"{name} must not exceed {max_length} characters. Actual length: {len(value)}."
        )


def validate_scope(organization: str, resource_path: str) -> None:
    """Check tenant scope keys. Empty strings are allowed."""
    _check_length("Organization", organization, 0, MAX_ORGANIZATION_LENGTH)
    _check_length("ResourcePath", resource_path, 0, MAX_RESOURCE_PATH_LENGTH)


def validate_type(type_: str) -> None:
    _check_length("Type", type_, MIN_TYPE_LENGTH, MAX_TYPE_LENGTH)


def validate_time_zone(time_zone: str) -> None:
    """Check length limits and that the identifier resolves in the IANA database."""
    _check_length("TimeZone", time_zone, MIN_TIME_ZONE_LENGTH, MAX_TIME_ZONE_LENGTH)
    get_zone(time_zone)


def validate_duration(duration: timedelta) -> None:
    if not isinstance(duration, timedelta):
        raise InputError(f"Duration must be a timedelta, got {type(duration).__name__}.")
    if duration <= timedelta(0):
        raise InputError(f"Duration must be positive. Got: {duration}.")


def validate_extensions(extensions: Optional[Mapping[str, str]]) -> None:
    """Check extension key and value limits. ``None`` means no extensions."""
    if extensions is None:
        return
    if not isinstance(extensions, Mapping):
        raise InputError("Extensions must be a mapping of strings to strings.")
    for key, value in extensions.items():
        if not isinstance(key, str) or not (
            MIN_EXTENSION_KEY_LENGTH <= len(key) <= MAX_EXTENSION_KEY_LENGTH
        ):
            raise InputError(
                f"Extension keys must be between {MIN_EXTENSION_KEY_LENGTH} and "
                f"{MAX_EXTENSION_KEY_LENGTH} characters."
            )
        if value is None:
            raise InputError(f"Extension value for key {key!r} cannot be null.")
        if not isinstance(value, str):
            raise InputError(f"Extension value for key {key!r} must be a string.")
        if len(value) > MAX_EXTENSION_VALUE_LENGTH:
            raise InputError(
                f"Extension value for key {key!r} must not exceed "
                f"{MAX_EXTENSION_VALUE_LENGTH} characters. Actual length: {len(value)}."
            )


def validate_types_filter(types: Optional[Sequence[str]]) -> None:
    """Reject an empty type filter; ``None`` means all types."""
    if types is not None and len(types) == 0:
        raise InputError("Types filter cannot be an empty list. Use None to include all types.")


def validate_query_window(start: datetime, end: datetime) -> None:
    if end <= start:
        raise InputError(f"Query end ({end.isoformat()}) must be after start ({start.isoformat()}).")


def validate_rrule(rrule_string: str, recurrence_end_time: Optional[datetime] = None) -> datetime:
    """Check rule length and bound constraints and return the UTC UNTIL.

    Args:
        rrule_string: RFC 5545 rule body
        recurrence_end_time: Optional explicit end that must match UNTIL

    Returns:
        The UNTIL instant in UTC

    Raises:
        RRuleValidationError: If the rule has COUNT, lacks a UTC UNTIL, or
            UNTIL disagrees with recurrence_end_time
    """
    _check_length("RRule", rrule_string, MIN_RRULE_LENGTH, MAX_RRULE_LENGTH)
    if not normalize_rrule(rrule_string):
        raise RRuleValidationError("RRule must be at least 1 character(s).")
    if has_count(rrule_string):
        raise RRuleValidationError("RRule COUNT is not supported. Use UNTIL instead.")

    until = extract_until(rrule_string)

    if recurrence_end_time is not None and abs(until - recurrence_end_time) > UNTIL_TOLERANCE:
        raise RRuleValidationError(
            f"RecurrenceEndTime ({recurrence_end_time.isoformat()}) must match RRule UNTIL "
            f"({until.isoformat()}) when converted to UTC."
        )
    return until


def _iter_months(first: tuple[int, int], last: tuple[int, int], interval: int = 1):
    year, month = first
    while (year, month) <= last:
        yield year, month
        month += interval
        while month > 12:
            year, month = year + 1, month - 12


def find_affected_months(
    day_of_month: int,
    start_time: datetime,
    end_time: datetime,
    time_zone: str,
    by_month: Sequence[int] = (),
    interval: int = 1,
) -> list[int]:
    """Return month numbers (1-12) in the civil range lacking ``day_of_month``.

    Only the months the rule visits count: every ``interval``-th month from
    the start month, restricted to ``by_month`` when given. February only
    counts as affected in years where the day is missing, so a 29th ending
    inside a leap February is fine.
    """
    if day_of_month <= SAFE_MONTH_DAY:
        return []
    civil_start = to_civil(start_time, time_zone)
    civil_end = to_civil(end_time, time_zone)

    affected: set[int] = set()
    for year, month in _iter_months(
        (civil_start.year, civil_start.month), (civil_end.year, civil_end.month), interval
    ):
        if by_month and month not in by_month:
            continue
        if calendar.monthrange(year, month)[1] < day_of_month:
            affected.add(month)
    return sorted(affected)


def resolve_month_day_behavior(
    parsed: ParsedRRule,
    start_time: datetime,
    end_time: datetime,
    time_zone: str,
    behavior: MonthDayBehavior = MonthDayBehavior.THROW,
) -> Optional[MonthDayBehavior]:
    """Decide the policy tag stored with a new recurrence.

    Only monthly rules that land on a day number are checked. Weekday rules
    such as ``BYDAY=-1FR`` and negative ``BYMONTHDAY`` values always exist.

    Returns:
        None when no month is affected, otherwise the requested skip or
        clamp behavior

    Raises:
        MonthDayOutOfBoundsError: If months are affected and behavior is throw
    """
    targets = parsed.month_day_targets(to_civil(start_time, time_zone).day)
    if not targets:
        return None

    target_day = max(targets)
    affected = find_affected_months(
        target_day, start_time, end_time, time_zone, parsed.by_month, parsed.interval
    )
    if not affected:
        return None

    if behavior == MonthDayBehavior.THROW:
        raise MonthDayOutOfBoundsError(target_day, affected)

    logger.debug(
        "Monthly day %d missing in months %s; storing %s behavior",
        target_day,
        affected,
        behavior.value,
    )
    return behavior

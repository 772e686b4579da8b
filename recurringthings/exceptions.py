"""Exception hierarchy for the recurringthings engine.

Every error raised by the engine itself inherits from RecurringThingsError so
callers can catch engine failures in one place. Errors raised by storage
collaborators are never wrapped and propagate unchanged.
"""

from __future__ import annotations

from calendar import month_name
from collections.abc import Sequence


class RecurringThingsError(Exception):
    """Base exception for all engine errors."""


class InputError(RecurringThingsError, ValueError):
    """Request validation failed before any collaborator I/O.

    Raised when:
    - A datetime is naive (no tzinfo)
    - A duration is zero or negative
    - A type filter is an empty list
    - Extension keys or values exceed their limits
    """


class TimezoneError(InputError):
    """Timezone identifier is not a known IANA zone."""


class RRuleValidationError(InputError):
    """Recurrence rule is malformed or uses an unsupported feature.

    Raised when:
    - The rule cannot be parsed
    - UNTIL is missing or not expressed in UTC
    - COUNT is present
    - UNTIL does not match the supplied recurrence end time
    """


class MonthDayOutOfBoundsError(InputError):
    """Monthly rule targets a day that does not exist in every month of its range.

    Callers are expected to retry creation with an explicit skip or clamp
    behavior once the user has chosen one.
    """

    def __init__(self, day_of_month: int, affected_months: Sequence[int]):
        self.day_of_month = day_of_month
        self.affected_months = list(affected_months)
        names = ", ".join(month_name[m] for m in self.affected_months)
        super().__init__(
            f"Monthly recurrence day {day_of_month} doesn't exist in all months. "
            f"Affected months: {names}. Consider using skip or clamp behavior."
        )


class NotFoundError(RecurringThingsError, LookupError):
    """Referenced recurrence, occurrence or override is absent in scope."""


class InvariantViolation(RecurringThingsError):
    """Requested mutation would break an engine invariant.

    Raised when:
    - An immutable field differs from the stored record
    - A recurrence pattern is updated or deleted through the instance path
    - A non-overridden instance is restored
    - An excepted (cancelled) slot is mutated
    """


class FetchTimeoutError(RecurringThingsError, TimeoutError):
    """A concurrent fetch phase exceeded its configured timeout."""

"""Occurrence generation strategies for recurring patterns.

A generator turns one recurrence into the UTC instants of its slots inside a
query window. Two strategies exist, selected by the recurrence's stored
month-day policy:

- StandardOccurrenceGenerator: dateutil expansion in civil time; days that do
  not exist in a month (e.g. Feb 30) are skipped.
- ClampedMonthlyOccurrenceGenerator: walk over the rule's months that clamps
  the target day to the month length (31 -> Feb 28/29, Apr 30, ...).

Both yield lazily, ascending, without duplicates, and only instants within
``[query_start, query_end)`` and ``[start_time, recurrence_end_time]``.
"""

from __future__ import annotations

import calendar
import heapq
import logging
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Optional, Protocol

from dateutil.rrule import rrule

from .models import MonthDayBehavior, Recurrence
from .rrule_expander import ParsedRRule, RRuleExpander, get_expander, parse_rrule_string
from .timezone_utils import is_gap_time, to_civil, to_utc_lenient

logger = logging.getLogger(__name__)

END_OF_DAY = time(23, 59, 59)


@dataclass
class RecurrencePattern:
    """A recurrence rule compiled once per query."""

    rule: rrule
    parsed: ParsedRRule
    civil_start: datetime


def compile_pattern(recurrence: Recurrence, expander: Optional[RRuleExpander] = None) -> RecurrencePattern:
    """Parse a recurrence's rule and anchor it at its civil start time.

    Rule evaluator errors propagate unchanged.
    """
    expander = expander or get_expander()
    civil_start = to_civil(recurrence.start_time, recurrence.time_zone)
    return RecurrencePattern(
        rule=expander.build_rule(recurrence.rrule, civil_start),
        parsed=parse_rrule_string(recurrence.rrule),
        civil_start=civil_start,
    )


class OccurrenceGenerator(Protocol):
    """Strategy producing the UTC slot instants of a recurrence."""

    def generate(
        self,
        recurrence: Recurrence,
        pattern: RecurrencePattern,
        query_start: datetime,
        query_end: datetime,
    ) -> Iterator[datetime]: ...


class StandardOccurrenceGenerator:
    """Expands the rule with dateutil across a day-aligned civil window."""

    def __init__(self, expander: Optional[RRuleExpander] = None):
        self.expander = expander or get_expander()

    def generate(
        self,
        recurrence: Recurrence,
        pattern: RecurrencePattern,
        query_start: datetime,
        query_end: datetime,
    ) -> Iterator[datetime]:
        zone_id = recurrence.time_zone

        # Widen to whole civil days so DST offsets never cut off a candidate
        window_start = datetime.combine(to_civil(query_start, zone_id).date(), time.min)
        window_end = datetime.combine(to_civil(query_end, zone_id).date(), END_OF_DAY)
        until_civil_day = to_civil(recurrence.recurrence_end_time, zone_id).date()
        window_end = min(window_end, datetime.combine(until_civil_day, END_OF_DAY))

        if window_end < window_start:
            return

        rule = self.expander.anchor_near(
            pattern.rule, pattern.parsed, pattern.civil_start, window_start
        )

        # A gap time resolves past the wall-clock times right after the gap,
        # so it is held back until a regular time catches up with it.
        pending: list[datetime] = []
        last: Optional[datetime] = None
        for civil in self.expander.expand(rule, window_start, window_end):
            instant = to_utc_lenient(civil, zone_id)
            heapq.heappush(pending, instant)
            if is_gap_time(civil, zone_id):
                continue

            # Every later candidate maps after a regular time's instant
            while pending and pending[0] <= instant:
                ready = heapq.heappop(pending)
                if (last is None or ready > last) and _within(recurrence, ready, query_start, query_end):
                    last = ready
                    yield ready
            if instant >= query_end or instant > recurrence.recurrence_end_time:
                return

        while pending:
            ready = heapq.heappop(pending)
            if (last is None or ready > last) and _within(recurrence, ready, query_start, query_end):
                last = ready
                yield ready


class ClampedMonthlyOccurrenceGenerator:
    """Monthly generator that clamps an out-of-bounds day to the month's last day.

    Months are stepped by the rule's INTERVAL from the start month and
    filtered by BYMONTH. Clamped occurrences still respect the recurrence
    end: with an end on March 15 and a target day of 30, March produces
    nothing.
    """

    def generate(
        self,
        recurrence: Recurrence,
        pattern: RecurrencePattern,
        query_start: datetime,
        query_end: datetime,
    ) -> Iterator[datetime]:
        zone_id = recurrence.time_zone
        civil_start = pattern.civil_start
        parsed = pattern.parsed
        target_days = parsed.month_day_targets(civil_start.day)
        time_of_day = civil_start.time()
        interval = parsed.interval

        first_month = _month_index(civil_start)
        last_month = _month_index(to_civil(recurrence.recurrence_end_time, zone_id))
        query_month = _month_index(to_civil(query_start, zone_id))

        # Skip months that end before the query window begins, staying on the INTERVAL grid
        index = first_month
        if query_month > first_month:
            index += -(-(query_month - first_month) // interval) * interval

        while index <= last_month:
            year, month0 = divmod(index, 12)
            month = month0 + 1
            index += interval
            if parsed.by_month and month not in parsed.by_month:
                continue

            month_length = calendar.monthrange(year, month)[1]
            for day in sorted({min(d, month_length) for d in target_days}):
                civil = datetime.combine(date(year, month, day), time_of_day)
                instant = to_utc_lenient(civil, zone_id)
                if instant >= query_end:
                    return
                if _within(recurrence, instant, query_start, query_end):
                    yield instant


def _month_index(value: datetime) -> int:
    return value.year * 12 + value.month - 1


def _within(recurrence: Recurrence, instant: datetime, query_start: datetime, query_end: datetime) -> bool:
    return (
        query_start <= instant < query_end
        and recurrence.start_time <= instant <= recurrence.recurrence_end_time
    )


_standard = StandardOccurrenceGenerator()
_clamped = ClampedMonthlyOccurrenceGenerator()


def get_generator(recurrence: Recurrence) -> OccurrenceGenerator:
    """Select the generation strategy from the recurrence's stored policy.

    Clamping only applies to rules that pick days by number; weekday-based
    rules always use the standard strategy.
    """
    if recurrence.month_day_behavior == MonthDayBehavior.CLAMP and parse_rrule_string(
        recurrence.rrule
    ).month_day_targets(1):
        return _clamped
    return _standard


def generate_occurrences(
    recurrence: Recurrence,
    query_start: datetime,
    query_end: datetime,
    pattern: Optional[RecurrencePattern] = None,
) -> Iterator[datetime]:
    """Compile the recurrence (if needed) and run its generator."""
    if pattern is None:
        pattern = compile_pattern(recurrence)
    return get_generator(recurrence).generate(recurrence, pattern, query_start, query_end)

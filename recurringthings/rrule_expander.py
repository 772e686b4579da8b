"""RRULE parsing and expansion for recurringthings.

Raw RFC 5545 expansion is delegated to dateutil. This module adds the rule
constraints the engine relies on (explicit UTC UNTIL, no COUNT) and a lazy
expansion entry point that never materializes the full series.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Optional

from dateutil.rrule import rrule, rrulestr

from .exceptions import RRuleValidationError

logger = logging.getLogger(__name__)

_COUNT_RE = re.compile(r"(?:^|;)\s*COUNT\s*=", re.IGNORECASE)
_UNTIL_RE = re.compile(r"(?:^|;)\s*UNTIL\s*=\s*(?P<until>[^;]+)", re.IGNORECASE)
_UNTIL_PART_RE = re.compile(r"(?:^|;)\s*UNTIL\s*=\s*[^;]*", re.IGNORECASE)
_PREFIX_RE = re.compile(r"^\s*RRULE\s*:", re.IGNORECASE)

_FREQUENCIES = ("YEARLY", "MONTHLY", "WEEKLY", "DAILY", "HOURLY", "MINUTELY", "SECONDLY")

# Sub-daily frequencies and the length of one step, in seconds
_STEP_SECONDS = {"HOURLY": 3600, "MINUTELY": 60, "SECONDLY": 1}


@dataclass
class ParsedRRule:
    """Components of a rule that the engine inspects directly."""

    freq: str
    interval: int = 1
    until: Optional[datetime] = None
    count: Optional[int] = None
    by_month_day: list[int] = field(default_factory=list)
    by_month: list[int] = field(default_factory=list)
    by_day: list[str] = field(default_factory=list)
    by_set_pos: list[int] = field(default_factory=list)
    parts: frozenset[str] = frozenset()

    @property
    def is_monthly(self) -> bool:
        return self.freq == "MONTHLY"

    @property
    def has_by_parts(self) -> bool:
        return any(part.startswith("BY") for part in self.parts)

    def month_day_targets(self, start_day: int) -> list[int]:
        """Return the days of month a monthly rule lands on by day number.

        Weekday-based rules (BYDAY, BYSETPOS) and negative BYMONTHDAY values
        never name a missing day, so they produce an empty list. Without
        BYMONTHDAY the start day is used.
        """
        if not self.is_monthly or self.by_day or self.by_set_pos:
            return []
        if self.by_month_day:
            return sorted({d for d in self.by_month_day if d > 0})
        return [start_day]


def normalize_rrule(rrule_string: str) -> str:
    """Strip an optional ``RRULE:`` prefix and surrounding whitespace."""
    return _PREFIX_RE.sub("", rrule_string.strip())


def has_count(rrule_string: str) -> bool:
    return bool(_COUNT_RE.search(normalize_rrule(rrule_string)))


def strip_until(rrule_string: str) -> str:
    """Remove the UNTIL part so the rule can be anchored to a naive civil DTSTART.

    dateutil refuses a UTC UNTIL together with a naive DTSTART, and the engine
    bounds expansion itself against the UTC recurrence end time.
    """
    body = _UNTIL_PART_RE.sub("", normalize_rrule(rrule_string))
    return ";".join(part for part in body.split(";") if part.strip())


def parse_until(value: str) -> datetime:
    """Parse an iCalendar UTC date-time (``YYYYMMDDTHHMMSSZ``).

    Raises:
        RRuleValidationError: If the value is not a UTC date-time
    """
    raw = value.strip()
    if not raw.upper().endswith("Z"):
        raise RRuleValidationError(f"RRule UNTIL must be in UTC (must end with 'Z'). Found: {raw}")
    try:
        parsed = datetime.strptime(raw[:-1], "%Y%m%dT%H%M%S")
    except ValueError as e:
        raise RRuleValidationError(f"RRule UNTIL is not a valid date-time: {raw}") from e
    return parsed.replace(tzinfo=UTC)


def extract_until(rrule_string: str) -> datetime:
    """Return the UTC UNTIL instant of a rule.

    Raises:
        RRuleValidationError: If UNTIL is absent or not in UTC
    """
    match = _UNTIL_RE.search(normalize_rrule(rrule_string))
    if not match:
        raise RRuleValidationError("RRule must contain UNTIL. COUNT is not supported.")
    return parse_until(match.group("until"))


def _parse_int_list(value: str) -> list[int]:
    return [int(v) for v in value.split(",") if v.strip()]


def parse_rrule_string(rrule_string: str) -> ParsedRRule:
    """Parse RRULE string into components.

    Args:
        rrule_string: RRULE string (e.g. "FREQ=MONTHLY;BYMONTHDAY=31;UNTIL=20241231T235959Z")

    Returns:
        ParsedRRule with the inspected components

    Raises:
        RRuleValidationError: If RRULE string is invalid
    """
    if not rrule_string or not rrule_string.strip():
        raise RRuleValidationError("Empty RRULE string")

    components: dict[str, str] = {}
    for part in normalize_rrule(rrule_string).split(";"):
        if not part.strip():
            continue
        if "=" not in part:
            raise RRuleValidationError(f"Invalid RRULE part {part!r} in {rrule_string!r}")
        key, value = part.split("=", 1)
        components[key.strip().upper()] = value.strip()

    freq = components.get("FREQ", "").upper()
    if freq not in _FREQUENCIES:
        raise RRuleValidationError(f"RRULE missing or invalid FREQ parameter: {rrule_string!r}")

    try:
        parsed = ParsedRRule(
            freq=freq,
            interval=int(components.get("INTERVAL", "1")),
            count=int(components["COUNT"]) if "COUNT" in components else None,
            by_month_day=_parse_int_list(components.get("BYMONTHDAY", "")),
            by_month=_parse_int_list(components.get("BYMONTH", "")),
            by_day=[d.strip().upper() for d in components.get("BYDAY", "").split(",") if d.strip()],
            by_set_pos=_parse_int_list(components.get("BYSETPOS", "")),
            parts=frozenset(components),
        )
    except ValueError as e:
        raise RRuleValidationError(f"Invalid RRULE format: {rrule_string}") from e

    if parsed.interval < 1:
        raise RRuleValidationError(f"RRULE INTERVAL must be positive: {rrule_string!r}")
    if "UNTIL" in components:
        parsed.until = parse_until(components["UNTIL"])
    return parsed


class RRuleExpander:
    """Adapter over dateutil's RFC 5545 evaluator working in naive civil time."""

    def build_rule(self, rrule_string: str, dtstart: datetime) -> rrule:
        """Build a dateutil rule anchored at a naive civil DTSTART.

        Errors raised by dateutil propagate unchanged.
        """
        rule = rrulestr(strip_until(rrule_string), dtstart=dtstart.replace(tzinfo=None), ignoretz=True)
        if not isinstance(rule, rrule):
            raise RRuleValidationError(f"Unsupported RRULE (expected a single rule): {rrule_string!r}")
        return rule

    def validate(self, rrule_string: str, dtstart: datetime) -> ParsedRRule:
        """Check a rule is parseable by both the engine and dateutil.

        Raises:
            RRuleValidationError: If either parser rejects the rule
        """
        parsed = parse_rrule_string(rrule_string)
        try:
            self.build_rule(rrule_string, dtstart)
        except (ValueError, TypeError) as e:
            raise RRuleValidationError(f"Invalid RRULE format: {rrule_string}") from e
        return parsed

    def anchor_near(
        self, rule: rrule, parsed: ParsedRRule, civil_start: datetime, civil_window_start: datetime
    ) -> rrule:
        """Move a plain sub-daily rule's DTSTART up to the window.

        ``xafter`` walks every occurrence from DTSTART, which for a minutely
        rule queried years into its range takes seconds. Rules made only of
        FREQ and INTERVAL step by a fixed civil length, so the last step at or
        before the window start is an equivalent anchor. Other rules are
        returned unchanged.
        """
        step_seconds = _STEP_SECONDS.get(parsed.freq)
        if step_seconds is None or parsed.has_by_parts or civil_window_start <= civil_start:
            return rule
        step = timedelta(seconds=step_seconds * parsed.interval)
        steps = (civil_window_start - civil_start) // step
        if steps == 0:
            return rule
        return rule.replace(dtstart=civil_start.replace(tzinfo=None) + steps * step)

    def expand(
        self,
        pattern: rrule,
        civil_window_start: datetime,
        civil_window_end: datetime,
    ) -> Iterator[datetime]:
        """Yield civil occurrence times in ``[civil_window_start, civil_window_end]``.

        Uses ``rrule.xafter`` so dense rules are streamed rather than listed.
        """
        for occurrence in pattern.xafter(civil_window_start, inc=True):
            if occurrence > civil_window_end:
                break
            yield occurrence


# Shared stateless instance
_expander = RRuleExpander()


def get_expander() -> RRuleExpander:
    return _expander

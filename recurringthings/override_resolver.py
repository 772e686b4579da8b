"""Exception and override resolution for virtualized occurrences.

Generated slot instants are filtered and substituted here:

1. An excepted slot is dropped, whatever else is stored for it.
2. An overridden slot is replaced by its override, shown only when the
   override's new range still intersects the query window.
3. Overrides whose original slot lies outside the window but whose new range
   intersects it are appended afterwards ("moved into view").

This module also builds the CalendarEntry result shapes and reconstructs
the per-slot state used by the mutation planner.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union
from uuid import UUID

from .models import (
    CalendarEntry,
    EntryType,
    Occurrence,
    OccurrenceException,
    OccurrenceOverride,
    OriginalDetails,
    Recurrence,
    RecurrenceDetails,
)
from .timezone_utils import to_zone

logger = logging.getLogger(__name__)


# Slot states


@dataclass(frozen=True)
class Generated:
    """Slot shows the pattern's values."""


@dataclass(frozen=True)
class Overridden:
    """Slot shows an override's values."""

    override: OccurrenceOverride


@dataclass(frozen=True)
class Excepted:
    """Slot is cancelled. Terminal."""

    exception: OccurrenceException


SlotState = Union[Generated, Overridden, Excepted]


def determine_slot_state(
    recurrence_id: UUID,
    original_time: datetime,
    exceptions: Iterable[OccurrenceException],
    overrides: Iterable[OccurrenceOverride],
) -> SlotState:
    """Reconstruct the state of one slot from stored exceptions and overrides.

    An exception always wins over an override for the same slot.
    """
    for exception in exceptions:
        if exception.recurrence_id == recurrence_id and exception.original_time == original_time:
            return Excepted(exception)
    for override in overrides:
        if override.recurrence_id == recurrence_id and override.original_time == original_time:
            return Overridden(override)
    return Generated()


def intersects(start: datetime, end: datetime, window_start: datetime, window_end: datetime) -> bool:
    """Half-open intersection test of ``[start, end)`` with ``[window_start, window_end)``."""
    return start < window_end and end > window_start


# Entry builders


def _recurrence_details(recurrence: Recurrence) -> RecurrenceDetails:
    return RecurrenceDetails(rrule=recurrence.rrule, month_day_behavior=recurrence.month_day_behavior)


def _copy_extensions(extensions: Optional[dict[str, str]]) -> Optional[dict[str, str]]:
    return dict(extensions) if extensions is not None else None


def build_recurrence_entry(recurrence: Recurrence) -> CalendarEntry:
    """Pattern entry describing the first occurrence of a recurrence."""
    return CalendarEntry(
        organization=recurrence.organization,
        resource_path=recurrence.resource_path,
        type=recurrence.type,
        entry_type=EntryType.RECURRENCE,
        start_time=to_zone(recurrence.start_time, recurrence.time_zone),
        end_time=to_zone(recurrence.start_time + recurrence.duration, recurrence.time_zone),
        duration=recurrence.duration,
        time_zone=recurrence.time_zone,
        extensions=_copy_extensions(recurrence.extensions),
        recurrence_id=recurrence.id,
        recurrence_details=_recurrence_details(recurrence),
    )


def build_virtualized_entry(recurrence: Recurrence, slot_time: datetime) -> CalendarEntry:
    """Plain virtualized entry carrying the pattern's values."""
    return CalendarEntry(
        organization=recurrence.organization,
        resource_path=recurrence.resource_path,
        type=recurrence.type,
        entry_type=EntryType.VIRTUALIZED,
        start_time=to_zone(slot_time, recurrence.time_zone),
        end_time=to_zone(slot_time + recurrence.duration, recurrence.time_zone),
        duration=recurrence.duration,
        time_zone=recurrence.time_zone,
        extensions=_copy_extensions(recurrence.extensions),
        recurrence_id=recurrence.id,
        original_time=slot_time,
        recurrence_details=_recurrence_details(recurrence),
    )


def build_override_entry(recurrence: Recurrence, override: OccurrenceOverride) -> CalendarEntry:
    """Virtualized entry showing an override, with the pre-override snapshot."""
    return CalendarEntry(
        organization=recurrence.organization,
        resource_path=recurrence.resource_path,
        type=recurrence.type,
        entry_type=EntryType.VIRTUALIZED,
        start_time=to_zone(override.start_time, recurrence.time_zone),
        end_time=to_zone(override.end_time, recurrence.time_zone),
        duration=override.duration,
        time_zone=recurrence.time_zone,
        extensions=_copy_extensions(override.extensions),
        recurrence_id=recurrence.id,
        override_id=override.id,
        original_time=override.original_time,
        recurrence_details=_recurrence_details(recurrence),
        original=OriginalDetails(
            start_time=override.original_time,
            duration=override.original_duration,
            extensions=_copy_extensions(override.original_extensions),
        ),
    )


def build_standalone_entry(occurrence: Occurrence) -> CalendarEntry:
    return CalendarEntry(
        organization=occurrence.organization,
        resource_path=occurrence.resource_path,
        type=occurrence.type,
        entry_type=EntryType.STANDALONE,
        start_time=to_zone(occurrence.start_time, occurrence.time_zone),
        end_time=to_zone(occurrence.end_time, occurrence.time_zone),
        duration=occurrence.duration,
        time_zone=occurrence.time_zone,
        extensions=_copy_extensions(occurrence.extensions),
        occurrence_id=occurrence.id,
    )


class RecurrenceResolver:
    """Applies one recurrence's exceptions and overrides to its generated slots.

    ``resolve_slot`` handles step 2 one instant at a time so callers can
    interleave cooperative yields; ``moved_into_view`` handles step 3.
    """

    def __init__(
        self,
        recurrence: Recurrence,
        exceptions: Iterable[OccurrenceException],
        overrides: Iterable[OccurrenceOverride],
        window_start: datetime,
        window_end: datetime,
    ):
        self.recurrence = recurrence
        self.window_start = window_start
        self.window_end = window_end
        self.excepted_times: set[datetime] = {e.original_time for e in exceptions}
        self.overrides_by_time: dict[datetime, OccurrenceOverride] = {
            o.original_time: o for o in overrides
        }

    def resolve_slot(self, slot_time: datetime) -> Optional[CalendarEntry]:
        """Return the entry for a generated slot, or None when it is hidden."""
        if slot_time in self.excepted_times:
            return None

        override = self.overrides_by_time.get(slot_time)
        if override is None:
            return build_virtualized_entry(self.recurrence, slot_time)

        if not intersects(override.start_time, override.end_time, self.window_start, self.window_end):
            # Moved out of the window
            return None
        return build_override_entry(self.recurrence, override)

    def moved_into_view(self) -> Iterator[CalendarEntry]:
        """Yield overrides whose slot is outside the window but whose new range is inside."""
        for original_time, override in self.overrides_by_time.items():
            if self.window_start <= original_time < self.window_end:
                continue
            if original_time in self.excepted_times:
                continue
            if not intersects(override.start_time, override.end_time, self.window_start, self.window_end):
                continue
            yield build_override_entry(self.recurrence, override)

    def resolve(self, slot_times: Iterable[datetime]) -> Iterator[CalendarEntry]:
        """Run both resolution steps over a stream of generated instants."""
        for slot_time in slot_times:
            entry = self.resolve_slot(slot_time)
            if entry is not None:
                yield entry
        yield from self.moved_into_view()

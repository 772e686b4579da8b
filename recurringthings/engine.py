"""Recurrence engine: query and mutation entry points for calendar entries.

Queries run in two concurrent fetch phases:

1. recurrences and standalone occurrences overlapping the window
2. exceptions and overrides of the recurrences found (skipped when none)

Each recurrence is then expanded by its generator and resolved against its
exceptions and overrides. Results stream back as an async generator with
cooperative yields, followed by the standalone occurrences unmodified.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import AsyncIterator, Sequence
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from .async_utils import AsyncOrchestrator, collect
from .config_loader import EngineConfig
from .exceptions import InputError, NotFoundError
from .models import (
    CalendarEntry,
    CreateRecurrenceOptions,
    Occurrence,
    OccurrenceException,
    OccurrenceOverride,
    Recurrence,
)
from .mutation_planner import MutationPlanner
from .occurrence_generators import compile_pattern, get_generator
from .override_resolver import (
    RecurrenceResolver,
    build_recurrence_entry,
    build_standalone_entry,
)
from .protocols import StoreBundle, TransactionContext
from .rrule_expander import RRuleExpander, get_expander
from .timezone_utils import ensure_aware_utc, to_civil
from .validation import (
    resolve_month_day_behavior,
    validate_duration,
    validate_extensions,
    validate_query_window,
    validate_rrule,
    validate_scope,
    validate_time_zone,
    validate_type,
    validate_types_filter,
)

logger = logging.getLogger(__name__)


class RecurrenceEngine:
    """Computes calendar entries on demand and applies per-instance mutations.

    The engine keeps no state between calls; all persistence goes through
    the injected stores.
    """

    def __init__(
        self,
        stores: StoreBundle,
        config: Optional[EngineConfig] = None,
        expander: Optional[RRuleExpander] = None,
    ):
        self.stores = stores
        self.config = config or EngineConfig()
        self.expander = expander or get_expander()
        self.planner = MutationPlanner(stores)
        self._orchestrator = AsyncOrchestrator(default_timeout=self.config.fetch_timeout_seconds)

        logger.debug(
            "RecurrenceEngine initialized: fetch_timeout=%s, yield_frequency=%d",
            self.config.fetch_timeout_seconds,
            self.config.yield_frequency,
        )

    # Queries

    async def get_occurrences(
        self,
        organization: str,
        resource_path: str,
        start: datetime,
        end: datetime,
        types: Optional[Sequence[str]] = None,
        transaction: Optional[TransactionContext] = None,
    ) -> AsyncIterator[CalendarEntry]:
        """Stream virtualized and standalone entries visible in ``[start, end)``.

        Args:
            organization: Tenant scope
            resource_path: Resource scope
            start: Inclusive window start (timezone-aware)
            end: Exclusive window end (timezone-aware)
            types: Optional type filter, None for all types
            transaction: Optional transaction passed to every read

        Yields:
            CalendarEntry instances; per recurrence ascending by slot, then
            overrides moved into the window, then standalone entries

        Raises:
            InputError: For naive datetimes, an empty window or an empty type filter
            FetchTimeoutError: If a fetch phase exceeds the configured timeout
        """
        start_utc = ensure_aware_utc(start, "start")
        end_utc = ensure_aware_utc(end, "end")
        validate_query_window(start_utc, end_utc)
        validate_types_filter(types)

        recurrences, occurrences = await self._orchestrator.gather_with_timeout(
            collect(
                self.stores.recurrences.get_in_range(
                    organization, resource_path, start_utc, end_utc, types, transaction=transaction
                )
            ),
            collect(
                self.stores.occurrences.get_in_range(
                    organization, resource_path, start_utc, end_utc, types, transaction=transaction
                )
            ),
        )

        exceptions_by_recurrence: dict[UUID, list[OccurrenceException]] = defaultdict(list)
        overrides_by_recurrence: dict[UUID, list[OccurrenceOverride]] = defaultdict(list)

        if recurrences:
            recurrence_ids = [r.id for r in recurrences]
            exceptions, overrides = await self._orchestrator.gather_with_timeout(
                collect(
                    self.stores.exceptions.get_by_recurrence_ids(
                        organization, resource_path, recurrence_ids, transaction=transaction
                    )
                ),
                collect(
                    self.stores.overrides.get_in_range(
                        organization,
                        resource_path,
                        recurrence_ids,
                        start_utc,
                        end_utc,
                        transaction=transaction,
                    )
                ),
            )
            for exception in exceptions:
                exceptions_by_recurrence[exception.recurrence_id].append(exception)
            for override in overrides:
                overrides_by_recurrence[override.recurrence_id].append(override)

        logger.debug(
            "Query %s..%s: %d recurrences, %d standalone occurrences",
            start_utc.isoformat(),
            end_utc.isoformat(),
            len(recurrences),
            len(occurrences),
        )

        generated = 0
        for recurrence in recurrences:
            await asyncio.sleep(0)

            resolver = RecurrenceResolver(
                recurrence,
                exceptions_by_recurrence.get(recurrence.id, []),
                overrides_by_recurrence.get(recurrence.id, []),
                start_utc,
                end_utc,
            )
            pattern = compile_pattern(recurrence, self.expander)
            generator = get_generator(recurrence)

            for slot_time in generator.generate(recurrence, pattern, start_utc, end_utc):
                generated += 1
                if generated % self.config.yield_frequency == 0:
                    await asyncio.sleep(0)
                entry = resolver.resolve_slot(slot_time)
                if entry is not None:
                    yield entry

            for entry in resolver.moved_into_view():
                yield entry

        for occurrence in occurrences:
            yield build_standalone_entry(occurrence)

    async def get_recurrences(
        self,
        organization: str,
        resource_path: str,
        start: datetime,
        end: datetime,
        types: Optional[Sequence[str]] = None,
        transaction: Optional[TransactionContext] = None,
    ) -> AsyncIterator[CalendarEntry]:
        """Stream pattern entries for recurrences overlapping ``[start, end)``."""
        start_utc = ensure_aware_utc(start, "start")
        end_utc = ensure_aware_utc(end, "end")
        validate_query_window(start_utc, end_utc)
        validate_types_filter(types)

        async for recurrence in self.stores.recurrences.get_in_range(
            organization, resource_path, start_utc, end_utc, types, transaction=transaction
        ):
            yield build_recurrence_entry(recurrence)

    async def get_recurrence(
        self,
        organization: str,
        resource_path: str,
        recurrence_id: UUID,
        transaction: Optional[TransactionContext] = None,
    ) -> CalendarEntry:
        """Return the pattern entry of a recurrence.

        Raises:
            NotFoundError: If the recurrence is absent in scope
        """
        recurrence = await self.stores.recurrences.get_by_id(
            recurrence_id, organization, resource_path, transaction=transaction
        )
        if recurrence is None:
            raise NotFoundError(f"Recurrence with ID '{recurrence_id}' not found.")
        return build_recurrence_entry(recurrence)

    async def get_occurrence(
        self,
        organization: str,
        resource_path: str,
        occurrence_id: UUID,
        transaction: Optional[TransactionContext] = None,
    ) -> CalendarEntry:
        """Return a standalone occurrence entry.

        Raises:
            NotFoundError: If the occurrence is absent in scope
        """
        occurrence = await self.stores.occurrences.get_by_id(
            occurrence_id, organization, resource_path, transaction=transaction
        )
        if occurrence is None:
            raise NotFoundError(f"Occurrence with ID '{occurrence_id}' not found.")
        return build_standalone_entry(occurrence)

    # Creation

    async def create_recurrence(
        self,
        organization: str,
        resource_path: str,
        type: str,
        start_time: datetime,
        duration: timedelta,
        rrule: str,
        time_zone: str,
        extensions: Optional[dict[str, str]] = None,
        recurrence_end_time: Optional[datetime] = None,
        options: Optional[CreateRecurrenceOptions] = None,
        transaction: Optional[TransactionContext] = None,
    ) -> CalendarEntry:
        """Validate and persist a new recurrence.

        The rule must carry a UTC UNTIL, which becomes the recurrence end
        time. When recurrence_end_time is also given it must match UNTIL.

        Raises:
            InputError: For any invalid argument, see validation
            RRuleValidationError: For COUNT, a missing or non-UTC UNTIL, or an unparsable rule
            MonthDayOutOfBoundsError: If a monthly day is missing in some months and
                the month-day behavior is throw
        """
        validate_scope(organization, resource_path)
        validate_type(type)
        validate_time_zone(time_zone)
        start_utc = ensure_aware_utc(start_time, "start_time")
        validate_duration(duration)
        validate_extensions(extensions)
        end_utc = (
            ensure_aware_utc(recurrence_end_time, "recurrence_end_time")
            if recurrence_end_time is not None
            else None
        )

        until = validate_rrule(rrule, end_utc)
        if start_utc > until:
            raise InputError(
                f"start_time ({start_utc.isoformat()}) must not be after RRule UNTIL ({until.isoformat()})."
            )
        parsed = self.expander.validate(rrule, to_civil(start_utc, time_zone))

        if options is None:
            options = CreateRecurrenceOptions(
                month_day_behavior=self.config.default_month_day_behavior
            )
        month_day_behavior = resolve_month_day_behavior(
            parsed, start_utc, until, time_zone, options.month_day_behavior
        )

        recurrence = Recurrence(
            organization=organization,
            resource_path=resource_path,
            type=type,
            start_time=start_utc,
            duration=duration,
            recurrence_end_time=until,
            rrule=rrule,
            time_zone=time_zone,
            month_day_behavior=month_day_behavior,
            extensions=dict(extensions) if extensions is not None else None,
        )
        created = await self.stores.recurrences.create(recurrence, transaction=transaction)
        logger.info(
            "Created recurrence %s (%s) from %s until %s",
            created.id,
            created.type,
            created.start_time.isoformat(),
            created.recurrence_end_time.isoformat(),
        )
        return build_recurrence_entry(created)

    async def create_occurrence(
        self,
        organization: str,
        resource_path: str,
        type: str,
        start_time: datetime,
        duration: timedelta,
        time_zone: str,
        extensions: Optional[dict[str, str]] = None,
        transaction: Optional[TransactionContext] = None,
    ) -> CalendarEntry:
        """Validate and persist a standalone occurrence."""
        validate_scope(organization, resource_path)
        validate_type(type)
        validate_time_zone(time_zone)
        start_utc = ensure_aware_utc(start_time, "start_time")
        validate_duration(duration)
        validate_extensions(extensions)

        occurrence = Occurrence(
            organization=organization,
            resource_path=resource_path,
            type=type,
            start_time=start_utc,
            duration=duration,
            time_zone=time_zone,
            extensions=dict(extensions) if extensions is not None else None,
        )
        created = await self.stores.occurrences.create(occurrence, transaction=transaction)
        logger.info("Created standalone occurrence %s (%s)", created.id, created.type)
        return build_standalone_entry(created)

    # Mutation

    async def update_occurrence(
        self, entry: CalendarEntry, transaction: Optional[TransactionContext] = None
    ) -> CalendarEntry:
        """Update a standalone occurrence or override one virtualized instance."""
        return await self.planner.update(entry, transaction=transaction)

    async def delete_occurrence(
        self, entry: CalendarEntry, transaction: Optional[TransactionContext] = None
    ) -> None:
        """Delete a standalone occurrence or cancel one virtualized instance."""
        await self.planner.delete(entry, transaction=transaction)

    async def restore_occurrence(
        self, entry: CalendarEntry, transaction: Optional[TransactionContext] = None
    ) -> CalendarEntry:
        """Remove the override of a virtualized instance."""
        return await self.planner.restore(entry, transaction=transaction)

    async def update_recurrence(
        self,
        organization: str,
        resource_path: str,
        recurrence_id: UUID,
        duration: Optional[timedelta] = None,
        extensions: Optional[dict[str, str]] = None,
        transaction: Optional[TransactionContext] = None,
    ) -> CalendarEntry:
        """Change the duration or extensions of a recurrence.

        The rule, start, end and time zone can only change by deleting and
        recreating the recurrence. Existing overrides keep their own values.
        """
        if duration is not None:
            validate_duration(duration)
        validate_extensions(extensions)

        recurrence = await self.stores.recurrences.get_by_id(
            recurrence_id, organization, resource_path, transaction=transaction
        )
        if recurrence is None:
            raise NotFoundError(f"Recurrence with ID '{recurrence_id}' not found.")

        if duration is not None:
            recurrence.duration = duration
        if extensions is not None:
            recurrence.extensions = dict(extensions)

        updated = await self.stores.recurrences.update(recurrence, transaction=transaction)
        logger.debug("Updated recurrence %s", updated.id)
        return build_recurrence_entry(updated)

    async def delete_recurrence(
        self,
        organization: str,
        resource_path: str,
        recurrence_id: UUID,
        transaction: Optional[TransactionContext] = None,
    ) -> None:
        """Delete a recurrence with its exceptions and overrides.

        Raises:
            NotFoundError: If the recurrence is absent in scope
        """
        recurrence = await self.stores.recurrences.get_by_id(
            recurrence_id, organization, resource_path, transaction=transaction
        )
        if recurrence is None:
            raise NotFoundError(f"Recurrence with ID '{recurrence_id}' not found.")

        # Cascade order: exceptions, overrides, then the pattern
        await self.stores.exceptions.delete_by_recurrence_id(
            recurrence_id, organization, resource_path, transaction=transaction
        )
        await self.stores.overrides.delete_by_recurrence_id(
            recurrence_id, organization, resource_path, transaction=transaction
        )
        await self.stores.recurrences.delete(
            recurrence_id, organization, resource_path, transaction=transaction
        )
        logger.info("Deleted recurrence %s with its exceptions and overrides", recurrence_id)

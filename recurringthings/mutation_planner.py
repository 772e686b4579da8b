"""Per-instance mutation flows for calendar entries.

Virtualized instances move through a small state machine keyed by
``(recurrence_id, original_time)``:

    Generated  --update-->  Overridden   (override created, pattern snapshot kept)
    Overridden --update-->  Overridden   (live values changed, snapshot preserved)
    Generated  --delete-->  Excepted     (exception at the generated slot time)
    Overridden --delete-->  Excepted     (override removed, exception at its original time)
    Overridden --restore--> Generated    (override removed)

Excepted is terminal. Restoring a Generated slot is rejected. Standalone
occurrences are updated or deleted directly and can never be restored.

Every check runs before the first write, and the caller's transaction
context is passed to every read and write.
"""

from __future__ import annotations

import logging
from contextlib import aclosing
from datetime import datetime
from typing import Optional

from .exceptions import InputError, InvariantViolation, NotFoundError
from .models import CalendarEntry, EntryType, Occurrence, OccurrenceException, OccurrenceOverride, Recurrence
from .override_resolver import (
    Excepted,
    Generated,
    Overridden,
    SlotState,
    build_override_entry,
    build_standalone_entry,
    build_virtualized_entry,
)
from .protocols import StoreBundle, TransactionContext
from .timezone_utils import ensure_aware_utc
from .validation import validate_duration, validate_extensions, validate_type

logger = logging.getLogger(__name__)


def _check_immutable(field_name: str, requested: object, stored: object, reason: str) -> None:
    if requested != stored:
        raise InvariantViolation(f"Cannot modify {field_name}. {reason}")


class MutationPlanner:
    """Plans and applies update, delete and restore for a single calendar entry."""

    def __init__(self, stores: StoreBundle):
        self.stores = stores

    # Public entry points

    async def update(
        self, entry: CalendarEntry, transaction: Optional[TransactionContext] = None
    ) -> CalendarEntry:
        """Apply the entry's start time, duration and extensions to its slot or record.

        Raises:
            InvariantViolation: For patterns, excepted slots or immutable field changes
            NotFoundError: If the parent record or override is absent in scope
            InputError: If the requested values are invalid
        """
        self._reject_pattern(entry, "update", "Delete and recreate the recurrence instead.")
        start_time = ensure_aware_utc(entry.start_time, "start_time")
        validate_duration(entry.duration)
        validate_extensions(entry.extensions)

        if self._is_standalone(entry):
            validate_type(entry.type)
            return await self._update_standalone(entry, start_time, transaction)

        recurrence = await self._load_parent(entry, transaction)
        state = await self._load_slot_state(entry, recurrence, transaction)

        if isinstance(state, Excepted):
            raise InvariantViolation("Cannot update a cancelled occurrence.")

        if isinstance(state, Overridden):
            override = state.override
            override.start_time = start_time
            override.duration = entry.duration
            override.extensions = dict(entry.extensions) if entry.extensions is not None else None
            updated = await self.stores.overrides.update(override, transaction=transaction)
            logger.debug("Updated override %s of recurrence %s", updated.id, recurrence.id)
            return build_override_entry(recurrence, updated)

        override = OccurrenceOverride(
            organization=recurrence.organization,
            resource_path=recurrence.resource_path,
            recurrence_id=recurrence.id,
            original_time=self._slot_time(entry),
            start_time=start_time,
            duration=entry.duration,
            extensions=dict(entry.extensions) if entry.extensions is not None else None,
            original_duration=recurrence.duration,
            original_extensions=dict(recurrence.extensions) if recurrence.extensions is not None else None,
        )
        created = await self.stores.overrides.create(override, transaction=transaction)
        logger.info(
            "Created override %s for recurrence %s at %s",
            created.id,
            recurrence.id,
            created.original_time.isoformat(),
        )
        return build_override_entry(recurrence, created)

    async def delete(
        self, entry: CalendarEntry, transaction: Optional[TransactionContext] = None
    ) -> None:
        """Cancel a virtualized slot or remove a standalone occurrence.

        Raises:
            InvariantViolation: For patterns, already cancelled slots or immutable field changes
            NotFoundError: If the parent record or override is absent in scope
        """
        self._reject_pattern(entry, "delete", "Use delete_recurrence instead.")

        if self._is_standalone(entry):
            occurrence = await self._load_standalone(entry, transaction)
            await self.stores.occurrences.delete(
                occurrence.id, occurrence.organization, occurrence.resource_path, transaction=transaction
            )
            logger.info("Deleted standalone occurrence %s", occurrence.id)
            return

        recurrence = await self._load_parent(entry, transaction)
        state = await self._load_slot_state(entry, recurrence, transaction)

        if isinstance(state, Excepted):
            raise InvariantViolation("Occurrence is already cancelled.")

        if isinstance(state, Overridden):
            override = state.override
            await self.stores.overrides.delete(
                override.id, override.organization, override.resource_path, transaction=transaction
            )
            original_time = override.original_time
        else:
            original_time = self._slot_time(entry)

        exception = OccurrenceException(
            organization=recurrence.organization,
            resource_path=recurrence.resource_path,
            recurrence_id=recurrence.id,
            original_time=original_time,
        )
        created = await self.stores.exceptions.create(exception, transaction=transaction)
        logger.info(
            "Cancelled occurrence of recurrence %s at %s (exception %s)",
            recurrence.id,
            original_time.isoformat(),
            created.id,
        )

    async def restore(
        self, entry: CalendarEntry, transaction: Optional[TransactionContext] = None
    ) -> CalendarEntry:
        """Drop a slot's override so it shows the pattern again.

        Returns:
            The plain virtualized entry for the slot

        Raises:
            InvariantViolation: Unless the slot is currently overridden
        """
        self._reject_pattern(entry, "restore", "Only overridden occurrences can be restored.")
        if self._is_standalone(entry):
            raise InvariantViolation("Cannot restore a standalone occurrence.")

        recurrence = await self._load_parent(entry, transaction)
        state = await self._load_slot_state(entry, recurrence, transaction)

        if isinstance(state, Excepted):
            raise InvariantViolation("Cannot restore a cancelled occurrence.")
        if isinstance(state, Generated):
            raise InvariantViolation("Cannot restore an occurrence that has no override.")

        override = state.override
        await self.stores.overrides.delete(
            override.id, override.organization, override.resource_path, transaction=transaction
        )
        logger.info("Restored occurrence of recurrence %s at %s", recurrence.id, override.original_time.isoformat())
        return build_virtualized_entry(recurrence, override.original_time)

    # Helpers

    @staticmethod
    def _reject_pattern(entry: CalendarEntry, action: str, hint: str) -> None:
        if entry.entry_type == EntryType.RECURRENCE:
            raise InvariantViolation(f"Cannot {action} a recurrence pattern through an occurrence. {hint}")

    @staticmethod
    def _is_standalone(entry: CalendarEntry) -> bool:
        if entry.entry_type == EntryType.STANDALONE:
            if entry.occurrence_id is None:
                raise InputError("Standalone entry is missing occurrence_id.")
            return True
        if entry.entry_type == EntryType.VIRTUALIZED:
            if entry.recurrence_id is None:
                raise InputError("Virtualized entry is missing recurrence_id.")
            return False
        raise InputError(f"Unsupported entry type: {entry.entry_type!r}")

    @staticmethod
    def _slot_time(entry: CalendarEntry) -> datetime:
        if entry.original_time is None:
            raise InputError("Virtualized entry is missing original_time.")
        return ensure_aware_utc(entry.original_time, "original_time")

    async def _load_standalone(
        self, entry: CalendarEntry, transaction: Optional[TransactionContext]
    ) -> Occurrence:
        occurrence = await self.stores.occurrences.get_by_id(
            entry.occurrence_id, entry.organization, entry.resource_path, transaction=transaction
        )
        if occurrence is None:
            raise NotFoundError(f"Occurrence with ID '{entry.occurrence_id}' not found.")
        _check_immutable(
            "TimeZone", entry.time_zone, occurrence.time_zone, "This field is immutable after creation."
        )
        return occurrence

    async def _update_standalone(
        self, entry: CalendarEntry, start_time: datetime, transaction: Optional[TransactionContext]
    ) -> CalendarEntry:
        occurrence = await self._load_standalone(entry, transaction)

        # Assignment re-validates the model, end_time follows start_time + duration
        occurrence.type = entry.type
        occurrence.start_time = start_time
        occurrence.duration = entry.duration
        occurrence.extensions = dict(entry.extensions) if entry.extensions is not None else None

        updated = await self.stores.occurrences.update(occurrence, transaction=transaction)
        logger.debug("Updated standalone occurrence %s", updated.id)
        return build_standalone_entry(updated)

    async def _load_parent(
        self, entry: CalendarEntry, transaction: Optional[TransactionContext]
    ) -> Recurrence:
        # Validate the slot key before any I/O
        self._slot_time(entry)
        recurrence = await self.stores.recurrences.get_by_id(
            entry.recurrence_id, entry.organization, entry.resource_path, transaction=transaction
        )
        if recurrence is None:
            raise NotFoundError(f"Parent recurrence with ID '{entry.recurrence_id}' not found.")

        inherited = "This field is inherited from the parent recurrence."
        _check_immutable("Organization", entry.organization, recurrence.organization, inherited)
        _check_immutable("ResourcePath", entry.resource_path, recurrence.resource_path, inherited)
        _check_immutable("Type", entry.type, recurrence.type, inherited)
        _check_immutable("TimeZone", entry.time_zone, recurrence.time_zone, inherited)
        return recurrence

    async def _load_slot_state(
        self,
        entry: CalendarEntry,
        recurrence: Recurrence,
        transaction: Optional[TransactionContext],
    ) -> SlotState:
        """Reconstruct the slot's state from stored exceptions and overrides."""
        slot_time = self._slot_time(entry)
        scope = (recurrence.organization, recurrence.resource_path)

        async with aclosing(
            self.stores.exceptions.get_by_recurrence_ids(*scope, [recurrence.id], transaction=transaction)
        ) as exceptions:
            async for exception in exceptions:
                if exception.original_time == slot_time:
                    return Excepted(exception)

        if entry.override_id is not None:
            override = await self.stores.overrides.get_by_id(
                entry.override_id, *scope, transaction=transaction
            )
            if override is None:
                raise NotFoundError(f"Override with ID '{entry.override_id}' not found.")
            if override.recurrence_id != recurrence.id or override.original_time != slot_time:
                raise InvariantViolation(
                    f"Override '{override.id}' does not belong to this occurrence."
                )
            return Overridden(override)

        async with aclosing(
            self.stores.overrides.get_by_recurrence_ids(*scope, [recurrence.id], transaction=transaction)
        ) as overrides:
            async for override in overrides:
                if override.original_time == slot_time:
                    return Overridden(override)
        return Generated()

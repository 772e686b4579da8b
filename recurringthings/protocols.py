"""Protocol definitions for recurringthings storage collaborators.

The engine never talks to a database directly. Storage adapters implement
these Protocols; every method accepts an optional transaction context that
the engine threads through all reads and writes of a single operation.

Stream methods are plain ``def`` returning an ``AsyncIterator`` so adapters
can implement them as async generators.
"""

from __future__ import annotations

import datetime
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass
from typing import Any, Optional, Protocol, runtime_checkable
from uuid import UUID

from .models import Occurrence, OccurrenceException, OccurrenceOverride, Recurrence


@runtime_checkable
class TransactionContext(Protocol):
    """Opaque transaction handle supplied by the caller.

    The engine only passes it along; commit and rollback belong to the caller.
    """

    @property
    def transaction(self) -> Any:
        """Underlying adapter-specific transaction object."""
        ...


class RecurrenceStore(Protocol):
    """Protocol for recurrence pattern storage."""

    def get_in_range(
        self,
        organization: str,
        resource_path: str,
        start: datetime.datetime,
        end: datetime.datetime,
        types: Optional[Sequence[str]] = None,
        transaction: Optional[TransactionContext] = None,
    ) -> AsyncIterator[Recurrence]:
        """Stream recurrences whose span overlaps the window.

        Matches ``start_time < end`` and ``recurrence_end_time >= start``.
        """
        ...

    async def get_by_id(
        self,
        recurrence_id: UUID,
        organization: str,
        resource_path: str,
        transaction: Optional[TransactionContext] = None,
    ) -> Optional[Recurrence]: ...

    async def create(
        self, recurrence: Recurrence, transaction: Optional[TransactionContext] = None
    ) -> Recurrence: ...

    async def update(
        self, recurrence: Recurrence, transaction: Optional[TransactionContext] = None
    ) -> Recurrence:
        """Persist duration and extensions changes only."""
        ...

    async def delete(
        self,
        recurrence_id: UUID,
        organization: str,
        resource_path: str,
        transaction: Optional[TransactionContext] = None,
    ) -> None: ...


class OccurrenceStore(Protocol):
    """Protocol for standalone occurrence storage."""

    def get_in_range(
        self,
        organization: str,
        resource_path: str,
        start: datetime.datetime,
        end: datetime.datetime,
        types: Optional[Sequence[str]] = None,
        transaction: Optional[TransactionContext] = None,
    ) -> AsyncIterator[Occurrence]:
        """Stream occurrences with ``start_time < end`` and ``end_time > start``."""
        ...

    async def get_by_id(
        self,
        occurrence_id: UUID,
        organization: str,
        resource_path: str,
        transaction: Optional[TransactionContext] = None,
    ) -> Optional[Occurrence]: ...

    async def create(
        self, occurrence: Occurrence, transaction: Optional[TransactionContext] = None
    ) -> Occurrence: ...

    async def update(
        self, occurrence: Occurrence, transaction: Optional[TransactionContext] = None
    ) -> Occurrence: ...

    async def delete(
        self,
        occurrence_id: UUID,
        organization: str,
        resource_path: str,
        transaction: Optional[TransactionContext] = None,
    ) -> None: ...


class ExceptionStore(Protocol):
    """Protocol for occurrence exception storage."""

    def get_by_recurrence_ids(
        self,
        organization: str,
        resource_path: str,
        recurrence_ids: Sequence[UUID],
        transaction: Optional[TransactionContext] = None,
    ) -> AsyncIterator[OccurrenceException]: ...

    async def create(
        self, exception: OccurrenceException, transaction: Optional[TransactionContext] = None
    ) -> OccurrenceException: ...

    async def delete_by_recurrence_id(
        self,
        recurrence_id: UUID,
        organization: str,
        resource_path: str,
        transaction: Optional[TransactionContext] = None,
    ) -> None: ...


class OverrideStore(Protocol):
    """Protocol for occurrence override storage."""

    def get_by_recurrence_ids(
        self,
        organization: str,
        resource_path: str,
        recurrence_ids: Sequence[UUID],
        transaction: Optional[TransactionContext] = None,
    ) -> AsyncIterator[OccurrenceOverride]: ...

    def get_in_range(
        self,
        organization: str,
        resource_path: str,
        recurrence_ids: Sequence[UUID],
        start: datetime.datetime,
        end: datetime.datetime,
        transaction: Optional[TransactionContext] = None,
    ) -> AsyncIterator[OccurrenceOverride]:
        """Stream overrides relevant to the window.

        Matches when ``original_time`` lies in ``[start, end)`` or the
        replacement range ``[start_time, end_time)`` intersects the window.
        """
        ...

    async def get_by_id(
        self,
        override_id: UUID,
        organization: str,
        resource_path: str,
        transaction: Optional[TransactionContext] = None,
    ) -> Optional[OccurrenceOverride]: ...

    async def create(
        self, override: OccurrenceOverride, transaction: Optional[TransactionContext] = None
    ) -> OccurrenceOverride: ...

    async def update(
        self, override: OccurrenceOverride, transaction: Optional[TransactionContext] = None
    ) -> OccurrenceOverride: ...

    async def delete(
        self,
        override_id: UUID,
        organization: str,
        resource_path: str,
        transaction: Optional[TransactionContext] = None,
    ) -> None: ...

    async def delete_by_recurrence_id(
        self,
        recurrence_id: UUID,
        organization: str,
        resource_path: str,
        transaction: Optional[TransactionContext] = None,
    ) -> None: ...


@dataclass
class StoreBundle:
    """Container for the four storage collaborators the engine depends on."""

    recurrences: RecurrenceStore
    occurrences: OccurrenceStore
    exceptions: ExceptionStore
    overrides: OverrideStore

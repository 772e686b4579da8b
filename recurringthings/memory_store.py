"""In-memory storage adapters for recurringthings.

Reference implementations of the four store protocols, used by tests and
local development. Records are copied on the way in and out so callers can
never mutate stored state without going through ``update``.
"""

from __future__ import annotations

import datetime
import logging
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass, field
from typing import Any, Generic, Optional, TypeVar
from uuid import UUID

from pydantic import BaseModel

from .models import Occurrence, OccurrenceException, OccurrenceOverride, Recurrence
from .protocols import StoreBundle, TransactionContext

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


@dataclass
class MemoryTransaction:
    """Transaction handle for the in-memory stores.

    Writes are applied immediately; the handle only records which operations
    ran under it.
    """

    transaction: Any = None
    operations: list[str] = field(default_factory=list)


def _record(transaction: Optional[TransactionContext], operation: str) -> None:
    if isinstance(transaction, MemoryTransaction):
        transaction.operations.append(operation)


class _ScopedTable(Generic[ModelT]):
    """Dict-backed table of records keyed by id and scoped by tenant."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._rows: dict[UUID, ModelT] = {}

    def __len__(self) -> int:
        return len(self._rows)

    def all(self) -> list[ModelT]:
        return [row.model_copy(deep=True) for row in self._rows.values()]

    def _in_scope(self, row: Any, organization: str, resource_path: str) -> bool:
        return row.organization == organization and row.resource_path == resource_path

    def _get(self, record_id: UUID, organization: str, resource_path: str) -> Optional[ModelT]:
        row = self._rows.get(record_id)
        if row is None or not self._in_scope(row, organization, resource_path):
            return None
        return row.model_copy(deep=True)

    def _insert(self, record: ModelT) -> ModelT:
        if record.id in self._rows:  # type: ignore[attr-defined]
            raise KeyError(f"{self.name} with ID '{record.id}' already exists")  # type: ignore[attr-defined]
        self._rows[record.id] = record.model_copy(deep=True)  # type: ignore[attr-defined]
        return record.model_copy(deep=True)

    def _replace(self, record: ModelT) -> ModelT:
        if record.id not in self._rows:  # type: ignore[attr-defined]
            raise KeyError(f"{self.name} with ID '{record.id}' not found")  # type: ignore[attr-defined]
        self._rows[record.id] = record.model_copy(deep=True)  # type: ignore[attr-defined]
        return record.model_copy(deep=True)

    def _remove(self, record_id: UUID, organization: str, resource_path: str) -> None:
        row = self._rows.get(record_id)
        if row is not None and self._in_scope(row, organization, resource_path):
            del self._rows[record_id]


class InMemoryRecurrenceStore(_ScopedTable[Recurrence]):
    def __init__(self) -> None:
        super().__init__("Recurrence")

    async def get_in_range(
        self,
        organization: str,
        resource_path: str,
        start: datetime.datetime,
        end: datetime.datetime,
        types: Optional[Sequence[str]] = None,
        transaction: Optional[TransactionContext] = None,
    ) -> AsyncIterator[Recurrence]:
        _record(transaction, "recurrences.get_in_range")
        for row in list(self._rows.values()):
            if not self._in_scope(row, organization, resource_path):
                continue
            if types is not None and row.type not in types:
                continue
            if row.start_time < end and row.recurrence_end_time >= start:
                yield row.model_copy(deep=True)

    async def get_by_id(
        self,
        recurrence_id: UUID,
        organization: str,
        resource_path: str,
        transaction: Optional[TransactionContext] = None,
    ) -> Optional[Recurrence]:
        _record(transaction, "recurrences.get_by_id")
        return self._get(recurrence_id, organization, resource_path)

    async def create(
        self, recurrence: Recurrence, transaction: Optional[TransactionContext] = None
    ) -> Recurrence:
        _record(transaction, "recurrences.create")
        return self._insert(recurrence)

    async def update(
        self, recurrence: Recurrence, transaction: Optional[TransactionContext] = None
    ) -> Recurrence:
        _record(transaction, "recurrences.update")
        stored = self._rows.get(recurrence.id)
        if stored is None:
            raise KeyError(f"Recurrence with ID '{recurrence.id}' not found")
        # Only duration and extensions are persisted
        stored.duration = recurrence.duration
        stored.extensions = dict(recurrence.extensions) if recurrence.extensions is not None else None
        return stored.model_copy(deep=True)

    async def delete(
        self,
        recurrence_id: UUID,
        organization: str,
        resource_path: str,
        transaction: Optional[TransactionContext] = None,
    ) -> None:
        _record(transaction, "recurrences.delete")
        self._remove(recurrence_id, organization, resource_path)


class InMemoryOccurrenceStore(_ScopedTable[Occurrence]):
    def __init__(self) -> None:
        super().__init__("Occurrence")

    async def get_in_range(
        self,
        organization: str,
        resource_path: str,
        start: datetime.datetime,
        end: datetime.datetime,
        types: Optional[Sequence[str]] = None,
        transaction: Optional[TransactionContext] = None,
    ) -> AsyncIterator[Occurrence]:
        _record(transaction, "occurrences.get_in_range")
        for row in list(self._rows.values()):
            if not self._in_scope(row, organization, resource_path):
                continue
            if types is not None and row.type not in types:
                continue
            if row.start_time < end and row.end_time > start:
                yield row.model_copy(deep=True)

    async def get_by_id(
        self,
        occurrence_id: UUID,
        organization: str,
        resource_path: str,
        transaction: Optional[TransactionContext] = None,
    ) -> Optional[Occurrence]:
        _record(transaction, "occurrences.get_by_id")
        return self._get(occurrence_id, organization, resource_path)

    async def create(
        self, occurrence: Occurrence, transaction: Optional[TransactionContext] = None
    ) -> Occurrence:
        _record(transaction, "occurrences.create")
        return self._insert(occurrence)

    async def update(
        self, occurrence: Occurrence, transaction: Optional[TransactionContext] = None
    ) -> Occurrence:
        _record(transaction, "occurrences.update")
        return self._replace(occurrence)

    async def delete(
        self,
        occurrence_id: UUID,
        organization: str,
        resource_path: str,
        transaction: Optional[TransactionContext] = None,
    ) -> None:
        _record(transaction, "occurrences.delete")
        self._remove(occurrence_id, organization, resource_path)


class InMemoryExceptionStore(_ScopedTable[OccurrenceException]):
    def __init__(self) -> None:
        super().__init__("OccurrenceException")

    async def get_by_recurrence_ids(
        self,
        organization: str,
        resource_path: str,
        recurrence_ids: Sequence[UUID],
        transaction: Optional[TransactionContext] = None,
    ) -> AsyncIterator[OccurrenceException]:
        _record(transaction, "exceptions.get_by_recurrence_ids")
        wanted = set(recurrence_ids)
        for row in list(self._rows.values()):
            if self._in_scope(row, organization, resource_path) and row.recurrence_id in wanted:
                yield row.model_copy(deep=True)

    async def create(
        self, exception: OccurrenceException, transaction: Optional[TransactionContext] = None
    ) -> OccurrenceException:
        _record(transaction, "exceptions.create")
        return self._insert(exception)

    async def delete_by_recurrence_id(
        self,
        recurrence_id: UUID,
        organization: str,
        resource_path: str,
        transaction: Optional[TransactionContext] = None,
    ) -> None:
        _record(transaction, "exceptions.delete_by_recurrence_id")
        for row in list(self._rows.values()):
            if self._in_scope(row, organization, resource_path) and row.recurrence_id == recurrence_id:
                del self._rows[row.id]


class InMemoryOverrideStore(_ScopedTable[OccurrenceOverride]):
    def __init__(self) -> None:
        super().__init__("OccurrenceOverride")

    async def get_by_recurrence_ids(
        self,
        organization: str,
        resource_path: str,
        recurrence_ids: Sequence[UUID],
        transaction: Optional[TransactionContext] = None,
    ) -> AsyncIterator[OccurrenceOverride]:
        _record(transaction, "overrides.get_by_recurrence_ids")
        wanted = set(recurrence_ids)
        for row in list(self._rows.values()):
            if self._in_scope(row, organization, resource_path) and row.recurrence_id in wanted:
                yield row.model_copy(deep=True)

    async def get_in_range(
        self,
        organization: str,
        resource_path: str,
        recurrence_ids: Sequence[UUID],
        start: datetime.datetime,
        end: datetime.datetime,
        transaction: Optional[TransactionContext] = None,
    ) -> AsyncIterator[OccurrenceOverride]:
        _record(transaction, "overrides.get_in_range")
        wanted = set(recurrence_ids)
        for row in list(self._rows.values()):
            if not self._in_scope(row, organization, resource_path) or row.recurrence_id not in wanted:
                continue
            original_in_range = start <= row.original_time < end
            moved_in_range = row.start_time < end and row.end_time > start
            if original_in_range or moved_in_range:
                yield row.model_copy(deep=True)

    async def get_by_id(
        self,
        override_id: UUID,
        organization: str,
        resource_path: str,
        transaction: Optional[TransactionContext] = None,
    ) -> Optional[OccurrenceOverride]:
        _record(transaction, "overrides.get_by_id")
        return self._get(override_id, organization, resource_path)

    async def create(
        self, override: OccurrenceOverride, transaction: Optional[TransactionContext] = None
    ) -> OccurrenceOverride:
        _record(transaction, "overrides.create")
        return self._insert(override)

    async def update(
        self, override: OccurrenceOverride, transaction: Optional[TransactionContext] = None
    ) -> OccurrenceOverride:
        _record(transaction, "overrides.update")
        return self._replace(override)

    async def delete(
        self,
        override_id: UUID,
        organization: str,
        resource_path: str,
        transaction: Optional[TransactionContext] = None,
    ) -> None:
        _record(transaction, "overrides.delete")
        self._remove(override_id, organization, resource_path)

    async def delete_by_recurrence_id(
        self,
        recurrence_id: UUID,
        organization: str,
        resource_path: str,
        transaction: Optional[TransactionContext] = None,
    ) -> None:
        _record(transaction, "overrides.delete_by_recurrence_id")
        for row in list(self._rows.values()):
            if self._in_scope(row, organization, resource_path) and row.recurrence_id == recurrence_id:
                del self._rows[row.id]


def create_memory_stores() -> StoreBundle:
    """Build a fresh bundle of empty in-memory stores."""
    return StoreBundle(
        recurrences=InMemoryRecurrenceStore(),
        occurrences=InMemoryOccurrenceStore(),
        exceptions=InMemoryExceptionStore(),
        overrides=InMemoryOverrideStore(),
    )

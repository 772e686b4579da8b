"""Unit tests for recurringthings.mutation_planner."""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from recurringthings.exceptions import InputError, InvariantViolation, NotFoundError
from recurringthings.mutation_planner import MutationPlanner
from recurringthings.override_resolver import (
    build_override_entry,
    build_recurrence_entry,
    build_standalone_entry,
    build_virtualized_entry,
)
from recurringthings.protocols import StoreBundle

pytestmark = pytest.mark.unit

SLOT = datetime(2025, 5, 2, 9, 0, tzinfo=UTC)
MOVED = datetime(2025, 5, 2, 15, 0, tzinfo=UTC)


async def _seed(stores, recurrence):
    await stores.recurrences.create(recurrence)
    return build_virtualized_entry(recurrence, SLOT)


class TestGeneratedSlot:
    @pytest.mark.asyncio
    async def test_update_creates_override_with_snapshot(self, stores, daily_recurrence):
        entry = await _seed(stores, daily_recurrence)
        entry.start_time = MOVED
        entry.duration = timedelta(minutes=30)
        entry.extensions = {"room": "red"}

        result = await MutationPlanner(stores).update(entry)

        assert result.is_overridden
        assert result.start_time == MOVED
        assert result.original.start_time == SLOT
        assert result.original.duration == timedelta(hours=1)
        assert result.original.extensions == {"room": "blue"}
        stored = stores.overrides.all()
        assert len(stored) == 1
        assert stored[0].original_time == SLOT
        assert stored[0].extensions == {"room": "red"}

    @pytest.mark.asyncio
    async def test_delete_creates_exactly_one_exception(self, stores, daily_recurrence):
        entry = await _seed(stores, daily_recurrence)
        await MutationPlanner(stores).delete(entry)

        exceptions = stores.exceptions.all()
        assert len(exceptions) == 1
        assert exceptions[0].original_time == SLOT
        assert len(stores.overrides) == 0

    @pytest.mark.asyncio
    async def test_restore_is_rejected(self, stores, daily_recurrence):
        entry = await _seed(stores, daily_recurrence)
        with pytest.raises(InvariantViolation, match="no override"):
            await MutationPlanner(stores).restore(entry)


class TestOverriddenSlot:
    async def _overridden_entry(self, stores, recurrence):
        entry = await _seed(stores, recurrence)
        entry.start_time = MOVED
        return await MutationPlanner(stores).update(entry)

    @pytest.mark.asyncio
    async def test_update_keeps_original_snapshot(self, stores, daily_recurrence):
        entry = await self._overridden_entry(stores, daily_recurrence)
        entry.start_time = MOVED + timedelta(hours=1)
        entry.duration = timedelta(hours=2)

        result = await MutationPlanner(stores).update(entry)

        assert result.override_id == entry.override_id
        assert result.start_time == MOVED + timedelta(hours=1)
        assert result.original.start_time == SLOT
        assert result.original.duration == timedelta(hours=1)
        assert len(stores.overrides) == 1

    @pytest.mark.asyncio
    async def test_update_without_override_id_finds_existing_override(self, stores, daily_recurrence):
        await self._overridden_entry(stores, daily_recurrence)
        stale = build_virtualized_entry(daily_recurrence, SLOT)
        stale.duration = timedelta(minutes=10)

        await MutationPlanner(stores).update(stale)

        stored = stores.overrides.all()
        assert len(stored) == 1
        assert stored[0].duration == timedelta(minutes=10)

    @pytest.mark.asyncio
    async def test_delete_replaces_override_with_exception_at_original_time(self, stores, daily_recurrence):
        entry = await self._overridden_entry(stores, daily_recurrence)
        await MutationPlanner(stores).delete(entry)

        assert len(stores.overrides) == 0
        exceptions = stores.exceptions.all()
        assert [e.original_time for e in exceptions] == [SLOT]

    @pytest.mark.asyncio
    async def test_restore_removes_override(self, stores, daily_recurrence):
        entry = await self._overridden_entry(stores, daily_recurrence)
        result = await MutationPlanner(stores).restore(entry)

        assert len(stores.overrides) == 0
        assert len(stores.exceptions) == 0
        assert result.start_time == SLOT
        assert not result.is_overridden


class TestExceptedSlot:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("action", ["update", "delete", "restore"])
    async def test_every_action_is_rejected(self, stores, daily_recurrence, action):
        entry = await _seed(stores, daily_recurrence)
        planner = MutationPlanner(stores)
        await planner.delete(entry)

        with pytest.raises(InvariantViolation):
            await getattr(planner, action)(entry)
        assert len(stores.exceptions) == 1
        assert len(stores.overrides) == 0


class TestImmutability:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("field,value", [("type", "standup"), ("time_zone", "Europe/Paris")])
    async def test_inherited_fields_cannot_change(self, stores, daily_recurrence, transaction, field, value):
        entry = await _seed(stores, daily_recurrence)
        setattr(entry, field, value)

        with pytest.raises(InvariantViolation, match="inherited"):
            await MutationPlanner(stores).update(entry, transaction=transaction)
        assert len(stores.overrides) == 0
        assert not any(op.endswith(".create") for op in transaction.operations)

    @pytest.mark.asyncio
    async def test_pattern_entry_is_rejected(self, stores, daily_recurrence):
        await stores.recurrences.create(daily_recurrence)
        pattern = build_recurrence_entry(daily_recurrence)
        planner = MutationPlanner(stores)
        for action in (planner.update, planner.delete, planner.restore):
            with pytest.raises(InvariantViolation, match="recurrence pattern"):
                await action(pattern)

    @pytest.mark.asyncio
    async def test_missing_parent_is_not_found(self, stores, daily_recurrence):
        entry = build_virtualized_entry(daily_recurrence, SLOT)
        with pytest.raises(NotFoundError):
            await MutationPlanner(stores).delete(entry)

    @pytest.mark.asyncio
    async def test_other_scope_is_not_found(self, stores, daily_recurrence):
        entry = await _seed(stores, daily_recurrence)
        entry.organization = "other-org"
        with pytest.raises(NotFoundError):
            await MutationPlanner(stores).delete(entry)
        assert len(stores.exceptions) == 0

    @pytest.mark.asyncio
    async def test_unknown_override_id_is_not_found(self, stores, daily_recurrence, make_override):
        await stores.recurrences.create(daily_recurrence)
        entry = build_override_entry(daily_recurrence, make_override(daily_recurrence, SLOT, MOVED))
        with pytest.raises(NotFoundError, match="Override"):
            await MutationPlanner(stores).restore(entry)


class TestStandalone:
    @pytest.mark.asyncio
    async def test_update_recomputes_end_time(self, stores, make_occurrence):
        occurrence = await stores.occurrences.create(make_occurrence(SLOT))
        entry = build_standalone_entry(occurrence)
        entry.start_time = MOVED
        entry.duration = timedelta(minutes=90)
        entry.type = "workshop"

        result = await MutationPlanner(stores).update(entry)

        assert result.end_time == MOVED + timedelta(minutes=90)
        stored = stores.occurrences.all()[0]
        assert stored.end_time == MOVED + timedelta(minutes=90)
        assert stored.type == "workshop"

    @pytest.mark.asyncio
    async def test_time_zone_is_immutable(self, stores, make_occurrence):
        occurrence = await stores.occurrences.create(make_occurrence(SLOT))
        entry = build_standalone_entry(occurrence)
        entry.time_zone = "Asia/Tokyo"
        with pytest.raises(InvariantViolation, match="TimeZone"):
            await MutationPlanner(stores).update(entry)
        assert stores.occurrences.all()[0].time_zone == "UTC"

    @pytest.mark.asyncio
    async def test_delete_removes_record(self, stores, make_occurrence):
        occurrence = await stores.occurrences.create(make_occurrence(SLOT))
        await MutationPlanner(stores).delete(build_standalone_entry(occurrence))
        assert len(stores.occurrences) == 0

    @pytest.mark.asyncio
    async def test_restore_is_rejected(self, stores, make_occurrence):
        occurrence = await stores.occurrences.create(make_occurrence(SLOT))
        with pytest.raises(InvariantViolation, match="standalone"):
            await MutationPlanner(stores).restore(build_standalone_entry(occurrence))


class TestCollaboratorCalls:
    """Verify the planner's call pattern against mocked stores."""

    def _mock_stores(self) -> StoreBundle:
        return StoreBundle(
            recurrences=AsyncMock(),
            occurrences=AsyncMock(),
            exceptions=MagicMock(create=AsyncMock()),
            overrides=MagicMock(create=AsyncMock(), get_by_id=AsyncMock()),
        )

    @staticmethod
    def _empty_stream(*args, **kwargs):
        async def _gen():
            for item in ():
                yield item

        return _gen()

    @pytest.mark.asyncio
    async def test_transaction_is_passed_to_every_call(self, daily_recurrence):
        stores = self._mock_stores()
        stores.recurrences.get_by_id.return_value = daily_recurrence
        stores.exceptions.get_by_recurrence_ids.side_effect = self._empty_stream
        stores.overrides.get_by_recurrence_ids.side_effect = self._empty_stream
        stores.exceptions.create.side_effect = lambda exception, transaction=None: exception
        tx = object()

        await MutationPlanner(stores).delete(build_virtualized_entry(daily_recurrence, SLOT), transaction=tx)

        assert stores.recurrences.get_by_id.await_args.kwargs["transaction"] is tx
        assert stores.exceptions.get_by_recurrence_ids.call_args.kwargs["transaction"] is tx
        assert stores.overrides.get_by_recurrence_ids.call_args.kwargs["transaction"] is tx
        assert stores.exceptions.create.await_args.kwargs["transaction"] is tx

    @pytest.mark.asyncio
    async def test_invalid_input_fails_before_any_io(self, daily_recurrence):
        stores = self._mock_stores()
        entry = build_virtualized_entry(daily_recurrence, SLOT)
        entry.duration = timedelta(0)

        with pytest.raises(InputError):
            await MutationPlanner(stores).update(entry)
        stores.recurrences.get_by_id.assert_not_awaited()
        stores.overrides.create.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_naive_start_time_rejected(self, daily_recurrence):
        stores = self._mock_stores()
        entry = build_virtualized_entry(daily_recurrence, SLOT)
        entry.start_time = datetime(2025, 5, 2, 15, 0)

        with pytest.raises(InputError, match="timezone-aware"):
            await MutationPlanner(stores).update(entry)
        stores.recurrences.get_by_id.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_original_time_rejected(self, daily_recurrence):
        stores = self._mock_stores()
        entry = build_virtualized_entry(daily_recurrence, SLOT)
        entry.original_time = None

        with pytest.raises(InputError, match="original_time"):
            await MutationPlanner(stores).delete(entry)
        stores.recurrences.get_by_id.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_slot_scan_closes_stream_on_early_match(self, daily_recurrence, make_exception):
        stores = self._mock_stores()
        stores.recurrences.get_by_id.return_value = daily_recurrence
        closed = []

        async def _stream(*args, **kwargs):
            try:
                yield make_exception(daily_recurrence, SLOT)
                yield make_exception(daily_recurrence, SLOT + timedelta(days=1))
            finally:
                closed.append(True)

        stores.exceptions.get_by_recurrence_ids.side_effect = _stream

        with pytest.raises(InvariantViolation, match="already cancelled"):
            await MutationPlanner(stores).delete(build_virtualized_entry(daily_recurrence, SLOT))
        # Closed as soon as the scan returns, not left for garbage collection
        assert closed == [True]

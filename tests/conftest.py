from collections.abc import Generator
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from recurringthings.config_loader import EngineConfig
from recurringthings.engine import RecurrenceEngine
from recurringthings.memory_store import MemoryTransaction, create_memory_stores
from recurringthings.models import Occurrence, OccurrenceException, OccurrenceOverride, Recurrence
from recurringthings.protocols import StoreBundle

ORG = "acme"
PATH = "rooms/101"


def pytest_configure(config: Any) -> None:
    """Register markers used across the suite."""
    config.addinivalue_line("markers", "unit: Fast unit tests")
    config.addinivalue_line("markers", "integration: Engine scenarios over in-memory stores")


@pytest.fixture(autouse=True)
def clean_test_environment(monkeypatch: Any) -> Generator[None, Any, None]:
    """Ensure RECURRINGTHINGS_* variables from the host never leak into tests."""
    for name in (
        "RECURRINGTHINGS_DEBUG",
        "RECURRINGTHINGS_LOG_LEVEL",
        "RECURRINGTHINGS_FETCH_TIMEOUT",
        "RECURRINGTHINGS_YIELD_FREQUENCY",
    ):
        monkeypatch.delenv(name, raising=False)
    yield


@pytest.fixture
def test_timezone() -> str:
    """Return a deterministic DST-observing timezone identifier for tests."""
    return "America/New_York"


@pytest.fixture
def engine_config() -> EngineConfig:
    """Small yield frequency so cooperative yields are exercised."""
    return EngineConfig(yield_frequency=2)


@pytest.fixture
def stores() -> StoreBundle:
    return create_memory_stores()


@pytest.fixture
def engine(stores: StoreBundle, engine_config: EngineConfig) -> RecurrenceEngine:
    return RecurrenceEngine(stores, engine_config)


@pytest.fixture
def transaction() -> MemoryTransaction:
    return MemoryTransaction(transaction="tx-1")


@pytest.fixture
def daily_recurrence() -> Recurrence:
    """Daily 09:00 UTC series from May 1 to May 4 2025, one hour long."""
    return Recurrence(
        organization=ORG,
        resource_path=PATH,
        type="meeting",
        start_time=datetime(2025, 5, 1, 9, 0, tzinfo=UTC),
        duration=timedelta(hours=1),
        recurrence_end_time=datetime(2025, 5, 4, 9, 0, tzinfo=UTC),
        rrule="FREQ=DAILY;UNTIL=20250504T090000Z",
        time_zone="UTC",
        extensions={"room": "blue"},
    )


@pytest.fixture
def make_override() -> Any:
    """Factory for overrides of a recurrence slot."""

    def _make(
        recurrence: Recurrence,
        original_time: datetime,
        start_time: datetime,
        duration: timedelta = timedelta(hours=1),
    ) -> OccurrenceOverride:
        return OccurrenceOverride(
            organization=recurrence.organization,
            resource_path=recurrence.resource_path,
            recurrence_id=recurrence.id,
            original_time=original_time,
            start_time=start_time,
            duration=duration,
            original_duration=recurrence.duration,
            original_extensions=recurrence.extensions,
        )

    return _make


@pytest.fixture
def make_exception() -> Any:
    """Factory for exceptions of a recurrence slot."""

    def _make(recurrence: Recurrence, original_time: datetime) -> OccurrenceException:
        return OccurrenceException(
            organization=recurrence.organization,
            resource_path=recurrence.resource_path,
            recurrence_id=recurrence.id,
            original_time=original_time,
        )

    return _make


@pytest.fixture
def make_occurrence() -> Any:
    """Factory for standalone occurrences in the default scope."""

    def _make(
        start_time: datetime,
        duration: timedelta = timedelta(hours=1),
        type_: str = "meeting",
        time_zone: str = "UTC",
    ) -> Occurrence:
        return Occurrence(
            organization=ORG,
            resource_path=PATH,
            type=type_,
            start_time=start_time,
            duration=duration,
            time_zone=time_zone,
        )

    return _make

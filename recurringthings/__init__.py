"""recurringthings - on-demand virtualization of recurring calendar entries.

Recurrences are stored as rules and expanded into concrete entries only when
queried, merged with standalone occurrences, exceptions and overrides.
"""

__version__ = "0.1.0"

from .config_loader import EngineConfig, load_config
from .engine import RecurrenceEngine
from .exceptions import (
    FetchTimeoutError,
    InputError,
    InvariantViolation,
    MonthDayOutOfBoundsError,
    NotFoundError,
    RecurringThingsError,
    RRuleValidationError,
    TimezoneError,
)
from .logging_config import configure_logging
from .memory_store import create_memory_stores
from .models import (
    CalendarEntry,
    CreateRecurrenceOptions,
    EntryType,
    MonthDayBehavior,
    Occurrence,
    OccurrenceException,
    OccurrenceOverride,
    Recurrence,
)
from .protocols import StoreBundle, TransactionContext

__all__ = [
    "CalendarEntry",
    "CreateRecurrenceOptions",
    "EngineConfig",
    "EntryType",
    "FetchTimeoutError",
    "InputError",
    "InvariantViolation",
    "MonthDayBehavior",
    "MonthDayOutOfBoundsError",
    "NotFoundError",
    "Occurrence",
    "OccurrenceException",
    "OccurrenceOverride",
    "RRuleValidationError",
    "Recurrence",
    "RecurrenceEngine",
    "RecurringThingsError",
    "StoreBundle",
    "TimezoneError",
    "TransactionContext",
    "__version__",
    "configure_logging",
    "create_memory_stores",
    "load_config",
]

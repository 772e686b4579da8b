"""recurringthings.config_loader

Config loader for the recurrence engine.

- Reads YAML (PyYAML) or JSON, chosen by file suffix.
- Applies ``RECURRINGTHINGS_*`` environment overrides on top of file values.
- Exposes a typed dataclass `EngineConfig` and a `load_config()` helper that
  accepts an optional path override.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from .models import MonthDayBehavior

logger = logging.getLogger(__name__)

ENV_FETCH_TIMEOUT = "RECURRINGTHINGS_FETCH_TIMEOUT"
ENV_YIELD_FREQUENCY = "RECURRINGTHINGS_YIELD_FREQUENCY"
ENV_LOG_LEVEL = "RECURRINGTHINGS_LOG_LEVEL"

MIN_YIELD_FREQUENCY = 1
MAX_YIELD_FREQUENCY = 10000

_VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class EngineConfig:
    """Typed configuration for the recurrence engine.

    Fields:
        fetch_timeout_seconds: per-phase storage fetch timeout, None for no limit
        yield_frequency: generated instants between cooperative yields (1..10000)
        default_month_day_behavior: policy used when create options omit one
        log_level: logging level name
    """

    fetch_timeout_seconds: float | None = None
    yield_frequency: int = 50
    default_month_day_behavior: MonthDayBehavior = MonthDayBehavior.THROW
    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> EngineConfig:
        """Create EngineConfig from a plain mapping, applying defaults and validation.

        Numeric-like values are coerced, out-of-range values are clamped or
        reset to defaults, and every coercion is logged as a warning.
        """
        if data is None:
            data = {}

        timeout_raw = data.get("fetch_timeout_seconds")
        fetch_timeout: float | None = None
        if timeout_raw is not None:
            try:
                fetch_timeout = float(timeout_raw)
            except (TypeError, ValueError):
                logger.warning(
                    "Config fetch_timeout_seconds=%r is not a number; disabling timeout", timeout_raw
                )
            else:
                if fetch_timeout <= 0:
                    logger.warning(
                        "fetch_timeout_seconds %s is not positive; disabling timeout", fetch_timeout
                    )
                    fetch_timeout = None

        yield_raw = data.get("yield_frequency", 50)
        try:
            yield_frequency = int(yield_raw)
        except (TypeError, ValueError):
            logger.warning("Config yield_frequency=%r is not an int; using default 50", yield_raw)
            yield_frequency = 50
        if yield_frequency < MIN_YIELD_FREQUENCY:
            logger.warning(
                "yield_frequency %d below minimum; coercing to %d",
                yield_frequency,
                MIN_YIELD_FREQUENCY,
            )
            yield_frequency = MIN_YIELD_FREQUENCY
        elif yield_frequency > MAX_YIELD_FREQUENCY:
            logger.warning(
                "yield_frequency %d above maximum; coercing to %d",
                yield_frequency,
                MAX_YIELD_FREQUENCY,
            )
            yield_frequency = MAX_YIELD_FREQUENCY

        behavior_raw = data.get("default_month_day_behavior", MonthDayBehavior.THROW.value)
        try:
            behavior = MonthDayBehavior(str(behavior_raw).lower())
        except ValueError:
            logger.warning(
                "Config default_month_day_behavior=%r is invalid; using 'throw'", behavior_raw
            )
            behavior = MonthDayBehavior.THROW

        log_level = data.get("log_level", "INFO")
        log_level = str(log_level).upper() if log_level is not None else "INFO"
        if log_level not in _VALID_LOG_LEVELS:
            logger.warning("Config log_level=%r is invalid; using INFO", log_level)
            log_level = "INFO"

        return cls(
            fetch_timeout_seconds=fetch_timeout,
            yield_frequency=yield_frequency,
            default_month_day_behavior=behavior,
            log_level=log_level,
        )


def _env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    if environ.get(ENV_FETCH_TIMEOUT):
        overrides["fetch_timeout_seconds"] = environ[ENV_FETCH_TIMEOUT]
    if environ.get(ENV_YIELD_FREQUENCY):
        overrides["yield_frequency"] = environ[ENV_YIELD_FREQUENCY]
    if environ.get(ENV_LOG_LEVEL):
        overrides["log_level"] = environ[ENV_LOG_LEVEL]
    return overrides


def _load_yaml_or_json(path: Path) -> Any:
    """Load a mapping from a YAML or JSON file.

    ``.json`` files are parsed with the json module, everything else with
    ``yaml.safe_load``. An empty YAML file yields an empty mapping.
    """
    text = path.read_text()
    if path.suffix.lower() == ".json":
        return json.loads(text)
    loaded = yaml.safe_load(text)
    # safe_load can return None for empty files; normalize to empty dict
    if loaded is None:
        return {}
    return loaded


def load_config(
    path: str | Path | None = None, environ: Mapping[str, str] | None = None
) -> EngineConfig:
    """Load configuration from a YAML/JSON file plus environment overrides.

    Args:
        path: Optional path to the config file. Without one only defaults and
              environment overrides apply.
        environ: Environment mapping, defaults to ``os.environ``

    Returns:
        EngineConfig dataclass instance

    Behavior:
    - If file is missing: defaults are used.
    - If file exists but top-level is not a mapping: raises ValueError.
    - Environment variables win over file values.
    """
    env = os.environ if environ is None else environ
    raw: dict[str, Any] = {}

    if path is not None:
        p = Path(path)
        logger.debug("Attempting to load config from %s", p)
        if not p.exists():
            logger.info("Config file %s not found; using defaults", p)
        else:
            loaded = _load_yaml_or_json(p)
            if not isinstance(loaded, dict):
                logger.warning("Config file %s parsed but top-level is not a mapping: %r", p, loaded)
                raise ValueError("Config file must contain a mapping at top level")  # noqa: TRY004
            raw.update(loaded)
            logger.info("Loaded configuration from %s", p)

    overrides = _env_overrides(env)
    if overrides:
        logger.debug("Applying environment overrides: %s", sorted(overrides))
        raw.update(overrides)

    cfg = EngineConfig.from_dict(raw)
    logger.debug("Configuration values: %s", cfg)
    return cfg

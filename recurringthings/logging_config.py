"""
Central logging configuration for recurringthings.

Sets package logger levels, installs a colorized console handler when the
host application has not configured logging, and keeps chatty third-party
loggers quiet.
"""

import logging
import os
import sys
from typing import Optional

from colorlog import ColoredFormatter

ENV_DEBUG = "RECURRINGTHINGS_DEBUG"
ENV_LOG_LEVEL = "RECURRINGTHINGS_LOG_LEVEL"

PACKAGE_LOGGER = "recurringthings"

# HH:MM:SS  LEVEL   logger.name: message
CONSOLE_FORMAT = "%(asctime)s %(log_color)s%(levelname)-7s%(reset)s %(name)s: %(message)s"
LOG_COLORS = {
    "DEBUG": "cyan",
    "INFO": "green",
    "WARNING": "yellow",
    "ERROR": "red",
    "CRITICAL": "bold_red",
}

_NOISY_LOGGERS = ("asyncio", "dateutil")
_LEVEL_NAMES = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def build_console_handler(level: int = logging.INFO) -> logging.Handler:
    """Create a stderr handler with the colorized console format."""
    handler = logging.StreamHandler(stream=sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(
        ColoredFormatter(CONSOLE_FORMAT, datefmt="%H:%M:%S", log_colors=LOG_COLORS)
    )
    return handler


def configure_logging(
    debug_mode: bool = False,
    force_debug: Optional[bool] = None,
    log_level: Optional[str] = None,
) -> None:
    """
    Configure logging levels for recurringthings.

    Args:
        debug_mode: Whether to enable debug logging for recurringthings modules
        force_debug: Override debug mode setting (None to use env var detection)
        log_level: Base level name, usually ``EngineConfig.log_level``

    Environment Variables:
        RECURRINGTHINGS_DEBUG: Set to '1', 'true', 'yes' to force debug logging
        RECURRINGTHINGS_LOG_LEVEL: Override root log level (DEBUG, INFO, WARNING, ERROR)
    """
    env_debug = os.getenv(ENV_DEBUG, "").strip().lower() in ("1", "true", "yes", "on")
    env_log_level = os.getenv(ENV_LOG_LEVEL, "").strip().upper()

    if force_debug is not None:
        final_debug = force_debug
    elif env_debug:
        final_debug = True
    else:
        final_debug = debug_mode

    root_level = logging.DEBUG if final_debug else logging.INFO
    package_level = root_level
    config_level = (log_level or "").strip().upper()
    if config_level in _LEVEL_NAMES and not final_debug:
        root_level = package_level = getattr(logging, config_level)
    if env_log_level in _LEVEL_NAMES:
        root_level = getattr(logging, env_log_level)

    # Leave handlers owned by the host application alone
    root_logger = logging.getLogger()
    root_logger.setLevel(root_level)
    if not root_logger.handlers:
        root_logger.addHandler(build_console_handler(root_level))

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(PACKAGE_LOGGER).setLevel(package_level)

    if final_debug:
        root_logger.info("Debug logging enabled for recurringthings modules.")
    else:
        root_logger.debug("Production logging configuration applied.")


def get_logging_status() -> dict[str, str]:
    """
    Get current logging configuration status.

    Returns:
        Dictionary mapping logger names to their current levels
    """
    status = {"root": logging.getLevelName(logging.getLogger().level)}
    for logger_name in (PACKAGE_LOGGER, *_NOISY_LOGGERS):
        status[logger_name] = logging.getLevelName(logging.getLogger(logger_name).level)
    return status

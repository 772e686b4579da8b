"""Tests for recurringthings.logging_config module."""

import logging
import os
from unittest.mock import patch

import pytest
from colorlog import ColoredFormatter

from recurringthings.config_loader import EngineConfig
from recurringthings.logging_config import (
    build_console_handler,
    configure_logging,
    get_logging_status,
)

pytestmark = pytest.mark.unit


@pytest.fixture(autouse=True)
def restore_root_logger():
    """Keep logger levels from leaking between tests."""
    root = logging.getLogger()
    saved_level = root.level
    yield
    root.setLevel(saved_level)
    for name in ("recurringthings", "asyncio", "dateutil"):
        logging.getLogger(name).setLevel(logging.NOTSET)


class TestConfigureLogging:
    """Tests for configure_logging function."""

    def test_default_production_mode(self):
        """Test default production mode configuration."""
        configure_logging()

        assert logging.getLogger().level == logging.INFO
        assert logging.getLogger("recurringthings").level == logging.INFO
        # Third-party loggers are suppressed
        assert logging.getLogger("asyncio").level == logging.WARNING
        assert logging.getLogger("dateutil").level == logging.WARNING

    def test_debug_mode(self):
        configure_logging(debug_mode=True)

        assert logging.getLogger().level == logging.DEBUG
        assert logging.getLogger("recurringthings").level == logging.DEBUG
        assert logging.getLogger("asyncio").level == logging.WARNING

    def test_force_debug_overrides_debug_mode(self):
        configure_logging(debug_mode=True, force_debug=False)
        assert logging.getLogger("recurringthings").level == logging.INFO

    @patch.dict(os.environ, {"RECURRINGTHINGS_DEBUG": "yes"})
    def test_env_debug_override(self):
        """RECURRINGTHINGS_DEBUG enables debug logging."""
        configure_logging(debug_mode=False)
        assert logging.getLogger().level == logging.DEBUG

    @patch.dict(os.environ, {"RECURRINGTHINGS_LOG_LEVEL": "WARNING"})
    def test_env_log_level_override(self):
        configure_logging()
        assert logging.getLogger().level == logging.WARNING

    @patch.dict(os.environ, {"RECURRINGTHINGS_LOG_LEVEL": "LOUD"})
    def test_invalid_env_log_level_ignored(self):
        configure_logging()
        assert logging.getLogger().level == logging.INFO

    def test_config_log_level_applied(self):
        configure_logging(log_level=EngineConfig.from_dict({"log_level": "warning"}).log_level)

        assert logging.getLogger().level == logging.WARNING
        assert logging.getLogger("recurringthings").level == logging.WARNING

    def test_debug_wins_over_config_log_level(self):
        configure_logging(debug_mode=True, log_level="ERROR")
        assert logging.getLogger("recurringthings").level == logging.DEBUG

    @patch.dict(os.environ, {"RECURRINGTHINGS_LOG_LEVEL": "ERROR"})
    def test_env_log_level_wins_over_config(self):
        configure_logging(log_level="WARNING")
        assert logging.getLogger().level == logging.ERROR

    def test_installs_console_handler_only_when_none_present(self):
        root = logging.getLogger()
        saved = root.handlers[:]
        root.handlers[:] = []
        try:
            configure_logging()
            configure_logging()

            assert len(root.handlers) == 1
            assert isinstance(root.handlers[0].formatter, ColoredFormatter)
        finally:
            root.handlers[:] = saved

    def test_existing_handlers_left_alone(self):
        root = logging.getLogger()
        saved = root.handlers[:]
        existing = logging.NullHandler()
        root.handlers[:] = [existing]
        try:
            configure_logging()
            assert root.handlers == [existing]
        finally:
            root.handlers[:] = saved


def test_build_console_handler_level():
    handler = build_console_handler(logging.DEBUG)
    assert handler.level == logging.DEBUG
    assert isinstance(handler.formatter, ColoredFormatter)


def test_get_logging_status():
    configure_logging(debug_mode=True)
    status = get_logging_status()
    assert status == {
        "root": "DEBUG",
        "recurringthings": "DEBUG",
        "asyncio": "WARNING",
        "dateutil": "WARNING",
    }

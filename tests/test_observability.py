"""
Tests for observability — logging setup.
"""

import logging
import os
from pathlib import Path

import pytest

from bendctl.core.observability.logging_config import StatusFormatter, _parse_level, setup_logging


@pytest.fixture(autouse=True)
def _restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers.clear()
    root.setLevel(level)


class TestParseLevel:
    def test_known(self):
        assert _parse_level("debug") == logging.DEBUG
        assert _parse_level("ERROR") == logging.ERROR

    def test_unknown_falls_back_to_warning(self):
        assert _parse_level("chatty") == logging.WARNING
        assert _parse_level(None) == logging.WARNING


class TestSetupLogging:
    def test_console_level(self):
        setup_logging(level="INFO")
        root = logging.getLogger()
        assert root.level == logging.INFO
        assert len(root.handlers) == 1

    def test_file_handler(self, tmp_path: Path):
        log_file = tmp_path / "bendctl.log"
        setup_logging(level="WARNING", log_file=str(log_file), log_file_level="DEBUG")
        root = logging.getLogger()
        assert root.level == logging.DEBUG

        logging.getLogger("bendctl.test").debug("written to file only")
        for handler in root.handlers:
            handler.flush()
        text = log_file.read_text()
        assert "written to file only" in text
        assert f"pid={os.getpid()}" in text

    def test_repeat_setup_does_not_stack_handlers(self):
        setup_logging(level="INFO")
        setup_logging(level="DEBUG")
        assert len(logging.getLogger().handlers) == 1

    def test_default_console_uses_status_formatter(self):
        setup_logging()
        assert isinstance(logging.getLogger().handlers[0].formatter, StatusFormatter)

    def test_debug_console_is_timestamped(self):
        setup_logging(level="DEBUG")
        assert not isinstance(logging.getLogger().handlers[0].formatter, StatusFormatter)


def _record(level: int, msg: str) -> logging.LogRecord:
    return logging.LogRecord("bendctl.test", level, __file__, 1, msg, None, None)


class TestStatusFormatter:
    def test_warning(self):
        assert StatusFormatter().format(_record(logging.WARNING, "Discarding staged x")) == (
            "⚠️  Discarding staged x"
        )

    def test_error(self):
        assert StatusFormatter().format(_record(logging.ERROR, "rolling back")) == "❌ rolling back"

    def test_info_unchanged(self):
        assert StatusFormatter().format(_record(logging.INFO, "plain")) == "plain"

"""Unit tests for logging configuration module.

Tests verify that ``setup_logging`` installs the expected handlers, levels and
formats, and only writes a log file when a directory is configured.
"""

import logging
from pathlib import Path

import pytest

from pgben_workflow.core.logging_config import (
    DETAILED_FORMAT,
    JSON_FORMAT,
    LOG_FILE_NAME,
    MODULE_LOG_LEVELS,
    SIMPLE_FORMAT,
    get_logger,
    setup_logging,
)


def _console_handler() -> logging.Handler:
    return next(
        h
        for h in logging.getLogger().handlers
        if isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
    )


def _file_handlers() -> list:
    return [h for h in logging.getLogger().handlers if isinstance(h, logging.FileHandler)]


@pytest.fixture(autouse=True)
def reset_root_logger():
    root = logging.getLogger()
    saved_level = root.level
    yield
    for handler in root.handlers[:]:
        if handler.formatter is not None and handler.formatter._fmt in (SIMPLE_FORMAT, DETAILED_FORMAT, JSON_FORMAT):
            root.removeHandler(handler)
            handler.close()
    root.setLevel(saved_level)


class TestSetupLoggingLogLevels:
    """Test setup_logging with different log levels."""

    @pytest.mark.parametrize(
        "log_level,expected_level",
        [
            ("DEBUG", logging.DEBUG),
            ("INFO", logging.INFO),
            ("WARNING", logging.WARNING),
            ("ERROR", logging.ERROR),
            ("critical", logging.CRITICAL),
        ],
    )
    def test_console_handler_level(self, log_level, expected_level):
        setup_logging(log_level=log_level, enable_file=False)

        assert _console_handler().level == expected_level
        # the root captures everything, handlers filter
        assert logging.getLogger().level == logging.DEBUG

    def test_level_defaults_to_settings(self, monkeypatch):
        from pgben_workflow.core.config import settings

        monkeypatch.setattr(settings, "log_level", "warning")
        setup_logging(enable_file=False)

        assert _console_handler().level == logging.WARNING


class TestSetupLoggingFormats:
    """Test setup_logging with different log formats."""

    @pytest.mark.parametrize(
        "log_format,expected_format",
        [
            ("simple", SIMPLE_FORMAT),
            ("detailed", DETAILED_FORMAT),
            ("json", JSON_FORMAT),
            ("unknown", DETAILED_FORMAT),
        ],
    )
    def test_formatter(self, log_format, expected_format):
        setup_logging(log_format=log_format, enable_file=False)

        assert _console_handler().formatter._fmt == expected_format


class TestSetupLoggingFileHandler:
    """File logging is opt-in through a log directory."""

    def test_no_file_handler_without_directory(self, monkeypatch):
        from pgben_workflow.core.config import settings

        monkeypatch.setattr(settings, "log_file_dir", None)
        setup_logging(log_level="INFO")

        assert _file_handlers() == []

    def test_file_handler_written_to_directory(self, tmp_path: Path):
        log_dir = tmp_path / "logs"
        setup_logging(log_level="ERROR", log_file_dir=str(log_dir))

        handlers = _file_handlers()
        assert len(handlers) == 1
        assert handlers[0].level == logging.DEBUG
        assert (log_dir / LOG_FILE_NAME).exists()

        get_logger("pgben_workflow.approval.engine").debug("written to the file only")
        handlers[0].flush()
        assert "written to the file only" in (log_dir / LOG_FILE_NAME).read_text()

    def test_enable_file_false_wins_over_directory(self, tmp_path: Path):
        setup_logging(log_file_dir=str(tmp_path), enable_file=False)

        assert _file_handlers() == []
        assert not (tmp_path / LOG_FILE_NAME).exists()


class TestSetupLoggingHandlers:
    def test_repeated_setup_does_not_duplicate_handlers(self):
        setup_logging(enable_file=False)
        setup_logging(enable_file=False)

        assert len(logging.getLogger().handlers) == 1

    def test_module_levels_applied(self):
        setup_logging(enable_file=False)

        for module_name, level in MODULE_LOG_LEVELS.items():
            assert logging.getLogger(module_name).level == logging.getLevelName(level)
        assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING


def test_get_logger_returns_named_logger():
    logger = get_logger("pgben_workflow.workflow.engine")

    assert isinstance(logger, logging.Logger)
    assert logger.name == "pgben_workflow.workflow.engine"
    assert logger is logging.getLogger("pgben_workflow.workflow.engine")

"""Tests for logging module."""

import logging
import re

from ourmem.config import Config
from ourmem.logging import reset_logging, setup_logging, short_id


class TestSetupLogging:
    """Test logging setup."""

    def test_setup_logging_returns_logger(self):
        """Setup returns the package logger."""
        logger = setup_logging(Config())

        assert isinstance(logger, logging.Logger)
        assert logger.name == "ourmem"

    def test_setup_logging_creates_log_file(self, tmp_path):
        """Logging setup creates log file."""
        log_file = tmp_path / "relay.log"
        logger = setup_logging(Config(log_file=str(log_file)))
        logger.info("test message")

        assert log_file.exists()
        assert "test message" in log_file.read_text()

    def test_setup_logging_creates_log_directory(self, tmp_path):
        """Logging setup creates log directory if needed."""
        log_file = tmp_path / "subdir" / "relay.log"
        logger = setup_logging(Config(log_file=str(log_file)))
        logger.info("test message")

        assert log_file.exists()

    def test_log_levels_respected(self, tmp_path):
        """Only logs at configured level and above."""
        log_file = tmp_path / "relay.log"
        logger = setup_logging(Config(log_file=str(log_file), log_level="WARNING"))

        logger.debug("debug message")
        logger.info("info message")
        logger.warning("warning message")

        content = log_file.read_text()
        assert "debug message" not in content
        assert "info message" not in content
        assert "warning message" in content

    def test_log_format(self, tmp_path):
        """Lines look like '2025-01-27 10:30:45 [INFO] message'."""
        log_file = tmp_path / "relay.log"
        logger = setup_logging(Config(log_file=str(log_file)))
        logger.info("formatted")

        line = log_file.read_text().strip()
        assert re.match(
            r"^\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2} \[INFO\] formatted$", line
        )

    def test_child_loggers_write_to_file(self, tmp_path):
        """Module loggers under 'ourmem' reach the configured handlers."""
        log_file = tmp_path / "relay.log"
        setup_logging(Config(log_file=str(log_file)))

        logging.getLogger("ourmem.pairing.registry").info("from module")

        assert "from module" in log_file.read_text()

    def test_setup_is_idempotent(self):
        """Second call returns the same logger without new handlers."""
        first = setup_logging(Config())
        handler_count = len(first.handlers)

        second = setup_logging(Config(log_level="DEBUG"))

        assert second is first
        assert len(second.handlers) == handler_count

    def test_reset_allows_reconfiguration(self):
        """After reset, setup applies the new configuration."""
        setup_logging(Config(log_level="ERROR"))
        reset_logging()

        logger = setup_logging(Config(log_level="DEBUG"))

        assert logger.level == logging.DEBUG


class TestShortId:
    """Test identifier truncation for log lines."""

    def test_long_id_truncated(self):
        """Ids longer than 8 characters are cut with an ellipsis."""
        assert short_id("abcdef0123456789") == "abcdef01..."

    def test_short_id_unchanged(self):
        """Short ids are shown in full."""
        assert short_id("abc") == "abc"

    def test_empty_id(self):
        """Missing ids render as a placeholder."""
        assert short_id("") == "?"
        assert short_id(None) == "?"

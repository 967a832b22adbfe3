"""
Tests for logging configuration.
"""

import json
import logging
import logging.handlers
import sys
from pathlib import Path

import pytest

from subcode_tunnel.logging import get_logger, reset_logging, setup_logging


@pytest.fixture(autouse=True)
def fresh_logging():
    """Allow setup_logging to run again and restore root handlers afterwards."""
    root = logging.getLogger()
    original_handlers = list(root.handlers)
    original_level = root.level
    reset_logging()

    yield

    for handler in list(root.handlers):
        if handler not in original_handlers:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(original_level)
    reset_logging()


class TestSetupLogging:
    """Test logging setup functionality."""

    def test_setup_logging_defaults(self):
        """Should setup logging at INFO by default."""
        setup_logging()

        assert logging.getLogger().level == logging.INFO

    def test_setup_logging_with_debug_level(self):
        """Should setup logging with DEBUG level."""
        setup_logging(level="DEBUG")

        assert logging.getLogger().level == logging.DEBUG

    def test_unknown_level_falls_back_to_info(self):
        """Should treat an unknown level name as INFO."""
        setup_logging(level="CHATTY")

        assert logging.getLogger().level == logging.INFO

    def test_console_handler_writes_to_stderr(self):
        """Console output should never go to stdout."""
        setup_logging()

        stream_handlers = [
            h
            for h in logging.getLogger().handlers
            if type(h) is logging.StreamHandler
        ]
        assert stream_handlers
        assert all(h.stream is not sys.stdout for h in stream_handlers)

    def test_setup_logging_is_idempotent(self):
        """Subsequent calls should be ignored."""
        setup_logging(level="WARNING")
        setup_logging(level="DEBUG")

        assert logging.getLogger().level == logging.WARNING

    def test_setup_logging_creates_log_file(self, tmp_path: Path):
        """Should create log file parent directories with rotation."""
        log_file = tmp_path / "logs" / "tunnel.log"

        setup_logging(log_file=str(log_file), max_bytes=1024, backup_count=2)

        assert log_file.parent.exists()
        handlers = [
            h
            for h in logging.getLogger().handlers
            if isinstance(h, logging.handlers.RotatingFileHandler)
        ]
        assert handlers
        assert handlers[-1].maxBytes == 1024
        assert handlers[-1].backupCount == 2

    def test_log_file_is_json(self, tmp_path: Path):
        """File output should be one JSON object per line."""
        log_file = tmp_path / "tunnel.log"
        setup_logging(log_format="text", log_file=str(log_file))

        get_logger("test").info("tunnel started", name="app-3000")
        for handler in logging.getLogger().handlers:
            handler.flush()

        line = log_file.read_text().strip().splitlines()[-1]
        entry = json.loads(line)
        assert entry["event"] == "tunnel started"
        assert entry["name"] == "app-3000"


class TestGetLogger:
    """Test logger retrieval."""

    def test_can_log_with_context(self, caplog):
        """Should log structured key/value context."""
        setup_logging(level="INFO")
        logger = get_logger("test")

        with caplog.at_level(logging.INFO):
            logger.info("test message", port=3000)

        assert any("test message" in record.getMessage() for record in caplog.records)

    def test_logger_created_before_setup_uses_configuration(self, caplog):
        """Module-level loggers should honour configuration applied later."""
        logger = get_logger("early")
        setup_logging(level="INFO")

        with caplog.at_level(logging.INFO):
            logger.info("late configured message")

        assert any("late configured message" in r.getMessage() for r in caplog.records)

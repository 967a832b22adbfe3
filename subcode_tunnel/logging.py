"""
Structured logging configuration for subcode-tunnel.

Log records go to stderr so that stdout stays reserved for command
output (public URLs, JSON reports, port numbers).
"""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Any

import structlog

# Set once setup_logging has installed handlers
_logging_configured = False

LOG_FILE_MAX_BYTES = 1048576  # 1MB
LOG_FILE_BACKUPS = 3


def reset_logging() -> None:
    """Allow setup_logging to run again (tests reconfigure between cases)."""
    global _logging_configured  # noqa: PLW0603
    _logging_configured = False


def _console_formatter(log_format: str) -> structlog.stdlib.ProcessorFormatter:
    if log_format == "json":
        return structlog.stdlib.ProcessorFormatter(processor=structlog.processors.JSONRenderer())
    return structlog.stdlib.ProcessorFormatter(
        processor=structlog.dev.ConsoleRenderer(
            colors=sys.stderr.isatty(),
            exception_formatter=structlog.dev.plain_traceback,
        )
    )


def _has_stderr_handler(root_logger: logging.Logger) -> bool:
    return any(
        isinstance(h, logging.StreamHandler) and h.stream == sys.stderr
        for h in root_logger.handlers
    )


def setup_logging(
    level: str = "INFO",
    log_format: str = "text",
    log_file: str | None = None,
    max_bytes: int = LOG_FILE_MAX_BYTES,
    backup_count: int = LOG_FILE_BACKUPS,
) -> None:
    """
    Send structlog events through stdlib logging to stderr and, optionally, a file.

    Only the first call has any effect.

    Args:
        level: Log level name; unknown names fall back to INFO
        log_format: Console format, "json" or "text"
        log_file: Rotating JSON log file (optional)
        max_bytes: Size at which the log file rotates
        backup_count: Rotated files to keep
    """
    global _logging_configured  # noqa: PLW0603

    if _logging_configured:
        return

    log_level = getattr(logging, level.upper(), logging.INFO)

    # Events are rendered by the handlers' ProcessorFormatter, so pytest's
    # caplog sees them as ordinary records
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    if not _has_stderr_handler(root_logger):
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(log_level)
        console_handler.setFormatter(_console_formatter(log_format))
        root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)

        # JSON regardless of the console format
        file_handler = logging.handlers.RotatingFileHandler(
            log_path,
            maxBytes=max_bytes,
            backupCount=backup_count,
        )
        file_handler.setLevel(log_level)
        file_handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(processor=structlog.processors.JSONRenderer())
        )
        root_logger.addHandler(file_handler)

    _logging_configured = True


def get_logger(name: str) -> Any:
    """
    Return a logger for a module.

    Module-level loggers are created before setup_logging() runs, so
    this returns structlog's lazy proxy, which binds on first use.
    """
    return structlog.get_logger(name)

"""Logging configuration for the panel migration server.

Every module logs through structlog. Events from the ``panel_migrate``
package go to ``panel_migrate.log``; the migration transcript (the lines the
operator sees in ``results``) is mirrored to ``migration.log``. Both files are
JSON, the console is rendered for humans when attached to a terminal.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

import structlog
from structlog.stdlib import BoundLogger, LoggerFactory, ProcessorFormatter

PACKAGE_LOGGER = "panel_migrate"
TRANSCRIPT_LOGGER = "migration"

# logger name -> file it writes to inside the log directory
LOG_FILES = {
    PACKAGE_LOGGER: "panel_migrate.log",
    TRANSCRIPT_LOGGER: "migration.log",
}

# Chatty third-party loggers kept at WARNING unless running at DEBUG
NOISY_LOGGERS = ("aiohttp.access", "uvicorn.access", "mcp.server.lowlevel.server")


def _truncating_handler(path: Path, level: int, max_bytes: int) -> RotatingFileHandler:
    handler = RotatingFileHandler(path, maxBytes=max_bytes, backupCount=0, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(ProcessorFormatter(processor=structlog.processors.JSONRenderer()))
    return handler


def setup_logging(
    log_dir: Path | str = Path("logs"),
    log_level: str | None = None,
    max_file_size_mb: int = 10,
) -> None:
    """Configure structlog on top of stdlib handlers.

    Args:
        log_dir: Directory for log files
        log_level: Log level (defaults to LOG_LEVEL env var or INFO)
        max_file_size_mb: Size at which a file is truncated; no backups are kept
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    if log_level is None:
        log_level = os.getenv("LOG_LEVEL", "INFO")
    level = getattr(logging, log_level.upper(), logging.INFO)
    max_bytes = max_file_size_mb * 1024 * 1024

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(level)

    console_renderer = (
        structlog.dev.ConsoleRenderer() if sys.stdout.isatty() else structlog.processors.JSONRenderer()
    )
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(ProcessorFormatter(processor=console_renderer))
    root_logger.addHandler(console_handler)

    for name, filename in LOG_FILES.items():
        named_logger = logging.getLogger(name)
        named_logger.handlers.clear()
        named_logger.addHandler(_truncating_handler(log_dir / filename, level, max_bytes))
        named_logger.propagate = True

    if level > logging.DEBUG:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.TimeStamper(fmt="iso"),
            ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=LoggerFactory(),
        wrapper_class=BoundLogger,
        cache_logger_on_first_use=True,
    )

    get_server_logger().info(
        "Logging system initialized",
        log_dir=str(log_dir.absolute()),
        log_level=log_level,
        max_file_size_mb=max_file_size_mb,
        log_files=sorted(LOG_FILES.values()),
    )


def get_server_logger() -> Any:
    """Logger for server lifecycle events."""
    return structlog.get_logger(f"{PACKAGE_LOGGER}.server")


def get_migration_logger() -> Any:
    return structlog.get_logger(TRANSCRIPT_LOGGER)

"""Logging configuration for wp-migrate with dual output (console + files)."""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

import structlog

# Module loggers are named after their module, so handlers attach by package.
ENGINE_LOGGER = "wp_migrate"
TRANSFER_LOGGER = "wp_migrate.core.transfer"


def setup_logging(
    log_dir: Path | str = Path("logs"),
    log_level: str | None = None,
    max_file_size_mb: int = 10,
) -> None:
    """Setup dual logging system: console + files with automatic truncation.

    Creates two log files:
    - migration.log: Export, import, backup and orchestration events
    - transfer.log: Remote transport requests and retries

    Args:
        log_dir: Directory for log files
        log_level: Log level (defaults to LOG_LEVEL env var or INFO)
        max_file_size_mb: Max file size before truncation (no backup files kept)
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    if log_level is None:
        log_level = os.getenv("LOG_LEVEL", "INFO")

    log_level_num = getattr(logging, log_level.upper(), logging.INFO)
    max_bytes = max_file_size_mb * 1024 * 1024

    # Clear any existing handlers to prevent duplicates
    logging.getLogger().handlers.clear()
    for name in (ENGINE_LOGGER, TRANSFER_LOGGER):
        logging.getLogger(name).handlers.clear()

    migration_file_handler = RotatingFileHandler(
        log_dir / "migration.log",
        maxBytes=max_bytes,
        backupCount=0,  # Don't keep old files, just truncate
        encoding="utf-8",
    )
    migration_file_handler.setLevel(log_level_num)

    transfer_file_handler = RotatingFileHandler(
        log_dir / "transfer.log",
        maxBytes=max_bytes,
        backupCount=0,
        encoding="utf-8",
    )
    transfer_file_handler.setLevel(log_level_num)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(log_level_num)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level_num)
    root_logger.addHandler(console_handler)

    engine_logger = logging.getLogger(ENGINE_LOGGER)
    engine_logger.addHandler(migration_file_handler)
    engine_logger.propagate = True

    # Transfer events go to transfer.log only, not migration.log
    transfer_logger = logging.getLogger(TRANSFER_LOGGER)
    transfer_logger.addHandler(transfer_file_handler)
    transfer_logger.addHandler(console_handler)
    transfer_logger.propagate = False

    from structlog.stdlib import BoundLogger, LoggerFactory, ProcessorFormatter

    renderer = (
        structlog.dev.ConsoleRenderer()
        if sys.stderr.isatty()
        else structlog.processors.JSONRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=LoggerFactory(),
        wrapper_class=BoundLogger,
        cache_logger_on_first_use=True,
    )
    console_handler.setFormatter(ProcessorFormatter(processor=renderer))
    migration_file_handler.setFormatter(
        ProcessorFormatter(processor=structlog.processors.JSONRenderer())
    )
    transfer_file_handler.setFormatter(
        ProcessorFormatter(processor=structlog.processors.JSONRenderer())
    )

    logger = structlog.get_logger(ENGINE_LOGGER)
    logger.info(
        "Logging system initialized",
        log_dir=str(log_dir.absolute()),
        log_level=log_level,
        max_file_size_mb=max_file_size_mb,
        migration_log=str(log_dir / "migration.log"),
        transfer_log=str(log_dir / "transfer.log"),
    )


def get_migration_logger() -> Any:
    """Get logger for engine operations (writes to migration.log)."""
    return structlog.get_logger(ENGINE_LOGGER)

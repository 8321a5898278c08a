"""Application and audit logging."""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from dataviewer.core.config import LoggingConfig, get_settings

AUDIT_LOGGER_NAME = "dataviewer.audit"


def _rotating_file_handler(path: str, config: LoggingConfig) -> RotatingFileHandler:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    return RotatingFileHandler(
        path,
        maxBytes=config.file_max_bytes,
        backupCount=config.file_backup_count,
        encoding="utf-8",
    )


def build_handlers(
    config: LoggingConfig, log_file: Optional[str] = None
) -> list[logging.Handler]:
    """
    Create the console and file handlers enabled in the logging config.

    Args:
        config: Logging settings
        log_file: File path overriding ``config.file_path``

    Returns:
        Handlers sharing one formatter
    """
    handlers: list[logging.Handler] = []
    if config.console_enabled:
        handlers.append(logging.StreamHandler(sys.stdout))
    if config.file_enabled:
        handlers.append(_rotating_file_handler(log_file or config.file_path, config))

    formatter = logging.Formatter(config.format, datefmt=config.date_format)
    for handler in handlers:
        handler.setFormatter(formatter)
    return handlers


def setup_logging(
    name: Optional[str] = None,
    level: Optional[str] = None,
    log_file: Optional[str] = None,
    config: Optional[LoggingConfig] = None,
) -> logging.Logger:
    """
    Configure a named logger once.

    Loggers that already have handlers are returned unchanged. Configured
    loggers do not propagate, so each line is written once.

    Args:
        name: Logger name (defaults to root logger)
        level: Log level (defaults to the configured level)
        log_file: Log file path (defaults to the configured path)
        config: Logging settings (defaults to application settings)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    config = config or get_settings().logging
    logger.setLevel(level or config.level)
    for handler in build_handlers(config, log_file):
        logger.addHandler(handler)
    logger.propagate = False
    return logger


def get_logger(name: str) -> logging.Logger:
    """Get the module logger for ``name`` (typically ``__name__``)."""
    return setup_logging(name)


def get_audit_logger(config: Optional[LoggingConfig] = None) -> logging.Logger:
    """
    Get the logger that receives data access audit lines.

    With ``audit_file_path`` set, audit lines also go to their own rotating
    file, independent of the application log file.
    """
    logger = logging.getLogger(AUDIT_LOGGER_NAME)
    if logger.handlers:
        return logger

    config = config or get_settings().logging
    setup_logging(AUDIT_LOGGER_NAME, level="INFO", config=config)
    if config.audit_file_path:
        handler = _rotating_file_handler(config.audit_file_path, config)
        handler.setFormatter(logging.Formatter("%(asctime)s %(message)s"))
        logger.addHandler(handler)
    return logger

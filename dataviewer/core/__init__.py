"""Core application components."""

from dataviewer.core.config import Settings, get_settings
from dataviewer.core.exceptions import (
    AccessDenied,
    ApplicationError,
    AuthenticationError,
    ConfigurationError,
    DatabaseNotFound,
    ExportQuotaExceeded,
    ExportTooLarge,
    InvalidColumn,
    InvalidFilterValue,
    InvalidIdentifier,
    InvalidOperator,
    StreamingFailure,
    TableNotFound,
    UpstreamQueryError,
    ValidationError,
)
from dataviewer.core.logging import get_logger, setup_logging

__all__ = [
    "Settings",
    "get_settings",
    "ApplicationError",
    "AuthenticationError",
    "ConfigurationError",
    "ValidationError",
    "InvalidIdentifier",
    "InvalidColumn",
    "InvalidOperator",
    "InvalidFilterValue",
    "DatabaseNotFound",
    "TableNotFound",
    "AccessDenied",
    "ExportQuotaExceeded",
    "ExportTooLarge",
    "StreamingFailure",
    "UpstreamQueryError",
    "get_logger",
    "setup_logging",
]

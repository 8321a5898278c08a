"""Custom exception classes for the application."""

from typing import Any, Optional


class ApplicationError(Exception):
    """Base exception for all application errors."""

    status_code: int = 500

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        """
        Initialize the application error.

        Args:
            message: Error message
            error_code: Optional error code for categorization
            details: Optional additional error details
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}

    def __str__(self) -> str:
        """Return string representation of the error."""
        if self.error_code:
            return f"[{self.error_code}] {self.message}"
        return self.message


class ConfigurationError(ApplicationError):
    """Exception raised for configuration-related errors."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        """
        Initialize the configuration error.

        Args:
            message: Error message
            config_key: Optional configuration key that caused the error
            details: Optional additional error details
        """
        super().__init__(message, "CONFIG_ERROR", details)
        self.config_key = config_key


class AuthenticationError(ApplicationError):
    """Exception raised when the caller cannot be identified."""

    status_code = 401

    def __init__(
        self,
        message: str = "Invalid or missing authentication",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, "AUTHENTICATION_ERROR", details)


class ValidationError(ApplicationError):
    """Base class for request validation errors.

    Validation errors are detected before any query is executed and are
    always reported to the client as a 400.
    """

    status_code = 400

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        error_code: str = "VALIDATION_ERROR",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        """
        Initialize the validation error.

        Args:
            message: Error message
            field: Optional field name that failed validation
            value: Optional value that failed validation
            error_code: Error code for the concrete validation failure
            details: Optional additional error details
        """
        super().__init__(message, error_code, details)
        self.field = field
        self.value = value


class InvalidIdentifier(ValidationError):
    """Raised when a schema, table or column name is not a safe bare identifier."""

    def __init__(self, name: str, kind: str) -> None:
        super().__init__(
            f"Invalid {kind} identifier: {name}",
            field=kind,
            value=name,
            error_code="INVALID_IDENTIFIER",
        )
        self.kind = kind


class InvalidColumn(ValidationError):
    """Raised when a filter or sort column does not exist in the target table."""

    def __init__(self, column: str, suggestions: Optional[list[str]] = None) -> None:
        message = f"Invalid column: {column}"
        if suggestions:
            quoted = ", ".join(f"'{s}'" for s in suggestions)
            message = f"{message}. Did you mean: {quoted}?"
        super().__init__(
            message,
            field="column",
            value=column,
            error_code="INVALID_COLUMN",
            details={"suggestions": suggestions or []},
        )
        self.column = column


class InvalidOperator(ValidationError):
    """Raised for unknown operators or operators not applicable to a column."""

    def __init__(self, operator: Any, reason: Optional[str] = None) -> None:
        message = f"Invalid operator: {operator}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(
            message,
            field="operator",
            value=operator,
            error_code="INVALID_OPERATOR",
        )
        self.operator = operator


class InvalidFilterValue(ValidationError):
    """Raised when a filter value cannot be bound to its column."""

    def __init__(self, column: str, value: Any, reason: str) -> None:
        super().__init__(
            f"Invalid value for column {column}: {reason}",
            field=column,
            value=value,
            error_code="INVALID_FILTER_VALUE",
        )


class DatabaseNotFound(ApplicationError):
    """Raised when a logical database name is not configured."""

    status_code = 404

    def __init__(self, database: str) -> None:
        super().__init__(f"Database not found: {database}", "DATABASE_NOT_FOUND")
        self.database = database


class TableNotFound(ApplicationError):
    """Raised when the requested table does not exist in the database."""

    status_code = 404

    def __init__(self, database: str, table: str) -> None:
        super().__init__(f"Table not found: {table}", "TABLE_NOT_FOUND")
        self.database = database
        self.table = table


class AccessDenied(ApplicationError):
    """Raised when a principal may not read the requested table."""

    status_code = 403

    def __init__(
        self,
        message: str = "You don't have access to this table",
        principal_id: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, "ACCESS_DENIED", details)
        self.principal_id = principal_id


class ExportQuotaExceeded(ApplicationError):
    """Raised when an export is larger than the requester's role allows."""

    status_code = 403

    def __init__(self, total_count: int, limit: int) -> None:
        super().__init__(
            f"Export exceeds your limit of {limit:,} rows. "
            "Please contact an administrator for larger exports.",
            "EXPORT_QUOTA_EXCEEDED",
            {"total_count": total_count, "limit": limit},
        )
        self.total_count = total_count
        self.limit = limit


class ExportTooLarge(ApplicationError):
    """Raised when an export is larger than the absolute cap for any role."""

    status_code = 403

    def __init__(self, total_count: int, cap: int) -> None:
        super().__init__(
            f"Export exceeds maximum limit of {cap:,} rows",
            "EXPORT_TOO_LARGE",
            {"total_count": total_count, "cap": cap},
        )
        self.total_count = total_count
        self.cap = cap


class StreamingFailure(ApplicationError):
    """Raised when a cursor export fails after the transaction was opened."""

    public_message = "Export failed"

    def __init__(
        self,
        message: str,
        table: Optional[str] = None,
        rows_written: int = 0,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, "STREAMING_FAILURE", details)
        self.table = table
        self.rows_written = rows_written


class UpstreamQueryError(ApplicationError):
    """Exception raised when the database itself fails.

    Covers connectivity loss, pool exhaustion and driver errors. The
    original driver message is kept for logging only; clients receive a
    generic message.
    """

    public_message = "Failed to query the database"

    def __init__(
        self,
        message: str,
        database: Optional[str] = None,
        query: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        """
        Initialize the upstream error.

        Args:
            message: Error message
            database: Optional logical database name
            query: Optional SQL query that caused the error
            details: Optional additional error details
        """
        super().__init__(message, "UPSTREAM_QUERY_ERROR", details)
        self.database = database
        self.query = query

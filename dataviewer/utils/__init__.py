"""Utility functions and helpers."""

from dataviewer.utils.filters import (
    FilterOperator,
    compile_filter,
    compile_operator,
    coerce_value,
)
from dataviewer.utils.formatters import (
    format_csv_header,
    format_csv_rows,
    format_csv_value,
    format_number,
)
from dataviewer.utils.security import decrypt_value, encrypt_value, resolve_secret
from dataviewer.utils.validators import (
    parse_table_reference,
    quote_identifier,
    validate_identifier,
)

__all__ = [
    # Filters
    "FilterOperator",
    "compile_filter",
    "compile_operator",
    "coerce_value",
    # Formatters
    "format_csv_header",
    "format_csv_rows",
    "format_csv_value",
    "format_number",
    # Security
    "encrypt_value",
    "decrypt_value",
    "resolve_secret",
    # Validators
    "parse_table_reference",
    "quote_identifier",
    "validate_identifier",
]

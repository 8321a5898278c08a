"""Validation utility functions."""

import difflib
import re
from typing import Literal

from dataviewer.core.exceptions import InvalidIdentifier, ValidationError
from dataviewer.data.models import TableReference

IdentifierKind = Literal["schema", "table", "column"]

IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
MAX_IDENTIFIER_LENGTH = 128
DEFAULT_SCHEMA = "public"


def is_valid_identifier(name: str) -> bool:
    """Check whether a name is a safe bare identifier."""
    return (
        isinstance(name, str)
        and len(name) <= MAX_IDENTIFIER_LENGTH
        and IDENTIFIER_PATTERN.fullmatch(name) is not None
    )


def validate_identifier(name: str, kind: IdentifierKind) -> None:
    """
    Validate a schema, table or column name.

    Identifiers are written verbatim into query text because they cannot be
    bound as parameters, so anything outside ``[A-Za-z_][A-Za-z0-9_]*`` is
    rejected.

    Args:
        name: Identifier to validate
        kind: What the identifier names

    Raises:
        InvalidIdentifier: If the name is not a safe bare identifier
    """
    if not is_valid_identifier(name):
        raise InvalidIdentifier(name, kind)


def validate_schema_name(schema: str) -> None:
    """Validate schema name."""
    validate_identifier(schema, "schema")


def validate_table_name(table: str) -> None:
    """Validate table name."""
    validate_identifier(table, "table")


def validate_column_name(column: str) -> None:
    """Validate column name."""
    validate_identifier(column, "column")


def parse_table_reference(full_name: str, default_schema: str = DEFAULT_SCHEMA) -> TableReference:
    """
    Split a ``schema.table`` string once and validate both halves.

    A bare table name is placed in ``default_schema``.

    Args:
        full_name: Table name as received from the caller
        default_schema: Schema used when none is given

    Returns:
        Validated table reference

    Raises:
        ValidationError: If the name has more than one dot
        InvalidIdentifier: If either half is not a safe identifier
    """
    if not isinstance(full_name, str) or not full_name:
        raise ValidationError("Table name cannot be empty", field="table")

    parts = full_name.split(".")
    if len(parts) == 1:
        schema, table = default_schema, parts[0]
    elif len(parts) == 2:
        schema, table = parts
    else:
        raise ValidationError(
            "Invalid table name format. Expected schema.table",
            field="table",
            value=full_name,
        )

    validate_schema_name(schema)
    validate_table_name(table)
    return TableReference(schema=schema, table=table)


def validate_page(page: int, min_page: int = 1) -> int:
    """
    Normalize a requested page number.

    Args:
        page: Requested page number
        min_page: Smallest allowed page

    Returns:
        Page number, at least ``min_page``

    Raises:
        ValidationError: If the page is not an integer
    """
    if isinstance(page, bool) or not isinstance(page, int):
        raise ValidationError("Page must be an integer", field="page", value=page)
    return max(min_page, page)


def quote_identifier(name: str, kind: IdentifierKind = "column") -> str:
    """
    Validate an identifier and quote it for query text.

    Args:
        name: Identifier to quote
        kind: What the identifier names

    Returns:
        Double-quoted identifier

    Raises:
        InvalidIdentifier: If the name is not a safe bare identifier
    """
    validate_identifier(name, kind)
    return f'"{name}"'


def suggest_similar(name: str, candidates: list[str], limit: int = 3) -> list[str]:
    """
    Find candidate names that look like a misspelling of ``name``.

    Comparison ignores case and underscores.

    Args:
        name: The unknown name
        candidates: Known names
        limit: Maximum number of suggestions

    Returns:
        Up to ``limit`` candidates, most similar first
    """
    def normalize(value: str) -> str:
        return value.lower().replace("_", "")

    by_normalized: dict[str, str] = {}
    for candidate in candidates:
        by_normalized.setdefault(normalize(candidate), candidate)

    matches = difflib.get_close_matches(
        normalize(name), list(by_normalized), n=limit, cutoff=0.6
    )
    return [by_normalized[m] for m in matches]

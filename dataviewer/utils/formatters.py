"""Formatting utility functions."""

import json
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Optional, Sequence

import pandas as pd


def format_number(number: int) -> str:
    """
    Format number with thousand separators.

    Args:
        number: Number to format

    Returns:
        Formatted string (e.g., "1,234,567")
    """
    return f"{number:,}"


def format_csv_value(value: Any) -> Optional[str]:
    """
    Render a database value as CSV cell text.

    ``None`` stays ``None`` so it is written as an empty field.

    Args:
        value: Value as returned by the driver

    Returns:
        Cell text or None
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return format(value, "f")
    if isinstance(value, (bytes, bytearray, memoryview)):
        return "\\x" + bytes(value).hex()
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return str(value)


def format_csv_header(columns: Sequence[str]) -> str:
    """
    Render the CSV header line.

    Args:
        columns: Column names in output order

    Returns:
        Header line terminated by a newline
    """
    if not columns:
        return "\n"
    return pd.DataFrame(columns=list(columns)).to_csv(index=False, lineterminator="\n")


def format_csv_rows(columns: Sequence[str], rows: Sequence[Any]) -> str:
    """
    Render a batch of rows as CSV lines.

    Fields containing a comma, quote or line break are quoted with internal
    quotes doubled; NULLs become empty fields.

    Args:
        columns: Column names in output order
        rows: Rows as value sequences in column order

    Returns:
        CSV text, one newline-terminated line per row
    """
    if not rows:
        return ""

    records = [[format_csv_value(value) for value in row] for row in rows]
    frame = pd.DataFrame(records, columns=list(columns), dtype=object)
    return frame.to_csv(index=False, header=False, na_rep="", lineterminator="\n")

"""Filter operator compilation and value coercion."""

import re
import uuid
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Optional, Union
from zoneinfo import ZoneInfo

from dataviewer.core.exceptions import InvalidFilterValue, InvalidOperator
from dataviewer.data.models import ColumnDescriptor, FilterSpec
from dataviewer.utils.validators import quote_identifier

DATE_ONLY_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
START_OF_DAY_PATTERN = re.compile(r"^(\d{4}-\d{2}-\d{2})[ T]00:00:00$")
END_OF_DAY_PATTERN = re.compile(r"^(\d{4}-\d{2}-\d{2})[ T]23:59:59$")

TRUE_VALUES = {"true", "t", "yes", "y", "1"}
FALSE_VALUES = {"false", "f", "no", "n", "0"}

INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1


class FilterOperator(str, Enum):
    """Filter comparison operators."""

    EQUALS = "eq"
    CONTAINS = "contains"
    GREATER_THAN = "gt"
    GREATER_THAN_OR_EQUALS = "gte"
    LESS_THAN = "lt"
    LESS_THAN_OR_EQUALS = "lte"
    BETWEEN = "between"


COMPARISON_SQL = {
    FilterOperator.EQUALS: "=",
    FilterOperator.GREATER_THAN: ">",
    FilterOperator.GREATER_THAN_OR_EQUALS: ">=",
    FilterOperator.LESS_THAN: "<",
    FilterOperator.LESS_THAN_OR_EQUALS: "<=",
}

# Operators whose date-only bound means "through the end of that day"
RANGE_END_OPERATORS = {FilterOperator.LESS_THAN, FilterOperator.LESS_THAN_OR_EQUALS}


def wrap_contains(value: str) -> str:
    """Wrap a substring value with wildcard markers."""
    return f"%{value}%"


@dataclass(frozen=True)
class CompiledOperator:
    """Query fragment for one operator, with its bind parameter names."""

    template: str
    param_names: tuple[str, ...]
    transform: Optional[Callable[[str], str]] = None

    def render(self, column_sql: str) -> str:
        """Substitute an already quoted column into the fragment."""
        return self.template.format(column=column_sql)


@dataclass(frozen=True)
class CompiledFilter:
    """A WHERE clause predicate and the values bound to it."""

    clause: str
    params: dict[str, Any]


def parse_operator(operator: Any) -> FilterOperator:
    """
    Resolve an untrusted operator name.

    Raises:
        InvalidOperator: If the operator is not one of the supported set
    """
    try:
        return FilterOperator(operator)
    except ValueError as e:
        raise InvalidOperator(operator) from e


def compile_operator(
    operator: Union[FilterOperator, str],
    param_index: int,
    dialect_name: str = "postgresql",
) -> CompiledOperator:
    """
    Map an operator to a parameterized comparison fragment.

    The fragment references the column through a ``{column}`` placeholder
    and values only through ``:p<N>`` bind markers.

    Args:
        operator: Operator to compile
        param_index: Index of the first bind parameter
        dialect_name: SQLAlchemy dialect name of the target database

    Returns:
        Compiled operator

    Raises:
        InvalidOperator: If the operator is unknown
    """
    op = parse_operator(operator)
    name = f"p{param_index}"

    if op in COMPARISON_SQL:
        return CompiledOperator(f"{{column}} {COMPARISON_SQL[op]} :{name}", (name,))

    if op == FilterOperator.CONTAINS:
        if dialect_name == "postgresql":
            template = f"{{column}} ILIKE :{name}"
        else:
            template = f"LOWER({{column}}) LIKE LOWER(:{name})"
        return CompiledOperator(template, (name,), transform=wrap_contains)

    if op == FilterOperator.BETWEEN:
        upper = f"p{param_index + 1}"
        return CompiledOperator(
            f"{{column}} BETWEEN :{name} AND :{upper}", (name, upper)
        )

    raise InvalidOperator(operator)


def compile_filter(
    spec: FilterSpec,
    column: ColumnDescriptor,
    param_index: int,
    dialect_name: str = "postgresql",
    filter_timezone: Optional[str] = None,
) -> CompiledFilter:
    """
    Compile one filter against a known column.

    Args:
        spec: Filter as received from the caller
        column: Catalog descriptor of the filtered column
        param_index: Index of the first bind parameter
        dialect_name: SQLAlchemy dialect name of the target database
        filter_timezone: Zone in which date-only values are interpreted

    Returns:
        Predicate text and bound values

    Raises:
        InvalidOperator: If the operator is unknown or does not apply to the column
        InvalidFilterValue: If a value cannot be converted to the column type
    """
    op = parse_operator(spec.operator)
    if op == FilterOperator.CONTAINS and not column.is_textual:
        raise InvalidOperator(
            op.value,
            f"not supported for column '{column.name}' of type {column.data_type}",
        )

    compiled = compile_operator(op, param_index, dialect_name)
    raw_values = _split_values(spec, op)

    params: dict[str, Any] = {}
    for position, (param_name, raw) in enumerate(zip(compiled.param_names, raw_values)):
        if compiled.transform is not None:
            params[param_name] = compiled.transform(raw)
            continue
        end_of_range = op in RANGE_END_OPERATORS or (
            op == FilterOperator.BETWEEN and position == 1
        )
        params[param_name] = coerce_value(column, raw, end_of_range, filter_timezone)

    return CompiledFilter(
        clause=compiled.render(quote_identifier(column.name, "column")),
        params=params,
    )


def _split_values(spec: FilterSpec, op: FilterOperator) -> list[str]:
    """Get the raw value(s) a filter carries, checking their arity."""
    value = spec.value
    if op == FilterOperator.BETWEEN:
        if not isinstance(value, (list, tuple)) or len(value) != 2:
            raise InvalidFilterValue(
                spec.column, value, "between requires exactly two values"
            )
        return [str(v) for v in value]

    if isinstance(value, (list, tuple)):
        raise InvalidFilterValue(
            spec.column, value, f"{op.value} requires a single value"
        )
    if value is None:
        raise InvalidFilterValue(spec.column, value, "a value is required")
    return [str(value)]


def coerce_value(
    column: ColumnDescriptor,
    raw: str,
    end_of_range: bool = False,
    filter_timezone: Optional[str] = None,
) -> Any:
    """
    Convert a string filter value to the Python type of its column.

    Args:
        column: Catalog descriptor of the filtered column
        raw: Value as received from the caller
        end_of_range: Whether the value is an upper bound
        filter_timezone: Zone in which date-only values are interpreted

    Returns:
        Value ready to be bound

    Raises:
        InvalidFilterValue: If the value does not parse as the column type
    """
    target = column.python_type
    if target is None or target is str:
        return raw

    text_value = raw.strip()
    try:
        if target is bool:
            lowered = text_value.lower()
            if lowered in TRUE_VALUES:
                return True
            if lowered in FALSE_VALUES:
                return False
            raise ValueError(text_value)
        if target is int:
            number = int(text_value)
            if not INT64_MIN <= number <= INT64_MAX:
                raise InvalidFilterValue(
                    column.name, raw, "integer out of range"
                )
            return number
        if target is float:
            return float(text_value)
        if target is Decimal:
            return Decimal(text_value)
        if target is datetime:
            return _coerce_datetime(
                text_value, end_of_range, filter_timezone, column.timezone
            )
        if target is date:
            return _coerce_date(text_value)
        if target is time:
            return time.fromisoformat(text_value)
        if target is uuid.UUID:
            return uuid.UUID(text_value)
    except (ValueError, ArithmeticError) as e:
        raise InvalidFilterValue(
            column.name, raw, f"expected {target.__name__}"
        ) from e

    # Other driver types (JSON, arrays, ...) are bound unchanged
    return raw


def _coerce_date(value: str) -> date:
    """Parse a date, accepting a datetime string as well."""
    try:
        return date.fromisoformat(value)
    except ValueError:
        return datetime.fromisoformat(value).date()


def _coerce_datetime(
    value: str,
    end_of_range: bool,
    filter_timezone: Optional[str],
    column_has_timezone: bool,
) -> datetime:
    """
    Parse a timestamp bound.

    Date-only upper bounds and ``23:59:59`` values move to the following
    midnight so the whole day is included.
    """
    end_match = END_OF_DAY_PATTERN.match(value)
    start_match = START_OF_DAY_PATTERN.match(value)

    if DATE_ONLY_PATTERN.match(value):
        day = date.fromisoformat(value)
        if end_of_range:
            day += timedelta(days=1)
        moment = datetime.combine(day, time.min)
    elif end_match:
        moment = datetime.combine(
            date.fromisoformat(end_match.group(1)) + timedelta(days=1), time.min
        )
    elif start_match:
        moment = datetime.combine(date.fromisoformat(start_match.group(1)), time.min)
    else:
        moment = datetime.fromisoformat(value)

    if moment.tzinfo is None and filter_timezone:
        moment = moment.replace(tzinfo=ZoneInfo(filter_timezone))

    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
        if not column_has_timezone:
            moment = moment.replace(tzinfo=None)
    elif column_has_timezone:
        moment = moment.replace(tzinfo=timezone.utc)

    return moment

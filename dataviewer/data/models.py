"""Data models for the application."""

import math
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional, Union


class UserRole(str, Enum):
    """Known principal roles."""

    ADMIN = "admin"
    INTERNAL_USER = "internal_user"
    EXTERNAL_CUSTOMER = "external_customer"


class SortDirection(str, Enum):
    """Sort directions."""

    ASC = "asc"
    DESC = "desc"


@dataclass(frozen=True)
class TableReference:
    """A validated schema-qualified table name."""

    schema: str
    table: str

    @property
    def full_name(self) -> str:
        """Get the ``schema.table`` form used by grants and the wire format."""
        return f"{self.schema}.{self.table}"

    def quoted(self) -> str:
        """Get the quoted form used in generated query text."""
        return f'"{self.schema}"."{self.table}"'


@dataclass(frozen=True)
class TableInfo:
    """A table listed from the database catalog."""

    schema: str
    name: str

    @property
    def full_name(self) -> str:
        """Get fully qualified table name."""
        return f"{self.schema}.{self.name}"

    def to_dict(self) -> dict[str, str]:
        """Convert to dictionary."""
        return {"schema": self.schema, "name": self.name, "fullName": self.full_name}


@dataclass(frozen=True)
class ColumnDescriptor:
    """Table column information."""

    name: str
    data_type: str
    nullable: bool = True
    is_primary_key: bool = False
    ordinal_position: int = 0
    python_type: Optional[type] = None
    timezone: bool = False

    @property
    def is_textual(self) -> bool:
        """Check whether substring matching applies to this column."""
        return self.python_type is str

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "name": self.name,
            "dataType": self.data_type,
            "isNullable": self.nullable,
            "isPrimaryKey": self.is_primary_key,
        }


FilterValue = Union[str, tuple[str, str]]


@dataclass(frozen=True)
class FilterSpec:
    """A single untrusted column/operator/value predicate."""

    column: str
    operator: str
    value: FilterValue


@dataclass(frozen=True)
class SortSpec:
    """A requested display ordering."""

    column: str
    direction: SortDirection = SortDirection.ASC


@dataclass(frozen=True)
class QueryPlan:
    """A fully validated read request, ready for execution.

    The WHERE clause text only ever contains quoted, validated identifiers
    and named bind markers; every value lives in ``params``.
    """

    database: str
    table: TableReference
    columns: tuple[ColumnDescriptor, ...]
    filters: tuple[FilterSpec, ...]
    sort: tuple[SortSpec, ...]
    page: int
    page_size: int
    where_sql: str = ""
    params: Mapping[str, Any] = field(default_factory=dict, hash=False)
    order_by: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "params", MappingProxyType(dict(self.params)))

    @property
    def column_names(self) -> list[str]:
        """Get column names in catalog order."""
        return [c.name for c in self.columns]


@dataclass
class QueryResult:
    """One page of rows plus pagination totals."""

    rows: list[dict[str, Any]]
    total_count: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        """Get the number of pages, never less than one."""
        return max(1, math.ceil(self.total_count / self.page_size))

    def to_dict(self) -> dict[str, Any]:
        """Convert to the wire format."""
        return {
            "rows": self.rows,
            "totalCount": self.total_count,
            "page": self.page,
            "pageSize": self.page_size,
            "totalPages": self.total_pages,
        }


@dataclass(frozen=True)
class Principal:
    """An authenticated caller."""

    principal_id: str
    email: str = ""
    role: str = UserRole.EXTERNAL_CUSTOMER.value
    is_active: bool = True


@dataclass(frozen=True)
class AccessGrant:
    """Allow-list entry for one restricted principal and one table."""

    principal_id: str
    database: str
    table_full_name: str

    @property
    def key(self) -> str:
        """Get the ``database:schema.table`` key grants are matched on."""
        return f"{self.database}:{self.table_full_name}"


@dataclass(frozen=True)
class ExportQuota:
    """Export row limits that apply to one request."""

    role: str
    warn_threshold: int
    max_rows_for_role: int
    absolute_cap: int
    is_admin: bool = False

    @property
    def effective_limit(self) -> int:
        """Get the lowest limit that applies."""
        return min(self.max_rows_for_role, self.absolute_cap)


@dataclass(frozen=True)
class AccessDecision:
    """Outcome of the access control gate."""

    allowed: bool
    quota: ExportQuota


@dataclass(frozen=True)
class QuotaCheck:
    """Export size decision for a freshly counted result set."""

    total_count: int
    quota: ExportQuota

    @property
    def too_large(self) -> bool:
        """Check whether the absolute cap is exceeded."""
        return self.total_count > self.quota.absolute_cap

    @property
    def exceeds_limit(self) -> bool:
        """Check whether any limit is exceeded."""
        return self.too_large or self.total_count > self.quota.max_rows_for_role

    @property
    def needs_warning(self) -> bool:
        """Check whether the caller must confirm before exporting."""
        return self.total_count > self.quota.warn_threshold

    @property
    def can_export(self) -> bool:
        """Check whether the export may proceed."""
        return not self.exceeds_limit

    def to_dict(self) -> dict[str, Any]:
        """Convert to the wire format."""
        return {
            "totalCount": self.total_count,
            "maxRowsForRole": self.quota.effective_limit,
            "warningThreshold": self.quota.warn_threshold,
            "isAdmin": self.quota.is_admin,
            "needsWarning": self.needs_warning,
            "exceedsLimit": self.exceeds_limit,
            "canExport": self.can_export,
        }


@dataclass
class ExportJob:
    """A single CSV export in progress."""

    plan: QueryPlan
    quota: ExportQuota
    export_all: bool
    row_limit: int
    offset: int = 0
    rows_written: int = 0

    @property
    def filename(self) -> str:
        """Get the attachment filename."""
        return f"{self.plan.table.table}_export.csv"

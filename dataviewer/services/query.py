"""Query planning and execution for row browsing."""

import math
from typing import Any, Optional, Sequence

from dataviewer.core.config import QueryConfig
from dataviewer.core.exceptions import InvalidColumn
from dataviewer.core.logging import get_logger
from dataviewer.data.models import (
    ColumnDescriptor,
    FilterSpec,
    QueryPlan,
    QueryResult,
    SortDirection,
    SortSpec,
)
from dataviewer.data.registry import ConnectionRegistry
from dataviewer.data.repositories import CatalogRepository
from dataviewer.utils.filters import compile_filter
from dataviewer.utils.validators import (
    is_valid_identifier,
    parse_table_reference,
    quote_identifier,
    suggest_similar,
    validate_column_name,
    validate_page,
)

logger = get_logger(__name__)

# Row identity used for ordering when a table has no primary key
ROW_IDENTITY = {"postgresql": "ctid", "sqlite": "rowid"}


class QueryPlanner:
    """Turns an untrusted browse request into a validated query plan."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        catalog: CatalogRepository,
        query_config: Optional[QueryConfig] = None,
    ) -> None:
        """
        Initialize query planner.

        Args:
            registry: Connection registry
            catalog: Catalog repository used to resolve the column set
            query_config: Paging and filter settings
        """
        self.registry = registry
        self.catalog = catalog
        self.query_config = query_config or QueryConfig()

    async def plan(
        self,
        database: str,
        table: str,
        filters: Sequence[FilterSpec] = (),
        sort: Sequence[SortSpec] = (),
        page: int = 1,
        page_size: Optional[int] = None,
    ) -> QueryPlan:
        """
        Validate a request and compile it into a query plan.

        Identifiers are checked before the catalog is read, and columns are
        checked against the catalog before any count or data query runs.

        Args:
            database: Logical database name
            table: ``schema.table`` name
            filters: Filters joined with AND
            sort: Display ordering
            page: Requested page, starting at 1
            page_size: Rows per page

        Returns:
            Immutable query plan

        Raises:
            DatabaseNotFound: If the database is not configured
            InvalidIdentifier: If a schema, table or column name is unsafe
            TableNotFound: If the table does not exist
            InvalidColumn: If a filter or sort column is not in the table
            InvalidOperator: If a filter operator is unknown or inapplicable
            InvalidFilterValue: If a filter value does not fit its column
        """
        table_ref = parse_table_reference(table, self.registry.default_schema(database))
        for spec in filters:
            validate_column_name(spec.column)
        for item in sort:
            validate_column_name(item.column)
        page = validate_page(page)
        size = page_size or self.query_config.page_size

        columns = await self.catalog.get_columns(database, table_ref)
        by_name = {column.name: column for column in columns}
        for name in [f.column for f in filters] + [s.column for s in sort]:
            if name not in by_name:
                raise InvalidColumn(name, suggest_similar(name, list(by_name)))

        dialect_name = self.registry.dialect_name(database)
        clauses = []
        params: dict[str, Any] = {}
        for spec in filters:
            compiled = compile_filter(
                spec,
                by_name[spec.column],
                len(params),
                dialect_name,
                self.query_config.filter_timezone,
            )
            clauses.append(compiled.clause)
            params.update(compiled.params)

        return QueryPlan(
            database=database,
            table=table_ref,
            columns=tuple(columns),
            filters=tuple(filters),
            sort=tuple(sort),
            page=page,
            page_size=size,
            where_sql=" AND ".join(clauses),
            params=params,
            order_by=tuple(_order_by(columns, sort, dialect_name)),
        )


def _order_by(
    columns: Sequence[ColumnDescriptor],
    sort: Sequence[SortSpec],
    dialect_name: str,
) -> list[str]:
    """
    Build ORDER BY terms.

    Requested sort columns come first; the primary key (or the row identity
    when there is none) always follows as a tiebreak.
    """
    terms = []
    sorted_names = set()
    for item in sort:
        direction = "DESC" if item.direction == SortDirection.DESC else "ASC"
        terms.append(f"{quote_identifier(item.column)} {direction}")
        sorted_names.add(item.column)

    pk_columns = sorted(
        (c for c in columns if c.is_primary_key and is_valid_identifier(c.name)),
        key=lambda c: c.ordinal_position,
    )
    if pk_columns:
        terms.extend(
            f"{quote_identifier(c.name)} ASC"
            for c in pk_columns
            if c.name not in sorted_names
        )
    elif dialect_name in ROW_IDENTITY:
        terms.append(f"{ROW_IDENTITY[dialect_name]} ASC")

    return terms


def build_count_sql(plan: QueryPlan) -> str:
    """Build the COUNT(*) query sharing the plan's WHERE clause."""
    sql = f"SELECT COUNT(*) FROM {plan.table.quoted()}"
    if plan.where_sql:
        sql += f" WHERE {plan.where_sql}"
    return sql


def build_select_sql(plan: QueryPlan, limited: bool = True) -> str:
    """
    Build the ordered data query.

    With ``limited`` the query takes ``:row_limit`` and ``:row_offset`` bind
    parameters.
    """
    sql = f"SELECT * FROM {plan.table.quoted()}"
    if plan.where_sql:
        sql += f" WHERE {plan.where_sql}"
    if plan.order_by:
        sql += " ORDER BY " + ", ".join(plan.order_by)
    if limited:
        sql += " LIMIT :row_limit OFFSET :row_offset"
    return sql


def clamp_page(page: int, total_count: int, page_size: int) -> int:
    """Clamp a requested page into ``[1, totalPages]``."""
    total_pages = max(1, math.ceil(total_count / page_size))
    return min(max(page, 1), total_pages)


def page_params(plan: QueryPlan, limit: int, offset: int) -> dict[str, Any]:
    """Get the plan's bound values plus paging values."""
    return {**plan.params, "row_limit": limit, "row_offset": offset}


class QueryExecutor:
    """Runs query plans against the registry."""

    def __init__(self, registry: ConnectionRegistry) -> None:
        self.registry = registry

    async def count(self, plan: QueryPlan) -> int:
        """
        Count rows matching the plan's filters.

        Args:
            plan: Query plan

        Returns:
            Number of matching rows
        """
        total = await self.registry.execute_scalar(
            plan.database, build_count_sql(plan), dict(plan.params)
        )
        return int(total or 0)

    async def execute(self, plan: QueryPlan) -> QueryResult:
        """
        Fetch one page of rows.

        The requested page is clamped into ``[1, totalPages]``.

        Args:
            plan: Query plan

        Returns:
            Rows of the page plus pagination totals
        """
        total_count = await self.count(plan)
        total_pages = max(1, math.ceil(total_count / plan.page_size))
        page = clamp_page(plan.page, total_count, plan.page_size)

        rows = await self.registry.execute_query(
            plan.database,
            build_select_sql(plan),
            page_params(plan, plan.page_size, (page - 1) * plan.page_size),
        )

        logger.debug(
            f"Fetched {len(rows)} rows from {plan.table.full_name} "
            f"(page {page}/{total_pages})"
        )
        return QueryResult(
            rows=rows, total_count=total_count, page=page, page_size=plan.page_size
        )

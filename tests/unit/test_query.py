"""Tests for query planning and execution."""

import asyncio
import sqlite3
from unittest.mock import AsyncMock, MagicMock

import pytest

from dataviewer.core.exceptions import (
    DatabaseNotFound,
    InvalidColumn,
    InvalidIdentifier,
    InvalidOperator,
    TableNotFound,
)
from dataviewer.data.models import (
    FilterSpec,
    QueryPlan,
    SortDirection,
    SortSpec,
    TableReference,
)
from dataviewer.data.registry import ConnectionRegistry
from dataviewer.data.repositories import CatalogRepository
from dataviewer.services.query import (
    QueryExecutor,
    QueryPlanner,
    build_count_sql,
    build_select_sql,
)


def sqlite_scalar(path, sql):
    conn = sqlite3.connect(path)
    try:
        return conn.execute(sql).fetchone()[0]
    finally:
        conn.close()


def run_plan(registry, table, filters=(), sort=(), page=1, page_size=50):
    """Plan and execute one request."""

    async def _run():
        planner = QueryPlanner(registry, CatalogRepository(registry))
        plan = await planner.plan("Main", table, filters, sort, page, page_size)
        return plan, await QueryExecutor(registry).execute(plan)

    return _run()


@pytest.fixture
def mock_registry():
    """Registry double that records any query attempt."""
    registry = MagicMock(spec=ConnectionRegistry)
    registry.default_schema.return_value = "public"
    registry.dialect_name.return_value = "postgresql"
    registry.execute_query = AsyncMock()
    registry.execute_scalar = AsyncMock()
    return registry


@pytest.fixture
def mock_catalog(sample_columns):
    catalog = MagicMock(spec=CatalogRepository)
    catalog.get_columns = AsyncMock(return_value=sample_columns)
    return catalog


class TestPlannerValidation:
    """Tests for validation performed before any query runs."""

    def test_invalid_table_identifier(self, mock_registry, mock_catalog):
        """Test unsafe table names never reach the catalog."""
        planner = QueryPlanner(mock_registry, mock_catalog)
        with pytest.raises(InvalidIdentifier):
            asyncio.run(planner.plan("Main", "public.bookings;--"))
        mock_catalog.get_columns.assert_not_awaited()

    def test_invalid_filter_identifier(self, mock_registry, mock_catalog):
        """Test unsafe filter column names fail before a connection is used."""
        planner = QueryPlanner(mock_registry, mock_catalog)
        filters = [FilterSpec('status" OR "1"="1', "eq", "x")]
        with pytest.raises(InvalidIdentifier):
            asyncio.run(planner.plan("Main", "public.bookings", filters))
        mock_catalog.get_columns.assert_not_awaited()

    def test_invalid_sort_identifier(self, mock_registry, mock_catalog):
        """Test unsafe sort column names are rejected."""
        planner = QueryPlanner(mock_registry, mock_catalog)
        with pytest.raises(InvalidIdentifier):
            asyncio.run(
                planner.plan(
                    "Main", "public.bookings", sort=[SortSpec("1; DROP TABLE x")]
                )
            )

    def test_unknown_filter_column_runs_no_query(self, mock_registry, mock_catalog):
        """Test unknown columns fail with suggestions and no query."""
        planner = QueryPlanner(mock_registry, mock_catalog)
        with pytest.raises(InvalidColumn, match="Did you mean: 'status'") as exc_info:
            asyncio.run(
                planner.plan("Main", "public.bookings", [FilterSpec("stauts", "eq", "done")])
            )
        assert exc_info.value.status_code == 400
        mock_registry.execute_query.assert_not_awaited()
        mock_registry.execute_scalar.assert_not_awaited()

    def test_unknown_sort_column(self, mock_registry, mock_catalog):
        """Test unknown sort columns are rejected."""
        planner = QueryPlanner(mock_registry, mock_catalog)
        with pytest.raises(InvalidColumn):
            asyncio.run(
                planner.plan("Main", "public.bookings", sort=[SortSpec("nonexistent")])
            )
        mock_registry.execute_query.assert_not_awaited()

    def test_contains_on_numeric_column(self, mock_registry, mock_catalog):
        """Test contains on a numeric column is rejected at planning time."""
        planner = QueryPlanner(mock_registry, mock_catalog)
        with pytest.raises(InvalidOperator):
            asyncio.run(
                planner.plan(
                    "Main", "public.bookings", [FilterSpec("amount", "contains", "5")]
                )
            )
        mock_registry.execute_scalar.assert_not_awaited()

    def test_unknown_database(self, db_sources):
        """Test unknown databases are reported before the catalog is read."""
        registry = ConnectionRegistry(db_sources)
        planner = QueryPlanner(registry, CatalogRepository(registry))
        with pytest.raises(DatabaseNotFound):
            asyncio.run(planner.plan("Elsewhere", "main.bookings"))


class TestPlanShape:
    """Tests for the compiled plan."""

    def test_filters_joined_with_and(self, mock_registry, mock_catalog):
        """Test filters compile to one AND-joined clause."""
        planner = QueryPlanner(mock_registry, mock_catalog)
        plan = asyncio.run(
            planner.plan(
                "Main",
                "public.bookings",
                [
                    FilterSpec("status", "eq", "done"),
                    FilterSpec("amount", "between", ("10", "20")),
                    FilterSpec("customer", "contains", "smith"),
                ],
            )
        )
        assert plan.where_sql == (
            '"status" = :p0 AND "amount" BETWEEN :p1 AND :p2 AND "customer" ILIKE :p3'
        )
        assert plan.params == {"p0": "done", "p1": 10, "p2": 20, "p3": "%smith%"}
        assert plan.page_size == 50

    def test_primary_key_tiebreak(self, mock_registry, mock_catalog):
        """Test the primary key follows any requested sort."""
        planner = QueryPlanner(mock_registry, mock_catalog)
        plan = asyncio.run(
            planner.plan(
                "Main",
                "public.bookings",
                sort=[SortSpec("amount", SortDirection.DESC)],
            )
        )
        assert plan.order_by == ('"amount" DESC', '"id" ASC')

    def test_sort_on_primary_key_not_repeated(self, mock_registry, mock_catalog):
        """Test sorting by the key does not add it twice."""
        planner = QueryPlanner(mock_registry, mock_catalog)
        plan = asyncio.run(
            planner.plan(
                "Main", "public.bookings", sort=[SortSpec("id", SortDirection.DESC)]
            )
        )
        assert plan.order_by == ('"id" DESC',)

    def test_count_and_select_sql(self, sample_columns):
        """Test generated query text."""
        plan = QueryPlan(
            database="Main",
            table=TableReference("public", "bookings"),
            columns=tuple(sample_columns),
            filters=(FilterSpec("status", "eq", "done"),),
            sort=(),
            page=1,
            page_size=50,
            where_sql='"status" = :p0',
            params={"p0": "done"},
            order_by=('"id" ASC',),
        )
        assert build_count_sql(plan) == (
            'SELECT COUNT(*) FROM "public"."bookings" WHERE "status" = :p0'
        )
        assert build_select_sql(plan) == (
            'SELECT * FROM "public"."bookings" WHERE "status" = :p0 '
            'ORDER BY "id" ASC LIMIT :row_limit OFFSET :row_offset'
        )
        assert "LIMIT" not in build_select_sql(plan, limited=False)


class TestExecution:
    """Tests against a real SQLite database."""

    def test_bookings_status_scenario(self, with_registry, bookings_db):
        """Test a status filter returns the matching count and first page."""
        expected = sqlite_scalar(
            bookings_db, "SELECT COUNT(*) FROM bookings WHERE status = 'done'"
        )

        _, result = with_registry(
            lambda registry: run_plan(
                registry, "main.bookings", [FilterSpec("status", "eq", "done")]
            )
        )
        assert result.total_count == expected
        assert len(result.rows) == min(50, expected)
        assert all(row["status"] == "done" for row in result.rows)
        assert result.to_dict()["totalPages"] == -(-expected // 50)

    def test_bare_table_name(self, with_registry):
        """Test bare table names resolve in the default schema."""
        _, result = with_registry(lambda registry: run_plan(registry, "messages"))
        assert result.total_count == 3

    def test_pagination_is_complete(self, with_registry):
        """Test walking every page yields each matching row exactly once."""

        async def scenario(registry):
            planner = QueryPlanner(registry, CatalogRepository(registry))
            executor = QueryExecutor(registry)
            filters = [FilterSpec("status", "eq", "done")]
            first = await executor.execute(
                await planner.plan("Main", "main.bookings", filters, page=1, page_size=100)
            )
            ids = []
            for page in range(1, first.total_pages + 1):
                plan = await planner.plan(
                    "Main", "main.bookings", filters, page=page, page_size=100
                )
                ids.extend(row["id"] for row in (await executor.execute(plan)).rows)
            return first.total_count, ids

        total, ids = with_registry(scenario)
        assert len(ids) == total
        assert len(set(ids)) == total

    def test_page_clamped(self, with_registry):
        """Test pages past the end return the last page."""
        _, result = with_registry(
            lambda registry: run_plan(registry, "main.messages", page=99, page_size=2)
        )
        assert result.page == 2
        assert [row["id"] for row in result.rows] == [3]

    def test_empty_result_has_one_page(self, with_registry):
        """Test an empty result still reports one page."""
        _, result = with_registry(
            lambda registry: run_plan(
                registry, "main.bookings", [FilterSpec("status", "eq", "archived")]
            )
        )
        assert result.total_count == 0
        assert result.total_pages == 1
        assert result.rows == []

    def test_sort_descending(self, with_registry):
        """Test display order with key tiebreak."""
        _, result = with_registry(
            lambda registry: run_plan(
                registry,
                "main.bookings",
                sort=[SortSpec("amount", SortDirection.DESC)],
                page_size=10,
            )
        )
        keys = [(-row["amount"], row["id"]) for row in result.rows]
        assert keys == sorted(keys)
        assert result.rows[0]["amount"] == 499

    def test_table_without_key_uses_row_order(self, with_registry):
        """Test tables without a key page in insertion order."""
        plan, result = with_registry(lambda registry: run_plan(registry, "main.events"))
        assert plan.order_by == ("rowid ASC",)
        assert [row["value"] for row in result.rows] == [3, 1, 2, 5]

    def test_contains_filter(self, with_registry, bookings_db):
        """Test case-insensitive substring matching."""
        expected = sqlite_scalar(
            bookings_db,
            "SELECT COUNT(*) FROM bookings WHERE lower(customer) LIKE '%customer 1%'",
        )
        _, result = with_registry(
            lambda registry: run_plan(
                registry,
                "main.bookings",
                [FilterSpec("customer", "contains", "CUSTOMER 1")],
            )
        )
        assert result.total_count == expected

    def test_date_range_covers_whole_day(self, with_registry):
        """Test a date-only between includes the whole upper day."""
        _, result = with_registry(
            lambda registry: run_plan(
                registry,
                "main.bookings",
                [FilterSpec("created_at", "between", ("2024-01-02", "2024-01-02"))],
            )
        )
        assert result.total_count == 24

    def test_missing_table(self, with_registry):
        """Test unknown tables raise TableNotFound."""
        with pytest.raises(TableNotFound):
            with_registry(lambda registry: run_plan(registry, "main.unknown"))

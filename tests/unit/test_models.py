"""Unit tests for data models."""

from datetime import datetime

import pytest

from dataviewer.data.models import (
    AccessGrant,
    ColumnDescriptor,
    ExportJob,
    ExportQuota,
    QueryPlan,
    QueryResult,
    TableInfo,
    TableReference,
)


class TestTableReference:
    """Tests for TableReference model."""

    def test_full_name(self):
        """Test schema-qualified name."""
        assert TableReference("public", "orders").full_name == "public.orders"

    def test_quoted(self):
        """Test quoted name for query text."""
        assert TableReference("sales", "orders").quoted() == '"sales"."orders"'


class TestTableInfo:
    """Tests for TableInfo model."""

    def test_to_dict(self):
        """Test conversion to dictionary."""
        assert TableInfo("dbo", "Users").to_dict() == {
            "schema": "dbo",
            "name": "Users",
            "fullName": "dbo.Users",
        }


class TestColumnDescriptor:
    """Tests for ColumnDescriptor model."""

    def test_is_textual(self):
        """Test only string columns accept substring matching."""
        assert ColumnDescriptor("name", "text", python_type=str).is_textual is True
        assert ColumnDescriptor("n", "integer", python_type=int).is_textual is False
        assert ColumnDescriptor("geo", "geometry").is_textual is False

    def test_to_dict(self):
        """Test wire format hides internal fields."""
        column = ColumnDescriptor("id", "integer", False, True, 1, int)
        assert column.to_dict() == {
            "name": "id",
            "dataType": "integer",
            "isNullable": False,
            "isPrimaryKey": True,
        }


class TestQueryResult:
    """Tests for QueryResult model."""

    @pytest.mark.parametrize(
        "total,expected",
        [(0, 1), (1, 1), (50, 1), (51, 2), (833, 17)],
    )
    def test_total_pages(self, total, expected):
        """Test page count is at least one."""
        assert QueryResult([], total, 1, 50).total_pages == expected

    def test_to_dict(self):
        """Test wire format."""
        result = QueryResult([{"id": 1}], 1, 1, 50)
        assert result.to_dict() == {
            "rows": [{"id": 1}],
            "totalCount": 1,
            "page": 1,
            "pageSize": 50,
            "totalPages": 1,
        }


class TestAccessModels:
    """Tests for grants and quotas."""

    def test_grant_key(self):
        """Test grants match on database and table."""
        grant = AccessGrant("cust-1", "Analytics", "public.bookings")
        assert grant.key == "Analytics:public.bookings"

    def test_effective_limit(self):
        """Test the cap bounds the role limit."""
        assert ExportQuota("admin", 2000, 90000, 50000).effective_limit == 50000
        assert ExportQuota("viewer", 2000, 10000, 50000).effective_limit == 10000


class TestExportJob:
    """Tests for ExportJob model."""

    def test_filename(self, sample_columns):
        """Test attachment name uses the bare table name."""
        plan = QueryPlan(
            database="Main",
            table=TableReference("sales", "orders"),
            columns=tuple(sample_columns),
            filters=(),
            sort=(),
            page=1,
            page_size=50,
        )
        job = ExportJob(plan, ExportQuota("admin", 1, 2, 3), True, row_limit=10)
        assert job.filename == "orders_export.csv"
        assert job.rows_written == 0
        assert plan.column_names[4] == "created_at"
        assert sample_columns[4].python_type is datetime


class TestQueryPlan:
    """Tests for QueryPlan model."""

    def test_params_are_read_only(self, sample_columns):
        """Test bound values cannot change after planning."""
        source = {"p0": "done"}
        plan = QueryPlan(
            database="Main",
            table=TableReference("public", "bookings"),
            columns=tuple(sample_columns),
            filters=(),
            sort=(),
            page=1,
            page_size=50,
            where_sql='"status" = :p0',
            params=source,
        )
        with pytest.raises(TypeError):
            plan.params["p0"] = "pending"

        source["p0"] = "pending"
        assert plan.params == {"p0": "done"}

"""Repository classes for catalog metadata access."""

from typing import Any, Optional

from sqlalchemy import inspect
from sqlalchemy.engine import Connection
from sqlalchemy.exc import NoSuchTableError

from dataviewer.core.exceptions import TableNotFound
from dataviewer.core.logging import get_logger
from dataviewer.data.models import ColumnDescriptor, TableInfo, TableReference
from dataviewer.data.registry import ConnectionRegistry

logger = get_logger(__name__)

SYSTEM_SCHEMAS = {"information_schema", "pg_catalog", "pg_toast"}


def _is_system_schema(schema: str) -> bool:
    return schema in SYSTEM_SCHEMAS or schema.startswith("pg_temp") or schema.startswith(
        "pg_toast_temp"
    )


def _python_type(column_type: Any) -> Optional[type]:
    """Get the Python type the driver returns for a column type, if known."""
    try:
        return column_type.python_type
    except NotImplementedError:
        return None


def _type_name(column_type: Any, connection: Connection) -> str:
    """Render a column type as the database spells it."""
    try:
        return column_type.compile(dialect=connection.dialect).lower()
    except Exception:
        return type(column_type).__name__.lower()


class CatalogRepository:
    """Repository for table and column metadata.

    Metadata is read through the SQLAlchemy inspector on every call, so the
    same code serves PostgreSQL and SQLite and nothing is cached here.
    """

    def __init__(self, registry: ConnectionRegistry) -> None:
        """
        Initialize catalog repository.

        Args:
            registry: Connection registry
        """
        self.registry = registry

    async def list_tables(self, database: str) -> list[TableInfo]:
        """
        Get base tables of every non-system schema.

        Args:
            database: Logical database name

        Returns:
            List of table information ordered by schema and name
        """

        def _collect(sync_conn: Connection) -> list[TableInfo]:
            inspector = inspect(sync_conn)
            tables = []
            for schema in inspector.get_schema_names():
                if _is_system_schema(schema):
                    continue
                for name in inspector.get_table_names(schema=schema):
                    tables.append(TableInfo(schema=schema, name=name))
            return sorted(tables, key=lambda t: (t.schema, t.name))

        async with self.registry.connect(database) as conn:
            tables = await conn.run_sync(_collect)

        logger.info(f"Retrieved {len(tables)} tables from '{database}'")
        return tables

    async def get_columns(
        self, database: str, table: TableReference
    ) -> list[ColumnDescriptor]:
        """
        Get column information for a table.

        Args:
            database: Logical database name
            table: Validated table reference

        Returns:
            Columns in ordinal order

        Raises:
            TableNotFound: If the table does not exist
        """

        def _collect(sync_conn: Connection) -> list[ColumnDescriptor]:
            inspector = inspect(sync_conn)
            try:
                columns = inspector.get_columns(table.table, schema=table.schema)
                pk = inspector.get_pk_constraint(table.table, schema=table.schema)
            except NoSuchTableError as e:
                raise TableNotFound(database, table.full_name) from e

            if not columns:
                raise TableNotFound(database, table.full_name)

            pk_columns = set(pk.get("constrained_columns") or [])
            return [
                ColumnDescriptor(
                    name=column["name"],
                    data_type=_type_name(column["type"], sync_conn),
                    nullable=bool(column.get("nullable", True)),
                    is_primary_key=column["name"] in pk_columns,
                    ordinal_position=position,
                    python_type=_python_type(column["type"]),
                    timezone=bool(getattr(column["type"], "timezone", False)),
                )
                for position, column in enumerate(columns, start=1)
            ]

        async with self.registry.connect(database) as conn:
            return await conn.run_sync(_collect)

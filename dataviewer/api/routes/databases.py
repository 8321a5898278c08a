"""Database catalog API routes."""

from fastapi import APIRouter, Depends

from dataviewer.api.dependencies import (
    get_access_gate,
    get_catalog,
    get_current_principal,
    get_registry,
)
from dataviewer.core.exceptions import DatabaseNotFound
from dataviewer.core.logging import get_logger
from dataviewer.data.models import Principal
from dataviewer.data.registry import ConnectionRegistry
from dataviewer.data.repositories import CatalogRepository
from dataviewer.services.auth import AccessGate
from dataviewer.utils.validators import parse_table_reference

logger = get_logger(__name__)
router = APIRouter()


@router.get("/databases")
async def list_databases(
    principal: Principal = Depends(get_current_principal),
    registry: ConnectionRegistry = Depends(get_registry),
):
    """
    List configured databases.

    Only names are returned; connection URLs never leave the server.
    """
    return [{"name": name} for name in registry.database_names()]


@router.get("/tables/{database}")
async def list_tables(
    database: str,
    principal: Principal = Depends(get_current_principal),
    registry: ConnectionRegistry = Depends(get_registry),
    catalog: CatalogRepository = Depends(get_catalog),
    gate: AccessGate = Depends(get_access_gate),
):
    """
    List tables visible to the caller.

    Restricted principals only see the tables they were granted.
    """
    if not registry.has_database(database):
        raise DatabaseNotFound(database)

    tables = await catalog.list_tables(database)
    visible = await gate.filter_tables(principal, database, tables)
    return [table.to_dict() for table in visible]


@router.get("/columns/{database}/{table}")
async def list_columns(
    database: str,
    table: str,
    principal: Principal = Depends(get_current_principal),
    registry: ConnectionRegistry = Depends(get_registry),
    catalog: CatalogRepository = Depends(get_catalog),
    gate: AccessGate = Depends(get_access_gate),
):
    """Get column descriptors of a table."""
    table_ref = parse_table_reference(table, registry.default_schema(database))
    await gate.authorize(principal, database, table_ref.full_name)

    columns = await catalog.get_columns(database, table_ref)
    return [column.to_dict() for column in columns]

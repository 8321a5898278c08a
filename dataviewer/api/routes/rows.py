"""Row browsing API routes."""

from typing import Optional, Union

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field, field_validator

from dataviewer.api.dependencies import (
    get_access_gate,
    get_client_ip,
    get_current_principal,
    get_executor,
    get_planner,
    get_registry,
)
from dataviewer.core.logging import get_logger
from dataviewer.data.models import (
    AccessDecision,
    FilterSpec,
    Principal,
    QueryPlan,
    SortDirection,
    SortSpec,
)
from dataviewer.data.registry import ConnectionRegistry
from dataviewer.services.audit import AuditAction, log_audit
from dataviewer.services.auth import AccessGate
from dataviewer.services.query import QueryExecutor, QueryPlanner
from dataviewer.utils.validators import parse_table_reference

logger = get_logger(__name__)
router = APIRouter()

ScalarValue = Union[bool, int, float, str]


class FilterModel(BaseModel):
    """One filter predicate."""

    column: str
    operator: str
    value: Union[ScalarValue, list[ScalarValue], None] = None

    def to_spec(self) -> FilterSpec:
        if isinstance(self.value, list):
            value = tuple(str(v) for v in self.value)
        elif self.value is None:
            value = None
        else:
            value = str(self.value)
        return FilterSpec(column=self.column, operator=self.operator, value=value)


class SortModel(BaseModel):
    """One sort term."""

    column: str
    direction: SortDirection = SortDirection.ASC

    @field_validator("direction", mode="before")
    @classmethod
    def normalize_direction(cls, v):
        return v.lower() if isinstance(v, str) else v

    def to_spec(self) -> SortSpec:
        return SortSpec(column=self.column, direction=self.direction)


class TableRequest(BaseModel):
    """Fields shared by every table-scoped request."""

    model_config = ConfigDict(populate_by_name=True)

    database: str = Field(..., description="Logical database name")
    table: str = Field(..., description="Table as schema.table")
    filters: list[FilterModel] = Field(default_factory=list)
    sort: Optional[Union[SortModel, list[SortModel]]] = None

    def filter_specs(self) -> list[FilterSpec]:
        return [f.to_spec() for f in self.filters]

    def sort_specs(self) -> list[SortSpec]:
        if self.sort is None:
            return []
        if isinstance(self.sort, list):
            return [s.to_spec() for s in self.sort]
        return [self.sort.to_spec()]


class RowsRequest(TableRequest):
    """Request model for fetching rows."""

    page: int = Field(1, description="Page number, starting at 1")
    page_size: Optional[int] = Field(None, alias="pageSize", ge=1, le=1000)


async def authorized_plan(
    request: TableRequest,
    principal: Principal,
    registry: ConnectionRegistry,
    gate: AccessGate,
    planner: QueryPlanner,
    page: int = 1,
    page_size: Optional[int] = None,
) -> tuple[QueryPlan, AccessDecision]:
    """
    Authorize a table request and plan it.

    The access gate runs before the catalog or the table is queried.
    """
    table_ref = parse_table_reference(
        request.table, registry.default_schema(request.database)
    )
    decision = await gate.authorize(principal, request.database, table_ref.full_name)
    plan = await planner.plan(
        request.database,
        request.table,
        filters=request.filter_specs(),
        sort=request.sort_specs(),
        page=page,
        page_size=page_size,
    )
    return plan, decision


@router.post("/rows")
async def fetch_rows(
    request: RowsRequest,
    principal: Principal = Depends(get_current_principal),
    registry: ConnectionRegistry = Depends(get_registry),
    gate: AccessGate = Depends(get_access_gate),
    planner: QueryPlanner = Depends(get_planner),
    executor: QueryExecutor = Depends(get_executor),
    client_ip: Optional[str] = Depends(get_client_ip),
):
    """
    Fetch one page of rows.

    Filters are joined with AND; the page is clamped to the available range.
    """
    plan, _ = await authorized_plan(
        request,
        principal,
        registry,
        gate,
        planner,
        page=request.page,
        page_size=request.page_size,
    )
    result = await executor.execute(plan)

    log_audit(
        principal,
        AuditAction.VIEW_DATA,
        request.database,
        plan.table.full_name,
        f"page={result.page} rows={len(result.rows)} filters={len(plan.filters)}",
        client_ip,
    )
    return result.to_dict()

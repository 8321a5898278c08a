"""CSV export API routes."""

import json
from typing import AsyncIterator, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from pydantic import Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from starlette.types import Receive, Scope, Send

from dataviewer.api.dependencies import (
    get_access_gate,
    get_client_ip,
    get_current_principal,
    get_export_service,
    get_planner,
    get_registry,
)
from dataviewer.api.routes.rows import (
    FilterModel,
    SortModel,
    TableRequest,
    authorized_plan,
)
from dataviewer.core.exceptions import ValidationError
from dataviewer.core.logging import get_logger
from dataviewer.data.models import ExportJob, Principal
from dataviewer.data.registry import ConnectionRegistry
from dataviewer.services.audit import AuditAction, log_audit
from dataviewer.services.auth import AccessGate
from dataviewer.services.export import ExportService
from dataviewer.services.query import QueryPlanner

logger = get_logger(__name__)
router = APIRouter()

FILTERS_ADAPTER = TypeAdapter(list[FilterModel])
SORT_ADAPTER = TypeAdapter(list[SortModel])


class ClosingStreamingResponse(StreamingResponse):
    """Streaming response that closes its body iterator when it ends.

    Covers client disconnects, where Starlette stops iterating without
    closing the generator.
    """

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            await self.body_iterator.aclose()


class ExportRequest(TableRequest):
    """Request model for a CSV export."""

    export_all: bool = Field(False, alias="exportAll")
    page: int = Field(1, description="Page exported when exportAll is false")


def _parse_json_param(raw: Optional[str], adapter: TypeAdapter, name: str) -> list:
    """Parse a JSON array passed in the query string."""
    if not raw:
        return []
    try:
        parsed = json.loads(raw)
        if isinstance(parsed, dict):
            parsed = [parsed]
        return adapter.validate_python(parsed)
    except (json.JSONDecodeError, PydanticValidationError) as e:
        raise ValidationError(
            f"Invalid {name} parameter", field=name, value=raw
        ) from e


@router.post("/export/check")
async def check_export(
    request: TableRequest,
    principal: Principal = Depends(get_current_principal),
    registry: ConnectionRegistry = Depends(get_registry),
    gate: AccessGate = Depends(get_access_gate),
    planner: QueryPlanner = Depends(get_planner),
    exporter: ExportService = Depends(get_export_service),
):
    """
    Check whether a full export is allowed.

    Returns the current row count together with the caller's limits.
    """
    plan, decision = await authorized_plan(request, principal, registry, gate, planner)
    check = await exporter.check_quota(plan, decision.quota)
    return check.to_dict()


@router.get("/export")
async def export_csv_get(
    database: str,
    table: str,
    filters: Optional[str] = Query(None, description="JSON array of filters"),
    sort: Optional[str] = Query(None, description="JSON sort object or array"),
    export_all: bool = Query(False, alias="exportAll"),
    page: int = Query(1),
    principal: Principal = Depends(get_current_principal),
    registry: ConnectionRegistry = Depends(get_registry),
    gate: AccessGate = Depends(get_access_gate),
    planner: QueryPlanner = Depends(get_planner),
    exporter: ExportService = Depends(get_export_service),
    client_ip: Optional[str] = Depends(get_client_ip),
):
    """Export table rows as CSV, with parameters in the query string."""
    request = ExportRequest(
        database=database,
        table=table,
        filters=_parse_json_param(filters, FILTERS_ADAPTER, "filters"),
        sort=_parse_json_param(sort, SORT_ADAPTER, "sort") or None,
        export_all=export_all,
        page=page,
    )
    return await _start_export(
        request, principal, registry, gate, planner, exporter, client_ip
    )


@router.post("/export")
async def export_csv_post(
    request: ExportRequest,
    principal: Principal = Depends(get_current_principal),
    registry: ConnectionRegistry = Depends(get_registry),
    gate: AccessGate = Depends(get_access_gate),
    planner: QueryPlanner = Depends(get_planner),
    exporter: ExportService = Depends(get_export_service),
    client_ip: Optional[str] = Depends(get_client_ip),
):
    """Export table rows as CSV, with parameters in a JSON body."""
    return await _start_export(
        request, principal, registry, gate, planner, exporter, client_ip
    )


async def _start_export(
    request: ExportRequest,
    principal: Principal,
    registry: ConnectionRegistry,
    gate: AccessGate,
    planner: QueryPlanner,
    exporter: ExportService,
    client_ip: Optional[str],
) -> ClosingStreamingResponse:
    """
    Validate, authorize and start an export.

    The first chunk is produced before the response is returned, so any
    failure up to that point is reported as a JSON error.
    """
    plan, decision = await authorized_plan(
        request, principal, registry, gate, planner, page=request.page
    )
    job = await exporter.prepare(plan, decision.quota, request.export_all)

    action = AuditAction.EXPORT_ALL if job.export_all else AuditAction.EXPORT_PAGE
    log_audit(
        principal,
        action,
        request.database,
        plan.table.full_name,
        f"limit={job.row_limit} offset={job.offset} filters={len(plan.filters)}",
        client_ip,
    )

    chunks = exporter.iter_csv(job)
    first_chunk = await chunks.__anext__()

    return ClosingStreamingResponse(
        _relay(first_chunk, chunks, job, principal, client_ip),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{job.filename}"'},
    )


async def _relay(
    first_chunk: str,
    chunks: AsyncIterator[str],
    job: ExportJob,
    principal: Principal,
    client_ip: Optional[str],
) -> AsyncIterator[str]:
    """Send the primed chunk, then the rest, closing the cursor on every exit."""
    completed = False
    try:
        yield first_chunk
        async for chunk in chunks:
            yield chunk
        completed = True
    finally:
        await chunks.aclose()
        if not completed:
            log_audit(
                principal,
                AuditAction.EXPORT_ABORTED,
                job.plan.database,
                job.plan.table.full_name,
                f"rows_written={job.rows_written}",
                client_ip,
            )

"""CSV export service with quota enforcement and cursor streaming."""

import asyncio
from typing import AsyncIterator, Awaitable, Callable, Optional

from sqlalchemy import text

from dataviewer.core.config import ExportConfig
from dataviewer.core.exceptions import (
    ExportQuotaExceeded,
    ExportTooLarge,
    StreamingFailure,
)
from dataviewer.core.logging import get_logger
from dataviewer.data.models import ExportJob, ExportQuota, QueryPlan, QuotaCheck
from dataviewer.data.registry import ConnectionRegistry
from dataviewer.services.query import (
    QueryExecutor,
    build_select_sql,
    clamp_page,
    page_params,
)
from dataviewer.utils.formatters import (
    format_csv_header,
    format_csv_rows,
    format_number,
)

logger = get_logger(__name__)

CsvSink = Callable[[str], Awaitable[None]]


def decide_quota(total_count: int, quota: ExportQuota) -> QuotaCheck:
    """
    Evaluate a freshly counted result set against a quota.

    Raises:
        ExportTooLarge: If the absolute cap is exceeded, whatever the role
        ExportQuotaExceeded: If the role limit is exceeded
    """
    check = QuotaCheck(total_count=total_count, quota=quota)
    if check.too_large:
        raise ExportTooLarge(total_count, quota.absolute_cap)
    if check.exceeds_limit:
        raise ExportQuotaExceeded(total_count, quota.max_rows_for_role)
    return check


class ExportService:
    """Service for exporting query plans as CSV."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        executor: QueryExecutor,
        export_config: Optional[ExportConfig] = None,
    ) -> None:
        """
        Initialize export service.

        Args:
            registry: Connection registry
            executor: Executor used for counting
            export_config: Batch size and quota policy
        """
        self.registry = registry
        self.executor = executor
        self.export_config = export_config or ExportConfig()

    async def check_quota(self, plan: QueryPlan, quota: ExportQuota) -> QuotaCheck:
        """
        Count the plan's rows and compare them with the quota.

        Args:
            plan: Query plan
            quota: Quota of the requesting principal

        Returns:
            Quota check for the current row count
        """
        total_count = await self.executor.count(plan)
        return QuotaCheck(total_count=total_count, quota=quota)

    async def prepare(
        self, plan: QueryPlan, quota: ExportQuota, export_all: bool
    ) -> ExportJob:
        """
        Create an export job.

        A full export recounts the rows and is refused when over quota; its
        row limit is the count it was approved for. A page export covers the
        plan's page, clamped to the pages that exist.

        Args:
            plan: Query plan
            quota: Quota of the requesting principal
            export_all: Export every matching row instead of one page

        Returns:
            Export job ready to stream

        Raises:
            ExportTooLarge: If the absolute cap is exceeded
            ExportQuotaExceeded: If the role limit is exceeded
        """
        if not export_all:
            total_count = await self.executor.count(plan)
            page = clamp_page(plan.page, total_count, plan.page_size)
            return ExportJob(
                plan=plan,
                quota=quota,
                export_all=False,
                row_limit=plan.page_size,
                offset=(page - 1) * plan.page_size,
            )

        check = await self.check_quota(plan, quota)
        decide_quota(check.total_count, quota)
        logger.info(
            f"Export of {check.total_count} rows from {plan.table.full_name} approved "
            f"for role {quota.role}"
        )
        return ExportJob(
            plan=plan, quota=quota, export_all=True, row_limit=check.total_count
        )

    async def iter_csv(self, job: ExportJob) -> AsyncIterator[str]:
        """
        Stream an export job as CSV chunks.

        Rows are read through a server-side cursor inside one transaction, a
        batch at a time. The first chunk holds the header and the first batch.
        The transaction is rolled back and the connection released on any
        failure, including the consumer closing the iterator early.

        Args:
            job: Export job; ``rows_written`` is updated as chunks are consumed

        Yields:
            CSV text chunks

        Raises:
            StreamingFailure: If the database fails after the transaction began
            UpstreamQueryError: If no connection could be obtained
        """
        plan = job.plan
        sql = build_select_sql(plan)
        params = page_params(plan, job.row_limit, job.offset)
        batch_size = self.export_config.batch_size

        async with self.registry.connect(plan.database) as conn:
            async with conn.begin():
                try:
                    result = await conn.stream(text(sql), params)
                    columns = list(result.keys())
                    pending = format_csv_header(columns)
                    try:
                        async for partition in result.partitions(batch_size):
                            yield pending + format_csv_rows(columns, partition)
                            pending = ""
                            job.rows_written += len(partition)
                    finally:
                        await result.close()
                    if pending:
                        yield pending
                except (GeneratorExit, asyncio.CancelledError):
                    logger.warning(
                        f"Export of {plan.table.full_name} aborted by client "
                        f"after {job.rows_written} rows"
                    )
                    raise
                except Exception as e:
                    logger.error(
                        f"Export of {plan.table.full_name} failed after "
                        f"{job.rows_written} rows: {str(e)}"
                    )
                    raise StreamingFailure(
                        f"Export failed: {str(e)}",
                        table=plan.table.full_name,
                        rows_written=job.rows_written,
                    ) from e

        logger.info(
            f"Exported {format_number(job.rows_written)} rows from {plan.table.full_name}"
        )

    async def stream(self, job: ExportJob, sink: CsvSink) -> int:
        """
        Write an export job to a sink.

        A failing sink triggers the same rollback as a database failure.

        Args:
            job: Export job
            sink: Coroutine function receiving each CSV chunk

        Returns:
            Number of data rows written
        """
        chunks = self.iter_csv(job)
        try:
            async for chunk in chunks:
                await sink(chunk)
        finally:
            await chunks.aclose()
        return job.rows_written

"""Data access audit trail."""

from enum import Enum
from typing import Optional

from dataviewer.core.logging import get_audit_logger, get_logger
from dataviewer.data.models import Principal

logger = get_logger(__name__)


class AuditAction(str, Enum):
    """Audited data access actions."""

    VIEW_DATA = "VIEW_DATA"
    EXPORT_PAGE = "EXPORT_PAGE"
    EXPORT_ALL = "EXPORT_ALL"
    EXPORT_ABORTED = "EXPORT_ABORTED"


def format_audit_line(
    principal: Optional[Principal],
    action: AuditAction,
    database: str,
    table: str,
    details: str = "",
    ip_address: Optional[str] = None,
) -> str:
    """Render one audit line."""
    user = (principal.email or principal.principal_id) if principal else "anonymous"
    return (
        f"[AUDIT] {user} | {action.value} | {database} | {table} | "
        f"{details} | {ip_address or '-'}"
    )


def log_audit(
    principal: Optional[Principal],
    action: AuditAction,
    database: str,
    table: str,
    details: str = "",
    ip_address: Optional[str] = None,
) -> None:
    """
    Record a data access event on the audit logger.

    Failures are logged and never propagate to the request.

    Args:
        principal: Caller, if authenticated
        action: What was done
        database: Logical database name
        table: ``schema.table`` name
        details: Free text such as row counts
        ip_address: Client address
    """
    try:
        get_audit_logger().info(
            format_audit_line(principal, action, database, table, details, ip_address)
        )
    except Exception as e:
        logger.warning(f"Failed to write audit log: {str(e)}")

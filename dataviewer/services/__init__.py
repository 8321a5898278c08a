"""Business logic services."""

from dataviewer.services.audit import AuditAction, log_audit
from dataviewer.services.auth import (
    AccessGate,
    AuthService,
    GrantStore,
    SqlGrantStore,
    StaticGrantStore,
)
from dataviewer.services.export import ExportService, decide_quota
from dataviewer.services.query import QueryExecutor, QueryPlanner

__all__ = [
    "AccessGate",
    "AuditAction",
    "AuthService",
    "ExportService",
    "GrantStore",
    "QueryExecutor",
    "QueryPlanner",
    "SqlGrantStore",
    "StaticGrantStore",
    "decide_quota",
    "log_audit",
]

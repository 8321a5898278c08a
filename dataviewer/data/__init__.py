"""Data access layer components."""

from dataviewer.data.models import (
    AccessDecision,
    AccessGrant,
    ColumnDescriptor,
    ExportJob,
    ExportQuota,
    FilterSpec,
    Principal,
    QueryPlan,
    QueryResult,
    QuotaCheck,
    SortDirection,
    SortSpec,
    TableInfo,
    TableReference,
    UserRole,
)
from dataviewer.data.registry import ConnectionRegistry
from dataviewer.data.repositories import CatalogRepository

__all__ = [
    # Registry
    "ConnectionRegistry",
    # Models
    "TableReference",
    "TableInfo",
    "ColumnDescriptor",
    "FilterSpec",
    "SortSpec",
    "SortDirection",
    "QueryPlan",
    "QueryResult",
    "Principal",
    "UserRole",
    "AccessGrant",
    "AccessDecision",
    "ExportQuota",
    "QuotaCheck",
    "ExportJob",
    # Repositories
    "CatalogRepository",
]

"""Request dependencies shared by the API routes."""

from typing import Optional

from fastapi import Header, Request

from dataviewer.core.config import Settings
from dataviewer.core.exceptions import AuthenticationError
from dataviewer.data.models import Principal
from dataviewer.data.registry import ConnectionRegistry
from dataviewer.data.repositories import CatalogRepository
from dataviewer.services.auth import AccessGate, AuthService
from dataviewer.services.export import ExportService
from dataviewer.services.query import QueryExecutor, QueryPlanner


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_registry(request: Request) -> ConnectionRegistry:
    return request.app.state.registry


def get_catalog(request: Request) -> CatalogRepository:
    return request.app.state.catalog


def get_access_gate(request: Request) -> AccessGate:
    return request.app.state.access_gate


def get_planner(request: Request) -> QueryPlanner:
    return request.app.state.planner


def get_executor(request: Request) -> QueryExecutor:
    return request.app.state.executor


def get_export_service(request: Request) -> ExportService:
    return request.app.state.export_service


def get_client_ip(request: Request) -> Optional[str]:
    """Get the caller's address for the audit trail."""
    return request.client.host if request.client else None


def get_current_principal(
    request: Request,
    authorization: Optional[str] = Header(None),
) -> Principal:
    """Get the authenticated principal from the bearer token."""
    if not authorization or not authorization.startswith("Bearer "):
        raise AuthenticationError()

    auth_service: AuthService = request.app.state.auth_service
    return auth_service.principal_from_token(authorization[7:])

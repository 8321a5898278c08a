"""Authentication, table grants and the access control gate."""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Optional

import jwt

from dataviewer.core.config import AccessConfig, ExportConfig, SecurityConfig
from dataviewer.core.exceptions import (
    AccessDenied,
    AuthenticationError,
    ConfigurationError,
)
from dataviewer.core.logging import get_logger
from dataviewer.data.models import (
    AccessDecision,
    AccessGrant,
    ExportQuota,
    Principal,
    TableInfo,
)
from dataviewer.data.registry import ConnectionRegistry

logger = get_logger(__name__)


class AuthService:
    """Service for issuing and verifying principal tokens."""

    def __init__(self, security: SecurityConfig) -> None:
        """
        Initialize auth service.

        Args:
            security: Security settings holding the JWT secret
        """
        if not security.jwt_secret_key:
            raise ConfigurationError(
                "JWT secret key is not configured",
                config_key="security.jwt_secret_key",
            )
        self.secret_key = security.jwt_secret_key
        self.algorithm = security.jwt_algorithm
        self.expiration_hours = security.jwt_expiration_hours

    def generate_token(self, principal: Principal) -> str:
        """
        Generate JWT token for a principal.

        Args:
            principal: Principal to encode

        Returns:
            JWT token string
        """
        now = datetime.now(timezone.utc)
        payload = {
            "user_id": principal.principal_id,
            "email": principal.email,
            "role": principal.role,
            "is_active": principal.is_active,
            "exp": now + timedelta(hours=self.expiration_hours),
            "iat": now,
        }
        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

    def verify_token(self, token: str) -> dict[str, Any]:
        """
        Verify JWT token.

        Args:
            token: JWT token string

        Returns:
            Token payload

        Raises:
            AuthenticationError: If the token is expired or invalid
        """
        try:
            return jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError as e:
            logger.warning("Token expired")
            raise AuthenticationError("Token expired") from e
        except jwt.InvalidTokenError as e:
            logger.warning(f"Invalid token: {str(e)}")
            raise AuthenticationError("Invalid token") from e

    def principal_from_token(self, token: str) -> Principal:
        """
        Resolve the principal a token was issued for.

        Raises:
            AuthenticationError: If the token is invalid or has no user id
        """
        payload = self.verify_token(token)
        user_id = payload.get("user_id")
        if user_id is None or user_id == "":
            raise AuthenticationError("Token does not identify a user")

        return Principal(
            principal_id=str(user_id),
            email=payload.get("email") or "",
            role=payload.get("role") or "external_customer",
            is_active=bool(payload.get("is_active", True)),
        )


class GrantStore(ABC):
    """Source of table grants for restricted principals."""

    @abstractmethod
    async def grants_for(self, principal_id: str) -> set[str]:
        """
        Get the ``database:schema.table`` keys granted to a principal.

        Args:
            principal_id: Principal identifier

        Returns:
            Set of grant keys
        """


class StaticGrantStore(GrantStore):
    """Grants declared in configuration."""

    def __init__(self, grants: Optional[dict[str, list[str]]] = None) -> None:
        self._grants = {
            str(principal_id): set(keys) for principal_id, keys in (grants or {}).items()
        }

    async def grants_for(self, principal_id: str) -> set[str]:
        return set(self._grants.get(principal_id, set()))


class SqlGrantStore(GrantStore):
    """Grants read from a ``table_grants`` table on every request."""

    QUERY = (
        'SELECT "database", table_name FROM table_grants '
        "WHERE CAST(user_id AS TEXT) = :user_id"
    )

    def __init__(self, registry: ConnectionRegistry, database: str) -> None:
        """
        Initialize SQL grant store.

        Args:
            registry: Connection registry
            database: Logical database holding the grants table
        """
        self.registry = registry
        self.database = database

    async def grants_for(self, principal_id: str) -> set[str]:
        rows = await self.registry.execute_query(
            self.database, self.QUERY, {"user_id": principal_id}
        )
        return {
            AccessGrant(principal_id, row["database"], row["table_name"]).key
            for row in rows
        }


class AccessGate:
    """Decides which tables a principal may read and which export quota applies."""

    def __init__(
        self,
        grant_store: GrantStore,
        export_config: Optional[ExportConfig] = None,
        access_config: Optional[AccessConfig] = None,
    ) -> None:
        """
        Initialize access gate.

        Args:
            grant_store: Grant source for restricted principals
            export_config: Quota policy
            access_config: Role classification
        """
        self.grant_store = grant_store
        self.export_config = export_config or ExportConfig()
        self.access_config = access_config or AccessConfig()

    def is_restricted(self, principal: Principal) -> bool:
        """Check whether a principal is limited to its grants."""
        return principal.role in self.access_config.restricted_roles

    def is_admin(self, principal: Principal) -> bool:
        """Check whether a principal has an elevated role."""
        return principal.role in self.access_config.admin_roles

    def quota_for(self, role: str) -> ExportQuota:
        """
        Derive the export quota of a role.

        Args:
            role: Principal role

        Returns:
            Export quota for the role
        """
        config = self.export_config
        max_rows = config.tier_limits.get(role, config.default_limit)
        return ExportQuota(
            role=role,
            warn_threshold=config.warn_threshold,
            max_rows_for_role=max_rows,
            absolute_cap=config.absolute_cap,
            is_admin=role in self.access_config.admin_roles,
        )

    async def authorize(
        self, principal: Principal, database: str, table_full_name: str
    ) -> AccessDecision:
        """
        Check that a principal may read a table.

        Args:
            principal: Authenticated caller
            database: Logical database name
            table_full_name: ``schema.table`` name

        Returns:
            Access decision with the applicable quota

        Raises:
            AccessDenied: If the principal is inactive or lacks a grant
        """
        if not principal.is_active:
            logger.warning(f"Inactive principal {principal.principal_id} denied")
            raise AccessDenied("Account is inactive", principal.principal_id)

        quota = self.quota_for(principal.role)
        if not self.is_restricted(principal):
            return AccessDecision(allowed=True, quota=quota)

        grants = await self.grant_store.grants_for(principal.principal_id)
        key = AccessGrant(principal.principal_id, database, table_full_name).key
        if key not in grants:
            logger.warning(
                f"Principal {principal.principal_id} denied access to {key}"
            )
            raise AccessDenied(principal_id=principal.principal_id)

        return AccessDecision(allowed=True, quota=quota)

    async def filter_tables(
        self, principal: Principal, database: str, tables: Iterable[TableInfo]
    ) -> list[TableInfo]:
        """
        Keep only the tables a principal may see.

        Raises:
            AccessDenied: If the principal is inactive
        """
        if not principal.is_active:
            raise AccessDenied("Account is inactive", principal.principal_id)

        if not self.is_restricted(principal):
            return list(tables)

        grants = await self.grant_store.grants_for(principal.principal_id)
        return [
            table
            for table in tables
            if AccessGrant(principal.principal_id, database, table.full_name).key
            in grants
        ]

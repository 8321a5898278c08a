"""Async connection pools for the configured logical databases."""

import threading
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

from sqlalchemy import event, text
from sqlalchemy.exc import DisconnectionError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from dataviewer.core.config import DatabaseSource, PoolConfig
from dataviewer.core.exceptions import (
    ApplicationError,
    DatabaseNotFound,
    UpstreamQueryError,
)
from dataviewer.core.logging import get_logger
from dataviewer.utils.security import resolve_secret

logger = get_logger(__name__)

DEFAULT_SCHEMAS = {"postgresql": "public", "sqlite": "main"}
IDLE_SINCE_KEY = "dataviewer_idle_since"


def install_idle_eviction(engine: AsyncEngine, idle_timeout: float) -> None:
    """
    Discard pooled connections that sat unused longer than ``idle_timeout``.

    The check-in time is kept on the connection record; a checkout that
    finds a stale connection raises ``DisconnectionError``, which makes the
    pool replace it with a fresh one.
    """

    @event.listens_for(engine.sync_engine, "checkin")
    def _mark_idle(dbapi_connection, connection_record):
        connection_record.info[IDLE_SINCE_KEY] = time.monotonic()

    @event.listens_for(engine.sync_engine, "checkout")
    def _evict_if_idle(dbapi_connection, connection_record, connection_proxy):
        idle_since = connection_record.info.pop(IDLE_SINCE_KEY, None)
        if idle_since is not None and time.monotonic() - idle_since > idle_timeout:
            logger.debug(f"Replacing connection idle for more than {idle_timeout}s")
            raise DisconnectionError("Connection exceeded the idle timeout")


class ConnectionRegistry:
    """
    Owns one SQLAlchemy async engine per logical database name.

    Engines are created on first use and live until ``shutdown()``. Creation
    is guarded by a lock so concurrent first requests share a single pool.
    """

    def __init__(
        self,
        sources: list[DatabaseSource],
        pool_config: Optional[PoolConfig] = None,
        encryption_key: Optional[str] = None,
    ) -> None:
        """
        Initialize the registry.

        Args:
            sources: Configured logical databases
            pool_config: Pool settings applied to every engine
            encryption_key: Fernet key for ``enc:`` URLs
        """
        self._sources = {source.name: source for source in sources}
        self._pool_config = pool_config or PoolConfig()
        self._encryption_key = encryption_key
        self._engines: dict[str, AsyncEngine] = {}
        self._lock = threading.Lock()

    def database_names(self) -> list[str]:
        """Get configured logical database names in configuration order."""
        return list(self._sources)

    def has_database(self, name: str) -> bool:
        """Check whether a logical database is configured."""
        return name in self._sources

    def _get_source(self, name: str) -> DatabaseSource:
        source = self._sources.get(name)
        if source is None:
            raise DatabaseNotFound(name)
        return source

    def get_engine(self, name: str) -> AsyncEngine:
        """
        Get the engine for a logical database, creating it on first use.

        Args:
            name: Logical database name

        Returns:
            Async engine

        Raises:
            DatabaseNotFound: If the name is not configured
        """
        engine = self._engines.get(name)
        if engine is not None:
            return engine

        source = self._get_source(name)
        with self._lock:
            engine = self._engines.get(name)
            if engine is None:
                engine = self._create_engine(source)
                self._engines[name] = engine
        return engine

    def _create_engine(self, source: DatabaseSource) -> AsyncEngine:
        """Create a bounded async engine for one source."""
        resolved = DatabaseSource(
            name=source.name, url=resolve_secret(source.url, self._encryption_key)
        )
        url = resolved.get_driver_url()
        config = self._pool_config

        options: dict[str, Any] = {"echo": config.echo, "pool_pre_ping": True}
        if ":memory:" not in url:
            options.update(
                pool_size=config.pool_size,
                max_overflow=config.max_overflow,
                pool_timeout=config.pool_timeout,
            )
        if url.startswith("postgresql+asyncpg"):
            options["connect_args"] = {"ssl": config.ssl_mode}

        logger.info(f"Creating connection pool for database '{source.name}'")
        engine = create_async_engine(url, **options)
        if ":memory:" not in url:
            install_idle_eviction(engine, config.idle_timeout)
        return engine

    def dialect_name(self, name: str) -> str:
        """
        Get the SQLAlchemy dialect name of a logical database.

        Raises:
            DatabaseNotFound: If the name is not configured
        """
        return self.get_engine(name).dialect.name

    def default_schema(self, name: str) -> str:
        """Get the schema bare table names are resolved in."""
        return DEFAULT_SCHEMAS.get(self.dialect_name(name), "public")

    @asynccontextmanager
    async def connect(self, name: str) -> AsyncGenerator[AsyncConnection, None]:
        """
        Borrow a pooled connection.

        Database failures are logged and raised as ``UpstreamQueryError``;
        application errors raised by the caller pass through unchanged.

        Args:
            name: Logical database name

        Yields:
            Async connection, returned to the pool on exit
        """
        engine = self.get_engine(name)
        try:
            async with engine.connect() as conn:
                yield conn
        except ApplicationError:
            raise
        except Exception as e:
            logger.error(f"Database '{name}' operation failed: {str(e)}")
            raise UpstreamQueryError(
                f"Database operation failed: {str(e)}", database=name
            ) from e

    async def execute_query(
        self, name: str, query: str, params: Optional[dict[str, Any]] = None
    ) -> list[dict[str, Any]]:
        """
        Execute a query and return all rows.

        Args:
            name: Logical database name
            query: SQL query text with named bind markers
            params: Bound values

        Returns:
            List of result rows as dictionaries
        """
        async with self.connect(name) as conn:
            try:
                result = await conn.execute(text(query), params or {})
                return [dict(row._mapping) for row in result]
            except Exception as e:
                logger.error(f"Query failed on '{name}': {str(e)}")
                raise UpstreamQueryError(
                    f"Query execution failed: {str(e)}", database=name, query=query
                ) from e

    async def execute_scalar(
        self, name: str, query: str, params: Optional[dict[str, Any]] = None
    ) -> Any:
        """
        Execute a query and return the first column of the first row.

        Args:
            name: Logical database name
            query: SQL query text with named bind markers
            params: Bound values

        Returns:
            Scalar result value
        """
        async with self.connect(name) as conn:
            try:
                result = await conn.execute(text(query), params or {})
                return result.scalar()
            except Exception as e:
                logger.error(f"Scalar query failed on '{name}': {str(e)}")
                raise UpstreamQueryError(
                    f"Scalar query failed: {str(e)}", database=name, query=query
                ) from e

    async def shutdown(self) -> None:
        """Dispose every pool created by this registry."""
        with self._lock:
            engines = list(self._engines.items())
            self._engines.clear()

        for name, engine in engines:
            logger.info(f"Closing connection pool for database '{name}'")
            await engine.dispose()

    @property
    def active_pools(self) -> list[str]:
        """Get names of databases whose pool has been created."""
        return list(self._engines)

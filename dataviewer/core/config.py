"""Application configuration management."""

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from dataviewer.core.exceptions import ConfigurationError

DEFAULT_CONFIG_PATH = "config/config.yaml"


class DatabaseSource(BaseModel):
    """A logical database name and its connection URL."""

    name: str
    url: str

    def get_driver_url(self) -> str:
        """
        Get the SQLAlchemy async URL for this database.

        Returns:
            URL using an asyncio driver

        Raises:
            ConfigurationError: If the URL scheme is not supported
        """
        url = self.url.strip()
        for prefix in ("postgres://", "postgresql://"):
            if url.startswith(prefix):
                return "postgresql+asyncpg://" + url[len(prefix):]
        if url.startswith("sqlite:///"):
            return "sqlite+aiosqlite:///" + url[len("sqlite:///"):]
        if "+" in url.split("://", 1)[0]:
            # Already carries an explicit driver
            return url
        raise ConfigurationError(
            f"Unsupported database URL scheme for '{self.name}'",
            config_key="databases",
        )


class PoolConfig(BaseSettings):
    """Connection pool settings applied to every logical database."""

    model_config = SettingsConfigDict(env_prefix="DB_POOL_", extra="ignore")

    pool_size: int = Field(default=5, ge=1, le=20)
    max_overflow: int = Field(default=0, ge=0, le=20)
    pool_timeout: int = Field(default=30, ge=1, le=300)
    idle_timeout: int = Field(default=30, ge=1)
    ssl_mode: str = Field(default="prefer")
    echo: bool = Field(default=False)

    @field_validator("ssl_mode")
    @classmethod
    def validate_ssl_mode(cls, v: str) -> str:
        """Validate SSL mode."""
        valid_modes = ["disable", "prefer", "require", "verify-ca", "verify-full"]
        v_lower = v.lower()
        if v_lower not in valid_modes:
            raise ValueError(f"SSL mode must be one of {valid_modes}")
        return v_lower


class QueryConfig(BaseSettings):
    """Row browsing settings."""

    model_config = SettingsConfigDict(env_prefix="QUERY_", extra="ignore")

    page_size: int = Field(default=50, ge=1, le=1000)
    filter_timezone: Optional[str] = Field(default=None)

    @field_validator("filter_timezone")
    @classmethod
    def validate_filter_timezone(cls, v: Optional[str]) -> Optional[str]:
        """Validate the filter time zone name."""
        if v is None:
            return v
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown time zone: {v}") from e
        return v


class ExportConfig(BaseSettings):
    """Export quota policy and streaming settings."""

    model_config = SettingsConfigDict(env_prefix="EXPORT_", extra="ignore")

    warn_threshold: int = Field(default=2000, ge=0)
    absolute_cap: int = Field(default=50000, ge=1)
    default_limit: int = Field(default=10000, ge=1)
    tier_limits: dict[str, int] = Field(default_factory=lambda: {"admin": 50000})
    batch_size: int = Field(default=1000, ge=1, le=100000)


class AccessConfig(BaseSettings):
    """Role and table grant settings."""

    model_config = SettingsConfigDict(env_prefix="ACCESS_", extra="ignore")

    restricted_roles: list[str] = Field(default=["external_customer"])
    admin_roles: list[str] = Field(default=["admin"])
    grants: dict[str, list[str]] = Field(default_factory=dict)
    grant_database: Optional[str] = Field(default=None)


class LoggingConfig(BaseSettings):
    """Logging configuration settings."""

    model_config = SettingsConfigDict(env_prefix="LOG_", extra="ignore")

    level: str = Field(default="INFO")
    format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    date_format: str = Field(default="%Y-%m-%d %H:%M:%S")
    file_enabled: bool = Field(default=False)
    file_path: str = Field(default="logs/app.log")
    file_max_bytes: int = Field(default=10485760)  # 10MB
    file_backup_count: int = Field(default=5)
    console_enabled: bool = Field(default=True)
    audit_file_path: Optional[str] = Field(default=None)

    @field_validator("level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v_upper


class SecurityConfig(BaseSettings):
    """Security configuration settings."""

    model_config = SettingsConfigDict(env_prefix="SECURITY_", extra="ignore")

    jwt_secret_key: Optional[str] = Field(default=None)
    jwt_algorithm: str = Field(default="HS256")
    jwt_expiration_hours: int = Field(default=24, ge=1, le=720)
    encryption_key: Optional[str] = Field(default=None)


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Application
    app_name: str = Field(default="Data Viewer API", alias="APP_NAME")
    app_version: str = Field(default="1.0.0", alias="APP_VERSION")
    app_env: str = Field(default="development", alias="APP_ENV")

    # Logical databases
    database_urls: Optional[str] = Field(default=None, alias="DATABASE_URLS")
    databases: list[DatabaseSource] = Field(default_factory=list)

    # Sub-configurations
    pool: PoolConfig = Field(default_factory=PoolConfig)
    query: QueryConfig = Field(default_factory=QueryConfig)
    export: ExportConfig = Field(default_factory=ExportConfig)
    access: AccessConfig = Field(default_factory=AccessConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)

    def __init__(self, config_path: Optional[str] = None, **kwargs: Any) -> None:
        """Initialize settings and load from YAML if available."""
        super().__init__(**kwargs)
        self._load_yaml_config(
            config_path or os.environ.get("DATAVIEWER_CONFIG", DEFAULT_CONFIG_PATH)
        )

    def _load_yaml_config(self, config_file: str) -> None:
        """Load configuration from YAML file."""
        config_path = Path(config_file)
        if not config_path.exists():
            return

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                yaml_config = yaml.safe_load(f)

            if not yaml_config:
                return

            if "databases" in yaml_config:
                self.databases = [
                    DatabaseSource(**entry) for entry in yaml_config["databases"]
                ]

            if "pool" in yaml_config:
                self.pool = PoolConfig(**yaml_config["pool"])

            if "query" in yaml_config:
                self.query = QueryConfig(**yaml_config["query"])

            if "export" in yaml_config:
                self.export = ExportConfig(**yaml_config["export"])

            if "access" in yaml_config:
                self.access = AccessConfig(**yaml_config["access"])

            if "logging" in yaml_config:
                log_config = yaml_config["logging"]
                # Flatten nested file and console configs
                if "file" in log_config:
                    file_config = log_config.pop("file")
                    log_config["file_enabled"] = file_config.get("enabled", False)
                    log_config["file_path"] = file_config.get("path", "logs/app.log")
                    log_config["file_max_bytes"] = file_config.get(
                        "max_bytes", 10485760
                    )
                    log_config["file_backup_count"] = file_config.get(
                        "backup_count", 5
                    )
                if "console" in log_config:
                    console_config = log_config.pop("console")
                    log_config["console_enabled"] = console_config.get("enabled", True)
                if "audit" in log_config:
                    log_config["audit_file_path"] = log_config.pop("audit").get("path")
                self.logging = LoggingConfig(**log_config)

            if "security" in yaml_config:
                self.security = SecurityConfig(**yaml_config["security"])

        except Exception as e:
            raise ConfigurationError(
                f"Failed to load configuration from {config_path}: {str(e)}",
                config_key="yaml_config",
            ) from e

    def get_database_sources(self) -> list[DatabaseSource]:
        """
        Get every configured logical database.

        Entries from ``DATABASE_URLS`` come first, followed by the ones
        declared in the YAML file. Later duplicates of a name are ignored.

        Returns:
            List of database sources

        Raises:
            ConfigurationError: If DATABASE_URLS cannot be parsed
        """
        sources = _parse_database_urls(self.database_urls) + list(self.databases)

        unique: dict[str, DatabaseSource] = {}
        for source in sources:
            unique.setdefault(source.name, source)
        return list(unique.values())


def _parse_database_urls(raw: Optional[str]) -> list[DatabaseSource]:
    """
    Parse the DATABASE_URLS environment value.

    Two formats are accepted: a JSON array of ``{"name", "url"}`` objects, or
    a single postgres connection string which is named ``Default``.
    """
    if not raw or not raw.strip():
        return []

    trimmed = raw.strip()

    if trimmed.startswith("["):
        try:
            parsed = json.loads(trimmed)
        except json.JSONDecodeError as e:
            raise ConfigurationError(
                f"Failed to parse DATABASE_URLS as JSON: {str(e)}",
                config_key="DATABASE_URLS",
            ) from e
        if not isinstance(parsed, list):
            raise ConfigurationError(
                "DATABASE_URLS JSON must be an array", config_key="DATABASE_URLS"
            )
        return [
            DatabaseSource(name=entry["name"], url=entry["url"])
            for entry in parsed
            if isinstance(entry, dict) and entry.get("name") and entry.get("url")
        ]

    if trimmed.startswith(("postgres://", "postgresql://")):
        return [DatabaseSource(name="Default", url=trimmed)]

    raise ConfigurationError(
        "DATABASE_URLS must be a JSON array or a valid postgres:// connection string",
        config_key="DATABASE_URLS",
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    Returns:
        Application settings instance
    """
    return Settings()

"""Configuration management for wp-migrate."""

import asyncio
import os
import re
from pathlib import Path
from typing import Any, Literal

import structlog
import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, model_validator
from pydantic_settings import BaseSettings

from .database.base import Database
from .database.sqlite import SQLiteDatabase
from .exceptions import ConfigurationError

logger = structlog.get_logger()

DEFAULT_CONFIG_FILE = "config/migrate.yml"


class DatabaseConfig(BaseModel):
    """Connection settings for one named database."""

    engine: Literal["sqlite", "mysql", "mariadb"] = "mysql"
    path: str | None = None  # SQLite database file
    host: str = "127.0.0.1"
    port: int = 3306
    user: str = "root"
    password: str = ""
    database: str | None = None
    charset: str = "utf8mb4"
    connect_timeout: int = 30
    description: str = ""

    @model_validator(mode="after")
    def _check_engine_fields(self) -> "DatabaseConfig":
        if self.engine == "sqlite" and not self.path:
            raise ValueError("sqlite databases need a 'path'")
        if self.engine != "sqlite" and not self.database:
            raise ValueError(f"{self.engine} databases need a 'database' name")
        return self


class RemoteConnection(BaseModel):
    """A remote WordPress site running the wp-migrate REST endpoints."""

    url: str
    api_key: str
    timeout: float | None = None  # falls back to WP_MIGRATE_HTTP_TIMEOUT
    verify_tls: bool = True
    description: str = ""
    enabled: bool = True

    @property
    def base_url(self) -> str:
        return self.url.rstrip("/")


class ServerConfig(BaseModel):
    """Server configuration."""

    host: str = Field(default="127.0.0.1", alias="FASTMCP_HOST")
    port: int = Field(default=8000, alias="FASTMCP_PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_dir: str | None = Field(default=None, alias="WP_MIGRATE_LOG_DIR")

    model_config = {"populate_by_name": True}


class MigrateConfig(BaseSettings):
    """Main configuration for wp-migrate."""

    databases: dict[str, DatabaseConfig] = Field(default_factory=dict)
    connections: dict[str, RemoteConnection] = Field(default_factory=dict)
    replacements: dict[str, str] = Field(default_factory=dict)
    server: ServerConfig = Field(default_factory=ServerConfig)
    config_file: str = Field(default=DEFAULT_CONFIG_FILE, alias="WP_MIGRATE_CONFIG")

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    def get_database(self, name: str) -> DatabaseConfig:
        if name not in self.databases:
            raise ConfigurationError(
                f"Unknown database '{name}'. Configured: {', '.join(sorted(self.databases)) or 'none'}"
            )
        return self.databases[name]

    def get_connection(self, name: str) -> RemoteConnection:
        connection = self.connections.get(name)
        if connection is None:
            raise ConfigurationError(
                f"Unknown connection '{name}'. Configured: {', '.join(sorted(self.connections)) or 'none'}"
            )
        if not connection.enabled:
            raise ConfigurationError(f"Connection '{name}' is disabled")
        return connection


def load_config(config_path: str | None = None) -> MigrateConfig:
    """Load configuration from multiple sources (synchronous interface).

    Args:
        config_path: Optional path to YAML config file

    Returns:
        Loaded configuration

    Note:
        This function cannot be called from a running event loop.
        For async code, use load_config_async() instead.
    """
    try:
        asyncio.get_running_loop()
        raise RuntimeError(
            "load_config() cannot be called from within an async context. "
            "Use 'await load_config_async()' instead."
        )
    except RuntimeError as e:
        if "no running event loop" in str(e).lower():
            return asyncio.run(load_config_async(config_path))
        raise


async def load_config_async(config_path: str | None = None) -> MigrateConfig:
    """Load configuration from multiple sources (async interface).

    User config (``~/.config/wp-migrate/migrate.yml``) is applied first,
    then the project config, then environment overrides.

    Args:
        config_path: Optional path to YAML config file

    Returns:
        Loaded configuration

    Raises:
        ConfigurationError: A config file could not be read or validated
    """
    load_dotenv()

    config = MigrateConfig()

    user_config_path = Path.home() / ".config" / "wp-migrate" / "migrate.yml"
    await _load_config_file(config, user_config_path)

    project_config_path = Path(config_path or os.getenv("WP_MIGRATE_CONFIG", DEFAULT_CONFIG_FILE))
    await _load_config_file(config, project_config_path)
    config.config_file = str(project_config_path)

    _apply_env_overrides(config)

    logger.debug(
        "Configuration loaded",
        config_file=config.config_file,
        databases=len(config.databases),
        connections=len(config.connections),
        replacements=len(config.replacements),
    )
    return config


async def _load_config_file(config: MigrateConfig, config_path: Path) -> None:
    """Load and apply configuration from a YAML file."""
    if not config_path.exists():
        return

    yaml_config = await _load_yaml_config(config_path)
    try:
        _apply_database_config(config, yaml_config)
        _apply_connection_config(config, yaml_config)
        _apply_replacements(config, yaml_config)
        _apply_server_config(config, yaml_config)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration in {config_path}: {e}") from e


def _apply_database_config(config: MigrateConfig, yaml_config: dict[str, Any]) -> None:
    """Apply named databases from YAML data."""
    for name, data in (yaml_config.get("databases") or {}).items():
        config.databases[name] = DatabaseConfig(**data)


def _apply_connection_config(config: MigrateConfig, yaml_config: dict[str, Any]) -> None:
    """Apply named remote connections from YAML data."""
    for name, data in (yaml_config.get("connections") or {}).items():
        config.connections[name] = RemoteConnection(**data)


def _apply_replacements(config: MigrateConfig, yaml_config: dict[str, Any]) -> None:
    """Apply the default replacement map; YAML order is kept."""
    replacements = yaml_config.get("replacements")
    if not replacements:
        return
    if not isinstance(replacements, dict):
        raise ConfigurationError("'replacements' must be a mapping of find -> replace")
    config.replacements = {str(find): str(replace) for find, replace in replacements.items()}


def _apply_server_config(config: MigrateConfig, yaml_config: dict[str, Any]) -> None:
    """Apply server configuration from YAML data."""
    if "server" in yaml_config:
        for key, value in (yaml_config["server"] or {}).items():
            if hasattr(config.server, key):
                setattr(config.server, key, value)


def _apply_env_overrides(config: MigrateConfig) -> None:
    """Apply environment variable overrides."""
    if os.getenv("FASTMCP_HOST"):
        config.server.host = os.getenv("FASTMCP_HOST", config.server.host)
    if port_env := os.getenv("FASTMCP_PORT"):
        config.server.port = int(port_env)
    if os.getenv("LOG_LEVEL"):
        config.server.log_level = os.getenv("LOG_LEVEL", config.server.log_level)
    if os.getenv("WP_MIGRATE_LOG_DIR"):
        config.server.log_dir = os.getenv("WP_MIGRATE_LOG_DIR")


async def _load_yaml_config(config_path: Path) -> dict[str, Any]:
    """Load YAML configuration file."""
    try:
        content = await asyncio.to_thread(config_path.read_text)

        # Securely expand only allowed environment variables
        content = _expand_yaml_config(content)

        loaded = yaml.safe_load(content)
        if not isinstance(loaded, dict):
            return {}
        return loaded
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Failed to load config from {config_path}: {e}") from e


ALLOWED_ENV_VARS = {
    "HOME",
    "USER",
    "XDG_CONFIG_HOME",
    "XDG_DATA_HOME",
    "WP_MIGRATE_CONFIG",
    "WP_MIGRATE_LOG_DIR",
    "WP_MIGRATE_BACKUP_DIR",
    "WP_MIGRATE_DB_HOST",
    "WP_MIGRATE_DB_USER",
    "WP_MIGRATE_DB_PASSWORD",
    "WP_MIGRATE_DB_NAME",
    "WP_MIGRATE_API_KEY",
    "WP_MIGRATE_REMOTE_URL",
    "FASTMCP_HOST",
    "FASTMCP_PORT",
    "LOG_LEVEL",
}


def _expand_yaml_config(content: str) -> str:
    """Securely expand environment variables with allowlist."""

    def replace_if_allowed(match: re.Match) -> str:
        var_name = match.group(1) or match.group(2)
        original_pattern = match.group(0)
        if var_name in ALLOWED_ENV_VARS:
            return os.getenv(var_name, original_pattern)  # Keep original if not found
        logger.warning(
            "Environment variable not in allowlist, skipping expansion",
            variable=var_name,
            pattern=original_pattern,
        )
        return original_pattern

    return re.sub(r"\$\{([^}]+)\}|\$([A-Za-z_][A-Za-z0-9_]*)", replace_if_allowed, content)


def open_database(config: DatabaseConfig, name: str | None = None) -> Database:
    """Open a connection for a configured database."""
    if config.engine == "sqlite":
        return SQLiteDatabase(config.path, name=name)

    from .database.mysql import MySQLDatabase

    try:
        return MySQLDatabase(
            database=config.database,
            host=config.host,
            port=config.port,
            user=config.user,
            password=config.password,
            charset=config.charset,
            connect_timeout=config.connect_timeout,
            name=name,
        )
    except Exception as e:
        raise ConfigurationError(f"Cannot connect to database '{name or config.database}': {e}") from e

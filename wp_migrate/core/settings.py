"""Tunable settings for wp-migrate operations.

Provides centralized configuration using Pydantic BaseSettings with
environment variable support. A settings object is passed explicitly to
the exporter, importer, backup manager, transports and orchestrator.
"""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class MigrateSettings(BaseSettings):
    """Engine tunables (page sizes, transaction sizes, timeouts, paths)."""

    chunk_size: int = Field(
        1000, ge=1, alias="WP_MIGRATE_CHUNK_SIZE", description="Rows fetched per export page"
    )
    transaction_size: int = Field(
        1000,
        ge=1,
        alias="WP_MIGRATE_TRANSACTION_SIZE",
        description="Statements executed per import transaction",
    )
    validation_sample_size: int = Field(
        200,
        ge=0,
        alias="WP_MIGRATE_VALIDATION_SAMPLE",
        description="Rows sampled per table during post-import validation",
    )

    http_timeout: float = Field(
        600.0, gt=0, alias="WP_MIGRATE_HTTP_TIMEOUT", description="Remote request timeout in seconds"
    )
    http_retries: int = Field(
        3, ge=0, alias="WP_MIGRATE_HTTP_RETRIES", description="Retries for transient transfer errors"
    )
    retry_delay: float = Field(
        1.0, ge=0, alias="WP_MIGRATE_RETRY_DELAY", description="Initial retry delay in seconds"
    )
    retry_backoff: float = Field(
        2.0, ge=1, alias="WP_MIGRATE_RETRY_BACKOFF", description="Exponential backoff multiplier"
    )
    retry_max_delay: float = Field(
        30.0, ge=0, alias="WP_MIGRATE_RETRY_MAX_DELAY", description="Upper bound for one retry delay"
    )

    backup_dir: Path = Field(
        Path("wp-migrate/backups"), alias="WP_MIGRATE_BACKUP_DIR", description="Backup directory"
    )
    work_dir: Path = Field(
        Path("wp-migrate/tmp"), alias="WP_MIGRATE_WORK_DIR", description="Temporary dump directory"
    )
    backup_retention_days: int = Field(
        30, ge=0, alias="WP_MIGRATE_BACKUP_RETENTION_DAYS", description="Days to keep backups"
    )
    compress_backups: bool = Field(
        False, alias="WP_MIGRATE_COMPRESS_BACKUPS", description="Write backups as .sql.gz"
    )

    table_prefix: str = Field(
        "wp_", alias="WP_MIGRATE_TABLE_PREFIX", description="WordPress table prefix"
    )
    source_version: str = Field(
        "", alias="WP_MIGRATE_SOURCE_VERSION", description="Version banner written into dump headers"
    )

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)

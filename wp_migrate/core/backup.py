"""Database backups taken before an import, with restore and retention cleanup."""

import uuid
from datetime import UTC, datetime, timedelta
from pathlib import Path

import structlog
from pydantic import BaseModel, Field, ValidationError

from ..models.enums import JobStatus
from ..utils import format_size, safe_filename, timestamp_slug
from .database.base import Database
from .dump.exporter import RowStreamExporter
from .dump.importer import DumpImporter, ImportOptions
from .dump.sinks import FileSink
from .exceptions import BackupError, WPMigrateError
from .jobs import ImportJob
from .settings import MigrateSettings

logger = structlog.get_logger()

METADATA_SUFFIX = ".json"


class BackupInfo(BaseModel):
    """Backup information with validation and schema guarantees."""

    success: bool = Field(description="Whether backup was successful")
    backup_id: str = Field(description="Unique backup identifier (file stem)")
    type: str = Field(default="database", description="Type of backup")
    database: str = Field(description="Database the backup was taken from")
    engine: str = Field(description="Database engine (dialect of the dump)")
    backup_path: str = Field(description="Path to the backup dump file")
    tables: list[str] = Field(default_factory=list, description="Tables included in the backup")
    rows: int = Field(default=0, description="Rows written to the backup")
    backup_size: int = Field(description="Size of backup in bytes")
    backup_size_human: str = Field(description="Human-readable backup size")
    timestamp: str = Field(description="Timestamp when backup was created")
    reason: str = Field(description="Reason for creating the backup")
    created_at: str = Field(description="ISO 8601 creation timestamp")


class BackupManager:
    """Manager for creating and managing database backups during migrations."""

    def __init__(self, settings: MigrateSettings | None = None, backup_dir: Path | None = None):
        self.settings = settings or MigrateSettings()
        self.backup_dir = Path(backup_dir or self.settings.backup_dir)
        self.logger = logger.bind(component="backup_manager")
        self.backups: list[BackupInfo] = []

    def create_database_backup(
        self,
        database: Database,
        reason: str = "Pre-import backup",
        tables: list[str] | None = None,
        label: str | None = None,
    ) -> BackupInfo:
        """Dump ``database`` (structure and data, no replacements) to the backup directory.

        Args:
            database: Database to back up
            reason: Reason for backup (for audit trail)
            tables: Limit the backup to these tables
            label: Name used in the backup file name (defaults to the database name)

        Returns:
            Backup information

        Raises:
            BackupError: The dump could not be written completely
        """
        timestamp = timestamp_slug()
        suffix = ".sql.gz" if self.settings.compress_backups else ".sql"
        backup_id = f"backup_{safe_filename(label or database.name)}_{timestamp}_{uuid.uuid4().hex[:6]}"
        backup_path = self.backup_dir / f"{backup_id}{suffix}"

        self.logger.info(
            "Creating database backup",
            database=database.name,
            backup=str(backup_path),
            reason=reason,
        )

        exporter = RowStreamExporter(database, self.settings)
        try:
            with FileSink(backup_path) as sink:
                job = exporter.export_database(sink, tables=tables)
        except (OSError, WPMigrateError) as e:
            self._discard(backup_path)
            raise BackupError(f"Failed to create backup of {database.name}: {e}") from e

        if job.status is not JobStatus.COMPLETE:
            self._discard(backup_path)
            raise BackupError(f"Backup of {database.name} did not complete: {job.status.value}")

        backup_size = backup_path.stat().st_size
        backup_info = BackupInfo(
            success=True,
            backup_id=backup_id,
            database=database.name,
            engine=database.dialect.name,
            backup_path=str(backup_path),
            tables=job.tables_completed,
            rows=job.rows_written,
            backup_size=backup_size,
            backup_size_human=format_size(backup_size),
            timestamp=timestamp,
            reason=reason,
            created_at=datetime.now(UTC).isoformat(),
        )
        self._metadata_path(backup_path).write_text(backup_info.model_dump_json(indent=2))
        self.backups.append(backup_info)

        self.logger.info(
            "Database backup created successfully",
            backup=str(backup_path),
            size=backup_info.backup_size_human,
            tables=len(backup_info.tables),
        )
        return backup_info

    def list_backups(self) -> list[BackupInfo]:
        """Backups recorded in the backup directory, newest first."""
        if not self.backup_dir.is_dir():
            return []
        backups = []
        for metadata in self.backup_dir.glob(f"backup_*{METADATA_SUFFIX}"):
            try:
                backups.append(BackupInfo.model_validate_json(metadata.read_text()))
            except (OSError, ValidationError) as e:
                self.logger.warning("Skipping unreadable backup record", path=str(metadata), error=str(e))
        return sorted(backups, key=lambda info: info.created_at, reverse=True)

    def get_backup(self, backup_id: str) -> BackupInfo:
        for info in self.list_backups():
            if info.backup_id == backup_id:
                return info
        raise BackupError(f"Backup '{backup_id}' not found in {self.backup_dir}")

    def restore_backup(self, backup_info: BackupInfo, target: Database) -> ImportJob:
        """Restore a backup into ``target``.

        Args:
            backup_info: Backup information from create_database_backup()
            target: Database to restore into

        Returns:
            The completed import job

        Raises:
            BackupError: The backup file is missing or an engine mismatch
        """
        backup_path = Path(backup_info.backup_path)
        if not backup_path.exists():
            raise BackupError(f"Backup file not found: {backup_path}")
        if backup_info.engine != target.dialect.name:
            raise BackupError(
                f"Backup was taken from {backup_info.engine}, cannot restore into {target.dialect.name}"
            )

        self.logger.info("Restoring database from backup", backup=str(backup_path), target=target.name)
        importer = DumpImporter(target, self.settings)
        try:
            job = importer.import_file(backup_path, ImportOptions(backup_target=False, validate_integrity=False))
        except WPMigrateError as e:
            raise BackupError(f"Failed to restore backup {backup_info.backup_id}: {e}") from e
        self.logger.info(
            "Database restored from backup",
            backup=backup_info.backup_id,
            statements=job.executed_count,
        )
        return job

    def cleanup_backup(self, backup_info: BackupInfo) -> tuple[bool, str]:
        """Delete a backup file and its metadata record.

        Returns:
            Tuple of (success: bool, message: str)
        """
        backup_path = Path(backup_info.backup_path)
        try:
            backup_path.unlink(missing_ok=True)
            self._metadata_path(backup_path).unlink(missing_ok=True)
        except OSError as e:
            self.logger.warning("Failed to delete backup", backup=str(backup_path), error=str(e))
            return False, f"Failed to delete backup {backup_info.backup_id}: {e}"
        self.backups = [info for info in self.backups if info.backup_id != backup_info.backup_id]
        return True, f"Deleted backup {backup_info.backup_id}"

    def cleanup_expired(
        self, retention_days: int | None = None, now: datetime | None = None
    ) -> list[BackupInfo]:
        """Delete backups older than the retention period; returns the removed ones."""
        retention = self.settings.backup_retention_days if retention_days is None else retention_days
        if retention <= 0:
            return []
        cutoff = (now or datetime.now(UTC)) - timedelta(days=retention)
        removed = []
        for info in self.list_backups():
            if datetime.fromisoformat(info.created_at) < cutoff:
                success, _ = self.cleanup_backup(info)
                if success:
                    removed.append(info)
        if removed:
            self.logger.info("Expired backups removed", count=len(removed), retention_days=retention)
        return removed

    @staticmethod
    def _metadata_path(backup_path: Path) -> Path:
        name = backup_path.name.removesuffix(".gz").removesuffix(".sql")
        return backup_path.with_name(name + METADATA_SUFFIX)

    def _discard(self, backup_path: Path) -> None:
        try:
            backup_path.unlink(missing_ok=True)
        except OSError as e:
            self.logger.warning("Failed to remove partial backup", backup=str(backup_path), error=str(e))

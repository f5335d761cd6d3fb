"""Migration orchestrator: validate, back up, export, transmit, import, clean up."""

import asyncio
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

import structlog
from pydantic import BaseModel, Field

from ...models.enums import JobStatus, MigrationStep, ReplaceStage
from ...utils import safe_filename, timestamp_slug
from ..backup import BackupInfo, BackupManager
from ..database.base import Database
from ..dump.exporter import RowStreamExporter
from ..dump.importer import DumpImporter, ImportOptions
from ..dump.sinks import FileSink
from ..exceptions import ConfigurationError, MigrationError, OperationCancelled, WPMigrateError
from ..jobs import CancellationToken, ExportJob, ImportJob, Job, ProgressCallback, ProgressReporter
from ..serialization import ReplacementMap
from ..settings import MigrateSettings
from ..transfer.base import BaseTransfer, TransferReceipt

logger = structlog.get_logger()

# Share of the overall progress bar owned by each step.
STEP_RANGES: dict[MigrationStep, tuple[float, float]] = {
    MigrationStep.VALIDATE: (0.0, 5.0),
    MigrationStep.BACKUP: (5.0, 20.0),
    MigrationStep.EXPORT: (20.0, 60.0),
    MigrationStep.TRANSMIT: (60.0, 80.0),
    MigrationStep.IMPORT: (80.0, 98.0),
    MigrationStep.CLEANUP: (98.0, 100.0),
}


class MigrationJob(Job):
    """Overall progress record of one migration run."""

    step: MigrationStep | None = None
    steps_completed: list[MigrationStep] = Field(default_factory=list)


class MigrationResult(BaseModel):
    """Outcome of a migration run."""

    success: bool = Field(description="Whether every step completed")
    status: JobStatus = Field(description="Final status of the run")
    operation: str = Field(description="migrate, push or pull")
    source: str | None = Field(default=None, description="Source database or remote")
    target: str | None = Field(default=None, description="Target database or remote")
    replace_on: ReplaceStage = Field(default="export", description="Where replacements were applied")
    dump_path: str | None = Field(default=None, description="Dump artifact (kept or removed)")
    artifacts_removed: bool = Field(default=False, description="Whether the dump was deleted")
    steps_completed: list[MigrationStep] = Field(default_factory=list)
    failed_step: MigrationStep | None = Field(default=None)
    error: str | None = Field(default=None)
    warnings: list[str] = Field(default_factory=list)
    backup: BackupInfo | None = Field(default=None)
    transfer: TransferReceipt | None = Field(default=None)
    export_job: ExportJob | None = Field(default=None)
    import_job: ImportJob | None = Field(default=None)
    duration: float | None = Field(default=None, description="Seconds from start to finish")


class TransferOrchestrator:
    """Runs export -> transmit -> import with one replacement map.

    The replacement map is applied on exactly one side: during export
    (``replace_on="export"``) or during import (``replace_on="import"``).
    Every step reports through one ``(percentage, message)`` callback
    covering 0-100 for the whole run.
    """

    def __init__(
        self,
        settings: MigrateSettings | None = None,
        progress: ProgressCallback | None = None,
        backup_manager: BackupManager | None = None,
    ):
        self.settings = settings or MigrateSettings()
        self.progress = ProgressReporter(progress)
        self.backup_manager = backup_manager or BackupManager(self.settings)
        self.cancel_token = CancellationToken()
        self.job: MigrationJob | None = None
        self.logger = logger.bind(component="transfer_orchestrator")

    def cancel(self) -> None:
        """Request cancellation; honoured between pages, statements and steps."""
        self.logger.info("Cancellation requested", job_id=self.job.job_id if self.job else None)
        self.cancel_token.cancel()

    async def migrate(
        self,
        source: Database,
        target: Database | None = None,
        *,
        replacements: ReplacementMap | Mapping[str, str] | None = None,
        replace_on: ReplaceStage = "export",
        transport: BaseTransfer | None = None,
        tables: Iterable[str] | None = None,
        exclude_tables: Iterable[str] | None = None,
        backup_target: bool = True,
        continue_on_error: bool = False,
        strict_validation: bool = False,
        keep_artifacts: bool = False,
    ) -> MigrationResult:
        """Migrate ``source`` into a local ``target`` and/or through ``transport``.

        Args:
            source: Database to export
            target: Local database to import into (optional when pushing)
            replacements: Ordered find -> replace map
            replace_on: Apply replacements during "export" or "import"
            transport: Remote handoff for the dump (push)
            tables: Only migrate these tables
            exclude_tables: Skip these tables
            backup_target: Back up the target before importing
            continue_on_error: Skip tables that fail to export
            strict_validation: Fail when post-import sampling finds corruption
            keep_artifacts: Keep the dump file after a successful run

        Returns:
            Migration result; failures are reported in it, not raised
        """
        operation = "push" if transport is not None and target is None else "migrate"
        result = MigrationResult(
            success=False,
            status=JobStatus.RUNNING,
            operation=operation,
            source=source.name,
            target=target.name if target else (transport.get_transfer_type() if transport else None),
            replace_on=replace_on,
        )
        job = self._start_job(result)
        replacement_map = ReplacementMap()
        dump_path: Path | None = None

        try:
            with self._step(MigrationStep.VALIDATE, job, result) as stage:
                replacement_map = self._validate_inputs(replacements, replace_on)
                if target is None and transport is None:
                    raise ConfigurationError("Nothing to migrate into: give a target database or a transport")
                if target is not None:
                    await self._validate_target(source, target)
                if transport is not None:
                    await self._validate_transport(transport)
                stage(100.0, f"Validated migration of {source.name}")

            if target is not None and backup_target:
                with self._step(MigrationStep.BACKUP, job, result) as stage:
                    stage(0.0, f"Backing up {target.name}")
                    result.backup = await asyncio.to_thread(
                        self.backup_manager.create_database_backup,
                        target,
                        "Pre-migration backup",
                    )
                    stage(100.0, f"Backup created: {result.backup.backup_path}")

            with self._step(MigrationStep.EXPORT, job, result) as stage:
                dump_path = self._dump_path(source.name)
                result.dump_path = str(dump_path)
                export_job = await self._export(
                    source,
                    dump_path,
                    replacement_map if replace_on == "export" else None,
                    tables,
                    exclude_tables,
                    continue_on_error,
                    stage,
                )
                result.export_job = export_job
                if export_job.status is JobStatus.CANCELLED:
                    raise OperationCancelled(export_job.message or "Cancelled during export")
                for error in export_job.table_errors:
                    result.warnings.append(f"Table {error['table']} skipped: {error['error']}")

            if transport is not None:
                with self._step(MigrationStep.TRANSMIT, job, result) as stage:
                    self.cancel_token.raise_if_cancelled("before transmitting the dump")
                    stage(0.0, f"Sending dump via {transport.get_transfer_type()}")
                    options: dict[str, Any] = {"backup_current": backup_target}
                    if replace_on == "import" and replacement_map:
                        options["replacements"] = replacement_map.as_dict()
                    result.transfer = await transport.send(dump_path, options)
                    stage(100.0, f"Dump delivered to {result.transfer.destination}")

            if target is not None:
                with self._step(MigrationStep.IMPORT, job, result) as stage:
                    import_job = await self._import(
                        target,
                        dump_path,
                        replacement_map if replace_on == "import" else None,
                        export_job.serialized_columns or None,
                        strict_validation,
                        stage,
                    )
                    result.import_job = import_job
                    if import_job.status is JobStatus.CANCELLED:
                        raise OperationCancelled(import_job.message or "Cancelled during import")
                    if import_job.integrity is not None and not import_job.integrity.passed:
                        result.warnings.append(
                            f"{len(import_job.integrity.issues)} serialized value(s) failed validation"
                        )

            with self._step(MigrationStep.CLEANUP, job, result) as stage:
                result.artifacts_removed = self._cleanup(dump_path, keep_artifacts)
                stage(100.0, "Migration complete")
        except OperationCancelled as e:
            return self._finish(job, result, JobStatus.CANCELLED, str(e))
        except WPMigrateError as e:
            return self._finish(job, result, JobStatus.FAILED, str(e))

        return self._finish(job, result, JobStatus.COMPLETE)

    async def push(
        self,
        source: Database,
        transport: BaseTransfer,
        *,
        replacements: ReplacementMap | Mapping[str, str] | None = None,
        replace_on: ReplaceStage = "export",
        tables: Iterable[str] | None = None,
        exclude_tables: Iterable[str] | None = None,
        backup_remote: bool = True,
        keep_artifacts: bool = False,
    ) -> MigrationResult:
        """Export ``source`` and deliver the dump to a remote site.

        With ``replace_on="import"`` the map is forwarded so the remote
        applies it while importing.
        """
        return await self.migrate(
            source,
            None,
            replacements=replacements,
            replace_on=replace_on,
            transport=transport,
            tables=tables,
            exclude_tables=exclude_tables,
            backup_target=backup_remote,
            keep_artifacts=keep_artifacts,
        )

    async def pull(
        self,
        transport: BaseTransfer,
        target: Database,
        *,
        replacements: ReplacementMap | Mapping[str, str] | None = None,
        replace_on: ReplaceStage = "import",
        tables: Iterable[str] | None = None,
        backup_target: bool = True,
        strict_validation: bool = False,
        keep_artifacts: bool = False,
    ) -> MigrationResult:
        """Download a dump from a remote site and import it into ``target``.

        With ``replace_on="export"`` the map is sent to the remote, which
        applies it while exporting; otherwise it is applied locally on import.
        """
        result = MigrationResult(
            success=False,
            status=JobStatus.RUNNING,
            operation="pull",
            source=transport.get_transfer_type(),
            target=target.name,
            replace_on=replace_on,
        )
        job = self._start_job(result)
        dump_path: Path | None = None

        try:
            with self._step(MigrationStep.VALIDATE, job, result) as stage:
                replacement_map = self._validate_inputs(replacements, replace_on)
                await self._validate_transport(transport)
                stage(100.0, f"Validated pull into {target.name}")

            if backup_target:
                with self._step(MigrationStep.BACKUP, job, result) as stage:
                    result.backup = await asyncio.to_thread(
                        self.backup_manager.create_database_backup, target, "Pre-pull backup"
                    )
                    stage(100.0, f"Backup created: {result.backup.backup_path}")

            with self._step(MigrationStep.TRANSMIT, job, result) as stage:
                self.cancel_token.raise_if_cancelled("before requesting the remote dump")
                options: dict[str, Any] = {}
                if tables is not None:
                    options["tables"] = list(tables)
                if replace_on == "export" and replacement_map:
                    options["replacements"] = replacement_map.as_dict()
                stage(0.0, "Requesting dump from remote")
                dump_path = await transport.receive(self.settings.work_dir, options)
                result.dump_path = str(dump_path)
                stage(100.0, f"Dump received: {dump_path}")

            with self._step(MigrationStep.IMPORT, job, result) as stage:
                import_job = await self._import(
                    target,
                    dump_path,
                    replacement_map if replace_on == "import" else None,
                    None,
                    strict_validation,
                    stage,
                )
                result.import_job = import_job
                if import_job.status is JobStatus.CANCELLED:
                    raise OperationCancelled(import_job.message or "Cancelled during import")

            with self._step(MigrationStep.CLEANUP, job, result) as stage:
                result.artifacts_removed = self._cleanup(dump_path, keep_artifacts)
                stage(100.0, "Pull complete")
        except OperationCancelled as e:
            return self._finish(job, result, JobStatus.CANCELLED, str(e))
        except WPMigrateError as e:
            return self._finish(job, result, JobStatus.FAILED, str(e))

        return self._finish(job, result, JobStatus.COMPLETE)

    def _start_job(self, result: MigrationResult) -> MigrationJob:
        if self.job is not None and self.job.status is JobStatus.RUNNING:
            raise MigrationError(f"Migration {self.job.job_id} is already running")
        self.cancel_token = CancellationToken()
        job = MigrationJob(target=result.target or result.operation)
        job.start()
        self.job = job
        self.logger.info(
            "Starting migration",
            job_id=job.job_id,
            operation=result.operation,
            source=result.source,
            target=result.target,
            replace_on=result.replace_on,
        )
        return job

    def _step(self, step: MigrationStep, job: MigrationJob, result: MigrationResult) -> "_StepContext":
        start, end = STEP_RANGES[step]
        return _StepContext(self, step, job, result, self.progress.scoped(start, end, job))

    def _validate_inputs(
        self, replacements: ReplacementMap | Mapping[str, str] | None, replace_on: str
    ) -> ReplacementMap:
        if replace_on not in ("export", "import"):
            raise ConfigurationError(f"replace_on must be 'export' or 'import', not {replace_on!r}")
        try:
            return ReplacementMap.coerce(replacements)
        except ValueError as e:
            raise ConfigurationError(f"Invalid replacement map: {e}") from e

    async def _validate_target(self, source: Database, target: Database) -> None:
        if source is target:
            raise ConfigurationError("Source and target are the same database")
        if source.dialect.name != target.dialect.name:
            raise ConfigurationError(
                f"Cannot migrate {source.dialect.name} into {target.dialect.name}; "
                "dumps are written in the source's SQL dialect"
            )
        try:
            await asyncio.to_thread(source.list_tables)
            await asyncio.to_thread(target.list_tables)
        except Exception as e:
            raise ConfigurationError(f"Database is not reachable: {e}") from e

    async def _validate_transport(self, transport: BaseTransfer) -> None:
        ok, message = await transport.validate_requirements()
        if not ok:
            raise ConfigurationError(f"{transport.get_transfer_type()} transport unavailable: {message}")

    def _dump_path(self, source_name: str) -> Path:
        return self.settings.work_dir / f"export_{safe_filename(source_name)}_{timestamp_slug()}.sql"

    async def _export(
        self,
        source: Database,
        dump_path: Path,
        replacements: ReplacementMap | None,
        tables: Iterable[str] | None,
        exclude_tables: Iterable[str] | None,
        continue_on_error: bool,
        stage: ProgressReporter,
    ) -> ExportJob:
        exporter = RowStreamExporter(
            source,
            self.settings,
            replacements,
            progress=lambda percentage, message: stage(percentage, message),
            cancel_token=self.cancel_token,
        )
        export_job = ExportJob(target=str(dump_path))

        def run() -> ExportJob:
            with FileSink(dump_path) as sink:
                return exporter.export_database(
                    sink,
                    tables=list(tables) if tables is not None else None,
                    exclude_tables=list(exclude_tables) if exclude_tables else None,
                    continue_on_error=continue_on_error,
                    job=export_job,
                )

        try:
            return await asyncio.to_thread(run)
        except OSError as e:
            raise MigrationError(f"Cannot write dump file {dump_path}: {e}") from e

    async def _import(
        self,
        target: Database,
        dump_path: Path,
        replacements: ReplacementMap | None,
        validation_columns: dict[str, list[str]] | None,
        strict_validation: bool,
        stage: ProgressReporter,
    ) -> ImportJob:
        importer = DumpImporter(
            target,
            self.settings,
            progress=lambda percentage, message: stage(percentage, message),
            cancel_token=self.cancel_token,
            backup_manager=self.backup_manager,
        )
        options = ImportOptions(
            backup_target=False,
            replacements=replacements.as_dict() if replacements else {},
            validation_columns=validation_columns,
            strict_validation=strict_validation,
        )
        return await asyncio.to_thread(importer.import_file, dump_path, options)

    def _cleanup(self, dump_path: Path | None, keep_artifacts: bool) -> bool:
        if dump_path is None or keep_artifacts:
            return False
        try:
            dump_path.unlink(missing_ok=True)
        except OSError as e:
            self.logger.warning("Failed to remove dump file", path=str(dump_path), error=str(e))
            return False
        return True

    def _finish(
        self, job: MigrationJob, result: MigrationResult, status: JobStatus, error: str | None = None
    ) -> MigrationResult:
        job.finish(status, error)
        result.status = status
        result.success = status is JobStatus.COMPLETE
        result.error = error
        result.steps_completed = list(job.steps_completed)
        result.duration = job.duration
        log = self.logger.info if result.success else self.logger.error
        if status is JobStatus.CANCELLED:
            log = self.logger.warning
        log(
            "Migration finished",
            job_id=job.job_id,
            status=status.value,
            failed_step=result.failed_step.value if result.failed_step else None,
            error=error,
            warnings=len(result.warnings),
            dump_path=result.dump_path,
        )
        return result


class _StepContext:
    """Tracks the current step; records it as completed or failed."""

    def __init__(
        self,
        orchestrator: TransferOrchestrator,
        step: MigrationStep,
        job: MigrationJob,
        result: MigrationResult,
        reporter: ProgressReporter,
    ):
        self.orchestrator = orchestrator
        self.step = step
        self.job = job
        self.result = result
        self.reporter = reporter

    def __enter__(self) -> ProgressReporter:
        self.orchestrator.cancel_token.raise_if_cancelled(f"before step '{self.step.value}'")
        self.job.step = self.step
        self.orchestrator.logger.debug("Migration step started", step=self.step.value, job_id=self.job.job_id)
        return self.reporter

    def __exit__(self, exc_type, exc, traceback) -> bool:
        if exc_type is None:
            self.job.steps_completed.append(self.step)
        else:
            self.result.failed_step = self.step
        return False

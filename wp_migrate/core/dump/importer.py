"""Replay a SQL dump against a target database.

Statements are streamed from a :class:`StatementSplitter` and executed in
transaction batches. The target can be backed up first, string literals
can be rewritten on the way in, and serialized columns are sampled
afterwards to confirm nothing was corrupted.
"""

from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import TYPE_CHECKING

import structlog
from pydantic import BaseModel, Field

from ...models.enums import JobStatus
from ..database.base import Database, StatementExecutor
from ..exceptions import (
    BackupError,
    IntegrityValidationError,
    OperationCancelled,
    StatementExecutionError,
    WPMigrateError,
)
from ..jobs import CancellationToken, ImportJob, ProgressCallback, ProgressReporter
from ..settings import MigrateSettings
from ..verification import IntegrityVerifier
from .rewriter import StatementRewriter
from .splitter import Statement, StatementSplitter

if TYPE_CHECKING:
    from ..backup import BackupManager

logger = structlog.get_logger()

# Progress is reported after this many statements.
PROGRESS_INTERVAL = 100


class ImportOptions(BaseModel):
    """Options for one import run."""

    backup_target: bool = Field(default=True, description="Back up the target before importing")
    replacements: dict[str, str] = Field(
        default_factory=dict, description="Find/replace pairs applied to string literals"
    )
    validate_integrity: bool = Field(
        default=True, description="Sample serialized columns after the import"
    )
    strict_validation: bool = Field(
        default=False, description="Fail the import when sampling finds corrupted values"
    )
    validation_columns: dict[str, list[str]] | None = Field(
        default=None, description="Table -> serialized columns to sample (recorded during export)"
    )
    transaction_size: int | None = Field(
        default=None, ge=1, description="Statements per transaction (settings default when omitted)"
    )


class DumpImporter:
    """Executes dump statements against a target database."""

    def __init__(
        self,
        target: StatementExecutor,
        settings: MigrateSettings | None = None,
        progress: ProgressCallback | ProgressReporter | None = None,
        cancel_token: CancellationToken | None = None,
        backup_manager: "BackupManager | None" = None,
        verifier: IntegrityVerifier | None = None,
    ):
        self.target = target
        self.settings = settings or MigrateSettings()
        self.dialect = target.dialect
        self.progress = progress if isinstance(progress, ProgressReporter) else ProgressReporter(progress)
        self.cancel_token = cancel_token or CancellationToken()
        self.backup_manager = backup_manager
        self.verifier = verifier
        self.logger = logger.bind(component="dump_importer")

    def import_file(
        self, path: str | Path, options: ImportOptions | None = None, job: ImportJob | None = None
    ) -> ImportJob:
        """Import a ``.sql`` or ``.sql.gz`` dump file."""
        path = Path(path)
        if not path.is_file():
            raise WPMigrateError(f"Dump file not found: {path}")
        job = job or ImportJob(target=str(path))
        splitter = StatementSplitter(path, backslash_escapes=self.dialect.backslash_escapes)
        return self.import_dump(splitter, options, job)

    def import_dump(
        self,
        dump: StatementSplitter | str | bytes | Iterable[Statement | str],
        options: ImportOptions | None = None,
        job: ImportJob | None = None,
    ) -> ImportJob:
        """Execute every statement of ``dump`` against the target.

        Args:
            dump: Dump text, a splitter, or an iterable of statements
            options: Backup, replacement, batching and validation options
            job: Job record to update (created when omitted)

        Returns:
            The job, ``COMPLETE`` or ``CANCELLED``. Integrity problems found
            after a successful import are attached to ``job.integrity`` and
            logged as warnings unless ``strict_validation`` is set.

        Raises:
            BackupError: The pre-import backup failed; nothing was executed
            StatementExecutionError: A statement failed. Statements that ran
                before it stay applied.
            IntegrityValidationError: Sampling found corrupted values and
                ``strict_validation`` is set
        """
        options = options or ImportOptions()
        job = job or ImportJob(target=getattr(self.target, "name", "database"))
        job.start()
        self.logger.info(
            "Starting dump import",
            target=getattr(self.target, "name", None),
            job_id=job.job_id,
            backup=options.backup_target,
            replacements=len(options.replacements),
        )

        if options.backup_target:
            statements_start = 15.0
        else:
            statements_start = 0.0
        statements_end = 95.0 if options.validate_integrity else 100.0

        try:
            if options.backup_target:
                self._backup_target(job, self.progress.scoped(0.0, statements_start, job))

            statements = self._statements(dump)
            total_size = statements.total_size if isinstance(statements, StatementSplitter) else None
            job.bytes_total = total_size
            self._execute_all(
                statements,
                options,
                job,
                self.progress.scoped(statements_start, statements_end, job),
            )

            if options.validate_integrity:
                self._validate(options, job, self.progress.scoped(statements_end, 100.0, job))
        except OperationCancelled as e:
            job.finish(JobStatus.CANCELLED)
            job.message = str(e)
            self.logger.warning(
                "Dump import cancelled",
                job_id=job.job_id,
                executed=job.executed_count,
                statement_index=job.statement_index,
            )
            return job
        except WPMigrateError as e:
            job.finish(JobStatus.FAILED, str(e))
            self.logger.error(
                "Dump import failed",
                job_id=job.job_id,
                executed=job.executed_count,
                error=str(e),
            )
            raise

        job.finish(JobStatus.COMPLETE)
        job.message = f"Executed {job.executed_count} statement(s)"
        if job.integrity is not None and not job.integrity.passed:
            job.message += f"; {len(job.integrity.issues)} corrupted serialized value(s) found"
        self.logger.info(
            "Dump import completed",
            job_id=job.job_id,
            statements=job.executed_count,
            duration=job.duration,
        )
        return job

    def _backup_target(self, job: ImportJob, progress: ProgressReporter) -> None:
        if not isinstance(self.target, Database):
            raise BackupError("Target does not support backups; pass backup_target=False")
        if self.backup_manager is None:
            from ..backup import BackupManager

            self.backup_manager = BackupManager(self.settings)

        progress(0.0, f"Backing up {self.target.name}")
        info = self.backup_manager.create_database_backup(self.target, reason="Pre-import backup")
        job.backup_path = info.backup_path
        progress(100.0, f"Backup created: {info.backup_path} ({info.backup_size_human})")

    def _statements(
        self, dump: StatementSplitter | str | bytes | Iterable[Statement | str]
    ) -> StatementSplitter | Iterable[Statement]:
        if isinstance(dump, StatementSplitter):
            return dump
        if isinstance(dump, (str, bytes, Path)):
            return StatementSplitter(dump, backslash_escapes=self.dialect.backslash_escapes)
        return (
            item if isinstance(item, Statement) else Statement(index, item, 0, 0)
            for index, item in enumerate(dump)
        )

    def _execute_all(
        self,
        statements: StatementSplitter | Iterable[Statement],
        options: ImportOptions,
        job: ImportJob,
        progress: ProgressReporter,
    ) -> None:
        rewriter = StatementRewriter(options.replacements, self.dialect) if options.replacements else None
        batch_size = options.transaction_size or self.settings.transaction_size
        pending = 0

        self.target.begin()
        try:
            for statement in statements:
                self.cancel_token.raise_if_cancelled(f"import before statement #{statement.index}")
                sql = rewriter.rewrite(statement.sql) if rewriter else statement.sql
                try:
                    self.target.execute(sql)
                except Exception as e:
                    raise StatementExecutionError(
                        statement.index, str(e), statement.line or None, statement.sql
                    ) from e

                job.statement_index = statement.index
                job.executed_count += 1
                pending += 1
                if pending >= batch_size:
                    self.target.commit()
                    self.target.begin()
                    pending = 0
                if job.executed_count % PROGRESS_INTERVAL == 0:
                    self._report(statements, job, progress)
        finally:
            # Statements that succeeded before a failure or cancellation stay applied.
            self.target.commit()

        self._report(statements, job, progress)
        if rewriter is not None and rewriter.fallbacks:
            self.logger.warning(
                "Some serialized values could not be decoded and were replaced as plain text",
                count=rewriter.fallbacks,
            )

    def _report(
        self,
        statements: StatementSplitter | Iterable[Statement],
        job: ImportJob,
        progress: ProgressReporter,
    ) -> None:
        message = f"Executed {job.executed_count} statements"
        if isinstance(statements, StatementSplitter):
            job.bytes_read = statements.position
            if job.bytes_total:
                progress(min(statements.position / job.bytes_total * 100.0, 100.0), message)
                return
        progress(None, message)

    def _validate(self, options: ImportOptions, job: ImportJob, progress: ProgressReporter) -> None:
        if self.verifier is None:
            if not isinstance(self.target, Database):
                self.logger.info("Skipping integrity validation; target cannot be read back")
                return
            self.verifier = IntegrityVerifier(self.target, self.settings)

        progress(0.0, "Validating serialized data")
        report = self.verifier.verify(options.validation_columns)
        job.integrity = report
        if report.passed:
            progress(100.0, f"Validated {report.values_checked} serialized value(s)")
            return

        error = IntegrityValidationError([issue.model_dump() for issue in report.issues])
        self.logger.warning(
            "Serialized data failed validation after import",
            job_id=job.job_id,
            issues=len(report.issues),
            tables=sorted({issue.table for issue in report.issues}),
        )
        if options.strict_validation:
            raise error
        progress(100.0, f"Validation found {len(report.issues)} corrupted value(s)")


def import_statements(
    target: StatementExecutor,
    statements: Iterable[str],
    replacements: Mapping[str, str] | None = None,
    settings: MigrateSettings | None = None,
) -> ImportJob:
    """Execute plain SQL statements without backup or validation."""
    options = ImportOptions(
        backup_target=False,
        validate_integrity=False,
        replacements=dict(replacements or {}),
    )
    return DumpImporter(target, settings).import_dump(statements, options)

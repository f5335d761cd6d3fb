"""Job records, progress reporting and cancellation for long-running operations."""

import threading
import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field

from ..models.enums import ExportPhase, JobStatus
from .exceptions import OperationCancelled

# (percentage 0-100 or None when the total is unknown, message)
ProgressCallback = Callable[[float | None, str], None]


class IntegrityIssue(BaseModel):
    """A serialized-looking cell that failed to decode after import."""

    table: str
    column: str
    row_offset: int
    error: str
    preview: str = ""


class IntegrityReport(BaseModel):
    """Outcome of post-import sampling of serialized columns."""

    tables_checked: list[str] = Field(default_factory=list)
    rows_sampled: int = 0
    values_checked: int = 0
    issues: list[IntegrityIssue] = Field(default_factory=list)

    @property
    def passed(self) -> bool:
        return not self.issues


class Job(BaseModel):
    """Progress record shared by export and import jobs.

    Owned and mutated by the engine; observers should read
    :meth:`snapshot` copies.
    """

    job_id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    target: str = Field(description="Resource the job works on (file, database, tables)")
    status: JobStatus = JobStatus.PENDING
    percentage: float | None = None
    message: str = ""
    error: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None

    def start(self) -> None:
        self.status = JobStatus.RUNNING
        self.started_at = datetime.now(UTC)

    def finish(self, status: JobStatus, error: str | None = None) -> None:
        self.status = status
        self.error = error
        self.finished_at = datetime.now(UTC)
        if status is JobStatus.COMPLETE:
            self.percentage = 100.0

    @property
    def duration(self) -> float | None:
        if self.started_at is None:
            return None
        end = self.finished_at or datetime.now(UTC)
        return (end - self.started_at).total_seconds()

    def snapshot(self) -> "Job":
        return self.model_copy(deep=True)


class ExportJob(Job):
    """State of one export run."""

    phase: ExportPhase = ExportPhase.IDLE
    current_table: str | None = None
    offset: int = 0
    total_rows: int | None = None
    rows_written: int = 0
    tables_completed: list[str] = Field(default_factory=list)
    table_errors: list[dict[str, Any]] = Field(default_factory=list)
    serialized_columns: dict[str, list[str]] = Field(default_factory=dict)
    replacement_fallbacks: int = 0

    def note_serialized_column(self, table: str, column: str) -> None:
        columns = self.serialized_columns.setdefault(table, [])
        if column not in columns:
            columns.append(column)


class ImportJob(Job):
    """State of one import run."""

    statement_index: int = 0
    executed_count: int = 0
    bytes_total: int | None = None
    bytes_read: int = 0
    backup_path: str | None = None
    integrity: IntegrityReport | None = None


class CancellationToken:
    """Cooperative cancellation flag checked between pages and statements."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, where: str) -> None:
        if self._event.is_set():
            raise OperationCancelled(f"Cancelled {where}")


class ProgressReporter:
    """Maps step-local progress onto one 0-100 range and updates the job.

    A reporter built with ``start=20, end=60`` turns a sub-step's 50% into
    40% overall, so one progress bar can follow every orchestrator step.
    """

    def __init__(
        self,
        callback: ProgressCallback | None = None,
        start: float = 0.0,
        end: float = 100.0,
        job: Job | None = None,
    ):
        self.callback = callback
        self.start = start
        self.end = end
        self.job = job

    def scoped(self, start: float, end: float, job: Job | None = None) -> "ProgressReporter":
        """Reporter for a sub-step occupying ``start..end`` of this reporter's range."""
        span = self.end - self.start
        return ProgressReporter(
            self.callback,
            self.start + span * start / 100.0,
            self.start + span * end / 100.0,
            job if job is not None else self.job,
        )

    def __call__(self, percentage: float | None, message: str) -> None:
        overall = None
        if percentage is not None:
            clamped = min(max(percentage, 0.0), 100.0)
            overall = round(self.start + (self.end - self.start) * clamped / 100.0, 2)
        if self.job is not None:
            if overall is not None:
                self.job.percentage = overall
            self.job.message = message
        if self.callback is not None:
            self.callback(overall, message)

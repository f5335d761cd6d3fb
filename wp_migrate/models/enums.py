"""Enum definitions for wp-migrate jobs and tools."""

from enum import Enum
from typing import Literal

# Type aliases
ReplaceStage = Literal["export", "import"]


class JobStatus(Enum):
    """Lifecycle of an export or import job."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETE = "complete"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ExportPhase(Enum):
    """Position of an export run in the dump-writing state machine."""

    IDLE = "idle"
    HEADER_WRITTEN = "header_written"
    SCHEMA_WRITTEN = "schema_written"
    DATA_PAGING = "data_paging"
    TABLE_DONE = "table_done"
    FOOTER_WRITTEN = "footer_written"
    COMPLETE = "complete"
    FAILED = "failed"
    CANCELLED = "cancelled"


class MigrationStep(Enum):
    """Orchestrator steps, in execution order."""

    VALIDATE = "validate"
    BACKUP = "backup"
    EXPORT = "export"
    TRANSMIT = "transmit"
    IMPORT = "import"
    CLEANUP = "cleanup"

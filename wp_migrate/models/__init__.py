"""Data models for wp-migrate."""

from .enums import (  # noqa: F401
    ExportPhase,
    JobStatus,
    MigrationStep,
    ReplaceStage,
)
from .params import (  # noqa: F401
    ExportDatabaseParams,
    ImportDatabaseParams,
    InspectSerializedParams,
    MCPModel,
    MigrateDatabaseParams,
    SearchReplaceParams,
)

__all__ = [
    # Enums
    "ExportPhase",
    "JobStatus",
    "MigrationStep",
    "ReplaceStage",
    # Tool parameters
    "ExportDatabaseParams",
    "ImportDatabaseParams",
    "InspectSerializedParams",
    "MCPModel",
    "MigrateDatabaseParams",
    "SearchReplaceParams",
]

"""Migration orchestration across export, transmit and import."""

from .orchestrator import MigrationJob, MigrationResult, TransferOrchestrator  # noqa: F401

__all__ = ["MigrationJob", "MigrationResult", "TransferOrchestrator"]

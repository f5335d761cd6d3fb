"""Core exceptions for wp-migrate operations."""


class WPMigrateError(Exception):
    """Base exception for wp-migrate operations."""


class ConfigurationError(WPMigrateError):
    """Configuration validation or loading failed."""


class MalformedSerialization(WPMigrateError):
    """A value looked serialized but could not be decoded."""

    def __init__(self, message: str, offset: int | None = None):
        self.offset = offset
        if offset is not None:
            message = f"{message} (at byte {offset})"
        super().__init__(message)


class SourceReadError(WPMigrateError):
    """Reading a page of rows from the source failed."""

    def __init__(self, table: str, offset: int, message: str):
        self.table = table
        self.offset = offset
        super().__init__(f"Failed to read table '{table}' at offset {offset}: {message}")


class SinkWriteError(WPMigrateError):
    """Writing exported statements to the sink failed."""

    def __init__(self, table: str | None, message: str):
        self.table = table
        where = f"table '{table}'" if table else "dump header/footer"
        super().__init__(f"Failed to write {where}: {message}")


class StatementExecutionError(WPMigrateError):
    """A dump statement failed against the target database."""

    def __init__(self, statement_index: int, message: str, line: int | None = None, statement: str = ""):
        self.statement_index = statement_index
        self.line = line
        self.statement = statement
        location = f"statement #{statement_index}"
        if line is not None:
            location += f" (dump line {line})"
        preview = statement[:120] + ("..." if len(statement) > 120 else "")
        super().__init__(f"{location} failed: {message}" + (f" [{preview}]" if preview else ""))


class IntegrityValidationError(WPMigrateError):
    """Post-import sampling found serialized values that no longer decode."""

    def __init__(self, issues: list[dict]):
        self.issues = issues
        tables = sorted({issue.get("table", "?") for issue in issues})
        super().__init__(
            f"{len(issues)} corrupted serialized value(s) after import in: {', '.join(tables)}"
        )


class OperationCancelled(WPMigrateError):
    """A long-running export or import was cancelled between pages/statements."""


class BackupError(WPMigrateError):
    """Backup operation failed."""


class TransferError(WPMigrateError):
    """Remote transfer of a dump file failed."""


class MigrationError(WPMigrateError):
    """Migration run failed."""

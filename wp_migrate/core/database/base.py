"""Abstract interfaces for row sources and statement executors."""

from abc import ABC, abstractmethod
from typing import Any

import structlog

from .dialect import SqlDialect

logger = structlog.get_logger()

# Ordered column name -> raw cell value (None for SQL NULL).
TableRow = dict[str, Any]


class RowSource(ABC):
    """Paged, read-only access to tables."""

    dialect: SqlDialect

    @abstractmethod
    def list_tables(self) -> list[str]:
        """Names of all base tables, in a stable order."""

    @abstractmethod
    def get_table_schema(self, table: str) -> str:
        """DDL that recreates ``table`` (without a trailing semicolon).

        May contain several statements separated by ``;`` (indexes).
        """

    @abstractmethod
    def fetch_page(self, table: str, limit: int, offset: int) -> list[TableRow]:
        """Up to ``limit`` rows of ``table`` starting at ``offset``, in a stable order."""

    def count_rows(self, table: str) -> int | None:
        """Row count if cheaply known; ``None`` makes progress count-based."""
        return None


class StatementExecutor(ABC):
    """Executes dump statements against a target database."""

    dialect: SqlDialect

    @abstractmethod
    def execute(self, statement: str) -> None:
        """Execute one statement; raise the driver's error on failure."""

    def begin(self) -> None:
        """Start a transaction when the engine supports one."""

    def commit(self) -> None:
        """Commit the current transaction, if any."""

    def rollback(self) -> None:
        """Roll back the current transaction, if any."""


class Database(RowSource, StatementExecutor):
    """A connection that can be both exported from and imported into."""

    engine: str = "sql"

    def __init__(self, name: str):
        self.name = name
        self.logger = logger.bind(component=self.__class__.__name__.lower(), database=name)

    @abstractmethod
    def close(self) -> None:
        """Release the underlying connection."""

    def __enter__(self) -> "Database":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.name!r})"

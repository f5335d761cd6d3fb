"""Database adapters used as export sources and import targets."""

from .base import Database, RowSource, StatementExecutor, TableRow  # noqa: F401
from .dialect import MySQLDialect, SqlDialect, SQLiteDialect, get_dialect  # noqa: F401
from .sqlite import SQLiteDatabase  # noqa: F401

__all__ = [
    "Database",
    "RowSource",
    "StatementExecutor",
    "TableRow",
    "MySQLDialect",
    "SqlDialect",
    "SQLiteDialect",
    "get_dialect",
    "SQLiteDatabase",
]

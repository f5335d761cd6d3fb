"""SQLite row source and statement executor."""

import sqlite3
from pathlib import Path

from .base import Database, TableRow
from .dialect import SQLiteDialect


class SQLiteDatabase(Database):
    """SQLite database opened in autocommit mode; transactions are explicit."""

    engine = "sqlite"

    def __init__(self, path: str | Path = ":memory:", name: str | None = None):
        super().__init__(name or str(path))
        self.path = str(path)
        self.dialect = SQLiteDialect()
        self.connection = sqlite3.connect(self.path, isolation_level=None)

    def list_tables(self) -> list[str]:
        cursor = self.connection.execute(
            "SELECT name FROM sqlite_master "
            "WHERE type = 'table' AND name NOT LIKE 'sqlite_%' ORDER BY name"
        )
        return [row[0] for row in cursor.fetchall()]

    def get_table_schema(self, table: str) -> str:
        rows = self.connection.execute(
            "SELECT type, sql FROM sqlite_master "
            "WHERE tbl_name = ? AND sql IS NOT NULL ORDER BY type = 'table' DESC, name",
            (table,),
        ).fetchall()
        if not rows or rows[0][0] != "table":
            raise LookupError(f"Table '{table}' does not exist")
        return ";\n".join(sql for _, sql in rows)

    def fetch_page(self, table: str, limit: int, offset: int) -> list[TableRow]:
        query = (
            f"SELECT * FROM {self.dialect.quote_identifier(table)}"
            f"{self._order_clause(table)} LIMIT ? OFFSET ?"
        )
        cursor = self.connection.execute(query, (limit, offset))
        columns = [description[0] for description in cursor.description]
        return [dict(zip(columns, row)) for row in cursor.fetchall()]

    def count_rows(self, table: str) -> int | None:
        query = f"SELECT COUNT(*) FROM {self.dialect.quote_identifier(table)}"
        return self.connection.execute(query).fetchone()[0]

    def _order_clause(self, table: str) -> str:
        """Order pages by primary key, or rowid, so offsets stay stable."""
        info = self.connection.execute(
            f"PRAGMA table_info({self.dialect.quote_identifier(table)})"
        ).fetchall()
        keys = sorted((row[5], row[1]) for row in info if row[5])
        if keys:
            return " ORDER BY " + ", ".join(self.dialect.quote_identifier(name) for _, name in keys)
        without_rowid = self.connection.execute(
            "SELECT sql FROM sqlite_master WHERE type = 'table' AND name = ?", (table,)
        ).fetchone()
        if without_rowid and "WITHOUT ROWID" in (without_rowid[0] or "").upper():
            return ""
        return " ORDER BY rowid"

    def execute(self, statement: str) -> None:
        self.connection.execute(statement)

    def begin(self) -> None:
        if not self.connection.in_transaction:
            self.connection.execute("BEGIN")

    def commit(self) -> None:
        if self.connection.in_transaction:
            self.connection.execute("COMMIT")

    def rollback(self) -> None:
        if self.connection.in_transaction:
            self.connection.execute("ROLLBACK")

    def close(self) -> None:
        self.connection.close()

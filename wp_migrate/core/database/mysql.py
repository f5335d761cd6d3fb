"""MySQL / MariaDB row source and statement executor (mysql-connector-python)."""

from typing import Any

import mysql.connector

from .base import Database, TableRow
from .dialect import MySQLDialect


class MySQLDatabase(Database):
    """MySQL connection with autocommit off; the importer commits in batches."""

    engine = "mysql"

    def __init__(
        self,
        database: str,
        host: str = "127.0.0.1",
        port: int = 3306,
        user: str = "root",
        password: str = "",
        charset: str = "utf8mb4",
        connect_timeout: int = 30,
        name: str | None = None,
    ):
        super().__init__(name or f"{host}:{port}/{database}")
        self.dialect = MySQLDialect()
        self.database = database
        self._order_keys: dict[str, list[str]] = {}
        self.connection = mysql.connector.connect(
            host=host,
            port=port,
            user=user,
            password=password,
            database=database,
            charset=charset,
            use_unicode=True,
            autocommit=False,
            connection_timeout=connect_timeout,
        )

    def _query(self, query: str, params: tuple[Any, ...] = ()) -> tuple[list[str], list[tuple]]:
        cursor = self.connection.cursor()
        try:
            cursor.execute(query, params)
            columns = [description[0] for description in cursor.description or ()]
            return columns, cursor.fetchall()
        finally:
            cursor.close()

    def list_tables(self) -> list[str]:
        _, rows = self._query("SHOW FULL TABLES WHERE Table_type = 'BASE TABLE'")
        return sorted(str(row[0]) for row in rows)

    def get_table_schema(self, table: str) -> str:
        _, rows = self._query(f"SHOW CREATE TABLE {self.dialect.quote_identifier(table)}")
        if not rows:
            raise LookupError(f"Table '{table}' does not exist")
        return str(rows[0][1])

    def fetch_page(self, table: str, limit: int, offset: int) -> list[TableRow]:
        order = self._order_clause(table)
        columns, rows = self._query(
            f"SELECT * FROM {self.dialect.quote_identifier(table)}{order} LIMIT %s OFFSET %s",
            (limit, offset),
        )
        return [dict(zip(columns, row)) for row in rows]

    def count_rows(self, table: str) -> int | None:
        _, rows = self._query(f"SELECT COUNT(*) FROM {self.dialect.quote_identifier(table)}")
        return int(rows[0][0])

    def _order_clause(self, table: str) -> str:
        if table not in self._order_keys:
            self._order_keys[table] = self._stable_order_columns(table)
        keys = self._order_keys[table]
        if not keys:
            return ""
        return " ORDER BY " + ", ".join(self.dialect.quote_identifier(key) for key in keys)

    def _stable_order_columns(self, table: str) -> list[str]:
        """Primary key, else a unique index over NOT NULL columns, else every column.

        LIMIT/OFFSET paging needs a total order; without one MySQL may return
        rows in a different order for each page.
        """
        _, rows = self._query(
            "SELECT INDEX_NAME, COLUMN_NAME, NULLABLE FROM information_schema.STATISTICS "
            "WHERE TABLE_SCHEMA = %s AND TABLE_NAME = %s AND NON_UNIQUE = 0 "
            "ORDER BY INDEX_NAME = 'PRIMARY' DESC, INDEX_NAME, SEQ_IN_INDEX",
            (self.database, table),
        )
        indexes: dict[str, list[str]] = {}
        unusable: set[str] = set()
        for index_name, column, nullable in rows:
            # Functional index parts have no column name.
            if column is None or nullable == "YES":
                unusable.add(str(index_name))
            else:
                indexes.setdefault(str(index_name), []).append(str(column))
        for index_name, columns in indexes.items():
            if index_name not in unusable:
                return columns

        _, rows = self._query(
            "SELECT COLUMN_NAME FROM information_schema.COLUMNS "
            "WHERE TABLE_SCHEMA = %s AND TABLE_NAME = %s ORDER BY ORDINAL_POSITION",
            (self.database, table),
        )
        return [str(row[0]) for row in rows]

    def execute(self, statement: str) -> None:
        cursor = self.connection.cursor()
        try:
            cursor.execute(statement)
        finally:
            cursor.close()

    def begin(self) -> None:
        if not self.connection.in_transaction:
            self.connection.start_transaction()

    def commit(self) -> None:
        self.connection.commit()

    def rollback(self) -> None:
        self.connection.rollback()

    def close(self) -> None:
        self.connection.close()

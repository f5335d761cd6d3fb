"""SQL dialects: identifier/value quoting and dump framing statements."""

import math
from abc import ABC, abstractmethod
from collections.abc import Sequence
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Any

_MYSQL_ESCAPES = {
    "\\": "\\\\",
    "\0": "\\0",
    "\n": "\\n",
    "\r": "\\r",
    "'": "\\'",
    '"': '\\"',
    "\x1a": "\\Z",
}
_MYSQL_UNESCAPES = {
    "0": "\0",
    "n": "\n",
    "r": "\r",
    "t": "\t",
    "b": "\b",
    "Z": "\x1a",
}


class SqlDialect(ABC):
    """Quoting rules and framing statements for one database engine."""

    name: str = "sql"
    # Whether a backslash escapes the next character inside string literals.
    backslash_escapes: bool = False
    # Splices a NUL between two literals where statement text cannot hold one.
    nul_join: str | None = None

    @abstractmethod
    def quote_identifier(self, name: str) -> str:
        """Quote a table or column name."""

    @abstractmethod
    def escape_string(self, text: str) -> str:
        """Escape text for use between single quotes."""

    @abstractmethod
    def unescape_string(self, body: str) -> str:
        """Inverse of :meth:`escape_string` for a literal's body (quotes removed)."""

    @abstractmethod
    def hex_literal(self, data: bytes) -> str:
        """Binary literal for bytes that are not valid UTF-8."""

    def quote_text(self, text: str) -> str:
        """Render text as a complete SQL string expression."""
        return f"'{self.escape_string(text)}'"

    def header_statements(self) -> list[str]:
        return []

    def footer_statements(self) -> list[str]:
        return []

    def quote_value(self, value: Any) -> str:
        """Render one cell as a SQL literal."""
        if value is None:
            return "NULL"
        if isinstance(value, bool):
            return "1" if value else "0"
        if isinstance(value, int):
            return str(value)
        if isinstance(value, float):
            if math.isnan(value) or math.isinf(value):
                return "NULL"
            return repr(value)
        if isinstance(value, Decimal):
            return str(value)
        if isinstance(value, (bytes, bytearray, memoryview)):
            data = bytes(value)
            try:
                text = data.decode("utf-8")
            except UnicodeDecodeError:
                return self.hex_literal(data)
            return self.quote_text(text)
        if isinstance(value, datetime):
            return f"'{value.isoformat(sep=' ')}'"
        if isinstance(value, (date, time)):
            return f"'{value.isoformat()}'"
        if isinstance(value, timedelta):
            return f"'{_format_timedelta(value)}'"
        if isinstance(value, (set, frozenset)):
            # MySQL SET columns come back as Python sets.
            return self.quote_text(",".join(sorted(str(member) for member in value)))
        return self.quote_text(str(value))

    def drop_table(self, table: str) -> str:
        return f"DROP TABLE IF EXISTS {self.quote_identifier(table)}"

    def insert_statement(self, table: str, columns: Sequence[str], rows: Sequence[Sequence[Any]]) -> str:
        """One batched INSERT for a page of rows, one row per line."""
        column_list = ", ".join(self.quote_identifier(column) for column in columns)
        values = ",\n".join(
            "(" + ", ".join(self.quote_value(value) for value in row) + ")" for row in rows
        )
        return f"INSERT INTO {self.quote_identifier(table)} ({column_list}) VALUES\n{values}"


class MySQLDialect(SqlDialect):
    """MySQL / MariaDB, as written by mysqldump."""

    name = "mysql"
    backslash_escapes = True

    def quote_identifier(self, name: str) -> str:
        return "`" + name.replace("`", "``") + "`"

    def escape_string(self, text: str) -> str:
        return "".join(_MYSQL_ESCAPES.get(char, char) for char in text)

    def unescape_string(self, body: str) -> str:
        out: list[str] = []
        index = 0
        length = len(body)
        while index < length:
            char = body[index]
            if char == "\\" and index + 1 < length:
                following = body[index + 1]
                if following in "%_":
                    # MySQL keeps the backslash for LIKE wildcards.
                    out.append("\\" + following)
                else:
                    out.append(_MYSQL_UNESCAPES.get(following, following))
                index += 2
            elif char == "'" and index + 1 < length and body[index + 1] == "'":
                out.append("'")
                index += 2
            else:
                out.append(char)
                index += 1
        return "".join(out)

    def hex_literal(self, data: bytes) -> str:
        return "0x" + data.hex() if data else "''"

    def header_statements(self) -> list[str]:
        return [
            "SET NAMES utf8mb4",
            'SET SQL_MODE = "NO_AUTO_VALUE_ON_ZERO"',
            'SET time_zone = "+00:00"',
            "SET FOREIGN_KEY_CHECKS = 0",
        ]

    def footer_statements(self) -> list[str]:
        return ["SET FOREIGN_KEY_CHECKS = 1"]


class SQLiteDialect(SqlDialect):
    """SQLite: standard SQL quoting, no backslash escapes."""

    name = "sqlite"
    backslash_escapes = False
    nul_join = " || char(0) || "

    def quote_identifier(self, name: str) -> str:
        return '"' + name.replace('"', '""') + '"'

    def escape_string(self, text: str) -> str:
        return text.replace("'", "''")

    def unescape_string(self, body: str) -> str:
        return body.replace("''", "'")

    def hex_literal(self, data: bytes) -> str:
        return f"X'{data.hex()}'"

    def quote_text(self, text: str) -> str:
        if "\0" not in text:
            return super().quote_text(text)
        # sqlite3 rejects statement text containing NUL.
        parts = (self.escape_string(part) for part in text.split("\0"))
        return "'" + f"'{self.nul_join}'".join(parts) + "'"

    def quote_value(self, value: Any) -> str:
        # BLOBs stay BLOBs; a text literal would store TEXT.
        if isinstance(value, (bytes, bytearray, memoryview)):
            return self.hex_literal(bytes(value))
        return super().quote_value(value)

    def header_statements(self) -> list[str]:
        return ["PRAGMA foreign_keys = OFF"]

    def footer_statements(self) -> list[str]:
        return ["PRAGMA foreign_keys = ON"]


_DIALECTS: dict[str, type[SqlDialect]] = {"mysql": MySQLDialect, "sqlite": SQLiteDialect}


def get_dialect(name: str) -> SqlDialect:
    """Look up a dialect by engine name (``mysql``, ``mariadb``, ``sqlite``)."""
    key = "mysql" if name.lower() == "mariadb" else name.lower()
    if key not in _DIALECTS:
        raise ValueError(f"Unsupported database engine: {name}")
    return _DIALECTS[key]()


def _format_timedelta(value: timedelta) -> str:
    total = int(value.total_seconds())
    sign = "-" if total < 0 else ""
    total = abs(total)
    hours, remainder = divmod(total, 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{sign}{hours:02d}:{minutes:02d}:{seconds:02d}"

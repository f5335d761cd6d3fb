"""Apply serialization-safe replacement to the string literals of dump statements.

Used when replacement runs on import instead of export: each quoted
literal of an INSERT/REPLACE statement is unescaped, rewritten as a cell
value and escaped again, so length prefixes inside serialized values are
recomputed exactly as they would have been on export. Identifiers and
DDL are left alone.
"""

import re
from collections.abc import Mapping

from ..database.dialect import SqlDialect
from ..serialization import ReplacementMap, StructuralReplacer

_DATA_STATEMENT = re.compile(r"^\s*(?:INSERT|REPLACE)\b", re.IGNORECASE)
_NUL_JOIN = re.compile(r"\s*\|\|\s*char\(\s*0\s*\)\s*\|\|\s*(?=')", re.IGNORECASE)


class StatementRewriter:
    """Rewrites the string literals of data statements for one dialect."""

    def __init__(self, replacements: ReplacementMap | Mapping[str, str] | None, dialect: SqlDialect):
        self.replacer = StructuralReplacer(replacements)
        self.dialect = dialect
        # Find strings that survive escaping unchanged can be pre-checked on the raw SQL.
        self._plain_finds = all(
            "\0" not in find and dialect.escape_string(find) == find
            for find in self.replacer.replacements.as_dict()
        )

    @property
    def fallbacks(self) -> int:
        return self.replacer.fallbacks

    def rewrite(self, sql: str) -> str:
        """Return ``sql`` with every quoted literal rewritten (data statements only)."""
        if not self.replacer.replacements or not _DATA_STATEMENT.match(sql):
            return sql
        if self._plain_finds and not any(find in sql for find in self.replacer.replacements.as_dict()):
            return sql

        out: list[str] = []
        index = 0
        length = len(sql)
        while index < length:
            char = sql[index]
            if char in "`\"":
                end = self._literal_end(sql, index, char)
                out.append(sql[index:end])
                index = end
                continue
            if char != "'":
                out.append(char)
                index += 1
                continue

            end, value = self._read_text(sql, index)
            rewritten = self.replacer.replace(value)
            if rewritten == value:
                out.append(sql[index:end])
            else:
                out.append(self.dialect.quote_text(rewritten))
            index = end
        return "".join(out)

    def _read_text(self, sql: str, start: int) -> tuple[int, str]:
        """Read the string value starting at ``start``, including NUL-spliced continuations."""
        end = self._literal_end(sql, start, "'")
        value = self.dialect.unescape_string(sql[start + 1 : end - 1])
        if self.dialect.nul_join is None:
            return end, value
        parts = [value]
        while (match := _NUL_JOIN.match(sql, end)) is not None:
            next_start = match.end()
            end = self._literal_end(sql, next_start, "'")
            parts.append(self.dialect.unescape_string(sql[next_start + 1 : end - 1]))
        return end, "\0".join(parts)

    def _literal_end(self, sql: str, start: int, quote: str) -> int:
        """Index just past the quote closing the literal opened at ``start``."""
        index = start + 1
        length = len(sql)
        backslash = self.dialect.backslash_escapes and quote != "`"
        while index < length:
            char = sql[index]
            if backslash and char == "\\":
                index += 2
                continue
            if char == quote:
                if index + 1 < length and sql[index + 1] == quote:
                    index += 2
                    continue
                return index + 1
            index += 1
        return length

"""Split a SQL dump into statements without loading it whole.

The splitter is a small state machine over the dump text. It tracks
single-, double- and backtick-quoted regions, honors backslash escapes
only for dialects that have them, and drops ``--``/``#`` line comments
and ``/* */`` block comments (``/*! ... */`` conditional comments are
kept as statements). Statements are yielded without their terminating
semicolon, each tagged with its index and the dump line it started on.
"""

import gzip
import io
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import TextIO

# Scanner states
_CODE = 0
_SINGLE = 1
_DOUBLE = 2
_BACKTICK = 3
_LINE_COMMENT = 4
_BLOCK_COMMENT = 5

_QUOTE_STATES = {"'": _SINGLE, '"': _DOUBLE, "`": _BACKTICK}
_CLOSING_QUOTE = {_SINGLE: "'", _DOUBLE: '"', _BACKTICK: "`"}


@dataclass(frozen=True)
class Statement:
    """One executable statement from a dump."""

    index: int
    sql: str
    line: int
    offset: int


class StatementSplitter:
    """Iterates over the statements of a dump.

    Args:
        dump: Dump text, raw bytes, or a path to a ``.sql``/``.sql.gz`` file
        backslash_escapes: Treat ``\\`` as an escape inside quoted strings
            (MySQL dumps); standard SQL dumps only double the quote

    Iterating again starts over from the beginning of the dump.
    """

    def __init__(self, dump: str | bytes | Path, *, backslash_escapes: bool = True):
        self.dump = dump
        self.backslash_escapes = backslash_escapes
        # Characters consumed by the current iteration; progress for importers.
        self.position = 0

    @property
    def total_size(self) -> int | None:
        """Approximate input size for progress; ``None`` for compressed files."""
        if isinstance(self.dump, Path):
            return None if self.dump.suffix == ".gz" else self.dump.stat().st_size
        return len(self.dump)

    def _open(self) -> TextIO:
        if isinstance(self.dump, Path):
            if self.dump.suffix == ".gz":
                return gzip.open(self.dump, "rt", encoding="utf-8", errors="surrogateescape")
            return open(self.dump, encoding="utf-8", errors="surrogateescape")
        if isinstance(self.dump, bytes):
            return io.StringIO(self.dump.decode("utf-8", "surrogateescape"))
        return io.StringIO(self.dump)

    def __iter__(self) -> Iterator[Statement]:
        self.position = 0
        state = _CODE
        buffer: list[str] = []
        index = 0
        line_number = 0
        start_line: int | None = None
        start_offset = 0
        # Block comments opened with /*! are part of the statement.
        keep_block = False

        with self._open() as handle:
            for line in handle:
                line_number += 1
                line_start = self.position
                self.position += len(line)
                i = 0
                length = len(line)
                while i < length:
                    char = line[i]

                    if state == _LINE_COMMENT:
                        if char == "\n":
                            state = _CODE
                        i += 1
                        continue

                    if state == _BLOCK_COMMENT:
                        if char == "*" and i + 1 < length and line[i + 1] == "/":
                            state = _CODE
                            if keep_block:
                                buffer.append("*/")
                            i += 2
                            continue
                        if keep_block:
                            buffer.append(char)
                        i += 1
                        continue

                    if state in _CLOSING_QUOTE:
                        buffer.append(char)
                        if char == "\\" and self.backslash_escapes and state != _BACKTICK:
                            if i + 1 < length:
                                buffer.append(line[i + 1])
                                i += 2
                                continue
                        elif char == _CLOSING_QUOTE[state]:
                            state = _CODE
                        i += 1
                        continue

                    # _CODE
                    if char == "-" and line.startswith("--", i) and (
                        i + 2 >= length or line[i + 2] in " \t\r\n"
                    ):
                        state = _LINE_COMMENT
                        i += 2
                        continue
                    if char == "#":
                        state = _LINE_COMMENT
                        i += 1
                        continue
                    if char == "/" and i + 1 < length and line[i + 1] == "*":
                        state = _BLOCK_COMMENT
                        keep_block = i + 2 < length and line[i + 2] == "!"
                        if keep_block:
                            if start_line is None:
                                start_line, start_offset = line_number, line_start + i
                            buffer.append("/*")
                        i += 2
                        continue
                    if char == ";":
                        sql = "".join(buffer).strip()
                        if sql:
                            yield Statement(index, sql, start_line or line_number, start_offset)
                            index += 1
                        buffer = []
                        start_line = None
                        i += 1
                        continue

                    if start_line is None and not char.isspace():
                        start_line, start_offset = line_number, line_start + i
                    if char in _QUOTE_STATES:
                        state = _QUOTE_STATES[char]
                    buffer.append(char)
                    i += 1

        # A final statement without a terminating semicolon still counts.
        sql = "".join(buffer).strip()
        if sql:
            yield Statement(index, sql, start_line or line_number, start_offset)


def split_statements(dump: str | bytes | Path, *, backslash_escapes: bool = True) -> Iterator[str]:
    """Yield the SQL text of each statement in ``dump``."""
    for statement in StatementSplitter(dump, backslash_escapes=backslash_escapes):
        yield statement.sql

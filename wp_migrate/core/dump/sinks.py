"""Append-only sinks that receive dump text."""

import gzip
import io
from abc import ABC, abstractmethod
from pathlib import Path
from typing import TextIO


class WriteSink(ABC):
    """Append-only text stream for dump output."""

    bytes_written: int = 0

    @abstractmethod
    def write(self, text: str) -> None:
        """Append ``text``."""

    def flush(self) -> None:
        """Push buffered data to the underlying store."""

    def close(self) -> None:
        """Release the underlying store."""

    def __enter__(self) -> "WriteSink":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class FileSink(WriteSink):
    """Dump file on disk; ``.gz`` paths are gzip-compressed."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.bytes_written = 0
        self._handle: TextIO
        if self.path.suffix == ".gz":
            self._handle = gzip.open(self.path, "wt", encoding="utf-8", errors="surrogateescape")
        else:
            self._handle = open(self.path, "w", encoding="utf-8", errors="surrogateescape")

    def write(self, text: str) -> None:
        self._handle.write(text)
        self.bytes_written += len(text.encode("utf-8", "surrogateescape"))

    def flush(self) -> None:
        self._handle.flush()

    def close(self) -> None:
        if not self._handle.closed:
            self._handle.close()


class BufferSink(WriteSink):
    """In-memory sink; :meth:`getvalue` returns everything written."""

    def __init__(self) -> None:
        self._buffer = io.StringIO()
        self.bytes_written = 0

    def write(self, text: str) -> None:
        self._buffer.write(text)
        self.bytes_written += len(text.encode("utf-8", "surrogateescape"))

    def getvalue(self) -> str:
        return self._buffer.getvalue()

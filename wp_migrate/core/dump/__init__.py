"""SQL dump export, statement splitting and import."""

from .exporter import RowStreamExporter  # noqa: F401
from .importer import DumpImporter, ImportOptions, import_statements  # noqa: F401
from .rewriter import StatementRewriter  # noqa: F401
from .sinks import BufferSink, FileSink, WriteSink  # noqa: F401
from .splitter import Statement, StatementSplitter, split_statements  # noqa: F401

__all__ = [
    "RowStreamExporter",
    "DumpImporter",
    "ImportOptions",
    "import_statements",
    "StatementRewriter",
    "BufferSink",
    "FileSink",
    "WriteSink",
    "Statement",
    "StatementSplitter",
    "split_statements",
]

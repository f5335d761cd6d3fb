"""Streaming table exporter that applies serialization-safe replacement inline.

Rows are fetched one page at a time, rewritten with
:class:`~wp_migrate.core.serialization.StructuralReplacer` and written to
the sink as one batched INSERT per page, so memory use is bounded by the
page size regardless of table size.
"""

from collections.abc import Iterable, Mapping
from datetime import UTC, datetime

import structlog

from ...models.enums import ExportPhase, JobStatus
from ..database.base import RowSource, TableRow
from ..exceptions import OperationCancelled, SinkWriteError, SourceReadError, WPMigrateError
from ..jobs import CancellationToken, ExportJob, ProgressCallback, ProgressReporter
from ..serialization import ReplacementMap, StructuralReplacer, is_serialized
from ..settings import MigrateSettings
from .sinks import WriteSink

logger = structlog.get_logger()

DUMP_BANNER = "-- wp-migrate database export"


class RowStreamExporter:
    """Exports schema and data from a :class:`RowSource` into a dump sink."""

    def __init__(
        self,
        source: RowSource,
        settings: MigrateSettings | None = None,
        replacements: ReplacementMap | Mapping[str, str] | None = None,
        progress: ProgressCallback | ProgressReporter | None = None,
        cancel_token: CancellationToken | None = None,
    ):
        self.source = source
        self.settings = settings or MigrateSettings()
        self.dialect = source.dialect
        self.replacer = StructuralReplacer(replacements)
        self.progress = progress if isinstance(progress, ProgressReporter) else ProgressReporter(progress)
        self.cancel_token = cancel_token or CancellationToken()
        self.logger = logger.bind(component="row_stream_exporter")

    def export_schema(self, table: str) -> str:
        """DROP + CREATE statements for ``table``; DDL is never string-substituted."""
        try:
            schema = self.source.get_table_schema(table)
        except Exception as e:
            raise SourceReadError(table, 0, f"cannot read schema: {e}") from e
        return (
            f"\n--\n-- Table structure for table {self.dialect.quote_identifier(table)}\n--\n\n"
            f"{self.dialect.drop_table(table)};\n"
            f"{schema.strip().rstrip(';')};\n\n"
        )

    def export_table(
        self,
        table: str,
        sink: WriteSink,
        *,
        page_size: int | None = None,
        replacements: ReplacementMap | Mapping[str, str] | None = None,
        job: ExportJob | None = None,
        progress: ProgressReporter | None = None,
    ) -> int:
        """Stream every row of ``table`` into ``sink``.

        Pages advance until one comes back shorter than ``page_size``.

        Returns:
            Number of rows written

        Raises:
            SourceReadError: A page fetch failed
            SinkWriteError: Writing a page failed
            OperationCancelled: Cancellation was requested between pages
        """
        page_size = page_size or self.settings.chunk_size
        replacer = self.replacer if replacements is None else StructuralReplacer(replacements)
        report = progress or self.progress
        fallbacks_before = replacer.fallbacks

        total = self._safe_count(table)

        self._write(
            sink,
            f"--\n-- Dumping data for table {self.dialect.quote_identifier(table)}\n--\n\n",
            table,
        )

        offset = 0
        written = 0
        while True:
            self.cancel_token.raise_if_cancelled(f"export of table '{table}' at offset {offset}")
            try:
                rows = self.source.fetch_page(table, page_size, offset)
            except Exception as e:
                raise SourceReadError(table, offset, str(e)) from e

            if rows:
                if job is not None:
                    self._note_serialized_columns(job, table, rows)
                replaced = [replacer.replace_row(row) for row in rows]
                statement = self.dialect.insert_statement(
                    table, list(replaced[0].keys()), [list(row.values()) for row in replaced]
                )
                self._write(sink, statement + ";\n\n", table)
                written += len(rows)
                offset += len(rows)

                if job is not None:
                    job.offset = offset
                    job.rows_written += len(rows)
                if total:
                    report(
                        min(written / total * 100.0, 100.0),
                        f"Exported {written}/{total} rows from {table}",
                    )
                else:
                    report(None, f"Exported {written} rows from {table}")

            if len(rows) < page_size:
                break

        if job is not None:
            job.replacement_fallbacks += replacer.fallbacks - fallbacks_before
        self.logger.debug("Table data exported", table=table, rows=written, page_size=page_size)
        return written

    def export_database(
        self,
        sink: WriteSink,
        *,
        tables: Iterable[str] | None = None,
        exclude_tables: Iterable[str] | None = None,
        include_structure: bool = True,
        include_data: bool = True,
        continue_on_error: bool = False,
        job: ExportJob | None = None,
    ) -> ExportJob:
        """Write a complete dump: header, per-table schema and data, footer.

        Args:
            sink: Destination for dump text
            tables: Only export these tables (source order is kept)
            exclude_tables: Skip these tables
            include_structure: Emit DROP/CREATE statements
            include_data: Emit INSERT statements
            continue_on_error: Record a failed table and move on instead of aborting
            job: Job record to update (created when omitted)

        Returns:
            The job, ``COMPLETE`` or ``CANCELLED``. A cancelled export keeps
            whatever tables were finished; the footer is not written.

        Raises:
            SourceReadError, SinkWriteError: When a table fails and
                ``continue_on_error`` is false. The job is marked ``FAILED``
                and the partial output is left in the sink.
        """
        job = job or ExportJob(target=getattr(self.source, "name", "database"))
        job.start()
        self.logger.info("Starting database export", target=job.target, job_id=job.job_id)

        try:
            selected = self.select_tables(tables, exclude_tables)
            counts = {table: self._safe_count(table) for table in selected}
            known = None if any(count is None for count in counts.values()) else sum(counts.values())
            job.total_rows = known

            self._write(sink, self._header(), None)
            job.phase = ExportPhase.HEADER_WRITTEN

            done_rows = 0
            for position, table in enumerate(selected):
                self.cancel_token.raise_if_cancelled(f"export before table '{table}'")
                job.current_table = table
                job.offset = 0
                if known:
                    start = done_rows / known * 100.0
                    end = (done_rows + (counts[table] or 0)) / known * 100.0
                else:
                    start = position / len(selected) * 100.0
                    end = (position + 1) / len(selected) * 100.0
                table_progress = self.progress.scoped(start, end, job)

                try:
                    rows = self._export_one_table(
                        table, sink, include_structure, include_data, job, table_progress
                    )
                except (SourceReadError, SinkWriteError) as e:
                    job.table_errors.append({"table": table, "offset": job.offset, "error": str(e)})
                    self.logger.error("Table export failed", table=table, error=str(e))
                    if not continue_on_error:
                        raise
                    continue

                done_rows += counts[table] or rows
                job.tables_completed.append(table)
                job.phase = ExportPhase.TABLE_DONE
                table_progress(100.0, f"Exported table {table} ({rows} rows)")

            self._write(sink, self._footer(), None)
            job.phase = ExportPhase.FOOTER_WRITTEN
            sink.flush()
        except OperationCancelled as e:
            sink.flush()
            job.phase = ExportPhase.CANCELLED
            job.finish(JobStatus.CANCELLED)
            job.message = str(e)
            self.logger.warning(
                "Database export cancelled",
                job_id=job.job_id,
                tables_completed=job.tables_completed,
            )
            return job
        except WPMigrateError as e:
            job.phase = ExportPhase.FAILED
            job.finish(JobStatus.FAILED, str(e))
            self.logger.error("Database export failed", job_id=job.job_id, error=str(e))
            raise

        job.phase = ExportPhase.COMPLETE
        job.finish(JobStatus.COMPLETE)
        job.message = f"Exported {len(job.tables_completed)} table(s), {job.rows_written} row(s)"
        self.logger.info(
            "Database export completed",
            job_id=job.job_id,
            tables=len(job.tables_completed),
            rows=job.rows_written,
            failed_tables=len(job.table_errors),
            replacement_fallbacks=job.replacement_fallbacks,
        )
        return job

    def select_tables(
        self, tables: Iterable[str] | None = None, exclude_tables: Iterable[str] | None = None
    ) -> list[str]:
        """Source tables filtered by include/exclude lists, in source order."""
        try:
            available = self.source.list_tables()
        except Exception as e:
            raise SourceReadError("*", 0, f"cannot list tables: {e}") from e

        selected = available
        if tables is not None:
            wanted = list(tables)
            missing = [table for table in wanted if table not in available]
            if missing:
                self.logger.warning("Requested tables not found in source", tables=missing)
            selected = [table for table in available if table in set(wanted)]
        if exclude_tables:
            excluded = set(exclude_tables)
            selected = [table for table in selected if table not in excluded]
        return selected

    def _export_one_table(
        self,
        table: str,
        sink: WriteSink,
        include_structure: bool,
        include_data: bool,
        job: ExportJob,
        progress: ProgressReporter,
    ) -> int:
        if include_structure:
            self._write(sink, self.export_schema(table), table)
            job.phase = ExportPhase.SCHEMA_WRITTEN
        if not include_data:
            return 0
        job.phase = ExportPhase.DATA_PAGING
        return self.export_table(table, sink, job=job, progress=progress)

    def _safe_count(self, table: str) -> int | None:
        try:
            return self.source.count_rows(table)
        except Exception as e:
            self.logger.warning("Row count unavailable", table=table, error=str(e))
            return None

    def _note_serialized_columns(self, job: ExportJob, table: str, rows: list[TableRow]) -> None:
        known = set(job.serialized_columns.get(table, ()))
        for row in rows:
            for column, value in row.items():
                if column not in known and is_serialized(value):
                    job.note_serialized_column(table, column)
                    known.add(column)

    def _write(self, sink: WriteSink, text: str, table: str | None) -> None:
        try:
            sink.write(text)
        except Exception as e:
            raise SinkWriteError(table, str(e)) from e

    def _header(self) -> str:
        generated = datetime.now(UTC).strftime("%Y-%m-%d %H:%M:%S UTC")
        lines = [
            DUMP_BANNER,
            f"-- Generated on: {generated}",
            f"-- Source: {getattr(self.source, 'name', 'unknown')} ({self.dialect.name})",
            f"-- Source version: {self.settings.source_version or 'unknown'}",
            "",
        ]
        lines.extend(f"{statement};" for statement in self.dialect.header_statements())
        return "\n".join(lines) + "\n"

    def _footer(self) -> str:
        completed = datetime.now(UTC).strftime("%Y-%m-%d %H:%M:%S UTC")
        lines = [""]
        lines.extend(f"{statement};" for statement in self.dialect.footer_statements())
        lines.append(f"-- Dump completed on {completed}")
        return "\n".join(lines) + "\n"

"""Post-import integrity checks for serialized columns."""

import structlog

from .database.base import RowSource
from .exceptions import MalformedSerialization, SourceReadError
from .jobs import IntegrityIssue, IntegrityReport
from .serialization import decode, looks_serialized
from .serialization.codec import as_bytes
from .settings import MigrateSettings

logger = structlog.get_logger()

# Columns WordPress core stores serialized data in, keyed by unprefixed table name.
WORDPRESS_SERIALIZED_COLUMNS = {
    "options": ["option_value"],
    "postmeta": ["meta_value"],
    "usermeta": ["meta_value"],
    "termmeta": ["meta_value"],
    "commentmeta": ["meta_value"],
    "sitemeta": ["meta_value"],
}


class IntegrityVerifier:
    """Samples rows after an import and decodes every serialized-looking value.

    The columns to check come from the export job when available, then
    from the WordPress core tables present in the target, and finally
    from a sample of every table.
    """

    def __init__(self, target: RowSource, settings: MigrateSettings | None = None):
        self.target = target
        self.settings = settings or MigrateSettings()
        self.logger = logger.bind(component="integrity_verifier")

    def resolve_columns(self, columns: dict[str, list[str]] | None = None) -> dict[str, list[str] | None]:
        """Map of table -> columns to check (``None`` means every column)."""
        available = self.target.list_tables()
        if columns:
            return {table: list(cols) for table, cols in columns.items() if table in available}

        prefix = self.settings.table_prefix
        resolved: dict[str, list[str] | None] = {
            prefix + table: cols
            for table, cols in WORDPRESS_SERIALIZED_COLUMNS.items()
            if prefix + table in available
        }
        if resolved:
            return resolved
        return {table: None for table in available}

    def verify(
        self,
        columns: dict[str, list[str]] | None = None,
        sample_size: int | None = None,
    ) -> IntegrityReport:
        """Decode serialized-looking values in a sample of rows.

        Args:
            columns: Table -> serialized columns, usually recorded during export
            sample_size: Rows sampled per table (settings default when omitted)

        Returns:
            Report listing every value that looks serialized but no longer decodes
        """
        sample_size = self.settings.validation_sample_size if sample_size is None else sample_size
        report = IntegrityReport()
        if sample_size <= 0:
            return report

        for table, table_columns in self.resolve_columns(columns).items():
            try:
                rows = self.target.fetch_page(table, sample_size, 0)
            except Exception as e:
                raise SourceReadError(table, 0, f"cannot sample rows for validation: {e}") from e

            report.tables_checked.append(table)
            report.rows_sampled += len(rows)
            for offset, row in enumerate(rows):
                for column in table_columns or list(row):
                    value = row.get(column)
                    if not looks_serialized(value):
                        continue
                    report.values_checked += 1
                    data = as_bytes(value).strip()
                    try:
                        decode(data)
                    except MalformedSerialization as e:
                        report.issues.append(
                            IntegrityIssue(
                                table=table,
                                column=column,
                                row_offset=offset,
                                error=str(e),
                                preview=data[:80].decode("utf-8", "replace"),
                            )
                        )

        self.logger.info(
            "Integrity validation finished",
            tables=len(report.tables_checked),
            rows_sampled=report.rows_sampled,
            values_checked=report.values_checked,
            issues=len(report.issues),
        )
        return report

"""Tests for dump import."""

import gzip
from pathlib import Path

import pytest

from wp_migrate.core.database import SQLiteDialect, StatementExecutor
from wp_migrate.core.database.sqlite import SQLiteDatabase
from wp_migrate.core.dump import DumpImporter, FileSink, ImportOptions, RowStreamExporter, import_statements
from wp_migrate.core.exceptions import IntegrityValidationError, StatementExecutionError, WPMigrateError
from wp_migrate.core.jobs import CancellationToken
from wp_migrate.core.serialization import is_serialized, serialize, unserialize
from wp_migrate.core.settings import MigrateSettings
from wp_migrate.models.enums import JobStatus

from .conftest import NEW_URL, OLD_URL, table_rows, widget_value

NO_CHECKS = ImportOptions(backup_target=False, validate_integrity=False)


class RecordingExecutor(StatementExecutor):
    """Executor that records statements and transaction boundaries."""

    dialect = SQLiteDialect()

    def __init__(self):
        self.calls: list[str] = []

    def execute(self, statement: str) -> None:
        self.calls.append(statement)

    def begin(self) -> None:
        self.calls.append("BEGIN")

    def commit(self) -> None:
        self.calls.append("COMMIT")


def simple_dump(rows: int = 3) -> str:
    lines = ["CREATE TABLE items (id INTEGER PRIMARY KEY, value TEXT);"]
    lines.extend(f"INSERT INTO items (id, value) VALUES ({n}, 'item {n}; ok');" for n in range(1, rows + 1))
    return "\n".join(lines) + "\n"


class TestImportDump:
    """Test suite for DumpImporter.import_dump."""

    def test_executes_statements_in_order(self, target_db, settings):
        """Every statement runs and the job completes."""
        job = DumpImporter(target_db, settings).import_dump(simple_dump(), NO_CHECKS)

        assert job.status is JobStatus.COMPLETE
        assert job.executed_count == 4
        assert job.statement_index == 3
        assert [row["value"] for row in table_rows(target_db, "items")] == [
            "item 1; ok",
            "item 2; ok",
            "item 3; ok",
        ]

    def test_transaction_batches(self, settings):
        """Statements are committed every transaction_size statements."""
        executor = RecordingExecutor()
        DumpImporter(executor, settings).import_dump(
            ["S1", "S2", "S3", "S4", "S5"], ImportOptions(backup_target=False, transaction_size=2)
        )

        assert executor.calls == [
            "BEGIN", "S1", "S2", "COMMIT", "BEGIN", "S3", "S4", "COMMIT", "BEGIN", "S5", "COMMIT",
        ]

    def test_failing_statement(self, target_db, settings):
        """The failing statement is reported and earlier ones stay applied."""
        dump = simple_dump(2) + "INSERT INTO missing_table VALUES (1);\nINSERT INTO items VALUES (9, 'never');\n"
        importer = DumpImporter(target_db, settings)

        with pytest.raises(StatementExecutionError) as exc_info:
            importer.import_dump(dump, NO_CHECKS)

        error = exc_info.value
        assert error.statement_index == 3
        assert error.line == 4
        assert "missing_table" in str(error)
        assert "statement #3 (dump line 4)" in str(error)
        assert len(table_rows(target_db, "items")) == 2

    def test_cancel_between_statements(self, target_db, settings):
        """Cancellation stops before the next statement and keeps executed ones."""
        token = CancellationToken()
        importer = DumpImporter(
            target_db, settings, progress=lambda pct, msg: token.cancel(), cancel_token=token
        )
        job = importer.import_dump(simple_dump(250), NO_CHECKS)

        assert job.status is JobStatus.CANCELLED
        assert job.executed_count == 100
        assert len(table_rows(target_db, "items")) == 99

    def test_replacement_on_import(self, target_db, settings):
        """String literals are rewritten with corrected length prefixes."""
        dump = (
            "CREATE TABLE wp_options (option_id INTEGER PRIMARY KEY, option_value TEXT);\n"
            f"INSERT INTO wp_options VALUES (1, '{widget_value()}');\n"
        )
        options = ImportOptions(backup_target=False, replacements={OLD_URL: NEW_URL})
        job = DumpImporter(target_db, settings).import_dump(dump, options)

        value = table_rows(target_db, "wp_options")[0]["option_value"]
        assert is_serialized(value)
        assert unserialize(value)["url"] == NEW_URL
        assert job.integrity is not None and job.integrity.passed

    def test_backup_before_import(self, source_db, settings):
        """The target is backed up before any statement runs."""
        job = DumpImporter(source_db, settings).import_dump(
            simple_dump(), ImportOptions(validate_integrity=False)
        )

        assert job.backup_path is not None
        backup_text = Path(job.backup_path).read_text(encoding="utf-8")
        assert "CREATE TABLE wp_options" in backup_text
        assert "items" not in backup_text


class TestIntegrityValidation:
    """Test suite for post-import validation."""

    CORRUPT_DUMP = (
        "CREATE TABLE wp_options (option_id INTEGER PRIMARY KEY, option_value TEXT);\n"
        "INSERT INTO wp_options VALUES (1, 'a:1:{s:3:\"url\";s:20:\"http://old.example.com\";}');\n"
        "INSERT INTO wp_options VALUES (2, 'b:1;');\n"
    )

    def test_issues_are_reported_as_warning(self, target_db, settings):
        """Corruption is attached to the job without failing it."""
        job = DumpImporter(target_db, settings).import_dump(
            self.CORRUPT_DUMP, ImportOptions(backup_target=False)
        )

        assert job.status is JobStatus.COMPLETE
        assert not job.integrity.passed
        issue = job.integrity.issues[0]
        assert (issue.table, issue.column, issue.row_offset) == ("wp_options", "option_value", 0)
        assert "1 corrupted serialized value(s) found" in job.message

    def test_strict_validation_raises(self, target_db, settings):
        """Strict validation turns corruption into an error."""
        importer = DumpImporter(target_db, settings)
        with pytest.raises(IntegrityValidationError, match="wp_options"):
            importer.import_dump(
                self.CORRUPT_DUMP, ImportOptions(backup_target=False, strict_validation=True)
            )

    def test_explicit_validation_columns(self, target_db, settings):
        """Only the listed columns are sampled."""
        job = DumpImporter(target_db, settings).import_dump(
            self.CORRUPT_DUMP,
            ImportOptions(backup_target=False, validation_columns={"wp_options": ["option_id"]}),
        )
        assert job.integrity.passed
        assert job.integrity.values_checked == 0


class TestImportFile:
    """Test suite for importing dump files."""

    def test_missing_file(self, target_db, settings, tmp_path):
        """A missing dump is reported before anything runs."""
        with pytest.raises(WPMigrateError, match="not found"):
            DumpImporter(target_db, settings).import_file(tmp_path / "nope.sql", NO_CHECKS)

    def test_gzip_file(self, target_db, settings, tmp_path):
        """Compressed dumps are imported transparently."""
        path = tmp_path / "dump.sql.gz"
        with gzip.open(path, "wt", encoding="utf-8") as handle:
            handle.write(simple_dump())

        job = DumpImporter(target_db, settings).import_file(path, NO_CHECKS)
        assert job.executed_count == 4
        assert job.bytes_total is None

    def test_progress_uses_bytes_read(self, target_db, settings, tmp_path):
        """Plain files report byte-based progress up to 100%."""
        path = tmp_path / "dump.sql"
        path.write_text(simple_dump(120))
        events = []

        job = DumpImporter(target_db, settings, progress=lambda pct, msg: events.append(pct)).import_file(
            path, NO_CHECKS
        )

        assert job.bytes_total == path.stat().st_size
        assert events[-1] == 100.0
        assert all(pct is not None for pct in events)

    def test_import_statements_helper(self, target_db):
        """Plain statement lists can be executed directly."""
        job = import_statements(target_db, ["CREATE TABLE t (a TEXT)", f"INSERT INTO t VALUES ('{OLD_URL}')"], {OLD_URL: NEW_URL})
        assert job.executed_count == 2
        assert table_rows(target_db, "t") == [{"a": NEW_URL}]


@pytest.mark.slow
class TestLargeImport:
    """Test suite for a paged export/import of a large table."""

    def test_ten_thousand_rows_in_pages_of_thousand(self, tmp_path):
        """10,000 rows survive export and import with serialized values intact."""
        settings = MigrateSettings(
            backup_dir=tmp_path / "backups", work_dir=tmp_path / "work", chunk_size=1000
        )
        source = SQLiteDatabase(tmp_path / "big.db", name="big")
        source.execute("CREATE TABLE wp_postmeta (meta_id INTEGER PRIMARY KEY, meta_value TEXT)")
        source.begin()
        for n in range(10_000):
            value = serialize({"url": f"{OLD_URL}/post-{n}", "n": n}).decode()
            source.connection.execute("INSERT INTO wp_postmeta VALUES (?, ?)", (n + 1, value))
        source.commit()

        dump_path = tmp_path / "big.sql"
        with FileSink(dump_path) as sink:
            export_job = RowStreamExporter(source, settings, {OLD_URL: NEW_URL}).export_database(sink)
        source.close()
        assert dump_path.read_text().count("INSERT INTO") == 10

        target = SQLiteDatabase(tmp_path / "big-target.db", name="big-target")
        job = DumpImporter(target, settings).import_file(
            dump_path,
            ImportOptions(backup_target=False, validation_columns=export_job.serialized_columns),
        )

        count = target.connection.execute("SELECT COUNT(*) FROM wp_postmeta").fetchone()[0]
        sample = target.connection.execute(
            "SELECT meta_value FROM wp_postmeta WHERE meta_id = 5001"
        ).fetchone()[0]
        target.close()

        assert job.status is JobStatus.COMPLETE
        assert count == 10_000
        assert unserialize(sample) == {"url": f"{NEW_URL}/post-5000", "n": 5000}
        assert job.integrity.passed
        assert job.integrity.values_checked > 0

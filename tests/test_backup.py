"""Tests for database backups and restore."""

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from wp_migrate.core.backup import BackupManager
from wp_migrate.core.database import MySQLDialect
from wp_migrate.core.exceptions import BackupError

from .conftest import OLD_URL, table_rows


class TestCreateBackup:
    """Test suite for BackupManager.create_database_backup."""

    def test_backup_writes_dump_and_record(self, source_db, settings):
        """A dump file and a JSON record land in the backup directory."""
        manager = BackupManager(settings)
        info = manager.create_database_backup(source_db, reason="Before test")

        backup_path = Path(info.backup_path)
        assert backup_path.parent == settings.backup_dir
        assert backup_path.name.startswith("backup_source_")
        assert backup_path.suffix == ".sql"
        assert backup_path.with_suffix(".json").is_file()
        assert info.engine == "sqlite"
        assert info.tables == ["wp_options", "wp_postmeta"]
        assert info.rows == 8
        assert info.backup_size == backup_path.stat().st_size
        assert info.reason == "Before test"
        # backups never apply replacements
        assert OLD_URL in backup_path.read_text()

    def test_compressed_backup(self, source_db, settings):
        """Backups can be gzip-compressed."""
        settings.compress_backups = True
        info = BackupManager(settings).create_database_backup(source_db, tables=["wp_options"])

        assert info.backup_path.endswith(".sql.gz")
        assert info.tables == ["wp_options"]

    def test_failed_backup_leaves_nothing(self, source_db, settings, monkeypatch):
        """A failed dump is removed and reported as BackupError."""

        def broken_page(table, limit, offset):
            raise OSError("read failed")

        monkeypatch.setattr(source_db, "fetch_page", broken_page)
        with pytest.raises(BackupError, match="Failed to create backup of source"):
            BackupManager(settings).create_database_backup(source_db)

        assert list(settings.backup_dir.glob("*.sql")) == []


class TestBackupRecords:
    """Test suite for listing, restoring and cleaning up backups."""

    def test_list_and_get(self, source_db, settings):
        """Records are read back from disk, newest first."""
        manager = BackupManager(settings)
        first = manager.create_database_backup(source_db, label="first")
        second = manager.create_database_backup(source_db, label="second")

        listed = BackupManager(settings).list_backups()
        assert [info.backup_id for info in listed] == [second.backup_id, first.backup_id]
        assert manager.get_backup(first.backup_id) == first

        with pytest.raises(BackupError, match="not found"):
            manager.get_backup("backup_missing")

    def test_list_skips_unreadable_records(self, settings):
        """Corrupt JSON records are ignored."""
        settings.backup_dir.mkdir(parents=True)
        (settings.backup_dir / "backup_broken.json").write_text("{not json")
        assert BackupManager(settings).list_backups() == []

    def test_restore_into_empty_database(self, source_db, target_db, settings):
        """Restoring replays the dump into the target."""
        manager = BackupManager(settings)
        info = manager.create_database_backup(source_db)

        job = manager.restore_backup(info, target_db)

        assert job.executed_count > 0
        assert table_rows(target_db, "wp_options") == table_rows(source_db, "wp_options")
        assert table_rows(target_db, "wp_postmeta") == table_rows(source_db, "wp_postmeta")

    def test_restore_missing_file(self, source_db, target_db, settings):
        """Restoring a deleted backup fails cleanly."""
        manager = BackupManager(settings)
        info = manager.create_database_backup(source_db)
        Path(info.backup_path).unlink()

        with pytest.raises(BackupError, match="Backup file not found"):
            manager.restore_backup(info, target_db)

    def test_restore_engine_mismatch(self, source_db, target_db, settings):
        """Dumps are only restored into the engine they came from."""
        info = BackupManager(settings).create_database_backup(source_db)
        target_db.dialect = MySQLDialect()

        with pytest.raises(BackupError, match="cannot restore into mysql"):
            BackupManager(settings).restore_backup(info, target_db)

    def test_cleanup_backup(self, source_db, settings):
        """Deleting a backup removes the dump and its record."""
        manager = BackupManager(settings)
        info = manager.create_database_backup(source_db)

        success, message = manager.cleanup_backup(info)

        assert success
        assert info.backup_id in message
        assert not Path(info.backup_path).exists()
        assert manager.list_backups() == []

    def test_cleanup_expired(self, source_db, settings):
        """Only backups older than the retention period are removed."""
        manager = BackupManager(settings)
        info = manager.create_database_backup(source_db)

        assert manager.cleanup_expired(retention_days=30) == []
        later = datetime.now(UTC) + timedelta(days=31)
        removed = manager.cleanup_expired(retention_days=30, now=later)

        assert [backup.backup_id for backup in removed] == [info.backup_id]
        assert manager.cleanup_expired(retention_days=0, now=later) == []

"""Tests for parameter validation using Pydantic models."""

import pytest
from pydantic import ValidationError

from wp_migrate.models.params import (
    ExportDatabaseParams,
    ImportDatabaseParams,
    MigrateDatabaseParams,
    SearchReplaceParams,
)


class TestSearchReplaceParams:
    """Test SearchReplaceParams model validation."""

    def test_defaults(self):
        """The map defaults to empty."""
        params = SearchReplaceParams(value="x")
        assert params.replacements == {}

    def test_empty_find_rejected(self):
        """Empty find strings are invalid."""
        with pytest.raises(ValidationError, match="must not be empty"):
            SearchReplaceParams(value="x", replacements={"": "y"})


class TestExportImportParams:
    """Test export and import parameter models."""

    def test_export_defaults(self):
        """Structure and data are exported by default."""
        params = ExportDatabaseParams(database="live")
        assert params.include_structure is True
        assert params.include_data is True
        assert params.compress is False
        assert "output_path" not in params.model_dump()

    def test_export_requires_database(self):
        """The database name cannot be empty."""
        with pytest.raises(ValidationError):
            ExportDatabaseParams(database="")

    def test_import_defaults(self):
        """Imports back up and validate by default."""
        params = ImportDatabaseParams(database="staging", dump_path="dump.sql")
        assert params.backup_target is True
        assert params.validate_integrity is True
        assert params.strict_validation is False


class TestMigrateDatabaseParams:
    """Test MigrateDatabaseParams model validation."""

    def test_target_or_connection(self):
        """One destination is required."""
        assert MigrateDatabaseParams(source="live", target="staging").target == "staging"
        assert MigrateDatabaseParams(source="live", connection="remote").connection == "remote"
        with pytest.raises(ValidationError, match="either target or connection"):
            MigrateDatabaseParams(source="live")

    def test_source_differs_from_target(self):
        """A database cannot be migrated into itself."""
        with pytest.raises(ValidationError, match="must differ"):
            MigrateDatabaseParams(source="live", target="live")

    def test_replace_on_values(self):
        """Only export and import are accepted."""
        assert MigrateDatabaseParams(source="a", target="b", replace_on="import").replace_on == "import"
        with pytest.raises(ValidationError):
            MigrateDatabaseParams(source="a", target="b", replace_on="both")

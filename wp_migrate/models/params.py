"""Parameter models for FastMCP tool validation."""

from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from .enums import ReplaceStage


class MCPModel(BaseModel):
    """Base model with common MCP settings."""

    def model_dump(self, **kwargs) -> dict[str, Any]:
        """Convert to dict with exclude_none by default."""
        kwargs.setdefault("exclude_none", True)
        return super().model_dump(**kwargs)


def _check_replacements(value: dict[str, str]) -> dict[str, str]:
    if any(not find for find in value):
        raise ValueError("replacement find strings must not be empty")
    return value


class SearchReplaceParams(MCPModel):
    """Parameters for the search_replace tool."""

    value: str = Field(description="Cell value to rewrite (plain or serialized)")
    replacements: dict[str, str] = Field(
        default_factory=dict, description="Ordered find -> replace map (config default when empty)"
    )

    _validate_replacements = field_validator("replacements")(_check_replacements)


class InspectSerializedParams(MCPModel):
    """Parameters for the inspect_serialized tool."""

    value: str = Field(description="Value to inspect")
    repair: bool = Field(default=False, description="Also return a length-corrected copy")


class ExportDatabaseParams(MCPModel):
    """Parameters for the export_database tool."""

    database: str = Field(min_length=1, description="Configured database name")
    output_path: str | None = Field(default=None, description="Dump file (work dir when omitted)")
    replacements: dict[str, str] = Field(default_factory=dict, description="Find -> replace map")
    tables: list[str] | None = Field(default=None, description="Only export these tables")
    exclude_tables: list[str] = Field(default_factory=list, description="Tables to skip")
    include_structure: bool = Field(default=True, description="Write DROP/CREATE statements")
    include_data: bool = Field(default=True, description="Write INSERT statements")
    continue_on_error: bool = Field(default=False, description="Skip tables that fail")
    compress: bool = Field(default=False, description="Write a .sql.gz file")

    _validate_replacements = field_validator("replacements")(_check_replacements)


class ImportDatabaseParams(MCPModel):
    """Parameters for the import_database tool."""

    database: str = Field(min_length=1, description="Configured database name")
    dump_path: str = Field(min_length=1, description="Dump file to import (.sql or .sql.gz)")
    replacements: dict[str, str] = Field(default_factory=dict, description="Find -> replace map")
    backup_target: bool = Field(default=True, description="Back up the database first")
    validate_integrity: bool = Field(default=True, description="Sample serialized columns afterwards")
    strict_validation: bool = Field(default=False, description="Fail on corrupted serialized values")

    _validate_replacements = field_validator("replacements")(_check_replacements)


class MigrateDatabaseParams(MCPModel):
    """Parameters for the migrate_database tool."""

    source: str = Field(min_length=1, description="Configured source database")
    target: str | None = Field(default=None, description="Configured target database")
    connection: str | None = Field(default=None, description="Configured remote connection to push to")
    replacements: dict[str, str] = Field(default_factory=dict, description="Find -> replace map")
    replace_on: ReplaceStage = Field(default="export", description="Apply replacements on export or import")
    tables: list[str] | None = Field(default=None, description="Only migrate these tables")
    exclude_tables: list[str] = Field(default_factory=list, description="Tables to skip")
    backup_target: bool = Field(default=True, description="Back up the target first")
    keep_artifacts: bool = Field(default=False, description="Keep the dump file afterwards")

    _validate_replacements = field_validator("replacements")(_check_replacements)

    @model_validator(mode="after")
    def _require_destination(self) -> "MigrateDatabaseParams":
        if not self.target and not self.connection:
            raise ValueError("either target or connection is required")
        if self.target and self.target == self.source:
            raise ValueError("source and target must differ")
        return self

"""
wp-migrate FastMCP server

Exposes serialization-safe search/replace, database export/import, backups
and site-to-site migration as MCP tools.
"""

import argparse
import asyncio
import os
import sys
import tempfile
from pathlib import Path
from typing import Annotated, Any

import structlog
from fastmcp import FastMCP
from pydantic import Field

from .core.backup import BackupManager
from .core.config_loader import DEFAULT_CONFIG_FILE, MigrateConfig, load_config, open_database
from .core.database.base import Database
from .core.dump.exporter import RowStreamExporter
from .core.dump.importer import DumpImporter, ImportOptions
from .core.dump.sinks import FileSink
from .core.exceptions import WPMigrateError
from .core.migration.orchestrator import TransferOrchestrator
from .core.serialization import decode, is_serialized, looks_serialized, validate
from .core.serialization import repair as repair_serialized
from .core.serialization.codec import as_bytes
from .core.serialization.replacer import StructuralReplacer
from .core.serialization.values import to_python, type_tag
from .core.settings import MigrateSettings
from .core.transfer.http import HttpTransfer
from .middleware import RequestLoggingMiddleware
from .models.enums import JobStatus, ReplaceStage
from .models.params import (
    ExportDatabaseParams,
    ImportDatabaseParams,
    InspectSerializedParams,
    MigrateDatabaseParams,
    SearchReplaceParams,
)
from .utils import safe_filename, timestamp_slug

logger = structlog.get_logger()


def get_data_dir() -> Path:
    """Directory for logs and other runtime data."""
    override = os.getenv("WP_MIGRATE_DATA_DIR")
    if override:
        return Path(override)
    return Path.home() / ".local" / "share" / "wp-migrate"


class WPMigrateServer:
    """FastMCP server wrapping the migration engine."""

    def __init__(
        self,
        config: MigrateConfig,
        config_path: str | None = None,
        settings: MigrateSettings | None = None,
    ):
        self.config = config
        self._config_path = config_path or os.getenv("WP_MIGRATE_CONFIG") or DEFAULT_CONFIG_FILE
        self.settings = settings or MigrateSettings()
        self.backup_manager = BackupManager(self.settings)
        self.logger = logger.bind(component="server")

        # FastMCP app will be created later to prevent auto-start
        self.app: FastMCP | None = None

        self.logger.info(
            "wp-migrate server initialized",
            databases=list(config.databases),
            connections=list(config.connections),
            default_replacements=len(config.replacements),
            config_path=self._config_path,
        )

    def _initialize_app(self) -> None:
        """Initialize FastMCP app, middleware, and register tools."""
        self.app = FastMCP("WordPress Migration Engine")
        self.app.add_middleware(
            RequestLoggingMiddleware(
                include_payloads=os.getenv("LOG_INCLUDE_PAYLOADS", "true").lower() in ("1", "true", "yes"),
            )
        )

        self.app.tool(
            self.search_replace,
            annotations={
                "title": "Serialization-Safe Search and Replace",
                "readOnlyHint": True,  # Previews the rewrite, stores nothing
                "destructiveHint": False,
                "idempotentHint": True,
                "openWorldHint": False,
            },
        )
        self.app.tool(
            self.inspect_serialized,
            annotations={
                "title": "Inspect Serialized Value",
                "readOnlyHint": True,
                "destructiveHint": False,
                "idempotentHint": True,
                "openWorldHint": False,
            },
        )
        self.app.tool(
            self.export_database,
            annotations={
                "title": "Export Database",
                "readOnlyHint": False,  # Writes a dump file
                "destructiveHint": False,
                "idempotentHint": False,
                "openWorldHint": False,
            },
        )
        self.app.tool(
            self.import_database,
            annotations={
                "title": "Import Database Dump",
                "readOnlyHint": False,
                "destructiveHint": True,  # Dumps drop and recreate tables
                "idempotentHint": False,
                "openWorldHint": False,
            },
        )
        self.app.tool(
            self.migrate_database,
            annotations={
                "title": "Migrate Database",
                "readOnlyHint": False,
                "destructiveHint": True,  # Replaces the target's tables
                "idempotentHint": False,
                "openWorldHint": True,  # Can push to a remote site
            },
        )
        self.app.tool(
            self.list_backups,
            annotations={
                "title": "List Backups",
                "readOnlyHint": True,
                "destructiveHint": False,
                "idempotentHint": True,
                "openWorldHint": False,
            },
        )

    async def search_replace(
        self,
        value: Annotated[str, Field(description="Cell value to rewrite (plain or serialized)")],
        replacements: Annotated[
            dict[str, str] | None,
            Field(default=None, description="Ordered find -> replace map; configured map when omitted"),
        ] = None,
    ) -> dict[str, Any]:
        """Preview a serialization-safe search and replace on one value.

        Length prefixes of serialized strings are recomputed after the
        substitution, so the result stays decodable.
        """
        try:
            params = SearchReplaceParams(value=value, replacements=replacements or {})
        except Exception as e:
            return {"success": False, "error": f"Parameter validation failed: {str(e)}"}

        mapping = params.replacements or self.config.replacements
        if not mapping:
            return {"success": False, "error": "No replacements given and none configured"}

        replacer = StructuralReplacer(mapping)
        result = replacer.replace(params.value)
        return {
            "success": True,
            "original": params.value,
            "result": result,
            "changed": result != params.value,
            "serialized": is_serialized(result),
            "valid": validate(result),
            "raw_fallback": replacer.fallbacks > 0,
        }

    async def inspect_serialized(
        self,
        value: Annotated[str, Field(description="Value to inspect")],
        repair: Annotated[
            bool, Field(default=False, description="Also return a length-corrected copy")
        ] = False,
    ) -> dict[str, Any]:
        """Report whether a value is PHP-serialized, decode it and optionally repair it."""
        try:
            params = InspectSerializedParams(value=value, repair=repair)
        except Exception as e:
            return {"success": False, "error": f"Parameter validation failed: {str(e)}"}

        response: dict[str, Any] = {
            "success": True,
            "is_serialized": is_serialized(params.value),
            "looks_serialized": looks_serialized(params.value),
            "valid": validate(params.value),
        }
        if response["is_serialized"]:
            tree = decode(as_bytes(params.value).strip())
            response["type"] = type_tag(tree)
            response["decoded"] = to_python(tree)
        elif response["looks_serialized"]:
            try:
                decode(as_bytes(params.value).strip())
            except WPMigrateError as e:
                response["error_detail"] = str(e)
        if params.repair:
            repaired = repair_serialized(params.value)
            response["repaired"] = repaired
            response["repair_changed"] = repaired != params.value
        return response

    async def export_database(
        self,
        database: Annotated[str, Field(description="Configured database name")],
        output_path: Annotated[
            str, Field(default="", description="Dump file path (work directory when empty)")
        ] = "",
        replacements: Annotated[
            dict[str, str] | None, Field(default=None, description="Find -> replace map")
        ] = None,
        tables: Annotated[
            list[str] | None, Field(default=None, description="Only export these tables")
        ] = None,
        exclude_tables: Annotated[
            list[str] | None, Field(default=None, description="Tables to skip")
        ] = None,
        include_structure: Annotated[
            bool, Field(default=True, description="Write DROP/CREATE statements")
        ] = True,
        include_data: Annotated[bool, Field(default=True, description="Write INSERT statements")] = True,
        continue_on_error: Annotated[
            bool, Field(default=False, description="Skip tables that fail to export")
        ] = False,
        compress: Annotated[bool, Field(default=False, description="Write a .sql.gz file")] = False,
    ) -> dict[str, Any]:
        """Export a configured database to a dump file, optionally rewriting URLs."""
        try:
            params = ExportDatabaseParams(
                database=database,
                output_path=output_path or None,
                replacements=replacements or {},
                tables=tables,
                exclude_tables=exclude_tables or [],
                include_structure=include_structure,
                include_data=include_data,
                continue_on_error=continue_on_error,
                compress=compress,
            )
        except Exception as e:
            return {"success": False, "error": f"Parameter validation failed: {str(e)}"}

        if params.output_path:
            dump_path = Path(params.output_path)
        else:
            suffix = ".sql.gz" if params.compress else ".sql"
            dump_path = self.settings.work_dir / (
                f"export_{safe_filename(params.database)}_{timestamp_slug()}{suffix}"
            )

        def run() -> dict[str, Any]:
            with self._open(params.database) as source:
                exporter = RowStreamExporter(source, self.settings, params.replacements or None)
                with FileSink(dump_path) as sink:
                    job = exporter.export_database(
                        sink,
                        tables=params.tables,
                        exclude_tables=params.exclude_tables or None,
                        include_structure=params.include_structure,
                        include_data=params.include_data,
                        continue_on_error=params.continue_on_error,
                    )
            return {
                "success": job.status is JobStatus.COMPLETE,
                "database": params.database,
                "dump_path": str(dump_path),
                "job": job.model_dump(mode="json"),
            }

        try:
            return await asyncio.to_thread(run)
        except WPMigrateError as e:
            self.logger.error("Export failed", database=params.database, error=str(e))
            return {"success": False, "database": params.database, "error": str(e)}
        except OSError as e:
            self.logger.error("Export failed", database=params.database, error=str(e))
            return {"success": False, "database": params.database, "error": f"Cannot write {dump_path}: {e}"}

    async def import_database(
        self,
        database: Annotated[str, Field(description="Configured database name")],
        dump_path: Annotated[str, Field(description="Dump file to import (.sql or .sql.gz)")],
        replacements: Annotated[
            dict[str, str] | None, Field(default=None, description="Find -> replace map")
        ] = None,
        backup_target: Annotated[
            bool, Field(default=True, description="Back up the database before importing")
        ] = True,
        validate_integrity: Annotated[
            bool, Field(default=True, description="Sample serialized columns afterwards")
        ] = True,
        strict_validation: Annotated[
            bool, Field(default=False, description="Fail when corrupted serialized values are found")
        ] = False,
    ) -> dict[str, Any]:
        """Import a dump into a configured database, backing it up first."""
        try:
            params = ImportDatabaseParams(
                database=database,
                dump_path=dump_path,
                replacements=replacements or {},
                backup_target=backup_target,
                validate_integrity=validate_integrity,
                strict_validation=strict_validation,
            )
        except Exception as e:
            return {"success": False, "error": f"Parameter validation failed: {str(e)}"}

        options = ImportOptions(
            backup_target=params.backup_target,
            replacements=params.replacements,
            validate_integrity=params.validate_integrity,
            strict_validation=params.strict_validation,
        )

        def run() -> dict[str, Any]:
            with self._open(params.database) as target:
                importer = DumpImporter(target, self.settings, backup_manager=self.backup_manager)
                job = importer.import_file(Path(params.dump_path), options)
            return {
                "success": job.status is JobStatus.COMPLETE,
                "database": params.database,
                "job": job.model_dump(mode="json"),
            }

        try:
            return await asyncio.to_thread(run)
        except WPMigrateError as e:
            self.logger.error("Import failed", database=params.database, error=str(e))
            return {"success": False, "database": params.database, "error": str(e)}

    async def migrate_database(
        self,
        source: Annotated[str, Field(description="Configured source database")],
        target: Annotated[str, Field(default="", description="Configured target database")] = "",
        connection: Annotated[
            str, Field(default="", description="Configured remote connection to push to")
        ] = "",
        replacements: Annotated[
            dict[str, str] | None,
            Field(default=None, description="Find -> replace map; configured map when omitted"),
        ] = None,
        replace_on: Annotated[
            ReplaceStage, Field(default="export", description="Apply replacements on export or import")
        ] = "export",
        tables: Annotated[
            list[str] | None, Field(default=None, description="Only migrate these tables")
        ] = None,
        exclude_tables: Annotated[
            list[str] | None, Field(default=None, description="Tables to skip")
        ] = None,
        backup_target: Annotated[
            bool, Field(default=True, description="Back up the target first")
        ] = True,
        keep_artifacts: Annotated[
            bool, Field(default=False, description="Keep the dump file afterwards")
        ] = False,
    ) -> dict[str, Any]:
        """Export a database and import it into another one or push it to a remote site.

        Steps: validate, backup, export, transmit (remote only), import
        (local target only), cleanup. The result lists completed steps and,
        on failure, the step that failed.
        """
        try:
            params = MigrateDatabaseParams(
                source=source,
                target=target or None,
                connection=connection or None,
                replacements=replacements or {},
                replace_on=replace_on,
                tables=tables,
                exclude_tables=exclude_tables or [],
                backup_target=backup_target,
                keep_artifacts=keep_artifacts,
            )
        except Exception as e:
            return {"success": False, "error": f"Parameter validation failed: {str(e)}"}

        source_db: Database | None = None
        target_db: Database | None = None
        try:
            transport = (
                HttpTransfer(self.config.get_connection(params.connection), self.settings)
                if params.connection
                else None
            )
            source_db = await asyncio.to_thread(self._open, params.source)
            if params.target:
                target_db = await asyncio.to_thread(self._open, params.target)

            orchestrator = TransferOrchestrator(self.settings, backup_manager=self.backup_manager)
            result = await orchestrator.migrate(
                source_db,
                target_db,
                replacements=params.replacements or self.config.replacements,
                replace_on=params.replace_on,
                transport=transport,
                tables=params.tables,
                exclude_tables=params.exclude_tables,
                backup_target=params.backup_target,
                keep_artifacts=params.keep_artifacts,
            )
        except WPMigrateError as e:
            self.logger.error("Migration failed", source=params.source, error=str(e))
            return {"success": False, "source": params.source, "error": str(e)}
        finally:
            for db in (source_db, target_db):
                if db is not None:
                    db.close()

        return result.model_dump(mode="json")

    async def list_backups(self) -> dict[str, Any]:
        """List database backups, newest first."""
        backups = await asyncio.to_thread(self.backup_manager.list_backups)
        return {
            "success": True,
            "backup_dir": str(self.backup_manager.backup_dir),
            "count": len(backups),
            "backups": [backup.model_dump(mode="json") for backup in backups],
        }

    def _open(self, name: str) -> Database:
        return open_database(self.config.get_database(name), name)

    def run(self) -> None:
        """Run the FastMCP server."""
        try:
            self._initialize_app()
            self.backup_manager.cleanup_expired()

            self.logger.info(
                "Starting wp-migrate server",
                host=self.config.server.host,
                port=self.config.server.port,
            )

            # FastMCP.run() is synchronous and manages its own event loop
            if self.app is None:
                raise RuntimeError("FastMCP app not initialized")
            self.app.run(
                transport="http",
                host=self.config.server.host,
                port=self.config.server.port,
            )

        except Exception as e:
            self.logger.error("Server startup failed", error=str(e))
            raise


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    from dotenv import load_dotenv

    load_dotenv()

    default_host = os.getenv("FASTMCP_HOST", "127.0.0.1")
    default_port = int(os.getenv("FASTMCP_PORT", "8000"))
    default_log_level = os.getenv("LOG_LEVEL", "INFO")
    default_config = os.getenv("WP_MIGRATE_CONFIG", DEFAULT_CONFIG_FILE)

    parser = argparse.ArgumentParser(description="WordPress database migration server")
    parser.add_argument("--host", default=default_host, help="Server host")
    parser.add_argument("--port", type=int, default=default_port, help="Server port")
    parser.add_argument("--config", default=default_config, help="Configuration file path")
    parser.add_argument(
        "--log-level",
        default=default_log_level,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )
    parser.add_argument(
        "--validate-config", action="store_true", help="Validate configuration and exit"
    )

    return parser.parse_args(argv)


def main() -> None:
    """Main entry point."""
    args = parse_args()

    log_dir = _setup_log_directory()
    server_logger = _setup_logging_system(args, log_dir)

    config = _load_and_configure(args, server_logger)
    if config is None:  # Validation-only mode
        return

    server = WPMigrateServer(config, config_path=args.config)
    try:
        server.run()
    except KeyboardInterrupt:
        server_logger.info("Server shutdown requested")
    except Exception as e:
        server_logger.error("Server error", error=str(e))
        sys.exit(1)


def _setup_log_directory() -> str | None:
    """Setup log directory with fallback options."""
    log_dir_candidates = [
        os.getenv("WP_MIGRATE_LOG_DIR"),
        str(get_data_dir() / "logs"),
        str(Path(tempfile.gettempdir()) / "wp-migrate-logs"),
    ]

    for candidate in log_dir_candidates:
        if candidate:
            try:
                candidate_path = Path(candidate)
                candidate_path.mkdir(parents=True, exist_ok=True)
                if candidate_path.is_dir() and os.access(candidate_path, os.W_OK):
                    return str(candidate_path)
            except OSError:
                continue

    print("Warning: Unable to create log directory, using console-only logging", file=sys.stderr)
    return None


def _setup_logging_system(args, log_dir: str | None):
    """Setup logging system, falling back to basic console logging."""
    from .core.logging_config import get_migration_logger, setup_logging

    try:
        max_file_size_mb = int(os.getenv("LOG_FILE_SIZE_MB", "10"))
        if max_file_size_mb < 1 or max_file_size_mb > 100:
            max_file_size_mb = 10
    except ValueError:
        max_file_size_mb = 10

    try:
        setup_logging(
            log_dir=log_dir or tempfile.gettempdir(),
            log_level=args.log_level,
            max_file_size_mb=max_file_size_mb,
        )
        return get_migration_logger()
    except OSError as e:
        print(f"Logging setup failed ({e}), using basic console logging", file=sys.stderr)
        import logging

        logging.basicConfig(
            level=getattr(logging, args.log_level.upper(), logging.INFO),
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        )
        return structlog.get_logger("wp_migrate")


def _load_and_configure(args, server_logger) -> MigrateConfig | None:
    """Load configuration, returning None for validation-only mode."""
    try:
        config = load_config(args.config)
    except WPMigrateError as e:
        server_logger.error("Configuration is invalid", config_path=args.config, error=str(e))
        sys.exit(1)

    # Override server config from CLI args
    config.server.host = args.host
    config.server.port = args.port
    config.server.log_level = args.log_level

    if args.validate_config:
        server_logger.info(
            "Configuration is valid",
            config_path=args.config,
            databases=sorted(config.databases),
            connections=sorted(config.connections),
        )
        return None

    return config


if __name__ == "__main__":
    main()

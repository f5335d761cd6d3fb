"""Shared pytest fixtures for wp-migrate tests."""

from collections.abc import Generator
from pathlib import Path

import pytest

from wp_migrate.core.database.sqlite import SQLiteDatabase
from wp_migrate.core.serialization import serialize
from wp_migrate.core.settings import MigrateSettings

OLD_URL = "http://old.example.com"
NEW_URL = "http://new-site.example.org"


def widget_value(url: str = OLD_URL) -> str:
    """Serialized array shaped like a WordPress widget option."""
    return f'a:2:{{s:3:"url";s:{len(url)}:"{url}";s:4:"text";s:9:"old stuff";}}'


def create_wordpress_tables(db: SQLiteDatabase) -> None:
    """Create minimal wp_options / wp_postmeta tables."""
    db.execute(
        "CREATE TABLE wp_options ("
        "option_id INTEGER PRIMARY KEY, "
        "option_name TEXT NOT NULL, "
        "option_value TEXT, "
        "autoload TEXT DEFAULT 'yes')"
    )
    db.execute(
        "CREATE TABLE wp_postmeta ("
        "meta_id INTEGER PRIMARY KEY, "
        "post_id INTEGER NOT NULL, "
        "meta_key TEXT, "
        "meta_value TEXT)"
    )


def seed_wordpress_site(db: SQLiteDatabase, url: str = OLD_URL) -> None:
    """Insert options and postmeta rows that reference ``url``."""
    options = [
        (1, "siteurl", url),
        (2, "home", url),
        (3, "widget_text", widget_value(url)),
        (4, "blogname", "It's a test; really"),
        (5, "sidebars", serialize({"sidebar-1": ["text-2", "search-3"], "home": f"{url}/home"}).decode()),
    ]
    for option_id, name, value in options:
        db.connection.execute(
            "INSERT INTO wp_options (option_id, option_name, option_value) VALUES (?, ?, ?)",
            (option_id, name, value),
        )
    meta = [
        (1, 10, "_thumbnail_url", f"{url}/wp-content/uploads/a.jpg"),
        (2, 10, "_settings", serialize({"link": f"{url}/about", "count": 3, "ratio": 0.5}).decode()),
        (3, 11, "_empty", None),
    ]
    for meta_id, post_id, key, value in meta:
        db.connection.execute(
            "INSERT INTO wp_postmeta (meta_id, post_id, meta_key, meta_value) VALUES (?, ?, ?, ?)",
            (meta_id, post_id, key, value),
        )


@pytest.fixture
def settings(tmp_path: Path) -> MigrateSettings:
    """Settings with temp directories and no retry delays."""
    return MigrateSettings(
        backup_dir=tmp_path / "backups",
        work_dir=tmp_path / "work",
        chunk_size=2,
        transaction_size=3,
        retry_delay=0,
        retry_max_delay=0,
        http_retries=2,
    )


@pytest.fixture
def replacements() -> dict[str, str]:
    """Replacement map that changes the URL length."""
    return {OLD_URL: NEW_URL}


@pytest.fixture
def source_db(tmp_path: Path) -> Generator[SQLiteDatabase, None, None]:
    """Seeded WordPress-like SQLite source database."""
    db = SQLiteDatabase(tmp_path / "source.db", name="source")
    create_wordpress_tables(db)
    seed_wordpress_site(db)
    yield db
    db.close()


@pytest.fixture
def target_db(tmp_path: Path) -> Generator[SQLiteDatabase, None, None]:
    """Empty SQLite target database."""
    db = SQLiteDatabase(tmp_path / "target.db", name="target")
    yield db
    db.close()


def table_rows(db: SQLiteDatabase, table: str) -> list[dict]:
    """All rows of ``table`` ordered by rowid."""
    cursor = db.connection.execute(f'SELECT * FROM "{table}" ORDER BY rowid')
    columns = [description[0] for description in cursor.description]
    return [dict(zip(columns, row)) for row in cursor.fetchall()]

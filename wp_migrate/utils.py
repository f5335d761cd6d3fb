"""Utility functions for wp-migrate."""

import re
from datetime import UTC, datetime


def format_size(size_bytes: int) -> str:
    """Format bytes into human-readable string.

    Args:
        size_bytes: Size in bytes

    Returns:
        Human-readable size string with appropriate unit

    Examples:
        >>> format_size(0)
        '0 B'
        >>> format_size(1024)
        '1.0 KB'
        >>> format_size(1536870912)
        '1.4 GB'
    """
    if size_bytes == 0:
        return "0 B"

    size = float(size_bytes)
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if size < 1024.0 or unit == "TB":
            return f"{int(size)} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024.0
    return f"{size:.1f} TB"


def timestamp_slug(moment: datetime | None = None) -> str:
    """Sortable UTC timestamp used in artifact file names."""
    return (moment or datetime.now(UTC)).strftime("%Y%m%d_%H%M%S")


def safe_filename(name: str) -> str:
    """Reduce ``name`` to characters safe for a file name."""
    cleaned = re.sub(r"[^A-Za-z0-9._-]+", "_", name).strip("._")
    return cleaned or "database"

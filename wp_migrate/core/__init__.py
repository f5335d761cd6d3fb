"""Core engine: serialization codec, dump export/import, backups and transfers."""

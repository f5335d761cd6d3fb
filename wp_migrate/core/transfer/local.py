"""Directory-based transfer for local handoff between sites on one machine."""

import asyncio
import json
import shutil
from pathlib import Path
from typing import Any

from ...utils import timestamp_slug
from ..exceptions import TransferError
from .base import BaseTransfer, TransferReceipt

OPTIONS_SUFFIX = ".options.json"


class LocalTransfer(BaseTransfer):
    """Copies dumps into and out of a shared directory."""

    def __init__(self, directory: str | Path):
        super().__init__()
        self.directory = Path(directory)

    def get_transfer_type(self) -> str:
        return "local"

    async def validate_requirements(self) -> tuple[bool, str]:
        try:
            await asyncio.to_thread(self.directory.mkdir, parents=True, exist_ok=True)
        except OSError as e:
            return False, f"Transfer directory {self.directory} is not usable: {e}"
        return True, ""

    async def send(self, dump_path: Path, options: dict[str, Any] | None = None) -> TransferReceipt:
        dump_path = Path(dump_path)
        if not dump_path.is_file():
            raise TransferError(f"Dump file not found: {dump_path}")

        target = self.directory / dump_path.name
        try:
            await asyncio.to_thread(self.directory.mkdir, parents=True, exist_ok=True)
            await asyncio.to_thread(shutil.copyfile, dump_path, target)
            if options:
                options_path = target.with_name(target.name + OPTIONS_SUFFIX)
                await asyncio.to_thread(options_path.write_text, json.dumps(options, indent=2))
        except OSError as e:
            raise TransferError(f"Failed to copy {dump_path} to {self.directory}: {e}") from e

        size = target.stat().st_size
        self.logger.info("Dump delivered", source=str(dump_path), destination=str(target), bytes=size)
        return TransferReceipt(
            success=True,
            transfer_type=self.get_transfer_type(),
            destination=str(target),
            bytes_sent=size,
            message=f"Copied to {target}",
        )

    async def receive(self, destination: Path, options: dict[str, Any] | None = None) -> Path:
        """Fetch the newest dump in the directory (or ``options['file']`` when given)."""
        options = options or {}
        if options.get("file"):
            source = self.directory / options["file"]
        else:
            candidates = sorted(
                (
                    path
                    for path in self.directory.glob("*.sql*")
                    if not path.name.endswith(OPTIONS_SUFFIX)
                ),
                key=lambda path: path.stat().st_mtime,
            )
            if not candidates:
                raise TransferError(f"No dump files available in {self.directory}")
            source = candidates[-1]
        if not source.is_file():
            raise TransferError(f"Dump file not found: {source}")

        destination = Path(destination)
        if destination.is_dir() or not destination.suffix:
            destination = destination / f"pulled_{timestamp_slug()}{''.join(source.suffixes)}"
        try:
            await asyncio.to_thread(destination.parent.mkdir, parents=True, exist_ok=True)
            await asyncio.to_thread(shutil.copyfile, source, destination)
        except OSError as e:
            raise TransferError(f"Failed to copy {source} to {destination}: {e}") from e

        self.logger.info("Dump received", source=str(source), destination=str(destination))
        return destination

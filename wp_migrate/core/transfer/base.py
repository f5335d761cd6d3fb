"""Abstract base class for dump transfer methods."""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

import structlog
from pydantic import BaseModel, Field

logger = structlog.get_logger()


class TransferReceipt(BaseModel):
    """Result of sending a dump to a remote site."""

    success: bool = Field(description="Whether the remote accepted the dump")
    transfer_type: str = Field(description="Transport that carried the dump")
    destination: str = Field(description="Endpoint or path the dump was delivered to")
    bytes_sent: int = Field(default=0, description="Size of the transmitted file")
    attempts: int = Field(default=1, description="Requests made, including retries")
    message: str = Field(default="", description="Message returned by the remote")
    remote_response: dict[str, Any] = Field(default_factory=dict, description="Decoded response body")


class BaseTransfer(ABC):
    """Abstract base class for all transfer methods."""

    def __init__(self):
        self.logger = logger.bind(component=self.__class__.__name__.lower())

    @abstractmethod
    async def send(self, dump_path: Path, options: dict[str, Any] | None = None) -> TransferReceipt:
        """Deliver a dump file to the remote side.

        Args:
            dump_path: Local dump file
            options: Import options forwarded to the remote

        Returns:
            Receipt describing the delivery
        """

    @abstractmethod
    async def receive(self, destination: Path, options: dict[str, Any] | None = None) -> Path:
        """Ask the remote side for a dump and store it locally.

        Args:
            destination: Directory or file path for the downloaded dump
            options: Export options forwarded to the remote

        Returns:
            Path of the downloaded dump
        """

    @abstractmethod
    async def validate_requirements(self) -> tuple[bool, str]:
        """Validate that this transfer method can be used.

        Returns:
            Tuple of (is_valid: bool, error_message: str)
        """

    @abstractmethod
    def get_transfer_type(self) -> str:
        """Get the name/type of this transfer method."""

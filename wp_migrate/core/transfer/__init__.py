"""Transfer methods that carry dump files between sites."""

from .base import BaseTransfer, TransferReceipt
from .http import HttpTransfer
from .local import LocalTransfer

__all__ = ["BaseTransfer", "TransferReceipt", "HttpTransfer", "LocalTransfer"]

"""
Receipt storage contract.

Receipts are stored under a generated key and addressed afterwards only
by the public URL the store returns.
"""

import secrets
import string
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import PurePath
from typing import Optional

from daviplata.models.movement import utc_now

_KEY_ALPHABET = string.ascii_lowercase + string.digits
DEFAULT_RECEIPT_FOLDER = "daviplata"


class ReceiptUploadError(Exception):
    """Failed to store a receipt."""
    pass


class ReceiptStorageInterface(ABC):
    """Object storage for receipt files."""

    @property
    def folder(self) -> str:
        """Prefix of every receipt key in this store."""
        return DEFAULT_RECEIPT_FOLDER

    @abstractmethod
    async def store(self, data: bytes, key: str, content_type: str) -> str:
        """
        Store `data` under `key`.

        Returns:
            Publicly resolvable URL of the stored file

        Raises:
            ReceiptUploadError: If the upload fails
        """
        pass


def generate_receipt_key(
    filename: str,
    folder: str = DEFAULT_RECEIPT_FOLDER,
    now: Optional[datetime] = None,
    extension: Optional[str] = None,
) -> str:
    """
    Unique storage key for a receipt.

    Format: {folder}/comprobante_{epoch_ms}_{6 random chars}.{ext}
    """
    now = now or utc_now()
    timestamp = int(now.timestamp() * 1000)
    suffix = "".join(secrets.choice(_KEY_ALPHABET) for _ in range(6))
    ext = (extension or PurePath(filename or "").suffix.lstrip(".") or "jpg").lower()
    return f"{folder}/comprobante_{timestamp}_{suffix}.{ext}"

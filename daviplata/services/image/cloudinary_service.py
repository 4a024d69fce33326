"""
Receipt storage using Cloudinary

DESIGN DECISION: We use Cloudinary because:
1. Hosts both images and PDFs behind a public URL
2. Reliable cloud infrastructure
3. Simple API
4. Free tier sufficient for one organization

This service only stores bytes. Compression happens before it is called
(see daviplata.services.image.compression).
"""

from pathlib import PurePosixPath
from typing import Optional

import cloudinary
import cloudinary.exceptions
import cloudinary.uploader
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from daviplata.config import CloudinarySettings, get_settings
from daviplata.services.image.interface import (
    ReceiptStorageInterface,
    ReceiptUploadError,
)


class CloudinaryReceiptStorage(ReceiptStorageInterface):
    """
    Stores receipts on Cloudinary.

    The key's extension is dropped from the public id; Cloudinary
    keeps the format itself.
    """

    def __init__(self, settings: Optional[CloudinarySettings] = None):
        self._settings = settings or get_settings().cloudinary
        self._configured = False

    @property
    def folder(self) -> str:
        return self._settings.folder

    def _configure(self):
        """Configure Cloudinary SDK."""
        if not self._configured:
            cloudinary.config(
                cloud_name=self._settings.cloud_name,
                api_key=self._settings.api_key,
                api_secret=self._settings.api_secret,
                secure=True,
            )
            self._configured = True

    @staticmethod
    def public_id_for(key: str) -> str:
        path = PurePosixPath(key)
        return str(path.with_suffix("")) if path.suffix else key

    @retry(
        retry=retry_if_exception_type(cloudinary.exceptions.Error),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _upload(self, data: bytes, public_id: str) -> dict:
        return cloudinary.uploader.upload(
            data,
            public_id=public_id,
            resource_type="auto",
            overwrite=False,
        )

    async def store(self, data: bytes, key: str, content_type: str) -> str:
        """
        Upload a receipt and return its public URL.

        Raises:
            ReceiptUploadError: If upload fails
        """
        self._configure()

        try:
            result = self._upload(data, self.public_id_for(key))
        except cloudinary.exceptions.Error as e:
            raise ReceiptUploadError(f"Cloudinary error: {e}") from e
        except Exception as e:
            raise ReceiptUploadError(f"Failed to upload receipt: {e}") from e

        url = result.get("secure_url", result.get("url", ""))
        if not url:
            raise ReceiptUploadError("No URL returned from Cloudinary")
        return url

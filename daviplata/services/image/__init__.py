"""Receipt image services package."""

from daviplata.services.image.cloudinary_service import CloudinaryReceiptStorage
from daviplata.services.image.compression import (
    CompressedImage,
    compress_image,
    fit_within,
)
from daviplata.services.image.interface import (
    ReceiptStorageInterface,
    ReceiptUploadError,
    generate_receipt_key,
)

__all__ = [
    "CloudinaryReceiptStorage",
    "CompressedImage",
    "compress_image",
    "fit_within",
    "ReceiptStorageInterface",
    "ReceiptUploadError",
    "generate_receipt_key",
]

"""Services package."""

from daviplata.services.image import (
    CloudinaryReceiptStorage,
    ReceiptStorageInterface,
    ReceiptUploadError,
    compress_image,
    generate_receipt_key,
)
from daviplata.services.notifications import (
    MovementNotifier,
    WebhookNotifier,
)
from daviplata.services.storage import (
    AuditStorageInterface,
    BackendConnectionError,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsMovementStorage,
    GoogleSheetsUserStorage,
    InMemoryAuditStorage,
    InMemoryMovementStorage,
    InMemoryUserStorage,
    MovementStorageInterface,
    RowNotFoundError,
    StorageError,
    UserStorageInterface,
)

__all__ = [
    # Receipt services
    "CloudinaryReceiptStorage",
    "ReceiptStorageInterface",
    "ReceiptUploadError",
    "compress_image",
    "generate_receipt_key",
    # Notification services
    "MovementNotifier",
    "WebhookNotifier",
    # Storage services
    "AuditStorageInterface",
    "BackendConnectionError",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsMovementStorage",
    "GoogleSheetsUserStorage",
    "InMemoryAuditStorage",
    "InMemoryMovementStorage",
    "InMemoryUserStorage",
    "MovementStorageInterface",
    "RowNotFoundError",
    "StorageError",
    "UserStorageInterface",
]

"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Google Sheets is the production backend; the in-memory backend is used
for local runs and tests.
"""

from daviplata.services.storage.interface import (
    UPDATABLE_FIELDS,
    AuditStorageInterface,
    BackendConnectionError,
    MovementStorageInterface,
    RowNotFoundError,
    StorageError,
    UserStorageInterface,
    apply_update,
)
from daviplata.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsMovementStorage,
    GoogleSheetsUserStorage,
)
from daviplata.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryMovementStorage,
    InMemoryUserStorage,
)

__all__ = [
    # Interfaces
    "UPDATABLE_FIELDS",
    "AuditStorageInterface",
    "MovementStorageInterface",
    "UserStorageInterface",
    "apply_update",
    # Exceptions
    "BackendConnectionError",
    "RowNotFoundError",
    "StorageError",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsMovementStorage",
    "GoogleSheetsUserStorage",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryMovementStorage",
    "InMemoryUserStorage",
]

"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Ships an in-memory backend and a Google Sheets backend; designed to be swappable.
"""

from arrow_ledger.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    NotFoundError,
    StorageError,
    TransactionStorageInterface,
)
from arrow_ledger.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryTransactionStorage,
)
from arrow_ledger.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsTransactionStorage,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "TransactionStorageInterface",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryTransactionStorage",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsTransactionStorage",
]

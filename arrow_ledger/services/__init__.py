"""Services package."""

from arrow_ledger.services.storage import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsTransactionStorage,
    InMemoryAuditStorage,
    InMemoryTransactionStorage,
    NotFoundError,
    StorageError,
    TransactionStorageInterface,
)

__all__ = [
    # Storage services
    "AuditStorageInterface",
    "ConnectionError",
    "DuplicateError",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsTransactionStorage",
    "InMemoryAuditStorage",
    "InMemoryTransactionStorage",
    "NotFoundError",
    "StorageError",
    "TransactionStorageInterface",
]

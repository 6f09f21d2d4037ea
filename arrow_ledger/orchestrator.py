"""
Component Wiring for Arrow Ledger

This module ties together storage, the audit logger and the ledger
service, and is what the HTTP layer calls once at startup.

DESIGN DECISION: If the configured hosted storage can't be reached we
fail at startup instead of silently falling back to memory - a ledger
that quietly forgets everything on restart is worse than no ledger.
"""

import logging
from typing import Optional

from arrow_ledger.audit import AuditLogger
from arrow_ledger.config import get_settings
from arrow_ledger.ledger import LedgerService
from arrow_ledger.services.storage import (
    AuditStorageInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsTransactionStorage,
    InMemoryAuditStorage,
    InMemoryTransactionStorage,
    TransactionStorageInterface,
)


def configure_logging(level: Optional[str] = None) -> None:
    """Route structlog output through stdlib logging at the configured level."""
    logging.basicConfig(
        format="%(message)s",
        level=level or get_settings().app.effective_log_level,
    )


def create_storage(
    backend: Optional[str] = None,
) -> tuple[TransactionStorageInterface, AuditStorageInterface]:
    """
    Build the transaction and audit stores for a backend.

    Args:
        backend: "memory" or "google_sheets". Defaults to
                LEDGER_STORAGE_BACKEND.
    """
    backend = backend or get_settings().ledger.storage_backend

    if backend == "google_sheets":
        sheets_client = GoogleSheetsClient()
        sheets_client.get_spreadsheet()  # fail fast on bad credentials
        return (
            GoogleSheetsTransactionStorage(sheets_client),
            GoogleSheetsAuditStorage(sheets_client),
        )
    if backend == "memory":
        return InMemoryTransactionStorage(), InMemoryAuditStorage()

    raise ValueError(f"Unknown storage backend: {backend}")


def create_app_components(
    backend: Optional[str] = None,
) -> tuple[LedgerService, AuditLogger]:
    """
    Factory function to create all application components.

    Returns:
        (ledger_service, audit_logger)
    """
    configure_logging()
    transaction_storage, audit_storage = create_storage(backend)
    audit_logger = AuditLogger(audit_storage)
    ledger_service = LedgerService(
        storage=transaction_storage,
        audit_logger=audit_logger,
    )
    return ledger_service, audit_logger

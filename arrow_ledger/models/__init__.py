"""
Data Models Package

This package contains all Pydantic models used by Arrow Ledger.
All data flowing through the system must conform to these schemas.
"""

from arrow_ledger.models.transaction import (
    AggregateRow,
    ConfirmationField,
    ReorderResult,
    Transaction,
    TransactionCategory,
    TransactionChanges,
    TransactionPage,
    format_ledger_date,
    order_token,
    parse_ledger_date,
    to_utc_midnight,
)
from arrow_ledger.models.identity import (
    MUTATION_ROLES,
    Actor,
    Role,
)
from arrow_ledger.models.audit import (
    GENESIS_HASH,
    AuditAction,
    AuditEntry,
    AuditEntryBuilder,
    AuditPage,
    verify_entry_chain,
)

__all__ = [
    # Transaction models
    "AggregateRow",
    "ConfirmationField",
    "ReorderResult",
    "Transaction",
    "TransactionCategory",
    "TransactionChanges",
    "TransactionPage",
    "format_ledger_date",
    "order_token",
    "parse_ledger_date",
    "to_utc_midnight",
    # Identity models
    "MUTATION_ROLES",
    "Actor",
    "Role",
    # Audit models
    "GENESIS_HASH",
    "AuditAction",
    "AuditEntry",
    "AuditEntryBuilder",
    "AuditPage",
    "verify_entry_chain",
]

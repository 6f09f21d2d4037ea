"""Ordered ledger package."""

from arrow_ledger.ledger.service import LedgerService

__all__ = ["LedgerService"]

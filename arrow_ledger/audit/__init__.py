"""Audit logging package."""

from arrow_ledger.audit.diff import diff_snapshots
from arrow_ledger.audit.logger import AuditLogger

__all__ = ["AuditLogger", "diff_snapshots"]

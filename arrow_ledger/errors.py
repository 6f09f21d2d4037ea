"""
Ledger Error Taxonomy

Every failure a caller can see is one of these. Each carries a stable
`code` and an HTTP-ish `status` so a thin web layer can render it without
knowing anything about the ledger.

DESIGN DECISION: Errors mean "nothing happened". An operation that raises
one of these has not changed the ledger.
"""

from typing import Any, Optional
from uuid import UUID


class LedgerError(Exception):
    """Base class for errors surfaced to callers."""

    code = "LEDGER_ERROR"
    status = 500

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        """Render as the JSON error body returned to clients."""
        body = {"code": self.code, "message": self.message}
        body.update(self.details)
        return {"error": body}


class ValidationError(LedgerError):
    """Malformed input: bad date, unknown category, bad reorder payload."""

    code = "VALIDATION"
    status = 400


class Forbidden(LedgerError):
    """Role may not perform the operation or touch the field."""

    code = "FORBIDDEN"
    status = 403


class NotFound(LedgerError):
    """Referenced transaction does not exist."""

    code = "NOT_FOUND"
    status = 404


class Conflict(LedgerError):
    """
    The ledger order changed since the caller last read it.

    `current_order` is the authoritative display order so the caller
    can rebase and retry.
    """

    code = "ORDER_CONFLICT"
    status = 409

    def __init__(self, message: str, current_order: list[UUID]):
        super().__init__(
            message,
            details={"currentOrder": [str(tx_id) for tx_id in current_order]},
        )
        self.current_order = list(current_order)


class InternalError(LedgerError):
    """Storage failed. Details are logged server-side, not returned."""

    code = "INTERNAL_ERROR"
    status = 500

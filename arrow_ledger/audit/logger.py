"""
Audit Logger

DESIGN DECISION: Every ledger mutation is logged.
This provides:
1. Complete traceability
2. Debugging capability
3. Users can see who confirmed or moved what

The audit logger:
- Records in the background so it never blocks the ledger
- Gracefully handles failures (a failed audit write never fails or
  rolls back the mutation that triggered it)
- Is at-most-once: failed writes are logged and dropped, not retried
"""

import asyncio
from datetime import datetime
from typing import Any, Optional

import structlog

from arrow_ledger.models.audit import AuditAction, AuditEntry, AuditEntryBuilder
from arrow_ledger.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs entries both to:
    1. Structured local log (for debugging)
    2. The audit store (for persistence and the audit log listing)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger(__name__)
        self._pending: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        """Number of writes scheduled but not yet finished."""
        return len(self._pending)

    def record(self, entry: AuditEntry) -> None:
        """
        Fire-and-forget an audit entry.

        Must be called from inside a running event loop. Returns
        immediately; the write happens in a background task.
        """
        task = asyncio.get_running_loop().create_task(self.log(entry))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def log(self, entry: AuditEntry) -> bool:
        """
        Log an audit entry now.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        Never raises.
        """
        self._logger.info("audit_event", **entry.to_log_dict())

        if self._storage:
            try:
                await self._storage.append_entry(entry)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    entry_id=str(entry.id),
                    action=entry.action.value,
                )
                return False

        return True

    async def flush(self) -> None:
        """Wait for every scheduled write to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def log_login(
        self,
        user_id: str,
        meta: Optional[dict[str, Any]] = None,
    ) -> bool:
        """Log a successful login reported by the identity layer."""
        return await self.log(AuditEntryBuilder.login(user_id=user_id, meta=meta))

    async def log_logout(
        self,
        user_id: str,
        meta: Optional[dict[str, Any]] = None,
    ) -> bool:
        """Log a logout reported by the identity layer."""
        return await self.log(AuditEntryBuilder.logout(user_id=user_id, meta=meta))

    async def query(
        self,
        user_id: Optional[str] = None,
        action: Optional[AuditAction] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[AuditEntry]:
        """
        Read back stored entries, newest first.

        Without storage there is nothing to read.
        """
        if not self._storage:
            return []
        return await self._storage.query_entries(
            user_id=user_id,
            action=action,
            start=start,
            end=end,
            limit=limit,
            offset=offset,
        )

    async def verify(self) -> bool:
        """Check the stored hash chain is intact."""
        if not self._storage:
            return True
        return await self._storage.verify_chain()

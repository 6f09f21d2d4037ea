"""
Audit Models for Arrow Ledger

Every mutation of the ledger (and every login/logout reported by the
identity layer) is logged for audit purposes.
This provides:
1. Complete traceability of who changed what
2. Field-level before/after history per transaction
3. Tamper evidence through a hash chain

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
Entries are frozen models; the store fills in the chain hashes on append.
"""

import hashlib
import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field


# Fields covered by the entry hash
_HASHED_FIELDS = {
    "id",
    "user_id",
    "action",
    "transaction_id",
    "timestamp",
    "before",
    "after",
    "diff",
    "meta",
}

GENESIS_HASH = "0" * 64


class AuditAction(str, Enum):
    """Types of events we audit."""
    # Session events, reported by the identity layer
    LOGIN = "login"
    LOGOUT = "logout"

    # Ledger mutations
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    REORDER = "reorder"
    CHECKBOX = "checkbox"


class AuditEntry(BaseModel):
    """
    A single audit entry.

    This is the core unit of our audit trail.
    Every ledger mutation creates one of these.
    """
    model_config = ConfigDict(frozen=True)

    # Identity
    id: UUID = Field(
        default_factory=uuid4,
        description="Unique entry identifier"
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC)"
    )

    # Who and what
    user_id: Optional[str] = Field(
        default=None,
        description="Acting user"
    )
    action: AuditAction = Field(
        ...,
        description="Type of event"
    )
    transaction_id: Optional[UUID] = Field(
        default=None,
        description="Transaction the event relates to, if any"
    )

    # State capture
    before: Optional[dict[str, Any]] = None
    after: Optional[dict[str, Any]] = None
    diff: dict[str, Any] = Field(default_factory=dict)
    meta: dict[str, Any] = Field(default_factory=dict)

    # Hash chain, set by the audit store
    previous_hash: Optional[str] = None
    entry_hash: Optional[str] = None

    def canonical_json(self) -> str:
        """Deterministic JSON of the hashed content."""
        payload = self.model_dump(mode="json", include=_HASHED_FIELDS)
        return json.dumps(payload, sort_keys=True, separators=(",", ":"))

    def compute_hash(self, previous_hash: str) -> str:
        digest = hashlib.sha256()
        digest.update(previous_hash.encode("utf-8"))
        digest.update(self.canonical_json().encode("utf-8"))
        return digest.hexdigest()

    def chained(self, previous_hash: str) -> "AuditEntry":
        """Copy of this entry linked after `previous_hash`."""
        return self.model_copy(update={
            "previous_hash": previous_hash,
            "entry_hash": self.compute_hash(previous_hash),
        })

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.

        Snapshots are left out; the diff says what changed.
        """
        return {
            "entry_id": str(self.id),
            "event_timestamp": self.timestamp.isoformat(),
            "action": self.action.value,
            "user_id": self.user_id,
            "transaction_id": str(self.transaction_id) if self.transaction_id else None,
            "diff": self.diff,
            "meta": self.meta,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [id, timestamp, user_id, action, transaction_id, before_json,
         after_json, diff_json, meta_json, previous_hash, entry_hash]
        """
        data = self.model_dump(mode="json")
        return [
            data["id"],
            self.timestamp.isoformat(),
            self.user_id or "",
            self.action.value,
            data["transaction_id"] or "",
            json.dumps(data["before"]) if self.before is not None else "",
            json.dumps(data["after"]) if self.after is not None else "",
            json.dumps(data["diff"]) if self.diff else "",
            json.dumps(data["meta"]) if self.meta else "",
            self.previous_hash or "",
            self.entry_hash or "",
        ]


def verify_entry_chain(entries: list[AuditEntry]) -> bool:
    """Check that `entries`, in append order, form an unbroken chain."""
    previous_hash = GENESIS_HASH
    for entry in entries:
        if entry.previous_hash != previous_hash:
            return False
        if entry.entry_hash != entry.compute_hash(previous_hash):
            return False
        previous_hash = entry.entry_hash
    return True


class AuditPage(BaseModel):
    """One page of audit entries, newest first."""
    entries: list[AuditEntry] = Field(default_factory=list)
    page: int = Field(..., ge=1)
    limit: int = Field(..., ge=1)


class AuditEntryBuilder:
    """
    Helper class to build audit entries with common patterns.

    Usage:
        entry = AuditEntryBuilder.created(user_id, snapshot)
        entry = AuditEntryBuilder.reordered(user_id, old_ids, new_ids)
    """

    @staticmethod
    def created(
        user_id: str,
        after: dict[str, Any],
        timestamp: Optional[datetime] = None,
    ) -> AuditEntry:
        return AuditEntry(
            user_id=user_id,
            action=AuditAction.CREATE,
            transaction_id=after["id"],
            timestamp=timestamp or datetime.now(timezone.utc),
            after=after,
        )

    @staticmethod
    def updated(
        user_id: str,
        before: dict[str, Any],
        after: dict[str, Any],
        diff: dict[str, Any],
        timestamp: Optional[datetime] = None,
    ) -> AuditEntry:
        return AuditEntry(
            user_id=user_id,
            action=AuditAction.UPDATE,
            transaction_id=after["id"],
            timestamp=timestamp or datetime.now(timezone.utc),
            before=before,
            after=after,
            diff=diff,
        )

    @staticmethod
    def checkbox_changed(
        user_id: str,
        before: dict[str, Any],
        after: dict[str, Any],
        diff: dict[str, Any],
        field: str,
        timestamp: Optional[datetime] = None,
    ) -> AuditEntry:
        return AuditEntry(
            user_id=user_id,
            action=AuditAction.CHECKBOX,
            transaction_id=after["id"],
            timestamp=timestamp or datetime.now(timezone.utc),
            before=before,
            after=after,
            diff=diff,
            meta={"field": field},
        )

    @staticmethod
    def deleted(
        user_id: str,
        before: dict[str, Any],
        timestamp: Optional[datetime] = None,
    ) -> AuditEntry:
        return AuditEntry(
            user_id=user_id,
            action=AuditAction.DELETE,
            transaction_id=before["id"],
            timestamp=timestamp or datetime.now(timezone.utc),
            before=before,
            after=None,
        )

    @staticmethod
    def reordered(
        user_id: str,
        old_order: list[UUID],
        new_order: list[UUID],
        timestamp: Optional[datetime] = None,
    ) -> AuditEntry:
        return AuditEntry(
            user_id=user_id,
            action=AuditAction.REORDER,
            timestamp=timestamp or datetime.now(timezone.utc),
            diff={
                "before": [str(tx_id) for tx_id in old_order],
                "after": [str(tx_id) for tx_id in new_order],
            },
        )

    @staticmethod
    def login(
        user_id: str,
        meta: Optional[dict[str, Any]] = None,
    ) -> AuditEntry:
        return AuditEntry(
            user_id=user_id,
            action=AuditAction.LOGIN,
            meta=meta or {},
        )

    @staticmethod
    def logout(
        user_id: str,
        meta: Optional[dict[str, Any]] = None,
    ) -> AuditEntry:
        return AuditEntry(
            user_id=user_id,
            action=AuditAction.LOGOUT,
            meta=meta or {},
        )

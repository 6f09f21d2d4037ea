"""
In-Memory Storage Implementation

Used by the test suite and the `memory` backend.

It behaves like a database with a unique index on `rank`: every single
row write is checked immediately, so writing a rank another row still
holds raises DuplicateError even if that other row is about to move.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Optional
from uuid import UUID

from arrow_ledger.models.audit import AuditAction, AuditEntry, GENESIS_HASH, verify_entry_chain
from arrow_ledger.models.transaction import Transaction, TransactionCategory
from arrow_ledger.services.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
    NotFoundError,
    TransactionStorageInterface,
    entry_matches,
    transaction_matches,
)


class InMemoryTransactionStorage(TransactionStorageInterface):
    """Dict-backed transaction store with an eager unique rank index."""

    def __init__(self):
        self._rows: dict[UUID, Transaction] = {}
        self._rank_index: dict[int, UUID] = {}
        self._lock = asyncio.Lock()

    @asynccontextmanager
    async def atomic(self) -> AsyncIterator[None]:
        async with self._lock:
            yield

    async def insert_transaction(self, transaction: Transaction) -> None:
        if transaction.id in self._rows:
            raise DuplicateError(f"Transaction already exists: {transaction.id}")
        if transaction.rank in self._rank_index:
            raise DuplicateError(f"Duplicate rank: {transaction.rank}")
        self._rows[transaction.id] = transaction.model_copy(deep=True)
        self._rank_index[transaction.rank] = transaction.id

    async def get_transaction(self, transaction_id: UUID) -> Optional[Transaction]:
        row = self._rows.get(transaction_id)
        return row.model_copy(deep=True) if row else None

    async def replace_transaction(self, transaction: Transaction) -> None:
        existing = self._rows.get(transaction.id)
        if existing is None:
            raise NotFoundError(f"Transaction not found: {transaction.id}")
        if transaction.rank != existing.rank:
            self._claim_rank(transaction.id, existing.rank, transaction.rank)
        self._rows[transaction.id] = transaction.model_copy(deep=True)

    async def delete_transaction(self, transaction_id: UUID) -> bool:
        row = self._rows.pop(transaction_id, None)
        if row is None:
            return False
        del self._rank_index[row.rank]
        return True

    async def list_transactions(
        self,
        category: Optional[TransactionCategory] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[Transaction]:
        rows = [
            row for row in self._ordered()
            if transaction_matches(row, category, date_from, date_to)
        ]
        end = None if limit is None else offset + limit
        return [row.model_copy(deep=True) for row in rows[offset:end]]

    async def count_transactions(
        self,
        category: Optional[TransactionCategory] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> int:
        return sum(
            1 for row in self._rows.values()
            if transaction_matches(row, category, date_from, date_to)
        )

    async def max_rank(self) -> Optional[int]:
        return max(self._rank_index) if self._rank_index else None

    async def current_order(self) -> list[UUID]:
        return [row.id for row in self._ordered()]

    async def bulk_update_ranks(self, assignments: list[tuple[UUID, int]]) -> int:
        matched = 0
        for transaction_id, rank in assignments:
            row = self._rows.get(transaction_id)
            if row is None:
                continue
            matched += 1
            if row.rank == rank:
                continue
            self._claim_rank(transaction_id, row.rank, rank)
            self._rows[transaction_id] = row.model_copy(update={"rank": rank})
        return matched

    def _claim_rank(self, transaction_id: UUID, old_rank: int, new_rank: int) -> None:
        owner = self._rank_index.get(new_rank)
        if owner is not None and owner != transaction_id:
            raise DuplicateError(f"Duplicate rank: {new_rank}")
        del self._rank_index[old_rank]
        self._rank_index[new_rank] = transaction_id

    def _ordered(self) -> list[Transaction]:
        return sorted(self._rows.values(), key=lambda row: row.rank, reverse=True)


class InMemoryAuditStorage(AuditStorageInterface):
    """List-backed, append-only audit store."""

    def __init__(self):
        self._entries: list[AuditEntry] = []

    async def append_entry(self, entry: AuditEntry) -> AuditEntry:
        previous_hash = self._entries[-1].entry_hash if self._entries else GENESIS_HASH
        stored = entry.chained(previous_hash)
        self._entries.append(stored)
        return stored

    async def query_entries(
        self,
        user_id: Optional[str] = None,
        action: Optional[AuditAction] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[AuditEntry]:
        entries = [
            entry for entry in self._entries
            if entry_matches(entry, user_id, action, start, end)
        ]
        # Sort newest first
        entries.sort(key=lambda e: e.timestamp, reverse=True)
        return entries[offset:offset + limit]

    async def verify_chain(self) -> bool:
        return verify_entry_chain(self._entries)

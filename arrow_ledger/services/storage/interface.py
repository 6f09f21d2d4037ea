"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap Google Sheets for a real database later
2. Use in-memory storage for testing
3. Keep ledger logic decoupled from storage implementation

The interface is intentionally simple - we're not building a full ORM.
Just the operations the ordered ledger needs.

RANK UNIQUENESS: implementations may enforce rank uniqueness eagerly,
i.e. on every single-row write. Callers that move many ranks at once must
therefore stage them through a disjoint range first.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import AsyncContextManager, Optional
from uuid import UUID

from arrow_ledger.models.audit import AuditAction, AuditEntry
from arrow_ledger.models.transaction import Transaction, TransactionCategory


class TransactionStorageInterface(ABC):
    """
    Abstract interface for transaction storage operations.

    Any storage implementation (Google Sheets, PostgreSQL, etc.)
    must implement these methods.
    """

    @abstractmethod
    def atomic(self) -> AsyncContextManager[None]:
        """
        Async context manager that serialises ledger access.

        Everything done inside one `async with storage.atomic():` block
        is invisible to other atomic blocks until it exits. Not reentrant.
        """
        pass

    @abstractmethod
    async def insert_transaction(self, transaction: Transaction) -> None:
        """
        Insert a new transaction.

        Raises:
            DuplicateError: If the id or the rank is already taken
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def get_transaction(self, transaction_id: UUID) -> Optional[Transaction]:
        """
        Retrieve a transaction by id.

        Returns:
            The transaction if found, None otherwise
        """
        pass

    @abstractmethod
    async def replace_transaction(self, transaction: Transaction) -> None:
        """
        Overwrite an existing transaction's fields.

        Raises:
            NotFoundError: If the transaction doesn't exist
            DuplicateError: If the new rank collides with another row
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def delete_transaction(self, transaction_id: UUID) -> bool:
        """
        Delete a transaction by id. Other rows are untouched.

        Returns:
            True if a row was deleted
        """
        pass

    @abstractmethod
    async def list_transactions(
        self,
        category: Optional[TransactionCategory] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[Transaction]:
        """
        List transactions in display order (rank descending).

        Args:
            category: Filter by category
            date_from: Filter transactions on or after this date
            date_to: Filter transactions on or before this date
            limit: Maximum number of results, None for all
            offset: Number of results to skip
        """
        pass

    @abstractmethod
    async def count_transactions(
        self,
        category: Optional[TransactionCategory] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> int:
        """Count transactions matching the filter."""
        pass

    @abstractmethod
    async def max_rank(self) -> Optional[int]:
        """Highest rank in the ledger, None when empty."""
        pass

    @abstractmethod
    async def current_order(self) -> list[UUID]:
        """Ids of the full, unfiltered ledger in display order."""
        pass

    @abstractmethod
    async def bulk_update_ranks(self, assignments: list[tuple[UUID, int]]) -> int:
        """
        Set `rank` on many rows, one conditional update per (id, rank) pair.

        Updates are applied in the given order; rows whose id no longer
        exists are skipped.

        Returns:
            Number of rows matched

        Raises:
            DuplicateError: If a write collides with an existing rank
            StorageError: If the write fails
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_entry(self, entry: AuditEntry) -> AuditEntry:
        """
        Append an audit entry, linking it into the hash chain.

        Returns:
            The stored entry, with previous_hash/entry_hash set
        """
        pass

    @abstractmethod
    async def query_entries(
        self,
        user_id: Optional[str] = None,
        action: Optional[AuditAction] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[AuditEntry]:
        """
        Query entries, newest first.

        Args:
            user_id: Only entries by this user
            action: Only entries of this action
            start: Only entries at or after this instant
            end: Only entries at or before this instant
            limit: Maximum number of results
            offset: Number of results to skip
        """
        pass

    @abstractmethod
    async def verify_chain(self) -> bool:
        """
        Recompute the hash chain over all stored entries.

        Returns:
            False if any entry was altered, reordered or removed
        """
        pass


def transaction_matches(
    transaction: Transaction,
    category: Optional[TransactionCategory] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
) -> bool:
    """Shared filter semantics for backends that filter in Python."""
    if category and transaction.category != category:
        return False
    if date_from and transaction.date < date_from:
        return False
    if date_to and transaction.date > date_to:
        return False
    return True


def entry_matches(
    entry: AuditEntry,
    user_id: Optional[str] = None,
    action: Optional[AuditAction] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> bool:
    if user_id and entry.user_id != user_id:
        return False
    if action and entry.action != action:
        return False
    if start and entry.timestamp < start:
        return False
    if end and entry.timestamp > end:
        return False
    return True


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to write a duplicate id or rank."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass

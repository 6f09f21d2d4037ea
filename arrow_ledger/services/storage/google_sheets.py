"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is the hosted storage backend because:
1. The bookkeepers can view the ledger directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)

TRADEOFFS:
- No multi-row transactions: atomic() is a process-local lock, so run a
  single writer process against a spreadsheet
- No unique index: rank uniqueness is checked here, before each write
- Limited query capabilities (we filter in Python)

Bulk rank rewrites go out as one batch_update call per phase.
"""

import asyncio
import json
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from typing import AsyncIterator, Optional
from uuid import UUID

import gspread
from google.oauth2.service_account import Credentials
from gspread.utils import rowcol_to_a1
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from arrow_ledger.config import get_settings
from arrow_ledger.models.audit import AuditAction, AuditEntry, GENESIS_HASH, verify_entry_chain
from arrow_ledger.models.transaction import Transaction, TransactionCategory
from arrow_ledger.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    NotFoundError,
    StorageError,
    TransactionStorageInterface,
    entry_matches,
    transaction_matches,
)


# Column mappings for Transactions sheet
TRANSACTION_COLUMNS = [
    "id",
    "date",
    "category",
    "amount",
    "notes",
    "confirmation_taylor",
    "confirmation_dad",
    "rank",
    "created_at",
    "updated_at",
]

RANK_COLUMN = TRANSACTION_COLUMNS.index("rank") + 1

# Column mappings for Audit sheet
AUDIT_COLUMNS = [
    "id",
    "timestamp",
    "user_id",
    "action",
    "transaction_id",
    "before_json",
    "after_json",
    "diff_json",
    "meta_json",
    "previous_hash",
    "entry_hash",
]

# Transient API failures (quota, 5xx) are worth another attempt
sheets_retry = retry(
    retry=retry_if_exception_type(gspread.exceptions.APIError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    reraise=True,
)


def _safe_get(row: list, index: int, default: str = "") -> str:
    try:
        return row[index] if row[index] else default
    except IndexError:
        return default


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def _get_or_create_sheet(self, title: str, columns: list[str], rows: int) -> gspread.Worksheet:
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            # Create the sheet with headers
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet

    def get_transactions_sheet(self) -> gspread.Worksheet:
        """Get or create the Transactions worksheet."""
        return self._get_or_create_sheet(
            self._settings.transactions_sheet_name,
            TRANSACTION_COLUMNS,
            rows=1000,
        )

    def get_audit_sheet(self) -> gspread.Worksheet:
        """Get or create the Audit worksheet."""
        return self._get_or_create_sheet(
            self._settings.audit_sheet_name,
            AUDIT_COLUMNS,
            rows=5000,  # More rows for audit log
        )


class GoogleSheetsTransactionStorage(TransactionStorageInterface):
    """
    Google Sheets implementation of transaction storage.

    Transactions are stored as rows in a worksheet, one per row.
    Row order in the sheet is irrelevant; `rank` decides display order.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()
        self._lock = asyncio.Lock()

    @asynccontextmanager
    async def atomic(self) -> AsyncIterator[None]:
        async with self._lock:
            yield

    def _transaction_to_row(self, transaction: Transaction) -> list:
        """Convert a Transaction to a spreadsheet row."""
        return [
            str(transaction.id),
            transaction.date.isoformat(),
            transaction.category.value,
            str(transaction.amount),
            transaction.notes or "",
            str(transaction.confirmation_taylor),
            str(transaction.confirmation_dad),
            transaction.rank,
            transaction.created_at.isoformat(),
            transaction.updated_at.isoformat(),
        ]

    def _row_to_transaction(self, row: list) -> Transaction:
        """Convert a spreadsheet row to a Transaction."""
        return Transaction(
            id=UUID(_safe_get(row, 0)),
            date=datetime.fromisoformat(_safe_get(row, 1)),
            category=TransactionCategory(_safe_get(row, 2)),
            amount=Decimal(_safe_get(row, 3)),
            notes=_safe_get(row, 4) or None,
            confirmation_taylor=_safe_get(row, 5).lower() == "true",
            confirmation_dad=_safe_get(row, 6).lower() == "true",
            rank=int(_safe_get(row, 7)),
            created_at=datetime.fromisoformat(_safe_get(row, 8)),
            updated_at=datetime.fromisoformat(_safe_get(row, 9)),
        )

    @sheets_retry
    def _fetch(self) -> tuple[gspread.Worksheet, list[tuple[int, Transaction]]]:
        """All parsable rows with their 1-based sheet row numbers."""
        sheet = self._client.get_transactions_sheet()
        all_rows = sheet.get_all_values()

        parsed = []
        for idx, row in enumerate(all_rows[1:], start=2):  # Row 1 is header
            if not row or not row[0]:  # Skip empty rows
                continue
            try:
                parsed.append((idx, self._row_to_transaction(row)))
            except (ValueError, ArithmeticError):
                continue  # Skip malformed rows
        return sheet, parsed

    def _load(self) -> tuple[gspread.Worksheet, list[tuple[int, Transaction]]]:
        try:
            return self._fetch()
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to read transactions: {e}")

    async def insert_transaction(self, transaction: Transaction) -> None:
        """Append a transaction row after checking id and rank are free."""
        sheet, rows = self._load()
        for _, existing in rows:
            if existing.id == transaction.id:
                raise DuplicateError(f"Transaction already exists: {transaction.id}")
            if existing.rank == transaction.rank:
                raise DuplicateError(f"Duplicate rank: {transaction.rank}")
        try:
            sheets_retry(sheet.append_row)(
                self._transaction_to_row(transaction),
                value_input_option="RAW",
            )
        except Exception as e:
            raise StorageError(f"Failed to save transaction: {e}")

    async def get_transaction(self, transaction_id: UUID) -> Optional[Transaction]:
        _, rows = self._load()
        for _, transaction in rows:
            if transaction.id == transaction_id:
                return transaction
        return None

    async def replace_transaction(self, transaction: Transaction) -> None:
        """Rewrite an existing transaction's row in place."""
        sheet, rows = self._load()
        target = None
        for idx, existing in rows:
            if existing.id == transaction.id:
                target = idx
            elif existing.rank == transaction.rank:
                raise DuplicateError(f"Duplicate rank: {transaction.rank}")
        if target is None:
            raise NotFoundError(f"Transaction not found: {transaction.id}")
        try:
            sheets_retry(sheet.update)(
                range_name=rowcol_to_a1(target, 1),
                values=[self._transaction_to_row(transaction)],
                value_input_option="RAW",
            )
        except Exception as e:
            raise StorageError(f"Failed to update transaction: {e}")

    async def delete_transaction(self, transaction_id: UUID) -> bool:
        sheet, rows = self._load()
        for idx, transaction in rows:
            if transaction.id == transaction_id:
                try:
                    sheets_retry(sheet.delete_rows)(idx)
                except Exception as e:
                    raise StorageError(f"Failed to delete transaction: {e}")
                return True
        return False

    async def list_transactions(
        self,
        category: Optional[TransactionCategory] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[Transaction]:
        _, rows = self._load()
        transactions = [
            transaction for _, transaction in rows
            if transaction_matches(transaction, category, date_from, date_to)
        ]
        transactions.sort(key=lambda t: t.rank, reverse=True)
        end = None if limit is None else offset + limit
        return transactions[offset:end]

    async def count_transactions(
        self,
        category: Optional[TransactionCategory] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> int:
        _, rows = self._load()
        return sum(
            1 for _, transaction in rows
            if transaction_matches(transaction, category, date_from, date_to)
        )

    async def max_rank(self) -> Optional[int]:
        _, rows = self._load()
        return max((transaction.rank for _, transaction in rows), default=None)

    async def current_order(self) -> list[UUID]:
        return [t.id for t in await self.list_transactions()]

    async def bulk_update_ranks(self, assignments: list[tuple[UUID, int]]) -> int:
        """
        Write many ranks in a single batch_update call.

        Collisions are checked against the sheet as it would look after
        each preceding assignment, the same way a unique index would see
        a sequence of single-row updates. Nothing is written on collision.
        """
        sheet, rows = self._load()
        row_numbers = {transaction.id: idx for idx, transaction in rows}
        ranks = {transaction.id: transaction.rank for _, transaction in rows}
        owners = {transaction.rank: transaction.id for _, transaction in rows}

        updates = []
        for transaction_id, rank in assignments:
            if transaction_id not in row_numbers:
                continue
            owner = owners.get(rank)
            if owner is not None and owner != transaction_id:
                raise DuplicateError(f"Duplicate rank: {rank}")
            owners.pop(ranks[transaction_id], None)
            owners[rank] = transaction_id
            ranks[transaction_id] = rank
            updates.append({
                "range": rowcol_to_a1(row_numbers[transaction_id], RANK_COLUMN),
                "values": [[rank]],
            })

        if updates:
            try:
                sheets_retry(sheet.batch_update)(updates, value_input_option="RAW")
            except Exception as e:
                raise StorageError(f"Failed to update ranks: {e}")
        return len(updates)


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit entries are append-only. Sheet row order is append order,
    which is what the hash chain is verified against.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()
        self._append_lock = asyncio.Lock()

    def _row_to_entry(self, row: list) -> AuditEntry:
        """Convert a spreadsheet row to an AuditEntry."""
        return AuditEntry(
            id=UUID(_safe_get(row, 0)),
            timestamp=datetime.fromisoformat(_safe_get(row, 1)),
            user_id=_safe_get(row, 2) or None,
            action=AuditAction(_safe_get(row, 3)),
            transaction_id=UUID(_safe_get(row, 4)) if _safe_get(row, 4) else None,
            before=json.loads(_safe_get(row, 5)) if _safe_get(row, 5) else None,
            after=json.loads(_safe_get(row, 6)) if _safe_get(row, 6) else None,
            diff=json.loads(_safe_get(row, 7)) if _safe_get(row, 7) else {},
            meta=json.loads(_safe_get(row, 8)) if _safe_get(row, 8) else {},
            previous_hash=_safe_get(row, 9) or None,
            entry_hash=_safe_get(row, 10) or None,
        )

    @sheets_retry
    def _fetch_rows(self) -> tuple[gspread.Worksheet, list[list]]:
        sheet = self._client.get_audit_sheet()
        return sheet, [row for row in sheet.get_all_values()[1:] if row and row[0]]

    def _load(self) -> tuple[gspread.Worksheet, list[AuditEntry]]:
        try:
            sheet, rows = self._fetch_rows()
            return sheet, [self._row_to_entry(row) for row in rows]
        except Exception as e:
            raise StorageError(f"Failed to get audit entries: {e}")

    async def append_entry(self, entry: AuditEntry) -> AuditEntry:
        """Append an audit entry linked to the last stored one."""
        async with self._append_lock:
            try:
                sheet, rows = self._fetch_rows()
                previous_hash = _safe_get(rows[-1], 10) if rows else GENESIS_HASH
                stored = entry.chained(previous_hash)
                sheets_retry(sheet.append_row)(stored.to_sheets_row(), value_input_option="RAW")
                return stored
            except Exception as e:
                raise StorageError(f"Failed to write audit entry: {e}")

    async def query_entries(
        self,
        user_id: Optional[str] = None,
        action: Optional[AuditAction] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[AuditEntry]:
        _, entries = self._load()
        entries = [
            entry for entry in entries
            if entry_matches(entry, user_id, action, start, end)
        ]
        # Sort newest first
        entries.sort(key=lambda e: e.timestamp, reverse=True)
        return entries[offset:offset + limit]

    async def verify_chain(self) -> bool:
        _, entries = self._load()
        return verify_entry_chain(entries)

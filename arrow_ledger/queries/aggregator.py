"""
Ledger Aggregation

DESIGN DECISION: Aggregation is DETERMINISTIC and read-only.
It groups stored transactions and sums them; it never writes and never
estimates. Groups come back sorted by key so repeated calls over the same
ledger return identical results.
"""

from collections import defaultdict
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from arrow_ledger.errors import ValidationError
from arrow_ledger.models.transaction import AggregateRow, Transaction
from arrow_ledger.services.storage import TransactionStorageInterface


SUPPORTED_GROUPINGS = ("month", "category")


def _month_key(transaction: Transaction) -> str:
    return transaction.date.astimezone(timezone.utc).strftime("%Y-%m")


def _category_key(transaction: Transaction) -> str:
    return transaction.category.value


_KEY_FUNCTIONS = {
    "month": _month_key,
    "category": _category_key,
}


class LedgerAggregator:
    """
    Grouped sums over the ledger.

    GUARANTEES:
    - Only reads real rows from storage
    - Every row lands in exactly one group
    - Empty ledger (or empty range) gives an empty list, not an error
    """

    def __init__(self, storage: TransactionStorageInterface):
        self._storage = storage

    @staticmethod
    def check_grouping(by: str) -> None:
        """Raise ValidationError unless `by` is a supported grouping."""
        if by not in SUPPORTED_GROUPINGS:
            raise ValidationError(
                "Invalid aggregation type",
                details={"supported": list(SUPPORTED_GROUPINGS)},
            )

    async def aggregate(
        self,
        by: str,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> list[AggregateRow]:
        """
        Sum amounts and count rows per group.

        Args:
            by: "month" (UTC year-month, keyed YYYY-MM) or "category"
            date_from: Only transactions on or after this date
            date_to: Only transactions on or before this date
        """
        self.check_grouping(by)
        key_for = _KEY_FUNCTIONS[by]

        transactions = await self._storage.list_transactions(
            date_from=date_from,
            date_to=date_to,
        )

        totals: dict[str, Decimal] = defaultdict(Decimal)
        counts: dict[str, int] = defaultdict(int)
        for transaction in transactions:
            key = key_for(transaction)
            totals[key] += transaction.amount
            counts[key] += 1

        return [
            AggregateRow(key=key, total_amount=totals[key], count=counts[key])
            for key in sorted(totals)
        ]

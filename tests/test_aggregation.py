"""Tests for grouped ledger sums."""

from decimal import Decimal

import pytest

from arrow_ledger.errors import ValidationError
from arrow_ledger.models import TransactionCategory
from arrow_ledger.queries import LedgerAggregator


class TestAggregateByCategory:

    @pytest.mark.asyncio
    async def test_sums_and_counts(self, ledger, admin, seed):
        await seed(3, category=TransactionCategory.DURHAM_TRUCK)
        await seed(2, category=TransactionCategory.DEPOSIT, month=2)

        rows = await ledger.aggregate(admin, "category")

        by_key = {row.key: row for row in rows}
        assert by_key["Durham Truck"].total_amount == Decimal("60")
        assert by_key["Durham Truck"].count == 3
        assert by_key["Deposit"].total_amount == Decimal("30")
        assert by_key["Deposit"].count == 2

    @pytest.mark.asyncio
    async def test_sorted_by_key(self, ledger, admin, seed):
        await seed(1, category=TransactionCategory.DURHAM_TRUCK)
        await seed(1, category=TransactionCategory.CONCORD_TRUCK)
        await seed(1, category=TransactionCategory.CREDIT_CARD_CHARGE)

        rows = await ledger.aggregate(admin, "category")
        assert [row.key for row in rows] == ["Concord Truck", "Credit Card Charge", "Durham Truck"]

    @pytest.mark.asyncio
    async def test_negative_amounts_net_out(self, ledger, admin):
        await ledger.create_transaction(admin, date="01/01/2024", category="Deposit", amount=Decimal("100.25"))
        await ledger.create_transaction(admin, date="02/01/2024", category="Deposit", amount=Decimal("-40.25"))

        (row,) = await ledger.aggregate(admin, "category")
        assert row.total_amount == Decimal("60.00")
        assert row.count == 2


class TestAggregateByMonth:

    @pytest.mark.asyncio
    async def test_month_keys(self, ledger, taylor, seed):
        await seed(2, month=1)
        await seed(3, month=3)

        rows = await ledger.aggregate(taylor, "month")
        assert [(row.key, row.count) for row in rows] == [("2024-01", 2), ("2024-03", 3)]
        assert sum(row.count for row in rows) == 5

    @pytest.mark.asyncio
    async def test_date_range(self, ledger, dad, seed):
        await seed(2, month=1)
        await seed(2, month=2)
        await seed(2, month=3)

        rows = await ledger.aggregate(dad, "month", start_date="01/02/2024", end_date="28/02/2024")
        assert [row.key for row in rows] == ["2024-02"]

    @pytest.mark.asyncio
    async def test_empty_ledger(self, ledger, admin):
        assert await ledger.aggregate(admin, "month") == []


class TestAggregateValidation:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("by", ["week", "", "Category", None])
    async def test_unsupported_grouping(self, ledger, admin, by):
        with pytest.raises(ValidationError) as exc_info:
            await ledger.aggregate(admin, by)
        assert exc_info.value.message == "Invalid aggregation type"

    @pytest.mark.asyncio
    async def test_bad_date(self, ledger, admin):
        with pytest.raises(ValidationError):
            await ledger.aggregate(admin, "month", start_date="2024-01-01")

    @pytest.mark.asyncio
    async def test_aggregator_checks_grouping_itself(self, transaction_storage):
        with pytest.raises(ValidationError):
            await LedgerAggregator(transaction_storage).aggregate("year")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

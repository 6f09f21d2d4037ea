"""Query package."""

from arrow_ledger.queries.aggregator import SUPPORTED_GROUPINGS, LedgerAggregator

__all__ = ["SUPPORTED_GROUPINGS", "LedgerAggregator"]

from .aggregator import AggregateResult, Aggregator, FetchFailure
from .insights import SpendingGroup, SpendingSummary, search_transactions, spending_summary

__all__ = [
    "Aggregator",
    "AggregateResult",
    "FetchFailure",
    "SpendingGroup",
    "SpendingSummary",
    "search_transactions",
    "spending_summary",
]

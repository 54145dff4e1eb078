"""Read-only, multi-provider bank data aggregation."""

from .core import (
    Account,
    AggregationError,
    Balance,
    BankfeedError,
    ConfigError,
    ProviderError,
    Transaction,
    TransactionFilter,
    TtlCache,
)
from .providers import BankProvider, ProviderRegistry, default_registry
from .services import AggregateResult, Aggregator, FetchFailure, search_transactions, spending_summary

__version__ = "0.1.0"

__all__ = [
    "Account",
    "AggregateResult",
    "AggregationError",
    "Aggregator",
    "Balance",
    "BankProvider",
    "BankfeedError",
    "ConfigError",
    "FetchFailure",
    "ProviderError",
    "ProviderRegistry",
    "Transaction",
    "TransactionFilter",
    "TtlCache",
    "default_registry",
    "search_transactions",
    "spending_summary",
]

"""Core package exposing the normalized models, errors and shared plumbing."""

from .cache import CacheTTL, TtlCache
from .data_models import Account, AppConfig, Balance, ConfigField, Connection, Transaction, TransactionFilter
from .errors import (
    AggregationError,
    AggregationErrorKind,
    BankfeedError,
    ConfigError,
    ProviderError,
    ProviderErrorKind,
)

__all__ = [
    "Account",
    "AppConfig",
    "Balance",
    "CacheTTL",
    "ConfigField",
    "Connection",
    "Transaction",
    "TransactionFilter",
    "TtlCache",
    "AggregationError",
    "AggregationErrorKind",
    "BankfeedError",
    "ConfigError",
    "ProviderError",
    "ProviderErrorKind",
]

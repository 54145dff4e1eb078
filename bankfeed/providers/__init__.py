"""Bank provider adapters behind one read-only contract."""

from .base import BankProvider, ProviderSettings
from .enable_banking import EnableBankingProvider
from .mock import MockProvider
from .obr import OBRProvider
from .plaid import PlaidProvider
from .registry import ProviderRegistry, default_registry
from .teller import TellerProvider
from .tink import TinkProvider

__all__ = [
    "BankProvider",
    "ProviderSettings",
    "ProviderRegistry",
    "default_registry",
    "PlaidProvider",
    "TellerProvider",
    "TinkProvider",
    "EnableBankingProvider",
    "OBRProvider",
    "MockProvider",
]

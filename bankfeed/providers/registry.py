from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx

from ..core.errors import AggregationError, AggregationErrorKind
from .base import BankProvider
from .enable_banking import EnableBankingProvider
from .mock import MockProvider
from .obr import OBRProvider
from .plaid import PlaidProvider
from .teller import TellerProvider
from .tink import TinkProvider

PROVIDER_CLASSES = (
    PlaidProvider,
    TellerProvider,
    TinkProvider,
    EnableBankingProvider,
    OBRProvider,
    MockProvider,
)


class ProviderRegistry:
    """Provider name -> adapter instance."""

    def __init__(self) -> None:
        self._providers: Dict[str, BankProvider] = {}

    def register(self, provider: BankProvider) -> None:
        self._providers[provider.name] = provider

    def get(self, name: str) -> BankProvider:
        provider = self._providers.get(name)
        if provider is None:
            available = ", ".join(sorted(self._providers)) or "none"
            raise AggregationError(
                AggregationErrorKind.UNKNOWN_PROVIDER,
                f'Unknown provider "{name}". Available: {available}',
            )
        return provider

    def all(self) -> List[BankProvider]:
        return list(self._providers.values())

    def __contains__(self, name: object) -> bool:
        return name in self._providers


def default_registry(transport: Optional[httpx.AsyncBaseTransport] = None, **options: Any) -> ProviderRegistry:
    """Every built-in adapter, sharing one transport and retry policy."""
    registry = ProviderRegistry()
    for provider_cls in PROVIDER_CLASSES:
        registry.register(provider_cls(transport=transport, **options))
    return registry

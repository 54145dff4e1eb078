"""Error taxonomy shared by providers, the cache layer and the aggregator."""
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Iterable, Optional


class ProviderErrorKind(str, Enum):
    AUTH = "auth"
    RATE_LIMIT = "rate_limit"
    NOT_FOUND = "not_found"
    MALFORMED_RESPONSE = "malformed_response"
    NETWORK = "network"


class AggregationErrorKind(str, Enum):
    UNKNOWN_CONNECTION = "unknown_connection"
    UNKNOWN_ACCOUNT = "unknown_account"
    UNKNOWN_PROVIDER = "unknown_provider"
    TIMEOUT = "timeout"


RETRYABLE_KINDS = frozenset({ProviderErrorKind.RATE_LIMIT, ProviderErrorKind.NETWORK})

_KIND_LABELS = {
    ProviderErrorKind.AUTH: "authorization rejected",
    ProviderErrorKind.RATE_LIMIT: "rate limited",
    ProviderErrorKind.NOT_FOUND: "resource not found",
    ProviderErrorKind.MALFORMED_RESPONSE: "unexpected response",
    ProviderErrorKind.NETWORK: "provider unreachable",
}


class BankfeedError(Exception):
    """Root of every caller-facing error: a machine kind plus a readable message."""

    kind: str = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": str(getattr(self.kind, "value", self.kind)), "message": self.message}


class ConfigError(BankfeedError):
    """A connection config does not satisfy the provider's required fields."""

    kind = "config"

    def __init__(self, provider: str, problems: Iterable[str]) -> None:
        self.provider = provider
        self.problems = list(problems)
        super().__init__(f"Invalid {provider} config: " + "; ".join(self.problems))


class ProviderError(BankfeedError):
    """A provider call failed. ``status_code`` carries the HTTP status when there was one."""

    def __init__(
        self,
        provider: str,
        kind: ProviderErrorKind,
        provider_message: str = "",
        status_code: Optional[int] = None,
    ) -> None:
        self.provider = provider
        self.kind = kind
        self.provider_message = provider_message
        self.status_code = status_code
        super().__init__(self._describe())

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS

    def _describe(self) -> str:
        label = _KIND_LABELS[self.kind]
        status = f" (HTTP {self.status_code})" if self.status_code is not None else ""
        detail = _excerpt(self.provider_message)
        return f"{self.provider}: {label}{status}" + (f": {detail}" if detail else "")


class AggregationError(BankfeedError):
    """Terminal aggregation failure (unknown id, provider, or overall timeout)."""

    def __init__(self, kind: AggregationErrorKind, message: str) -> None:
        self.kind = kind
        super().__init__(message)


def _excerpt(text: str, limit: int = 200) -> str:
    text = " ".join((text or "").split())
    if len(text) > limit:
        return text[: limit - 3] + "..."
    return text

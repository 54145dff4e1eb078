from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Hashable, NamedTuple, Optional

from cachetools import TLRUCache

logger = logging.getLogger("bankfeed.core.cache")


@dataclass(frozen=True)
class CacheTTL:
    """Seconds each kind of data stays fresh."""

    accounts: float = 3600
    transactions: float = 900
    balances: float = 300


class _Entry(NamedTuple):
    value: Any
    ttl: float


def _entry_ttu(_key: Hashable, entry: _Entry, now: float) -> float:
    return now + entry.ttl


def _freeze(value: Any) -> Any:
    if isinstance(value, list):
        return tuple(value)
    return value


class TtlCache:
    """Process-lifetime cache where every entry carries its own TTL.

    An expired entry reads as missing. Expired entries are purged on the next write.
    """

    def __init__(self, maxsize: int = 1024, timer: Callable[[], float] = time.monotonic) -> None:
        self._data: TLRUCache = TLRUCache(maxsize=maxsize, ttu=_entry_ttu, timer=timer)

    def get(self, key: str) -> Optional[Any]:
        entry = self._data.get(key)
        if entry is None:
            return None
        logger.info("Cache hit %s", key)
        return entry.value

    def set(self, key: str, value: Any, ttl: float) -> None:
        self._data[key] = _Entry(_freeze(value), float(ttl))

    def clear(self) -> None:
        self._data.clear()

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __len__(self) -> int:
        self._data.expire()
        return len(self._data)


def accounts_key(connection_id: str) -> str:
    return f"accounts:{connection_id}"


def transactions_key(connection_id: str, account_id: str, date_from: Any, date_to: Any) -> str:
    return f"tx:{connection_id}:{account_id}:{date_from or ''}:{date_to or ''}"


def balances_key(connection_id: str, account_id: str) -> str:
    return f"bal:{connection_id}:{account_id}"

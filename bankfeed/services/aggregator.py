"""
Aggregator: fans provider calls out across connections and accounts.

- list_accounts / list_transactions / get_balances: cache-checked, concurrent
  (bounded by a semaphore), with per-account failures collected instead of
  aborting the whole call
- the whole call runs under one timeout that cancels everything in flight
"""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, List, Optional, Sequence, Tuple, TypeVar

import httpx

from ..config import Settings, load_app_config, settings as default_settings
from ..core.cache import CacheTTL, TtlCache, accounts_key, balances_key, transactions_key
from ..core.data_models import Account, Balance, ConfigDefaults, Connection, Transaction, TransactionFilter
from ..core.errors import AggregationError, AggregationErrorKind, BankfeedError
from ..providers.base import BankProvider
from ..providers.registry import ProviderRegistry, default_registry

logger = logging.getLogger("bankfeed.services.aggregator")

T = TypeVar("T")


@dataclass
class FetchFailure:
    connection_id: str
    account_id: Optional[str]
    kind: str
    message: str


@dataclass
class AggregateResult(Generic[T]):
    items: List[T] = field(default_factory=list)
    failures: List[FetchFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def partial(self) -> bool:
        return bool(self.failures) and bool(self.items)


@dataclass
class _Target:
    connection: Connection
    provider: BankProvider
    account_id: str


class Aggregator:
    """Read-only view over every configured connection."""

    def __init__(
        self,
        connections: Sequence[Connection],
        *,
        cache: TtlCache,
        registry: ProviderRegistry,
        settings: Optional[Settings] = None,
        defaults: Optional[ConfigDefaults] = None,
    ) -> None:
        current = settings or default_settings
        defaults = defaults or ConfigDefaults()
        self._connections = {connection.id: connection for connection in connections}
        self._cache = cache
        self._registry = registry
        self._ttl: CacheTTL = current.cache_ttl
        self._transaction_days = defaults.transaction_days or current.transaction_days
        self._default_currency = defaults.currency or current.default_currency
        self._timeout = current.aggregate_timeout
        self._max_concurrency = max(1, current.max_concurrency)

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "Aggregator":
        current = settings or default_settings
        registry = default_registry(
            transport,
            delays=current.rate_limit_delays,
            timeout=httpx.Timeout(current.request_timeout, connect=5.0),
        )
        app_config = load_app_config(current)
        return cls(
            app_config.connections,
            cache=TtlCache(maxsize=current.cache_size),
            registry=registry,
            settings=current,
            defaults=app_config.defaults,
        )

    @property
    def default_currency(self) -> str:
        return self._default_currency

    @property
    def connections(self) -> List[Connection]:
        return list(self._connections.values())

    def connection(self, connection_id: str) -> Connection:
        found = self._connections.get(connection_id)
        if found is None:
            available = ", ".join(self._connections) or "none"
            raise AggregationError(
                AggregationErrorKind.UNKNOWN_CONNECTION,
                f'Connection "{connection_id}" not found. Available: {available}',
            )
        return found

    # public operations

    async def list_accounts(self, connection_id: Optional[str] = None) -> AggregateResult[Account]:
        return await self._bounded(self._list_accounts(connection_id))

    async def list_transactions(
        self,
        connection_id: Optional[str] = None,
        account_id: Optional[str] = None,
        filter: Optional[TransactionFilter] = None,
    ) -> AggregateResult[Transaction]:
        return await self._bounded(self._list_transactions(connection_id, account_id, filter))

    async def get_balances(
        self,
        connection_id: Optional[str] = None,
        account_id: Optional[str] = None,
    ) -> AggregateResult[Balance]:
        return await self._bounded(self._get_balances(connection_id, account_id))

    # internals

    async def _bounded(self, work: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(work, timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            raise AggregationError(
                AggregationErrorKind.TIMEOUT,
                f"Aggregated call did not finish within {self._timeout:g}s",
            ) from exc

    def _resolve(self, connection_id: Optional[str]) -> List[Tuple[Connection, BankProvider]]:
        connections = [self.connection(connection_id)] if connection_id else self.connections
        return [(connection, self._registry.get(connection.provider)) for connection in connections]

    async def _guarded(
        self,
        semaphore: asyncio.Semaphore,
        failures: List[FetchFailure],
        connection: Connection,
        account_id: Optional[str],
        fetch: Callable[[], Awaitable[List[Any]]],
    ) -> List[Any]:
        async with semaphore:
            try:
                return await fetch()
            except BankfeedError as exc:
                kind = str(getattr(exc.kind, "value", exc.kind))
                logger.warning(
                    "Fetch failed for connection=%s account=%s: %s", connection.id, account_id, exc.message
                )
                failures.append(FetchFailure(connection.id, account_id, kind, exc.message))
                return []

    async def _accounts_of(self, connection: Connection, provider: BankProvider) -> List[Account]:
        key = accounts_key(connection.id)
        cached = self._cache.get(key)
        if cached is not None:
            return list(cached)
        accounts = [
            account.model_copy(update={"connection_id": connection.id})
            for account in await provider.list_accounts(connection.config)
        ]
        self._cache.set(key, accounts, self._ttl.accounts)
        return accounts

    async def _collect_accounts(
        self,
        resolved: List[Tuple[Connection, BankProvider]],
        semaphore: asyncio.Semaphore,
        failures: List[FetchFailure],
    ) -> List[Tuple[Connection, BankProvider, List[Account]]]:
        listings = await asyncio.gather(
            *[
                self._guarded(
                    semaphore, failures, connection, None,
                    lambda connection=connection, provider=provider: self._accounts_of(connection, provider),
                )
                for connection, provider in resolved
            ]
        )
        return [(connection, provider, accounts) for (connection, provider), accounts in zip(resolved, listings)]

    async def _list_accounts(self, connection_id: Optional[str]) -> AggregateResult[Account]:
        semaphore = asyncio.Semaphore(self._max_concurrency)
        failures: List[FetchFailure] = []
        listings = await self._collect_accounts(self._resolve(connection_id), semaphore, failures)
        items = [account for _, _, accounts in listings for account in accounts]
        return AggregateResult(items=items, failures=failures)

    async def _targets(
        self,
        connection_id: Optional[str],
        account_id: Optional[str],
        semaphore: asyncio.Semaphore,
        failures: List[FetchFailure],
    ) -> List[_Target]:
        listings = await self._collect_accounts(self._resolve(connection_id), semaphore, failures)
        targets = [
            _Target(connection, provider, account.uid)
            for connection, provider, accounts in listings
            for account in accounts
            if account_id is None or account.uid == account_id
        ]
        if account_id is not None and not targets and not failures:
            raise AggregationError(
                AggregationErrorKind.UNKNOWN_ACCOUNT,
                f'Account "{account_id}" not found'
                + (f' in connection "{connection_id}"' if connection_id else " in any connection"),
            )
        return targets

    def window(self, filter: Optional[TransactionFilter] = None) -> TransactionFilter:
        """``filter`` with the default look-back window filled in."""
        today = dt.date.today()
        base = filter or TransactionFilter()
        return base.model_copy(
            update={
                "date_from": base.date_from or today - dt.timedelta(days=self._transaction_days),
                "date_to": base.date_to or today,
            }
        )

    async def _transactions_of(self, target: _Target, window: TransactionFilter) -> List[Transaction]:
        key = transactions_key(target.connection.id, target.account_id, window.date_from, window.date_to)
        cached = self._cache.get(key)
        if cached is not None:
            return list(cached)
        transactions = await target.provider.list_transactions(
            target.connection.config, target.account_id, window.date_window()
        )
        self._cache.set(key, transactions, self._ttl.transactions)
        return transactions

    async def _list_transactions(
        self,
        connection_id: Optional[str],
        account_id: Optional[str],
        filter: Optional[TransactionFilter],
    ) -> AggregateResult[Transaction]:
        semaphore = asyncio.Semaphore(self._max_concurrency)
        failures: List[FetchFailure] = []
        window = self.window(filter)
        targets = await self._targets(connection_id, account_id, semaphore, failures)

        batches = await asyncio.gather(
            *[
                self._guarded(
                    semaphore, failures, target.connection, target.account_id,
                    lambda target=target: self._transactions_of(target, window),
                )
                for target in targets
            ]
        )
        merged = [tx for batch in batches for tx in batch]
        selected = window.model_copy(update={"limit": None}).apply(merged)
        selected.sort(key=lambda tx: tx.date, reverse=True)
        if window.limit is not None:
            selected = selected[: window.limit]
        logger.info(
            "Aggregated %d transactions from %d accounts (%d failures)", len(selected), len(targets), len(failures)
        )
        return AggregateResult(items=selected, failures=failures)

    async def _balances_of(self, target: _Target) -> List[Balance]:
        key = balances_key(target.connection.id, target.account_id)
        cached = self._cache.get(key)
        if cached is not None:
            return list(cached)
        balances = await target.provider.get_balance(target.connection.config, target.account_id)
        self._cache.set(key, balances, self._ttl.balances)
        return balances

    async def _get_balances(
        self,
        connection_id: Optional[str],
        account_id: Optional[str],
    ) -> AggregateResult[Balance]:
        semaphore = asyncio.Semaphore(self._max_concurrency)
        failures: List[FetchFailure] = []
        targets = await self._targets(connection_id, account_id, semaphore, failures)
        batches = await asyncio.gather(
            *[
                self._guarded(
                    semaphore, failures, target.connection, target.account_id,
                    lambda target=target: self._balances_of(target),
                )
                for target in targets
            ]
        )
        return AggregateResult(items=[balance for batch in batches for balance in batch], failures=failures)

"""Read-only provider contract shared by every bank adapter."""
from __future__ import annotations

import datetime as dt
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    ClassVar,
    List,
    Literal,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Type,
    TypeVar,
    get_args,
    get_origin,
)

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from ..core.data_models import Account, Balance, ConfigField, Transaction, TransactionFilter
from ..core.errors import ConfigError
from ..core.http import DEFAULT_TIMEOUT, RATE_LIMIT_DELAYS, SleepFn, call_with_backoff, malformed, request_json

logger = logging.getLogger("bankfeed.providers")

T = TypeVar("T")

DEFAULT_TRANSACTION_DAYS = 90


class ProviderSettings(BaseModel):
    """Base for per-provider connection config. Accepts camelCase or snake_case keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="ignore",
        frozen=True,
    )


def setting(label: str, *, default: Any = ..., secret: bool = False, path: bool = False) -> Any:
    """Declare a config field together with what a setup prompt needs to know about it."""
    extra = {"secret": secret, "kind": "path" if path else "string"}
    return Field(default, title=label, json_schema_extra=extra)


def describe_settings(model: Type[ProviderSettings]) -> List[ConfigField]:
    fields: List[ConfigField] = []
    for name, info in model.model_fields.items():
        extra = info.json_schema_extra if isinstance(info.json_schema_extra, dict) else {}
        kind = extra.get("kind", "string")
        options: Optional[List[str]] = None
        if get_origin(info.annotation) is Literal:
            kind = "select"
            options = [str(option) for option in get_args(info.annotation)]
        default = None
        if not info.is_required() and info.default is not None:
            default = str(info.default)
        fields.append(
            ConfigField(
                name=to_camel(name),
                label=info.title or name,
                type=kind,
                required=info.is_required() or kind == "select",
                secret=bool(extra.get("secret", False)),
                options=options,
                default=default,
            )
        )
    return fields


def _problems(exc: ValidationError) -> List[str]:
    problems = []
    for error in exc.errors():
        where = ".".join(str(part) for part in error.get("loc", ())) or "config"
        problems.append(f"{where}: {error.get('msg', 'invalid')}")
    return problems


def default_window(
    filter: Optional[TransactionFilter], days: int = DEFAULT_TRANSACTION_DAYS
) -> Tuple[dt.date, dt.date]:
    today = dt.date.today()
    date_from = filter.date_from if filter and filter.date_from else today - dt.timedelta(days=days)
    date_to = filter.date_to if filter and filter.date_to else today
    return date_from, date_to


def parse_date(value: Any) -> Optional[dt.date]:
    """ISO date or datetime string -> date; anything else -> None."""
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    try:
        return dt.date.fromisoformat(text[:10])
    except ValueError:
        return None


class BankProvider(ABC):
    """One banking API translated into Account / Transaction / Balance.

    The contract has no mutating operation. Every call validates the config
    first so a bad connection fails with ``ConfigError`` before any I/O.
    """

    name: ClassVar[str]
    display_name: ClassVar[str]
    settings_model: ClassVar[Type[ProviderSettings]]

    def __init__(
        self,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        delays: Sequence[float] = RATE_LIMIT_DELAYS,
        sleep: Optional[SleepFn] = None,
        timeout: httpx.Timeout = DEFAULT_TIMEOUT,
    ) -> None:
        self._transport = transport
        self._delays = tuple(delays)
        self._sleep = sleep
        self._timeout = timeout

    def validate_config(self, config: Mapping[str, Any]) -> ProviderSettings:
        try:
            return self.settings_model.model_validate(dict(config or {}))
        except ValidationError as exc:
            raise ConfigError(self.name, _problems(exc)) from exc

    def config_schema(self) -> List[ConfigField]:
        return describe_settings(self.settings_model)

    @abstractmethod
    async def list_accounts(self, config: Mapping[str, Any]) -> List[Account]:
        ...

    @abstractmethod
    async def list_transactions(
        self,
        config: Mapping[str, Any],
        account_id: str,
        filter: Optional[TransactionFilter] = None,
    ) -> List[Transaction]:
        ...

    @abstractmethod
    async def get_balance(self, config: Mapping[str, Any], account_id: str) -> List[Balance]:
        ...

    @asynccontextmanager
    async def _client(self, base_url: str, **kwargs: Any) -> AsyncIterator[httpx.AsyncClient]:
        client = httpx.AsyncClient(
            base_url=base_url,
            transport=self._transport,
            timeout=self._timeout,
            **kwargs,
        )
        try:
            yield client
        finally:
            await client.aclose()

    async def _call(self, fetch: Callable[[], Awaitable[T]]) -> T:
        return await call_with_backoff(fetch, delays=self._delays, sleep=self._sleep)

    async def _get_json(self, client: httpx.AsyncClient, method: str, url: str, **kwargs: Any) -> Any:
        """Single read call under the retry policy."""
        return await self._call(lambda: request_json(client, method, url, provider=self.name, **kwargs))

    def _finish(
        self,
        transactions: List[Transaction],
        filter: Optional[TransactionFilter],
        account_id: str,
    ) -> List[Transaction]:
        logger.info("%s: fetched %d transactions for account %s", self.name, len(transactions), account_id)
        if filter is None:
            return transactions
        return filter.apply(transactions)

    def _normalize(self, records: Sequence[Any], convert: Callable[[Any], T]) -> List[T]:
        """Map raw records through ``convert``; shape violations become ``malformed_response``."""
        try:
            return [convert(record) for record in records]
        except (KeyError, TypeError, ValueError, ArithmeticError) as exc:
            raise malformed(self.name, f"cannot normalize record: {exc!r}") from exc

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Optional, Sequence, TypeVar

import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_chain,
    wait_fixed,
    wait_none,
)

from .errors import ProviderError, ProviderErrorKind

logger = logging.getLogger("bankfeed.core.http")

T = TypeVar("T")
SleepFn = Callable[[float], Awaitable[Any]]

DEFAULT_TIMEOUT = httpx.Timeout(30.0, connect=5.0)
# Seconds between attempts on 429 / network failures; one retry per entry.
RATE_LIMIT_DELAYS: Sequence[float] = (5.0, 15.0, 30.0)


def _is_retryable(exc: BaseException) -> bool:
    """Retry only rate limits and transport/5xx failures."""
    return isinstance(exc, ProviderError) and exc.retryable


def backoff(delays: Sequence[float] = RATE_LIMIT_DELAYS, sleep: Optional[SleepFn] = None) -> AsyncRetrying:
    """Fixed-schedule retry policy: ``len(delays) + 1`` attempts at most."""
    delays = tuple(delays)
    options: dict = {
        "stop": stop_after_attempt(len(delays) + 1),
        "wait": wait_chain(*[wait_fixed(d) for d in delays]) if delays else wait_none(),
        "retry": retry_if_exception(_is_retryable),
        "reraise": True,
        "before_sleep": before_sleep_log(logger, logging.WARNING),
    }
    if sleep is not None:
        options["sleep"] = sleep
    return AsyncRetrying(**options)


async def call_with_backoff(
    fetch: Callable[[], Awaitable[T]],
    *,
    delays: Sequence[float] = RATE_LIMIT_DELAYS,
    sleep: Optional[SleepFn] = None,
) -> T:
    async for attempt in backoff(delays, sleep):
        with attempt:
            return await fetch()
    raise AssertionError("unreachable: tenacity reraises on the final attempt")


def kind_for_status(status_code: int) -> ProviderErrorKind:
    if status_code in (401, 403):
        return ProviderErrorKind.AUTH
    if status_code == 404:
        return ProviderErrorKind.NOT_FOUND
    if status_code == 429:
        return ProviderErrorKind.RATE_LIMIT
    if status_code >= 500:
        return ProviderErrorKind.NETWORK
    return ProviderErrorKind.MALFORMED_RESPONSE


def _provider_message(response: httpx.Response) -> str:
    """Pull the provider's own error code/message out of an error body."""
    try:
        body = response.json()
    except ValueError:
        return response.text
    if not isinstance(body, dict):
        return response.text
    error = body.get("error")
    if isinstance(error, dict):
        body = {**body, **error}
    code = body.get("error_code") or body.get("code")
    message = (
        body.get("error_message")
        or body.get("message")
        or body.get("detail")
        or (error if isinstance(error, str) else None)
    )
    parts = [str(part) for part in (code, message) if part]
    return " - ".join(parts) if parts else response.text


def error_for_response(provider: str, response: httpx.Response) -> ProviderError:
    return ProviderError(
        provider,
        kind_for_status(response.status_code),
        _provider_message(response),
        status_code=response.status_code,
    )


async def request_json(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    provider: str,
    **kwargs: Any,
) -> Any:
    """One HTTP round trip; every failure comes back as a ``ProviderError``."""
    logger.debug("%s %s %s", provider, method, url)
    try:
        response = await client.request(method, url, **kwargs)
    except httpx.TimeoutException as exc:
        raise ProviderError(provider, ProviderErrorKind.NETWORK, f"timed out: {exc}") from exc
    except httpx.TransportError as exc:
        raise ProviderError(provider, ProviderErrorKind.NETWORK, str(exc)) from exc

    if response.is_error:
        raise error_for_response(provider, response)

    try:
        return response.json()
    except ValueError as exc:
        raise ProviderError(
            provider,
            ProviderErrorKind.MALFORMED_RESPONSE,
            f"body is not JSON: {response.text}",
            status_code=response.status_code,
        ) from exc


def malformed(provider: str, detail: str) -> ProviderError:
    return ProviderError(provider, ProviderErrorKind.MALFORMED_RESPONSE, detail)

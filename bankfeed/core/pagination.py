"""Pagination drivers.

Each driver owns the loop for one cursor protocol and hands back every record
in page order. The callables passed in do the actual request (and usually go
through ``call_with_backoff``), so a failed page propagates instead of
silently ending the walk.
"""
from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Awaitable, Callable, List, Optional, Tuple

logger = logging.getLogger("bankfeed.core.pagination")

TokenPage = Callable[[Optional[str]], Awaitable[Tuple[List[Any], Optional[str]]]]
OffsetPage = Callable[[int, int], Awaitable[Tuple[List[Any], int]]]
CursorPage = Callable[[Optional[str]], Awaitable[List[Any]]]


async def paginate_token(fetch_page: TokenPage, *, label: str = "") -> List[Any]:
    """Continuation-key / next-page-token protocol. Empty token ends the walk."""
    items: List[Any] = []
    token: Optional[str] = None
    page = 1
    while True:
        batch, token = await fetch_page(token)
        items.extend(batch)
        logger.info("Pagination checkpoint %s page=%d items=%d next=%s", label, page, len(batch), bool(token))
        if not token:
            break
        page += 1
    return items


async def paginate_offset(fetch_page: OffsetPage, page_size: int, *, label: str = "") -> List[Any]:
    """Offset + declared total protocol."""
    items: List[Any] = []
    offset = 0
    page = 1
    while True:
        batch, total = await fetch_page(offset, page_size)
        items.extend(batch)
        offset += len(batch)
        logger.info("Pagination checkpoint %s page=%d offset=%d total=%d", label, page, offset, total)
        if not batch or offset >= total:
            break
        page += 1
    return items


async def paginate_cursor(
    fetch_page: CursorPage,
    page_size: int,
    *,
    id_of: Callable[[Any], str],
    date_of: Callable[[Any], Optional[dt.date]],
    date_from: Optional[dt.date] = None,
    date_to: Optional[dt.date] = None,
    label: str = "",
) -> List[Any]:
    """From-id cursor protocol over newest-first records.

    Stops on a short page, or once the page tail is older than ``date_from``
    provided a record inside ``[date_from, date_to]`` has already been seen.
    """
    items: List[Any] = []
    from_id: Optional[str] = None
    seen_in_window = False
    page = 1
    while True:
        batch = await fetch_page(from_id)
        items.extend(batch)
        logger.info("Pagination checkpoint %s page=%d items=%d from_id=%s", label, page, len(batch), from_id)
        if len(batch) < page_size:
            break

        if date_from is not None:
            dates = [d for d in (date_of(record) for record in batch) if d is not None]
            if any(d >= date_from and (date_to is None or d <= date_to) for d in dates):
                seen_in_window = True
            last_date = date_of(batch[-1])
            if seen_in_window and last_date is not None and last_date < date_from:
                break

        from_id = id_of(batch[-1])
        page += 1
    return items

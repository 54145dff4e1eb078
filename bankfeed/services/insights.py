from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Literal, Optional

from ..core.data_models import Transaction, TransactionFilter
from .aggregator import AggregateResult, Aggregator, FetchFailure

logger = logging.getLogger("bankfeed.services.insights")

CENT = Decimal("0.01")
GroupBy = Literal["merchant", "category"]


@dataclass
class SpendingGroup:
    name: str
    total_spent: Decimal
    transaction_count: int
    currency: str


@dataclass
class SpendingSummary:
    groups: List[SpendingGroup]
    total_spent: Decimal
    currency: str
    period: str
    failures: List[FetchFailure] = field(default_factory=list)


def _matches(tx: Transaction, needle: str) -> bool:
    fields = (tx.description, tx.merchant_name, tx.reference)
    return any(needle in value.lower() for value in fields if value)


async def search_transactions(
    aggregator: Aggregator,
    query: str,
    *,
    connection_id: Optional[str] = None,
    date_from: Optional[dt.date] = None,
    date_to: Optional[dt.date] = None,
    limit: int = 50,
) -> AggregateResult[Transaction]:
    """Case-insensitive substring search over description, merchant and reference."""
    fetched = await aggregator.list_transactions(
        connection_id, filter=TransactionFilter(date_from=date_from, date_to=date_to)
    )
    needle = query.strip().lower()
    matches = [tx for tx in fetched.items if _matches(tx, needle)][:limit]
    logger.info("Search %r matched %d of %d transactions", query, len(matches), len(fetched.items))
    return AggregateResult(items=matches, failures=fetched.failures)


def _group_key(tx: Transaction, group_by: GroupBy) -> str:
    if group_by == "category":
        return tx.category or "uncategorized"
    return tx.merchant_name or tx.description or "Unknown"


async def spending_summary(
    aggregator: Aggregator,
    *,
    connection_id: Optional[str] = None,
    date_from: Optional[dt.date] = None,
    date_to: Optional[dt.date] = None,
    group_by: GroupBy = "merchant",
    limit: int = 20,
    default_currency: Optional[str] = None,
) -> SpendingSummary:
    """Debit totals grouped by merchant or category, biggest first."""
    window = aggregator.window(TransactionFilter(date_from=date_from, date_to=date_to, type="debit"))
    fetched = await aggregator.list_transactions(connection_id, filter=window)

    totals: Dict[str, SpendingGroup] = {}
    for tx in fetched.items:
        key = _group_key(tx, group_by)
        group = totals.setdefault(key, SpendingGroup(key, Decimal("0"), 0, tx.currency_code))
        group.total_spent += abs(tx.signed_amount)
        group.transaction_count += 1

    groups = sorted(totals.values(), key=lambda group: group.total_spent, reverse=True)[:limit]
    for group in groups:
        group.total_spent = group.total_spent.quantize(CENT)

    total = sum((abs(tx.signed_amount) for tx in fetched.items), Decimal("0")).quantize(CENT)
    currency = fetched.items[0].currency_code if fetched.items else (default_currency or aggregator.default_currency)
    return SpendingSummary(
        groups=groups,
        total_spent=total,
        currency=currency,
        period=f"{window.date_from.isoformat()} to {window.date_to.isoformat()}",
        failures=fetched.failures,
    )

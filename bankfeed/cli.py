"""Command line access to the aggregator. Output is JSON on stdout, failures go to stderr."""
from __future__ import annotations

import argparse
import asyncio
import datetime as dt
import json
import logging
import sys
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import TypeAdapter

from .config import Settings
from .core.data_models import TransactionFilter
from .core.errors import BankfeedError
from .services.aggregator import AggregateResult, Aggregator
from .services.insights import search_transactions, spending_summary

logger = logging.getLogger("bankfeed.cli")


def _parse_date(value: str) -> dt.date:
    try:
        return dt.date.fromisoformat(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM-DD, got {value!r}") from e


def _parse_amount(value: str) -> Decimal:
    try:
        return Decimal(value)
    except ArithmeticError as e:
        raise argparse.ArgumentTypeError(f"not a number: {value!r}") from e


_JSON = TypeAdapter(Any)


def _emit(payload: Any) -> None:
    print(json.dumps(_JSON.dump_python(payload, mode="json", by_alias=True), indent=2, ensure_ascii=False))


def _report_failures(result: Any) -> None:
    for failure in getattr(result, "failures", []):
        where = failure.connection_id + (f"/{failure.account_id}" if failure.account_id else "")
        print(f"[{failure.kind}] {where}: {failure.message}", file=sys.stderr)


def _items(result: AggregateResult, raw: bool = False) -> List[Dict[str, Any]]:
    exclude = None if raw else {"raw_provider_payload"}
    return [item.model_dump(mode="json", by_alias=True, exclude=exclude) for item in result.items]


def _filter(args: argparse.Namespace) -> TransactionFilter:
    return TransactionFilter(
        date_from=args.date_from,
        date_to=args.date_to,
        amount_min=args.amount_min,
        amount_max=args.amount_max,
        type=args.type,
        limit=args.limit,
    )


async def cmd_accounts(aggregator: Aggregator, args: argparse.Namespace) -> AggregateResult:
    result = await aggregator.list_accounts(args.connection)
    _emit(_items(result))
    return result


async def cmd_transactions(aggregator: Aggregator, args: argparse.Namespace) -> AggregateResult:
    result = await aggregator.list_transactions(args.connection, args.account, _filter(args))
    _emit(_items(result, raw=args.raw))
    return result


async def cmd_balances(aggregator: Aggregator, args: argparse.Namespace) -> AggregateResult:
    result = await aggregator.get_balances(args.connection, args.account)
    _emit(_items(result))
    return result


async def cmd_search(aggregator: Aggregator, args: argparse.Namespace) -> AggregateResult:
    result = await search_transactions(
        aggregator,
        args.query,
        connection_id=args.connection,
        date_from=args.date_from,
        date_to=args.date_to,
        limit=args.limit or 50,
    )
    _emit(_items(result))
    return result


async def cmd_summary(aggregator: Aggregator, args: argparse.Namespace) -> Any:
    summary = await spending_summary(
        aggregator,
        connection_id=args.connection,
        date_from=args.date_from,
        date_to=args.date_to,
        group_by=args.group_by,
        limit=args.limit or 20,
    )
    _emit(
        {
            "period": summary.period,
            "currency": summary.currency,
            "totalSpent": summary.total_spent,
            "groups": [
                {
                    "name": group.name,
                    "totalSpent": group.total_spent,
                    "transactionCount": group.transaction_count,
                    "currency": group.currency,
                }
                for group in summary.groups
            ],
        }
    )
    return summary


Command = Callable[[Aggregator, argparse.Namespace], Awaitable[Any]]


def _add_scope(parser: argparse.ArgumentParser, with_account: bool = True) -> None:
    parser.add_argument("--connection", "-c", help="Only query this connection id.")
    if with_account:
        parser.add_argument("--account", "-a", help="Only query this account uid.")


def _add_window(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--from", dest="date_from", type=_parse_date, help="First booking date (YYYY-MM-DD).")
    parser.add_argument("--to", dest="date_to", type=_parse_date, help="Last booking date (YYYY-MM-DD).")
    parser.add_argument("--limit", type=int, help="Maximum number of rows.")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bankfeed",
        description="Read accounts, transactions and balances from every configured bank connection.",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Log provider calls to stderr.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    accounts_parser = subparsers.add_parser("accounts", help="List accounts.")
    _add_scope(accounts_parser, with_account=False)
    accounts_parser.set_defaults(func=cmd_accounts)

    tx_parser = subparsers.add_parser("transactions", help="List transactions, newest first.")
    _add_scope(tx_parser)
    _add_window(tx_parser)
    tx_parser.add_argument("--type", choices=("debit", "credit"), help="Only debits or only credits.")
    tx_parser.add_argument("--min", dest="amount_min", type=_parse_amount, help="Minimum absolute amount.")
    tx_parser.add_argument("--max", dest="amount_max", type=_parse_amount, help="Maximum absolute amount.")
    tx_parser.add_argument("--raw", action="store_true", help="Include the provider's raw payload.")
    tx_parser.set_defaults(func=cmd_transactions)

    balances_parser = subparsers.add_parser("balances", help="Show balances.")
    _add_scope(balances_parser)
    balances_parser.set_defaults(func=cmd_balances)

    search_parser = subparsers.add_parser("search", help="Search description, merchant and reference.")
    search_parser.add_argument("query", help="Case-insensitive text to look for.")
    _add_scope(search_parser, with_account=False)
    _add_window(search_parser)
    search_parser.set_defaults(func=cmd_search)

    summary_parser = subparsers.add_parser("summary", help="Spending totals grouped by merchant or category.")
    _add_scope(summary_parser, with_account=False)
    _add_window(summary_parser)
    summary_parser.add_argument("--group-by", choices=("merchant", "category"), default="merchant")
    summary_parser.set_defaults(func=cmd_summary)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    func: Command = args.func
    logger.info("Running %s", args.command)
    try:
        aggregator = Aggregator.from_settings(Settings())
        result = asyncio.run(func(aggregator, args))
    except BankfeedError as exc:
        print(json.dumps(exc.to_dict()), file=sys.stderr)
        return 1
    _report_failures(result)
    return 0


if __name__ == "__main__":
    sys.exit(main())

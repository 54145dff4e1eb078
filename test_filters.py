"""TransactionFilter semantics and the model invariants it relies on."""
import datetime as dt
from decimal import Decimal

import pytest
from pydantic import ValidationError

from bankfeed.core.data_models import Transaction, TransactionFilter


def _tx(tx_id, amount, day=dt.date(2024, 3, 15)):
    amount = Decimal(amount)
    return Transaction(
        id=tx_id,
        account_id="acc-1",
        date=day,
        signed_amount=amount,
        currency_code="PLN",
        description=tx_id,
        type="debit" if amount < 0 else "credit",
    )


SAMPLE = [
    _tx("groceries", "-28.34"),
    _tx("salary", "3500"),
    _tx("spotify", "-15.99"),
    _tx("fuel", "-89.50"),
    _tx("rent-refund", "500"),
]


def test_amount_range_uses_absolute_value():
    selected = TransactionFilter(amount_min=Decimal("20"), amount_max=Decimal("100")).apply(SAMPLE)
    assert [tx.id for tx in selected] == ["groceries", "fuel"]


def test_type_filter():
    selected = TransactionFilter(type="credit").apply(SAMPLE)
    assert {tx.id for tx in selected} == {"salary", "rent-refund"}


def test_date_bounds_are_inclusive():
    transactions = [
        _tx("before", "-1", dt.date(2024, 2, 29)),
        _tx("first", "-1", dt.date(2024, 3, 1)),
        _tx("last", "-1", dt.date(2024, 3, 31)),
        _tx("after", "-1", dt.date(2024, 4, 1)),
    ]
    window = TransactionFilter(date_from=dt.date(2024, 3, 1), date_to=dt.date(2024, 3, 31))
    assert [tx.id for tx in window.apply(transactions)] == ["first", "last"]


def test_limit_truncates_after_filtering():
    selected = TransactionFilter(type="debit", limit=2).apply(SAMPLE)
    assert [tx.id for tx in selected] == ["groceries", "spotify"]


def test_date_window_keeps_only_dates():
    full = TransactionFilter(
        date_from=dt.date(2024, 1, 1), date_to=dt.date(2024, 1, 31), type="debit", limit=5
    )
    window = full.date_window()
    assert (window.date_from, window.date_to) == (dt.date(2024, 1, 1), dt.date(2024, 1, 31))
    assert window.type is None and window.limit is None


def test_filter_accepts_camel_case_keys():
    parsed = TransactionFilter.model_validate({"dateFrom": "2024-01-01", "amountMin": "20"})
    assert parsed.date_from == dt.date(2024, 1, 1)
    assert parsed.amount_min == Decimal("20")


def test_sign_and_type_must_agree():
    with pytest.raises(ValidationError):
        Transaction(
            id="bad",
            account_id="acc-1",
            date=dt.date(2024, 3, 1),
            signed_amount=Decimal("-5"),
            currency_code="PLN",
            description="bad",
            type="credit",
        )


def test_wire_names_are_camel_case():
    dumped = SAMPLE[0].model_dump(mode="json", by_alias=True)
    assert dumped["signedAmount"] == "-28.34"
    assert dumped["accountId"] == "acc-1"
    assert "rawProviderPayload" in dumped

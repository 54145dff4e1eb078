"""Plaid adapter against a fake Plaid API."""
import asyncio
import datetime as dt
import json
from decimal import Decimal

import httpx
import pytest

from bankfeed.core.data_models import TransactionFilter
from bankfeed.core.errors import ConfigError
from bankfeed.providers.plaid import PlaidProvider

CONFIG = {"clientId": "cid", "secret": "sec", "accessToken": "access-sandbox-1", "environment": "sandbox"}


def _plaid_tx(tx_id, amount, **extra):
    record = {
        "transaction_id": tx_id,
        "account_id": "acc-1",
        "date": "2024-03-10",
        "amount": amount,
        "iso_currency_code": "USD",
        "name": f"POS {tx_id}",
    }
    record.update(extra)
    return record


ALL_TRANSACTIONS = [
    _plaid_tx(
        "t1",
        28.34,
        merchant_name="Starbucks",
        personal_finance_category={"primary": "FOOD_AND_DRINK", "detailed": "FOOD_AND_DRINK_COFFEE"},
    ),
    _plaid_tx("t2", -3500, name="PAYROLL ACME", category=["Transfer", "Payroll"]),
    _plaid_tx(
        "t3",
        15.99,
        counterparties=[{"name": "Spotify", "type": "merchant"}],
        original_description="SPOTIFY USA 123",
        iso_currency_code=None,
        unofficial_currency_code="EUR",
    ),
]


def _handler(requests):
    def handle(request):
        requests.append(request)
        body = json.loads(request.content)
        if request.url.path == "/transactions/get":
            offset = body["options"]["offset"]
            page = ALL_TRANSACTIONS[offset : offset + 2]
            return httpx.Response(200, json={"transactions": page, "total_transactions": len(ALL_TRANSACTIONS)})
        if request.url.path == "/accounts/balance/get":
            return httpx.Response(
                200,
                json={
                    "accounts": [
                        {
                            "account_id": "acc-1",
                            "balances": {"current": 1200.5, "available": 1100, "iso_currency_code": "USD"},
                        }
                    ]
                },
            )
        return httpx.Response(
            200,
            json={
                "accounts": [
                    {
                        "account_id": "acc-1",
                        "name": "Plaid Checking",
                        "official_name": "Plaid Gold Standard 0% Interest Checking",
                        "mask": "0000",
                        "balances": {"iso_currency_code": "USD"},
                    }
                ]
            },
        )

    return handle


def _provider(requests):
    return PlaidProvider(transport=httpx.MockTransport(_handler(requests)))


def test_accounts_are_normalized():
    requests = []
    accounts = asyncio.run(_provider(requests).list_accounts(CONFIG))

    assert len(accounts) == 1
    assert accounts[0].uid == "acc-1"
    assert accounts[0].external_identifier == "****0000"
    assert accounts[0].display_name == "Plaid Gold Standard 0% Interest Checking"
    assert requests[0].url.host == "sandbox.plaid.com"
    assert requests[0].headers["PLAID-CLIENT-ID"] == "cid"
    assert json.loads(requests[0].content)["access_token"] == "access-sandbox-1"


def test_transactions_walk_offsets_and_flip_the_sign():
    requests = []
    window = TransactionFilter(date_from=dt.date(2024, 3, 1), date_to=dt.date(2024, 3, 31))
    transactions = asyncio.run(_provider(requests).list_transactions(CONFIG, "acc-1", window))

    offsets = [json.loads(r.content)["options"]["offset"] for r in requests]
    assert offsets == [0, 2]
    assert json.loads(requests[0].content)["start_date"] == "2024-03-01"

    by_id = {tx.id: tx for tx in transactions}
    coffee = by_id["t1"]
    assert coffee.signed_amount == Decimal("-28.34")
    assert coffee.type == "debit"
    assert coffee.merchant_name == "Starbucks"
    assert coffee.description == "Starbucks"
    assert coffee.category == "FOOD_AND_DRINK_COFFEE"

    payroll = by_id["t2"]
    assert payroll.signed_amount == Decimal("3500")
    assert payroll.type == "credit"
    assert payroll.category == "Transfer > Payroll"
    assert payroll.description == "PAYROLL ACME"

    spotify = by_id["t3"]
    assert spotify.merchant_name == "Spotify"
    assert spotify.reference == "SPOTIFY USA 123"
    assert spotify.currency_code == "EUR"


def test_balances_report_current_and_available():
    balances = asyncio.run(_provider([]).get_balance(CONFIG, "acc-1"))
    assert [(b.type, b.amount) for b in balances] == [
        ("current", Decimal("1200.5")),
        ("available", Decimal("1100")),
    ]


def test_missing_credentials_fail_before_any_request():
    requests = []
    with pytest.raises(ConfigError) as excinfo:
        asyncio.run(_provider(requests).list_accounts({"clientId": "cid"}))
    assert "secret" in excinfo.value.message
    assert "accessToken" in excinfo.value.message or "access_token" in excinfo.value.message
    assert requests == []


def test_config_schema_lists_environment_as_select():
    fields = {field.name: field for field in PlaidProvider().config_schema()}
    assert fields["secret"].secret is True
    assert fields["environment"].type == "select"
    assert fields["environment"].options == ["sandbox", "development", "production"]
    assert fields["environment"].default == "sandbox"

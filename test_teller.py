"""Teller adapter: basic auth, from_id cursor paging, client certificates."""
import asyncio
import base64
import datetime as dt
from decimal import Decimal

import httpx
import pytest

from bankfeed.core.data_models import TransactionFilter
from bankfeed.core.errors import ConfigError
from bankfeed.providers import teller
from bankfeed.providers.teller import TellerProvider

CONFIG = {"accessToken": "token_abc"}
ACCOUNTS = [
    {"id": "acc_open", "name": "Checking", "last_four": "4321", "currency": "USD", "status": "open"},
    {"id": "acc_closed", "name": "Old Savings", "last_four": "9999", "currency": "USD", "status": "closed"},
]


def _teller_tx(tx_id, day, amount, counterparty=None):
    details = {"category": "dining"}
    if counterparty:
        details["counterparty"] = {"name": counterparty, "type": "organization"}
    return {
        "id": tx_id,
        "account_id": "acc_open",
        "date": day,
        "amount": amount,
        "description": f"CARD {tx_id}",
        "details": details,
    }


def _handler(requests, pages):
    def handle(request):
        requests.append(request)
        path = request.url.path
        if path == "/accounts":
            return httpx.Response(200, json=ACCOUNTS)
        if path.endswith("/balances"):
            return httpx.Response(200, json={"account_id": "acc_open", "ledger": "1520.33", "available": "1490.10"})
        if path.endswith("/transactions"):
            from_id = request.url.params.get("from_id")
            return httpx.Response(200, json=pages.get(from_id, []))
        return httpx.Response(404, json={"error": {"code": "not_found", "message": "no route"}})

    return handle


def test_only_open_accounts_are_listed():
    requests = []
    provider = TellerProvider(transport=httpx.MockTransport(_handler(requests, {})))
    accounts = asyncio.run(provider.list_accounts(CONFIG))

    assert [account.uid for account in accounts] == ["acc_open"]
    assert accounts[0].external_identifier == "****4321"
    expected = "Basic " + base64.b64encode(b"token_abc:").decode()
    assert requests[0].headers["Authorization"] == expected


def test_transactions_follow_the_from_id_cursor(monkeypatch):
    monkeypatch.setattr(teller, "PAGE_SIZE", 2)
    pages = {
        None: [
            _teller_tx("tx1", "2024-03-20", "-12.50", counterparty="Blue Bottle"),
            _teller_tx("tx2", "2024-03-18", "2500.00"),
        ],
        "tx2": [_teller_tx("tx3", "2024-03-02", "-40.00")],
    }
    requests = []
    provider = TellerProvider(transport=httpx.MockTransport(_handler(requests, pages)))
    window = TransactionFilter(date_from=dt.date(2024, 3, 1), date_to=dt.date(2024, 3, 31))

    transactions = asyncio.run(provider.list_transactions(CONFIG, "acc_open", window))

    assert [tx.id for tx in transactions] == ["tx1", "tx2", "tx3"]
    tx_requests = [r for r in requests if r.url.path.endswith("/transactions")]
    assert [r.url.params.get("from_id") for r in tx_requests] == [None, "tx2"]
    assert tx_requests[0].url.params["count"] == "2"

    coffee = transactions[0]
    assert coffee.signed_amount == Decimal("-12.50")
    assert coffee.merchant_name == "Blue Bottle"
    assert coffee.description == "Blue Bottle"
    assert coffee.category == "dining"
    assert coffee.currency_code == "USD"
    assert transactions[1].type == "credit"
    assert transactions[1].description == "CARD tx2"


def test_balances_are_ledger_and_available():
    provider = TellerProvider(transport=httpx.MockTransport(_handler([], {})))
    balances = asyncio.run(provider.get_balance(CONFIG, "acc_open"))
    assert [(b.type, b.amount, b.currency_code) for b in balances] == [
        ("ledger", Decimal("1520.33"), "USD"),
        ("available", Decimal("1490.10"), "USD"),
    ]


def test_unreadable_certificate_is_a_config_error(tmp_path):
    config = {
        "accessToken": "token_abc",
        "certificatePath": str(tmp_path / "missing-cert.pem"),
        "privateKeyPath": str(tmp_path / "missing-key.pem"),
    }
    requests = []
    provider = TellerProvider(transport=httpx.MockTransport(_handler(requests, {})))
    with pytest.raises(ConfigError):
        asyncio.run(provider.list_accounts(config))
    assert requests == []


def test_sandbox_needs_no_certificate():
    settings = TellerProvider().validate_config(CONFIG)
    assert teller.client_certificate(settings) is None

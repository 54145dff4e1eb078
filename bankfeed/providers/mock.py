from __future__ import annotations

import datetime as dt
from decimal import Decimal
from typing import Any, Callable, List, Mapping, Optional

from ..core.data_models import Account, Balance, Transaction, TransactionFilter
from .base import BankProvider, ProviderSettings

CURRENCY = "PLN"
HISTORY_DAYS = 90

ACCOUNTS = (
    ("mock-checking-001", "PL61109010140000071219812874", "Konto Direct"),
    ("mock-savings-001", "PL72109010140000071219812999", "Konto Oszczednosciowe"),
)
CLOSING_BALANCES = {
    "mock-checking-001": Decimal("12450.67"),
    "mock-savings-001": Decimal("45000.00"),
}
FALLBACK_BALANCE = Decimal("1000.00")
EXPECTED_OFFSET = Decimal("250.00")

# (merchant, category, min, max)
MERCHANTS = (
    ("Biedronka", "Groceries", Decimal("30"), Decimal("180")),
    ("Lidl", "Groceries", Decimal("40"), Decimal("200")),
    ("Żabka", "Groceries", Decimal("5"), Decimal("45")),
    ("Orlen", "Fuel", Decimal("150"), Decimal("350")),
    ("Allegro", "Shopping", Decimal("20"), Decimal("500")),
    ("Netflix", "Entertainment", Decimal("43"), Decimal("43")),
    ("Spotify", "Entertainment", Decimal("29.99"), Decimal("29.99")),
    ("PZU Ubezpieczenie", "Insurance", Decimal("180"), Decimal("180")),
    ("Orange Polska", "Utilities", Decimal("79"), Decimal("79")),
    ("Inea Internet", "Utilities", Decimal("69"), Decimal("69")),
)
SALARY = ("TechCorp Sp. z o.o.", Decimal("12500.00"), "Wynagrodzenie", 10)
FREELANCE = ("Freelance Client", Decimal("3500.00"), "Faktura 2026/02", 25)


class MockSettings(ProviderSettings):
    pass


class MockProvider(BankProvider):
    """Deterministic demo bank. Needs no config and performs no I/O."""

    name = "mock"
    display_name = "Mock Bank (Demo Data)"
    settings_model = MockSettings

    def __init__(self, today: Optional[Callable[[], dt.date]] = None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._today = today or dt.date.today

    async def list_accounts(self, config: Mapping[str, Any]) -> List[Account]:
        self.validate_config(config)
        return [
            Account(uid=uid, external_identifier=iban, display_name=label, currency_code=CURRENCY)
            for uid, iban, label in ACCOUNTS
        ]

    async def list_transactions(
        self,
        config: Mapping[str, Any],
        account_id: str,
        filter: Optional[TransactionFilter] = None,
    ) -> List[Transaction]:
        self.validate_config(config)
        transactions = generate_transactions(account_id, self._today())
        return self._finish(transactions, filter, account_id)

    async def get_balance(self, config: Mapping[str, Any], account_id: str) -> List[Balance]:
        self.validate_config(config)
        closing = CLOSING_BALANCES.get(account_id, FALLBACK_BALANCE)
        return [
            Balance(account_id=account_id, amount=closing, currency_code=CURRENCY, type="closingBooked"),
            Balance(account_id=account_id, amount=closing + EXPECTED_OFFSET, currency_code=CURRENCY, type="expected"),
        ]


def _income(account_id: str, day: dt.date, source: tuple, kind: str) -> Transaction:
    payer, amount, memo, _ = source
    return Transaction(
        id=f"mock-tx-{account_id}-{kind}-{day.isoformat()}",
        account_id=account_id,
        date=day,
        signed_amount=amount,
        currency_code=CURRENCY,
        description=memo,
        merchant_name=payer,
        category="Income",
        type="credit",
        reference=memo,
    )


def generate_transactions(account_id: str, today: dt.date) -> List[Transaction]:
    """90 days of expenses plus monthly income, newest first."""
    transactions: List[Transaction] = []
    for offset in range(HISTORY_DAYS):
        day = today - dt.timedelta(days=offset)
        seed = day.toordinal()
        for i in range(seed % 3 + 1):
            merchant, category, low, high = MERCHANTS[(seed * 3 + i) % len(MERCHANTS)]
            spread = int(high - low)
            amount = low + ((seed * 7 + i * 13) % spread) if spread else low
            transactions.append(
                Transaction(
                    id=f"mock-tx-{account_id}-{day.isoformat()}-{i}",
                    account_id=account_id,
                    date=day,
                    signed_amount=-amount.quantize(Decimal("0.01")),
                    currency_code=CURRENCY,
                    description=merchant,
                    merchant_name=merchant,
                    category=category,
                    type="debit",
                    reference=merchant,
                )
            )
        if day.day == SALARY[3]:
            transactions.append(_income(account_id, day, SALARY, "salary"))
        if day.day == FREELANCE[3]:
            transactions.append(_income(account_id, day, FREELANCE, "freelance"))
    transactions.sort(key=lambda tx: tx.date, reverse=True)
    return transactions

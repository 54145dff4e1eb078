from __future__ import annotations

import logging
from typing import Any, Dict, List, Literal, Mapping, Optional, Tuple

from ..core.amounts import direction_of, first_present, from_signed, join_category
from ..core.data_models import Account, Balance, Transaction, TransactionFilter
from ..core.http import malformed
from ..core.pagination import paginate_offset
from .base import BankProvider, ProviderSettings, default_window, parse_date, setting

logger = logging.getLogger("bankfeed.providers.plaid")

ENVIRONMENTS = {
    "sandbox": "https://sandbox.plaid.com",
    "development": "https://development.plaid.com",
    "production": "https://production.plaid.com",
}
PAGE_SIZE = 500
DEFAULT_CURRENCY = "USD"


class PlaidSettings(ProviderSettings):
    client_id: str = setting("Client ID")
    secret: str = setting("Secret", secret=True)
    access_token: str = setting("Access token (from Plaid Link)", secret=True)
    environment: Literal["sandbox", "development", "production"] = setting("Environment", default="sandbox")


class PlaidProvider(BankProvider):
    """Plaid (US/CA/EU). Every endpoint is a POST carrying the credentials."""

    name = "plaid"
    display_name = "Plaid (US/CA/EU)"
    settings_model = PlaidSettings

    async def _post(self, settings: PlaidSettings, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        headers = {"PLAID-CLIENT-ID": settings.client_id, "PLAID-SECRET": settings.secret}
        payload = {"access_token": settings.access_token, **body}
        async with self._client(ENVIRONMENTS[settings.environment], headers=headers) as client:
            data = await self._get_json(client, "POST", path, json=payload)
        if not isinstance(data, dict):
            raise malformed(self.name, f"{path} returned {type(data).__name__}")
        return data

    async def list_accounts(self, config: Mapping[str, Any]) -> List[Account]:
        settings = self.validate_config(config)
        data = await self._post(settings, "/accounts/get", {})
        accounts = self._normalize(data.get("accounts") or [], _to_account)
        logger.info("Plaid %s returned %d accounts", settings.environment, len(accounts))
        return accounts

    async def list_transactions(
        self,
        config: Mapping[str, Any],
        account_id: str,
        filter: Optional[TransactionFilter] = None,
    ) -> List[Transaction]:
        settings = self.validate_config(config)
        date_from, date_to = default_window(filter)
        headers = {"PLAID-CLIENT-ID": settings.client_id, "PLAID-SECRET": settings.secret}

        async with self._client(ENVIRONMENTS[settings.environment], headers=headers) as client:

            async def fetch_page(offset: int, count: int) -> Tuple[List[Any], int]:
                body = {
                    "access_token": settings.access_token,
                    "start_date": date_from.isoformat(),
                    "end_date": date_to.isoformat(),
                    "options": {
                        "account_ids": [account_id],
                        "count": count,
                        "offset": offset,
                        "include_personal_finance_category": True,
                    },
                }
                data = await self._get_json(client, "POST", "/transactions/get", json=body)
                if not isinstance(data, dict) or not isinstance(data.get("transactions"), list):
                    raise malformed(self.name, "/transactions/get without a transactions list")
                return data["transactions"], int(data.get("total_transactions") or 0)

            raw_transactions = await paginate_offset(fetch_page, PAGE_SIZE, label=f"plaid:{account_id}")

        transactions = self._normalize(raw_transactions, _to_transaction)
        return self._finish(transactions, filter, account_id)

    async def get_balance(self, config: Mapping[str, Any], account_id: str) -> List[Balance]:
        settings = self.validate_config(config)
        data = await self._post(settings, "/accounts/balance/get", {"options": {"account_ids": [account_id]}})
        balances: List[Balance] = []
        for raw in data.get("accounts") or []:
            figures = raw.get("balances") or {}
            currency = figures.get("iso_currency_code") or DEFAULT_CURRENCY
            for kind in ("current", "available"):
                if figures.get(kind) is not None:
                    balances.append(
                        Balance(
                            account_id=raw["account_id"],
                            amount=from_signed(figures[kind]),
                            currency_code=currency,
                            type=kind,
                        )
                    )
        return balances


def _to_account(raw: Dict[str, Any]) -> Account:
    mask = raw.get("mask")
    return Account(
        uid=raw["account_id"],
        external_identifier=f"****{mask}" if mask else raw["account_id"],
        display_name=first_present(raw.get("official_name"), raw.get("name"), default=raw["account_id"]),
        currency_code=(raw.get("balances") or {}).get("iso_currency_code") or DEFAULT_CURRENCY,
    )


def _merchant(raw: Dict[str, Any]) -> Optional[str]:
    counterparty = next(
        (party.get("name") for party in raw.get("counterparties") or [] if party.get("type") == "merchant"),
        None,
    )
    return first_present(raw.get("merchant_name"), counterparty)


def _to_transaction(raw: Dict[str, Any]) -> Transaction:
    # Plaid reports outflows as positive numbers.
    amount = -from_signed(raw["amount"])
    merchant = _merchant(raw)
    pfc = raw.get("personal_finance_category") or {}
    return Transaction(
        id=raw["transaction_id"],
        account_id=raw["account_id"],
        date=parse_date(raw.get("date")),
        signed_amount=amount,
        currency_code=first_present(
            raw.get("iso_currency_code"), raw.get("unofficial_currency_code"), default=DEFAULT_CURRENCY
        ),
        description=first_present(merchant, raw.get("name"), default="Unknown"),
        merchant_name=merchant,
        category=first_present(pfc.get("detailed"), pfc.get("primary"), join_category(raw.get("category"))),
        type=direction_of(amount),
        reference=first_present(raw.get("original_description"), raw.get("name")),
        raw_provider_payload=raw,
    )

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel, model_validator

from ..core.amounts import dig, direction_of, first_present, from_directional, from_fixed_point, from_signed
from ..core.data_models import Account, Balance, Transaction, TransactionFilter
from ..core.errors import ProviderError, ProviderErrorKind
from ..core.http import malformed
from ..core.pagination import paginate_token
from .base import BankProvider, ProviderSettings, parse_date, setting

logger = logging.getLogger("bankfeed.providers.tink")

BASE_URL = "https://api.tink.com"
PAGE_SIZE = 100
DEFAULT_CURRENCY = "EUR"
V1_DEFAULT_CURRENCY = "PLN"
# DEFAULT (demo banks) carries the sign on the amount itself.
DEBIT_TYPES = frozenset({"DEBIT"})
CREDIT_TYPES = frozenset({"CREDIT"})


class CachedAccount(BaseModel):
    uid: str
    iban: str = ""
    name: str = ""
    currency: str = DEFAULT_CURRENCY


class TinkSettings(ProviderSettings):
    access_token: Optional[str] = setting("Access token (from Tink Console)", default=None, secret=True)
    report_id: Optional[str] = setting("Account Check report id", default=None)
    accounts: List[CachedAccount] = setting("Accounts captured from the report", default=[])

    @model_validator(mode="after")
    def _token_or_report(self) -> "TinkSettings":
        if not self.access_token and not self.report_id:
            raise ValueError("accessToken is required (or reportId for Account Check connections)")
        return self

    @property
    def report_only(self) -> bool:
        return bool(self.report_id) and not self.access_token


class TinkProvider(BankProvider):
    """Tink (EU open banking). Report-only connections have no live data access."""

    name = "tink"
    display_name = "Tink (EU Open Banking)"
    settings_model = TinkSettings

    def config_schema(self):
        # Report-based fields are filled in by the connect flow, not prompted for.
        return [
            field.model_copy(update={"required": True})
            for field in super().config_schema()
            if field.name == "accessToken"
        ]

    def _headers(self, settings: TinkSettings) -> Dict[str, str]:
        return {"Authorization": f"Bearer {settings.access_token}"}

    async def list_accounts(self, config: Mapping[str, Any]) -> List[Account]:
        settings = self.validate_config(config)
        if settings.report_only:
            return [
                Account(
                    uid=cached.uid,
                    external_identifier=cached.iban or cached.uid,
                    display_name=cached.name or cached.uid,
                    currency_code=cached.currency,
                )
                for cached in settings.accounts
            ]

        async with self._client(BASE_URL, headers=self._headers(settings)) as client:
            data = await self._get_json(client, "GET", "/data/v2/accounts")
        if not isinstance(data, dict):
            raise malformed(self.name, "/data/v2/accounts did not return an object")
        return self._normalize(data.get("accounts") or [], _to_account)

    async def list_transactions(
        self,
        config: Mapping[str, Any],
        account_id: str,
        filter: Optional[TransactionFilter] = None,
    ) -> List[Transaction]:
        settings = self.validate_config(config)
        if settings.report_only:
            return []

        base_params: Dict[str, Any] = {"accountIdIn": account_id, "pageSize": PAGE_SIZE}
        if filter and filter.date_from:
            base_params["bookedDateGte"] = filter.date_from.isoformat()
        if filter and filter.date_to:
            base_params["bookedDateLte"] = filter.date_to.isoformat()

        async with self._client(BASE_URL, headers=self._headers(settings)) as client:

            async def fetch_page(token: Optional[str]) -> Tuple[List[Any], Optional[str]]:
                params = dict(base_params, pageToken=token) if token else base_params
                data = await self._get_json(client, "GET", "/data/v2/transactions", params=params)
                if not isinstance(data, dict) or not isinstance(data.get("transactions"), list):
                    raise malformed(self.name, "/data/v2/transactions without a transactions list")
                return data["transactions"], data.get("nextPageToken") or None

            raw_transactions = await paginate_token(fetch_page, label=f"tink:{account_id}")

        transactions = self._normalize(raw_transactions, _to_transaction)
        return self._finish(transactions, filter, account_id)

    async def get_balance(self, config: Mapping[str, Any], account_id: str) -> List[Balance]:
        settings = self.validate_config(config)
        if settings.report_only:
            return []

        async with self._client(BASE_URL, headers=self._headers(settings)) as client:
            try:
                data = await self._get_json(client, "GET", f"/data/v2/accounts/{account_id}/balances")
            except ProviderError as exc:
                if exc.kind is not ProviderErrorKind.AUTH:
                    raise
                logger.warning("Tink v2 balances refused for %s (%s), using v1 accounts list", account_id, exc.message)
                legacy = await self._get_json(client, "GET", "/api/v1/accounts/list")
                return _v1_balances(legacy, account_id)

        figures = (data.get("balances") if isinstance(data, dict) else None) or {}
        balances: List[Balance] = []
        for field, kind in (("bookedBalance", "booked"), ("availableBalance", "available")):
            amount = dig(figures, field, "amount")
            if amount:
                balances.append(
                    Balance(
                        account_id=account_id,
                        amount=from_fixed_point(amount),
                        currency_code=amount.get("currencyCode") or DEFAULT_CURRENCY,
                        type=kind,
                    )
                )
        return balances


def _v1_balances(payload: Any, account_id: str) -> List[Balance]:
    accounts = payload.get("accounts") if isinstance(payload, dict) else None
    match = next((acc for acc in accounts or [] if acc.get("id") == account_id), None)
    if match is None:
        return []
    denominated = match.get("currencyDenominatedBalance") or {}
    if denominated.get("unscaledValue") is not None:
        amount = from_fixed_point(denominated)
    else:
        amount = from_signed(match.get("balance"))
    return [
        Balance(
            account_id=account_id,
            amount=amount,
            currency_code=denominated.get("currencyCode") or V1_DEFAULT_CURRENCY,
            type="booked",
        )
    ]


def _to_account(raw: Dict[str, Any]) -> Account:
    return Account(
        uid=raw["id"],
        external_identifier=first_present(dig(raw, "identifiers", "iban", "iban"), raw["id"]),
        display_name=first_present(raw.get("name"), default=raw["id"]),
        currency_code=dig(raw, "balances", "booked", "amount", "currencyCode") or DEFAULT_CURRENCY,
    )


def _to_transaction(raw: Dict[str, Any]) -> Transaction:
    amount = from_directional(
        from_fixed_point(raw["amount"]),
        dig(raw, "types", "type"),
        debit=DEBIT_TYPES,
        credit=CREDIT_TYPES,
    )
    descriptions = raw.get("descriptions") or {}
    text = first_present(
        descriptions.get("display"),
        descriptions.get("original"),
        dig(descriptions, "detailed", "unstructured"),
        default="Unknown",
    )
    merchant = first_present(dig(raw, "merchantInformation", "merchantName"))
    return Transaction(
        id=raw["id"],
        account_id=raw["accountId"],
        date=parse_date(dig(raw, "dates", "booked")),
        signed_amount=amount,
        currency_code=raw["amount"].get("currencyCode") or DEFAULT_CURRENCY,
        description=first_present(merchant, text),
        merchant_name=merchant,
        category=first_present(dig(raw, "categories", "pfm", "name")),
        type=direction_of(amount),
        reference=first_present(raw.get("reference"), text),
        raw_provider_payload=raw,
    )

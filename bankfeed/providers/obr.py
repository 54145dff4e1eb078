"""Open Banking Russia sandbox banks (VBank, ABank, SBank and friends).

Reads accounts, transactions and balances under a consent that was already
approved. Consent creation and bank-token exchange happen elsewhere; this
adapter only receives the resulting ``bank_token`` and ``consent_id``.
"""
from __future__ import annotations

import datetime as dt
import logging
import uuid
from typing import Any, Dict, List, Mapping, Optional, Tuple
from urllib.parse import urljoin

from ..core.amounts import dig, direction_of, first_present, from_directional
from ..core.data_models import Account, Balance, Transaction, TransactionFilter
from ..core.http import request_json
from ..core.pagination import paginate_token
from .base import BankProvider, ProviderSettings, setting

logger = logging.getLogger("bankfeed.providers.obr")

DEFAULT_CURRENCY = "RUB"
DEBIT_INDICATORS = frozenset({"debit"})
CREDIT_INDICATORS = frozenset({"credit"})


class OBRSettings(ProviderSettings):
    base_url: str = setting("Bank API base URL")
    bank_token: str = setting("Bank access token", secret=True)
    consent_id: str = setting("Approved consent id")
    client_id: str = setting("Client id at the bank")
    requesting_bank: str = setting("Requesting bank (team) id")


def _parse_booking_datetime(raw_value: Any) -> Optional[dt.datetime]:
    if not isinstance(raw_value, str):
        return None

    value = raw_value.strip()
    if not value:
        return None

    try:
        if value.endswith("Z"):
            value = value.replace("Z", "+00:00")
        return dt.datetime.fromisoformat(value)
    except ValueError:
        try:
            return dt.datetime.fromisoformat(value + "+00:00")
        except ValueError:
            return None


def _indicator(raw: Mapping[str, Any]) -> Optional[str]:
    """``Debit``/``DebitEntry``/``credit`` -> ``debit``/``credit``."""
    value = raw.get("creditDebitIndicator") or raw.get("direction")
    if not isinstance(value, str):
        return None
    value = value.strip().lower()
    if value.startswith("debit"):
        return "debit"
    if value.startswith("credit"):
        return "credit"
    return None


def _section(payload: Any, *names: str) -> List[Dict[str, Any]]:
    """First list found under ``payload[name]`` or ``payload["data"][name]``."""
    if not isinstance(payload, dict):
        return []
    data = payload.get("data")
    for container in (payload, data):
        if not isinstance(container, dict):
            continue
        for name in names:
            section = container.get(name)
            if isinstance(section, list):
                return [entry for entry in section if isinstance(entry, dict)]
    return []


def _account_id(account_payload: Mapping[str, Any]) -> Optional[str]:
    for key in ("accountId", "account_id", "id"):
        value = account_payload.get(key)
        if value:
            return str(value)
    return None


class OBRProvider(BankProvider):
    """Account-information reads against one OBR sandbox bank."""

    name = "obr"
    display_name = "Open Banking Russia (sandbox banks)"
    settings_model = OBRSettings

    def _headers(self, settings: OBRSettings) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {settings.bank_token}",
            "X-Requesting-Bank": settings.requesting_bank,
            "X-Consent-Id": settings.consent_id,
        }

    async def _fetch(self, client, settings: OBRSettings, url: str, **kwargs: Any) -> Any:
        async def once() -> Any:
            headers = {**self._headers(settings), "x-fapi-interaction-id": str(uuid.uuid4())}
            return await request_json(client, "GET", url, provider=self.name, headers=headers, **kwargs)

        return await self._call(once)

    def _next_link(self, settings: OBRSettings, payload: Any) -> Optional[str]:
        next_url = first_present(
            dig(payload, "links", "next"),
            dig(payload, "Links", "next"),
            dig(payload, "data", "links", "next"),
        )
        if not next_url:
            return None
        return urljoin(settings.base_url.rstrip("/") + "/", str(next_url))

    async def list_accounts(self, config: Mapping[str, Any]) -> List[Account]:
        settings = self.validate_config(config)
        logger.info("Fetching accounts for client '%s' with consent '%s'", settings.client_id, settings.consent_id)
        async with self._client(settings.base_url.rstrip("/")) as client:
            payload = await self._fetch(client, settings, "/accounts", params={"client_id": settings.client_id})
        raw_accounts = [raw for raw in _section(payload, "accounts", "account") if _account_id(raw)]
        return self._normalize(raw_accounts, _to_account)

    async def list_transactions(
        self,
        config: Mapping[str, Any],
        account_id: str,
        filter: Optional[TransactionFilter] = None,
    ) -> List[Transaction]:
        settings = self.validate_config(config)
        first_params: Dict[str, Any] = {"client_id": settings.client_id}
        if filter and filter.date_from:
            first_params["from_booking_date_time"] = f"{filter.date_from.isoformat()}T00:00:00Z"
        if filter and filter.date_to:
            first_params["to_booking_date_time"] = f"{filter.date_to.isoformat()}T23:59:59Z"

        pages: List[List[Dict[str, Any]]] = []
        async with self._client(settings.base_url.rstrip("/")) as client:

            async def fetch_page(next_url: Optional[str]) -> Tuple[List[Any], Optional[str]]:
                if next_url:
                    payload = await self._fetch(client, settings, next_url)
                else:
                    payload = await self._fetch(
                        client, settings, f"/accounts/{account_id}/transactions", params=first_params
                    )
                batch = _section(payload, "transactions", "transaction")
                pages.append(batch)
                return batch, self._next_link(settings, payload)

            await paginate_token(fetch_page, label=f"obr:{account_id}")

        records = [
            (account_id, page_no, seq, raw)
            for page_no, page in enumerate(pages, start=1)
            for seq, raw in enumerate(page, start=1)
        ]
        transactions = [tx for tx in self._normalize(records, _to_transaction) if tx is not None]
        skipped = len(records) - len(transactions)
        if skipped:
            logger.warning("Skipped %d OBR transactions without a booking date on account %s", skipped, account_id)
        return self._finish(transactions, filter, account_id)

    async def get_balance(self, config: Mapping[str, Any], account_id: str) -> List[Balance]:
        settings = self.validate_config(config)
        async with self._client(settings.base_url.rstrip("/")) as client:
            payload = await self._fetch(client, settings, f"/accounts/{account_id}/balances")
        entries = _section(payload, "balance", "Balance", "balances")
        if not entries:
            logger.warning("No balance entries found for account %s at %s", account_id, settings.base_url)
        return self._normalize(entries, lambda raw: _to_balance(raw, account_id))


def _to_account(raw: Dict[str, Any]) -> Account:
    uid = _account_id(raw)
    details = raw.get("account")
    primary = details[0] if isinstance(details, list) and details else details if isinstance(details, dict) else {}
    return Account(
        uid=uid,
        external_identifier=first_present(primary.get("identification"), uid),
        display_name=first_present(raw.get("nickname"), primary.get("name"), raw.get("accountSubType"), default=uid),
        currency_code=first_present(raw.get("currency"), default=DEFAULT_CURRENCY),
    )


def _money(raw: Mapping[str, Any]) -> Tuple[Any, str]:
    payload = raw.get("amount") or raw.get("transactionAmount") or raw.get("transaction_amount")
    if isinstance(payload, dict):
        return payload.get("amount"), payload.get("currency") or raw.get("currency") or DEFAULT_CURRENCY
    return payload, raw.get("currency") or DEFAULT_CURRENCY


def _to_transaction(item: Tuple[str, int, int, Dict[str, Any]]) -> Optional[Transaction]:
    account_id, page_no, seq, raw = item
    booked = _parse_booking_datetime(
        first_present(raw.get("bookingDate"), raw.get("bookingDateTime"), raw.get("valueDate"), raw.get("valueDateTime"))
    )
    if booked is None:
        return None

    value, currency = _money(raw)
    amount = from_directional(value, _indicator(raw), debit=DEBIT_INDICATORS, credit=CREDIT_INDICATORS)
    description = first_present(
        raw.get("transactionInformation"),
        raw.get("description"),
        raw.get("narration"),
        raw.get("statementDescription"),
    )
    merchant = first_present(dig(raw, "merchant", "name"))
    return Transaction(
        id=str(
            first_present(
                raw.get("transactionId"),
                raw.get("transaction_id"),
                raw.get("id"),
                default=f"obr:{account_id}:p{page_no}:{seq}",
            )
        ),
        account_id=account_id,
        date=booked.date(),
        signed_amount=amount,
        currency_code=str(currency),
        description=first_present(merchant, description, default="Unknown"),
        merchant_name=merchant,
        category=first_present(raw.get("category"), raw.get("transactionCategory"), raw.get("categoryCode")),
        type=direction_of(amount),
        reference=first_present(raw.get("transactionReference"), description),
        raw_provider_payload=raw,
    )


def _to_balance(raw: Dict[str, Any], account_id: str) -> Balance:
    value, currency = _money(raw)
    amount = from_directional(value, _indicator(raw), debit=DEBIT_INDICATORS, credit=CREDIT_INDICATORS)
    return Balance(
        account_id=first_present(raw.get("accountId"), default=account_id),
        amount=amount,
        currency_code=str(currency),
        type=first_present(raw.get("type"), raw.get("balanceType"), default="unknown"),
    )

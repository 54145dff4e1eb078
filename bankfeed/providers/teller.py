from __future__ import annotations

import logging
import ssl
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import httpx

from ..core.amounts import dig, direction_of, first_present, from_signed
from ..core.data_models import Account, Balance, Transaction, TransactionFilter
from ..core.errors import ConfigError
from ..core.http import malformed
from ..core.pagination import paginate_cursor
from .base import BankProvider, ProviderSettings, parse_date, setting

logger = logging.getLogger("bankfeed.providers.teller")

API_BASE = "https://api.teller.io"
PAGE_SIZE = 250
DEFAULT_CURRENCY = "USD"


class TellerSettings(ProviderSettings):
    certificate_path: Optional[str] = setting(
        "Path to client certificate (.pem), optional for sandbox", default=None, path=True
    )
    private_key_path: Optional[str] = setting(
        "Path to private key (.pem), optional for sandbox", default=None, path=True
    )
    access_token: str = setting("Access token (from Teller Connect enrollment)", secret=True)


def client_certificate(settings: TellerSettings) -> Optional[ssl.SSLContext]:
    """mTLS context for development/production; sandbox runs without one."""
    if not settings.certificate_path or not settings.private_key_path:
        return None
    context = ssl.create_default_context()
    try:
        context.load_cert_chain(
            certfile=str(Path(settings.certificate_path).expanduser()),
            keyfile=str(Path(settings.private_key_path).expanduser()),
        )
    except (OSError, ssl.SSLError) as exc:
        raise ConfigError("teller", [f"certificatePath/privateKeyPath: {exc}"]) from exc
    return context


class TellerProvider(BankProvider):
    """Teller (US banks). Basic auth with the enrollment token, optional client certificate."""

    name = "teller"
    display_name = "Teller (US Banks)"
    settings_model = TellerSettings

    def _open(self, settings: TellerSettings):
        options: Dict[str, Any] = {"auth": httpx.BasicAuth(settings.access_token, "")}
        context = client_certificate(settings)
        if context is not None:
            logger.debug("Teller requests use the configured client certificate")
            options["verify"] = context
        return self._client(API_BASE, headers={"Accept": "application/json"}, **options)

    async def _accounts(self, client: httpx.AsyncClient) -> List[Dict[str, Any]]:
        data = await self._get_json(client, "GET", "/accounts")
        if not isinstance(data, list):
            raise malformed(self.name, "/accounts did not return a list")
        return data

    async def _currency(self, client: httpx.AsyncClient, account_id: str) -> str:
        # Transactions and balances carry no currency of their own.
        account = next((acc for acc in await self._accounts(client) if acc.get("id") == account_id), None)
        return (account or {}).get("currency") or DEFAULT_CURRENCY

    async def list_accounts(self, config: Mapping[str, Any]) -> List[Account]:
        settings = self.validate_config(config)
        async with self._open(settings) as client:
            raw_accounts = await self._accounts(client)
        open_accounts = [raw for raw in raw_accounts if raw.get("status") == "open"]
        logger.info("Teller enrollment has %d open accounts (%d total)", len(open_accounts), len(raw_accounts))
        return self._normalize(open_accounts, _to_account)

    async def list_transactions(
        self,
        config: Mapping[str, Any],
        account_id: str,
        filter: Optional[TransactionFilter] = None,
    ) -> List[Transaction]:
        settings = self.validate_config(config)
        async with self._open(settings) as client:
            currency = await self._currency(client, account_id)

            async def fetch_page(from_id: Optional[str]) -> List[Any]:
                params: Dict[str, Any] = {"count": PAGE_SIZE}
                if from_id:
                    params["from_id"] = from_id
                data = await self._get_json(client, "GET", f"/accounts/{account_id}/transactions", params=params)
                if not isinstance(data, list):
                    raise malformed(self.name, "transactions response is not a list")
                return data

            raw_transactions = await paginate_cursor(
                fetch_page,
                PAGE_SIZE,
                id_of=lambda raw: raw["id"],
                date_of=lambda raw: parse_date(raw.get("date")),
                date_from=filter.date_from if filter else None,
                date_to=filter.date_to if filter else None,
                label=f"teller:{account_id}",
            )

        transactions = self._normalize(raw_transactions, lambda raw: _to_transaction(raw, account_id, currency))
        return self._finish(transactions, filter, account_id)

    async def get_balance(self, config: Mapping[str, Any], account_id: str) -> List[Balance]:
        settings = self.validate_config(config)
        async with self._open(settings) as client:
            currency = await self._currency(client, account_id)
            data = await self._get_json(client, "GET", f"/accounts/{account_id}/balances")
        if not isinstance(data, dict):
            raise malformed(self.name, "balances response is not an object")
        return [
            Balance(account_id=account_id, amount=from_signed(data[kind]), currency_code=currency, type=kind)
            for kind in ("ledger", "available")
            if data.get(kind) is not None
        ]


def _to_account(raw: Dict[str, Any]) -> Account:
    last_four = raw.get("last_four")
    return Account(
        uid=raw["id"],
        external_identifier=f"****{last_four}" if last_four else raw["id"],
        display_name=first_present(raw.get("name"), default=raw["id"]),
        currency_code=raw.get("currency") or DEFAULT_CURRENCY,
    )


def _to_transaction(raw: Dict[str, Any], account_id: str, currency: str) -> Transaction:
    amount = from_signed(raw["amount"])
    merchant = first_present(dig(raw, "details", "counterparty", "name"))
    return Transaction(
        id=raw["id"],
        account_id=raw.get("account_id") or account_id,
        date=parse_date(raw.get("date")),
        signed_amount=amount,
        currency_code=currency,
        description=first_present(merchant, raw.get("description"), default="Unknown"),
        merchant_name=merchant,
        category=first_present(dig(raw, "details", "category")),
        type=direction_of(amount),
        reference=first_present(raw.get("description")),
        raw_provider_payload=raw,
    )

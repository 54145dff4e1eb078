from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import jwt
from pydantic import BaseModel

from ..core.amounts import direction_of, first_present, from_directional, from_signed
from ..core.data_models import Account, Balance, ConfigField, Transaction, TransactionFilter
from ..core.errors import ConfigError
from ..core.http import malformed, request_json
from ..core.pagination import paginate_token
from .base import BankProvider, ProviderSettings, parse_date, setting

logger = logging.getLogger("bankfeed.providers.enable_banking")

API_BASE = "https://api.enablebanking.com"
JWT_ISSUER = "enablebanking.com"
JWT_AUDIENCE = "api.enablebanking.com"
JWT_LIFETIME_SECONDS = 3600
DEFAULT_CURRENCY = "EUR"
# CRDT is not forced positive: a negative CRDT amount still counts as a debit.
DEBIT_CODES = frozenset({"DBIT"})


class SessionAccount(BaseModel):
    uid: str
    iban: str = ""
    name: str = ""
    currency: str = DEFAULT_CURRENCY


class EnableBankingSettings(ProviderSettings):
    app_id: str = setting("App ID")
    private_key_path: str = setting("Path to RSA private key (.pem)", path=True)
    session_id: str = setting("Session ID")
    valid_until: Optional[str] = None
    accounts: List[SessionAccount] = []


def generate_jwt(app_id: str, private_key_path: str, now: Optional[int] = None) -> str:
    """RS256 application token, ``kid`` = app id, valid for one hour."""
    key_file = Path(private_key_path).expanduser()
    try:
        private_key = key_file.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError("enable-banking", [f"privateKeyPath: cannot read {key_file} ({exc.strerror})"]) from exc
    issued_at = int(time.time()) if now is None else now
    payload = {
        "iss": JWT_ISSUER,
        "aud": JWT_AUDIENCE,
        "iat": issued_at,
        "exp": issued_at + JWT_LIFETIME_SECONDS,
    }
    try:
        return jwt.encode(payload, private_key, algorithm="RS256", headers={"kid": app_id, "typ": "JWT"})
    except (jwt.exceptions.PyJWTError, ValueError) as exc:
        problem = f"privateKeyPath: {key_file} is not a usable RSA private key ({exc})"
        raise ConfigError("enable-banking", [problem]) from exc


class EnableBankingProvider(BankProvider):
    """Enable Banking (PSD2 aggregation over a pre-authorised session)."""

    name = "enable-banking"
    display_name = "Enable Banking (PSD2)"
    settings_model = EnableBankingSettings

    def config_schema(self) -> List[ConfigField]:
        return [field for field in super().config_schema() if field.name in ("appId", "privateKeyPath", "sessionId")]

    def _headers(self, settings: EnableBankingSettings) -> Dict[str, str]:
        token = generate_jwt(settings.app_id, settings.private_key_path)
        return {"Authorization": f"Bearer {token}", "Accept": "application/json"}

    async def _get(self, client, settings: EnableBankingSettings, url: str, **kwargs: Any) -> Any:
        # A fresh token per request; retries re-sign as well.
        async def fetch() -> Any:
            return await request_json(
                client, "GET", url, provider=self.name, headers=self._headers(settings), **kwargs
            )

        return await self._call(fetch)

    async def list_accounts(self, config: Mapping[str, Any]) -> List[Account]:
        settings = self.validate_config(config)
        if settings.accounts:
            return [
                Account(
                    uid=cached.uid,
                    external_identifier=cached.iban or cached.uid,
                    display_name=cached.name or cached.uid,
                    currency_code=cached.currency,
                )
                for cached in settings.accounts
            ]

        async with self._client(API_BASE) as client:
            session = await self._get(client, settings, f"/sessions/{settings.session_id}")
            if not isinstance(session, dict) or not isinstance(session.get("accounts"), list):
                raise malformed(self.name, "session without an accounts list")
            accounts: List[Account] = []
            for entry in session["accounts"]:
                uid = entry.get("uid") if isinstance(entry, dict) else entry
                details = await self._get(client, settings, f"/accounts/{uid}/details")
                accounts.extend(self._normalize([(str(uid), details)], _to_account))
        logger.info("Enable Banking session %s exposes %d accounts", settings.session_id, len(accounts))
        return accounts

    async def list_transactions(
        self,
        config: Mapping[str, Any],
        account_id: str,
        filter: Optional[TransactionFilter] = None,
    ) -> List[Transaction]:
        settings = self.validate_config(config)
        base_params: Dict[str, str] = {}
        if filter and filter.date_from:
            base_params["date_from"] = filter.date_from.isoformat()
        if filter and filter.date_to:
            base_params["date_to"] = filter.date_to.isoformat()

        pages: List[List[Any]] = []
        async with self._client(API_BASE) as client:

            async def fetch_page(token: Optional[str]) -> Tuple[List[Any], Optional[str]]:
                params = dict(base_params, continuation_key=token) if token else base_params
                data = await self._get(client, settings, f"/accounts/{account_id}/transactions", params=params)
                if not isinstance(data, dict) or not isinstance(data.get("transactions"), list):
                    raise malformed(self.name, "transactions response without a transactions list")
                pages.append(data["transactions"])
                return data["transactions"], data.get("continuation_key") or None

            await paginate_token(fetch_page, label=f"enable-banking:{account_id}")

        records = [
            (account_id, page_no, seq, raw)
            for page_no, page in enumerate(pages, start=1)
            for seq, raw in enumerate(page, start=1)
        ]
        transactions = [tx for tx in self._normalize(records, _to_transaction) if tx is not None]
        skipped = len(records) - len(transactions)
        if skipped:
            logger.warning("Skipped %d Enable Banking transactions without any date on account %s", skipped, account_id)
        return self._finish(transactions, filter, account_id)

    async def get_balance(self, config: Mapping[str, Any], account_id: str) -> List[Balance]:
        settings = self.validate_config(config)
        async with self._client(API_BASE) as client:
            data = await self._get(client, settings, f"/accounts/{account_id}/balances")
        if not isinstance(data, dict):
            raise malformed(self.name, "balances response is not an object")
        return self._normalize(
            data.get("balances") or [],
            lambda raw: Balance(
                account_id=account_id,
                amount=from_signed(raw["balance_amount"]["amount"]),
                currency_code=raw["balance_amount"].get("currency") or DEFAULT_CURRENCY,
                type=raw.get("balance_type") or "unknown",
            ),
        )


def _to_account(item: Tuple[str, Any]) -> Account:
    uid, details = item
    details = details if isinstance(details, dict) else {}
    return Account(
        uid=details.get("uid") or uid,
        external_identifier=(details.get("account_id") or {}).get("iban") or uid,
        display_name=first_present(details.get("details"), details.get("product"), details.get("name"), default=uid),
        currency_code=details.get("currency") or DEFAULT_CURRENCY,
    )


def _remittance(raw: Dict[str, Any]) -> str:
    info = raw.get("remittance_information")
    if isinstance(info, list):
        return " ".join(str(part) for part in info if part)
    return str(info or "").strip()


def _to_transaction(item: Tuple[str, int, int, Dict[str, Any]]) -> Optional[Transaction]:
    account_id, page_no, seq, raw = item
    booked = parse_date(first_present(raw.get("booking_date"), raw.get("value_date"), raw.get("transaction_date")))
    if booked is None:
        return None
    money = raw["transaction_amount"]
    amount = from_directional(
        money["amount"], raw.get("credit_debit_indicator"), debit=DEBIT_CODES
    )
    is_debit = amount < 0
    counterpart = raw.get("creditor") if is_debit else raw.get("debtor")
    merchant = first_present((counterpart or {}).get("name"))
    remittance = _remittance(raw)
    if raw.get("entry_reference"):
        tx_id = str(raw["entry_reference"])
    elif raw.get("transaction_id"):
        tx_id = f"eb:{account_id}:{raw['transaction_id']}"
    else:
        tx_id = f"eb:{account_id}:p{page_no}:{seq}"
    return Transaction(
        id=tx_id,
        account_id=account_id,
        date=booked,
        signed_amount=amount,
        currency_code=money.get("currency") or DEFAULT_CURRENCY,
        description=first_present(merchant, remittance, default="Unknown transaction"),
        merchant_name=merchant,
        type=direction_of(amount),
        reference=remittance or None,
        raw_provider_payload=raw,
    )

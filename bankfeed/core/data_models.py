"""Normalized banking models every provider maps into."""
from __future__ import annotations

import datetime as dt
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

TransactionType = Literal["debit", "credit"]


class BankfeedModel(BaseModel):
    """Snake_case attributes, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Account(BankfeedModel):
    """A provider account. ``uid`` is only unique within its connection."""

    uid: str
    external_identifier: str
    display_name: str
    currency_code: str
    connection_id: str = ""


class Transaction(BankfeedModel):
    """A single booked movement. Negative ``signed_amount`` means money left the account."""

    id: str
    account_id: str
    date: dt.date
    signed_amount: Decimal
    currency_code: str
    description: str
    merchant_name: Optional[str] = None
    category: Optional[str] = None
    type: TransactionType
    reference: Optional[str] = None
    raw_provider_payload: Optional[Dict[str, Any]] = Field(default=None, repr=False)

    @model_validator(mode="after")
    def _sign_matches_type(self) -> "Transaction":
        is_debit = self.signed_amount < 0
        if is_debit != (self.type == "debit"):
            raise ValueError(
                f"transaction {self.id}: amount {self.signed_amount} contradicts type {self.type!r}"
            )
        return self


class Balance(BankfeedModel):
    """One balance figure. ``type`` is whatever the provider calls it (booked, ledger, ...)."""

    account_id: str
    amount: Decimal
    currency_code: str
    type: str


class TransactionFilter(BankfeedModel):
    date_from: Optional[dt.date] = None
    date_to: Optional[dt.date] = None
    amount_min: Optional[Decimal] = None
    amount_max: Optional[Decimal] = None
    type: Optional[TransactionType] = None
    limit: Optional[int] = Field(default=None, ge=1)

    def date_window(self) -> "TransactionFilter":
        """The part of the filter providers can push to their API."""
        return TransactionFilter(date_from=self.date_from, date_to=self.date_to)

    def matches(self, tx: Transaction, include_dates: bool = True) -> bool:
        if include_dates:
            if self.date_from is not None and tx.date < self.date_from:
                return False
            if self.date_to is not None and tx.date > self.date_to:
                return False
        magnitude = abs(tx.signed_amount)
        if self.amount_min is not None and magnitude < self.amount_min:
            return False
        if self.amount_max is not None and magnitude > self.amount_max:
            return False
        if self.type is not None and tx.type != self.type:
            return False
        return True

    def apply(self, transactions: Iterable[Transaction], include_dates: bool = True) -> List[Transaction]:
        selected = [tx for tx in transactions if self.matches(tx, include_dates=include_dates)]
        if self.limit is not None:
            selected = selected[: self.limit]
        return selected


class ConfigField(BankfeedModel):
    """Describes one config entry so a setup wizard can prompt for it."""

    name: str
    label: str
    type: Literal["string", "path", "select"] = "string"
    required: bool
    secret: bool = False
    options: Optional[List[str]] = None
    default: Optional[str] = None


class Connection(BankfeedModel):
    """One configured credential set bound to one provider."""

    id: str
    provider: str
    label: str = ""
    config: Dict[str, Any] = Field(default_factory=dict)


class ConfigDefaults(BankfeedModel):
    """Per-file overrides. Unset fields fall back to the environment settings."""

    transaction_days: Optional[int] = Field(default=None, gt=0)
    currency: Optional[str] = None


class AppConfig(BankfeedModel):
    version: int = 1
    connections: List[Connection] = Field(default_factory=list)
    defaults: ConfigDefaults = Field(default_factory=ConfigDefaults)

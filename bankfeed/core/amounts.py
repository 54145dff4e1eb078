"""Amount normalization and field-priority helpers.

Every provider encodes money differently. These helpers turn the three shapes
we meet in practice into one signed ``Decimal`` where negative means expense:

* a pre-signed decimal (Teller, Enable Banking balances),
* an unsigned magnitude plus a direction code (Tink, Enable Banking, OBR),
* a fixed-point ``{unscaledValue, scale}`` pair, possibly nested under
  ``value`` (Tink).

Which direction codes count as debit or credit is decided by each provider
module, never here.
"""
from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Collection, Iterable, Mapping, Optional

from .data_models import TransactionType


def to_decimal(value: Any) -> Decimal:
    """Coerce str/int/float to Decimal without binary float artefacts."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or value is None:
        raise ValueError(f"not an amount: {value!r}")
    if isinstance(value, float):
        value = repr(value)
    text = str(value).strip().replace(" ", "").replace(" ", "")
    try:
        result = Decimal(text)
    except InvalidOperation as exc:
        raise ValueError(f"not an amount: {value!r}") from exc
    if not result.is_finite():
        raise ValueError(f"not an amount: {value!r}")
    return result


def from_signed(value: Any) -> Decimal:
    return to_decimal(value)


def from_directional(
    magnitude: Any,
    indicator: Optional[str],
    *,
    debit: Collection[str],
    credit: Collection[str] = (),
) -> Decimal:
    """Apply a credit/debit code to a magnitude.

    Codes outside both sets (neutral, default, missing) leave the sign of the
    magnitude itself in charge.
    """
    amount = to_decimal(magnitude)
    if indicator in debit:
        return -abs(amount)
    if indicator in credit:
        return abs(amount)
    return amount


def from_fixed_point(payload: Mapping[str, Any]) -> Decimal:
    """``{unscaledValue, scale}`` (or the same nested under ``value``) -> Decimal.

    ``scale`` may arrive as an int or a string; a missing scale means 0.
    """
    nested = payload.get("value")
    if isinstance(nested, Mapping):
        payload = nested
    unscaled = payload.get("unscaledValue")
    if unscaled is None:
        raise ValueError(f"fixed-point amount without unscaledValue: {dict(payload)!r}")
    try:
        scale = int(payload.get("scale") or 0)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"bad fixed-point scale: {payload.get('scale')!r}") from exc
    return Decimal(int(str(unscaled).strip())).scaleb(-scale)


def direction_of(amount: Decimal) -> TransactionType:
    return "debit" if amount < 0 else "credit"


def first_present(*values: Any, default: Any = None) -> Any:
    """First value that is not None/empty; the field-priority chain."""
    for value in values:
        if value is None:
            continue
        if isinstance(value, str):
            value = value.strip()
            if not value:
                continue
        return value
    return default


def join_category(parts: Optional[Iterable[Any]], sep: str = " > ") -> Optional[str]:
    if not parts:
        return None
    cleaned = [str(part).strip() for part in parts if part is not None and str(part).strip()]
    return sep.join(cleaned) or None


def dig(payload: Any, *path: str, default: Any = None) -> Any:
    """Walk nested dicts; any missing hop yields ``default``."""
    current = payload
    for key in path:
        if isinstance(current, Mapping) and key in current:
            current = current[key]
        else:
            return default
    return current

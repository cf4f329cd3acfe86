"""Conversion of source amounts into the accounting currency (EUR).

Rates are units of the foreign currency per 1 EUR. ``BGN`` is pegged by the
currency board; the others are approximate and only good enough for
reporting.
"""

from __future__ import annotations

from collections.abc import Mapping
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from .logging_setup import get_logger
from .models import NormalizedAmount

ACCOUNTING_CURRENCY = "EUR"

RATES_PER_EUR: Mapping[str, Decimal] = {
    "EUR": Decimal("1"),
    "BGN": Decimal("1.95583"),
    "USD": Decimal("1.08"),
    "GBP": Decimal("0.85"),
    "RON": Decimal("4.97"),
    "PLN": Decimal("4.32"),
    "CHF": Decimal("0.94"),
    "CZK": Decimal("25.0"),
    "HUF": Decimal("395.0"),
    "TRY": Decimal("35.0"),
}

_CENT = Decimal("0.01")

logger = get_logger(__name__)


def round_money(value: Decimal) -> Decimal:
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


def to_decimal(raw: Any) -> Decimal | None:
    """Coerce ``raw`` to ``Decimal`` (``None`` for blanks and garbage)."""

    if raw is None:
        return None
    if isinstance(raw, Decimal):
        return raw
    s = str(raw).strip()
    if not s:
        return None
    try:
        d = Decimal(s)
    except (InvalidOperation, ValueError):
        return None
    return d if d.is_finite() else None


def normalize(amount: Decimal | int | float | str, source_currency: str | None) -> NormalizedAmount:
    """Convert ``amount`` from ``source_currency`` into EUR.

    - ``EUR`` (or a blank currency) is returned as-is, rounded to cents, with
      no original amount.
    - A known currency is divided by its rate and rounded half-up to cents;
      the unrounded input and its currency are kept as the original.
    - An unknown currency is returned unconverted under its own code and a
      warning is logged.
    """

    value = to_decimal(amount)
    if value is None:
        raise ValueError(f"Not a numeric amount: {amount!r}")
    code = (source_currency or ACCOUNTING_CURRENCY).strip().upper() or ACCOUNTING_CURRENCY

    if code == ACCOUNTING_CURRENCY:
        return NormalizedAmount(round_money(value), ACCOUNTING_CURRENCY, None, None)

    rate = RATES_PER_EUR.get(code)
    if rate is None:
        logger.warning("No exchange rate for %s; keeping amount %s unconverted", code, value)
        return NormalizedAmount(round_money(value), code, None, None)

    return NormalizedAmount(round_money(value / rate), ACCOUNTING_CURRENCY, value, code)


__all__ = [
    "ACCOUNTING_CURRENCY",
    "RATES_PER_EUR",
    "normalize",
    "round_money",
    "to_decimal",
]

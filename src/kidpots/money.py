"""Utilities for working with monetary values in KidPots.

Amounts are always integer cents.  Parsing goes through :class:`~decimal.Decimal`
so that user input such as ``"12.50"`` never touches binary floating point.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Dict, Mapping, TypeVar, Union

from .exceptions import NegativeAmountError, ValidationError

CENT = Decimal("0.01")

Cents = int
AmountLike = Union[Decimal, int, str]

K = TypeVar("K")


def to_cents(value: AmountLike) -> Cents:
    """Convert ``value`` (major units for decimals and strings) to integer cents.

    Integers are taken to already be cents.  Strings may use a comma as the
    decimal separator, which is what the parents typing into the app use.
    """

    if isinstance(value, bool):
        raise TypeError("Booleans are not amounts.")
    if isinstance(value, int):
        return value
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, str):
        cleaned = value.strip().replace("'", "").replace(" ", "")
        if "," in cleaned and "." not in cleaned:
            cleaned = cleaned.replace(",", ".")
        try:
            amount = Decimal(cleaned)
        except InvalidOperation as exc:
            raise ValueError(f"Not a valid amount: {value!r}") from exc
    else:
        raise TypeError(f"Unsupported amount type: {type(value)!r}")

    if not amount.is_finite():
        raise ValueError(f"Not a valid amount: {value!r}")
    return int((amount.quantize(CENT, rounding=ROUND_HALF_UP) * 100).to_integral_value())


def require_non_negative(amount: Cents, *, field: str = "amount") -> Cents:
    """Ensure ``amount`` is an integer zero or greater."""

    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValidationError(f"{field} must be whole cents.", details={field: amount})
    if amount < 0:
        raise NegativeAmountError(f"{field} cannot be negative.", details={field: amount})
    return amount


def require_positive(amount: Cents, *, field: str = "amount") -> Cents:
    """Ensure ``amount`` is an integer strictly greater than zero."""

    require_non_negative(amount, field=field)
    if amount == 0:
        raise ValidationError(f"{field} must be greater than zero.", details={field: amount})
    return amount


def format_currency(cents: Cents, symbol: str = "CHF") -> str:
    """Return ``cents`` as a currency string, e.g. ``CHF 12.34``."""

    sign = "-" if cents < 0 else ""
    whole, rest = divmod(abs(cents), 100)
    return f"{sign}{symbol} {whole:,}.{rest:02d}"


def split_by_percent(total: Cents, weights: Mapping[K, int]) -> Dict[K, Cents]:
    """Split ``total`` by integer percentage ``weights``.

    Each share is floored; the cents lost to flooring go to the key with the
    largest weight (first one on ties) so the shares always sum to ``total``.
    """

    require_non_negative(total, field="total")
    if not weights:
        raise ValueError("At least one weight is required.")
    if any(weight < 0 for weight in weights.values()):
        raise ValueError("Weights cannot be negative.")
    weight_sum = sum(weights.values())
    if weight_sum != 100:
        raise ValueError("Weights must add up to 100.")

    shares = {key: total * weight // 100 for key, weight in weights.items()}
    remainder = total - sum(shares.values())
    if remainder:
        largest = max(weights, key=lambda key: weights[key])
        shares[largest] += remainder
    return shares


__all__ = [
    "AmountLike",
    "CENT",
    "Cents",
    "format_currency",
    "require_non_negative",
    "require_positive",
    "split_by_percent",
    "to_cents",
]

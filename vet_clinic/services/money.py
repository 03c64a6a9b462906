"""Decimal money helpers shared by the invoice ledger."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, Inexact, InvalidOperation, localcontext
from typing import Union

from vet_clinic.services.errors import ValidationError

CENT = Decimal("0.01")
MAX_MONEY = Decimal("10000000.00")

MoneyLike = Union[Decimal, int, float, str]


def parse_decimal(value: MoneyLike, label: str) -> Decimal:
    """Convert user input to an exact ``Decimal``.

    Floats go through ``str`` so ``110.1`` stays ``110.1`` instead of its
    binary expansion.
    """

    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{label}_invalid")
    if isinstance(value, float):
        value = str(value)
    if isinstance(value, str):
        value = value.strip().replace(",", "")
    try:
        parsed = Decimal(value)
    except (InvalidOperation, ValueError, TypeError) as exc:
        raise ValidationError(f"{label}_invalid") from exc
    if not parsed.is_finite():
        raise ValidationError(f"{label}_invalid")
    return parsed


def money_guard(value: Decimal, label: str) -> Decimal:
    if value > MAX_MONEY:
        raise ValidationError(f"{label}_too_large", max=str(MAX_MONEY))
    if value < -MAX_MONEY:
        raise ValidationError(f"{label}_too_negative", min=str(-MAX_MONEY))
    return value


def round_money(value: Decimal, label: str = "amount") -> Decimal:
    """Round to cents using round-half-up.

    Values too wide for the decimal context cannot be quantized and are
    reported as invalid input.
    """

    try:
        return value.quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation as exc:
        raise ValidationError(f"{label}_invalid") from exc


def has_cent_precision(value: Decimal, label: str = "amount") -> bool:
    try:
        return value == value.quantize(CENT)
    except InvalidOperation as exc:
        raise ValidationError(f"{label}_invalid") from exc


def exact_product(price: Decimal, quantity: int, label: str) -> Decimal:
    """``price * quantity`` without silent rounding past the context precision."""

    with localcontext() as ctx:
        ctx.traps[Inexact] = True
        try:
            return price * quantity
        except Inexact as exc:
            raise ValidationError(f"{label}_invalid") from exc


def to_cents(value: Decimal) -> int:
    return int(round_money(value) * 100)


def from_cents(cents: int | None) -> Decimal:
    return (Decimal(cents or 0) / 100).quantize(CENT)
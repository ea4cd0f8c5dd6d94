from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

CENTS = Decimal("0.01")


def to_decimal(value: Decimal | float | int | str | None) -> Decimal:
    if value is None or value == "":
        return Decimal("0")
    return Decimal(str(value))


def quantize_money(value: Decimal | float | int | str | None) -> Decimal:
    return to_decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)


def money(value: Decimal | float | int) -> str:
    return f"PHP {quantize_money(value):,.2f}"

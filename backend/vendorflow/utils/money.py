from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP

CENT = Decimal("0.01")


def to_decimal(amount: float | Decimal | int | str | None) -> Decimal:
    try:
        return Decimal(str(amount if amount is not None else 0))
    except Exception:
        return Decimal("0")


def quantize_money(amount: float | Decimal | int | str | None) -> Decimal:
    return to_decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def money_major_to_minor(amount: float | Decimal | int | None) -> int:
    """Rupees to paise, half-up. Negative amounts clamp to zero."""
    minor = (to_decimal(amount) * Decimal("100")).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(minor) if minor > 0 else 0


def money_minor_to_major(minor: int | float | Decimal | None) -> Decimal:
    try:
        parsed = Decimal(int(minor or 0))
    except Exception:
        parsed = Decimal("0")
    return (parsed / Decimal("100")).quantize(CENT, rounding=ROUND_HALF_UP)


def as_float(amount: Decimal | float | int | None) -> float:
    return float(quantize_money(amount))

"""Decimal amount utilities.

Listing prices, bids and fees are Decimal in major units (e.g. 12.5 HBAR).
No float anywhere. The ledger only accepts integer minor units, so amounts are
floored (never rounded) when converted for a transfer.
"""

from decimal import ROUND_DOWN, ROUND_FLOOR, Decimal

# Storage precision: NUMERIC(38, 8)
AMOUNT_QUANT = Decimal("0.00000001")

# Minor units per currency: HBAR -> tinybar (1e-8), USDT -> 1e-6
CURRENCY_DECIMALS: dict[str, int] = {
    "HBAR": 8,
    "USDT": 6,
}


def truncate_amount(amount: Decimal) -> Decimal:
    """Cut an amount down to storage precision (toward zero)."""
    return amount.quantize(AMOUNT_QUANT, rounding=ROUND_DOWN)


def to_minor_units(amount: Decimal, currency: str) -> int:
    """Convert a major-unit amount to integral minor units, flooring fractions.

    to_minor_units(Decimal("1.5"), "HBAR") -> 150000000
    to_minor_units(Decimal("0.0000001234"), "USDT") -> 0
    """
    decimals = CURRENCY_DECIMALS.get(currency)
    if decimals is None:
        raise ValueError(f"Unsupported currency: {currency}")
    scaled = amount * (Decimal(10) ** decimals)
    return int(scaled.to_integral_value(rounding=ROUND_FLOOR))


def format_amount(amount: Decimal | None) -> str | None:
    """Render an amount for API output without exponent or trailing zeros.

    Decimal("25.00000000") -> "25", Decimal("12.50") -> "12.5".
    """
    if amount is None:
        return None
    return format(amount.normalize(), "f")

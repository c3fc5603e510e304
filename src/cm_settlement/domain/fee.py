"""Fee calculation: platform fee, creator royalty, seller proceeds.

All math is exact Decimal. Each fee is truncated toward zero to storage
precision and seller_amount is derived by subtraction, so
platform_fee + royalty_fee + seller_amount == price always holds.
"""

from dataclasses import dataclass
from decimal import Decimal

from src.cm_common.amounts import truncate_amount
from src.cm_common.errors import RoyaltyOutOfRangeError

DEFAULT_PLATFORM_FEE_PERCENT = Decimal("2.5")
_HUNDRED = Decimal(100)


@dataclass(frozen=True)
class FeeBreakdown:
    price: Decimal
    platform_fee: Decimal
    royalty_fee: Decimal
    seller_amount: Decimal
    total_fees: Decimal


def compute_fees(
    price: Decimal,
    royalty_percent: Decimal,
    platform_fee_percent: Decimal = DEFAULT_PLATFORM_FEE_PERCENT,
) -> FeeBreakdown:
    """compute_fees(1000, 10) -> platform 25, royalty 100, seller 875, total 125."""
    price = Decimal(price)
    platform_fee = truncate_amount(price * Decimal(platform_fee_percent) / _HUNDRED)
    royalty_fee = truncate_amount(price * Decimal(royalty_percent) / _HUNDRED)
    total_fees = platform_fee + royalty_fee
    return FeeBreakdown(
        price=price,
        platform_fee=platform_fee,
        royalty_fee=royalty_fee,
        seller_amount=price - total_fees,
        total_fees=total_fees,
    )


def validate_royalty_percent(
    royalty_percent: Decimal,
    platform_fee_percent: Decimal = DEFAULT_PLATFORM_FEE_PERCENT,
) -> None:
    """Reject royalty rates that could leave the seller with a negative amount.

    Checked when a listing is created, not at settlement time.
    """
    if royalty_percent < 0 or royalty_percent + platform_fee_percent > _HUNDRED:
        raise RoyaltyOutOfRangeError(royalty_percent, platform_fee_percent)

"""Validated command models: built once at the HTTP boundary.

Routers combine the authenticated identity with the request body into one of
these; the services never see raw request dicts. Commands are immutable.
"""

from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from src.cm_common.enums import Currency

# Hedera-style account id: shard.realm.num
ACCOUNT_ID_PATTERN = r"^\d+\.\d+\.\d+$"


class _Command(BaseModel):
    model_config = ConfigDict(frozen=True)


class CreateListingCommand(_Command):
    seller_id: str = Field(min_length=1)
    seller_account_id: str = Field(pattern=ACCOUNT_ID_PATTERN)
    token_id: str = Field(pattern=ACCOUNT_ID_PATTERN)
    serial_number: int = Field(ge=1)
    episode_id: str = Field(min_length=1)
    price: Decimal = Field(ge=0, max_digits=30, decimal_places=8)
    currency: Currency = Currency.HBAR
    expires_in_days: int | None = Field(default=None, ge=1, le=365)


class CreateAuctionCommand(_Command):
    seller_id: str = Field(min_length=1)
    seller_account_id: str = Field(pattern=ACCOUNT_ID_PATTERN)
    token_id: str = Field(pattern=ACCOUNT_ID_PATTERN)
    serial_number: int = Field(ge=1)
    episode_id: str = Field(min_length=1)
    starting_price: Decimal = Field(ge=0, max_digits=30, decimal_places=8)
    reserve_price: Decimal | None = Field(default=None, ge=0, max_digits=30, decimal_places=8)
    minimum_bid_increment: Decimal = Field(
        default=Decimal("1"), gt=0, max_digits=30, decimal_places=8
    )
    duration_hours: float = Field(gt=0, le=24 * 30)
    currency: Currency = Currency.HBAR

    @model_validator(mode="before")
    @classmethod
    def default_reserve_to_starting_price(cls, data: Any) -> Any:
        # No separate "no reserve" option: an omitted reserve equals the opening price
        if isinstance(data, dict) and data.get("reserve_price") is None:
            data = {**data, "reserve_price": data.get("starting_price")}
        return data

    @property
    def effective_reserve_price(self) -> Decimal:
        return self.reserve_price if self.reserve_price is not None else self.starting_price


class PlaceBidCommand(_Command):
    listing_id: str = Field(min_length=1)
    bidder_id: str = Field(min_length=1)
    bidder_account_id: str = Field(pattern=ACCOUNT_ID_PATTERN)
    amount: Decimal = Field(gt=0, max_digits=30, decimal_places=8)
    tx_ref: str | None = None


class CancelListingCommand(_Command):
    listing_id: str = Field(min_length=1)
    requester_id: str = Field(min_length=1)


class BuyCommand(_Command):
    listing_id: str = Field(min_length=1)
    buyer_id: str = Field(min_length=1)
    buyer_account_id: str = Field(pattern=ACCOUNT_ID_PATTERN)

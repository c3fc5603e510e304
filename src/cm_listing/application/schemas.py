"""Pydantic schemas for cm_listing API requests and responses.

Amounts travel as strings ("12.5") so no client ever parses a float.

Cursor format for listings (snowflake ids sort by creation time):
  {"id": "<listing_id>"}
  Encoded as Base64 JSON string.
"""

import base64
import binascii
import json
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from src.cm_common.amounts import format_amount
from src.cm_common.enums import Currency
from src.cm_common.errors import InvalidCursorError
from src.cm_listing.domain.models import AuctionTerms, Bid, Listing

# ---------------------------------------------------------------------------
# Cursor utilities
# ---------------------------------------------------------------------------


def cursor_encode(last_listing: Listing) -> str:
    payload = {"id": last_listing.id}
    return base64.b64encode(json.dumps(payload).encode()).decode()


def cursor_decode(cursor: str | None) -> str | None:
    """Decode cursor -> listing_id, or None when no cursor was sent.

    Raises InvalidCursorError for anything cursor_encode did not produce.
    """
    if cursor is None:
        return None
    try:
        data = json.loads(base64.b64decode(cursor.encode(), validate=True).decode())
        listing_id = data["id"]
    except (binascii.Error, ValueError, KeyError, TypeError) as exc:
        raise InvalidCursorError() from exc
    if not isinstance(listing_id, str):
        raise InvalidCursorError()
    return listing_id


def _iso(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt is not None else None


# ---------------------------------------------------------------------------
# Requests (identity comes from the JWT, not the body)
# ---------------------------------------------------------------------------


class CreateListingRequest(BaseModel):
    token_id: str
    serial_number: int
    episode_id: str
    price: Decimal
    currency: Currency = Currency.HBAR
    expires_in_days: int | None = None


class CreateAuctionRequest(BaseModel):
    token_id: str
    serial_number: int
    episode_id: str
    starting_price: Decimal
    reserve_price: Decimal | None = None
    minimum_bid_increment: Decimal = Decimal("1")
    duration_hours: float = Field(default=24)
    currency: Currency = Currency.HBAR


class PlaceBidRequest(BaseModel):
    amount: Decimal
    tx_ref: str | None = None


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class BidOut(BaseModel):
    bidder_id: str
    bidder_account_id: str
    amount: str
    placed_at: str
    tx_ref: str | None

    @classmethod
    def from_domain(cls, bid: Bid) -> "BidOut":
        return cls(
            bidder_id=bid.bidder_id,
            bidder_account_id=bid.bidder_account_id,
            amount=format_amount(bid.amount),  # type: ignore[arg-type]
            placed_at=bid.placed_at.isoformat(),
            tx_ref=bid.tx_ref,
        )


class AuctionOut(BaseModel):
    starting_price: str
    reserve_price: str
    current_bid: str
    minimum_bid_increment: str
    suggested_next_bid: str
    highest_bidder_id: str | None
    highest_bidder_account_id: str | None
    bid_count: int
    bids: list[BidOut]
    start_time: str
    end_time: str

    @classmethod
    def from_domain(cls, a: AuctionTerms) -> "AuctionOut":
        return cls(
            starting_price=format_amount(a.starting_price),  # type: ignore[arg-type]
            reserve_price=format_amount(a.reserve_price),  # type: ignore[arg-type]
            current_bid=format_amount(a.current_bid),  # type: ignore[arg-type]
            minimum_bid_increment=format_amount(a.minimum_bid_increment),  # type: ignore[arg-type]
            suggested_next_bid=format_amount(a.suggested_next_bid),  # type: ignore[arg-type]
            highest_bidder_id=a.highest_bidder_id,
            highest_bidder_account_id=a.highest_bidder_account_id,
            bid_count=len(a.bids),
            bids=[BidOut.from_domain(b) for b in a.bids],
            start_time=a.start_time.isoformat(),
            end_time=a.end_time.isoformat(),
        )


class ListingResponse(BaseModel):
    id: str
    token_id: str
    serial_number: int
    comic_id: str
    episode_id: str
    seller_id: str
    seller_account_id: str
    listing_type: str
    price: str
    currency: str
    status: str
    auction: AuctionOut | None
    listed_at: str
    expires_at: str | None
    buyer_id: str | None
    buyer_account_id: str | None
    sold_price: str | None
    sold_at: str | None
    ledger_transaction_id: str | None
    explorer_url: str | None
    views: int
    version: int

    @classmethod
    def from_domain(cls, listing: Listing) -> "ListingResponse":
        return cls(
            id=listing.id,
            token_id=listing.token_id,
            serial_number=listing.serial_number,
            comic_id=listing.comic_id,
            episode_id=listing.episode_id,
            seller_id=listing.seller_id,
            seller_account_id=listing.seller_account_id,
            listing_type=listing.listing_type,
            price=format_amount(listing.price_amount),  # type: ignore[arg-type]
            currency=listing.currency,
            status=listing.status,
            auction=AuctionOut.from_domain(listing.auction) if listing.auction else None,
            listed_at=listing.listed_at.isoformat(),
            expires_at=_iso(listing.expires_at),
            buyer_id=listing.buyer_id,
            buyer_account_id=listing.buyer_account_id,
            sold_price=format_amount(listing.sold_price),
            sold_at=_iso(listing.sold_at),
            ledger_transaction_id=listing.ledger_transaction_id,
            explorer_url=listing.explorer_url,
            views=listing.views,
            version=listing.version,
        )


class ListingListResponse(BaseModel):
    items: list[ListingResponse]
    next_cursor: str | None
    has_more: bool

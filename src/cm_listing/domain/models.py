"""Domain models for cm_listing: pure dataclasses, no SQLAlchemy dependency."""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal


@dataclass
class Bid:
    bidder_id: str
    bidder_account_id: str
    amount: Decimal
    placed_at: datetime
    tx_ref: str | None = None       # optional escrow/payment reference from the bidder


@dataclass
class AuctionTerms:
    starting_price: Decimal
    reserve_price: Decimal
    current_bid: Decimal             # == starting_price until the first bid
    minimum_bid_increment: Decimal   # advisory, not enforced on admission
    start_time: datetime
    end_time: datetime
    highest_bidder_id: str | None = None
    highest_bidder_account_id: str | None = None
    bids: list[Bid] = field(default_factory=list)   # arrival order

    @property
    def has_bids(self) -> bool:
        return self.highest_bidder_id is not None

    @property
    def suggested_next_bid(self) -> Decimal:
        return self.current_bid + self.minimum_bid_increment

    def has_ended(self, now: datetime) -> bool:
        return now > self.end_time


@dataclass
class Listing:
    id: str
    token_id: str
    serial_number: int
    comic_id: str
    episode_id: str
    seller_id: str
    seller_account_id: str
    listing_type: str                # ListingType value
    price_amount: Decimal            # fixed price, or starting price for auctions
    currency: str
    status: str                      # ListingStatus value
    listed_at: datetime
    auction: AuctionTerms | None = None
    expires_at: datetime | None = None
    # Sale outcome
    buyer_id: str | None = None
    buyer_account_id: str | None = None
    sold_price: Decimal | None = None
    sold_at: datetime | None = None
    ledger_transaction_id: str | None = None
    explorer_url: str | None = None
    # Bookkeeping
    views: int = 0
    version: int = 0
    updated_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    @property
    def is_auction(self) -> bool:
        return self.listing_type == "auction"

    def is_past_expiry(self, now: datetime) -> bool:
        return self.expires_at is not None and now > self.expires_at


@dataclass
class MarketplaceStats:
    active_listings: int
    active_auctions: int
    sold_listings: int
    total_volume: Decimal
    average_sale_price: Decimal

"""Listing state transitions: active -> {sold, cancelled, expired}.

Pure functions over the Listing dataclass. They validate the current state,
mutate the in-memory listing and return it; persistence (with a version
compare-and-swap) is the caller's job. Terminal listings are never mutated.
"""

from datetime import datetime
from decimal import Decimal

from src.cm_common.enums import ListingStatus
from src.cm_common.errors import (
    BidsExistError,
    ListingNotActiveError,
    NotSellerError,
)
from src.cm_listing.domain.models import Listing


def ensure_active(listing: Listing) -> None:
    if listing.status != ListingStatus.ACTIVE:
        raise ListingNotActiveError(listing.id, listing.status)


def cancel(listing: Listing, requester_id: str, now: datetime) -> Listing:
    if listing.seller_id != requester_id:
        raise NotSellerError(listing.id)
    ensure_active(listing)
    # Bidders are protected from unilateral withdrawal once bidding starts
    if listing.auction is not None and listing.auction.bids:
        raise BidsExistError(listing.id)
    listing.status = ListingStatus.CANCELLED.value
    listing.updated_at = now
    return listing


def complete_sale(
    listing: Listing,
    buyer_id: str,
    buyer_account_id: str,
    sold_price: Decimal,
    ledger_transaction_id: str,
    explorer_url: str | None,
    now: datetime,
) -> Listing:
    ensure_active(listing)
    listing.status = ListingStatus.SOLD.value
    listing.buyer_id = buyer_id
    listing.buyer_account_id = buyer_account_id
    listing.sold_price = sold_price
    listing.sold_at = now
    listing.ledger_transaction_id = ledger_transaction_id
    listing.explorer_url = explorer_url
    listing.updated_at = now
    return listing


def expire(listing: Listing, now: datetime) -> Listing:
    ensure_active(listing)
    listing.status = ListingStatus.EXPIRED.value
    listing.updated_at = now
    return listing

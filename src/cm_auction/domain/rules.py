"""Auction rules: bid admission, end-of-auction evaluation, listing completion.

Bid admission only requires amount > current_bid. minimum_bid_increment is
stored and shown to clients as a suggestion but is not enforced.
The current_bid holder at evaluation time wins; current_bid is the running
maximum, so bids never need re-sorting.
"""

from datetime import datetime
from decimal import Decimal

from src.cm_common.enums import AuctionOutcome, ListingStatus
from src.cm_common.errors import (
    AuctionEndedError,
    AuctionNotActiveError,
    BidTooLowError,
    SelfBidError,
    WrongListingTypeError,
)
from src.cm_listing.domain import lifecycle
from src.cm_listing.domain.models import AuctionTerms, Listing


def require_auction(listing: Listing) -> AuctionTerms:
    if listing.auction is None:
        raise WrongListingTypeError(listing.id, "auction")
    return listing.auction


def check_bid(listing: Listing, bidder_id: str, amount: Decimal, now: datetime) -> None:
    """Raise the first violated admission rule, in this order:
    not active, ended, self-bid, too low (equal bids are rejected).
    """
    auction = require_auction(listing)
    if listing.status != ListingStatus.ACTIVE:
        raise AuctionNotActiveError(listing.id, listing.status)
    if auction.has_ended(now):
        raise AuctionEndedError(listing.id)
    if bidder_id == listing.seller_id:
        raise SelfBidError()
    if amount <= auction.current_bid:
        raise BidTooLowError(amount, auction.current_bid)


def evaluate(auction: AuctionTerms) -> AuctionOutcome:
    """Decide how an ended auction resolves. Does not mutate anything."""
    if not auction.has_bids:
        return AuctionOutcome.EXPIRED
    if auction.current_bid < auction.reserve_price:
        return AuctionOutcome.RESERVE_NOT_MET
    return AuctionOutcome.SOLD


def complete_auction(
    listing: Listing,
    ledger_transaction_id: str | None,
    now: datetime,
    explorer_url: str | None = None,
) -> Listing:
    """Move an active auction to its terminal state.

    With a highest bidder and a ledger transaction id the listing is sold to
    that bidder at current_bid; otherwise it expires.
    """
    auction = require_auction(listing)
    if listing.status != ListingStatus.ACTIVE:
        raise AuctionNotActiveError(listing.id, listing.status)
    if auction.has_bids and ledger_transaction_id is not None:
        return lifecycle.complete_sale(
            listing,
            buyer_id=auction.highest_bidder_id,  # type: ignore[arg-type]
            buyer_account_id=auction.highest_bidder_account_id,  # type: ignore[arg-type]
            sold_price=auction.current_bid,
            ledger_transaction_id=ledger_transaction_id,
            explorer_url=explorer_url,
            now=now,
        )
    return lifecycle.expire(listing, now)

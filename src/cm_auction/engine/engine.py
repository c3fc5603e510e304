"""AuctionEngine: serialized bid admission per listing.

Two layers keep concurrent bids from both succeeding against the same
current_bid baseline:
  1. a per-listing asyncio.Lock (one bid or settlement in flight per process)
  2. a SQL compare-and-swap on (current_bid, version) for everything else
A lost CAS surfaces as ConcurrentUpdateError, which callers may retry.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from src.cm_auction.domain import rules
from src.cm_common.datetime_utils import Clock, utc_now
from src.cm_common.enums import AuctionOutcome
from src.cm_common.errors import (
    AuctionEndedError,
    ConcurrentUpdateError,
    ListingNotFoundError,
)
from src.cm_common.locks import ListingLocks, get_listing_locks
from src.cm_listing.application.commands import PlaceBidCommand
from src.cm_listing.domain.models import Bid, Listing
from src.cm_listing.domain.repository import ListingRepositoryProtocol

logger = logging.getLogger(__name__)


class AuctionEngine:
    def __init__(self, locks: ListingLocks | None = None, clock: Clock = utc_now) -> None:
        self._locks = locks if locks is not None else get_listing_locks()
        self._clock = clock

    async def place_bid(
        self, db: AsyncSession, cmd: PlaceBidCommand, repo: ListingRepositoryProtocol
    ) -> Listing:
        """Admit one bid. Commits on success; rolls back on any rejection
        except AuctionEnded, whose lazy expiry transition is kept.
        """
        async with self._locks.for_listing(cmd.listing_id):
            try:
                return await self._place_bid_inner(db, cmd, repo)
            except AuctionEndedError:
                await db.commit()
                raise
            except Exception:
                await db.rollback()
                raise

    async def _place_bid_inner(
        self, db: AsyncSession, cmd: PlaceBidCommand, repo: ListingRepositoryProtocol
    ) -> Listing:
        listing = await repo.get_by_id(db, cmd.listing_id)
        if listing is None:
            raise ListingNotFoundError(cmd.listing_id)

        now = self._clock()
        try:
            rules.check_bid(listing, cmd.bidder_id, cmd.amount, now)
        except AuctionEndedError:
            await self._close_if_unsold(db, listing, repo)
            raise

        auction = rules.require_auction(listing)
        bid = Bid(
            bidder_id=cmd.bidder_id,
            bidder_account_id=cmd.bidder_account_id,
            amount=cmd.amount,
            placed_at=now,
            tx_ref=cmd.tx_ref,
        )
        updated = await repo.append_bid(
            db,
            listing.id,
            bid,
            expected_current_bid=auction.current_bid,
            expected_version=listing.version,
        )
        if updated is None:
            raise ConcurrentUpdateError(listing.id)
        await db.commit()

        logger.info(
            "Bid accepted: listing=%s bidder=%s amount=%s (previous=%s)",
            listing.id, cmd.bidder_id, cmd.amount, auction.current_bid,
        )
        return updated

    async def _close_if_unsold(
        self, db: AsyncSession, listing: Listing, repo: ListingRepositoryProtocol
    ) -> None:
        """Expire an ended auction that cannot sell.

        An auction with a winning bid is left active: only settlement may move
        it to sold, because that requires a ledger transfer.
        """
        outcome = rules.evaluate(rules.require_auction(listing))
        if outcome is AuctionOutcome.SOLD:
            return
        expected_version = listing.version
        rules.complete_auction(listing, None, self._clock())
        if await repo.save_transition(db, listing, expected_version) is None:
            logger.info("Ended auction %s already closed by another writer", listing.id)
            return
        logger.info("Auction %s closed on late bid: %s", listing.id, outcome.value)

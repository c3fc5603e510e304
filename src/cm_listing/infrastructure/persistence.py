"""ListingRepository: raw SQL persistence implementation.

Transaction ownership: the CALLER commits or rolls back. Mutations are
compare-and-swap UPDATEs guarded by `version` (and `current_bid` for bids);
zero rows returned means a concurrent writer won and the caller decides how
to surface it.

The partial unique index uq_listings_active_nft enforces one active listing
per (token_id, serial_number) even if two creators race past the
application-level existence check.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.cm_common.amounts import truncate_amount
from src.cm_common.errors import DuplicateListingError
from src.cm_listing.domain.models import AuctionTerms, Bid, Listing, MarketplaceStats

# ---------------------------------------------------------------------------
# SQL statements
# ---------------------------------------------------------------------------

_SELECT_COLUMNS = """
    id, token_id, serial_number, comic_id, episode_id,
    seller_id, seller_account_id, listing_type, price_amount, currency, status,
    starting_price, reserve_price, current_bid, minimum_bid_increment,
    start_time, end_time, highest_bidder_id, highest_bidder_account_id,
    buyer_id, buyer_account_id, sold_price, sold_at,
    ledger_transaction_id, explorer_url,
    views, version, listed_at, expires_at, updated_at
"""

_INSERT_LISTING_SQL = text("""
    INSERT INTO listings (id, token_id, serial_number, comic_id, episode_id,
        seller_id, seller_account_id, listing_type, price_amount, currency, status,
        starting_price, reserve_price, current_bid, minimum_bid_increment,
        start_time, end_time, listed_at, expires_at)
    VALUES (:id, :token_id, :serial_number, :comic_id, :episode_id,
        :seller_id, :seller_account_id, :listing_type, :price_amount, :currency, :status,
        :starting_price, :reserve_price, :current_bid, :minimum_bid_increment,
        :start_time, :end_time, :listed_at, :expires_at)
""")

_GET_LISTING_SQL = text(f"""
    SELECT {_SELECT_COLUMNS}
    FROM listings WHERE id = :listing_id
""")

_GET_ACTIVE_FOR_NFT_SQL = text(f"""
    SELECT {_SELECT_COLUMNS}
    FROM listings
    WHERE token_id = :token_id AND serial_number = :serial_number AND status = 'active'
""")

_GET_BIDS_SQL = text("""
    SELECT listing_id, bidder_id, bidder_account_id, amount, placed_at, tx_ref
    FROM listing_bids
    WHERE listing_id = ANY(CAST(:listing_ids AS TEXT[]))
    ORDER BY listing_id, seq
""")

# Bid admission CAS: only succeeds if nobody moved current_bid or version since we read it
_BID_CAS_SQL = text("""
    UPDATE listings
    SET current_bid = :amount,
        highest_bidder_id = :bidder_id,
        highest_bidder_account_id = :bidder_account_id,
        version = version + 1,
        updated_at = :placed_at
    WHERE id = :listing_id
      AND status = 'active'
      AND current_bid = :expected_current_bid
      AND version = :expected_version
    RETURNING version
""")

_INSERT_BID_SQL = text("""
    INSERT INTO listing_bids
        (listing_id, seq, bidder_id, bidder_account_id, amount, placed_at, tx_ref)
    VALUES (:listing_id,
        (SELECT COALESCE(MAX(seq), 0) + 1 FROM listing_bids WHERE listing_id = :listing_id),
        :bidder_id, :bidder_account_id, :amount, :placed_at, :tx_ref)
""")

_TRANSITION_SQL = text("""
    UPDATE listings
    SET status = :status,
        buyer_id = :buyer_id,
        buyer_account_id = :buyer_account_id,
        sold_price = :sold_price,
        sold_at = :sold_at,
        ledger_transaction_id = :ledger_transaction_id,
        explorer_url = :explorer_url,
        version = version + 1,
        updated_at = :updated_at
    WHERE id = :listing_id
      AND status = 'active'
      AND version = :expected_version
    RETURNING version
""")

_LIST_ACTIVE_SQL = text(f"""
    SELECT {_SELECT_COLUMNS}
    FROM listings
    WHERE status = 'active'
      AND (CAST(:listing_type AS TEXT) IS NULL OR listing_type = CAST(:listing_type AS TEXT))
      AND (CAST(:comic_id AS TEXT) IS NULL OR comic_id = CAST(:comic_id AS TEXT))
      AND (CAST(:episode_id AS TEXT) IS NULL OR episode_id = CAST(:episode_id AS TEXT))
      AND (CAST(:min_price AS NUMERIC) IS NULL OR price_amount >= CAST(:min_price AS NUMERIC))
      AND (CAST(:max_price AS NUMERIC) IS NULL OR price_amount <= CAST(:max_price AS NUMERIC))
      AND (CAST(:cursor_id AS TEXT) IS NULL OR id < CAST(:cursor_id AS TEXT))
    ORDER BY id DESC
    LIMIT :limit
""")

_LIST_SOLD_SQL = text(f"""
    SELECT {_SELECT_COLUMNS}
    FROM listings WHERE status = 'sold'
    ORDER BY sold_at NULLS LAST, id
""")

_LIST_ENDED_AUCTIONS_SQL = text("""
    SELECT id FROM listings
    WHERE status = 'active' AND listing_type = 'auction' AND end_time < :now
    ORDER BY end_time
    LIMIT :limit
""")

_LIST_EXPIRED_FIXED_SQL = text("""
    SELECT id FROM listings
    WHERE status = 'active' AND listing_type = 'fixed-price'
      AND expires_at IS NOT NULL AND expires_at < :now
    ORDER BY expires_at
    LIMIT :limit
""")

_MARKETPLACE_STATS_SQL = text("""
    SELECT
        COUNT(*) FILTER (WHERE status = 'active') AS active_listings,
        COUNT(*) FILTER (WHERE status = 'active' AND listing_type = 'auction')
            AS active_auctions,
        COUNT(*) FILTER (WHERE status = 'sold') AS sold_listings,
        COALESCE(SUM(sold_price) FILTER (WHERE status = 'sold'), 0) AS total_volume,
        COALESCE(AVG(sold_price) FILTER (WHERE status = 'sold'), 0) AS average_sale_price
    FROM listings
""")


# ---------------------------------------------------------------------------
# Row mappers
# ---------------------------------------------------------------------------


def _row_to_bid(row: Any) -> Bid:
    return Bid(
        bidder_id=row.bidder_id,
        bidder_account_id=row.bidder_account_id,
        amount=row.amount,
        placed_at=row.placed_at,
        tx_ref=row.tx_ref,
    )


def _row_to_listing(row: Any, bids: list[Bid]) -> Listing:
    auction: AuctionTerms | None = None
    if row.listing_type == "auction":
        auction = AuctionTerms(
            starting_price=row.starting_price,
            reserve_price=row.reserve_price,
            current_bid=row.current_bid,
            minimum_bid_increment=row.minimum_bid_increment,
            start_time=row.start_time,
            end_time=row.end_time,
            highest_bidder_id=row.highest_bidder_id,
            highest_bidder_account_id=row.highest_bidder_account_id,
            bids=bids,
        )
    return Listing(
        id=row.id,
        token_id=row.token_id,
        serial_number=row.serial_number,
        comic_id=row.comic_id,
        episode_id=row.episode_id,
        seller_id=row.seller_id,
        seller_account_id=row.seller_account_id,
        listing_type=row.listing_type,
        price_amount=row.price_amount,
        currency=row.currency,
        status=row.status,
        listed_at=row.listed_at,
        auction=auction,
        expires_at=row.expires_at,
        buyer_id=row.buyer_id,
        buyer_account_id=row.buyer_account_id,
        sold_price=row.sold_price,
        sold_at=row.sold_at,
        ledger_transaction_id=row.ledger_transaction_id,
        explorer_url=row.explorer_url,
        views=row.views,
        version=row.version,
        updated_at=row.updated_at,
    )


def _listing_params(listing: Listing) -> dict[str, Any]:
    auction = listing.auction
    return {
        "id": listing.id,
        "token_id": listing.token_id,
        "serial_number": listing.serial_number,
        "comic_id": listing.comic_id,
        "episode_id": listing.episode_id,
        "seller_id": listing.seller_id,
        "seller_account_id": listing.seller_account_id,
        "listing_type": listing.listing_type,
        "price_amount": listing.price_amount,
        "currency": listing.currency,
        "status": listing.status,
        "starting_price": auction.starting_price if auction else None,
        "reserve_price": auction.reserve_price if auction else None,
        "current_bid": auction.current_bid if auction else None,
        "minimum_bid_increment": auction.minimum_bid_increment if auction else None,
        "start_time": auction.start_time if auction else None,
        "end_time": auction.end_time if auction else None,
        "listed_at": listing.listed_at,
        "expires_at": listing.expires_at,
    }


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class ListingRepository:
    async def _load_bids(self, db: AsyncSession, listing_ids: list[str]) -> dict[str, list[Bid]]:
        bids: dict[str, list[Bid]] = {lid: [] for lid in listing_ids}
        if not listing_ids:
            return bids
        result = await db.execute(_GET_BIDS_SQL, {"listing_ids": listing_ids})
        for row in result.fetchall():
            bids[row.listing_id].append(_row_to_bid(row))
        return bids

    async def _hydrate(self, db: AsyncSession, rows: list[Any]) -> list[Listing]:
        auction_ids = [row.id for row in rows if row.listing_type == "auction"]
        bids = await self._load_bids(db, auction_ids)
        return [_row_to_listing(row, bids.get(row.id, [])) for row in rows]

    async def get_by_id(self, db: AsyncSession, listing_id: str) -> Listing | None:
        row = (await db.execute(_GET_LISTING_SQL, {"listing_id": listing_id})).fetchone()
        if row is None:
            return None
        return (await self._hydrate(db, [row]))[0]

    async def find_active_for_nft(
        self, db: AsyncSession, token_id: str, serial_number: int
    ) -> Listing | None:
        row = (
            await db.execute(
                _GET_ACTIVE_FOR_NFT_SQL,
                {"token_id": token_id, "serial_number": serial_number},
            )
        ).fetchone()
        if row is None:
            return None
        return (await self._hydrate(db, [row]))[0]

    async def insert(self, db: AsyncSession, listing: Listing) -> Listing:
        try:
            await db.execute(_INSERT_LISTING_SQL, _listing_params(listing))
        except IntegrityError as exc:
            if "uq_listings_active_nft" in str(exc.orig):
                raise DuplicateListingError(listing.token_id, listing.serial_number) from exc
            raise
        return listing

    async def append_bid(
        self,
        db: AsyncSession,
        listing_id: str,
        bid: Bid,
        expected_current_bid: Decimal,
        expected_version: int,
    ) -> Listing | None:
        row = (
            await db.execute(
                _BID_CAS_SQL,
                {
                    "listing_id": listing_id,
                    "amount": bid.amount,
                    "bidder_id": bid.bidder_id,
                    "bidder_account_id": bid.bidder_account_id,
                    "placed_at": bid.placed_at,
                    "expected_current_bid": expected_current_bid,
                    "expected_version": expected_version,
                },
            )
        ).fetchone()
        if row is None:
            return None
        await db.execute(
            _INSERT_BID_SQL,
            {
                "listing_id": listing_id,
                "bidder_id": bid.bidder_id,
                "bidder_account_id": bid.bidder_account_id,
                "amount": bid.amount,
                "placed_at": bid.placed_at,
                "tx_ref": bid.tx_ref,
            },
        )
        return await self.get_by_id(db, listing_id)

    async def save_transition(
        self, db: AsyncSession, listing: Listing, expected_version: int
    ) -> Listing | None:
        row = (
            await db.execute(
                _TRANSITION_SQL,
                {
                    "listing_id": listing.id,
                    "status": listing.status,
                    "buyer_id": listing.buyer_id,
                    "buyer_account_id": listing.buyer_account_id,
                    "sold_price": listing.sold_price,
                    "sold_at": listing.sold_at,
                    "ledger_transaction_id": listing.ledger_transaction_id,
                    "explorer_url": listing.explorer_url,
                    "updated_at": listing.updated_at,
                    "expected_version": expected_version,
                },
            )
        ).fetchone()
        if row is None:
            return None
        listing.version = row.version
        return listing

    async def list_active(
        self,
        db: AsyncSession,
        listing_type: str | None,
        comic_id: str | None,
        episode_id: str | None,
        min_price: Decimal | None,
        max_price: Decimal | None,
        cursor_id: str | None,
        limit: int,
    ) -> list[Listing]:
        result = await db.execute(
            _LIST_ACTIVE_SQL,
            {
                "listing_type": listing_type,
                "comic_id": comic_id,
                "episode_id": episode_id,
                "min_price": min_price,
                "max_price": max_price,
                "cursor_id": cursor_id,
                "limit": limit,
            },
        )
        return await self._hydrate(db, result.fetchall())

    async def list_sold(self, db: AsyncSession) -> list[Listing]:
        result = await db.execute(_LIST_SOLD_SQL)
        return await self._hydrate(db, result.fetchall())

    async def list_ended_auction_ids(
        self, db: AsyncSession, now: datetime, limit: int
    ) -> list[str]:
        result = await db.execute(_LIST_ENDED_AUCTIONS_SQL, {"now": now, "limit": limit})
        return [row.id for row in result.fetchall()]

    async def list_expired_fixed_price_ids(
        self, db: AsyncSession, now: datetime, limit: int
    ) -> list[str]:
        result = await db.execute(_LIST_EXPIRED_FIXED_SQL, {"now": now, "limit": limit})
        return [row.id for row in result.fetchall()]

    async def marketplace_stats(self, db: AsyncSession) -> MarketplaceStats:
        row = (await db.execute(_MARKETPLACE_STATS_SQL)).fetchone()
        return MarketplaceStats(
            active_listings=row.active_listings,
            active_auctions=row.active_auctions,
            sold_listings=row.sold_listings,
            total_volume=Decimal(row.total_volume),
            average_sale_price=truncate_amount(Decimal(row.average_sale_price)),
        )

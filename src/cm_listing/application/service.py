"""ListingService: the Listing Store's application layer.

Public operations (create, bid, cancel, expire) own their transaction:
commit on success, rollback on error. complete_sale / complete_auction are
called from inside the settlement transaction and never commit.
"""

import logging
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.cm_auction.application.service import get_auction_engine
from src.cm_auction.domain import rules
from src.cm_auction.engine.engine import AuctionEngine
from src.cm_catalog.domain.models import EpisodeNft
from src.cm_catalog.domain.repository import CatalogRepositoryProtocol
from src.cm_catalog.infrastructure.persistence import CatalogRepository
from src.cm_common.datetime_utils import Clock, days_after, hours_after, utc_now
from src.cm_common.enums import ListingStatus, ListingType
from src.cm_common.errors import (
    ConcurrentUpdateError,
    DuplicateListingError,
    EpisodeNftNotFoundError,
    InvalidReservePriceError,
    ListingNotFoundError,
    NotOwnerError,
    WrongListingTypeError,
)
from src.cm_common.id_generator import generate_id
from src.cm_listing.application.commands import (
    CancelListingCommand,
    CreateAuctionCommand,
    CreateListingCommand,
    PlaceBidCommand,
)
from src.cm_listing.application.schemas import (
    ListingListResponse,
    ListingResponse,
    cursor_decode,
    cursor_encode,
)
from src.cm_listing.domain import lifecycle
from src.cm_listing.domain.models import AuctionTerms, Listing
from src.cm_listing.domain.repository import ListingRepositoryProtocol
from src.cm_listing.infrastructure.persistence import ListingRepository
from src.cm_listing.infrastructure.view_counter import ListingViewCounter
from src.cm_settlement.domain.fee import validate_royalty_percent

logger = logging.getLogger(__name__)


class ListingService:
    def __init__(
        self,
        repo: ListingRepositoryProtocol | None = None,
        catalog: CatalogRepositoryProtocol | None = None,
        engine: AuctionEngine | None = None,
        view_counter: ListingViewCounter | None = None,
        clock: Clock = utc_now,
        platform_fee_percent: Decimal | None = None,
    ) -> None:
        self._repo: ListingRepositoryProtocol = repo or ListingRepository()
        self._catalog: CatalogRepositoryProtocol = catalog or CatalogRepository()
        self._engine = engine or get_auction_engine()
        self._views = view_counter or ListingViewCounter()
        self._clock = clock
        self._platform_fee_percent = (
            platform_fee_percent
            if platform_fee_percent is not None
            else settings.PLATFORM_FEE_PERCENT
        )

    @property
    def repo(self) -> ListingRepositoryProtocol:
        return self._repo

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def _check_listable(
        self,
        db: AsyncSession,
        seller_account_id: str,
        token_id: str,
        serial_number: int,
        episode_id: str,
    ) -> EpisodeNft:
        """Validation shared by fixed-price and auction listings. No side effects."""
        nft = await self._catalog.get_episode_nft(db, episode_id, serial_number)
        if nft is None or nft.token_id != token_id:
            raise EpisodeNftNotFoundError(episode_id, serial_number)
        if not await self._catalog.verify_ownership(
            db, token_id, serial_number, seller_account_id
        ):
            raise NotOwnerError(token_id, serial_number)
        validate_royalty_percent(nft.royalty_percent, self._platform_fee_percent)
        if await self._repo.find_active_for_nft(db, token_id, serial_number) is not None:
            raise DuplicateListingError(token_id, serial_number)
        return nft

    async def _insert(self, db: AsyncSession, listing: Listing) -> Listing:
        try:
            await self._repo.insert(db, listing)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        logger.info(
            "Listing created: id=%s type=%s nft=%s/%s price=%s %s seller=%s",
            listing.id, listing.listing_type, listing.token_id, listing.serial_number,
            listing.price_amount, listing.currency, listing.seller_id,
        )
        return listing

    async def create_listing(self, db: AsyncSession, cmd: CreateListingCommand) -> Listing:
        nft = await self._check_listable(
            db, cmd.seller_account_id, cmd.token_id, cmd.serial_number, cmd.episode_id
        )
        now = self._clock()
        listing = Listing(
            id=generate_id("lst_"),
            token_id=cmd.token_id,
            serial_number=cmd.serial_number,
            comic_id=nft.comic_id,
            episode_id=nft.episode_id,
            seller_id=cmd.seller_id,
            seller_account_id=cmd.seller_account_id,
            listing_type=ListingType.FIXED_PRICE.value,
            price_amount=cmd.price,
            currency=cmd.currency.value,
            status=ListingStatus.ACTIVE.value,
            listed_at=now,
            expires_at=days_after(now, cmd.expires_in_days) if cmd.expires_in_days else None,
            updated_at=now,
        )
        return await self._insert(db, listing)

    async def create_auction(self, db: AsyncSession, cmd: CreateAuctionCommand) -> Listing:
        reserve_price = cmd.effective_reserve_price
        if reserve_price < cmd.starting_price:
            raise InvalidReservePriceError(reserve_price, cmd.starting_price)
        nft = await self._check_listable(
            db, cmd.seller_account_id, cmd.token_id, cmd.serial_number, cmd.episode_id
        )
        now = self._clock()
        end_time = hours_after(now, cmd.duration_hours)
        listing = Listing(
            id=generate_id("lst_"),
            token_id=cmd.token_id,
            serial_number=cmd.serial_number,
            comic_id=nft.comic_id,
            episode_id=nft.episode_id,
            seller_id=cmd.seller_id,
            seller_account_id=cmd.seller_account_id,
            listing_type=ListingType.AUCTION.value,
            price_amount=cmd.starting_price,
            currency=cmd.currency.value,
            status=ListingStatus.ACTIVE.value,
            listed_at=now,
            auction=AuctionTerms(
                starting_price=cmd.starting_price,
                reserve_price=reserve_price,
                current_bid=cmd.starting_price,
                minimum_bid_increment=cmd.minimum_bid_increment,
                start_time=now,
                end_time=end_time,
            ),
            expires_at=end_time,
            updated_at=now,
        )
        return await self._insert(db, listing)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def place_bid(self, db: AsyncSession, cmd: PlaceBidCommand) -> Listing:
        return await self._engine.place_bid(db, cmd, self._repo)

    async def _load(self, db: AsyncSession, listing_id: str) -> Listing:
        listing = await self._repo.get_by_id(db, listing_id)
        if listing is None:
            raise ListingNotFoundError(listing_id)
        return listing

    async def _persist(self, db: AsyncSession, listing: Listing, expected_version: int) -> Listing:
        saved = await self._repo.save_transition(db, listing, expected_version)
        if saved is None:
            raise ConcurrentUpdateError(listing.id)
        return saved

    async def cancel(self, db: AsyncSession, cmd: CancelListingCommand) -> Listing:
        try:
            listing = await self._load(db, cmd.listing_id)
            expected_version = listing.version
            lifecycle.cancel(listing, cmd.requester_id, self._clock())
            listing = await self._persist(db, listing, expected_version)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        logger.info("Listing cancelled: id=%s by=%s", listing.id, cmd.requester_id)
        return listing

    async def complete_sale(
        self,
        db: AsyncSession,
        listing_id: str,
        buyer_id: str,
        buyer_account_id: str,
        ledger_transaction_id: str,
        explorer_url: str | None,
    ) -> Listing:
        """Mark a fixed-price listing sold at its list price. Caller commits."""
        listing = await self._load(db, listing_id)
        expected_version = listing.version
        lifecycle.complete_sale(
            listing,
            buyer_id=buyer_id,
            buyer_account_id=buyer_account_id,
            sold_price=listing.price_amount,
            ledger_transaction_id=ledger_transaction_id,
            explorer_url=explorer_url,
            now=self._clock(),
        )
        return await self._persist(db, listing, expected_version)

    async def complete_auction(
        self,
        db: AsyncSession,
        listing_id: str,
        ledger_transaction_id: str | None,
        explorer_url: str | None = None,
    ) -> Listing:
        """Sold to the highest bidder when a ledger id is given, else expired.

        Caller commits.
        """
        listing = await self._load(db, listing_id)
        expected_version = listing.version
        rules.complete_auction(listing, ledger_transaction_id, self._clock(), explorer_url)
        return await self._persist(db, listing, expected_version)

    async def expire_listing(self, db: AsyncSession, listing_id: str) -> Listing:
        """Expire a fixed-price listing whose expires_at has passed."""
        try:
            listing = await self._load(db, listing_id)
            if listing.is_auction:
                raise WrongListingTypeError(listing.id, ListingType.FIXED_PRICE.value)
            expected_version = listing.version
            lifecycle.expire(listing, self._clock())
            listing = await self._persist(db, listing, expected_version)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        logger.info("Listing expired: id=%s", listing.id)
        return listing

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_listing(self, db: AsyncSession, listing_id: str) -> Listing:
        listing = await self._load(db, listing_id)
        await self._views.record_view(listing_id)
        listing.views += await self._views.get_views(listing_id)
        return listing

    async def list_active(
        self,
        db: AsyncSession,
        listing_type: str | None,
        comic_id: str | None,
        episode_id: str | None,
        min_price: Decimal | None,
        max_price: Decimal | None,
        cursor: str | None,
        limit: int,
    ) -> ListingListResponse:
        cursor_id = cursor_decode(cursor)
        # Fetch limit+1 to detect has_more without COUNT(*)
        listings = await self._repo.list_active(
            db, listing_type, comic_id, episode_id, min_price, max_price, cursor_id, limit + 1
        )
        has_more = len(listings) > limit
        page = listings[:limit]
        items = [ListingResponse.from_domain(lst) for lst in page]
        next_cursor = cursor_encode(page[-1]) if has_more and page else None
        return ListingListResponse(items=items, next_cursor=next_cursor, has_more=has_more)

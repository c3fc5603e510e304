"""In-memory collaborators for service and scenario tests.

The fakes copy on read and write, so services only observe changes they
persisted, the same as with the SQL repositories. Rollback is not modelled:
tests that exercise failure paths fail before anything is written.
"""

import copy
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.cm_auction.engine.engine import AuctionEngine
from src.cm_catalog.domain.models import EpisodeNft
from src.cm_common.errors import ConcurrentUpdateError, DuplicateListingError, InternalError
from src.cm_common.locks import ListingLocks
from src.cm_listing.application.service import ListingService
from src.cm_listing.domain.models import Bid, Listing, MarketplaceStats
from src.cm_settlement.application.service import SettlementService
from src.cm_settlement.domain.gateway import LedgerGatewayError
from src.cm_settlement.domain.models import (
    TransactionRecord,
    TransactionStats,
    TransferReceipt,
    TransferRequest,
)

SELLER_ID = "user-seller"
SELLER_ACCOUNT = "0.0.1001"
BUYER_ID = "user-buyer"
BUYER_ACCOUNT = "0.0.2002"
OTHER_ID = "user-other"
OTHER_ACCOUNT = "0.0.3003"
TOKEN_ID = "0.0.5005"
COMIC_ID = "comic-1"
EPISODE_ID = "episode-1"


class MutableClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


class InMemoryListingRepository:
    def __init__(self) -> None:
        self.listings: dict[str, Listing] = {}

    async def get_by_id(self, db, listing_id):
        listing = self.listings.get(listing_id)
        return copy.deepcopy(listing) if listing else None

    async def find_active_for_nft(self, db, token_id, serial_number):
        for listing in self.listings.values():
            if (
                listing.token_id == token_id
                and listing.serial_number == serial_number
                and listing.status == "active"
            ):
                return copy.deepcopy(listing)
        return None

    async def insert(self, db, listing):
        if await self.find_active_for_nft(db, listing.token_id, listing.serial_number):
            raise DuplicateListingError(listing.token_id, listing.serial_number)
        self.listings[listing.id] = copy.deepcopy(listing)
        return listing

    async def append_bid(self, db, listing_id, bid: Bid, expected_current_bid, expected_version):
        stored = self.listings[listing_id]
        if (
            stored.status != "active"
            or stored.auction.current_bid != expected_current_bid
            or stored.version != expected_version
        ):
            return None
        stored.auction.current_bid = bid.amount
        stored.auction.highest_bidder_id = bid.bidder_id
        stored.auction.highest_bidder_account_id = bid.bidder_account_id
        stored.auction.bids.append(copy.deepcopy(bid))
        stored.version += 1
        stored.updated_at = bid.placed_at
        return copy.deepcopy(stored)

    async def save_transition(self, db, listing, expected_version):
        stored = self.listings[listing.id]
        if stored.status != "active" or stored.version != expected_version:
            return None
        listing.version = expected_version + 1
        self.listings[listing.id] = copy.deepcopy(listing)
        return listing

    async def list_active(
        self, db, listing_type, comic_id, episode_id, min_price, max_price, cursor_id, limit
    ):
        rows = [
            lst for lst in self.listings.values()
            if lst.status == "active"
            and (listing_type is None or lst.listing_type == listing_type)
            and (comic_id is None or lst.comic_id == comic_id)
            and (episode_id is None or lst.episode_id == episode_id)
            and (min_price is None or lst.price_amount >= min_price)
            and (max_price is None or lst.price_amount <= max_price)
            and (cursor_id is None or lst.id < cursor_id)
        ]
        rows.sort(key=lambda lst: lst.id, reverse=True)
        return [copy.deepcopy(lst) for lst in rows[:limit]]

    async def list_sold(self, db):
        return [copy.deepcopy(lst) for lst in self.listings.values() if lst.status == "sold"]

    async def list_ended_auction_ids(self, db, now, limit):
        ended = [
            lst for lst in self.listings.values()
            if lst.status == "active" and lst.auction is not None and lst.auction.end_time < now
        ]
        ended.sort(key=lambda lst: lst.auction.end_time)
        return [lst.id for lst in ended[:limit]]

    async def list_expired_fixed_price_ids(self, db, now, limit):
        return [
            lst.id for lst in self.listings.values()
            if lst.status == "active" and lst.auction is None
            and lst.expires_at is not None and lst.expires_at < now
        ][:limit]

    async def marketplace_stats(self, db):
        sold = [lst.sold_price for lst in self.listings.values() if lst.status == "sold"]
        active = [lst for lst in self.listings.values() if lst.status == "active"]
        volume = sum(sold, Decimal(0))
        return MarketplaceStats(
            active_listings=len(active),
            active_auctions=sum(1 for lst in active if lst.auction is not None),
            sold_listings=len(sold),
            total_volume=volume,
            average_sale_price=volume / len(sold) if sold else Decimal(0),
        )


class InMemoryCatalog:
    def __init__(self) -> None:
        self.nfts: dict[tuple[str, int], EpisodeNft] = {}
        self.royalties: dict[str, Decimal] = {}
        self.fail_update_owner = False

    def add_nft(self, nft: EpisodeNft) -> None:
        self.nfts[(nft.token_id, nft.serial_number)] = nft
        self.royalties.setdefault(nft.comic_id, nft.royalty_percent)

    def owner_of(self, token_id: str, serial_number: int) -> str:
        return self.nfts[(token_id, serial_number)].owner_account_id

    async def get_episode_nft(self, db, episode_id, serial_number):
        for nft in self.nfts.values():
            if nft.episode_id == episode_id and nft.serial_number == serial_number:
                return copy.deepcopy(nft)
        return None

    async def verify_ownership(self, db, token_id, serial_number, account_id):
        nft = self.nfts.get((token_id, serial_number))
        return nft is not None and nft.owner_account_id == account_id

    async def update_owner(self, db, token_id, serial_number, new_owner_id, new_owner_account_id):
        if self.fail_update_owner:
            raise RuntimeError("catalog write failed")
        nft = self.nfts.get((token_id, serial_number))
        if nft is None:
            raise InternalError(f"NFT {token_id}/{serial_number} not found")
        nft.owner_id = new_owner_id
        nft.owner_account_id = new_owner_account_id

    async def get_royalty_percent(self, db, comic_id):
        return self.royalties.get(comic_id)


class InMemoryTransactionRepository:
    def __init__(self) -> None:
        self.records: dict[str, TransactionRecord] = {}

    def for_listing(self, listing_id: str) -> list[TransactionRecord]:
        return [r for r in self.records.values() if r.listing_id == listing_id]

    async def insert(self, db, record):
        for existing in self.for_listing(record.listing_id):
            if existing.status == record.status and record.status in ("pending", "completed"):
                raise ConcurrentUpdateError(record.listing_id)
        self.records[record.id] = copy.deepcopy(record)
        return record

    async def mark_completed(self, db, record_id, ledger_transaction_id, explorer_url, completed_at):
        record = self.records[record_id]
        if record.status != "pending":
            raise InternalError(f"Transaction record {record_id} is not pending")
        record.status = "completed"
        record.ledger_transaction_id = ledger_transaction_id
        record.explorer_url = explorer_url
        record.completed_at = completed_at

    async def mark_failed(
        self, db, record_id, error_code, error_message, failed_at, ledger_transaction_id=None
    ):
        record = self.records[record_id]
        if record.status != "pending":
            raise InternalError(f"Transaction record {record_id} is not pending")
        record.status = "failed"
        record.error_code = error_code
        record.error_message = error_message
        record.failed_at = failed_at
        if ledger_transaction_id is not None:
            record.ledger_transaction_id = ledger_transaction_id

    async def fail_stale_pending(
        self, db, initiated_before, error_code, error_message, failed_at, limit
    ):
        stale = sorted(
            (
                r for r in self.records.values()
                if r.status == "pending" and r.initiated_at < initiated_before
            ),
            key=lambda r: r.initiated_at,
        )[:limit]
        for record in stale:
            record.status = "failed"
            record.error_code = error_code
            record.error_message = error_message
            record.failed_at = failed_at
        return [copy.deepcopy(r) for r in stale]

    async def exists_for_listing(self, db, listing_id, status=None):
        return any(
            status is None or r.status == status for r in self.for_listing(listing_id)
        )

    async def get_by_id(self, db, record_id):
        record = self.records.get(record_id)
        return copy.deepcopy(record) if record else None

    async def list_for_user(self, db, user_id, transaction_type, status, cursor_id, limit):
        rows = [
            r for r in self.records.values()
            if user_id in (r.buyer_id, r.seller_id)
            and (transaction_type is None or r.transaction_type == transaction_type)
            and (status is None or r.status == status)
            and (cursor_id is None or r.id < cursor_id)
        ]
        rows.sort(key=lambda r: r.id, reverse=True)
        return [copy.deepcopy(r) for r in rows[:limit]]

    async def list_for_listing(self, db, listing_id):
        return [copy.deepcopy(r) for r in self.for_listing(listing_id)]

    async def stats(self, db, since, days):
        window = [r for r in self.records.values() if r.initiated_at >= since]
        completed = [r for r in window if r.status == "completed"]
        volume = sum((r.price_amount for r in completed), Decimal(0))
        return TransactionStats(
            days=days,
            completed_count=len(completed),
            failed_count=sum(1 for r in window if r.status == "failed"),
            total_volume=volume,
            total_platform_fees=sum((r.platform_fee for r in completed), Decimal(0)),
            total_royalty_fees=sum((r.royalty_fee for r in completed), Decimal(0)),
            average_price=volume / len(completed) if completed else Decimal(0),
        )


class FakeLedgerGateway:
    def __init__(self, transaction_id: str = "0xabc") -> None:
        self.transaction_id = transaction_id
        self.error: Exception | None = None
        self.calls: list[TransferRequest] = []

    def explorer_url_for(self, transaction_id: str) -> str:
        return f"https://hashscan.io/testnet/transaction/{transaction_id}"

    async def transfer_nft(self, request: TransferRequest) -> TransferReceipt:
        self.calls.append(request)
        if self.error is not None:
            raise self.error
        return TransferReceipt(
            transaction_id=self.transaction_id,
            explorer_url=self.explorer_url_for(self.transaction_id),
            status="SUCCESS",
        )

    def fail_with(self, code: str, message: str) -> None:
        self.error = LedgerGatewayError(code, message)


def make_nft(serial_number: int = 7, owner_account_id: str = SELLER_ACCOUNT, **kwargs) -> EpisodeNft:
    defaults = dict(
        episode_id=EPISODE_ID,
        comic_id=COMIC_ID,
        token_id=TOKEN_ID,
        serial_number=serial_number,
        owner_id=SELLER_ID,
        owner_account_id=owner_account_id,
        royalty_percent=Decimal("10"),
    )
    defaults.update(kwargs)
    return EpisodeNft(**defaults)


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock(datetime(2026, 3, 1, 12, 0, tzinfo=UTC))


@pytest.fixture
def db():
    """AsyncSession stand-in: only commit/rollback are called on it directly."""
    return AsyncMock()


@pytest.fixture
def listing_repo() -> InMemoryListingRepository:
    return InMemoryListingRepository()


@pytest.fixture
def catalog() -> InMemoryCatalog:
    cat = InMemoryCatalog()
    for serial in (7, 8, 9):
        cat.add_nft(make_nft(serial_number=serial))
    return cat


@pytest.fixture
def tx_repo() -> InMemoryTransactionRepository:
    return InMemoryTransactionRepository()


@pytest.fixture
def ledger() -> FakeLedgerGateway:
    return FakeLedgerGateway()


@pytest.fixture
def locks() -> ListingLocks:
    return ListingLocks()


@pytest.fixture
def view_counter():
    counter = MagicMock()
    counter.record_view = AsyncMock()
    counter.get_views = AsyncMock(return_value=0)
    return counter


@pytest.fixture
def listing_service(listing_repo, catalog, locks, view_counter, clock) -> ListingService:
    return ListingService(
        repo=listing_repo,
        catalog=catalog,
        engine=AuctionEngine(locks=locks, clock=clock),
        view_counter=view_counter,
        clock=clock,
        platform_fee_percent=Decimal("2.5"),
    )


@pytest.fixture
def settlement_service(listing_service, tx_repo, catalog, ledger, locks, clock) -> SettlementService:
    return SettlementService(
        ledger=ledger,
        listings=listing_service,
        transactions=tx_repo,
        catalog=catalog,
        locks=locks,
        clock=clock,
        platform_fee_percent=Decimal("2.5"),
    )

"""AuctionEngine: serialization, CAS conflicts and late-bid side effects."""

import asyncio
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.cm_auction.engine.engine import AuctionEngine
from src.cm_common.errors import AuctionEndedError, BidTooLowError, ConcurrentUpdateError
from src.cm_common.locks import ListingLocks
from src.cm_listing.application.commands import PlaceBidCommand
from src.cm_listing.domain.models import AuctionTerms, Listing

START = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def _make_auction_listing(highest_bidder: str | None = None, current_bid: str = "100") -> Listing:
    return Listing(
        id="lst_1", token_id="0.0.5005", serial_number=7, comic_id="comic-1",
        episode_id="episode-1", seller_id="user-seller", seller_account_id="0.0.1001",
        listing_type="auction", price_amount=Decimal("100"), currency="HBAR",
        status="active", listed_at=START, version=3,
        auction=AuctionTerms(
            starting_price=Decimal("100"), reserve_price=Decimal("200"),
            current_bid=Decimal(current_bid), minimum_bid_increment=Decimal("1"),
            start_time=START, end_time=START + timedelta(hours=24),
            highest_bidder_id=highest_bidder,
            highest_bidder_account_id="0.0.2002" if highest_bidder else None,
        ),
    )


def _cmd(amount: str = "150") -> PlaceBidCommand:
    return PlaceBidCommand(
        listing_id="lst_1", bidder_id="user-buyer", bidder_account_id="0.0.2002", amount=amount
    )


@pytest.fixture
def db():
    return AsyncMock()


@pytest.fixture
def mock_repo():
    return MagicMock()


class TestPlaceBid:
    @pytest.mark.asyncio
    async def test_cas_uses_values_read(self, db, mock_repo):
        listing = _make_auction_listing()
        mock_repo.get_by_id = AsyncMock(return_value=listing)
        mock_repo.append_bid = AsyncMock(return_value=listing)
        engine = AuctionEngine(locks=ListingLocks(), clock=lambda: START)

        await engine.place_bid(db, _cmd(), mock_repo)

        kwargs = mock_repo.append_bid.call_args.kwargs
        assert kwargs["expected_current_bid"] == Decimal("100")
        assert kwargs["expected_version"] == 3
        bid = mock_repo.append_bid.call_args.args[2]
        assert bid.amount == Decimal("150")
        assert bid.placed_at == START
        db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_lost_cas_raises_concurrent_update(self, db, mock_repo):
        mock_repo.get_by_id = AsyncMock(return_value=_make_auction_listing())
        mock_repo.append_bid = AsyncMock(return_value=None)
        engine = AuctionEngine(locks=ListingLocks(), clock=lambda: START)

        with pytest.raises(ConcurrentUpdateError) as exc_info:
            await engine.place_bid(db, _cmd(), mock_repo)

        assert exc_info.value.retryable is True
        db.rollback.assert_awaited_once()
        db.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rejected_bid_writes_nothing(self, db, mock_repo):
        mock_repo.get_by_id = AsyncMock(return_value=_make_auction_listing())
        mock_repo.append_bid = AsyncMock()
        engine = AuctionEngine(locks=ListingLocks(), clock=lambda: START)

        with pytest.raises(BidTooLowError):
            await engine.place_bid(db, _cmd("100"), mock_repo)
        mock_repo.append_bid.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_ended_without_bids_is_expired_and_committed(self, db, mock_repo):
        mock_repo.get_by_id = AsyncMock(return_value=_make_auction_listing())
        mock_repo.save_transition = AsyncMock(side_effect=lambda db, lst, v: lst)
        engine = AuctionEngine(locks=ListingLocks(), clock=lambda: START + timedelta(days=2))

        with pytest.raises(AuctionEndedError):
            await engine.place_bid(db, _cmd(), mock_repo)

        saved, expected_version = mock_repo.save_transition.call_args.args[1:]
        assert saved.status == "expired"
        assert expected_version == 3
        db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_ended_with_reserve_met_is_left_active(self, db, mock_repo):
        listing = _make_auction_listing(highest_bidder="user-other", current_bid="250")
        mock_repo.get_by_id = AsyncMock(return_value=listing)
        mock_repo.save_transition = AsyncMock()
        engine = AuctionEngine(locks=ListingLocks(), clock=lambda: START + timedelta(days=2))

        with pytest.raises(AuctionEndedError):
            await engine.place_bid(db, _cmd("300"), mock_repo)

        mock_repo.save_transition.assert_not_awaited()
        assert listing.status == "active"

    @pytest.mark.asyncio
    async def test_bids_on_one_listing_are_serialized(self, db, mock_repo):
        active = 0
        peak = 0

        async def slow_get(db, listing_id):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return _make_auction_listing()

        mock_repo.get_by_id = slow_get
        mock_repo.append_bid = AsyncMock(return_value=_make_auction_listing())
        engine = AuctionEngine(locks=ListingLocks(), clock=lambda: START)

        await asyncio.gather(*(engine.place_bid(db, _cmd(str(150 + i)), mock_repo) for i in range(5)))

        assert peak == 1

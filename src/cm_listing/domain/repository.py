"""Repository Protocol: dependency inversion for testability.

Unit tests inject a mock or an in-memory fake that conforms to this Protocol.
Infrastructure layer provides the real implementation.

Every mutation is a compare-and-swap on `version`: it returns the persisted
listing when the stored version still equals `expected_version`, or None when
another writer got there first.
"""

from datetime import datetime
from decimal import Decimal
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.cm_listing.domain.models import Bid, Listing, MarketplaceStats


class ListingRepositoryProtocol(Protocol):
    async def get_by_id(self, db: AsyncSession, listing_id: str) -> Listing | None: ...

    async def find_active_for_nft(
        self, db: AsyncSession, token_id: str, serial_number: int
    ) -> Listing | None: ...

    async def insert(self, db: AsyncSession, listing: Listing) -> Listing: ...

    async def append_bid(
        self,
        db: AsyncSession,
        listing_id: str,
        bid: Bid,
        expected_current_bid: Decimal,
        expected_version: int,
    ) -> Listing | None: ...

    async def save_transition(
        self, db: AsyncSession, listing: Listing, expected_version: int
    ) -> Listing | None: ...

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
    ) -> list[Listing]: ...

    async def list_sold(self, db: AsyncSession) -> list[Listing]: ...

    async def list_ended_auction_ids(
        self, db: AsyncSession, now: datetime, limit: int
    ) -> list[str]: ...

    async def list_expired_fixed_price_ids(
        self, db: AsyncSession, now: datetime, limit: int
    ) -> list[str]: ...

    async def marketplace_stats(self, db: AsyncSession) -> MarketplaceStats: ...

"""Admin application service: sweep, backfill and marketplace statistics."""

import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.cm_common.amounts import format_amount
from src.cm_common.datetime_utils import Clock, utc_now
from src.cm_common.enums import AuctionOutcome
from src.cm_common.errors import AppError
from src.cm_listing.application.service import ListingService
from src.cm_settlement.application.backfill import BackfillReport, backfill_sold_listings
from src.cm_settlement.application.service import SettlementService

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    stale_pending_released: int = 0
    auctions_sold: int = 0
    auctions_expired: int = 0
    auctions_reserve_not_met: int = 0
    listings_expired: int = 0
    failures: int = 0
    failed_listing_ids: list[str] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return (
            self.auctions_sold
            + self.auctions_expired
            + self.auctions_reserve_not_met
            + self.listings_expired
            + self.failures
        )


class AdminService:
    def __init__(
        self,
        settlement: SettlementService,
        listings: ListingService | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._settlement = settlement
        self._listings = listings or ListingService(clock=clock)
        self._clock = clock

    async def sweep_listings(self, db: AsyncSession, batch_size: int | None = None) -> SweepReport:
        """Release abandoned pending records, complete ended auctions and
        expire stale fixed-price listings.

        Stale records go first so the auctions they blocked settle in the same
        run. A failing listing is logged and counted; the batch carries on.
        """
        limit = batch_size or settings.SWEEP_BATCH_SIZE
        now = self._clock()
        report = SweepReport()

        released = await self._settlement.release_stale_pending(db, limit)
        report.stale_pending_released = len(released)

        auction_ids = await self._listings.repo.list_ended_auction_ids(db, now, limit)
        for listing_id in auction_ids:
            try:
                result = await self._settlement.complete_auction(db, listing_id)
            except Exception as exc:
                self._record_failure(report, listing_id, exc)
                continue
            if result.status == AuctionOutcome.SOLD.value:
                report.auctions_sold += 1
            elif result.status == AuctionOutcome.RESERVE_NOT_MET.value:
                report.auctions_reserve_not_met += 1
            else:
                report.auctions_expired += 1

        fixed_ids = await self._listings.repo.list_expired_fixed_price_ids(db, now, limit)
        for listing_id in fixed_ids:
            try:
                await self._listings.expire_listing(db, listing_id)
            except Exception as exc:
                self._record_failure(report, listing_id, exc)
                continue
            report.listings_expired += 1

        logger.info(
            "Sweep finished: stale_pending=%d sold=%d expired=%d reserve_not_met=%d "
            "fixed_expired=%d failures=%d",
            report.stale_pending_released, report.auctions_sold, report.auctions_expired,
            report.auctions_reserve_not_met,
            report.listings_expired, report.failures,
        )
        return report

    @staticmethod
    def _record_failure(report: SweepReport, listing_id: str, exc: Exception) -> None:
        report.failures += 1
        report.failed_listing_ids.append(listing_id)
        if isinstance(exc, AppError):
            logger.warning("Sweep skipped listing %s: [%d] %s", listing_id, exc.code, exc.message)
        else:
            logger.error("Sweep failed on listing %s", listing_id, exc_info=exc)

    async def backfill(self, db: AsyncSession) -> BackfillReport:
        return await backfill_sold_listings(db)

    async def get_marketplace_stats(self, db: AsyncSession) -> dict[str, Any]:
        stats = await self._listings.repo.marketplace_stats(db)
        return {
            "active_listings": stats.active_listings,
            "active_auctions": stats.active_auctions,
            "sold_listings": stats.sold_listings,
            "total_volume": format_amount(stats.total_volume),
            "average_sale_price": format_amount(stats.average_sale_price),
        }

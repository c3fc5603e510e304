"""Backfill: synthesize completed records for sold listings that have none.

Listings sold before transaction records existed (or whose record insert was
lost) get a completed record built from listing and royalty data. The ledger
is never called. Running it again creates nothing new.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.cm_catalog.domain.repository import CatalogRepositoryProtocol
from src.cm_catalog.infrastructure.persistence import CatalogRepository
from src.cm_common.enums import ListingType, TransactionStatus, TransactionType
from src.cm_common.id_generator import generate_id
from src.cm_listing.domain.models import Listing
from src.cm_listing.domain.repository import ListingRepositoryProtocol
from src.cm_listing.infrastructure.persistence import ListingRepository
from src.cm_settlement.domain.fee import compute_fees
from src.cm_settlement.domain.models import TransactionRecord
from src.cm_settlement.domain.repository import TransactionRepositoryProtocol
from src.cm_settlement.infrastructure.persistence import TransactionRepository

logger = logging.getLogger(__name__)

UNKNOWN_LEDGER_TRANSACTION = "unknown"


@dataclass
class BackfillReport:
    created: int = 0
    skipped: int = 0
    errors: int = 0
    total: int = 0
    failed_listing_ids: list[str] = field(default_factory=list)


def build_backfill_record(
    listing: Listing,
    royalty_percent: Decimal,
    platform_fee_percent: Decimal,
    explorer_base_url: str,
) -> TransactionRecord:
    if listing.listing_type == ListingType.AUCTION.value:
        transaction_type = TransactionType.AUCTION_COMPLETE
    else:
        transaction_type = TransactionType.PURCHASE
    price = listing.sold_price if listing.sold_price is not None else listing.price_amount
    fees = compute_fees(price, royalty_percent, platform_fee_percent)
    ledger_transaction_id = listing.ledger_transaction_id or UNKNOWN_LEDGER_TRANSACTION
    explorer_url = listing.explorer_url or (
        f"{explorer_base_url.rstrip('/')}/transaction/{ledger_transaction_id}"
    )
    return TransactionRecord(
        id=generate_id("txr_"),
        transaction_type=transaction_type.value,
        status=TransactionStatus.COMPLETED.value,
        listing_id=listing.id,
        buyer_id=listing.buyer_id or "",
        buyer_account_id=listing.buyer_account_id or "",
        seller_id=listing.seller_id,
        seller_account_id=listing.seller_account_id,
        token_id=listing.token_id,
        serial_number=listing.serial_number,
        comic_id=listing.comic_id,
        episode_id=listing.episode_id,
        price_amount=price,
        currency=listing.currency,
        platform_fee=fees.platform_fee,
        royalty_fee=fees.royalty_fee,
        total_fees=fees.total_fees,
        seller_amount=fees.seller_amount,
        initiated_at=listing.listed_at,
        ledger_transaction_id=ledger_transaction_id,
        explorer_url=explorer_url,
        completed_at=listing.sold_at or listing.updated_at,
    )


async def backfill_sold_listings(
    db: AsyncSession,
    listings: list[Listing] | None = None,
    listing_repo: ListingRepositoryProtocol | None = None,
    transaction_repo: TransactionRepositoryProtocol | None = None,
    catalog: CatalogRepositoryProtocol | None = None,
    platform_fee_percent: Decimal | None = None,
    explorer_base_url: str | None = None,
) -> BackfillReport:
    """Create one completed record per sold listing lacking any record.

    Each listing commits on its own, so one bad row does not undo the rest.
    """
    listing_repo = listing_repo or ListingRepository()
    transaction_repo = transaction_repo or TransactionRepository()
    catalog = catalog or CatalogRepository()
    fee_percent = (
        platform_fee_percent if platform_fee_percent is not None
        else settings.PLATFORM_FEE_PERCENT
    )
    explorer_base = explorer_base_url or settings.LEDGER_EXPLORER_BASE_URL

    if listings is None:
        listings = await listing_repo.list_sold(db)

    report = BackfillReport(total=len(listings))
    royalty_cache: dict[str, Decimal] = {}

    for listing in listings:
        try:
            if await transaction_repo.exists_for_listing(db, listing.id):
                report.skipped += 1
                continue
            if listing.comic_id not in royalty_cache:
                royalty = await catalog.get_royalty_percent(db, listing.comic_id)
                royalty_cache[listing.comic_id] = royalty or Decimal(0)
            record = build_backfill_record(
                listing, royalty_cache[listing.comic_id], fee_percent, explorer_base
            )
            await transaction_repo.insert(db, record)
            await db.commit()
            report.created += 1
            logger.info("Backfilled record %s for listing %s", record.id, listing.id)
        except Exception:
            await db.rollback()
            report.errors += 1
            report.failed_listing_ids.append(listing.id)
            logger.exception("Backfill failed for listing %s", listing.id)

    logger.info(
        "Backfill finished: created=%d skipped=%d errors=%d total=%d",
        report.created, report.skipped, report.errors, report.total,
    )
    return report

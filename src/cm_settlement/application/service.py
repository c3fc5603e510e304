"""SettlementService: fixed-price purchase and auction completion.

Settlement flow (one listing, under its per-listing lock):
  1. Validate the listing (nothing written yet)
  2. Compute fees from the comic's royalty
  3. Insert the pending TransactionRecord and COMMIT it
  4. Call the ledger gateway
       failure -> record failed, LedgerTransferError; listing untouched
  5. One DB transaction: NFT owner + listing sold + record completed
       failure -> rollback, record failed with OWNERSHIP_UPDATE_FAILED and the
                  ledger transaction id kept for reconciliation

Cancellation after step 3 marks the record failed before re-raising. A record
left pending by a dead worker is failed with STALE_PENDING by the maintenance
sweep (release_stale_pending).
"""

import asyncio
import logging
from datetime import timedelta
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.cm_auction.domain import rules
from src.cm_catalog.domain.repository import CatalogRepositoryProtocol
from src.cm_catalog.infrastructure.persistence import CatalogRepository
from src.cm_common.datetime_utils import Clock, utc_now
from src.cm_common.enums import (
    AuctionOutcome,
    ListingStatus,
    ListingType,
    TransactionStatus,
    TransactionType,
)
from src.cm_common.errors import (
    AuctionNotActiveError,
    AuctionNotEndedError,
    LedgerTransferError,
    ListingExpiredError,
    ListingNotActiveError,
    ListingNotFoundError,
    OwnershipUpdateError,
    SelfPurchaseError,
    WrongListingTypeError,
)
from src.cm_common.id_generator import generate_id
from src.cm_common.locks import ListingLocks, get_listing_locks
from src.cm_listing.application.commands import BuyCommand
from src.cm_listing.application.service import ListingService
from src.cm_listing.domain import lifecycle
from src.cm_listing.domain.models import Listing
from src.cm_settlement.domain.fee import compute_fees
from src.cm_settlement.domain.gateway import LedgerGatewayError, LedgerGatewayProtocol
from src.cm_settlement.domain.models import (
    SettlementResult,
    TransactionRecord,
    TransferReceipt,
    TransferRequest,
)
from src.cm_settlement.domain.repository import TransactionRepositoryProtocol
from src.cm_settlement.infrastructure.persistence import TransactionRepository

logger = logging.getLogger(__name__)

OWNERSHIP_UPDATE_FAILED = "OWNERSHIP_UPDATE_FAILED"
TRANSFER_INTERRUPTED = "TRANSFER_INTERRUPTED"
STALE_PENDING = "STALE_PENDING"


class SettlementService:
    def __init__(
        self,
        ledger: LedgerGatewayProtocol,
        listings: ListingService | None = None,
        transactions: TransactionRepositoryProtocol | None = None,
        catalog: CatalogRepositoryProtocol | None = None,
        locks: ListingLocks | None = None,
        clock: Clock = utc_now,
        platform_fee_percent: Decimal | None = None,
    ) -> None:
        self._ledger = ledger
        self._catalog: CatalogRepositoryProtocol = catalog or CatalogRepository()
        self._listings = listings or ListingService(catalog=self._catalog, clock=clock)
        self._transactions: TransactionRepositoryProtocol = (
            transactions or TransactionRepository()
        )
        self._locks = locks if locks is not None else get_listing_locks()
        self._clock = clock
        self._platform_fee_percent = (
            platform_fee_percent
            if platform_fee_percent is not None
            else settings.PLATFORM_FEE_PERCENT
        )

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def buy(self, db: AsyncSession, cmd: BuyCommand) -> SettlementResult:
        async with self._locks.for_listing(cmd.listing_id):
            listing = await self._listings.repo.get_by_id(db, cmd.listing_id)
            if listing is None:
                raise ListingNotFoundError(cmd.listing_id)
            lifecycle.ensure_active(listing)
            if listing.is_auction:
                raise WrongListingTypeError(listing.id, ListingType.FIXED_PRICE.value)
            if cmd.buyer_id == listing.seller_id:
                raise SelfPurchaseError()
            if listing.is_past_expiry(self._clock()):
                await self._listings.expire_listing(db, listing.id)
                raise ListingExpiredError(listing.id)

            return await self._settle(
                db,
                listing,
                TransactionType.PURCHASE,
                buyer_id=cmd.buyer_id,
                buyer_account_id=cmd.buyer_account_id,
                price=listing.price_amount,
            )

    async def complete_auction(self, db: AsyncSession, listing_id: str) -> SettlementResult:
        """Resolve an ended auction. Unsold endings expire the listing without
        touching the ledger or writing a record.
        """
        async with self._locks.for_listing(listing_id):
            listing = await self._listings.repo.get_by_id(db, listing_id)
            if listing is None:
                raise ListingNotFoundError(listing_id)
            auction = rules.require_auction(listing)
            if listing.status != ListingStatus.ACTIVE:
                raise AuctionNotActiveError(listing.id, listing.status)
            if not auction.has_ended(self._clock()):
                raise AuctionNotEndedError(listing.id)

            outcome = rules.evaluate(auction)
            if outcome is not AuctionOutcome.SOLD:
                try:
                    listing = await self._listings.complete_auction(db, listing.id, None)
                    await db.commit()
                except Exception:
                    await db.rollback()
                    raise
                logger.info("Auction %s ended unsold: %s", listing.id, outcome.value)
                return SettlementResult(status=outcome.value, listing=listing)

            return await self._settle(
                db,
                listing,
                TransactionType.AUCTION_COMPLETE,
                buyer_id=auction.highest_bidder_id,  # type: ignore[arg-type]
                buyer_account_id=auction.highest_bidder_account_id,  # type: ignore[arg-type]
                price=auction.current_bid,
            )

    async def release_stale_pending(
        self, db: AsyncSession, limit: int, grace_seconds: float | None = None
    ) -> list[TransactionRecord]:
        """Fail pending records left behind by a crashed or killed settlement.

        A record still pending after the ledger timeout plus a grace period has
        no live settlement behind it, and it blocks the listing through the
        pending unique index until it is released. Any ledger transaction id
        already stored is kept for reconciliation.
        """
        grace = (
            grace_seconds if grace_seconds is not None else settings.STALE_PENDING_GRACE_SECONDS
        )
        now = self._clock()
        cutoff = now - timedelta(seconds=settings.LEDGER_TIMEOUT_SECONDS + grace)
        try:
            released = await self._transactions.fail_stale_pending(
                db, cutoff, STALE_PENDING, "Settlement abandoned while pending", now, limit
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        for record in released:
            logger.warning(
                "Released stale pending record %s for listing %s (ledger_tx=%s)",
                record.id, record.listing_id, record.ledger_transaction_id,
            )
        return released

    # ------------------------------------------------------------------
    # Shared flow
    # ------------------------------------------------------------------

    async def _settle(
        self,
        db: AsyncSession,
        listing: Listing,
        transaction_type: TransactionType,
        buyer_id: str,
        buyer_account_id: str,
        price: Decimal,
    ) -> SettlementResult:
        if await self._transactions.exists_for_listing(
            db, listing.id, TransactionStatus.COMPLETED.value
        ):
            raise ListingNotActiveError(listing.id, ListingStatus.SOLD.value)

        royalty_percent = await self._catalog.get_royalty_percent(db, listing.comic_id)
        fees = compute_fees(price, royalty_percent or Decimal(0), self._platform_fee_percent)

        record = TransactionRecord(
            id=generate_id("txr_"),
            transaction_type=transaction_type.value,
            status=TransactionStatus.PENDING.value,
            listing_id=listing.id,
            buyer_id=buyer_id,
            buyer_account_id=buyer_account_id,
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
            initiated_at=self._clock(),
        )
        try:
            await self._transactions.insert(db, record)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        logger.info(
            "Settlement pending: record=%s listing=%s buyer=%s price=%s %s",
            record.id, listing.id, buyer_id, price, listing.currency,
        )

        receipt = await self._transfer(db, record)
        listing = await self._finalize(db, record, receipt, transaction_type)
        return SettlementResult(
            status=AuctionOutcome.SOLD.value,
            listing=listing,
            transaction=record,
            fees=fees,
            transfer=receipt,
        )

    async def _transfer(self, db: AsyncSession, record: TransactionRecord) -> TransferReceipt:
        request = TransferRequest(
            token_id=record.token_id,
            serial_number=record.serial_number,
            from_account_id=record.seller_account_id,
            to_account_id=record.buyer_account_id,
            price=record.price_amount,
            currency=record.currency,
        )
        try:
            receipt = await self._ledger.transfer_nft(request)
        except asyncio.CancelledError:
            # Ledger outcome unknown; the record is released and reconciled by hand.
            logger.warning(
                "Ledger transfer interrupted: record=%s listing=%s",
                record.id, record.listing_id,
            )
            await self._record_failure(
                db, record, TRANSFER_INTERRUPTED, "Settlement cancelled during ledger transfer"
            )
            raise
        except LedgerGatewayError as exc:
            logger.error(
                "Ledger transfer failed: record=%s listing=%s [%s] %s",
                record.id, record.listing_id, exc.code, exc.message,
            )
            await self._record_failure(db, record, exc.code, exc.message)
            raise LedgerTransferError(exc.code, exc.message) from exc
        except Exception as exc:
            logger.exception("Ledger transfer errored: record=%s", record.id)
            await self._record_failure(db, record, "LEDGER_ERROR", str(exc))
            raise LedgerTransferError("LEDGER_ERROR", str(exc)) from exc

        logger.info(
            "Ledger transfer succeeded: record=%s ledger_tx=%s",
            record.id, receipt.transaction_id,
        )
        return receipt

    async def _finalize(
        self,
        db: AsyncSession,
        record: TransactionRecord,
        receipt: TransferReceipt,
        transaction_type: TransactionType,
    ) -> Listing:
        """Owner, listing and record change together or not at all."""
        now = self._clock()
        try:
            await self._catalog.update_owner(
                db,
                record.token_id,
                record.serial_number,
                record.buyer_id,
                record.buyer_account_id,
            )
            if transaction_type is TransactionType.PURCHASE:
                listing = await self._listings.complete_sale(
                    db,
                    record.listing_id,
                    buyer_id=record.buyer_id,
                    buyer_account_id=record.buyer_account_id,
                    ledger_transaction_id=receipt.transaction_id,
                    explorer_url=receipt.explorer_url,
                )
            else:
                listing = await self._listings.complete_auction(
                    db, record.listing_id, receipt.transaction_id, receipt.explorer_url
                )
            await self._transactions.mark_completed(
                db, record.id, receipt.transaction_id, receipt.explorer_url, now
            )
            await db.commit()
        except asyncio.CancelledError:
            await self._abandon_finalize(
                db, record, receipt, "Settlement cancelled after ledger transfer"
            )
            raise
        except Exception as exc:
            await self._abandon_finalize(db, record, receipt, str(exc))
            raise OwnershipUpdateError(receipt.transaction_id, str(exc)) from exc

        record.status = TransactionStatus.COMPLETED.value
        record.ledger_transaction_id = receipt.transaction_id
        record.explorer_url = receipt.explorer_url
        record.completed_at = now
        logger.info(
            "Settlement completed: record=%s listing=%s ledger_tx=%s",
            record.id, record.listing_id, receipt.transaction_id,
        )
        return listing

    async def _abandon_finalize(
        self, db: AsyncSession, record: TransactionRecord, receipt: TransferReceipt, reason: str
    ) -> None:
        await db.rollback()
        logger.exception(
            "Ownership update failed after ledger transfer %s: record=%s listing=%s",
            receipt.transaction_id, record.id, record.listing_id,
        )
        await self._record_failure(
            db, record, OWNERSHIP_UPDATE_FAILED, reason,
            ledger_transaction_id=receipt.transaction_id,
        )

    async def _record_failure(
        self,
        db: AsyncSession,
        record: TransactionRecord,
        code: str,
        message: str,
        ledger_transaction_id: str | None = None,
    ) -> None:
        """Mark the pending record failed. The caller raises the original error,
        so a failure here is only logged.
        """
        now = self._clock()
        try:
            await self._transactions.mark_failed(
                db, record.id, code, message, now, ledger_transaction_id
            )
            await db.commit()
        except Exception:
            await db.rollback()
            logger.exception("Could not mark record %s failed (%s)", record.id, code)
            return
        record.status = TransactionStatus.FAILED.value
        record.error_code = code
        record.error_message = message
        record.failed_at = now
        if ledger_transaction_id is not None:
            record.ledger_transaction_id = ledger_transaction_id

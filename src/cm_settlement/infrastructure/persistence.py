"""TransactionRepository: raw SQL persistence for transaction_records.

Transaction ownership: the CALLER commits or rolls back.

Two partial unique indexes back the per-listing invariants:
  uq_txr_listing_completed : at most one completed record per listing
  uq_txr_listing_pending   : at most one settlement in flight per listing
A pending-index violation means another process is settling the same listing.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.cm_common.amounts import truncate_amount
from src.cm_common.errors import ConcurrentUpdateError, InternalError
from src.cm_settlement.domain.models import TransactionRecord, TransactionStats

_SELECT_COLUMNS = """
    id, transaction_type, status, listing_id,
    buyer_id, buyer_account_id, seller_id, seller_account_id,
    token_id, serial_number, comic_id, episode_id,
    price_amount, currency, platform_fee, royalty_fee, total_fees, seller_amount,
    ledger_transaction_id, explorer_url, error_code, error_message,
    initiated_at, completed_at, failed_at
"""

_INSERT_SQL = text("""
    INSERT INTO transaction_records (id, transaction_type, status, listing_id,
        buyer_id, buyer_account_id, seller_id, seller_account_id,
        token_id, serial_number, comic_id, episode_id,
        price_amount, currency, platform_fee, royalty_fee, total_fees, seller_amount,
        ledger_transaction_id, explorer_url, error_code, error_message,
        initiated_at, completed_at, failed_at)
    VALUES (:id, :transaction_type, :status, :listing_id,
        :buyer_id, :buyer_account_id, :seller_id, :seller_account_id,
        :token_id, :serial_number, :comic_id, :episode_id,
        :price_amount, :currency, :platform_fee, :royalty_fee, :total_fees, :seller_amount,
        :ledger_transaction_id, :explorer_url, :error_code, :error_message,
        :initiated_at, :completed_at, :failed_at)
""")

# pending -> completed only; a record never leaves a terminal state
_MARK_COMPLETED_SQL = text("""
    UPDATE transaction_records
    SET status = 'completed',
        ledger_transaction_id = :ledger_transaction_id,
        explorer_url = :explorer_url,
        completed_at = :completed_at
    WHERE id = :record_id AND status = 'pending'
    RETURNING id
""")

_MARK_FAILED_SQL = text("""
    UPDATE transaction_records
    SET status = 'failed',
        error_code = :error_code,
        error_message = :error_message,
        ledger_transaction_id = COALESCE(:ledger_transaction_id, ledger_transaction_id),
        failed_at = :failed_at
    WHERE id = :record_id AND status = 'pending'
    RETURNING id
""")

# Oldest first; SKIP LOCKED leaves rows another sweeper already holds
_FAIL_STALE_PENDING_SQL = text(f"""
    UPDATE transaction_records
    SET status = 'failed',
        error_code = :error_code,
        error_message = :error_message,
        failed_at = :failed_at
    WHERE id IN (
        SELECT id FROM transaction_records
        WHERE status = 'pending' AND initiated_at < :initiated_before
        ORDER BY initiated_at
        LIMIT :limit
        FOR UPDATE SKIP LOCKED
    )
    RETURNING {_SELECT_COLUMNS}
""")

_EXISTS_FOR_LISTING_SQL = text("""
    SELECT 1 FROM transaction_records
    WHERE listing_id = :listing_id
      AND (CAST(:status AS TEXT) IS NULL OR status = CAST(:status AS TEXT))
    LIMIT 1
""")

_GET_BY_ID_SQL = text(f"""
    SELECT {_SELECT_COLUMNS}
    FROM transaction_records WHERE id = :record_id
""")

_LIST_FOR_USER_SQL = text(f"""
    SELECT {_SELECT_COLUMNS}
    FROM transaction_records
    WHERE (buyer_id = :user_id OR seller_id = :user_id)
      AND (CAST(:transaction_type AS TEXT) IS NULL
           OR transaction_type = CAST(:transaction_type AS TEXT))
      AND (CAST(:status AS TEXT) IS NULL OR status = CAST(:status AS TEXT))
      AND (CAST(:cursor_id AS TEXT) IS NULL OR id < CAST(:cursor_id AS TEXT))
    ORDER BY id DESC
    LIMIT :limit
""")

_LIST_FOR_LISTING_SQL = text(f"""
    SELECT {_SELECT_COLUMNS}
    FROM transaction_records
    WHERE listing_id = :listing_id
    ORDER BY initiated_at DESC, id DESC
""")

_STATS_SQL = text("""
    SELECT
        COUNT(*) FILTER (WHERE status = 'completed') AS completed_count,
        COUNT(*) FILTER (WHERE status = 'failed') AS failed_count,
        COALESCE(SUM(price_amount) FILTER (WHERE status = 'completed'), 0) AS total_volume,
        COALESCE(SUM(platform_fee) FILTER (WHERE status = 'completed'), 0)
            AS total_platform_fees,
        COALESCE(SUM(royalty_fee) FILTER (WHERE status = 'completed'), 0)
            AS total_royalty_fees,
        COALESCE(AVG(price_amount) FILTER (WHERE status = 'completed'), 0) AS average_price
    FROM transaction_records
    WHERE initiated_at >= :since
""")


def _row_to_record(row: Any) -> TransactionRecord:
    return TransactionRecord(
        id=row.id,
        transaction_type=row.transaction_type,
        status=row.status,
        listing_id=row.listing_id,
        buyer_id=row.buyer_id,
        buyer_account_id=row.buyer_account_id,
        seller_id=row.seller_id,
        seller_account_id=row.seller_account_id,
        token_id=row.token_id,
        serial_number=row.serial_number,
        comic_id=row.comic_id,
        episode_id=row.episode_id,
        price_amount=row.price_amount,
        currency=row.currency,
        platform_fee=row.platform_fee,
        royalty_fee=row.royalty_fee,
        total_fees=row.total_fees,
        seller_amount=row.seller_amount,
        initiated_at=row.initiated_at,
        ledger_transaction_id=row.ledger_transaction_id,
        explorer_url=row.explorer_url,
        error_code=row.error_code,
        error_message=row.error_message,
        completed_at=row.completed_at,
        failed_at=row.failed_at,
    )


class TransactionRepository:
    async def insert(self, db: AsyncSession, record: TransactionRecord) -> TransactionRecord:
        try:
            await db.execute(
                _INSERT_SQL,
                {
                    "id": record.id,
                    "transaction_type": record.transaction_type,
                    "status": record.status,
                    "listing_id": record.listing_id,
                    "buyer_id": record.buyer_id,
                    "buyer_account_id": record.buyer_account_id,
                    "seller_id": record.seller_id,
                    "seller_account_id": record.seller_account_id,
                    "token_id": record.token_id,
                    "serial_number": record.serial_number,
                    "comic_id": record.comic_id,
                    "episode_id": record.episode_id,
                    "price_amount": record.price_amount,
                    "currency": record.currency,
                    "platform_fee": record.platform_fee,
                    "royalty_fee": record.royalty_fee,
                    "total_fees": record.total_fees,
                    "seller_amount": record.seller_amount,
                    "ledger_transaction_id": record.ledger_transaction_id,
                    "explorer_url": record.explorer_url,
                    "error_code": record.error_code,
                    "error_message": record.error_message,
                    "initiated_at": record.initiated_at,
                    "completed_at": record.completed_at,
                    "failed_at": record.failed_at,
                },
            )
        except IntegrityError as exc:
            constraint = str(exc.orig)
            if "uq_txr_listing_pending" in constraint or "uq_txr_listing_completed" in constraint:
                raise ConcurrentUpdateError(record.listing_id) from exc
            raise
        return record

    async def mark_completed(
        self,
        db: AsyncSession,
        record_id: str,
        ledger_transaction_id: str,
        explorer_url: str | None,
        completed_at: datetime,
    ) -> None:
        row = (
            await db.execute(
                _MARK_COMPLETED_SQL,
                {
                    "record_id": record_id,
                    "ledger_transaction_id": ledger_transaction_id,
                    "explorer_url": explorer_url,
                    "completed_at": completed_at,
                },
            )
        ).fetchone()
        if row is None:
            raise InternalError(f"Transaction record {record_id} is not pending")

    async def mark_failed(
        self,
        db: AsyncSession,
        record_id: str,
        error_code: str,
        error_message: str,
        failed_at: datetime,
        ledger_transaction_id: str | None = None,
    ) -> None:
        row = (
            await db.execute(
                _MARK_FAILED_SQL,
                {
                    "record_id": record_id,
                    "error_code": error_code,
                    "error_message": error_message,
                    "failed_at": failed_at,
                    "ledger_transaction_id": ledger_transaction_id,
                },
            )
        ).fetchone()
        if row is None:
            raise InternalError(f"Transaction record {record_id} is not pending")

    async def fail_stale_pending(
        self,
        db: AsyncSession,
        initiated_before: datetime,
        error_code: str,
        error_message: str,
        failed_at: datetime,
        limit: int,
    ) -> list[TransactionRecord]:
        """Fail pending records started before the cutoff. Any ledger id is kept."""
        result = await db.execute(
            _FAIL_STALE_PENDING_SQL,
            {
                "initiated_before": initiated_before,
                "error_code": error_code,
                "error_message": error_message,
                "failed_at": failed_at,
                "limit": limit,
            },
        )
        return [_row_to_record(row) for row in result.fetchall()]

    async def exists_for_listing(
        self, db: AsyncSession, listing_id: str, status: str | None = None
    ) -> bool:
        result = await db.execute(
            _EXISTS_FOR_LISTING_SQL, {"listing_id": listing_id, "status": status}
        )
        return result.fetchone() is not None

    async def get_by_id(self, db: AsyncSession, record_id: str) -> TransactionRecord | None:
        row = (await db.execute(_GET_BY_ID_SQL, {"record_id": record_id})).fetchone()
        return _row_to_record(row) if row is not None else None

    async def list_for_user(
        self,
        db: AsyncSession,
        user_id: str,
        transaction_type: str | None,
        status: str | None,
        cursor_id: str | None,
        limit: int,
    ) -> list[TransactionRecord]:
        result = await db.execute(
            _LIST_FOR_USER_SQL,
            {
                "user_id": user_id,
                "transaction_type": transaction_type,
                "status": status,
                "cursor_id": cursor_id,
                "limit": limit,
            },
        )
        return [_row_to_record(row) for row in result.fetchall()]

    async def list_for_listing(
        self, db: AsyncSession, listing_id: str
    ) -> list[TransactionRecord]:
        result = await db.execute(_LIST_FOR_LISTING_SQL, {"listing_id": listing_id})
        return [_row_to_record(row) for row in result.fetchall()]

    async def stats(self, db: AsyncSession, since: datetime, days: int) -> TransactionStats:
        row = (await db.execute(_STATS_SQL, {"since": since})).fetchone()
        return TransactionStats(
            days=days,
            completed_count=row.completed_count,
            failed_count=row.failed_count,
            total_volume=Decimal(row.total_volume),
            total_platform_fees=Decimal(row.total_platform_fees),
            total_royalty_fees=Decimal(row.total_royalty_fees),
            average_price=truncate_amount(Decimal(row.average_price)),
        )

"""Pydantic schemas for cm_settlement API responses."""

import base64
import binascii
import json
from datetime import datetime

from pydantic import BaseModel

from src.cm_common.amounts import format_amount
from src.cm_common.errors import InvalidCursorError
from src.cm_listing.application.schemas import ListingResponse
from src.cm_settlement.domain.fee import FeeBreakdown
from src.cm_settlement.domain.models import (
    SettlementResult,
    TransactionRecord,
    TransactionStats,
    TransferReceipt,
)


def cursor_encode(last_record: TransactionRecord) -> str:
    return base64.b64encode(json.dumps({"id": last_record.id}).encode()).decode()


def cursor_decode(cursor: str | None) -> str | None:
    if cursor is None:
        return None
    try:
        record_id = json.loads(base64.b64decode(cursor.encode(), validate=True).decode())["id"]
    except (binascii.Error, ValueError, KeyError, TypeError) as exc:
        raise InvalidCursorError() from exc
    if not isinstance(record_id, str):
        raise InvalidCursorError()
    return record_id


def _iso(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt is not None else None


class FeeBreakdownOut(BaseModel):
    platform_fee: str
    royalty_fee: str
    total_fees: str
    seller_amount: str

    @classmethod
    def from_domain(cls, fees: FeeBreakdown) -> "FeeBreakdownOut":
        return cls(
            platform_fee=format_amount(fees.platform_fee),  # type: ignore[arg-type]
            royalty_fee=format_amount(fees.royalty_fee),  # type: ignore[arg-type]
            total_fees=format_amount(fees.total_fees),  # type: ignore[arg-type]
            seller_amount=format_amount(fees.seller_amount),  # type: ignore[arg-type]
        )


class TransferOut(BaseModel):
    transaction_id: str
    explorer_url: str
    status: str

    @classmethod
    def from_domain(cls, receipt: TransferReceipt) -> "TransferOut":
        return cls(
            transaction_id=receipt.transaction_id,
            explorer_url=receipt.explorer_url,
            status=receipt.status,
        )


class TransactionRecordResponse(BaseModel):
    id: str
    type: str
    status: str
    listing_id: str
    buyer_id: str
    buyer_account_id: str
    seller_id: str
    seller_account_id: str
    token_id: str
    serial_number: int
    comic_id: str
    episode_id: str
    price: str
    currency: str
    fees: FeeBreakdownOut
    ledger_transaction_id: str | None
    explorer_url: str | None
    error_code: str | None
    error_message: str | None
    initiated_at: str
    completed_at: str | None
    failed_at: str | None

    @classmethod
    def from_domain(cls, r: TransactionRecord) -> "TransactionRecordResponse":
        return cls(
            id=r.id,
            type=r.transaction_type,
            status=r.status,
            listing_id=r.listing_id,
            buyer_id=r.buyer_id,
            buyer_account_id=r.buyer_account_id,
            seller_id=r.seller_id,
            seller_account_id=r.seller_account_id,
            token_id=r.token_id,
            serial_number=r.serial_number,
            comic_id=r.comic_id,
            episode_id=r.episode_id,
            price=format_amount(r.price_amount),  # type: ignore[arg-type]
            currency=r.currency,
            fees=FeeBreakdownOut(
                platform_fee=format_amount(r.platform_fee),  # type: ignore[arg-type]
                royalty_fee=format_amount(r.royalty_fee),  # type: ignore[arg-type]
                total_fees=format_amount(r.total_fees),  # type: ignore[arg-type]
                seller_amount=format_amount(r.seller_amount),  # type: ignore[arg-type]
            ),
            ledger_transaction_id=r.ledger_transaction_id,
            explorer_url=r.explorer_url,
            error_code=r.error_code,
            error_message=r.error_message,
            initiated_at=r.initiated_at.isoformat(),
            completed_at=_iso(r.completed_at),
            failed_at=_iso(r.failed_at),
        )


class TransactionListResponse(BaseModel):
    items: list[TransactionRecordResponse]
    next_cursor: str | None
    has_more: bool


class SettlementResponse(BaseModel):
    status: str
    listing: ListingResponse
    transaction: TransactionRecordResponse | None
    fees: FeeBreakdownOut | None
    transfer: TransferOut | None

    @classmethod
    def from_domain(cls, result: SettlementResult) -> "SettlementResponse":
        return cls(
            status=result.status,
            listing=ListingResponse.from_domain(result.listing),
            transaction=(
                TransactionRecordResponse.from_domain(result.transaction)
                if result.transaction
                else None
            ),
            fees=FeeBreakdownOut.from_domain(result.fees) if result.fees else None,
            transfer=TransferOut.from_domain(result.transfer) if result.transfer else None,
        )


class TransactionStatsResponse(BaseModel):
    days: int
    completed_count: int
    failed_count: int
    success_rate: str
    total_volume: str
    total_platform_fees: str
    total_royalty_fees: str
    average_price: str

    @classmethod
    def from_domain(cls, s: TransactionStats) -> "TransactionStatsResponse":
        return cls(
            days=s.days,
            completed_count=s.completed_count,
            failed_count=s.failed_count,
            success_rate=format_amount(s.success_rate),  # type: ignore[arg-type]
            total_volume=format_amount(s.total_volume),  # type: ignore[arg-type]
            total_platform_fees=format_amount(s.total_platform_fees),  # type: ignore[arg-type]
            total_royalty_fees=format_amount(s.total_royalty_fees),  # type: ignore[arg-type]
            average_price=format_amount(s.average_price),  # type: ignore[arg-type]
        )

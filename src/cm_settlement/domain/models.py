"""Domain models for cm_settlement: pure dataclasses, no SQLAlchemy dependency."""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from src.cm_listing.domain.models import Listing
from src.cm_settlement.domain.fee import FeeBreakdown


@dataclass
class TransactionRecord:
    """Audit entry for one settlement attempt.

    Created pending; moves exactly once to completed or failed.
    """

    id: str
    transaction_type: str            # TransactionType value
    status: str                      # TransactionStatus value
    listing_id: str
    buyer_id: str
    buyer_account_id: str
    seller_id: str
    seller_account_id: str
    token_id: str
    serial_number: int
    comic_id: str
    episode_id: str
    price_amount: Decimal
    currency: str
    platform_fee: Decimal
    royalty_fee: Decimal
    total_fees: Decimal
    seller_amount: Decimal
    initiated_at: datetime
    ledger_transaction_id: str | None = None
    explorer_url: str | None = None
    error_code: str | None = None
    error_message: str | None = None
    completed_at: datetime | None = None
    failed_at: datetime | None = None


@dataclass(frozen=True)
class TransferRequest:
    token_id: str
    serial_number: int
    from_account_id: str
    to_account_id: str
    price: Decimal | None = None
    currency: str | None = None


@dataclass(frozen=True)
class TransferReceipt:
    transaction_id: str
    explorer_url: str
    status: str


@dataclass
class SettlementResult:
    """Outcome of buy() or complete_auction().

    For auctions that end unsold, status is "expired" or "reserve_not_met" and
    no transfer, record or fees exist.
    """

    status: str
    listing: Listing
    transaction: TransactionRecord | None = None
    fees: FeeBreakdown | None = None
    transfer: TransferReceipt | None = None


@dataclass
class TransactionStats:
    days: int
    completed_count: int
    failed_count: int
    total_volume: Decimal
    total_platform_fees: Decimal
    total_royalty_fees: Decimal
    average_price: Decimal

    @property
    def success_rate(self) -> Decimal:
        attempts = self.completed_count + self.failed_count
        if attempts == 0:
            return Decimal(0)
        return (Decimal(self.completed_count) * 100 / attempts).quantize(Decimal("0.01"))

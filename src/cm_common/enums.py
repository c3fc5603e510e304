"""Global enums: must match DB CHECK constraints exactly."""

from enum import Enum


class ListingType(str, Enum):
    FIXED_PRICE = "fixed-price"
    AUCTION = "auction"


class ListingStatus(str, Enum):
    ACTIVE = "active"
    SOLD = "sold"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class Currency(str, Enum):
    HBAR = "HBAR"
    USDT = "USDT"


class TransactionType(str, Enum):
    PURCHASE = "purchase"
    AUCTION_COMPLETE = "auction_complete"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class AuctionOutcome(str, Enum):
    """Result of evaluating an ended auction; values are returned to callers."""
    SOLD = "sold"
    EXPIRED = "expired"              # no bids were ever placed
    RESERVE_NOT_MET = "reserve_not_met"

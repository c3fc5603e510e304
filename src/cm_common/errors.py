"""Unified error codes and custom exceptions.

Error code ranges:
  1xxx: Auth/Identity
  3xxx: Catalog (episodes, NFT ownership, royalties)
  4xxx: Listing
  5xxx: Auction
  6xxx: Settlement / transaction records
  9xxx: System

`retryable` marks conflicts and collaborator failures: the same request may
succeed if the caller tries again. Everything else is a client error that will
fail the same way on retry.
"""


class AppError(Exception):
    """Base application error."""

    def __init__(
        self,
        code: int,
        message: str,
        http_status: int = 500,
        retryable: bool = False,
    ) -> None:
        self.code = code
        self.message = message
        self.http_status = http_status
        self.retryable = retryable
        super().__init__(message)


# --- 1xxx: Auth/Identity ---

class InvalidCredentialsError(AppError):
    def __init__(self) -> None:
        super().__init__(1003, "Invalid or expired token", 401)


class InvalidCursorError(AppError):
    def __init__(self) -> None:
        super().__init__(1001, "Malformed pagination cursor", 422)


class AdminRequiredError(AppError):
    def __init__(self) -> None:
        super().__init__(1006, "Admin role required", 403)


# --- 3xxx: Catalog ---

class EpisodeNftNotFoundError(AppError):
    def __init__(self, episode_id: str, serial_number: int) -> None:
        super().__init__(
            3001, f"NFT not found: episode {episode_id} serial {serial_number}", 404
        )


class NotOwnerError(AppError):
    def __init__(self, token_id: str, serial_number: int) -> None:
        super().__init__(
            3002, f"NFT {token_id}/{serial_number} is not owned by the seller", 403
        )


class RoyaltyOutOfRangeError(AppError):
    def __init__(self, royalty_percent: object, platform_fee_percent: object) -> None:
        super().__init__(
            3003,
            f"Royalty {royalty_percent}% plus platform fee {platform_fee_percent}% "
            "must be between 0 and 100",
            422,
        )


# --- 4xxx: Listing ---

class ListingNotFoundError(AppError):
    def __init__(self, listing_id: str) -> None:
        super().__init__(4001, f"Listing not found: {listing_id}", 404)


class DuplicateListingError(AppError):
    def __init__(self, token_id: str, serial_number: int) -> None:
        super().__init__(
            4002, f"NFT {token_id}/{serial_number} already has an active listing", 409
        )


class ListingNotActiveError(AppError):
    def __init__(self, listing_id: str, status: str) -> None:
        super().__init__(4003, f"Listing {listing_id} is not active (status={status})", 422)


class WrongListingTypeError(AppError):
    def __init__(self, listing_id: str, expected: str) -> None:
        super().__init__(4004, f"Listing {listing_id} is not a {expected} listing", 422)


class NotSellerError(AppError):
    def __init__(self, listing_id: str) -> None:
        super().__init__(4005, f"Only the seller may modify listing {listing_id}", 403)


class BidsExistError(AppError):
    def __init__(self, listing_id: str) -> None:
        super().__init__(4006, f"Cannot cancel auction {listing_id}: bids exist", 422)


class ListingExpiredError(AppError):
    def __init__(self, listing_id: str) -> None:
        super().__init__(4007, f"Listing {listing_id} has expired", 422)


class InvalidReservePriceError(AppError):
    def __init__(self, reserve_price: object, starting_price: object) -> None:
        super().__init__(
            4008,
            f"Reserve price {reserve_price} is below starting price {starting_price}",
            422,
        )


# --- 5xxx: Auction ---

class AuctionNotActiveError(AppError):
    def __init__(self, listing_id: str, status: str) -> None:
        super().__init__(5001, f"Auction {listing_id} is not active (status={status})", 422)


class AuctionEndedError(AppError):
    def __init__(self, listing_id: str) -> None:
        super().__init__(5002, f"Auction {listing_id} has ended", 422)


class AuctionNotEndedError(AppError):
    def __init__(self, listing_id: str) -> None:
        super().__init__(5003, f"Auction {listing_id} has not ended yet", 422)


class SelfBidError(AppError):
    def __init__(self) -> None:
        super().__init__(5004, "Sellers cannot bid on their own auction", 422)


class BidTooLowError(AppError):
    def __init__(self, amount: object, current_bid: object) -> None:
        super().__init__(
            5005, f"Bid {amount} must be higher than current bid of {current_bid}", 422
        )


# --- 6xxx: Settlement ---

class SelfPurchaseError(AppError):
    def __init__(self) -> None:
        super().__init__(6001, "Sellers cannot buy their own listing", 422)


class LedgerTransferError(AppError):
    """Ledger gateway rejected or failed the transfer. Listing is left active."""

    def __init__(self, ledger_code: str, detail: str) -> None:
        self.ledger_code = ledger_code
        self.detail = detail
        super().__init__(6002, f"NFT transfer failed [{ledger_code}]: {detail}", 502, True)


class OwnershipUpdateError(AppError):
    """Transfer succeeded on the ledger but local records could not be updated."""

    def __init__(self, ledger_transaction_id: str, detail: str) -> None:
        self.ledger_transaction_id = ledger_transaction_id
        super().__init__(
            6003,
            f"Transfer {ledger_transaction_id} succeeded but local update failed: {detail}",
            502,
            True,
        )


class TransactionRecordNotFoundError(AppError):
    def __init__(self, record_id: str) -> None:
        super().__init__(6004, f"Transaction record not found: {record_id}", 404)


class LedgerUnavailableError(AppError):
    def __init__(self, detail: str) -> None:
        super().__init__(6005, f"Ledger gateway unavailable: {detail}", 503, True)


# --- 9xxx: System ---

class InternalError(AppError):
    def __init__(self, detail: str = "Internal server error") -> None:
        super().__init__(9002, detail, 500)


class ConcurrentUpdateError(AppError):
    def __init__(self, entity_id: str) -> None:
        super().__init__(
            9003, f"Concurrent update detected on {entity_id}, please retry", 409, True
        )

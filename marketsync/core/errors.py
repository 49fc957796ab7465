"""
Error taxonomy for ledger reads and write transactions.

Read-side errors are absorbed by the reconciliation engine; write-side errors
are classified into user-facing categories by matching the Move abort names
(and the numeric ``code: 40x`` forms) that the marketplace module raises.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, Optional, Tuple


class MarketSyncError(Exception):
    """Base class for marketsync errors."""


class LedgerQueryError(MarketSyncError):
    """A view call or resource read failed."""

    def __init__(self, target: str, cause: object) -> None:
        self.target = target
        self.cause = cause
        super().__init__(f"{target}: {cause}")


class MarketplaceUninitializedError(MarketSyncError):
    """The marketplace resource has not been initialized on the ledger."""

    def __init__(self, marketplace_addr: str) -> None:
        self.marketplace_addr = marketplace_addr
        super().__init__(f"marketplace not initialized at {marketplace_addr}")


class ErrorCategory(Enum):
    INSUFFICIENT_FUNDS = "insufficient_funds"
    AUCTION_ENDED = "auction_ended"
    ALREADY_INACTIVE = "already_inactive"
    BID_TOO_LOW = "bid_too_low"
    SELLER_CANNOT_BID = "seller_cannot_bid"
    DUPLICATE_NAME = "duplicate_name"
    DUPLICATE_URI = "duplicate_uri"
    NOT_FOR_SALE = "not_for_sale"
    INSUFFICIENT_PAYMENT = "insufficient_payment"
    CANNOT_BUY_OWN = "cannot_buy_own"
    PERMISSION_DENIED = "permission_denied"
    INVALID_INPUT = "invalid_input"
    GENERIC = "generic"


# Checked in order; the first matching marker wins.
_MARKERS: Tuple[Tuple[ErrorCategory, Tuple[str, ...]], ...] = (
    (ErrorCategory.ALREADY_INACTIVE, ("EAUCTION_NOT_ACTIVE", "EAUCTION_INACTIVE", "EAUCTION_ALREADY_ENDED")),
    (ErrorCategory.CANNOT_BUY_OWN, ("ECANNOT_BUY_OWN_NFT", "code: 402", "Cannot buy own NFT")),
    (ErrorCategory.NOT_FOR_SALE, ("ENFT_NOT_FOR_SALE", "code: 400")),
    (ErrorCategory.INSUFFICIENT_PAYMENT, ("EINSUFFICIENT_PAYMENT", "code: 401")),
    (ErrorCategory.INSUFFICIENT_FUNDS, ("EINSUFFICIENT_FUNDS", "INSUFFICIENT_BALANCE", "EINSUFFICIENT_BALANCE")),
    (ErrorCategory.AUCTION_ENDED, ("EAUCTION_ENDED",)),
    (ErrorCategory.BID_TOO_LOW, ("EBID_TOO_LOW",)),
    (ErrorCategory.SELLER_CANNOT_BID, ("ESELLER_CANNOT_BID",)),
    (ErrorCategory.DUPLICATE_NAME, ("EDUPLICATE_NFT_NAME",)),
    (ErrorCategory.DUPLICATE_URI, ("EDUPLICATE_NFT_URI",)),
    (ErrorCategory.PERMISSION_DENIED, ("ENOT_OWNER", "ENOT_AUTHORIZED", "EPERMISSION_DENIED", "ENOT_SELLER")),
)

_DESCRIPTIONS: Dict[ErrorCategory, Tuple[str, str]] = {
    ErrorCategory.INSUFFICIENT_FUNDS: ("Insufficient Balance", "You don't have enough balance for this transaction."),
    ErrorCategory.AUCTION_ENDED: ("Auction Ended", "This auction has already ended."),
    ErrorCategory.ALREADY_INACTIVE: ("Auction Closed", "This auction is no longer active."),
    ErrorCategory.BID_TOO_LOW: ("Bid Too Low", "Bid must be higher than the current price."),
    ErrorCategory.SELLER_CANNOT_BID: ("Own Auction", "You cannot bid on your own auction."),
    ErrorCategory.DUPLICATE_NAME: ("Duplicate NFT Name", "This NFT name is already taken. Please choose a different name."),
    ErrorCategory.DUPLICATE_URI: ("Duplicate Image", "This image is already used by another NFT. Please use a different image."),
    ErrorCategory.NOT_FOR_SALE: ("NFT Not For Sale", "This NFT is not available for purchase."),
    ErrorCategory.INSUFFICIENT_PAYMENT: ("Insufficient Payment", "The payment amount is insufficient to purchase this NFT."),
    ErrorCategory.CANNOT_BUY_OWN: ("Cannot Buy Own NFT", "You cannot purchase your own NFT."),
    ErrorCategory.PERMISSION_DENIED: ("Permission Denied", "You are not allowed to perform this action."),
    ErrorCategory.INVALID_INPUT: ("Invalid Input", "The request was rejected before submission."),
    ErrorCategory.GENERIC: ("Transaction Failed", "The transaction failed. Please try again."),
}


def classify_error(message: Optional[str]) -> ErrorCategory:
    """Map a ledger/wallet error message to an ErrorCategory."""
    if not message:
        return ErrorCategory.GENERIC
    for category, markers in _MARKERS:
        if any(m in message for m in markers):
            return category
    return ErrorCategory.GENERIC


def describe(category: ErrorCategory) -> Tuple[str, str]:
    """(title, message) suitable for showing to a user."""
    return _DESCRIPTIONS[category]


class TransactionError(MarketSyncError):
    """A write transaction was rejected, failed on-chain, or never finalized."""

    def __init__(
        self,
        message: str,
        vm_status: Optional[str] = None,
        tx_hash: Optional[str] = None,
    ) -> None:
        self.vm_status = vm_status
        self.tx_hash = tx_hash
        self.category = classify_error(" ".join(p for p in (message, vm_status) if p))
        super().__init__(message)


class ActionRejected(MarketSyncError):
    """Client-side validation refused to submit a write action."""

    def __init__(self, category: ErrorCategory, message: str) -> None:
        self.category = category
        super().__init__(message)

"""Custom exception hierarchy for the KidPots package."""

from __future__ import annotations

from typing import Any, Dict, Optional


class KidPotsError(Exception):
    """Base class for all KidPots specific errors.

    ``code`` is a stable identifier used as the translation key for the
    message shown to parents; ``details`` holds the values interpolated into
    that message.
    """

    code = "error"

    def __init__(self, message: str = "", *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message or self.code)
        self.details: Dict[str, Any] = dict(details or {})


class ValidationError(KidPotsError):
    """Raised when caller input is wrong; nothing has been written."""

    code = "validation"


class NegativeAmountError(ValidationError):
    """Raised when an amount or allocation slice is below zero."""

    code = "negative_amount"


class SliceMismatchError(ValidationError):
    """Raised when allocation slices do not add up to the declared total."""

    code = "slice_mismatch"


class PolicyViolationError(ValidationError):
    """Raised when an allocation breaks a configured policy."""

    code = "policy_violation"


class DonateDisabledError(PolicyViolationError):
    """Raised when money is allocated to the donate pot while it is hidden."""

    code = "donate_disabled"


class AppendError(ValidationError):
    """Raised when a batch cannot be appended to the ledger."""

    code = "append_rejected"


class InsufficientFundsError(KidPotsError):
    """Raised when an operation would drive a pot below zero."""

    code = "insufficient_funds"


class ThresholdError(KidPotsError):
    """Base class for threshold gating rejections."""

    code = "threshold"


class BelowThresholdError(ThresholdError):
    """Raised when the invest pot has not reached its transfer threshold."""

    code = "below_threshold"


class ContentionError(KidPotsError):
    """Raised when a concurrent writer changed the balance row first."""

    code = "contention"


class AccrualError(KidPotsError):
    """Base class for interest accrual failures."""

    code = "accrual"


class NoBaseDateError(AccrualError):
    """Raised when neither a watermark nor a creation date is available."""

    code = "no_base_date"


class PersistenceError(KidPotsError):
    """Raised when the backing store is unavailable."""

    code = "persistence"


class ChildNotFoundError(KidPotsError):
    """Raised when a child lookup fails for the requesting owner."""

    code = "child_not_found"


class WishNotFoundError(KidPotsError):
    """Raised when a requested wish cannot be found."""

    code = "wish_not_found"


class WishAlreadyRedeemedError(KidPotsError):
    """Raised when redeeming a wish twice."""

    code = "wish_redeemed"


__all__ = [
    "AccrualError",
    "AppendError",
    "BelowThresholdError",
    "ChildNotFoundError",
    "ContentionError",
    "DonateDisabledError",
    "InsufficientFundsError",
    "KidPotsError",
    "NegativeAmountError",
    "NoBaseDateError",
    "PersistenceError",
    "PolicyViolationError",
    "SliceMismatchError",
    "ThresholdError",
    "ValidationError",
    "WishAlreadyRedeemedError",
    "WishNotFoundError",
]

"""KidPots package: a pocket-money ledger that splits payouts across pots."""

from .allocation import AllocationValidator, require_savings_share
from .exceptions import (
    AccrualError,
    AppendError,
    BelowThresholdError,
    ChildNotFoundError,
    ContentionError,
    DonateDisabledError,
    InsufficientFundsError,
    KidPotsError,
    NegativeAmountError,
    NoBaseDateError,
    PersistenceError,
    PolicyViolationError,
    SliceMismatchError,
    ThresholdError,
    ValidationError,
    WishAlreadyRedeemedError,
    WishNotFoundError,
)
from .gates import ThresholdGate
from .i18n import Translator
from .interest import InterestAccrualEngine, compute_interest
from .ledger import Ledger
from .models import (
    AccrualOutcome,
    AccrualStatus,
    BalanceSnapshot,
    ChildProfile,
    Pot,
    PotSettings,
    Posting,
    Receipt,
    TransactionCandidate,
    TransactionKind,
    WishStatus,
)
from .money import format_currency, split_by_percent, to_cents
from .ops import StructuredLogger
from .persistence import build_engine, create_db_and_tables
from .projector import BalanceProjector
from .service import PocketMoneyBank

__all__ = [
    "AccrualError",
    "AccrualOutcome",
    "AccrualStatus",
    "AllocationValidator",
    "AppendError",
    "BalanceProjector",
    "BalanceSnapshot",
    "BelowThresholdError",
    "ChildNotFoundError",
    "ChildProfile",
    "ContentionError",
    "DonateDisabledError",
    "InsufficientFundsError",
    "InterestAccrualEngine",
    "KidPotsError",
    "Ledger",
    "NegativeAmountError",
    "NoBaseDateError",
    "PersistenceError",
    "PocketMoneyBank",
    "PolicyViolationError",
    "Pot",
    "PotSettings",
    "Posting",
    "Receipt",
    "SliceMismatchError",
    "StructuredLogger",
    "ThresholdError",
    "ThresholdGate",
    "TransactionCandidate",
    "TransactionKind",
    "Translator",
    "ValidationError",
    "WishAlreadyRedeemedError",
    "WishNotFoundError",
    "WishStatus",
    "build_engine",
    "compute_interest",
    "create_db_and_tables",
    "format_currency",
    "require_savings_share",
    "split_by_percent",
    "to_cents",
]

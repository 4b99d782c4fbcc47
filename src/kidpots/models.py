"""Domain models used by the KidPots package."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

from .exceptions import AppendError


class Pot(str, Enum):
    """The four pots a payout can be split across."""

    SPEND = "spend"
    SAVE = "save"
    INVEST = "invest"
    DONATE = "donate"


class TransactionKind(str, Enum):
    """Enumerates the supported kinds of ledger rows."""

    DEPOSIT = "deposit"
    ALLOCATION = "allocation"
    EXPENSE = "expense"
    INTEREST = "interest"
    TRANSFER_OUT = "transfer_out"
    ADJUSTMENT = "adjustment"


DEBIT_KINDS = frozenset({TransactionKind.EXPENSE, TransactionKind.TRANSFER_OUT})

SOURCE_WEEKLY_ALLOWANCE = "weekly_allowance"
SOURCE_EXTRA_PAYMENT = "extra_payment"
SOURCE_WISH = "wish"
INCOME_SOURCES = frozenset({SOURCE_WEEKLY_ALLOWANCE, SOURCE_EXTRA_PAYMENT})


def coerce_pot(value: Pot | str | None) -> Optional[Pot]:
    if value is None or isinstance(value, Pot):
        return value
    try:
        return Pot(value)
    except ValueError as exc:
        raise AppendError(f"Unknown pot: {value!r}", details={"pot": value}) from exc


def kind_direction(kind: TransactionKind, direction: Optional[int] = None) -> int:
    """Return ``+1`` or ``-1`` for ``kind``.

    Adjustments are the only kind whose direction is chosen by the caller.
    """

    if kind is TransactionKind.ADJUSTMENT:
        if isinstance(direction, bool) or direction not in (1, -1):
            raise AppendError("Adjustments need an explicit direction of +1 or -1.")
        return direction
    fixed = -1 if kind in DEBIT_KINDS else 1
    if direction is not None and (isinstance(direction, bool) or direction != fixed):
        raise AppendError(f"A {kind.value} row cannot have direction {direction}.")
    return fixed


@dataclass(slots=True, frozen=True)
class TransactionCandidate:
    """A ledger row that has not been appended yet.

    ``amount_cents`` and ``occurred_on`` are validated by the ledger at append
    time, so candidates may be built straight from user input.
    """

    child_id: int
    owner_id: str
    kind: TransactionKind
    amount_cents: int
    pot: Optional[Pot] = None
    occurred_on: date | str = field(default_factory=date.today)
    direction: Optional[int] = None
    source: Optional[str] = None
    note: Optional[str] = None
    meta: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        try:
            kind = TransactionKind(self.kind)
        except ValueError as exc:
            raise AppendError(f"Unknown transaction kind: {self.kind!r}") from exc
        object.__setattr__(self, "kind", kind)
        object.__setattr__(self, "pot", coerce_pot(self.pot))
        object.__setattr__(self, "direction", kind_direction(kind, self.direction))
        object.__setattr__(self, "meta", dict(self.meta))

    @property
    def moves_pot(self) -> bool:
        """False for the unallocated deposit that only records a payout total."""

        return self.pot is not None

    @property
    def signed_amount(self) -> int:
        return self.amount_cents * self.direction


@dataclass(slots=True, frozen=True)
class Receipt:
    """Outcome of a successful ledger append."""

    child_id: int
    transaction_ids: Tuple[int, ...]
    deltas: Mapping[Pot, int]
    recorded_at: datetime


@dataclass(slots=True, frozen=True)
class Posting:
    """A committed event: the ledger receipt and the balance it produced."""

    receipt: "Receipt"
    balance: "BalanceSnapshot"


@dataclass(slots=True, frozen=True)
class BalanceSnapshot:
    """Read-only view of a child's cached balance row."""

    child_id: int
    spend: int = 0
    save: int = 0
    invest: int = 0
    donate: int = 0
    last_interest_on: Optional[date] = None
    version: int = 0
    updated_at: Optional[datetime] = None

    def get(self, pot: Pot | str) -> int:
        return getattr(self, Pot(pot).value)

    def as_dict(self) -> Dict[Pot, int]:
        return {pot: self.get(pot) for pot in Pot}

    @property
    def total(self) -> int:
        return self.spend + self.save + self.invest + self.donate


@dataclass(slots=True, frozen=True)
class PotSettings:
    """Per-child configuration consumed read-only by the engine."""

    interest_apr_basis_points: int = 200
    invest_threshold_cents: int = 5000
    payout_weekday: int = 1


@dataclass(slots=True, frozen=True)
class ChildProfile:
    """The slice of a child's profile the engine needs."""

    id: int
    owner_id: str
    name: str
    age: Optional[int] = None
    created_at: Optional[datetime] = None
    donate_enabled: bool = False


class AccrualStatus(str, Enum):
    """Result of an interest run."""

    NOTHING_DUE = "nothing_due"
    NO_GROWTH = "no_growth"
    POSTED = "posted"


@dataclass(slots=True, frozen=True)
class AccrualOutcome:
    """What an interest run did, and why."""

    status: AccrualStatus
    days: int = 0
    interest_cents: int = 0
    base_date: Optional[date] = None
    receipt: Optional[Receipt] = None

    @property
    def posted(self) -> bool:
        return self.status is AccrualStatus.POSTED


@dataclass(slots=True, frozen=True)
class WishStatus:
    """Affordability of a wish against the current save pot."""

    wish_id: int
    title: str
    target_cents: int
    save_cents: int
    affordable: bool
    progress: float
    remaining_cents: int
    redeemed_on: Optional[date] = None


__all__ = [
    "AccrualOutcome",
    "AccrualStatus",
    "BalanceSnapshot",
    "ChildProfile",
    "DEBIT_KINDS",
    "INCOME_SOURCES",
    "Pot",
    "PotSettings",
    "Posting",
    "Receipt",
    "SOURCE_EXTRA_PAYMENT",
    "SOURCE_WEEKLY_ALLOWANCE",
    "SOURCE_WISH",
    "TransactionCandidate",
    "TransactionKind",
    "WishStatus",
    "coerce_pot",
    "kind_direction",
]

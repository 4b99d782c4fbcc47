"""Simple-interest accrual for the save pot."""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from sqlmodel import Session

from .exceptions import NoBaseDateError
from .ledger import Ledger
from .models import (
    AccrualOutcome,
    AccrualStatus,
    BalanceSnapshot,
    ChildProfile,
    Pot,
    PotSettings,
    TransactionCandidate,
    TransactionKind,
)
from .projector import BalanceProjector

BASIS_POINTS = 10_000
DAYS_PER_YEAR = 365


def calendar_date(value: date | datetime) -> date:
    """Drop the time of day; accrual only ever looks at calendar dates."""

    if isinstance(value, datetime):
        return value.date()
    return value


def whole_days_between(start: date | datetime, end: date | datetime) -> int:
    return (calendar_date(end) - calendar_date(start)).days


def compute_interest(save_cents: int, apr_basis_points: int, days: int) -> int:
    """Return ``floor(save * apr / 10_000 / 365 * days)`` in integer arithmetic.

    >>> compute_interest(10_000, 200, 36)
    19
    """

    if save_cents <= 0 or apr_basis_points <= 0 or days <= 0:
        return 0
    return (save_cents * apr_basis_points * days) // (BASIS_POINTS * DAYS_PER_YEAR)


def accrual_base_date(balance: BalanceSnapshot, child: ChildProfile) -> Optional[date]:
    if balance.last_interest_on is not None:
        return balance.last_interest_on
    if child.created_at is not None:
        return calendar_date(child.created_at)
    return None


class InterestAccrualEngine:
    """Credit interest on ``save`` since the last watermark.

    The ledger row, the balance credit and the watermark move together in the
    caller's transaction, which is what makes a second run on the same day a
    no-op.
    """

    __slots__ = ("_ledger", "_projector")

    def __init__(self, ledger: Ledger, projector: BalanceProjector) -> None:
        self._ledger = ledger
        self._projector = projector

    def accrue(
        self,
        session: Session,
        child: ChildProfile,
        settings: PotSettings,
        *,
        today: date,
    ) -> AccrualOutcome:
        balance = self._projector.snapshot(session, child.id)
        base_date = accrual_base_date(balance, child)
        if base_date is None:
            raise NoBaseDateError(
                f"Child {child.id} has neither an interest watermark nor a creation date.",
                details={"child_id": child.id},
            )

        days = whole_days_between(base_date, today)
        if days <= 0:
            return AccrualOutcome(status=AccrualStatus.NOTHING_DUE, days=0, base_date=base_date)

        apr = settings.interest_apr_basis_points
        interest = compute_interest(balance.save, apr, days)
        if interest <= 0:
            return AccrualOutcome(status=AccrualStatus.NO_GROWTH, days=days, base_date=base_date)

        receipt = self._ledger.append(
            session,
            [
                TransactionCandidate(
                    child_id=child.id,
                    owner_id=child.owner_id,
                    kind=TransactionKind.INTEREST,
                    pot=Pot.SAVE,
                    amount_cents=interest,
                    occurred_on=today,
                    meta={"days": days, "apr_bp": apr, "base_date": base_date.isoformat()},
                )
            ],
        )
        self._projector.apply(
            session,
            child.id,
            {Pot.SAVE: interest},
            owner_id=child.owner_id,
            watermark=today,
            expected_version=balance.version,
        )
        return AccrualOutcome(
            status=AccrualStatus.POSTED,
            days=days,
            interest_cents=interest,
            base_date=base_date,
            receipt=receipt,
        )


__all__ = [
    "InterestAccrualEngine",
    "accrual_base_date",
    "calendar_date",
    "compute_interest",
    "whole_days_between",
]

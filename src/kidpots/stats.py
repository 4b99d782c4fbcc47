"""Reporting aggregates computed from ledger rows."""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, List, Tuple

from .models import INCOME_SOURCES, Pot, TransactionKind
from .persistence import LedgerRow


@dataclass(slots=True)
class MonthStats:
    """Totals for one reporting window."""

    allocations: Dict[Pot, int] = field(default_factory=lambda: {pot: 0 for pot in Pot})
    interest_cents: int = 0
    income_cents: int = 0
    transfer_out_cents: int = 0
    expense_cents: int = 0


def month_key(day: date) -> str:
    return f"{day.year}-{day.month:02d}"


def start_of_month(day: date) -> date:
    return day.replace(day=1)


def shift_month(day: date, months: int) -> date:
    """First day of the month ``months`` away from ``day``'s month."""

    index = day.year * 12 + (day.month - 1) + months
    return date(index // 12, index % 12 + 1, 1)


def month_stats(rows: Iterable[LedgerRow], start: date, end: date) -> MonthStats:
    """Aggregate rows with ``start <= occurred_on <= end``."""

    stats = MonthStats()
    for row in rows:
        if row.occurred_on < start or row.occurred_on > end:
            continue
        if row.kind == TransactionKind.ALLOCATION.value and row.pot is not None:
            stats.allocations[Pot(row.pot)] += row.amount_cents
        elif row.kind == TransactionKind.INTEREST.value:
            stats.interest_cents += row.amount_cents
        elif row.kind == TransactionKind.DEPOSIT.value and row.source in INCOME_SOURCES:
            stats.income_cents += row.amount_cents
        elif row.kind == TransactionKind.TRANSFER_OUT.value:
            stats.transfer_out_cents += row.amount_cents
        elif row.kind == TransactionKind.EXPENSE.value:
            stats.expense_cents += row.amount_cents
    return stats


def save_trend(rows: Iterable[LedgerRow], months_back: int = 6, *, today: date) -> List[Tuple[str, int]]:
    """Save allocations per month for the last ``months_back`` months, oldest first."""

    if months_back <= 0:
        return []
    buckets: "OrderedDict[str, int]" = OrderedDict()
    for offset in range(months_back - 1, -1, -1):
        buckets[month_key(shift_month(today, -offset))] = 0
    for row in rows:
        if row.kind != TransactionKind.ALLOCATION.value or row.pot != Pot.SAVE.value:
            continue
        key = month_key(row.occurred_on)
        if key in buckets:
            buckets[key] += row.amount_cents
    return list(buckets.items())


def year_summary(rows: Iterable[LedgerRow], year: int) -> Dict[str, int]:
    """Signed totals per kind for ``year``, as shown in the year review."""

    totals: Dict[str, int] = {kind.value: 0 for kind in TransactionKind}
    for row in rows:
        if row.occurred_on.year != year:
            continue
        totals[row.kind] += row.amount_cents * row.direction
    return totals


__all__ = ["MonthStats", "month_key", "month_stats", "save_trend", "shift_month", "start_of_month", "year_summary"]

"""Append-only transaction log, the source of truth for every pot."""

from __future__ import annotations

from collections import defaultdict
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Sequence

from sqlmodel import Session, col, select

from .exceptions import AppendError
from .models import Pot, Receipt, TransactionCandidate, TransactionKind
from .persistence import LedgerRow, utcnow


def parse_occurred_on(value: date | datetime | str) -> date:
    """Return ``value`` as a calendar date, rejecting anything unparseable."""

    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip())
        except ValueError as exc:
            raise AppendError(f"Not a valid date: {value!r}", details={"occurred_on": value}) from exc
    raise AppendError(f"Not a valid date: {value!r}", details={"occurred_on": value})


def row_signed_amount(row: LedgerRow) -> int:
    return row.amount_cents * row.direction


def signed_totals(rows: Iterable[LedgerRow]) -> Dict[Pot, int]:
    """Sum ``rows`` per pot under the sign convention of their kind."""

    totals: Dict[Pot, int] = {pot: 0 for pot in Pot}
    for row in rows:
        if row.pot is None:
            continue
        totals[Pot(row.pot)] += row_signed_amount(row)
    return totals


class Ledger:
    """Write and read the ``transactions`` table.

    Appends happen inside the caller's session so the rows commit or roll back
    together with the balance update that accompanies them.  Rows are never
    updated or deleted; corrections are new ``adjustment`` rows.
    """

    def append(self, session: Session, candidates: Sequence[TransactionCandidate]) -> Receipt:
        """Validate and insert one logical event; all rows or none."""

        batch = list(candidates)
        if not batch:
            raise AppendError("A ledger batch needs at least one transaction.")
        child_ids = {candidate.child_id for candidate in batch}
        if len(child_ids) != 1:
            raise AppendError("A ledger batch must belong to a single child.")

        recorded_at = utcnow()
        rows = [self._to_row(candidate, recorded_at) for candidate in batch]

        deltas: Dict[Pot, int] = defaultdict(int)
        for candidate in batch:
            if candidate.moves_pot:
                deltas[candidate.pot] += candidate.signed_amount

        for row in rows:
            session.add(row)
        session.flush()
        return Receipt(
            child_id=batch[0].child_id,
            transaction_ids=tuple(row.id for row in rows),
            deltas=dict(deltas),
            recorded_at=recorded_at,
        )

    def history(
        self,
        session: Session,
        child_id: int,
        *,
        pot: Pot | str | None = None,
        kinds: Optional[Sequence[TransactionKind | str]] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
        limit: Optional[int] = None,
    ) -> List[LedgerRow]:
        """Return rows newest first, ordered by effective date then insertion time."""

        query = select(LedgerRow).where(LedgerRow.child_id == child_id)
        if pot is not None:
            query = query.where(LedgerRow.pot == Pot(pot).value)
        if kinds:
            query = query.where(col(LedgerRow.kind).in_([TransactionKind(kind).value for kind in kinds]))
        if start is not None:
            query = query.where(LedgerRow.occurred_on >= start)
        if end is not None:
            query = query.where(LedgerRow.occurred_on <= end)
        query = query.order_by(
            col(LedgerRow.occurred_on).desc(),
            col(LedgerRow.created_at).desc(),
            col(LedgerRow.id).desc(),
        )
        if limit is not None:
            if limit < 0:
                raise ValueError("limit must not be negative")
            query = query.limit(limit)
        return list(session.exec(query).all())

    def replay(self, session: Session, child_id: int) -> Dict[Pot, int]:
        """Recompute every pot of ``child_id`` from the full log."""

        rows = session.exec(select(LedgerRow).where(LedgerRow.child_id == child_id)).all()
        return signed_totals(rows)

    def _to_row(self, candidate: TransactionCandidate, recorded_at: datetime) -> LedgerRow:
        amount = candidate.amount_cents
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise AppendError("Amounts must be whole cents.", details={"amount": amount})
        if amount < 0:
            raise AppendError("Amounts cannot be negative.", details={"amount": amount})
        if candidate.pot is None and candidate.kind is not TransactionKind.DEPOSIT:
            raise AppendError(f"A {candidate.kind.value} row needs a pot.")
        return LedgerRow(
            child_id=candidate.child_id,
            owner_id=candidate.owner_id,
            kind=candidate.kind.value,
            pot=candidate.pot.value if candidate.pot is not None else None,
            amount_cents=amount,
            direction=candidate.direction,
            occurred_on=parse_occurred_on(candidate.occurred_on),
            created_at=recorded_at,
            source=candidate.source,
            note=candidate.note,
            meta=dict(candidate.meta),
        )


__all__ = ["Ledger", "parse_occurred_on", "row_signed_amount", "signed_totals"]

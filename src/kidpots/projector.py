"""Materialised per-child balances derived from the ledger."""

from __future__ import annotations

from datetime import date
from typing import Dict, Mapping, Optional

from sqlalchemy import update
from sqlmodel import Session

from .exceptions import ContentionError, InsufficientFundsError
from .models import BalanceSnapshot, Pot, coerce_pot
from .persistence import BalanceRow, as_utc, utcnow

POT_COLUMNS: Dict[Pot, str] = {
    Pot.SPEND: "spend_cents",
    Pot.SAVE: "save_cents",
    Pot.INVEST: "invest_cents",
    Pot.DONATE: "donate_cents",
}


def snapshot_from_row(row: BalanceRow) -> BalanceSnapshot:
    return BalanceSnapshot(
        child_id=row.child_id,
        spend=row.spend_cents,
        save=row.save_cents,
        invest=row.invest_cents,
        donate=row.donate_cents,
        last_interest_on=row.last_interest_on,
        version=row.version,
        updated_at=as_utc(row.updated_at),
    )


class BalanceProjector:
    """Apply signed deltas to the ``balances`` row of a child.

    Writes are guarded by the row's ``version`` column: the update only lands
    when the version is still the one that was read, otherwise
    :class:`ContentionError` is raised and the caller's unit of work must be
    rolled back and retried.
    """

    def snapshot(self, session: Session, child_id: int) -> BalanceSnapshot:
        row = session.get(BalanceRow, child_id, populate_existing=True)
        if row is None:
            return BalanceSnapshot(child_id=child_id)
        return snapshot_from_row(row)

    def ensure_row(self, session: Session, child_id: int, owner_id: str) -> BalanceRow:
        """Return the balance row, inserting a zeroed one when absent."""

        row = session.get(BalanceRow, child_id, populate_existing=True)
        if row is None:
            row = BalanceRow(child_id=child_id, owner_id=owner_id)
            session.add(row)
            session.flush()
        return row

    def apply(
        self,
        session: Session,
        child_id: int,
        deltas: Mapping[Pot | str, int],
        *,
        owner_id: str,
        watermark: Optional[date] = None,
        expected_version: Optional[int] = None,
    ) -> BalanceSnapshot:
        """Add ``deltas`` to the cached balance and return the new snapshot.

        ``expected_version`` lets a caller pin the version it based its
        decisions on (threshold checks, interest amounts); by default the
        version read here is used.
        """

        row = self.ensure_row(session, child_id, owner_id)
        read_version = row.version if expected_version is None else expected_version
        if row.version != read_version:
            raise ContentionError(
                f"Balance of child {child_id} changed before it could be written.",
                details={"child_id": child_id},
            )

        values: Dict[str, object] = {}
        for key, delta in deltas.items():
            pot = coerce_pot(key)
            column = POT_COLUMNS[pot]
            current = values.get(column, getattr(row, column))
            values[column] = current + delta

        short = {
            column: amount for column, amount in values.items() if amount < 0
        }
        if short:
            pots = sorted(pot.value for pot, column in POT_COLUMNS.items() if column in short)
            raise InsufficientFundsError(
                f"Not enough money in {', '.join(pots)}.",
                details={"child_id": child_id, "pots": pots},
            )

        if watermark is not None:
            values["last_interest_on"] = watermark
        values["version"] = read_version + 1
        values["updated_at"] = utcnow()

        statement = (
            update(BalanceRow)
            .where(BalanceRow.child_id == child_id)
            .where(BalanceRow.version == read_version)
            .values(**values)
        )
        result = session.connection().execute(statement)
        if result.rowcount != 1:
            raise ContentionError(
                f"Balance of child {child_id} was updated concurrently.",
                details={"child_id": child_id},
            )
        session.refresh(row)
        return snapshot_from_row(row)


__all__ = ["BalanceProjector", "POT_COLUMNS", "snapshot_from_row"]

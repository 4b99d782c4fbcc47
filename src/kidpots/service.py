"""High level service coordinating ledger, balances, interest and gates per child."""

from __future__ import annotations

import logging
import random
import time
from datetime import date, datetime, timezone
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple, TypeVar

from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError
from sqlmodel import Session, col, select

from .allocation import AllocationValidator, normalise_slices
from .config import LOG_PATH, MAX_CONTENTION_RETRIES, RETRY_BASE_DELAY_SECONDS
from .exceptions import (
    ChildNotFoundError,
    ContentionError,
    NoBaseDateError,
    PersistenceError,
    PolicyViolationError,
    ValidationError,
    WishAlreadyRedeemedError,
    WishNotFoundError,
)
from .gates import ThresholdGate
from .interest import InterestAccrualEngine
from .ledger import Ledger, parse_occurred_on
from .money import require_positive
from .models import (
    AccrualOutcome,
    BalanceSnapshot,
    ChildProfile,
    Pot,
    PotSettings,
    Posting,
    SOURCE_EXTRA_PAYMENT,
    SOURCE_WEEKLY_ALLOWANCE,
    SOURCE_WISH,
    TransactionCandidate,
    TransactionKind,
    WishStatus,
    coerce_pot,
)
from .ops import StructuredLogger
from .persistence import BalanceRow, ChildRecord, LedgerRow, SettingsRow, WishRow, as_utc, open_session
from .projector import BalanceProjector
from .stats import MonthStats, month_stats, save_trend, shift_month, start_of_month, year_summary
from . import wishes as wish_math

T = TypeVar("T")


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def _profile(record: ChildRecord) -> ChildProfile:
    return ChildProfile(
        id=record.id,
        owner_id=record.owner_id,
        name=record.name,
        age=record.age,
        created_at=as_utc(record.created_at),
        donate_enabled=record.donate_enabled,
    )


def _settings(row: Optional[SettingsRow]) -> PotSettings:
    if row is None:
        return PotSettings()
    return PotSettings(
        interest_apr_basis_points=row.interest_apr_basis_points,
        invest_threshold_cents=row.invest_threshold_cents,
        payout_weekday=row.payout_weekday,
    )


def _clean_note(note: Optional[str]) -> Optional[str]:
    if note is None:
        return None
    cleaned = " ".join(note.split())
    if len(cleaned) > 160:
        cleaned = cleaned[:157] + "…"
    return cleaned or None


class PocketMoneyBank:
    """The single entry point for every money movement of a child.

    Each write runs as one database transaction covering the ledger rows, the
    balance update and, for interest, the watermark.  A concurrent writer on
    the same child surfaces as :class:`ContentionError`; the transaction is
    rolled back and the whole unit of work retried a bounded number of times.
    """

    __slots__ = (
        "_engine",
        "_ledger",
        "_projector",
        "_validator",
        "_gate",
        "_interest",
        "_logger",
        "_clock",
        "_max_retries",
        "_retry_delay",
    )

    def __init__(
        self,
        engine: Engine,
        *,
        validator: Optional[AllocationValidator] = None,
        gate: Optional[ThresholdGate] = None,
        logger: Optional[StructuredLogger] = None,
        clock: Callable[[], date] = utc_today,
        max_retries: int = MAX_CONTENTION_RETRIES,
        retry_delay: float = RETRY_BASE_DELAY_SECONDS,
    ) -> None:
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self._engine = engine
        self._ledger = Ledger()
        self._projector = BalanceProjector()
        self._validator = validator or AllocationValidator()
        self._gate = gate or ThresholdGate()
        self._interest = InterestAccrualEngine(self._ledger, self._projector)
        self._logger = logger or StructuredLogger(path=LOG_PATH)
        self._clock = clock
        self._max_retries = max_retries
        self._retry_delay = retry_delay

    @property
    def engine(self) -> Engine:
        return self._engine

    @property
    def logger(self) -> StructuredLogger:
        return self._logger

    @property
    def ledger(self) -> Ledger:
        return self._ledger

    # ------------------------------------------------------------------
    # Unit of work
    # ------------------------------------------------------------------
    def _run(self, operation: str, work: Callable[[Session], T], *, child_id: Optional[int] = None) -> T:
        for attempt in range(1, self._max_retries + 1):
            try:
                with open_session(self._engine) as session, session.begin():
                    return work(session)
            except ContentionError:
                if attempt == self._max_retries:
                    self._logger.log(
                        "contention_exhausted",
                        level=logging.WARNING,
                        operation=operation,
                        child=child_id,
                        attempts=attempt,
                    )
                    raise
                self._logger.log("contention_retry", operation=operation, child=child_id, attempt=attempt)
                delay = self._retry_delay * (2 ** (attempt - 1))
                time.sleep(delay * (0.5 + random.random() * 0.5))
            except DBAPIError as exc:
                self._logger.log(
                    "persistence_failed",
                    level=logging.ERROR,
                    operation=operation,
                    child=child_id,
                    error=str(exc.orig or exc),
                )
                raise PersistenceError(f"{operation} failed: the database is unavailable.") from exc
        raise AssertionError("unreachable")  # pragma: no cover

    def _load_child(self, session: Session, owner_id: str, child_id: int) -> ChildRecord:
        record = session.get(ChildRecord, child_id)
        if record is None or record.owner_id != owner_id:
            raise ChildNotFoundError(f"Child {child_id} does not exist.", details={"child_id": child_id})
        return record

    def _load_settings(self, session: Session, child_id: int) -> PotSettings:
        return _settings(session.get(SettingsRow, child_id))

    def _post(
        self,
        session: Session,
        candidates: Sequence[TransactionCandidate],
        *,
        owner_id: str,
        expected_version: Optional[int] = None,
    ) -> Posting:
        receipt = self._ledger.append(session, candidates)
        balance = self._projector.apply(
            session,
            receipt.child_id,
            receipt.deltas,
            owner_id=owner_id,
            expected_version=expected_version,
        )
        return Posting(receipt=receipt, balance=balance)

    # ------------------------------------------------------------------
    # Children & settings
    # ------------------------------------------------------------------
    def create_child(
        self,
        owner_id: str,
        name: str,
        *,
        age: Optional[int] = None,
        donate_enabled: bool = False,
        created_at: Optional[datetime] = None,
    ) -> ChildProfile:
        """Create a child with a zeroed balance and default settings."""

        clean_name = " ".join((name or "").split())
        if not clean_name:
            raise ValidationError("A child needs a name.")
        if age is not None and age < 0:
            raise ValidationError("Age cannot be negative.", details={"age": age})

        def work(session: Session) -> ChildProfile:
            record = ChildRecord(owner_id=owner_id, name=clean_name, age=age, donate_enabled=donate_enabled)
            if created_at is not None:
                record.created_at = as_utc(created_at)
            session.add(record)
            session.flush()
            session.add(BalanceRow(child_id=record.id, owner_id=owner_id))
            session.add(SettingsRow(child_id=record.id, owner_id=owner_id))
            session.flush()
            return _profile(record)

        child = self._run("create_child", work)
        self._logger.log("child_created", child=child.id, owner=owner_id)
        return child

    def child(self, owner_id: str, child_id: int) -> ChildProfile:
        return self._run("child", lambda session: _profile(self._load_child(session, owner_id, child_id)))

    def list_children(self, owner_id: str) -> List[ChildProfile]:
        def work(session: Session) -> List[ChildProfile]:
            query = (
                select(ChildRecord)
                .where(ChildRecord.owner_id == owner_id)
                .order_by(col(ChildRecord.created_at), col(ChildRecord.id))
            )
            return [_profile(record) for record in session.exec(query).all()]

        return self._run("list_children", work)

    def update_child(
        self,
        owner_id: str,
        child_id: int,
        *,
        name: Optional[str] = None,
        age: Optional[int] = None,
        donate_enabled: Optional[bool] = None,
    ) -> ChildProfile:
        if age is not None and age < 0:
            raise ValidationError("Age cannot be negative.", details={"age": age})

        def work(session: Session) -> ChildProfile:
            record = self._load_child(session, owner_id, child_id)
            if name is not None:
                clean_name = " ".join(name.split())
                if not clean_name:
                    raise ValidationError("A child needs a name.")
                record.name = clean_name
            if age is not None:
                record.age = age
            if donate_enabled is not None:
                record.donate_enabled = donate_enabled
            session.add(record)
            return _profile(record)

        return self._run("update_child", work, child_id=child_id)

    def settings(self, owner_id: str, child_id: int) -> PotSettings:
        def work(session: Session) -> PotSettings:
            self._load_child(session, owner_id, child_id)
            return self._load_settings(session, child_id)

        return self._run("settings", work, child_id=child_id)

    def update_settings(
        self,
        owner_id: str,
        child_id: int,
        *,
        interest_apr_basis_points: Optional[int] = None,
        invest_threshold_cents: Optional[int] = None,
        payout_weekday: Optional[int] = None,
    ) -> PotSettings:
        if interest_apr_basis_points is not None and interest_apr_basis_points < 0:
            raise ValidationError("The interest rate cannot be negative.")
        if invest_threshold_cents is not None and invest_threshold_cents < 0:
            raise ValidationError("The invest threshold cannot be negative.")
        if payout_weekday is not None and not 0 <= payout_weekday <= 6:
            raise ValidationError("The payout weekday must be between 0 and 6.")

        def work(session: Session) -> PotSettings:
            self._load_child(session, owner_id, child_id)
            row = session.get(SettingsRow, child_id)
            if row is None:
                row = SettingsRow(child_id=child_id, owner_id=owner_id)
            if interest_apr_basis_points is not None:
                row.interest_apr_basis_points = interest_apr_basis_points
            if invest_threshold_cents is not None:
                row.invest_threshold_cents = invest_threshold_cents
            if payout_weekday is not None:
                row.payout_weekday = payout_weekday
            session.add(row)
            session.flush()
            return _settings(row)

        result = self._run("update_settings", work, child_id=child_id)
        self._logger.log("settings_updated", child=child_id, apr_bp=result.interest_apr_basis_points)
        return result

    # ------------------------------------------------------------------
    # Money movements
    # ------------------------------------------------------------------
    def apply_payout(
        self,
        owner_id: str,
        child_id: int,
        occurred_on: date | str | None,
        slices: Mapping[Pot | str, int],
        *,
        total: Optional[int] = None,
        source: str = SOURCE_WEEKLY_ALLOWANCE,
        note: Optional[str] = None,
        validator: Optional[AllocationValidator] = None,
    ) -> Posting:
        """Record a payout and its split across pots as one atomic event.

        The ledger gains the unallocated deposit of ``total`` plus one
        allocation row per non-empty pot; the balance gains the same slices.
        """

        checker = validator or self._validator
        normalised = normalise_slices(slices)
        declared = total if total is not None else sum(normalised.values())
        if declared == 0:
            raise ValidationError("A payout must be greater than zero.")
        split = checker.validate(declared, normalised)
        effective_on = parse_occurred_on(occurred_on) if occurred_on is not None else self._clock()
        clean_note = _clean_note(note)

        def work(session: Session) -> Posting:
            child = _profile(self._load_child(session, owner_id, child_id))
            current = self._projector.snapshot(session, child_id)
            if split[Pot.DONATE] > 0:
                self._gate.ensure_donate_enabled(child, current)

            candidates = [
                TransactionCandidate(
                    child_id=child_id,
                    owner_id=owner_id,
                    kind=TransactionKind.DEPOSIT,
                    pot=None,
                    amount_cents=declared,
                    occurred_on=effective_on,
                    source=source,
                    note=clean_note,
                )
            ]
            for pot in Pot:
                if split[pot] > 0:
                    candidates.append(
                        TransactionCandidate(
                            child_id=child_id,
                            owner_id=owner_id,
                            kind=TransactionKind.ALLOCATION,
                            pot=pot,
                            amount_cents=split[pot],
                            occurred_on=effective_on,
                            source=source,
                        )
                    )
            return self._post(session, candidates, owner_id=owner_id, expected_version=current.version)

        posting = self._run("apply_payout", work, child_id=child_id)
        self._logger.log(
            "payout_applied",
            child=child_id,
            source=source,
            total=declared,
            **{pot.value: split[pot] for pot in Pot},
        )
        return posting

    def apply_extra_payment(
        self,
        owner_id: str,
        child_id: int,
        occurred_on: date | str | None,
        slices: Mapping[Pot | str, int],
        *,
        total: Optional[int] = None,
        note: Optional[str] = None,
        validator: Optional[AllocationValidator] = None,
    ) -> Posting:
        return self.apply_payout(
            owner_id,
            child_id,
            occurred_on,
            slices,
            total=total,
            source=SOURCE_EXTRA_PAYMENT,
            note=note,
            validator=validator,
        )

    def record_expense(
        self,
        owner_id: str,
        child_id: int,
        pot: Pot | str,
        amount: int,
        *,
        occurred_on: date | str | None = None,
        note: Optional[str] = None,
    ) -> Posting:
        """Spend from ``pot``; rejected rather than clamped when the pot is short."""

        target = coerce_pot(pot)
        if target is Pot.INVEST:
            raise PolicyViolationError("The invest pot is only emptied by an invest transfer.")
        value = require_positive(amount)
        effective_on = parse_occurred_on(occurred_on) if occurred_on is not None else self._clock()
        clean_note = _clean_note(note)

        def work(session: Session) -> Posting:
            self._load_child(session, owner_id, child_id)
            candidate = TransactionCandidate(
                child_id=child_id,
                owner_id=owner_id,
                kind=TransactionKind.EXPENSE,
                pot=target,
                amount_cents=value,
                occurred_on=effective_on,
                note=clean_note,
                meta={"description": clean_note} if clean_note else {},
            )
            return self._post(session, [candidate], owner_id=owner_id)

        posting = self._run("record_expense", work, child_id=child_id)
        self._logger.log("expense_recorded", child=child_id, pot=target.value, amount=value)
        return posting

    def transfer_invest(
        self,
        owner_id: str,
        child_id: int,
        amount: int,
        *,
        note: Optional[str] = None,
    ) -> Posting:
        """Move money out of the invest pot once it has reached its threshold.

        The threshold is checked against the balance read inside the write
        transaction, and the write is pinned to that balance's version.
        """

        value = require_positive(amount)
        clean_note = _clean_note(note)

        def work(session: Session) -> Posting:
            self._load_child(session, owner_id, child_id)
            settings = self._load_settings(session, child_id)
            current = self._projector.snapshot(session, child_id)
            self._gate.ensure_can_transfer_invest(current, settings)
            candidate = TransactionCandidate(
                child_id=child_id,
                owner_id=owner_id,
                kind=TransactionKind.TRANSFER_OUT,
                pot=Pot.INVEST,
                amount_cents=value,
                occurred_on=self._clock(),
                note=clean_note,
                meta={"note": clean_note} if clean_note else {},
            )
            return self._post(session, [candidate], owner_id=owner_id, expected_version=current.version)

        posting = self._run("transfer_invest", work, child_id=child_id)
        self._logger.log("invest_transferred", child=child_id, amount=value)
        return posting

    def accrue_interest(self, owner_id: str, child_id: int) -> AccrualOutcome:
        """Credit interest on ``save`` up to today; a no-op once today is covered."""

        def work(session: Session) -> AccrualOutcome:
            child = _profile(self._load_child(session, owner_id, child_id))
            settings = self._load_settings(session, child_id)
            return self._interest.accrue(session, child, settings, today=self._clock())

        try:
            outcome = self._run("accrue_interest", work, child_id=child_id)
        except NoBaseDateError:
            self._logger.log("accrual_failed", level=logging.ERROR, child=child_id, reason="no_base_date")
            raise
        if outcome.posted:
            self._logger.log(
                "interest_accrued", child=child_id, amount=outcome.interest_cents, days=outcome.days
            )
        else:
            self._logger.log("interest_skipped", child=child_id, status=outcome.status.value, days=outcome.days)
        return outcome

    def adjust(
        self,
        owner_id: str,
        child_id: int,
        pot: Pot | str,
        amount: int,
        *,
        direction: int,
        note: str,
        occurred_on: date | str | None = None,
    ) -> Posting:
        """Correct a pot with a new ``adjustment`` row; the log itself is never edited."""

        target = coerce_pot(pot)
        value = require_positive(amount)
        clean_note = _clean_note(note)
        if not clean_note:
            raise ValidationError("An adjustment needs a note explaining it.")
        if isinstance(direction, bool) or direction not in (1, -1):
            raise ValidationError("direction must be +1 or -1.", details={"direction": direction})
        effective_on = parse_occurred_on(occurred_on) if occurred_on is not None else self._clock()

        def work(session: Session) -> Posting:
            self._load_child(session, owner_id, child_id)
            candidate = TransactionCandidate(
                child_id=child_id,
                owner_id=owner_id,
                kind=TransactionKind.ADJUSTMENT,
                pot=target,
                amount_cents=value,
                direction=direction,
                occurred_on=effective_on,
                note=clean_note,
            )
            return self._post(session, [candidate], owner_id=owner_id)

        posting = self._run("adjust", work, child_id=child_id)
        self._logger.log(
            "adjustment_recorded", child=child_id, pot=target.value, amount=value * direction
        )
        return posting

    # ------------------------------------------------------------------
    # Wishes
    # ------------------------------------------------------------------
    def _wish_status(self, wish: WishRow, save_cents: int) -> WishStatus:
        return WishStatus(
            wish_id=wish.id,
            title=wish.title,
            target_cents=wish.target_cents,
            save_cents=save_cents,
            affordable=wish_math.affordable(wish.target_cents, save_cents),
            progress=wish_math.progress(wish.target_cents, save_cents),
            remaining_cents=wish_math.remaining(wish.target_cents, save_cents),
            redeemed_on=wish.redeemed_on,
        )

    def _load_wish(self, session: Session, owner_id: str, child_id: int, wish_id: int) -> WishRow:
        wish = session.get(WishRow, wish_id)
        if wish is None or wish.child_id != child_id or wish.owner_id != owner_id:
            raise WishNotFoundError(f"Wish {wish_id} does not exist.", details={"wish_id": wish_id})
        return wish

    def add_wish(self, owner_id: str, child_id: int, title: str, target_cents: int) -> WishStatus:
        clean_title = " ".join((title or "").split())
        if not clean_title:
            raise ValidationError("A wish needs a title.")
        value = require_positive(target_cents, field="target_cents")

        def work(session: Session) -> WishStatus:
            self._load_child(session, owner_id, child_id)
            wish = WishRow(child_id=child_id, owner_id=owner_id, title=clean_title, target_cents=value)
            session.add(wish)
            session.flush()
            return self._wish_status(wish, self._projector.snapshot(session, child_id).save)

        return self._run("add_wish", work, child_id=child_id)

    def list_wishes(self, owner_id: str, child_id: int, *, include_redeemed: bool = True) -> List[WishStatus]:
        def work(session: Session) -> List[WishStatus]:
            self._load_child(session, owner_id, child_id)
            query = select(WishRow).where(WishRow.child_id == child_id).order_by(col(WishRow.created_at), col(WishRow.id))
            if not include_redeemed:
                query = query.where(col(WishRow.redeemed_on).is_(None))
            save_cents = self._projector.snapshot(session, child_id).save
            return [self._wish_status(wish, save_cents) for wish in session.exec(query).all()]

        return self._run("list_wishes", work, child_id=child_id)

    def wish_status(self, owner_id: str, child_id: int, wish_id: int) -> WishStatus:
        def work(session: Session) -> WishStatus:
            self._load_child(session, owner_id, child_id)
            wish = self._load_wish(session, owner_id, child_id, wish_id)
            return self._wish_status(wish, self._projector.snapshot(session, child_id).save)

        return self._run("wish_status", work, child_id=child_id)

    def redeem_wish(
        self,
        owner_id: str,
        child_id: int,
        wish_id: int,
        *,
        occurred_on: date | str | None = None,
    ) -> Posting:
        """Pay for a wish out of ``save`` and mark it redeemed in the same transaction."""

        effective_on = parse_occurred_on(occurred_on) if occurred_on is not None else self._clock()

        def work(session: Session) -> Posting:
            self._load_child(session, owner_id, child_id)
            wish = self._load_wish(session, owner_id, child_id, wish_id)
            if wish.redeemed_on is not None:
                raise WishAlreadyRedeemedError(f"Wish {wish_id} was already redeemed.", details={"wish_id": wish_id})
            candidate = TransactionCandidate(
                child_id=child_id,
                owner_id=owner_id,
                kind=TransactionKind.EXPENSE,
                pot=Pot.SAVE,
                amount_cents=wish.target_cents,
                occurred_on=effective_on,
                source=SOURCE_WISH,
                note=wish.title,
                meta={"wish_id": wish.id},
            )
            posting = self._post(session, [candidate], owner_id=owner_id)
            wish.redeemed_on = effective_on
            wish.redeemed_transaction_id = posting.receipt.transaction_ids[0]
            session.add(wish)
            return posting

        posting = self._run("redeem_wish", work, child_id=child_id)
        self._logger.log("wish_redeemed", child=child_id, wish=wish_id)
        return posting

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def balance(self, owner_id: str, child_id: int) -> BalanceSnapshot:
        def work(session: Session) -> BalanceSnapshot:
            self._load_child(session, owner_id, child_id)
            return self._projector.snapshot(session, child_id)

        return self._run("balance", work, child_id=child_id)

    def history(
        self,
        owner_id: str,
        child_id: int,
        *,
        pot: Pot | str | None = None,
        kinds: Optional[Sequence[TransactionKind | str]] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
        limit: Optional[int] = None,
    ) -> List[LedgerRow]:
        def work(session: Session) -> List[LedgerRow]:
            self._load_child(session, owner_id, child_id)
            return self._ledger.history(session, child_id, pot=pot, kinds=kinds, start=start, end=end, limit=limit)

        return self._run("history", work, child_id=child_id)

    def verify(self, owner_id: str, child_id: int) -> Dict[Pot, Tuple[int, int]]:
        """Compare the cached balance against a full ledger replay.

        Returns ``{pot: (cached, replayed)}`` for every pot that disagrees; an
        empty mapping means the balance is consistent with the log.
        """

        def work(session: Session) -> Dict[Pot, Tuple[int, int]]:
            self._load_child(session, owner_id, child_id)
            cached = self._projector.snapshot(session, child_id).as_dict()
            replayed = self._ledger.replay(session, child_id)
            return {pot: (cached[pot], replayed[pot]) for pot in Pot if cached[pot] != replayed[pot]}

        mismatches = self._run("verify", work, child_id=child_id)
        if mismatches:
            self._logger.log(
                "balance_mismatch",
                level=logging.ERROR,
                child=child_id,
                pots={pot.value: list(values) for pot, values in mismatches.items()},
            )
        return mismatches

    def can_transfer_invest(self, owner_id: str, child_id: int) -> bool:
        def work(session: Session) -> bool:
            self._load_child(session, owner_id, child_id)
            return self._gate.can_transfer_invest(
                self._projector.snapshot(session, child_id), self._load_settings(session, child_id)
            )

        return self._run("can_transfer_invest", work, child_id=child_id)

    def donate_visible(self, owner_id: str, child_id: int) -> bool:
        def work(session: Session) -> bool:
            child = _profile(self._load_child(session, owner_id, child_id))
            return self._gate.donate_enabled(child, self._projector.snapshot(session, child_id))

        return self._run("donate_visible", work, child_id=child_id)

    def month_stats(self, owner_id: str, child_id: int, month: Optional[date] = None) -> MonthStats:
        """Totals for the calendar month containing ``month`` (default: this month)."""

        first = start_of_month(month or self._clock())
        last = shift_month(first, 1).toordinal() - 1
        rows = self.history(owner_id, child_id, start=first, end=date.fromordinal(last))
        return month_stats(rows, first, date.fromordinal(last))

    def save_trend(self, owner_id: str, child_id: int, months_back: int = 6) -> List[Tuple[str, int]]:
        today = self._clock()
        start = shift_month(today, -(months_back - 1)) if months_back > 0 else today
        rows = self.history(owner_id, child_id, pot=Pot.SAVE, kinds=[TransactionKind.ALLOCATION], start=start)
        return save_trend(rows, months_back, today=today)

    def year_summary(self, owner_id: str, child_id: int, year: int) -> Dict[str, int]:
        rows = self.history(owner_id, child_id, start=date(year, 1, 1), end=date(year, 12, 31))
        return year_summary(rows, year)


__all__ = ["PocketMoneyBank", "utc_today"]

from datetime import date

import pytest
from sqlmodel import select

from kidpots.exceptions import AppendError
from kidpots.ledger import Ledger, parse_occurred_on
from kidpots.models import Pot, TransactionCandidate, TransactionKind
from kidpots.persistence import ChildRecord, LedgerRow, open_session

OWNER = "parent-1"


@pytest.fixture()
def child_id(engine) -> int:
    with open_session(engine) as session, session.begin():
        record = ChildRecord(owner_id=OWNER, name="Noah")
        session.add(record)
        session.flush()
        return record.id


def _candidate(child_id: int, kind=TransactionKind.ALLOCATION, pot=Pot.SAVE, amount=100, **extra):
    return TransactionCandidate(
        child_id=child_id,
        owner_id=OWNER,
        kind=kind,
        pot=pot,
        amount_cents=amount,
        occurred_on=extra.pop("occurred_on", date(2024, 3, 1)),
        **extra,
    )


def _row_count(engine) -> int:
    with open_session(engine) as session:
        return len(session.exec(select(LedgerRow)).all())


def test_append_writes_batch_and_reports_deltas(engine, child_id) -> None:
    ledger = Ledger()
    with open_session(engine) as session, session.begin():
        receipt = ledger.append(
            session,
            [
                _candidate(child_id, kind=TransactionKind.DEPOSIT, pot=None, amount=300, source="weekly_allowance"),
                _candidate(child_id, pot=Pot.SPEND, amount=200),
                _candidate(child_id, pot=Pot.SAVE, amount=100),
            ],
        )

    assert len(receipt.transaction_ids) == 3
    assert all(isinstance(identifier, int) for identifier in receipt.transaction_ids)
    assert receipt.child_id == child_id
    assert receipt.deltas == {Pot.SPEND: 200, Pot.SAVE: 100}
    assert _row_count(engine) == 3


def test_debits_carry_negative_direction(engine, child_id) -> None:
    ledger = Ledger()
    with open_session(engine) as session, session.begin():
        ledger.append(session, [_candidate(child_id, pot=Pot.SPEND, amount=500)])
        receipt = ledger.append(
            session, [_candidate(child_id, kind=TransactionKind.EXPENSE, pot=Pot.SPEND, amount=120)]
        )
        totals = ledger.replay(session, child_id)

    assert receipt.deltas == {Pot.SPEND: -120}
    assert totals[Pot.SPEND] == 380
    assert totals[Pot.SAVE] == 0


def test_rejected_batch_writes_nothing(engine, child_id) -> None:
    ledger = Ledger()
    with pytest.raises(AppendError):
        with open_session(engine) as session, session.begin():
            ledger.append(
                session,
                [
                    _candidate(child_id, pot=Pot.SPEND, amount=100),
                    _candidate(child_id, pot=Pot.SAVE, amount=-1),
                ],
            )
    assert _row_count(engine) == 0


@pytest.mark.parametrize(
    "batch_factory",
    [
        lambda child_id: [],
        lambda child_id: [_candidate(child_id), _candidate(child_id + 1)],
        lambda child_id: [_candidate(child_id, occurred_on="2024-02-30")],
        lambda child_id: [_candidate(child_id, occurred_on="yesterday")],
        lambda child_id: [_candidate(child_id, kind=TransactionKind.EXPENSE, pot=None)],
    ],
)
def test_append_rejects_invalid_batches(engine, child_id, batch_factory) -> None:
    ledger = Ledger()
    with open_session(engine) as session, session.begin():
        with pytest.raises(AppendError):
            ledger.append(session, batch_factory(child_id))
    assert _row_count(engine) == 0


def test_candidate_rejects_unknown_kind_and_missing_direction() -> None:
    with pytest.raises(AppendError):
        _candidate(1, kind="gift")
    with pytest.raises(AppendError):
        _candidate(1, pot="piggybank")
    with pytest.raises(AppendError):
        _candidate(1, kind=TransactionKind.ADJUSTMENT)
    with pytest.raises(AppendError):
        _candidate(1, kind=TransactionKind.EXPENSE, direction=1)

    adjustment = _candidate(1, kind=TransactionKind.ADJUSTMENT, direction=-1)
    assert adjustment.signed_amount == -100


def test_history_is_newest_first_and_filterable(engine, child_id) -> None:
    ledger = Ledger()
    with open_session(engine) as session, session.begin():
        ledger.append(session, [_candidate(child_id, pot=Pot.SPEND, amount=10, occurred_on=date(2024, 1, 5))])
        ledger.append(session, [_candidate(child_id, pot=Pot.SAVE, amount=20, occurred_on=date(2024, 3, 5))])
        ledger.append(session, [_candidate(child_id, pot=Pot.SAVE, amount=30, occurred_on=date(2024, 2, 5))])

    with open_session(engine) as session:
        rows = ledger.history(session, child_id)
        assert [row.amount_cents for row in rows] == [20, 30, 10]

        saves = ledger.history(session, child_id, pot=Pot.SAVE)
        assert [row.amount_cents for row in saves] == [20, 30]

        windowed = ledger.history(session, child_id, start=date(2024, 2, 1), end=date(2024, 2, 29))
        assert [row.amount_cents for row in windowed] == [30]

        assert len(ledger.history(session, child_id, limit=1)) == 1
        assert ledger.history(session, child_id, kinds=[TransactionKind.INTEREST]) == []


def test_parse_occurred_on() -> None:
    assert parse_occurred_on("2024-03-01") == date(2024, 3, 1)
    assert parse_occurred_on(date(2024, 3, 1)) == date(2024, 3, 1)
    with pytest.raises(AppendError):
        parse_occurred_on(20240301)  # type: ignore[arg-type]


def test_adjustment_candidates_reject_bool_direction(child_id) -> None:
    with pytest.raises(AppendError):
        _candidate(child_id, kind=TransactionKind.ADJUSTMENT, direction=True)
    with pytest.raises(AppendError):
        _candidate(child_id, kind=TransactionKind.EXPENSE, direction=True)
    assert _candidate(child_id, kind=TransactionKind.ADJUSTMENT, direction=-1).direction == -1

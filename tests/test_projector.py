from datetime import date

import pytest

from kidpots.exceptions import ContentionError, InsufficientFundsError
from kidpots.models import Pot
from kidpots.persistence import ChildRecord, open_session
from kidpots.projector import BalanceProjector

OWNER = "parent-1"


@pytest.fixture()
def child_id(engine) -> int:
    with open_session(engine) as session, session.begin():
        record = ChildRecord(owner_id=OWNER, name="Lea")
        session.add(record)
        session.flush()
        return record.id


def test_snapshot_of_unknown_child_is_zero(engine) -> None:
    with open_session(engine) as session:
        snapshot = BalanceProjector().snapshot(session, 999)
    assert snapshot.as_dict() == {pot: 0 for pot in Pot}
    assert snapshot.version == 0


def test_apply_adds_deltas_and_bumps_version(engine, child_id) -> None:
    projector = BalanceProjector()
    with open_session(engine) as session, session.begin():
        first = projector.apply(session, child_id, {Pot.SPEND: 400, Pot.SAVE: 600}, owner_id=OWNER)
    with open_session(engine) as session, session.begin():
        second = projector.apply(
            session, child_id, {"save": -100}, owner_id=OWNER, watermark=date(2024, 3, 1)
        )

    assert (first.spend, first.save, first.version) == (400, 600, 1)
    assert (second.spend, second.save, second.version) == (400, 500, 2)
    assert second.last_interest_on == date(2024, 3, 1)
    assert second.total == 900


def test_overdraft_is_rejected_not_clamped(engine, child_id) -> None:
    projector = BalanceProjector()
    with open_session(engine) as session, session.begin():
        projector.apply(session, child_id, {Pot.SPEND: 100}, owner_id=OWNER)

    with pytest.raises(InsufficientFundsError) as excinfo:
        with open_session(engine) as session, session.begin():
            projector.apply(session, child_id, {Pot.SPEND: -101, Pot.SAVE: 0}, owner_id=OWNER)
    assert excinfo.value.details["pots"] == ["spend"]

    with open_session(engine) as session:
        snapshot = projector.snapshot(session, child_id)
    assert snapshot.spend == 100
    assert snapshot.version == 1


def test_stale_version_raises_contention(engine, child_id) -> None:
    projector = BalanceProjector()
    with open_session(engine) as session:
        seen = projector.snapshot(session, child_id)

    with open_session(engine) as session, session.begin():
        projector.apply(session, child_id, {Pot.SAVE: 50}, owner_id=OWNER)

    with pytest.raises(ContentionError):
        with open_session(engine) as session, session.begin():
            projector.apply(
                session, child_id, {Pot.SAVE: 50}, owner_id=OWNER, expected_version=seen.version
            )

    with open_session(engine) as session:
        snapshot = projector.snapshot(session, child_id)
    assert snapshot.save == 50
    assert snapshot.version == 1

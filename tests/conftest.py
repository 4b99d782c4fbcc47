from datetime import date, datetime, timedelta

import pytest

from kidpots.ops import StructuredLogger
from kidpots.persistence import build_engine, create_db_and_tables
from kidpots.service import PocketMoneyBank

OWNER = "parent-1"


class FixedClock:
    """Injectable ``today`` for the bank."""

    def __init__(self, today: date) -> None:
        self.today = today

    def __call__(self) -> date:
        return self.today

    def advance(self, days: int) -> None:
        self.today += timedelta(days=days)


@pytest.fixture()
def engine():
    engine = build_engine("sqlite://")
    create_db_and_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def clock() -> FixedClock:
    return FixedClock(date(2024, 3, 1))


@pytest.fixture()
def bank(engine, clock) -> PocketMoneyBank:
    return PocketMoneyBank(engine, clock=clock, logger=StructuredLogger(), retry_delay=0)


@pytest.fixture()
def child(bank):
    return bank.create_child(OWNER, "Mia", age=8, created_at=datetime(2024, 1, 1, 9, 30))

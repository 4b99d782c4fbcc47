"""Persistence and SQLModel definitions for KidPots."""
from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import JSON, CheckConstraint, Column, DateTime, event
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import Field, Session, SQLModel, create_engine

from .config import (
    DATABASE_URL,
    DEFAULT_APR_BASIS_POINTS,
    DEFAULT_INVEST_THRESHOLD_CENTS,
    DEFAULT_PAYOUT_WEEKDAY,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Return ``value`` as an aware UTC datetime.

    Naive values are taken to be UTC already; SQLite hands timestamps back
    without an offset.
    """

    if value is None:
        return None
    if value.utcoffset() is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _timestamp_column(*, nullable: bool = False) -> Column:
    return Column(DateTime(timezone=True), nullable=nullable)


# ---------------------------------------------------------------------------
# Database models
# ---------------------------------------------------------------------------
class ChildRecord(SQLModel, table=True):
    __tablename__ = "children"

    id: Optional[int] = Field(default=None, primary_key=True)
    owner_id: str = Field(index=True)
    name: str
    age: Optional[int] = None
    donate_enabled: bool = False
    created_at: Optional[datetime] = Field(default_factory=utcnow, sa_column=_timestamp_column(nullable=True))


class LedgerRow(SQLModel, table=True):
    __tablename__ = "transactions"
    __table_args__ = (
        CheckConstraint("amount_cents >= 0", name="ck_transactions_amount_non_negative"),
        CheckConstraint("direction IN (-1, 1)", name="ck_transactions_direction"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    child_id: int = Field(foreign_key="children.id", index=True)
    owner_id: str = Field(index=True)
    kind: str  # deposit|allocation|expense|interest|transfer_out|adjustment
    pot: Optional[str] = None  # spend|save|invest|donate, None for unallocated deposits
    amount_cents: int
    direction: int = 1
    occurred_on: date = Field(index=True)
    created_at: datetime = Field(default_factory=utcnow, sa_column=_timestamp_column())
    source: Optional[str] = None
    note: Optional[str] = None
    meta: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))


class BalanceRow(SQLModel, table=True):
    __tablename__ = "balances"
    __table_args__ = (
        CheckConstraint(
            "spend_cents >= 0 AND save_cents >= 0 AND invest_cents >= 0 AND donate_cents >= 0",
            name="ck_balances_non_negative",
        ),
    )

    child_id: int = Field(foreign_key="children.id", primary_key=True)
    owner_id: str = Field(index=True)
    spend_cents: int = 0
    save_cents: int = 0
    invest_cents: int = 0
    donate_cents: int = 0
    last_interest_on: Optional[date] = None
    version: int = 0
    updated_at: datetime = Field(default_factory=utcnow, sa_column=_timestamp_column())


class SettingsRow(SQLModel, table=True):
    __tablename__ = "settings"

    child_id: int = Field(foreign_key="children.id", primary_key=True)
    owner_id: str = Field(index=True)
    interest_apr_basis_points: int = DEFAULT_APR_BASIS_POINTS
    invest_threshold_cents: int = DEFAULT_INVEST_THRESHOLD_CENTS
    payout_weekday: int = DEFAULT_PAYOUT_WEEKDAY


class WishRow(SQLModel, table=True):
    __tablename__ = "wishes"

    id: Optional[int] = Field(default=None, primary_key=True)
    child_id: int = Field(foreign_key="children.id", index=True)
    owner_id: str = Field(index=True)
    title: str
    target_cents: int
    created_at: datetime = Field(default_factory=utcnow, sa_column=_timestamp_column())
    redeemed_on: Optional[date] = None
    redeemed_transaction_id: Optional[int] = None


# ---------------------------------------------------------------------------
# Engine & schema
# ---------------------------------------------------------------------------
def _begin_immediate(engine: Engine) -> None:
    """Take the SQLite write lock when a transaction starts.

    pysqlite defers BEGIN until the first write, which lets two connections
    hold read locks and then deadlock on upgrade.
    """

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(connection):
        connection.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(url: str = DATABASE_URL, *, echo: bool = False) -> Engine:
    """Create an engine; SQLite gets the thread and pooling options it needs."""

    if not url.startswith("sqlite"):
        return create_engine(url, echo=echo, pool_pre_ping=True)
    connect_args: Dict[str, Any] = {"check_same_thread": False, "timeout": 30}
    if url in ("sqlite://", "sqlite:///:memory:"):
        return create_engine(url, echo=echo, connect_args=connect_args, poolclass=StaticPool)
    engine = create_engine(url, echo=echo, connect_args=connect_args)
    _begin_immediate(engine)
    return engine


def create_db_and_tables(engine: Engine) -> None:
    SQLModel.metadata.create_all(engine)


def open_session(engine: Engine) -> Session:
    return Session(engine, expire_on_commit=False)


__all__ = [
    "BalanceRow",
    "ChildRecord",
    "LedgerRow",
    "SettingsRow",
    "WishRow",
    "as_utc",
    "build_engine",
    "create_db_and_tables",
    "open_session",
    "utcnow",
]

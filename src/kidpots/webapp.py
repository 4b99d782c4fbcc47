"""FastAPI JSON frontend for KidPots.

Every route is a thin wrapper around :class:`~kidpots.service.PocketMoneyBank`;
no money logic lives here.  The owner of a request is taken from the
``X-Owner-Id`` header, which the deployment's login layer is expected to set.

Serve with ``uvicorn kidpots.webapp:app``.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import date
from typing import Any, AsyncIterator, Dict, List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .allocation import AllocationValidator
from .config import CURRENCY_SYMBOL, DATABASE_URL, OWNER_HEADER
from .exceptions import (
    AccrualError,
    ChildNotFoundError,
    ContentionError,
    InsufficientFundsError,
    KidPotsError,
    PersistenceError,
    ThresholdError,
    ValidationError,
    WishAlreadyRedeemedError,
    WishNotFoundError,
)
from .i18n import Translator
from .models import (
    AccrualOutcome,
    BalanceSnapshot,
    ChildProfile,
    Pot,
    PotSettings,
    Posting,
    SOURCE_EXTRA_PAYMENT,
    SOURCE_WEEKLY_ALLOWANCE,
    WishStatus,
)
from .money import format_currency, split_by_percent, to_cents
from .persistence import LedgerRow, as_utc, build_engine, create_db_and_tables
from .service import PocketMoneyBank
from .stats import MonthStats

# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------
class ChildIn(BaseModel):
    name: str
    age: Optional[int] = None
    donate_enabled: bool = False


class ChildPatch(BaseModel):
    name: Optional[str] = None
    age: Optional[int] = None
    donate_enabled: Optional[bool] = None


class SettingsPatch(BaseModel):
    interest_apr_basis_points: Optional[int] = None
    invest_threshold_cents: Optional[int] = None
    payout_weekday: Optional[int] = None


class PayoutIn(BaseModel):
    occurred_on: Optional[date] = None
    slices: Optional[Dict[Pot, int]] = None
    percentages: Optional[Dict[Pot, int]] = None
    total: Optional[int] = None
    source: str = SOURCE_WEEKLY_ALLOWANCE
    note: Optional[str] = None
    donation_only: bool = False


class AmountIn(BaseModel):
    amount_cents: Optional[int] = None
    amount: Optional[str] = Field(default=None, description="Major units, e.g. '12.50'")
    note: Optional[str] = None

    def cents(self) -> int:
        if self.amount_cents is not None:
            return self.amount_cents
        if self.amount is None:
            raise ValidationError("An amount is required.")
        try:
            return to_cents(self.amount)
        except (TypeError, ValueError) as exc:
            raise ValidationError(str(exc), details={"amount": self.amount}) from exc


class ExpenseIn(AmountIn):
    pot: Pot
    occurred_on: Optional[date] = None


class AdjustmentIn(AmountIn):
    pot: Pot
    direction: int
    occurred_on: Optional[date] = None


class WishIn(AmountIn):
    title: str


class RedeemIn(BaseModel):
    occurred_on: Optional[date] = None


# ---------------------------------------------------------------------------
# Serialisation
# ---------------------------------------------------------------------------
def _money(cents: int) -> Dict[str, Any]:
    return {"cents": cents, "display": format_currency(cents, CURRENCY_SYMBOL)}


def child_payload(child: ChildProfile) -> Dict[str, Any]:
    return {
        "id": child.id,
        "name": child.name,
        "age": child.age,
        "donate_enabled": child.donate_enabled,
        "created_at": child.created_at.isoformat() if child.created_at else None,
    }


def balance_payload(balance: BalanceSnapshot) -> Dict[str, Any]:
    payload: Dict[str, Any] = {pot.value: _money(balance.get(pot)) for pot in Pot}
    payload["total"] = _money(balance.total)
    payload["last_interest_on"] = balance.last_interest_on.isoformat() if balance.last_interest_on else None
    payload["version"] = balance.version
    return payload


def settings_payload(settings: PotSettings) -> Dict[str, Any]:
    return {
        "interest_apr_basis_points": settings.interest_apr_basis_points,
        "invest_threshold_cents": settings.invest_threshold_cents,
        "payout_weekday": settings.payout_weekday,
    }


def posting_payload(posting: Posting) -> Dict[str, Any]:
    return {
        "transaction_ids": list(posting.receipt.transaction_ids),
        "deltas": {pot.value: amount for pot, amount in posting.receipt.deltas.items()},
        "balance": balance_payload(posting.balance),
    }


def row_payload(row: LedgerRow) -> Dict[str, Any]:
    return {
        "id": row.id,
        "kind": row.kind,
        "pot": row.pot,
        "amount": _money(row.amount_cents * row.direction),
        "occurred_on": row.occurred_on.isoformat(),
        "created_at": as_utc(row.created_at).isoformat(),
        "source": row.source,
        "note": row.note,
        "meta": row.meta or {},
    }


def wish_payload(status: WishStatus) -> Dict[str, Any]:
    return {
        "id": status.wish_id,
        "title": status.title,
        "target": _money(status.target_cents),
        "saved": _money(status.save_cents),
        "affordable": status.affordable,
        "progress": round(status.progress, 4),
        "remaining": _money(status.remaining_cents),
        "redeemed_on": status.redeemed_on.isoformat() if status.redeemed_on else None,
    }


def accrual_payload(outcome: AccrualOutcome, translator: Translator, locale: Optional[str]) -> Dict[str, Any]:
    return {
        "status": outcome.status.value,
        "message": translator.translate(f"interest.{outcome.status.value}", locale=locale),
        "days": outcome.days,
        "interest": _money(outcome.interest_cents),
        "base_date": outcome.base_date.isoformat() if outcome.base_date else None,
    }


def month_payload(stats: MonthStats) -> Dict[str, Any]:
    return {
        "allocations": {pot.value: stats.allocations[pot] for pot in Pot},
        "interest_cents": stats.interest_cents,
        "income_cents": stats.income_cents,
        "transfer_out_cents": stats.transfer_out_cents,
        "expense_cents": stats.expense_cents,
    }


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------
def status_for(error: KidPotsError) -> int:
    if isinstance(error, (ChildNotFoundError, WishNotFoundError)):
        return 404
    if isinstance(error, (ContentionError, PersistenceError)):
        return 503
    if isinstance(error, (InsufficientFundsError, ThresholdError, WishAlreadyRedeemedError, AccrualError)):
        return 409
    if isinstance(error, ValidationError):
        return 422
    return 400


def request_locale(request: Request, translator: Translator) -> Optional[str]:
    header = request.headers.get("accept-language", "")
    for part in header.split(","):
        tag = part.split(";")[0].strip().lower()
        language = tag.split("-")[0]
        if language in translator.available_locales():
            return language
    return None


# ---------------------------------------------------------------------------
# FastAPI application setup
# ---------------------------------------------------------------------------
def open_bank(url: str = DATABASE_URL) -> PocketMoneyBank:
    engine = build_engine(url)
    create_db_and_tables(engine)
    return PocketMoneyBank(engine)


@asynccontextmanager
async def lifespan(application: FastAPI) -> AsyncIterator[None]:
    """Open the database-backed bank once at startup unless one was injected."""

    opened = None
    if application.state.bank is None:
        opened = application.state.bank = open_bank()
    try:
        yield
    finally:
        if opened is not None:
            opened.engine.dispose()
            application.state.bank = None


def get_bank(request: Request) -> PocketMoneyBank:
    bank = request.app.state.bank
    if bank is None:
        raise PersistenceError("The bank is not open; the application has not started.")
    return bank


def get_translator(request: Request) -> Translator:
    return request.app.state.translator


def require_owner(x_owner_id: Optional[str] = Header(default=None, alias=OWNER_HEADER)) -> str:
    owner = (x_owner_id or "").strip()
    if not owner:
        raise HTTPException(status_code=401, detail=f"Missing {OWNER_HEADER} header.")
    return owner


def create_app(bank: Optional[PocketMoneyBank] = None, *, translator: Optional[Translator] = None) -> FastAPI:
    """Build the API around ``bank``; without one a bank on ``DATABASE_URL`` is opened at startup."""

    application = FastAPI(title="KidPots", lifespan=lifespan)
    application.state.bank = bank
    application.state.translator = translator or Translator()

    @application.exception_handler(KidPotsError)
    def handle_kidpots_error(request: Request, exc: KidPotsError) -> JSONResponse:
        status = status_for(exc)
        active = request.app.state.translator
        body: Dict[str, Any] = {
            "error": exc.code,
            "message": active.error_message(exc.code, locale=request_locale(request, active)),
        }
        if status < 500:
            body["details"] = exc.details
        return JSONResponse(body, status_code=status)

    _register_routes(application)
    return application


def _register_routes(application: FastAPI) -> None:
    @application.get("/health")
    def health() -> Dict[str, str]:
        return {"status": "ok"}

    # -- children --------------------------------------------------------
    @application.post("/children", status_code=201)
    def create_child(
        body: ChildIn,
        owner: str = Depends(require_owner),
        bank: PocketMoneyBank = Depends(get_bank),
    ) -> Dict[str, Any]:
        child = bank.create_child(owner, body.name, age=body.age, donate_enabled=body.donate_enabled)
        return child_payload(child)

    @application.get("/children")
    def list_children(
        owner: str = Depends(require_owner),
        bank: PocketMoneyBank = Depends(get_bank),
    ) -> List[Dict[str, Any]]:
        return [child_payload(child) for child in bank.list_children(owner)]

    @application.get("/children/{child_id}")
    def get_child(
        child_id: int,
        owner: str = Depends(require_owner),
        bank: PocketMoneyBank = Depends(get_bank),
    ) -> Dict[str, Any]:
        payload = child_payload(bank.child(owner, child_id))
        payload["balance"] = balance_payload(bank.balance(owner, child_id))
        payload["settings"] = settings_payload(bank.settings(owner, child_id))
        payload["donate_visible"] = bank.donate_visible(owner, child_id)
        payload["can_transfer_invest"] = bank.can_transfer_invest(owner, child_id)
        return payload

    @application.patch("/children/{child_id}")
    def patch_child(
        child_id: int,
        body: ChildPatch,
        owner: str = Depends(require_owner),
        bank: PocketMoneyBank = Depends(get_bank),
    ) -> Dict[str, Any]:
        child = bank.update_child(
            owner, child_id, name=body.name, age=body.age, donate_enabled=body.donate_enabled
        )
        return child_payload(child)

    @application.patch("/children/{child_id}/settings")
    def patch_settings(
        child_id: int,
        body: SettingsPatch,
        owner: str = Depends(require_owner),
        bank: PocketMoneyBank = Depends(get_bank),
    ) -> Dict[str, Any]:
        settings = bank.update_settings(
            owner,
            child_id,
            interest_apr_basis_points=body.interest_apr_basis_points,
            invest_threshold_cents=body.invest_threshold_cents,
            payout_weekday=body.payout_weekday,
        )
        return settings_payload(settings)

    # -- money movements -------------------------------------------------
    @application.post("/children/{child_id}/payouts", status_code=201)
    def post_payout(
        child_id: int,
        body: PayoutIn,
        owner: str = Depends(require_owner),
        bank: PocketMoneyBank = Depends(get_bank),
    ) -> Dict[str, Any]:
        if body.source not in (SOURCE_WEEKLY_ALLOWANCE, SOURCE_EXTRA_PAYMENT):
            raise ValidationError("Unknown payout source.", details={"source": body.source})
        if body.slices is not None:
            slices: Dict[Pot, int] = dict(body.slices)
        elif body.percentages is not None and body.total is not None:
            try:
                slices = split_by_percent(body.total, body.percentages)
            except ValueError as exc:
                raise ValidationError(str(exc), details={"percentages": body.percentages}) from exc
        else:
            raise ValidationError("Provide slices, or a total with percentages.")
        validator = AllocationValidator(policies=()) if body.donation_only else None
        posting = bank.apply_payout(
            owner,
            child_id,
            body.occurred_on,
            slices,
            total=body.total,
            source=body.source,
            note=body.note,
            validator=validator,
        )
        return posting_payload(posting)

    @application.post("/children/{child_id}/expenses", status_code=201)
    def post_expense(
        child_id: int,
        body: ExpenseIn,
        owner: str = Depends(require_owner),
        bank: PocketMoneyBank = Depends(get_bank),
    ) -> Dict[str, Any]:
        posting = bank.record_expense(
            owner, child_id, body.pot, body.cents(), occurred_on=body.occurred_on, note=body.note
        )
        return posting_payload(posting)

    @application.post("/children/{child_id}/invest-transfers", status_code=201)
    def post_invest_transfer(
        child_id: int,
        body: AmountIn,
        owner: str = Depends(require_owner),
        bank: PocketMoneyBank = Depends(get_bank),
    ) -> Dict[str, Any]:
        return posting_payload(bank.transfer_invest(owner, child_id, body.cents(), note=body.note))

    @application.post("/children/{child_id}/adjustments", status_code=201)
    def post_adjustment(
        child_id: int,
        body: AdjustmentIn,
        owner: str = Depends(require_owner),
        bank: PocketMoneyBank = Depends(get_bank),
    ) -> Dict[str, Any]:
        posting = bank.adjust(
            owner,
            child_id,
            body.pot,
            body.cents(),
            direction=body.direction,
            note=body.note or "",
            occurred_on=body.occurred_on,
        )
        return posting_payload(posting)

    @application.post("/children/{child_id}/interest")
    def post_interest(
        child_id: int,
        request: Request,
        owner: str = Depends(require_owner),
        bank: PocketMoneyBank = Depends(get_bank),
        translator: Translator = Depends(get_translator),
    ) -> Dict[str, Any]:
        outcome = bank.accrue_interest(owner, child_id)
        return accrual_payload(outcome, translator, request_locale(request, translator))

    # -- reads -----------------------------------------------------------
    @application.get("/children/{child_id}/balance")
    def get_balance(
        child_id: int,
        owner: str = Depends(require_owner),
        bank: PocketMoneyBank = Depends(get_bank),
    ) -> Dict[str, Any]:
        return balance_payload(bank.balance(owner, child_id))

    @application.get("/children/{child_id}/transactions")
    def get_transactions(
        child_id: int,
        pot: Optional[Pot] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
        limit: int = Query(default=100, ge=1, le=1000),
        owner: str = Depends(require_owner),
        bank: PocketMoneyBank = Depends(get_bank),
    ) -> List[Dict[str, Any]]:
        rows = bank.history(owner, child_id, pot=pot, start=start, end=end, limit=limit)
        return [row_payload(row) for row in rows]

    @application.get("/children/{child_id}/verify")
    def get_verify(
        child_id: int,
        owner: str = Depends(require_owner),
        bank: PocketMoneyBank = Depends(get_bank),
    ) -> Dict[str, Any]:
        mismatches = bank.verify(owner, child_id)
        return {
            "consistent": not mismatches,
            "mismatches": {
                pot.value: {"cached": cached, "replayed": replayed}
                for pot, (cached, replayed) in mismatches.items()
            },
        }

    @application.get("/children/{child_id}/stats/month")
    def get_month_stats(
        child_id: int,
        month: Optional[date] = None,
        owner: str = Depends(require_owner),
        bank: PocketMoneyBank = Depends(get_bank),
    ) -> Dict[str, Any]:
        return month_payload(bank.month_stats(owner, child_id, month))

    @application.get("/children/{child_id}/stats/save-trend")
    def get_save_trend(
        child_id: int,
        months: int = Query(default=6, ge=1, le=24),
        owner: str = Depends(require_owner),
        bank: PocketMoneyBank = Depends(get_bank),
    ) -> List[Dict[str, Any]]:
        return [{"month": key, "cents": cents} for key, cents in bank.save_trend(owner, child_id, months)]

    @application.get("/children/{child_id}/stats/year/{year}")
    def get_year_summary(
        child_id: int,
        year: int,
        owner: str = Depends(require_owner),
        bank: PocketMoneyBank = Depends(get_bank),
    ) -> Dict[str, int]:
        return bank.year_summary(owner, child_id, year)

    # -- wishes ----------------------------------------------------------
    @application.post("/children/{child_id}/wishes", status_code=201)
    def post_wish(
        child_id: int,
        body: WishIn,
        owner: str = Depends(require_owner),
        bank: PocketMoneyBank = Depends(get_bank),
    ) -> Dict[str, Any]:
        return wish_payload(bank.add_wish(owner, child_id, body.title, body.cents()))

    @application.get("/children/{child_id}/wishes")
    def get_wishes(
        child_id: int,
        include_redeemed: bool = True,
        owner: str = Depends(require_owner),
        bank: PocketMoneyBank = Depends(get_bank),
    ) -> List[Dict[str, Any]]:
        wishes = bank.list_wishes(owner, child_id, include_redeemed=include_redeemed)
        return [wish_payload(status) for status in wishes]

    @application.get("/children/{child_id}/wishes/{wish_id}")
    def get_wish(
        child_id: int,
        wish_id: int,
        owner: str = Depends(require_owner),
        bank: PocketMoneyBank = Depends(get_bank),
    ) -> Dict[str, Any]:
        return wish_payload(bank.wish_status(owner, child_id, wish_id))

    @application.post("/children/{child_id}/wishes/{wish_id}/redeem", status_code=201)
    def post_redeem_wish(
        child_id: int,
        wish_id: int,
        body: Optional[RedeemIn] = None,
        owner: str = Depends(require_owner),
        bank: PocketMoneyBank = Depends(get_bank),
    ) -> Dict[str, Any]:
        occurred_on = body.occurred_on if body is not None else None
        return posting_payload(bank.redeem_wish(owner, child_id, wish_id, occurred_on=occurred_on))


app = create_app()


__all__ = [
    "app",
    "balance_payload",
    "create_app",
    "get_bank",
    "lifespan",
    "open_bank",
    "request_locale",
    "require_owner",
    "status_for",
]

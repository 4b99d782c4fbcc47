import json
import logging
from datetime import date

from kidpots.i18n import Translator
from kidpots.models import Pot
from kidpots.ops import StructuredLogger
from kidpots.persistence import LedgerRow
from kidpots.stats import month_stats, save_trend, shift_month, year_summary


def _row(kind, amount, day, pot=None, direction=1, source=None) -> LedgerRow:
    return LedgerRow(
        child_id=1,
        owner_id="p",
        kind=kind,
        pot=pot,
        amount_cents=amount,
        direction=direction,
        occurred_on=day,
        source=source,
    )


ROWS = [
    _row("deposit", 1000, date(2024, 5, 3), source="weekly_allowance"),
    _row("allocation", 600, date(2024, 5, 3), pot="spend"),
    _row("allocation", 400, date(2024, 5, 3), pot="save"),
    _row("deposit", 250, date(2024, 5, 20), source="extra_payment"),
    _row("allocation", 250, date(2024, 5, 20), pot="save"),
    _row("interest", 7, date(2024, 5, 31), pot="save"),
    _row("expense", 90, date(2024, 5, 21), pot="spend", direction=-1),
    _row("allocation", 300, date(2024, 4, 2), pot="save"),
    _row("transfer_out", 5000, date(2024, 6, 1), pot="invest", direction=-1),
]


def test_month_stats_window() -> None:
    stats = month_stats(ROWS, date(2024, 5, 1), date(2024, 5, 31))
    assert stats.allocations[Pot.SPEND] == 600
    assert stats.allocations[Pot.SAVE] == 650
    assert stats.income_cents == 1250
    assert stats.interest_cents == 7
    assert stats.expense_cents == 90
    assert stats.transfer_out_cents == 0


def test_save_trend_fills_empty_months() -> None:
    trend = save_trend(ROWS, 4, today=date(2024, 6, 15))
    assert trend == [("2024-03", 0), ("2024-04", 300), ("2024-05", 650), ("2024-06", 0)]
    assert save_trend(ROWS, 0, today=date(2024, 6, 15)) == []


def test_shift_month_crosses_years() -> None:
    assert shift_month(date(2024, 1, 31), -1) == date(2023, 12, 1)
    assert shift_month(date(2024, 11, 5), 2) == date(2025, 1, 1)


def test_year_summary_is_signed() -> None:
    summary = year_summary(ROWS, 2024)
    assert summary["expense"] == -90
    assert summary["transfer_out"] == -5000
    assert summary["interest"] == 7
    assert year_summary(ROWS, 2023)["deposit"] == 0


def test_structured_logger_writes_json_lines(tmp_path, caplog) -> None:
    path = tmp_path / "logs" / "events.jsonl"
    logger = StructuredLogger(path=path)

    with caplog.at_level(logging.INFO, logger="kidpots"):
        logger.log("payout_applied", child=3, total=1000, pot=Pot.SAVE, on=date(2024, 5, 3))
        logger.log("accrual_failed", level=logging.ERROR, child=3)

    lines = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
    assert [line["event"] for line in lines] == ["payout_applied", "accrual_failed"]
    assert lines[0]["pot"] == "save"
    assert lines[0]["on"] == "2024-05-03"
    assert logger.events("accrual_failed")[0]["child"] == 3
    assert len(logger.tail(1)) == 1
    assert any(record.levelno == logging.ERROR for record in caplog.records)


def test_translator_falls_back_to_english() -> None:
    translator = Translator("de")
    assert translator.error_message("insufficient_funds") == "Nicht genug Geld in diesem Topf."
    assert translator.error_message("insufficient_funds", locale="fr") == "Not enough money in this pot."
    translator.set_translation("fr", "greeting", "Bonjour {name}")
    assert translator.translate("greeting", locale="fr", name="Mia") == "Bonjour Mia"
    assert translator.translate("missing.key") == "missing.key"
    assert "fr" in translator.available_locales()

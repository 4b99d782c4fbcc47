from decimal import Decimal

import pytest

from kidpots.exceptions import NegativeAmountError, ValidationError
from kidpots.models import Pot
from kidpots.money import (
    format_currency,
    require_non_negative,
    require_positive,
    split_by_percent,
    to_cents,
)


def test_to_cents_parses_major_units_without_floats() -> None:
    assert to_cents("12.50") == 1250
    assert to_cents("12,50") == 1250
    assert to_cents(" 3 ") == 300
    assert to_cents(Decimal("1.005")) == 101
    assert to_cents(Decimal("0.004")) == 0
    assert to_cents(250) == 250


def test_to_cents_rejects_garbage() -> None:
    with pytest.raises(ValueError):
        to_cents("twelve")
    with pytest.raises(ValueError):
        to_cents("NaN")
    with pytest.raises(TypeError):
        to_cents(True)
    with pytest.raises(TypeError):
        to_cents(1.5)  # type: ignore[arg-type]


def test_amount_guards_raise_domain_errors() -> None:
    assert require_positive(1) == 1
    assert require_non_negative(0) == 0
    with pytest.raises(ValidationError):
        require_positive(0)
    with pytest.raises(NegativeAmountError):
        require_positive(-3)
    with pytest.raises(ValidationError):
        require_non_negative(True)
    with pytest.raises(ValidationError):
        require_positive("5")  # type: ignore[arg-type]


def test_format_currency() -> None:
    assert format_currency(1234) == "CHF 12.34"
    assert format_currency(123456, "EUR") == "EUR 1,234.56"
    assert format_currency(-5) == "-CHF 0.05"


def test_split_by_percent_keeps_every_cent() -> None:
    shares = split_by_percent(1001, {Pot.SPEND: 40, Pot.SAVE: 40, Pot.INVEST: 20})
    assert shares == {Pot.SPEND: 401, Pot.SAVE: 400, Pot.INVEST: 200}
    assert sum(shares.values()) == 1001

    shares = split_by_percent(999, {Pot.SPEND: 30, Pot.SAVE: 50, Pot.INVEST: 20})
    assert shares == {Pot.SPEND: 299, Pot.SAVE: 501, Pot.INVEST: 199}
    assert sum(shares.values()) == 999


def test_split_by_percent_requires_full_weights() -> None:
    with pytest.raises(ValueError):
        split_by_percent(1000, {Pot.SPEND: 50, Pot.SAVE: 40})
    with pytest.raises(ValueError):
        split_by_percent(1000, {})

from __future__ import annotations

import sys
from decimal import Decimal
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[3] / "src"))

from rpos.domain.common.errors import ValidationError
from rpos.domain.common.money import ZERO, Money, ensure_positive_quantity, round_amount


def test_money_rounds_half_up_to_two_places() -> None:
    assert Money.of("2.345").amount == Decimal("2.35")
    assert Money.of("2.344").amount == Decimal("2.34")
    assert Money.of(0.125).amount == Decimal("0.13")
    assert round_amount("-1.005") == Decimal("-1.01")


def test_money_rejects_negative_and_non_numeric_values() -> None:
    with pytest.raises(ValidationError):
        Money.of("-0.01")
    with pytest.raises(ValidationError):
        Money.of("abc")
    with pytest.raises(ValidationError):
        Money.of("NaN")
    with pytest.raises(ValidationError):
        Money.of(True)


def test_money_arithmetic_and_cents() -> None:
    price = Money.of("50.00")
    assert price.times(3) == Money.of(150)
    assert price + Money.of("0.99") == Money.of("50.99")
    assert Money.total([Money.of("1.10"), Money.of("2.20")]) == Money.of("3.30")
    assert Money.total([]) == ZERO
    assert Money.of("12.34").cents == 1234
    assert Money.from_cents(1234) == Money.of("12.34")
    assert str(Money.of(7)) == "7.00"


def test_quantity_must_be_positive_integer() -> None:
    assert ensure_positive_quantity(3) == 3
    for invalid in (0, -1, 1.5, True):
        with pytest.raises(ValidationError):
            ensure_positive_quantity(invalid)  # type: ignore[arg-type]

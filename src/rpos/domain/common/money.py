from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Iterable

from rpos.domain.common.errors import ValidationError

CENT = Decimal("0.01")


def to_decimal(value: Decimal | int | str | float) -> Decimal:
    if isinstance(value, bool):
        raise ValidationError(f"not a monetary value: {value!r}")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, float):
        result = Decimal(str(value))
    else:
        try:
            result = Decimal(value)
        except (InvalidOperation, TypeError) as exc:
            raise ValidationError(f"not a monetary value: {value!r}") from exc
    if not result.is_finite():
        raise ValidationError(f"not a monetary value: {value!r}")
    return result


def round_amount(value: Decimal | int | str | float) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def ensure_positive_quantity(quantity: int) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationError(f"quantity must be an integer, got {quantity!r}", quantity=quantity)
    if quantity <= 0:
        raise ValidationError("quantity must be > 0", quantity=quantity)
    return quantity


@dataclass(frozen=True, order=True)
class Money:
    amount: Decimal

    def __post_init__(self) -> None:
        amount = round_amount(self.amount)
        if amount < 0:
            raise ValidationError("amount must be >= 0", amount=str(amount))
        object.__setattr__(self, "amount", amount)

    @classmethod
    def of(cls, value: Decimal | int | str | float) -> Money:
        return cls(to_decimal(value))

    @classmethod
    def from_cents(cls, cents: int) -> Money:
        return cls(Decimal(cents) / 100)

    @classmethod
    def total(cls, values: Iterable[Money]) -> Money:
        return cls(sum((value.amount for value in values), Decimal("0")))

    @property
    def cents(self) -> int:
        return int(self.amount * 100)

    def times(self, quantity: int) -> Money:
        return Money(self.amount * quantity)

    def __add__(self, other: Money) -> Money:
        return Money(self.amount + other.amount)

    def __str__(self) -> str:
        return f"{self.amount:.2f}"


ZERO = Money(Decimal("0"))

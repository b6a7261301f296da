from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

from rpos.domain.common.money import Money

_BASIS_POINTS = Decimal("10000")


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def optional_utc(value: datetime | None) -> datetime | None:
    return as_utc(value) if value is not None else None


def money_from_cents(cents: int | None) -> Money:
    return Money.from_cents(int(cents or 0))


def vat_rate_from_bp(basis_points: int) -> Decimal:
    return Decimal(basis_points) / _BASIS_POINTS


def vat_rate_to_bp(vat_rate: Decimal) -> int:
    return int((vat_rate * _BASIS_POINTS).to_integral_value())

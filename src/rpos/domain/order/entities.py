from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Iterable

from rpos.domain.common.errors import ConflictError, ValidationError
from rpos.domain.common.ids import OrderId, OrderItemId, PaymentId, ProductId, TableNo, UserId
from rpos.domain.common.money import ZERO, Money, ensure_positive_quantity

DEFAULT_VAT_RATE = Decimal("0.20")


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    READY = "READY"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.COMPLETED, OrderStatus.CANCELLED)


class PaymentMethod(str, Enum):
    CASH = "CASH"
    CREDIT_CARD = "CREDIT_CARD"
    CARD = "CREDIT_CARD"
    DEBIT_CARD = "DEBIT_CARD"
    TRANSFER = "TRANSFER"
    ONLINE = "ONLINE"
    MIXED = "MIXED"

    @classmethod
    def from_database_value(cls, value: str | None) -> PaymentMethod | None:
        if value is None or not value.strip():
            return None
        normalized = value.strip().upper()
        try:
            return cls[normalized]
        except KeyError:
            pass
        try:
            return cls(normalized)
        except ValueError as exc:
            raise ValidationError(f"unknown payment method: {value}", method=value) from exc


def ensure_vat_rate(vat_rate: Decimal) -> Decimal:
    if vat_rate < 0 or vat_rate > 1:
        raise ValidationError("vat_rate must be within [0, 1]", vat_rate=str(vat_rate))
    return vat_rate


@dataclass(frozen=True)
class LineAmounts:
    net: Money
    tax: Money
    line_total: Money


def compute_line_amounts(
    unit_price: Money,
    quantity: int,
    vat_rate: Decimal = DEFAULT_VAT_RATE,
) -> LineAmounts:
    ensure_positive_quantity(quantity)
    ensure_vat_rate(vat_rate)
    net = unit_price.times(quantity)
    tax = Money(net.amount * vat_rate)
    return LineAmounts(net=net, tax=tax, line_total=net + tax)


@dataclass(frozen=True)
class OrderItem:
    item_id: OrderItemId
    order_id: OrderId
    product_id: ProductId
    product_name: str
    quantity: int
    unit_price: Money
    net_amount: Money
    tax_amount: Money
    line_total: Money

    def __post_init__(self) -> None:
        ensure_positive_quantity(self.quantity)


@dataclass(frozen=True)
class OrderTotals:
    subtotal: Money = ZERO
    tax: Money = ZERO
    discount: Money = ZERO
    total: Money = ZERO

    @classmethod
    def from_items(cls, items: Iterable[OrderItem], discount: Money = ZERO) -> OrderTotals:
        collected = list(items)
        subtotal = Money.total(item.net_amount for item in collected)
        tax = Money.total(item.tax_amount for item in collected)
        line_sum = Money.total(item.line_total for item in collected)
        if discount > line_sum:
            raise ValidationError("discount exceeds order total", discount=str(discount))
        return cls(
            subtotal=subtotal,
            tax=tax,
            discount=discount,
            total=Money(line_sum.amount - discount.amount),
        )


@dataclass(frozen=True)
class Order:
    order_id: OrderId
    table_no: TableNo
    waiter_id: UserId | None
    status: OrderStatus
    totals: OrderTotals
    order_date: datetime
    closed_at: datetime | None = None

    def __post_init__(self) -> None:
        if self.status == OrderStatus.COMPLETED and self.closed_at is None:
            raise ValueError("closed_at must be set when order status is COMPLETED")

    def ensure_open(self) -> None:
        if self.status.is_terminal:
            raise ConflictError(
                f"order {self.order_id} is already {self.status.value}",
                order_id=self.order_id,
                status=self.status.value,
            )


@dataclass(frozen=True)
class Payment:
    payment_id: PaymentId
    order_id: OrderId
    cashier_id: UserId | None
    amount: Money
    method: PaymentMethod
    paid_at: datetime


def compute_inclusive_line_amounts(
    gross_unit_price: Money,
    quantity: int,
    vat_rate: Decimal = DEFAULT_VAT_RATE,
) -> LineAmounts:
    ensure_positive_quantity(quantity)
    ensure_vat_rate(vat_rate)
    line_total = gross_unit_price.times(quantity)
    net = Money(line_total.amount / (1 + vat_rate))
    return LineAmounts(net=net, tax=Money(line_total.amount - net.amount), line_total=line_total)


def net_unit_price(gross_unit_price: Money, vat_rate: Decimal = DEFAULT_VAT_RATE) -> Money:
    ensure_vat_rate(vat_rate)
    return Money(gross_unit_price.amount / (1 + vat_rate))

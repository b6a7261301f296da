from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime

from rpos.domain.common.ids import ExpenseId, OrderId, TableNo
from rpos.domain.common.money import Money
from rpos.domain.order.entities import PaymentMethod


@dataclass(frozen=True)
class SaleRecord:
    table_no: TableNo
    building: str
    section: str
    total: Money
    method: PaymentMethod
    performed_by: str
    timestamp: datetime
    order_id: OrderId | None = None


@dataclass(frozen=True)
class ExpenseRecord:
    expense_id: ExpenseId
    amount: Money
    description: str
    performed_by: str
    expense_date: date
    created_at: datetime


@dataclass(frozen=True)
class ProductSalesRow:
    sold_at: datetime
    product_name: str
    category_name: str
    quantity: int
    method: PaymentMethod | None
    amount: Money


@dataclass(frozen=True)
class DailySalesTotal:
    day: date
    total: Money
    sale_count: int

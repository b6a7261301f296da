from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from rpos.domain.common.ids import ExpenseId, ProductId, TableNo
from rpos.domain.common.money import Money
from rpos.domain.reporting.records import SaleRecord
from rpos.domain.table.live_order import TableOrderStatus

TABLE_CHANGED = "table_changed"
SALES_CHANGED = "sales_changed"
EXPENSES_CHANGED = "expenses_changed"
PRODUCTS_CHANGED = "products_changed"


@dataclass(frozen=True)
class TableChanged:
    table_no: TableNo
    status: TableOrderStatus
    total: Money
    actor: str
    occurred_at: datetime

    topic = TABLE_CHANGED


@dataclass(frozen=True)
class SalesChanged:
    sale: SaleRecord
    occurred_at: datetime

    topic = SALES_CHANGED


@dataclass(frozen=True)
class ExpensesChanged:
    expense_id: ExpenseId
    occurred_at: datetime

    topic = EXPENSES_CHANGED


@dataclass(frozen=True)
class ProductsChanged:
    product_ids: tuple[ProductId, ...]
    occurred_at: datetime

    topic = PRODUCTS_CHANGED


PosEvent = TableChanged | SalesChanged | ExpensesChanged | ProductsChanged

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Callable, Protocol, TypeVar

from rpos.domain.common.ids import (
    CategoryId,
    ExpenseId,
    OrderId,
    OrderItemId,
    ProductId,
    TableNo,
    UserId,
)
from rpos.domain.common.money import Money
from rpos.domain.order.entities import (
    Order,
    OrderItem,
    OrderStatus,
    OrderTotals,
    Payment,
    PaymentMethod,
)
from rpos.domain.product.entities import Category, Product
from rpos.domain.reporting.records import ProductSalesRow
from rpos.domain.table.entities import Table, TableStatus
from rpos.domain.table.live_order import OrderLogEntry

T = TypeVar("T")


class PersistenceError(Exception):
    retryable = False

    def __init__(self, message: str, *, operation: str | None = None) -> None:
        super().__init__(message)
        self.operation = operation
        self.details = {"operation": operation, "retryable": self.retryable}


class PersistenceTimeoutError(PersistenceError):
    retryable = True


class TableRepository(Protocol):
    def get(self, table_no: TableNo) -> Table | None: ...

    def list_all(self) -> list[Table]: ...

    def ensure(self, table: Table) -> Table: ...

    def update_status(self, table_no: TableNo, status: TableStatus) -> TableStatus: ...


class ProductRepository(Protocol):
    def get(self, product_id: ProductId) -> Product | None: ...

    def find_by_name(self, name: str) -> Product | None: ...

    def add(
        self,
        name: str,
        unit_price: Money,
        category_id: CategoryId | None,
        stock: int | None = None,
        vat_rate: Decimal | None = None,
    ) -> Product: ...

    def ensure_category(self, name: str) -> Category: ...

    def take_stock(self, product_id: ProductId, quantity: int) -> bool: ...

    def return_stock(self, product_id: ProductId, quantity: int) -> None: ...


class OrderRepository(Protocol):
    def add(
        self,
        table_no: TableNo,
        waiter_id: UserId | None,
        status: OrderStatus,
        now: datetime,
    ) -> Order: ...

    def get(self, order_id: OrderId) -> Order | None: ...

    def find_open_by_table(self, table_no: TableNo) -> Order | None: ...

    def update_totals(self, order_id: OrderId, totals: OrderTotals) -> None: ...

    def close(self, order_id: OrderId, now: datetime) -> bool: ...

    def update_status(
        self, order_id: OrderId, status: OrderStatus, now: datetime
    ) -> OrderStatus: ...

    def reassign_table(self, order_id: OrderId, table_no: TableNo) -> None: ...


class OrderItemRepository(Protocol):
    def get(self, item_id: OrderItemId) -> OrderItem | None: ...

    def list_for_order(self, order_id: OrderId) -> list[OrderItem]: ...

    def add_or_increment(
        self,
        order_id: OrderId,
        product: Product,
        quantity: int,
        unit_price: Money | None = None,
        price_includes_vat: bool = False,
    ) -> OrderItem: ...

    def decrement_or_remove(self, item_id: OrderItemId, quantity: int) -> int: ...

    def delete_for_order(self, order_id: OrderId) -> int: ...


class PaymentRepository(Protocol):
    def add(
        self,
        order_id: OrderId,
        cashier_id: UserId | None,
        amount: Money,
        method: PaymentMethod,
        now: datetime,
    ) -> Payment: ...

    def list_for_order(self, order_id: OrderId) -> list[Payment]: ...


@dataclass(frozen=True)
class ExpenseData:
    expense_id: ExpenseId
    amount: Money
    description: str | None
    recorded_by: UserId | None
    expense_date: date
    created_at: datetime


class ExpenseRepository(Protocol):
    def add(
        self,
        amount: Money,
        description: str | None,
        expense_date: date,
        recorded_by: UserId | None,
        now: datetime,
    ) -> ExpenseId: ...

    def delete(self, expense_id: ExpenseId) -> bool: ...

    def list_between(self, start: date | None, end: date | None) -> list[ExpenseData]: ...

    def total_between(self, start: date, end: date) -> Money: ...


class OrderLogRepository(Protocol):
    def append(self, order_id: OrderId | None, table_no: TableNo, entry: OrderLogEntry) -> bool: ...

    def list_for_order(self, order_id: OrderId) -> list[OrderLogEntry]: ...


@dataclass(frozen=True)
class SaleRowData:
    order_id: OrderId
    table_no: TableNo
    building: str
    section: str
    amount: Money
    method: PaymentMethod | None
    cashier_id: UserId | None
    paid_at: datetime


class SalesQueryRepository(Protocol):
    def payments_between(
        self,
        start: datetime | None,
        end: datetime | None,
    ) -> list[SaleRowData]: ...

    def payment_total_between(self, start: datetime, end: datetime) -> Money: ...

    def product_sales_before(self, threshold: datetime) -> list[ProductSalesRow]: ...


class UnitOfWork(Protocol):
    tables: TableRepository
    products: ProductRepository
    orders: OrderRepository
    order_items: OrderItemRepository
    payments: PaymentRepository
    expenses: ExpenseRepository
    order_logs: OrderLogRepository
    sales: SalesQueryRepository


class TransactionRunner(Protocol):
    def run(self, work: Callable[[UnitOfWork], T], *, operation: str) -> T: ...

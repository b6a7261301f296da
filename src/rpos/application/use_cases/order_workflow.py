from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from opentelemetry import trace

from rpos.application.metrics.order_lifecycle import (
    record_checkout_duration,
    record_checkout_failure,
    record_stock_rejection,
    record_table_release_failure,
    record_transition,
)
from rpos.application.ports.publisher import EventPublisher
from rpos.application.ports.repositories import PersistenceError, TransactionRunner, UnitOfWork
from rpos.application.use_cases.context import operation_scope
from rpos.domain.common.errors import (
    ConflictError,
    InsufficientStockError,
    NotFoundError,
    PosError,
    ValidationError,
)
from rpos.domain.common.ids import OrderId, OrderItemId, ProductId, TableNo, UserId
from rpos.domain.common.money import Money, ensure_positive_quantity
from rpos.domain.order.entities import (
    Order,
    OrderItem,
    OrderStatus,
    OrderTotals,
    Payment,
    PaymentMethod,
)
from rpos.domain.order.events import ProductsChanged
from rpos.domain.table.entities import TableStatus

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

DEFAULT_RELEASE_ATTEMPTS = 3
MAX_RELEASE_BACKOFF_SECONDS = 5.0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def occupancy_for(status: OrderStatus) -> TableStatus:
    if status == OrderStatus.READY:
        return TableStatus.RESERVED
    return TableStatus.OCCUPIED


def _release_attempts_from_env() -> int:
    raw = os.getenv("TABLE_RELEASE_ATTEMPTS")
    if not raw:
        return DEFAULT_RELEASE_ATTEMPTS
    try:
        value = int(raw)
    except ValueError as exc:
        raise RuntimeError(f"TABLE_RELEASE_ATTEMPTS must be an integer, got {raw!r}") from exc
    if value < 1:
        raise RuntimeError("TABLE_RELEASE_ATTEMPTS must be >= 1")
    return value


@dataclass(frozen=True)
class CheckoutResult:
    order: Order
    payment: Payment
    table_released: bool


class OrderWorkflow:
    def __init__(
        self,
        runner: TransactionRunner,
        publisher: EventPublisher | None = None,
        clock: Callable[[], datetime] = _utcnow,
        release_attempts: int | None = None,
        release_backoff_seconds: float = 0.1,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._runner = runner
        self._publisher = publisher
        self._clock = clock
        if release_attempts is None:
            release_attempts = _release_attempts_from_env()
        elif release_attempts < 1:
            raise ValidationError(
                "release_attempts must be >= 1", release_attempts=release_attempts
            )
        self._release_attempts = release_attempts
        self._release_backoff_seconds = release_backoff_seconds
        self._sleep = sleep

    def create_order(
        self,
        table_no: TableNo,
        waiter_id: UserId | None = None,
        status: OrderStatus = OrderStatus.PENDING,
    ) -> Order:
        with operation_scope():
            order = self._runner.run(
                lambda uow: self.open_order(uow, table_no, waiter_id, status, self._clock()),
                operation="create_order",
            )
        logger.info(
            "order_created",
            extra={"order_id": order.order_id, "table_no": table_no, "status": order.status.value},
        )
        return order

    def get_order(self, order_id: OrderId) -> Order:
        return self._runner.run(
            lambda uow: self._require_order(uow, order_id), operation="get_order"
        )

    def get_open_order_by_table(self, table_no: TableNo) -> Order | None:
        return self._runner.run(
            lambda uow: uow.orders.find_open_by_table(table_no),
            operation="get_open_order_by_table",
        )

    def get_items_for_order(self, order_id: OrderId) -> list[OrderItem]:
        return self._runner.run(
            lambda uow: uow.order_items.list_for_order(order_id),
            operation="get_items_for_order",
        )

    def add_item_to_order(
        self,
        order_id: OrderId,
        product_id: ProductId,
        quantity: int,
    ) -> OrderItem:
        ensure_positive_quantity(quantity)
        with operation_scope(), tracer.start_as_current_span("add_item_to_order"):
            item = self._runner.run(
                lambda uow: self.add_item(uow, order_id, product_id, quantity),
                operation="add_item_to_order",
            )
        logger.info(
            "order_item_added",
            extra={"order_id": order_id, "product_id": product_id, "quantity": quantity},
        )
        self._publish_products_changed((product_id,))
        return item

    def decrement_item(self, order_item_id: OrderItemId, quantity: int) -> int:
        ensure_positive_quantity(quantity)
        with operation_scope(), tracer.start_as_current_span("decrement_item"):
            product_id, removed = self._runner.run(
                lambda uow: self._decrement(uow, order_item_id, quantity),
                operation="decrement_item",
            )
        logger.info(
            "order_item_decremented",
            extra={"order_item_id": order_item_id, "quantity": removed},
        )
        self._publish_products_changed((product_id,))
        return removed

    def clear_items(self, order_id: OrderId) -> int:
        with operation_scope(), tracer.start_as_current_span("clear_items"):
            product_ids, restored = self._runner.run(
                lambda uow: self._clear(uow, order_id),
                operation="clear_items",
            )
        logger.info("order_items_cleared", extra={"order_id": order_id, "quantity": restored})
        if product_ids:
            self._publish_products_changed(product_ids)
        return restored

    def recompute_totals(self, order_id: OrderId) -> OrderTotals:
        def work(uow: UnitOfWork) -> OrderTotals:
            self._require_order(uow, order_id)
            totals = OrderTotals.from_items(uow.order_items.list_for_order(order_id))
            uow.orders.update_totals(order_id, totals)
            return totals

        with operation_scope():
            return self._runner.run(work, operation="recompute_totals")

    def reassign_table(self, order_id: OrderId, new_table_no: TableNo) -> Order:
        def work(uow: UnitOfWork) -> Order:
            order = self._require_order(uow, order_id)
            order.ensure_open()
            if uow.tables.get(new_table_no) is None:
                raise NotFoundError(f"table {new_table_no} not found", table_no=new_table_no)
            if order.table_no == new_table_no:
                return order

            uow.orders.reassign_table(order_id, new_table_no)
            uow.tables.update_status(new_table_no, occupancy_for(order.status))
            if uow.orders.find_open_by_table(order.table_no) is None:
                uow.tables.update_status(order.table_no, TableStatus.EMPTY)
            return self._require_order(uow, order_id)

        with operation_scope():
            order = self._runner.run(work, operation="reassign_table")
        logger.info(
            "order_table_reassigned",
            extra={"order_id": order_id, "table_no": new_table_no},
        )
        return order

    def update_order_status(self, order_id: OrderId, status: OrderStatus) -> OrderStatus:
        if status == OrderStatus.COMPLETED:
            raise ValidationError("orders are completed through checkout", order_id=order_id)

        def work(uow: UnitOfWork) -> tuple[TableNo, OrderStatus]:
            order = self._require_order(uow, order_id)
            order.ensure_open()
            stored = uow.orders.update_status(order_id, status, self._clock())
            if not status.is_terminal:
                uow.tables.update_status(order.table_no, occupancy_for(status))
            return order.table_no, stored

        with operation_scope():
            table_no, stored = self._runner.run(work, operation="update_order_status")
            if status.is_terminal:
                self.release_table(table_no)
        record_transition(stored)
        logger.info(
            "order_status_updated",
            extra={"order_id": order_id, "status": stored.value, "requested": status.value},
        )
        return stored

    def checkout_and_close(
        self,
        order_id: OrderId,
        cashier_id: UserId | None,
        method: PaymentMethod,
    ) -> CheckoutResult:
        started = time.perf_counter()
        with operation_scope(), tracer.start_as_current_span("checkout_and_close") as span:
            span.set_attribute("rpos.order_id", int(order_id))
            try:
                order, payment = self._runner.run(
                    lambda uow: self.checkout(uow, order_id, cashier_id, method, self._clock()),
                    operation="checkout_and_close",
                )
            except PosError as exc:
                record_checkout_failure(exc.__class__.__name__)
                raise
            except PersistenceError as exc:
                record_checkout_failure(exc.__class__.__name__)
                logger.error(
                    "checkout_failed",
                    extra={"order_id": order_id, "retryable": exc.retryable},
                )
                raise
            finally:
                record_checkout_duration(time.perf_counter() - started)

            released = self.release_table(order.table_no)

        logger.info(
            "order_checked_out",
            extra={
                "order_id": order_id,
                "table_no": order.table_no,
                "total": str(payment.amount),
                "method": method.value,
            },
        )
        return CheckoutResult(order=order, payment=payment, table_released=released)

    def open_order(
        self,
        uow: UnitOfWork,
        table_no: TableNo,
        waiter_id: UserId | None,
        status: OrderStatus,
        now: datetime,
    ) -> Order:
        if status.is_terminal:
            raise ValidationError(
                "a new order cannot start in a terminal status", status=status.value
            )
        if uow.tables.get(table_no) is None:
            raise NotFoundError(f"table {table_no} not found", table_no=table_no)
        order = uow.orders.add(table_no, waiter_id, status, now)
        uow.tables.update_status(table_no, occupancy_for(status))
        record_transition(order.status)
        return order

    def add_item(
        self,
        uow: UnitOfWork,
        order_id: OrderId,
        product_id: ProductId,
        quantity: int,
        unit_price: Money | None = None,
        price_includes_vat: bool = False,
    ) -> OrderItem:
        ensure_positive_quantity(quantity)
        self._require_order(uow, order_id).ensure_open()
        product = uow.products.get(product_id)
        if product is None:
            raise NotFoundError(f"product {product_id} not found", product_id=product_id)

        if not uow.products.take_stock(product_id, quantity):
            record_stock_rejection()
            current = uow.products.get(product_id)
            raise InsufficientStockError(
                product_id=product_id,
                requested=quantity,
                available=current.stock if current is not None else None,
            )
        return uow.order_items.add_or_increment(
            order_id,
            product,
            quantity,
            unit_price=unit_price,
            price_includes_vat=price_includes_vat,
        )

    def checkout(
        self,
        uow: UnitOfWork,
        order_id: OrderId,
        cashier_id: UserId | None,
        method: PaymentMethod,
        now: datetime,
    ) -> tuple[Order, Payment]:
        order = self._require_order(uow, order_id)
        order.ensure_open()
        items = uow.order_items.list_for_order(order_id)
        if not items:
            raise ConflictError(f"order {order_id} has no items to charge", order_id=order_id)

        totals = OrderTotals.from_items(items)
        uow.orders.update_totals(order_id, totals)
        payment = uow.payments.add(order_id, cashier_id, totals.total, method, now)
        if not uow.orders.close(order_id, now):
            raise ConflictError(f"order {order_id} was closed concurrently", order_id=order_id)
        record_transition(OrderStatus.COMPLETED)
        return self._require_order(uow, order_id), payment

    def release_table(self, table_no: TableNo) -> bool:
        def work(uow: UnitOfWork) -> bool:
            if uow.orders.find_open_by_table(table_no) is not None:
                return False
            uow.tables.update_status(table_no, TableStatus.EMPTY)
            return True

        backoff_seconds = self._release_backoff_seconds
        for attempt in range(1, self._release_attempts + 1):
            try:
                released = self._runner.run(work, operation="release_table")
                if not released:
                    logger.info("table_release_skipped_open_order", extra={"table_no": table_no})
                return released
            except NotFoundError:
                logger.warning("table_release_skipped_unknown_table", extra={"table_no": table_no})
                return False
            except PersistenceError as exc:
                logger.warning(
                    "table_release_failed",
                    extra={
                        "table_no": table_no,
                        "attempt": attempt,
                        "retryable": exc.retryable,
                        "backoff_seconds": backoff_seconds,
                    },
                )
                if attempt < self._release_attempts:
                    self._sleep(backoff_seconds)
                    backoff_seconds = min(backoff_seconds * 2, MAX_RELEASE_BACKOFF_SECONDS)

        record_table_release_failure()
        logger.error(
            "table_release_requires_reconciliation",
            extra={"table_no": table_no, "attempts": self._release_attempts},
        )
        return False

    def _decrement(
        self,
        uow: UnitOfWork,
        order_item_id: OrderItemId,
        quantity: int,
    ) -> tuple[ProductId, int]:
        item = uow.order_items.get(order_item_id)
        if item is None:
            raise NotFoundError(
                f"order item {order_item_id} not found", order_item_id=order_item_id
            )
        self._require_order(uow, item.order_id).ensure_open()

        removed = min(quantity, item.quantity)
        uow.products.return_stock(item.product_id, removed)
        uow.order_items.decrement_or_remove(order_item_id, removed)
        return item.product_id, removed

    def _clear(self, uow: UnitOfWork, order_id: OrderId) -> tuple[tuple[ProductId, ...], int]:
        self._require_order(uow, order_id).ensure_open()
        items = uow.order_items.list_for_order(order_id)
        for item in items:
            uow.products.return_stock(item.product_id, item.quantity)
        uow.order_items.delete_for_order(order_id)
        return tuple(item.product_id for item in items), sum(item.quantity for item in items)

    def _require_order(self, uow: UnitOfWork, order_id: OrderId) -> Order:
        order = uow.orders.get(order_id)
        if order is None:
            raise NotFoundError(f"order {order_id} not found", order_id=order_id)
        return order

    def _publish_products_changed(self, product_ids: tuple[ProductId, ...]) -> None:
        if self._publisher is None:
            return
        try:
            self._publisher.publish(
                ProductsChanged(product_ids=tuple(product_ids), occurred_at=self._clock())
            )
        except Exception:
            logger.exception("event_publish_failed", extra={"topic": "products_changed"})

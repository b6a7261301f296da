from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable

from opentelemetry import trace

from rpos.application.ports.repositories import TransactionRunner, UnitOfWork
from rpos.application.ports.sale_recorder import SaleRecorder
from rpos.application.use_cases.order_workflow import OrderWorkflow
from rpos.domain.order.entities import (
    Order,
    OrderStatus,
    Payment,
    PaymentMethod,
    net_unit_price,
)
from rpos.domain.product.entities import DEFAULT_CATEGORY_NAME, Category
from rpos.domain.reporting.records import SaleRecord
from rpos.domain.table.entities import Table
from rpos.domain.table.live_order import Actor, OrderLogEntry, TableOrder, TableOrderStatus

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RecordSale(SaleRecorder):
    def __init__(
        self,
        runner: TransactionRunner,
        workflow: OrderWorkflow,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._runner = runner
        self._workflow = workflow
        self._clock = clock

    def record(
        self,
        table: Table,
        order: TableOrder,
        method: PaymentMethod,
        actor: Actor,
    ) -> SaleRecord:
        with tracer.start_as_current_span("record_sale") as span:
            span.set_attribute("rpos.table_no", int(table.table_no))
            closed, payment = self._runner.run(
                lambda uow: self._persist(uow, table, order, method, actor),
                operation="record_sale",
            )
            self._workflow.release_table(table.table_no)

        logger.info(
            "sale_persisted",
            extra={
                "order_id": closed.order_id,
                "table_no": table.table_no,
                "total": str(payment.amount),
                "method": method.value,
            },
        )
        return SaleRecord(
            table_no=table.table_no,
            building=table.building,
            section=table.section,
            total=payment.amount,
            method=payment.method,
            performed_by=actor.display_name,
            timestamp=payment.paid_at,
            order_id=closed.order_id,
        )

    def _persist(
        self,
        uow: UnitOfWork,
        table: Table,
        order: TableOrder,
        method: PaymentMethod,
        actor: Actor,
    ) -> tuple[Order, Payment]:
        now = self._clock()
        uow.tables.ensure(table)
        served = order.status == TableOrderStatus.SERVED
        status = OrderStatus.READY if served else OrderStatus.IN_PROGRESS
        durable = self._workflow.open_order(uow, table.table_no, actor.user_id, status, now)

        category: Category | None = None
        for line in order.lines:
            product = uow.products.find_by_name(line.product_name)
            if product is None:
                if category is None:
                    category = uow.products.ensure_category(DEFAULT_CATEGORY_NAME)
                product = uow.products.add(
                    line.product_name,
                    net_unit_price(line.unit_price),
                    category.category_id,
                )
            self._workflow.add_item(
                uow,
                durable.order_id,
                product.product_id,
                line.quantity,
                unit_price=line.unit_price,
                price_includes_vat=True,
            )

        for entry in reversed(order.history):
            uow.order_logs.append(durable.order_id, table.table_no, entry)

        closed, payment = self._workflow.checkout(uow, durable.order_id, actor.user_id, method, now)
        uow.order_logs.append(
            closed.order_id,
            table.table_no,
            OrderLogEntry(
                now, actor.display_name, f"sale recorded {payment.amount} ({method.value})"
            ),
        )
        return closed, payment

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Callable, Iterable

from rpos.application.metrics.order_lifecycle import (
    record_occupied_tables,
    record_sale,
    record_table_mutation,
)
from rpos.application.ports.publisher import EventBus, EventCallback, Subscription
from rpos.application.ports.sale_recorder import SaleRecorder
from rpos.application.use_cases.context import operation_scope
from rpos.domain.common.errors import ConflictError, UnknownTableError, ValidationError
from rpos.domain.common.ids import TableNo
from rpos.domain.common.money import Money, ensure_positive_quantity
from rpos.domain.order.entities import PaymentMethod
from rpos.domain.order.events import TABLE_CHANGED, SalesChanged, TableChanged
from rpos.domain.reporting.records import SaleRecord
from rpos.domain.table.entities import Table
from rpos.domain.table.live_order import (
    Actor,
    TableOrder,
    TableOrderStatus,
    product_key,
    resolve_actor,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
_Change = Callable[[TableOrder, str, datetime], "TableOrder | None"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MutationOutcome(str, Enum):
    APPLIED = "APPLIED"
    NOT_FOUND = "NOT_FOUND"
    NOOP = "NOOP"


@dataclass(frozen=True)
class MutationResult:
    outcome: MutationOutcome
    order: TableOrder

    @property
    def applied(self) -> bool:
        return self.outcome == MutationOutcome.APPLIED


class TableStateContainer:
    def __init__(
        self,
        tables: Iterable[Table],
        publisher: EventBus,
        sale_recorder: SaleRecorder | None = None,
        clock: Clock = _utcnow,
    ) -> None:
        self._tables: dict[TableNo, Table] = {table.table_no: table for table in tables}
        if not self._tables:
            raise ValidationError("at least one table is required")
        self._orders: dict[TableNo, TableOrder] = {
            table_no: TableOrder(table_no=table_no) for table_no in self._tables
        }
        self._locks: dict[TableNo, threading.Lock] = {
            table_no: threading.Lock() for table_no in self._tables
        }
        self._publisher = publisher
        self._sale_recorder = sale_recorder
        self._clock = clock

    def tables(self) -> tuple[Table, ...]:
        return tuple(self._tables.values())

    def table(self, table_no: int) -> Table:
        table = self._tables.get(TableNo(table_no))
        if table is None:
            raise UnknownTableError(table_no)
        return table

    def snapshot(self, table_no: int) -> TableOrder:
        key = self.table(table_no).table_no
        with self._locks[key]:
            return self._orders[key]

    def snapshots(self) -> dict[TableNo, TableOrder]:
        return {table_no: self.snapshot(table_no) for table_no in self._tables}

    def table_total(self, table_no: int) -> Money:
        return self.snapshot(table_no).total

    def table_status(self, table_no: int) -> TableOrderStatus:
        return self.snapshot(table_no).status

    def subscribe(self, callback: EventCallback) -> Subscription:
        return self._publisher.subscribe(TABLE_CHANGED, callback)

    def add_item(
        self,
        table_no: int,
        product_name: str,
        unit_price: Money | Decimal | int | str,
        quantity: int,
        actor: Actor | str | None = None,
    ) -> MutationResult:
        ensure_positive_quantity(quantity)
        product_key(product_name)
        price = unit_price if isinstance(unit_price, Money) else Money.of(unit_price)
        return self._mutate(
            table_no,
            actor,
            "add_item",
            MutationOutcome.NOOP,
            lambda order, name, now: order.with_item_added(
                product_name, price, quantity, name, now
            ),
        )

    def decrease_item(
        self,
        table_no: int,
        product_name: str,
        quantity: int,
        actor: Actor | str | None = None,
    ) -> MutationResult:
        ensure_positive_quantity(quantity)
        product_key(product_name)
        return self._mutate(
            table_no,
            actor,
            "decrease_item",
            MutationOutcome.NOT_FOUND,
            lambda order, name, now: order.with_item_decreased(product_name, quantity, name, now),
        )

    def remove_item(
        self,
        table_no: int,
        product_name: str,
        actor: Actor | str | None = None,
    ) -> MutationResult:
        product_key(product_name)
        return self._mutate(
            table_no,
            actor,
            "remove_item",
            MutationOutcome.NOT_FOUND,
            lambda order, name, now: order.with_item_removed(product_name, name, now),
        )

    def mark_served(self, table_no: int, actor: Actor | str | None = None) -> MutationResult:
        return self._mutate(
            table_no,
            actor,
            "mark_served",
            MutationOutcome.NOOP,
            lambda order, name, now: order.served(name, now),
        )

    def clear_table(self, table_no: int, actor: Actor | str | None = None) -> MutationResult:
        return self._mutate(
            table_no,
            actor,
            "clear_table",
            MutationOutcome.NOOP,
            lambda order, name, now: order.cleared(name, now),
        )

    def record_sale(
        self,
        table_no: int,
        method: PaymentMethod | str,
        actor: Actor | str | None = None,
    ) -> SaleRecord | None:
        if self._sale_recorder is None:
            raise ConflictError("no sale recorder is configured")
        payment_method = _payment_method(method)
        resolved = resolve_actor(actor)
        table = self.table(table_no)

        with operation_scope():
            with self._locks[table.table_no]:
                current = self._orders[table.table_no]
                if current.is_empty:
                    record_table_mutation("record_sale", MutationOutcome.NOOP.value)
                    logger.info(
                        "sale_skipped_empty_table",
                        extra={"table_no": table.table_no, "actor": resolved.display_name},
                    )
                    return None

                sale = self._sale_recorder.record(table, current, payment_method, resolved)
                now = self._clock()
                cleared = current.cleared(
                    resolved.display_name,
                    now,
                    message=f"sale recorded {sale.total} ({payment_method.value})",
                )
                self._orders[table.table_no] = cleared

            record_table_mutation("record_sale", MutationOutcome.APPLIED.value)
            record_sale(sale)
            self._refresh_occupancy()
            logger.info(
                "sale_recorded",
                extra={
                    "table_no": table.table_no,
                    "total": str(sale.total),
                    "method": payment_method.value,
                    "actor": resolved.display_name,
                },
            )
            self._publish(
                TableChanged(
                    table_no=table.table_no,
                    status=cleared.status,
                    total=cleared.total,
                    actor=resolved.display_name,
                    occurred_at=now,
                )
            )
            self._publish(SalesChanged(sale=sale, occurred_at=now))
        return sale

    def _mutate(
        self,
        table_no: int,
        actor: Actor | str | None,
        operation: str,
        unchanged_outcome: MutationOutcome,
        change: _Change,
    ) -> MutationResult:
        table = self.table(table_no)
        resolved = resolve_actor(actor)

        with operation_scope():
            with self._locks[table.table_no]:
                current = self._orders[table.table_no]
                now = self._clock()
                updated = change(current, resolved.display_name, now)
                if updated is not None:
                    self._orders[table.table_no] = updated

            if updated is None:
                record_table_mutation(operation, unchanged_outcome.value)
                logger.info(
                    "table_mutation_skipped",
                    extra={
                        "operation": operation,
                        "table_no": table.table_no,
                        "outcome": unchanged_outcome.value,
                    },
                )
                return MutationResult(outcome=unchanged_outcome, order=current)

            record_table_mutation(operation, MutationOutcome.APPLIED.value)
            self._refresh_occupancy()
            logger.debug(
                "table_mutated",
                extra={
                    "operation": operation,
                    "table_no": table.table_no,
                    "status": updated.status.value,
                    "total": str(updated.total),
                },
            )
            self._publish(
                TableChanged(
                    table_no=table.table_no,
                    status=updated.status,
                    total=updated.total,
                    actor=resolved.display_name,
                    occurred_at=now,
                )
            )
            return MutationResult(outcome=MutationOutcome.APPLIED, order=updated)

    def _refresh_occupancy(self) -> None:
        occupied = sum(1 for order in list(self._orders.values()) if not order.is_empty)
        record_occupied_tables(occupied)

    def _publish(self, event: TableChanged | SalesChanged) -> None:
        try:
            self._publisher.publish(event)
        except Exception:
            logger.exception("event_publish_failed", extra={"topic": event.topic})


def _payment_method(method: PaymentMethod | str) -> PaymentMethod:
    if isinstance(method, PaymentMethod):
        return method
    resolved = PaymentMethod.from_database_value(method)
    if resolved is None:
        raise ValidationError("payment method is required")
    return resolved

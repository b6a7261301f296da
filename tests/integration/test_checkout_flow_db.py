from __future__ import annotations

import sys
from pathlib import Path

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from conftest import product_named

from rpos.application.ports.repositories import PersistenceError
from rpos.bootstrap import PosApplication
from rpos.domain.common.errors import ConflictError, NotFoundError
from rpos.domain.common.ids import OrderId, TableNo
from rpos.domain.common.money import Money
from rpos.domain.order.entities import OrderStatus, PaymentMethod
from rpos.domain.table.entities import TableStatus
from rpos.infrastructure.db.models.order import PaymentModel
from rpos.infrastructure.db.repositories.order_repo import SqlAlchemyOrderRepository
from rpos.infrastructure.db.unit_of_work import SqlAlchemyTransactionRunner


def _table_status(runner: SqlAlchemyTransactionRunner, table_no: int) -> TableStatus:
    table = runner.run(lambda uow: uow.tables.get(TableNo(table_no)), operation="test_table")
    assert table is not None
    return table.status


def _payment_count(runner: SqlAlchemyTransactionRunner, order_id: OrderId) -> int:
    with runner.engine.connect() as connection:
        return connection.execute(
            select(func.count()).select_from(PaymentModel).where(PaymentModel.order_id == order_id)
        ).scalar_one()


def test_checkout_writes_totals_payment_and_releases_table(
    app: PosApplication,
    runner: SqlAlchemyTransactionRunner,
) -> None:
    kebap = product_named(runner, "Kebap")
    workflow = app.workflow

    order = workflow.create_order(TableNo(110))
    assert order.status == OrderStatus.PENDING
    assert _table_status(runner, 110) == TableStatus.OCCUPIED
    assert workflow.get_open_order_by_table(TableNo(110)) == order

    item = workflow.add_item_to_order(order.order_id, kebap.product_id, 1)
    item = workflow.add_item_to_order(order.order_id, kebap.product_id, 1)
    assert item.quantity == 2
    assert item.net_amount == Money.of("83.34")
    assert item.tax_amount == Money.of("16.67")
    assert item.line_total == Money.of("100.01")

    result = workflow.checkout_and_close(order.order_id, None, PaymentMethod.CREDIT_CARD)

    assert result.table_released
    assert result.payment.amount == Money.of("100.01")
    assert result.payment.method == PaymentMethod.CREDIT_CARD
    assert result.order.status == OrderStatus.COMPLETED
    assert result.order.closed_at is not None
    assert result.order.totals.subtotal == Money.of("83.34")
    assert result.order.totals.tax == Money.of("16.67")
    assert result.order.totals.total == Money.of("100.01")
    assert _table_status(runner, 110) == TableStatus.EMPTY
    assert workflow.get_open_order_by_table(TableNo(110)) is None
    assert _payment_count(runner, order.order_id) == 1


def test_second_checkout_is_rejected_without_second_payment(
    app: PosApplication,
    runner: SqlAlchemyTransactionRunner,
) -> None:
    kebap = product_named(runner, "Kebap")
    order = app.workflow.create_order(TableNo(111))
    app.workflow.add_item_to_order(order.order_id, kebap.product_id, 1)
    app.workflow.checkout_and_close(order.order_id, None, PaymentMethod.CASH)

    with pytest.raises(ConflictError):
        app.workflow.checkout_and_close(order.order_id, None, PaymentMethod.CASH)
    with pytest.raises(ConflictError):
        app.workflow.add_item_to_order(order.order_id, kebap.product_id, 1)

    assert _payment_count(runner, order.order_id) == 1


def test_checkout_of_empty_order_rolls_back(
    app: PosApplication,
    runner: SqlAlchemyTransactionRunner,
) -> None:
    order = app.workflow.create_order(TableNo(112))

    with pytest.raises(ConflictError):
        app.workflow.checkout_and_close(order.order_id, None, PaymentMethod.CASH)

    assert app.workflow.get_order(order.order_id).status == OrderStatus.PENDING
    assert _payment_count(runner, order.order_id) == 0
    assert _table_status(runner, 112) == TableStatus.OCCUPIED


def test_close_failure_after_payment_rolls_back_the_payment(
    app: PosApplication,
    runner: SqlAlchemyTransactionRunner,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    ayran = product_named(runner, "Ayran")
    order = app.workflow.create_order(TableNo(116))
    app.workflow.add_item_to_order(order.order_id, ayran.product_id, 3)

    def failing_close(self: SqlAlchemyOrderRepository, order_id: OrderId, now: object) -> bool:
        raise OperationalError("UPDATE orders", {}, Exception("disk I/O error"))

    monkeypatch.setattr(SqlAlchemyOrderRepository, "close", failing_close)

    with pytest.raises(PersistenceError) as excinfo:
        app.workflow.checkout_and_close(order.order_id, None, PaymentMethod.CASH)

    assert not excinfo.value.retryable
    assert _payment_count(runner, order.order_id) == 0
    stored = app.workflow.get_order(order.order_id)
    assert stored.status == OrderStatus.PENDING
    assert stored.closed_at is None
    assert stored.totals.total == Money.of(0)
    assert product_named(runner, "Ayran").stock == 37
    assert _table_status(runner, 116) == TableStatus.OCCUPIED


def test_unknown_order_and_table_are_not_found(app: PosApplication) -> None:
    with pytest.raises(NotFoundError):
        app.workflow.checkout_and_close(OrderId(999_999), None, PaymentMethod.CASH)
    with pytest.raises(NotFoundError):
        app.workflow.create_order(TableNo(999))


def test_status_updates_follow_table_occupancy(
    app: PosApplication,
    runner: SqlAlchemyTransactionRunner,
) -> None:
    order = app.workflow.create_order(TableNo(113))

    assert app.workflow.update_order_status(order.order_id, OrderStatus.READY) == OrderStatus.READY
    assert _table_status(runner, 113) == TableStatus.RESERVED

    assert (
        app.workflow.update_order_status(order.order_id, OrderStatus.CANCELLED)
        == OrderStatus.CANCELLED
    )
    cancelled = app.workflow.get_order(order.order_id)
    assert cancelled.closed_at is not None
    assert _table_status(runner, 113) == TableStatus.EMPTY


def test_reassign_and_recompute_totals(
    app: PosApplication,
    runner: SqlAlchemyTransactionRunner,
) -> None:
    ayran = product_named(runner, "Ayran")
    order = app.workflow.create_order(TableNo(114))
    app.workflow.add_item_to_order(order.order_id, ayran.product_id, 4)

    moved = app.workflow.reassign_table(order.order_id, TableNo(115))
    assert moved.table_no == 115
    assert _table_status(runner, 114) == TableStatus.EMPTY
    assert _table_status(runner, 115) == TableStatus.OCCUPIED

    totals = app.workflow.recompute_totals(order.order_id)
    assert totals.subtotal == Money.of("10.00")
    assert totals.tax == Money.of("2.00")
    assert totals.total == Money.of("12.00")
    assert app.workflow.get_order(order.order_id).totals == totals
    assert [item.quantity for item in app.workflow.get_items_for_order(order.order_id)] == [4]


def test_registered_layout_is_persisted(
    app: PosApplication,
    runner: SqlAlchemyTransactionRunner,
) -> None:
    tables = runner.run(lambda uow: uow.tables.list_all(), operation="test_tables")

    assert [table.table_no for table in tables] == [table.table_no for table in app.tables.tables()]
    assert {table.status for table in tables} == {TableStatus.EMPTY}
    garden = [table for table in tables if table.section == "Garden"]
    assert len(garden) == 10

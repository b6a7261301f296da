from __future__ import annotations

import concurrent.futures
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from conftest import product_named

from rpos.application.ports.repositories import PersistenceError
from rpos.bootstrap import PosApplication
from rpos.domain.common.errors import InsufficientStockError, NotFoundError
from rpos.domain.common.ids import OrderItemId, ProductId, TableNo
from rpos.domain.order.events import PRODUCTS_CHANGED
from rpos.infrastructure.db.unit_of_work import SqlAlchemyTransactionRunner


def _stock(runner: SqlAlchemyTransactionRunner, name: str) -> int | None:
    return product_named(runner, name).stock


def test_kola_insufficient_stock_leaves_everything_unchanged(
    app: PosApplication,
    runner: SqlAlchemyTransactionRunner,
) -> None:
    kola = product_named(runner, "Kola")
    assert kola.stock == 5
    order = app.workflow.create_order(TableNo(120))

    app.workflow.add_item_to_order(order.order_id, kola.product_id, 3)
    assert _stock(runner, "Kola") == 2

    with pytest.raises(InsufficientStockError) as excinfo:
        app.workflow.add_item_to_order(order.order_id, kola.product_id, 3)

    assert excinfo.value.available == 2
    assert excinfo.value.requested == 3
    assert _stock(runner, "Kola") == 2
    items = app.workflow.get_items_for_order(order.order_id)
    assert [(item.product_name, item.quantity) for item in items] == [("Kola", 3)]


def test_decrement_and_clear_return_stock(
    app: PosApplication,
    runner: SqlAlchemyTransactionRunner,
) -> None:
    kola = product_named(runner, "Kola")
    ayran = product_named(runner, "Ayran")
    order = app.workflow.create_order(TableNo(121))
    kola_item = app.workflow.add_item_to_order(order.order_id, kola.product_id, 4)
    app.workflow.add_item_to_order(order.order_id, ayran.product_id, 2)

    assert app.workflow.decrement_item(kola_item.item_id, 1) == 1
    assert _stock(runner, "Kola") == 2
    assert app.workflow.decrement_item(kola_item.item_id, 10) == 3
    assert _stock(runner, "Kola") == 5
    assert [item.product_name for item in app.workflow.get_items_for_order(order.order_id)] == [
        "Ayran"
    ]

    assert app.workflow.clear_items(order.order_id) == 2
    assert _stock(runner, "Ayran") == 40
    assert app.workflow.get_items_for_order(order.order_id) == []


def test_untracked_products_never_run_out(
    app: PosApplication,
    runner: SqlAlchemyTransactionRunner,
) -> None:
    kebap = product_named(runner, "Kebap")
    order = app.workflow.create_order(TableNo(122))
    item = app.workflow.add_item_to_order(order.order_id, kebap.product_id, 500)
    assert item.quantity == 500
    assert _stock(runner, "Kebap") is None


def test_missing_product_and_item_are_not_found(app: PosApplication) -> None:
    order = app.workflow.create_order(TableNo(123))
    with pytest.raises(NotFoundError):
        app.workflow.add_item_to_order(order.order_id, ProductId(999_999), 1)
    with pytest.raises(NotFoundError):
        app.workflow.decrement_item(OrderItemId(999_999), 1)


def test_stock_changes_notify_product_observers(
    app: PosApplication,
    runner: SqlAlchemyTransactionRunner,
) -> None:
    received: list[tuple[int, ...]] = []
    app.bus.subscribe(PRODUCTS_CHANGED, lambda event: received.append(event.product_ids))
    baklava = product_named(runner, "Baklava")
    order = app.workflow.create_order(TableNo(124))

    app.workflow.add_item_to_order(order.order_id, baklava.product_id, 2)
    assert app.bus.flush()

    assert received == [(baklava.product_id,)]


def test_concurrent_orders_never_oversell(
    app: PosApplication,
    runner: SqlAlchemyTransactionRunner,
) -> None:
    kola = product_named(runner, "Kola")
    orders = [app.workflow.create_order(TableNo(table_no)) for table_no in (125, 126)]

    def take(order_id: int) -> str:
        try:
            app.workflow.add_item_to_order(order_id, kola.product_id, 3)  # type: ignore[arg-type]
            return "ok"
        except InsufficientStockError:
            return "insufficient"
        except PersistenceError:
            return "busy"

    with concurrent.futures.ThreadPoolExecutor(max_workers=2) as executor:
        results = list(executor.map(take, [order.order_id for order in orders]))

    assert results.count("ok") == 1
    sold = sum(
        item.quantity
        for order in orders
        for item in app.workflow.get_items_for_order(order.order_id)
    )
    assert sold == 3
    assert _stock(runner, "Kola") == 2

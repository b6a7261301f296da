from __future__ import annotations

import sys
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[3] / "src"))

from rpos.application.state.table_state import MutationOutcome, TableStateContainer
from rpos.domain.common.errors import ConflictError, UnknownTableError, ValidationError
from rpos.domain.common.ids import OrderId, TableNo
from rpos.domain.common.money import ZERO, Money
from rpos.domain.order.entities import PaymentMethod
from rpos.domain.order.events import TABLE_CHANGED, SalesChanged, TableChanged
from rpos.domain.reporting.records import SaleRecord
from rpos.domain.table.entities import AreaDefinition, Table, build_layout
from rpos.domain.table.live_order import Actor, TableOrder, TableOrderStatus

NOW = datetime(2026, 10, 18, 19, 45, tzinfo=timezone.utc)


class FakeSubscription:
    def unsubscribe(self) -> None:
        return None


class FakeBus:
    def __init__(self) -> None:
        self.events: list[Any] = []
        self.subscribed: list[str] = []

    def publish(self, event: Any) -> None:
        self.events.append(event)

    def subscribe(self, topic: str, callback: Callable[[Any], None]) -> FakeSubscription:
        self.subscribed.append(topic)
        return FakeSubscription()


class FakeSaleRecorder:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.calls: list[tuple[Table, TableOrder, PaymentMethod, Actor]] = []

    def record(
        self, table: Table, order: TableOrder, method: PaymentMethod, actor: Actor
    ) -> SaleRecord:
        self.calls.append((table, order, method, actor))
        if self.fail:
            raise RuntimeError("database unavailable")
        return SaleRecord(
            table_no=table.table_no,
            building=table.building,
            section=table.section,
            total=order.total,
            method=method,
            performed_by=actor.display_name,
            timestamp=NOW,
            order_id=OrderId(len(self.calls)),
        )


def _container(
    recorder: FakeSaleRecorder | None = None,
    bus: FakeBus | None = None,
) -> TableStateContainer:
    return TableStateContainer(
        build_layout(),
        publisher=bus or FakeBus(),
        sale_recorder=recorder,
        clock=lambda: NOW,
    )


def test_kebap_sale_on_table_101_clears_table_and_reports_total() -> None:
    bus = FakeBus()
    recorder = FakeSaleRecorder()
    container = _container(recorder, bus)

    result = container.add_item(101, "Kebap", "50.00", 3, "Ayşe")
    assert result.outcome == MutationOutcome.APPLIED
    assert container.table_total(101) == Money.of("150.00")
    assert container.table_status(101) == TableOrderStatus.ORDERED

    sale = container.record_sale(101, "CASH", "Ayşe")

    assert sale is not None
    assert sale.total == Money.of("150.00")
    assert sale.method == PaymentMethod.CASH
    assert sale.building == "Building 1"
    assert sale.section == "Floor 1"
    assert sale.performed_by == "Ayşe"
    assert container.table_status(101) == TableOrderStatus.EMPTY
    assert container.table_total(101) == ZERO
    assert container.snapshot(101).history[0].message == "sale recorded 150.00 (CASH)"

    recorded_order = recorder.calls[0][1]
    assert recorded_order.lines[0].quantity == 3

    table_events = [event for event in bus.events if isinstance(event, TableChanged)]
    sale_events = [event for event in bus.events if isinstance(event, SalesChanged)]
    assert [event.status for event in table_events] == [
        TableOrderStatus.ORDERED,
        TableOrderStatus.EMPTY,
    ]
    assert sale_events[0].sale == sale


def test_record_sale_on_empty_table_is_a_noop() -> None:
    recorder = FakeSaleRecorder()
    container = _container(recorder)

    assert container.record_sale(102, PaymentMethod.CREDIT_CARD) is None
    assert recorder.calls == []


def test_failed_sale_leaves_live_order_untouched() -> None:
    bus = FakeBus()
    container = _container(FakeSaleRecorder(fail=True), bus)
    container.add_item(103, "Kebap", "50.00", 2, "Ayşe")
    before = container.snapshot(103)
    published = len(bus.events)

    with pytest.raises(RuntimeError):
        container.record_sale(103, "CASH", "Ayşe")

    assert container.snapshot(103) == before
    assert len(bus.events) == published


def test_record_sale_requires_recorder() -> None:
    container = _container()
    container.add_item(104, "Tea", "1.00", 1)
    with pytest.raises(ConflictError):
        container.record_sale(104, "CASH")


def test_mutation_outcomes_for_missing_lines_and_served_orders() -> None:
    bus = FakeBus()
    container = _container(bus=bus)

    assert container.decrease_item(105, "Kebap", 1).outcome == MutationOutcome.NOT_FOUND
    assert container.remove_item(105, "Kebap").outcome == MutationOutcome.NOT_FOUND
    assert container.mark_served(105).outcome == MutationOutcome.NOOP
    assert bus.events == []

    container.add_item(105, "Kebap", "50.00", 2)
    served = container.mark_served(105, "Mehmet")
    assert served.applied
    assert served.order.status == TableOrderStatus.SERVED
    assert container.mark_served(105).outcome == MutationOutcome.NOOP

    removed = container.remove_item(105, "kebap")
    assert removed.order.status == TableOrderStatus.EMPTY
    assert removed.order.history[0].message == "cleared"


def test_clear_table_empties_lines_and_logs_actor() -> None:
    container = _container()
    container.add_item(106, "Ayran", "3.00", 4, Actor.named("Ayşe"))
    result = container.clear_table(106, "Mehmet")

    assert result.order.is_empty
    assert result.order.history[0].actor == "Mehmet"
    assert result.order.history[0].message == "cleared"


def test_invalid_input_is_rejected_before_state_changes() -> None:
    container = _container()
    with pytest.raises(UnknownTableError):
        container.add_item(999, "Kebap", "50.00", 1)
    with pytest.raises(ValidationError):
        container.add_item(101, "Kebap", "50.00", 0)
    with pytest.raises(ValidationError):
        container.add_item(101, "", "50.00", 1)
    with pytest.raises(ValidationError):
        container.add_item(101, "Kebap", "-1", 1)
    assert container.table_total(101) == ZERO


def test_unknown_payment_method_is_rejected_without_recording() -> None:
    recorder = FakeSaleRecorder()
    container = _container(recorder)
    container.add_item(101, "Kebap", "50.00", 1)

    with pytest.raises(ValidationError):
        container.record_sale(101, "barter")

    assert recorder.calls == []
    assert container.table_total(101) == Money.of("50.00")


def test_unknown_table_is_a_validation_and_not_found_error() -> None:
    container = _container()
    with pytest.raises(ValidationError):
        container.snapshot(42)
    with pytest.raises(LookupError):
        container.table(42)


def test_concurrent_adds_on_same_table_are_not_lost() -> None:
    container = _container()
    workers = 8
    adds_per_worker = 50

    def work() -> None:
        for _ in range(adds_per_worker):
            container.add_item(201, "Tea", "1.00", 1)

    threads = [threading.Thread(target=work) for _ in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    line = container.snapshot(201).find_line("Tea")
    assert line is not None
    assert line.quantity == workers * adds_per_worker
    assert container.table_total(201) == Money.of(workers * adds_per_worker)


def test_snapshots_never_observe_half_recorded_sale() -> None:
    release = threading.Event()
    entered = threading.Event()

    class BlockingRecorder(FakeSaleRecorder):
        def record(
            self, table: Table, order: TableOrder, method: PaymentMethod, actor: Actor
        ) -> SaleRecord:
            entered.set()
            release.wait(5)
            return super().record(table, order, method, actor)

    container = _container(BlockingRecorder())
    container.add_item(301, "Kebap", "50.00", 3)

    sale_thread = threading.Thread(target=lambda: container.record_sale(301, "CASH"))
    sale_thread.start()
    assert entered.wait(5)

    observed: list[TableOrder] = []
    reader = threading.Thread(target=lambda: observed.append(container.snapshot(301)))
    reader.start()
    reader.join(0.2)
    assert reader.is_alive()

    release.set()
    sale_thread.join(5)
    reader.join(5)

    assert observed[0].is_empty
    assert observed[0].history[0].message.startswith("sale recorded")


def test_other_tables_stay_available_during_a_sale() -> None:
    release = threading.Event()
    entered = threading.Event()

    class BlockingRecorder(FakeSaleRecorder):
        def record(
            self, table: Table, order: TableOrder, method: PaymentMethod, actor: Actor
        ) -> SaleRecord:
            entered.set()
            release.wait(5)
            return super().record(table, order, method, actor)

    container = _container(BlockingRecorder())
    container.add_item(302, "Kebap", "50.00", 1)
    sale_thread = threading.Thread(target=lambda: container.record_sale(302, "CASH"))
    sale_thread.start()
    assert entered.wait(5)

    result = container.add_item(303, "Tea", "1.00", 1)
    assert result.applied

    release.set()
    sale_thread.join(5)


def test_subscribe_registers_for_table_changes() -> None:
    bus = FakeBus()
    container = _container(bus=bus)
    container.subscribe(lambda event: None)
    assert bus.subscribed == [TABLE_CHANGED]


def test_container_requires_tables() -> None:
    with pytest.raises(ValidationError):
        TableStateContainer([], publisher=FakeBus())
    small = TableStateContainer(
        build_layout([AreaDefinition("Main", "Hall", 1, 2)]),
        publisher=FakeBus(),
    )
    assert [table.table_no for table in small.tables()] == [TableNo(1), TableNo(2)]
    assert set(small.snapshots()) == {1, 2}

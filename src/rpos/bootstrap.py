from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from typing import Callable, Iterable

from sqlalchemy.engine import Engine

from rpos.application.ports.repositories import UnitOfWork
from rpos.application.state.table_state import TableStateContainer
from rpos.application.use_cases.list_tables import GetTableOrder, ListTables
from rpos.application.use_cases.order_workflow import OrderWorkflow
from rpos.application.use_cases.record_sale import RecordSale
from rpos.application.use_cases.reporting import ReportingQueries
from rpos.domain.table.entities import DEFAULT_AREAS, AreaDefinition, Table, build_layout
from rpos.infrastructure.db.schema_compat import SchemaCapabilities
from rpos.infrastructure.db.session import get_engine
from rpos.infrastructure.db.unit_of_work import SqlAlchemyTransactionRunner
from rpos.infrastructure.messaging.event_bus import InProcessEventBus
from rpos.infrastructure.observability.logging_config import configure_logging
from rpos.infrastructure.observability.otel import configure_otel

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PosApplication:
    bus: InProcessEventBus
    runner: SqlAlchemyTransactionRunner
    workflow: OrderWorkflow
    tables: TableStateContainer
    reporting: ReportingQueries
    list_tables: ListTables
    get_table_order: GetTableOrder

    def close(self) -> None:
        self.bus.close()
        logger.info("application_closed")


def build_application(
    engine: Engine | None = None,
    areas: Iterable[AreaDefinition] = DEFAULT_AREAS,
    *,
    schema: SchemaCapabilities | None = None,
    clock: Callable[[], datetime] = _utcnow,
    tz: tzinfo = timezone.utc,
    register_tables: bool = True,
    observability: bool = False,
) -> PosApplication:
    if observability:
        configure_logging()
        configure_otel()

    layout = build_layout(areas)
    bus = InProcessEventBus()
    runner = SqlAlchemyTransactionRunner(engine or get_engine(), schema)
    if register_tables:
        _register_tables(runner, layout)

    workflow = OrderWorkflow(runner, publisher=bus, clock=clock)
    container = TableStateContainer(
        layout,
        publisher=bus,
        sale_recorder=RecordSale(runner, workflow, clock=clock),
        clock=clock,
    )
    reporting = ReportingQueries(runner, publisher=bus, tz=tz, clock=clock)

    logger.info("application_started", extra={"quantity": len(layout)})
    return PosApplication(
        bus=bus,
        runner=runner,
        workflow=workflow,
        tables=container,
        reporting=reporting,
        list_tables=ListTables(container),
        get_table_order=GetTableOrder(container),
    )


def _register_tables(runner: SqlAlchemyTransactionRunner, layout: tuple[Table, ...]) -> None:
    def work(uow: UnitOfWork) -> int:
        for table in layout:
            uow.tables.ensure(table)
        return len(layout)

    runner.run(work, operation="register_tables")

from __future__ import annotations

import logging
from typing import Callable, TypeVar

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from rpos.application.ports.repositories import TransactionRunner, UnitOfWork
from rpos.infrastructure.db.repositories.expense_repo import SqlAlchemyExpenseRepository
from rpos.infrastructure.db.repositories.order_log_repo import SqlAlchemyOrderLogRepository
from rpos.infrastructure.db.repositories.order_repo import (
    SqlAlchemyOrderItemRepository,
    SqlAlchemyOrderRepository,
    SqlAlchemyPaymentRepository,
)
from rpos.infrastructure.db.repositories.product_repo import SqlAlchemyProductRepository
from rpos.infrastructure.db.repositories.sales_repo import SqlAlchemySalesQueryRepository
from rpos.infrastructure.db.repositories.table_repo import SqlAlchemyTableRepository
from rpos.infrastructure.db.schema_compat import SchemaCapabilities, SchemaDowngraded
from rpos.infrastructure.db.session import get_engine, translate_error

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_SCHEMA_RETRIES = 3


class SqlAlchemyUnitOfWork(UnitOfWork):
    def __init__(self, session: Session, schema: SchemaCapabilities) -> None:
        self.session = session
        self.tables = SqlAlchemyTableRepository(session, schema)
        self.products = SqlAlchemyProductRepository(session)
        self.orders = SqlAlchemyOrderRepository(session, schema)
        self.order_items = SqlAlchemyOrderItemRepository(session)
        self.payments = SqlAlchemyPaymentRepository(session)
        self.expenses = SqlAlchemyExpenseRepository(session, schema)
        self.order_logs = SqlAlchemyOrderLogRepository(session, schema)
        self.sales = SqlAlchemySalesQueryRepository(session)


class SqlAlchemyTransactionRunner(TransactionRunner):
    def __init__(
        self,
        engine: Engine | None = None,
        schema: SchemaCapabilities | None = None,
    ) -> None:
        self._engine = engine or get_engine()
        self.schema = schema or SchemaCapabilities()

    @property
    def engine(self) -> Engine:
        return self._engine

    def run(self, work: Callable[[UnitOfWork], T], *, operation: str) -> T:
        attempt = 1
        while True:
            try:
                return self._run_once(work, operation)
            except SchemaDowngraded as exc:
                if attempt >= MAX_SCHEMA_RETRIES:
                    raise translate_error(SQLAlchemyError(str(exc)), operation) from exc
                logger.info(
                    "transaction_retry_after_schema_downgrade",
                    extra={"operation": operation, "feature": exc.feature, "attempt": attempt},
                )
                attempt += 1

    def _run_once(self, work: Callable[[UnitOfWork], T], operation: str) -> T:
        try:
            with Session(self._engine, expire_on_commit=False) as session:
                with session.begin():
                    return work(SqlAlchemyUnitOfWork(session, self.schema))
        except SQLAlchemyError as exc:
            error = translate_error(exc, operation)
            logger.warning(
                "transaction_rolled_back",
                extra={
                    "operation": operation,
                    "error": exc.__class__.__name__,
                    "retryable": error.retryable,
                },
            )
            raise error from exc

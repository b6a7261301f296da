from __future__ import annotations

from sqlalchemy import insert, select
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session

from rpos.application.ports.repositories import OrderLogRepository
from rpos.domain.common.ids import OrderId, TableNo
from rpos.domain.table.live_order import OrderLogEntry
from rpos.infrastructure.db.models.expense import OrderLogModel
from rpos.infrastructure.db.repositories.conversions import as_utc
from rpos.infrastructure.db.schema_compat import (
    SchemaCapabilities,
    SchemaDowngraded,
    is_missing_schema_object,
)

_ORDER_LOGS = OrderLogModel.__table__


class SqlAlchemyOrderLogRepository(OrderLogRepository):
    def __init__(self, session: Session, schema: SchemaCapabilities) -> None:
        self._session = session
        self._feature = schema.order_log

    def append(self, order_id: OrderId | None, table_no: TableNo, entry: OrderLogEntry) -> bool:
        if not self._feature.is_supported(self._session.connection()):
            return False

        statement = insert(_ORDER_LOGS).values(
            order_id=int(order_id) if order_id is not None else None,
            table_no=int(table_no),
            message=entry.to_storage(),
            created_at=as_utc(entry.timestamp),
        )
        try:
            self._session.execute(statement)
        except DBAPIError as exc:
            self._downgrade_if_missing(exc)
            raise
        return True

    def list_for_order(self, order_id: OrderId) -> list[OrderLogEntry]:
        if not self._feature.is_supported(self._session.connection()):
            return []

        statement = (
            select(_ORDER_LOGS.c.message, _ORDER_LOGS.c.created_at)
            .where(_ORDER_LOGS.c.order_id == int(order_id))
            .order_by(_ORDER_LOGS.c.created_at.desc(), _ORDER_LOGS.c.id.desc())
        )
        try:
            rows = self._session.execute(statement).all()
        except DBAPIError as exc:
            self._downgrade_if_missing(exc)
            raise
        return [OrderLogEntry.parse(as_utc(created_at), message) for message, created_at in rows]

    def _downgrade_if_missing(self, exc: DBAPIError) -> None:
        if is_missing_schema_object(exc):
            self._feature.downgrade(exc.__class__.__name__)
            raise SchemaDowngraded(self._feature.name) from exc

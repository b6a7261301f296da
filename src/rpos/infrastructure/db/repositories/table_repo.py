from __future__ import annotations

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from rpos.application.ports.repositories import TableRepository
from rpos.domain.common.errors import NotFoundError
from rpos.domain.common.ids import TableNo
from rpos.domain.table.entities import Table, TableStatus
from rpos.infrastructure.db.models.table import DiningTableModel
from rpos.infrastructure.db.schema_compat import SchemaCapabilities


class SqlAlchemyTableRepository(TableRepository):
    def __init__(self, session: Session, schema: SchemaCapabilities) -> None:
        self._session = session
        self._schema = schema

    def get(self, table_no: TableNo) -> Table | None:
        model = self._session.get(DiningTableModel, int(table_no), populate_existing=True)
        if model is None:
            return None
        return self._to_domain(model)

    def list_all(self) -> list[Table]:
        statement = select(DiningTableModel).order_by(DiningTableModel.table_no)
        models = self._session.execute(
            statement.execution_options(populate_existing=True)
        ).scalars()
        return [self._to_domain(model) for model in models]

    def ensure(self, table: Table) -> Table:
        existing = self.get(table.table_no)
        if existing is not None:
            return existing

        stored = self._schema.table_status.to_storage(
            table.status.value, self._session.connection()
        )
        model = DiningTableModel(
            table_no=int(table.table_no),
            building=table.building,
            section=table.section,
            status=stored,
        )
        self._session.add(model)
        self._session.flush()
        return self._to_domain(model)

    def update_status(self, table_no: TableNo, status: TableStatus) -> TableStatus:
        stored = self._schema.table_status.to_storage(status.value, self._session.connection())
        statement = (
            update(DiningTableModel)
            .where(DiningTableModel.table_no == int(table_no))
            .values(status=stored)
            .execution_options(synchronize_session=False)
        )
        result = self._session.execute(statement)
        if result.rowcount == 0:
            raise NotFoundError(f"table {table_no} not found", table_no=int(table_no))
        return TableStatus(stored)

    def _to_domain(self, model: DiningTableModel) -> Table:
        return Table(
            table_no=TableNo(model.table_no),
            building=model.building,
            section=model.section,
            status=TableStatus(model.status),
        )

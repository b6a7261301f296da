from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import delete, func, insert, select
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session

from rpos.application.ports.repositories import ExpenseData, ExpenseRepository
from rpos.domain.common.ids import ExpenseId, UserId
from rpos.domain.common.money import Money
from rpos.infrastructure.db.models.expense import ExpenseModel
from rpos.infrastructure.db.repositories.conversions import as_utc, money_from_cents
from rpos.infrastructure.db.schema_compat import (
    OptionalFeature,
    SchemaCapabilities,
    SchemaDowngraded,
    is_missing_schema_object,
)

_EXPENSES = ExpenseModel.__table__


class SqlAlchemyExpenseRepository(ExpenseRepository):
    def __init__(self, session: Session, schema: SchemaCapabilities) -> None:
        self._session = session
        self._schema = schema

    def add(
        self,
        amount: Money,
        description: str | None,
        expense_date: date,
        recorded_by: UserId | None,
        now: datetime,
    ) -> ExpenseId:
        connection = self._session.connection()
        values: dict[str, object] = {
            "amount_cents": amount.cents,
            "expense_date": expense_date,
            "created_at": as_utc(now),
        }
        used: dict[str, OptionalFeature] = {}
        if description and self._schema.expense_description.is_supported(connection):
            values["description"] = description
            used["description"] = self._schema.expense_description
        if recorded_by is not None and self._schema.expense_recorded_by.is_supported(connection):
            values["recorded_by"] = int(recorded_by)
            used["recorded_by"] = self._schema.expense_recorded_by

        try:
            result = self._session.execute(insert(_EXPENSES).values(**values))
        except DBAPIError as exc:
            _downgrade_missing(exc, used)
            raise
        return ExpenseId(result.inserted_primary_key[0])

    def delete(self, expense_id: ExpenseId) -> bool:
        statement = delete(_EXPENSES).where(_EXPENSES.c.id == int(expense_id))
        return self._session.execute(statement).rowcount > 0

    def list_between(self, start: date | None, end: date | None) -> list[ExpenseData]:
        connection = self._session.connection()
        columns = [
            _EXPENSES.c.id,
            _EXPENSES.c.amount_cents,
            _EXPENSES.c.expense_date,
            _EXPENSES.c.created_at,
        ]
        used: dict[str, OptionalFeature] = {}
        if self._schema.expense_description.is_supported(connection):
            columns.append(_EXPENSES.c.description)
            used["description"] = self._schema.expense_description
        if self._schema.expense_recorded_by.is_supported(connection):
            columns.append(_EXPENSES.c.recorded_by)
            used["recorded_by"] = self._schema.expense_recorded_by

        statement = select(*columns).order_by(_EXPENSES.c.expense_date, _EXPENSES.c.id)
        if start is not None:
            statement = statement.where(_EXPENSES.c.expense_date >= start)
        if end is not None:
            statement = statement.where(_EXPENSES.c.expense_date < end)
        try:
            rows = self._session.execute(statement).mappings().all()
        except DBAPIError as exc:
            _downgrade_missing(exc, used)
            raise

        return [
            ExpenseData(
                expense_id=ExpenseId(row["id"]),
                amount=money_from_cents(row["amount_cents"]),
                description=row.get("description"),
                recorded_by=(
                    UserId(row["recorded_by"]) if row.get("recorded_by") is not None else None
                ),
                expense_date=row["expense_date"],
                created_at=as_utc(row["created_at"]),
            )
            for row in rows
        ]

    def total_between(self, start: date, end: date) -> Money:
        statement = select(func.coalesce(func.sum(_EXPENSES.c.amount_cents), 0)).where(
            _EXPENSES.c.expense_date >= start,
            _EXPENSES.c.expense_date < end,
        )
        return money_from_cents(self._session.execute(statement).scalar_one())


def _downgrade_missing(exc: DBAPIError, used: dict[str, OptionalFeature]) -> None:
    if not used or not is_missing_schema_object(exc):
        return
    message = str(exc.orig).lower()
    named = [feature for column, feature in used.items() if column in message]
    for feature in named or list(used.values()):
        feature.downgrade(exc.__class__.__name__)
    raise SchemaDowngraded(", ".join(feature.name for feature in named or used.values())) from exc

from __future__ import annotations

import calendar
import logging
from collections import defaultdict
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from decimal import Decimal
from typing import Callable

from rpos.application.dto.responses import (
    DailySalesResponse,
    MonthlySalesReportResponse,
    ProfitSummaryResponse,
)
from rpos.application.mappers.table_mapper import to_money_response
from rpos.application.ports.publisher import EventPublisher
from rpos.application.ports.repositories import (
    ExpenseData,
    SaleRowData,
    TransactionRunner,
    UnitOfWork,
)
from rpos.domain.common.errors import NotFoundError, ValidationError
from rpos.domain.common.ids import ExpenseId, UserId
from rpos.domain.common.money import Money, round_amount
from rpos.domain.order.entities import PaymentMethod
from rpos.domain.order.events import ExpensesChanged
from rpos.domain.reporting.records import (
    DailySalesTotal,
    ExpenseRecord,
    ProductSalesRow,
    SaleRecord,
)
from rpos.domain.table.live_order import SYSTEM_ACTOR_NAME, Actor, resolve_actor

logger = logging.getLogger(__name__)

ActorNameResolver = Callable[[UserId | None], str]


def default_actor_name(user_id: UserId | None) -> str:
    if user_id is None:
        return SYSTEM_ACTOR_NAME
    return str(user_id)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def month_bounds(year: int, month: int) -> tuple[date, date]:
    if month < 1 or month > 12:
        raise ValidationError("month must be within 1..12", month=month)
    start = date(year, month, 1)
    end = date(year + 1, 1, 1) if month == 12 else date(year, month + 1, 1)
    return start, end


class ReportingQueries:
    def __init__(
        self,
        runner: TransactionRunner,
        publisher: EventPublisher | None = None,
        actor_names: ActorNameResolver = default_actor_name,
        tz: tzinfo = timezone.utc,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._runner = runner
        self._publisher = publisher
        self._actor_names = actor_names
        self._tz = tz
        self._clock = clock

    def sales_on(self, day: date) -> list[SaleRecord]:
        start, end = self._day_range(day, day + timedelta(days=1))
        return self._sales_between(start, end)

    def sales(self) -> list[SaleRecord]:
        return self._sales_between(None, None)

    def sales_total(self, day: date) -> Money:
        start, end = self._day_range(day, day + timedelta(days=1))
        return self._sales_total_between(start, end)

    def sales_total_for_month(self, year: int, month: int) -> Money:
        start, end = self._day_range(*month_bounds(year, month))
        return self._sales_total_between(start, end)

    def expenses_on(self, day: date) -> list[ExpenseRecord]:
        return self.expenses(day, day + timedelta(days=1))

    def expenses(self, start: date | None = None, end: date | None = None) -> list[ExpenseRecord]:
        rows = self._runner.run(
            lambda uow: uow.expenses.list_between(start, end),
            operation="list_expenses",
        )
        return [self._to_expense_record(row) for row in rows]

    def expense_total(self, day: date) -> Money:
        return self._expense_total_between(day, day + timedelta(days=1))

    def expense_total_for_month(self, year: int, month: int) -> Money:
        return self._expense_total_between(*month_bounds(year, month))

    def net_profit(self, day: date) -> Decimal:
        return _net(self.sales_total(day), self.expense_total(day))

    def net_profit_for_month(self, year: int, month: int) -> Decimal:
        return _net(
            self.sales_total_for_month(year, month),
            self.expense_total_for_month(year, month),
        )

    def profit_summary(self, start: date, end: date) -> ProfitSummaryResponse:
        if end <= start:
            raise ValidationError("end must be after start", start=str(start), end=str(end))
        sales = self._sales_total_between(*self._day_range(start, end))
        expenses = self._expense_total_between(start, end)
        profit = _net(sales, expenses)
        return ProfitSummaryResponse(
            periodStart=start,
            periodEnd=end,
            sales=to_money_response(sales),
            expenses=to_money_response(expenses),
            netProfitCents=int(profit * 100),
            netProfit=f"{profit:.2f}",
        )

    def daily_sales(self, year: int, month: int) -> list[DailySalesTotal]:
        first_day, next_month = month_bounds(year, month)
        start, end = self._day_range(first_day, next_month)
        rows = self._runner.run(
            lambda uow: uow.sales.payments_between(start, end),
            operation="daily_sales",
        )

        amounts: dict[date, list[Money]] = defaultdict(list)
        for row in rows:
            amounts[row.paid_at.astimezone(self._tz).date()].append(row.amount)

        days_in_month = calendar.monthrange(year, month)[1]
        return [
            DailySalesTotal(
                day=day,
                total=Money.total(amounts.get(day, ())),
                sale_count=len(amounts.get(day, ())),
            )
            for day in (first_day + timedelta(days=offset) for offset in range(days_in_month))
        ]

    def monthly_sales_report(self, year: int, month: int) -> MonthlySalesReportResponse:
        days = self.daily_sales(year, month)
        return MonthlySalesReportResponse(
            year=year,
            month=month,
            days=[
                DailySalesResponse(
                    day=item.day,
                    saleCount=item.sale_count,
                    total=to_money_response(item.total),
                )
                for item in days
            ],
            saleCount=sum(item.sale_count for item in days),
            total=to_money_response(Money.total(item.total for item in days)),
        )

    def product_sales_before(self, threshold: datetime) -> list[ProductSalesRow]:
        if threshold.tzinfo is None:
            threshold = threshold.replace(tzinfo=self._tz)
        return self._runner.run(
            lambda uow: uow.sales.product_sales_before(threshold),
            operation="product_sales_before",
        )

    def add_expense(
        self,
        amount: Money | Decimal | int | str,
        description: str | None = None,
        expense_date: date | None = None,
        actor: Actor | str | None = None,
    ) -> ExpenseId:
        value = amount if isinstance(amount, Money) else Money.of(amount)
        note = description.strip() if description else None
        recorded_by = resolve_actor(actor).user_id
        now = self._clock()
        day = expense_date or now.astimezone(self._tz).date()

        expense_id = self._runner.run(
            lambda uow: uow.expenses.add(value, note, day, recorded_by, now),
            operation="add_expense",
        )
        logger.info(
            "expense_added",
            extra={"expense_id": expense_id, "total": str(value), "expense_date": str(day)},
        )
        self._notify_expenses(expense_id, now)
        return expense_id

    def delete_expense(self, expense_id: ExpenseId) -> None:
        if expense_id <= 0:
            raise ValidationError("expense id must be > 0", expense_id=expense_id)

        def work(uow: UnitOfWork) -> None:
            if not uow.expenses.delete(expense_id):
                raise NotFoundError(f"expense {expense_id} not found", expense_id=expense_id)

        self._runner.run(work, operation="delete_expense")
        logger.info("expense_deleted", extra={"expense_id": expense_id})
        self._notify_expenses(expense_id, self._clock())

    def _sales_between(self, start: datetime | None, end: datetime | None) -> list[SaleRecord]:
        rows = self._runner.run(
            lambda uow: uow.sales.payments_between(start, end),
            operation="list_sales",
        )
        return [self._to_sale_record(row) for row in rows]

    def _sales_total_between(self, start: datetime, end: datetime) -> Money:
        return self._runner.run(
            lambda uow: uow.sales.payment_total_between(start, end),
            operation="sales_total",
        )

    def _expense_total_between(self, start: date, end: date) -> Money:
        return self._runner.run(
            lambda uow: uow.expenses.total_between(start, end),
            operation="expense_total",
        )

    def _day_range(self, start: date, end: date) -> tuple[datetime, datetime]:
        return (
            datetime.combine(start, time.min, tzinfo=self._tz),
            datetime.combine(end, time.min, tzinfo=self._tz),
        )

    def _to_sale_record(self, row: SaleRowData) -> SaleRecord:
        return SaleRecord(
            table_no=row.table_no,
            building=row.building,
            section=row.section,
            total=row.amount,
            method=row.method or PaymentMethod.CASH,
            performed_by=self._actor_names(row.cashier_id),
            timestamp=row.paid_at,
            order_id=row.order_id,
        )

    def _to_expense_record(self, row: ExpenseData) -> ExpenseRecord:
        return ExpenseRecord(
            expense_id=row.expense_id,
            amount=row.amount,
            description=row.description or "",
            performed_by=self._actor_names(row.recorded_by),
            expense_date=row.expense_date,
            created_at=row.created_at,
        )

    def _notify_expenses(self, expense_id: ExpenseId, now: datetime) -> None:
        if self._publisher is None:
            return
        try:
            self._publisher.publish(ExpensesChanged(expense_id=expense_id, occurred_at=now))
        except Exception:
            logger.exception("event_publish_failed", extra={"topic": "expenses_changed"})


def _net(sales: Money, expenses: Money) -> Decimal:
    return round_amount(sales.amount - expenses.amount)

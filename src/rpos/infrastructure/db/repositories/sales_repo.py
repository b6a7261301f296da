from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from rpos.application.ports.repositories import SaleRowData, SalesQueryRepository
from rpos.domain.common.ids import OrderId, TableNo, UserId
from rpos.domain.common.money import Money
from rpos.domain.order.entities import PaymentMethod
from rpos.domain.product.entities import DEFAULT_CATEGORY_NAME
from rpos.domain.reporting.records import ProductSalesRow
from rpos.infrastructure.db.models.order import OrderItemModel, OrderModel, PaymentModel
from rpos.infrastructure.db.models.product import CategoryModel, ProductModel
from rpos.infrastructure.db.models.table import DiningTableModel
from rpos.infrastructure.db.repositories.conversions import as_utc, money_from_cents


class SqlAlchemySalesQueryRepository(SalesQueryRepository):
    def __init__(self, session: Session) -> None:
        self._session = session

    def payments_between(
        self,
        start: datetime | None,
        end: datetime | None,
    ) -> list[SaleRowData]:
        statement = (
            select(
                PaymentModel.order_id,
                OrderModel.table_no,
                DiningTableModel.building,
                DiningTableModel.section,
                PaymentModel.amount_cents,
                PaymentModel.method,
                PaymentModel.cashier_id,
                PaymentModel.paid_at,
            )
            .join(OrderModel, OrderModel.id == PaymentModel.order_id)
            .join(DiningTableModel, DiningTableModel.table_no == OrderModel.table_no, isouter=True)
            .order_by(PaymentModel.paid_at, PaymentModel.id)
        )
        if start is not None:
            statement = statement.where(PaymentModel.paid_at >= as_utc(start))
        if end is not None:
            statement = statement.where(PaymentModel.paid_at < as_utc(end))
        return [
            SaleRowData(
                order_id=OrderId(row.order_id),
                table_no=TableNo(row.table_no),
                building=row.building or "",
                section=row.section or "",
                amount=money_from_cents(row.amount_cents),
                method=PaymentMethod.from_database_value(row.method),
                cashier_id=UserId(row.cashier_id) if row.cashier_id is not None else None,
                paid_at=as_utc(row.paid_at),
            )
            for row in self._session.execute(statement)
        ]

    def payment_total_between(self, start: datetime, end: datetime) -> Money:
        statement = select(func.coalesce(func.sum(PaymentModel.amount_cents), 0)).where(
            PaymentModel.paid_at >= as_utc(start),
            PaymentModel.paid_at < as_utc(end),
        )
        return money_from_cents(self._session.execute(statement).scalar_one())

    def product_sales_before(self, threshold: datetime) -> list[ProductSalesRow]:
        statement = (
            select(
                PaymentModel.paid_at,
                func.coalesce(ProductModel.name, OrderItemModel.product_name).label("product_name"),
                func.coalesce(CategoryModel.name, DEFAULT_CATEGORY_NAME).label("category_name"),
                OrderItemModel.quantity,
                PaymentModel.method,
                OrderItemModel.line_total_cents,
            )
            .join(OrderModel, OrderModel.id == PaymentModel.order_id)
            .join(OrderItemModel, OrderItemModel.order_id == OrderModel.id)
            .join(ProductModel, ProductModel.id == OrderItemModel.product_id, isouter=True)
            .join(CategoryModel, CategoryModel.id == ProductModel.category_id, isouter=True)
            .where(PaymentModel.paid_at < as_utc(threshold))
            .order_by(PaymentModel.paid_at, OrderItemModel.id)
        )
        return [
            ProductSalesRow(
                sold_at=as_utc(row.paid_at),
                product_name=row.product_name,
                category_name=row.category_name,
                quantity=row.quantity,
                method=PaymentMethod.from_database_value(row.method),
                amount=money_from_cents(row.line_total_cents),
            )
            for row in self._session.execute(statement)
        ]

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from rpos.application.ports.repositories import (
    OrderItemRepository,
    OrderRepository,
    PaymentRepository,
)
from rpos.domain.common.errors import NotFoundError
from rpos.domain.common.ids import OrderId, OrderItemId, PaymentId, ProductId, TableNo, UserId
from rpos.domain.common.money import Money
from rpos.domain.order.entities import (
    LineAmounts,
    Order,
    OrderItem,
    OrderStatus,
    OrderTotals,
    Payment,
    PaymentMethod,
    compute_inclusive_line_amounts,
    compute_line_amounts,
    net_unit_price,
)
from rpos.domain.product.entities import Product
from rpos.infrastructure.db.models.order import OrderItemModel, OrderModel, PaymentModel
from rpos.infrastructure.db.models.product import ProductModel
from rpos.infrastructure.db.repositories.conversions import (
    as_utc,
    money_from_cents,
    optional_utc,
    vat_rate_from_bp,
)
from rpos.infrastructure.db.schema_compat import SchemaCapabilities

_TERMINAL_STATUSES = [OrderStatus.COMPLETED.value, OrderStatus.CANCELLED.value]


class SqlAlchemyOrderRepository(OrderRepository):
    def __init__(self, session: Session, schema: SchemaCapabilities) -> None:
        self._session = session
        self._schema = schema

    def add(
        self,
        table_no: TableNo,
        waiter_id: UserId | None,
        status: OrderStatus,
        now: datetime,
    ) -> Order:
        model = OrderModel(
            table_no=int(table_no),
            waiter_id=int(waiter_id) if waiter_id is not None else None,
            status=self._stored_status(status),
            subtotal_cents=0,
            tax_cents=0,
            discount_cents=0,
            total_cents=0,
            order_date=as_utc(now),
            closed_at=None,
        )
        self._session.add(model)
        self._session.flush()
        return self._to_domain(model)

    def get(self, order_id: OrderId) -> Order | None:
        model = self._session.get(OrderModel, int(order_id), populate_existing=True)
        if model is None:
            return None
        return self._to_domain(model)

    def find_open_by_table(self, table_no: TableNo) -> Order | None:
        statement = (
            select(OrderModel)
            .where(
                OrderModel.table_no == int(table_no),
                OrderModel.status.not_in(_TERMINAL_STATUSES),
            )
            .order_by(OrderModel.id.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        model = self._session.execute(statement).scalar_one_or_none()
        if model is None:
            return None
        return self._to_domain(model)

    def update_totals(self, order_id: OrderId, totals: OrderTotals) -> None:
        self._update(
            order_id,
            subtotal_cents=totals.subtotal.cents,
            tax_cents=totals.tax.cents,
            discount_cents=totals.discount.cents,
            total_cents=totals.total.cents,
        )

    def close(self, order_id: OrderId, now: datetime) -> bool:
        completed = self._stored_status(OrderStatus.COMPLETED)
        statement = (
            update(OrderModel)
            .where(OrderModel.id == int(order_id), OrderModel.status != completed)
            .values(status=completed, closed_at=as_utc(now))
            .execution_options(synchronize_session=False)
        )
        return self._session.execute(statement).rowcount == 1

    def update_status(self, order_id: OrderId, status: OrderStatus, now: datetime) -> OrderStatus:
        stored = OrderStatus(self._stored_status(status))
        if stored.is_terminal:
            self._update(order_id, status=stored.value, closed_at=as_utc(now))
        else:
            self._update(order_id, status=stored.value)
        return stored

    def reassign_table(self, order_id: OrderId, table_no: TableNo) -> None:
        self._update(order_id, table_no=int(table_no))

    def _update(self, order_id: OrderId, **values: object) -> None:
        statement = (
            update(OrderModel)
            .where(OrderModel.id == int(order_id))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if self._session.execute(statement).rowcount == 0:
            raise NotFoundError(f"order {order_id} not found", order_id=int(order_id))

    def _stored_status(self, status: OrderStatus) -> str:
        return self._schema.order_status.to_storage(status.value, self._session.connection())

    def _to_domain(self, model: OrderModel) -> Order:
        return Order(
            order_id=OrderId(model.id),
            table_no=TableNo(model.table_no),
            waiter_id=UserId(model.waiter_id) if model.waiter_id is not None else None,
            status=OrderStatus(model.status),
            totals=OrderTotals(
                subtotal=money_from_cents(model.subtotal_cents),
                tax=money_from_cents(model.tax_cents),
                discount=money_from_cents(model.discount_cents),
                total=money_from_cents(model.total_cents),
            ),
            order_date=as_utc(model.order_date),
            closed_at=optional_utc(model.closed_at),
        )


class SqlAlchemyOrderItemRepository(OrderItemRepository):
    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, item_id: OrderItemId) -> OrderItem | None:
        model = self._session.get(OrderItemModel, int(item_id), populate_existing=True)
        if model is None:
            return None
        return self._to_domain(model)

    def list_for_order(self, order_id: OrderId) -> list[OrderItem]:
        statement = (
            select(OrderItemModel)
            .where(OrderItemModel.order_id == int(order_id))
            .order_by(OrderItemModel.id)
            .execution_options(populate_existing=True)
        )
        return [self._to_domain(model) for model in self._session.execute(statement).scalars()]

    def add_or_increment(
        self,
        order_id: OrderId,
        product: Product,
        quantity: int,
        unit_price: Money | None = None,
        price_includes_vat: bool = False,
    ) -> OrderItem:
        statement = (
            select(OrderItemModel)
            .where(
                OrderItemModel.order_id == int(order_id),
                OrderItemModel.product_id == int(product.product_id),
            )
            .limit(1)
            .execution_options(populate_existing=True)
        )
        model = self._session.execute(statement).scalar_one_or_none()
        price = unit_price if unit_price is not None else product.unit_price
        if model is None:
            stored_price = net_unit_price(price, product.vat_rate) if price_includes_vat else price
            model = OrderItemModel(
                order_id=int(order_id),
                product_id=int(product.product_id),
                product_name=product.name,
                unit_price_cents=stored_price.cents,
                quantity=0,
            )
            self._session.add(model)
        elif price_includes_vat:
            price = money_from_cents(model.line_total_cents // model.quantity)

        new_quantity = model.quantity + quantity
        if price_includes_vat:
            self._apply_amounts(
                model,
                new_quantity,
                compute_inclusive_line_amounts(price, new_quantity, product.vat_rate),
            )
        else:
            self._apply_quantity(model, new_quantity, product.vat_rate)
        self._session.flush()
        return self._to_domain(model)

    def decrement_or_remove(self, item_id: OrderItemId, quantity: int) -> int:
        model = self._session.get(OrderItemModel, int(item_id), populate_existing=True)
        if model is None:
            raise NotFoundError(f"order item {item_id} not found", order_item_id=int(item_id))

        removed = min(quantity, model.quantity)
        remaining = model.quantity - removed
        if remaining <= 0:
            self._session.delete(model)
        else:
            vat_bp = self._session.execute(
                select(ProductModel.vat_rate_bp).where(ProductModel.id == model.product_id)
            ).scalar_one()
            self._apply_quantity(model, remaining, vat_rate_from_bp(vat_bp))
        self._session.flush()
        return removed

    def delete_for_order(self, order_id: OrderId) -> int:
        statement = (
            delete(OrderItemModel)
            .where(OrderItemModel.order_id == int(order_id))
            .execution_options(synchronize_session=False)
        )
        return self._session.execute(statement).rowcount

    def _apply_quantity(self, model: OrderItemModel, quantity: int, vat_rate: Decimal) -> None:
        amounts = compute_line_amounts(money_from_cents(model.unit_price_cents), quantity, vat_rate)
        self._apply_amounts(model, quantity, amounts)

    def _apply_amounts(self, model: OrderItemModel, quantity: int, amounts: LineAmounts) -> None:
        model.quantity = quantity
        model.net_cents = amounts.net.cents
        model.tax_cents = amounts.tax.cents
        model.line_total_cents = amounts.line_total.cents

    def _to_domain(self, model: OrderItemModel) -> OrderItem:
        return OrderItem(
            item_id=OrderItemId(model.id),
            order_id=OrderId(model.order_id),
            product_id=ProductId(model.product_id),
            product_name=model.product_name,
            quantity=model.quantity,
            unit_price=money_from_cents(model.unit_price_cents),
            net_amount=money_from_cents(model.net_cents),
            tax_amount=money_from_cents(model.tax_cents),
            line_total=money_from_cents(model.line_total_cents),
        )


class SqlAlchemyPaymentRepository(PaymentRepository):
    def __init__(self, session: Session) -> None:
        self._session = session

    def add(
        self,
        order_id: OrderId,
        cashier_id: UserId | None,
        amount: Money,
        method: PaymentMethod,
        now: datetime,
    ) -> Payment:
        model = PaymentModel(
            order_id=int(order_id),
            cashier_id=int(cashier_id) if cashier_id is not None else None,
            amount_cents=amount.cents,
            method=method.value,
            paid_at=as_utc(now),
        )
        self._session.add(model)
        self._session.flush()
        return self._to_domain(model)

    def list_for_order(self, order_id: OrderId) -> list[Payment]:
        statement = (
            select(PaymentModel)
            .where(PaymentModel.order_id == int(order_id))
            .order_by(PaymentModel.id)
        )
        return [self._to_domain(model) for model in self._session.execute(statement).scalars()]

    def _to_domain(self, model: PaymentModel) -> Payment:
        return Payment(
            payment_id=PaymentId(model.id),
            order_id=OrderId(model.order_id),
            cashier_id=UserId(model.cashier_id) if model.cashier_id is not None else None,
            amount=money_from_cents(model.amount_cents),
            method=PaymentMethod.from_database_value(model.method) or PaymentMethod.CASH,
            paid_at=as_utc(model.paid_at),
        )

from __future__ import annotations

from decimal import Decimal
from typing import Iterable, TypeVar

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from rpos.application.ports.repositories import ProductRepository
from rpos.domain.common.errors import NotFoundError
from rpos.domain.common.ids import CategoryId, ProductId
from rpos.domain.common.money import Money
from rpos.domain.order.entities import DEFAULT_VAT_RATE
from rpos.domain.product.entities import Category, Product
from rpos.infrastructure.db.models.product import CategoryModel, ProductModel
from rpos.infrastructure.db.repositories.conversions import (
    money_from_cents,
    vat_rate_from_bp,
    vat_rate_to_bp,
)

NamedModel = TypeVar("NamedModel", ProductModel, CategoryModel)


class SqlAlchemyProductRepository(ProductRepository):
    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, product_id: ProductId) -> Product | None:
        model = self._session.get(ProductModel, int(product_id), populate_existing=True)
        if model is None:
            return None
        return self._to_domain(model)

    def find_by_name(self, name: str) -> Product | None:
        statement = (
            select(ProductModel)
            .order_by(ProductModel.active.desc(), ProductModel.id)
            .execution_options(populate_existing=True)
        )
        model = _first_named(self._session.execute(statement).scalars(), name)
        if model is None:
            return None
        return self._to_domain(model)

    def add(
        self,
        name: str,
        unit_price: Money,
        category_id: CategoryId | None,
        stock: int | None = None,
        vat_rate: Decimal | None = None,
    ) -> Product:
        product = Product(
            product_id=ProductId(0),
            name=name.strip(),
            unit_price=unit_price,
            category_id=category_id,
            stock=stock,
            vat_rate=DEFAULT_VAT_RATE if vat_rate is None else vat_rate,
        )
        model = ProductModel(
            name=product.name,
            unit_price_cents=product.unit_price.cents,
            vat_rate_bp=vat_rate_to_bp(product.vat_rate),
            stock=product.stock,
            category_id=int(category_id) if category_id is not None else None,
            active=True,
        )
        self._session.add(model)
        self._session.flush()
        return self._to_domain(model)

    def ensure_category(self, name: str) -> Category:
        statement = select(CategoryModel).order_by(CategoryModel.id)
        model = _first_named(self._session.execute(statement).scalars(), name)
        if model is None:
            model = CategoryModel(name=name.strip())
            self._session.add(model)
            self._session.flush()
        return Category(category_id=CategoryId(model.id), name=model.name)

    def take_stock(self, product_id: ProductId, quantity: int) -> bool:
        statement = (
            update(ProductModel)
            .where(
                ProductModel.id == int(product_id),
                or_(ProductModel.stock.is_(None), ProductModel.stock >= quantity),
            )
            .values(stock=ProductModel.stock - quantity)
            .execution_options(synchronize_session=False)
        )
        return self._session.execute(statement).rowcount == 1

    def return_stock(self, product_id: ProductId, quantity: int) -> None:
        statement = (
            update(ProductModel)
            .where(ProductModel.id == int(product_id))
            .values(stock=ProductModel.stock + quantity)
            .execution_options(synchronize_session=False)
        )
        if self._session.execute(statement).rowcount == 0:
            raise NotFoundError(f"product {product_id} not found", product_id=int(product_id))

    def _to_domain(self, model: ProductModel) -> Product:
        return Product(
            product_id=ProductId(model.id),
            name=model.name,
            unit_price=money_from_cents(model.unit_price_cents),
            category_id=CategoryId(model.category_id) if model.category_id is not None else None,
            stock=model.stock,
            vat_rate=vat_rate_from_bp(model.vat_rate_bp),
            active=bool(model.active),
        )


# SQLite lower() only folds ASCII, so names are compared in Python.
def _first_named(models: Iterable[NamedModel], name: str) -> NamedModel | None:
    key = name.strip().casefold()
    for model in models:
        if model.name.strip().casefold() == key:
            return model
    return None

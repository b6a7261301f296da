from __future__ import annotations

from sqlalchemy import MetaData
from sqlalchemy.engine import Engine

from rpos.infrastructure.db.models.expense import ExpenseModel, OrderLogModel
from rpos.infrastructure.db.models.order import OrderItemModel, OrderModel, PaymentModel
from rpos.infrastructure.db.models.product import Base, CategoryModel, ProductModel
from rpos.infrastructure.db.models.table import DiningTableModel

ALL_MODELS = (
    CategoryModel,
    ProductModel,
    DiningTableModel,
    OrderModel,
    OrderItemModel,
    PaymentModel,
    ExpenseModel,
    OrderLogModel,
)

metadata: MetaData = Base.metadata


def create_schema(engine: Engine) -> None:
    metadata.create_all(engine)

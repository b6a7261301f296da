from __future__ import annotations

from decimal import Decimal

from sqlalchemy import inspect

from rpos.application.ports.repositories import UnitOfWork
from rpos.domain.common.money import Money
from rpos.domain.product.entities import DEFAULT_CATEGORY_NAME
from rpos.domain.table.entities import DEFAULT_AREAS, build_layout
from rpos.infrastructure.db.session import get_engine
from rpos.infrastructure.db.unit_of_work import SqlAlchemyTransactionRunner

SAMPLE_PRODUCTS: tuple[tuple[str, str, str, int | None], ...] = (
    ("Kebap", "Main Dishes", "41.67", None),
    ("Lahmacun", "Main Dishes", "12.50", None),
    ("Ayran", "Drinks", "2.50", 40),
    ("Kola", "Drinks", "3.33", 5),
    ("Baklava", "Desserts", "7.50", 20),
)


def seed(uow: UnitOfWork) -> tuple[int, int]:
    layout = build_layout(DEFAULT_AREAS)
    for table in layout:
        uow.tables.ensure(table)

    uow.products.ensure_category(DEFAULT_CATEGORY_NAME)
    created = 0
    for name, category_name, price, stock in SAMPLE_PRODUCTS:
        if uow.products.find_by_name(name) is not None:
            continue
        category = uow.products.ensure_category(category_name)
        uow.products.add(name, Money.of(Decimal(price)), category.category_id, stock=stock)
        created += 1
    return len(layout), created


def main() -> None:
    engine = get_engine(timeout_seconds=2.0)
    required_tables = {"dining_tables", "categories", "products"}
    if not required_tables.issubset(set(inspect(engine).get_table_names())):
        print("no schema yet")
        return

    tables, products = SqlAlchemyTransactionRunner(engine).run(seed, operation="seed")
    print(f"seed complete: {tables} tables, {products} new products")


if __name__ == "__main__":
    main()

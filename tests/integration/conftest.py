from __future__ import annotations

import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

import pytest
from sqlalchemy.engine import Engine

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from rpos.bootstrap import PosApplication, build_application
from rpos.domain.product.entities import Product
from rpos.infrastructure.db.metadata import create_schema
from rpos.infrastructure.db.session import build_engine
from rpos.infrastructure.db.unit_of_work import SqlAlchemyTransactionRunner
from rpos.tools.seed import seed

NOW = datetime(2026, 10, 18, 19, 30, tzinfo=timezone.utc)


def sqlite_engine(path: Path) -> Engine:
    return build_engine(f"sqlite:///{path}", 5.0)


@pytest.fixture
def engine(tmp_path: Path) -> Iterator[Engine]:
    instance = sqlite_engine(tmp_path / "rpos.db")
    create_schema(instance)
    yield instance
    instance.dispose()


@pytest.fixture
def runner(engine: Engine) -> SqlAlchemyTransactionRunner:
    instance = SqlAlchemyTransactionRunner(engine)
    instance.run(seed, operation="seed")
    return instance


@pytest.fixture
def app(engine: Engine, runner: SqlAlchemyTransactionRunner) -> Iterator[PosApplication]:
    instance = build_application(engine, clock=lambda: NOW)
    yield instance
    instance.close()


def product_named(runner: SqlAlchemyTransactionRunner, name: str) -> Product:
    product = runner.run(lambda uow: uow.products.find_by_name(name), operation="test_lookup")
    assert product is not None
    return product

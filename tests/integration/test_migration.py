from __future__ import annotations

import os
import subprocess
import sys
from pathlib import Path

from sqlalchemy import inspect

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from conftest import sqlite_engine

from rpos.infrastructure.db.schema_compat import SchemaCapabilities

PROJECT_DIR = Path(__file__).resolve().parents[2]
BASE_REVISION = "202610010900"


def _run(database: Path, *args: str) -> subprocess.CompletedProcess[str]:
    env = os.environ.copy()
    env["DATABASE_URL"] = f"sqlite:///{database}"
    env["PYTHONPATH"] = f"{PROJECT_DIR / 'src'}{os.pathsep}{env.get('PYTHONPATH', '')}".rstrip(
        os.pathsep
    )
    return subprocess.run(
        [sys.executable, *args],
        cwd=PROJECT_DIR,
        env=env,
        check=True,
        capture_output=True,
        text=True,
    )


def _alembic(database: Path, *args: str) -> None:
    _run(database, "-m", "alembic", "-c", "alembic.ini", *args)


def test_upgrade_head_creates_every_table_and_seeds(tmp_path: Path) -> None:
    database = tmp_path / "migrated.db"
    _alembic(database, "upgrade", "head")

    engine = sqlite_engine(database)
    inspector = inspect(engine)
    assert {
        "categories",
        "products",
        "dining_tables",
        "orders",
        "order_items",
        "payments",
        "expenses",
        "order_logs",
    }.issubset(set(inspector.get_table_names()))
    expense_columns = {column["name"] for column in inspector.get_columns("expenses")}
    assert {"description", "recorded_by"}.issubset(expense_columns)

    schema = SchemaCapabilities()
    with engine.connect() as connection:
        assert schema.order_log.is_supported(connection)
        assert schema.order_status.to_storage("READY", connection) == "READY"

    result = _run(database, "-m", "rpos.tools.seed")
    assert "seed complete: 70 tables" in result.stdout
    engine.dispose()


def test_base_revision_lacks_optional_columns(tmp_path: Path) -> None:
    database = tmp_path / "base.db"
    _alembic(database, "upgrade", BASE_REVISION)

    engine = sqlite_engine(database)
    inspector = inspect(engine)
    assert "order_logs" not in inspector.get_table_names()
    expense_columns = {column["name"] for column in inspector.get_columns("expenses")}
    assert "description" not in expense_columns

    schema = SchemaCapabilities()
    with engine.connect() as connection:
        assert not schema.order_log.is_supported(connection)
        assert not schema.expense_description.is_supported(connection)
    engine.dispose()


def test_downgrade_removes_optional_schema(tmp_path: Path) -> None:
    database = tmp_path / "roundtrip.db"
    _alembic(database, "upgrade", "head")
    _alembic(database, "downgrade", BASE_REVISION)

    engine = sqlite_engine(database)
    inspector = inspect(engine)
    assert "order_logs" not in inspector.get_table_names()
    assert "recorded_by" not in {column["name"] for column in inspector.get_columns("expenses")}
    engine.dispose()


def test_seed_without_schema_reports_missing_tables(tmp_path: Path) -> None:
    result = _run(tmp_path / "empty.db", "-m", "rpos.tools.seed")
    assert "no schema yet" in result.stdout

from __future__ import annotations

import logging
import sqlite3
import sys
from pathlib import Path

import pytest
from sqlalchemy.exc import OperationalError, ProgrammingError

sys.path.insert(0, str(Path(__file__).resolve().parents[3] / "src"))

from rpos.application.ports.repositories import PersistenceError
from rpos.infrastructure.db.schema_compat import (
    ORDER_STATUS_FALLBACKS,
    TABLE_STATUS_FALLBACKS,
    OptionalFeature,
    StatusValueMapper,
    is_missing_schema_object,
)


class FakeDriverError(Exception):
    def __init__(self, message: str, sqlstate: str | None = None) -> None:
        super().__init__(message)
        self.sqlstate = sqlstate


def _wrapped(orig: Exception) -> OperationalError:
    return OperationalError("SELECT 1", {}, orig)


def test_missing_column_and_table_errors_are_classified() -> None:
    assert is_missing_schema_object(
        _wrapped(sqlite3.OperationalError("no such column: description"))
    )
    assert is_missing_schema_object(_wrapped(sqlite3.OperationalError("no such table: order_logs")))
    assert is_missing_schema_object(
        _wrapped(sqlite3.OperationalError("table expenses has no column named recorded_by"))
    )
    assert is_missing_schema_object(
        ProgrammingError("SELECT 1", {}, FakeDriverError("boom", sqlstate="42703"))
    )
    assert is_missing_schema_object(
        ProgrammingError("SELECT 1", {}, FakeDriverError('relation "order_logs" does not exist'))
    )
    assert is_missing_schema_object(_wrapped(FakeDriverError("Unknown column 'description'")))


def test_other_database_errors_are_not_schema_gaps() -> None:
    assert not is_missing_schema_object(_wrapped(sqlite3.OperationalError("database is locked")))
    assert not is_missing_schema_object(
        _wrapped(
            FakeDriverError("duplicate key value violates unique constraint", sqlstate="23505")
        )
    )


def test_optional_feature_probes_once_and_caches() -> None:
    calls: list[object] = []

    def probe(connection: object) -> bool:
        calls.append(connection)
        return True

    feature = OptionalFeature("expenses.description", probe)
    assert feature.is_supported(None)  # type: ignore[arg-type]
    assert feature.is_supported(None)  # type: ignore[arg-type]
    assert len(calls) == 1
    assert not feature.missing


def test_optional_feature_downgrades_once_with_single_warning(
    caplog: pytest.LogCaptureFixture,
) -> None:
    feature = OptionalFeature("order_logs", lambda connection: True)

    with caplog.at_level(logging.WARNING):
        assert feature.downgrade("OperationalError")
        assert not feature.downgrade("OperationalError")

    assert feature.missing
    assert not feature.is_supported(None)  # type: ignore[arg-type]
    warnings = [
        record for record in caplog.records if record.getMessage() == "schema_feature_downgraded"
    ]
    assert len(warnings) == 1
    assert warnings[0].feature == "order_logs"


def test_failed_probe_marks_feature_missing() -> None:
    feature = OptionalFeature("expenses.recorded_by", lambda connection: False)
    assert not feature.is_supported(None)  # type: ignore[arg-type]
    assert feature.missing


def test_ready_falls_back_to_pending_when_schema_lacks_both(
    caplog: pytest.LogCaptureFixture,
) -> None:
    reflections: list[object] = []

    def reflector(connection: object) -> frozenset[str]:
        reflections.append(connection)
        return frozenset({"PENDING", "COMPLETED", "CANCELLED"})

    mapper = StatusValueMapper("orders", "status", ORDER_STATUS_FALLBACKS, reflector)

    with caplog.at_level(logging.WARNING):
        assert mapper.to_storage("READY", None) == "PENDING"  # type: ignore[arg-type]
        assert mapper.to_storage("READY", None) == "PENDING"  # type: ignore[arg-type]
        assert mapper.to_storage("COMPLETED", None) == "COMPLETED"  # type: ignore[arg-type]

    assert len(reflections) == 1
    warnings = [
        record for record in caplog.records if record.getMessage() == "status_value_fallback"
    ]
    assert len(warnings) == 1
    assert warnings[0].requested == "READY"
    assert warnings[0].stored == "PENDING"


def test_ready_prefers_in_progress_when_available() -> None:
    mapper = StatusValueMapper(
        "orders",
        "status",
        ORDER_STATUS_FALLBACKS,
        lambda connection: frozenset({"PENDING", "IN_PROGRESS", "COMPLETED"}),
    )
    assert mapper.to_storage("READY", None) == "IN_PROGRESS"  # type: ignore[arg-type]


def test_reserved_table_status_falls_back_to_occupied() -> None:
    mapper = StatusValueMapper(
        "dining_tables",
        "status",
        TABLE_STATUS_FALLBACKS,
        lambda connection: frozenset({"EMPTY", "OCCUPIED"}),
    )
    assert mapper.to_storage("RESERVED", None) == "OCCUPIED"  # type: ignore[arg-type]


def test_unconstrained_column_passes_values_through() -> None:
    mapper = StatusValueMapper("orders", "status", ORDER_STATUS_FALLBACKS, lambda connection: None)
    assert mapper.to_storage("READY", None) == "READY"  # type: ignore[arg-type]
    assert mapper.allowed_values is None


def test_value_without_fallback_is_a_hard_error() -> None:
    mapper = StatusValueMapper(
        "orders",
        "status",
        ORDER_STATUS_FALLBACKS,
        lambda connection: frozenset({"COMPLETED", "CANCELLED"}),
    )
    with pytest.raises(PersistenceError):
        mapper.to_storage("PENDING", None)  # type: ignore[arg-type]


def test_cancelled_falls_back_to_completed() -> None:
    mapper = StatusValueMapper(
        "orders",
        "status",
        ORDER_STATUS_FALLBACKS,
        lambda connection: frozenset({"PENDING", "COMPLETED"}),
    )
    assert mapper.to_storage("CANCELLED", None) == "COMPLETED"  # type: ignore[arg-type]

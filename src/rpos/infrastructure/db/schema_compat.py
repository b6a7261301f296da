from __future__ import annotations

import logging
import re
import threading
from typing import Callable, Mapping, Sequence

from sqlalchemy import inspect
from sqlalchemy.engine import Connection

from rpos.application.metrics.order_lifecycle import record_schema_downgrade, record_status_fallback
from rpos.application.ports.repositories import PersistenceError

logger = logging.getLogger(__name__)

MISSING_OBJECT_SQLSTATES = frozenset({"42S22", "42S02", "42703", "42P01"})
MISSING_OBJECT_ERRNOS = frozenset({1054, 1146})
_MISSING_OBJECT_PATTERN = re.compile(
    r"unknown column"
    r"|no such column"
    r"|no such table"
    r"|has no column named"
    r"|(column|relation|table) \S+ does not exist"
    r"|invalid (column|object) name",
    re.IGNORECASE,
)

ORDER_STATUS_FALLBACKS: dict[str, tuple[str, ...]] = {
    "READY": ("IN_PROGRESS", "PENDING"),
    "IN_PROGRESS": ("PENDING",),
    "CANCELLED": ("COMPLETED",),
}

TABLE_STATUS_FALLBACKS: dict[str, tuple[str, ...]] = {
    "RESERVED": ("OCCUPIED",),
}

Probe = Callable[[Connection], bool]
Reflector = Callable[[Connection], "frozenset[str] | None"]


class SchemaDowngraded(Exception):
    def __init__(self, feature: str) -> None:
        super().__init__(f"optional schema feature {feature} is unavailable")
        self.feature = feature


def is_missing_schema_object(exc: BaseException) -> bool:
    orig = getattr(exc, "orig", None)
    for candidate in (orig, exc):
        if candidate is None:
            continue
        sqlstate = getattr(candidate, "sqlstate", None) or getattr(candidate, "pgcode", None)
        if sqlstate in MISSING_OBJECT_SQLSTATES:
            return True
        args = getattr(candidate, "args", ())
        if args and isinstance(args[0], int) and args[0] in MISSING_OBJECT_ERRNOS:
            return True
    return bool(_MISSING_OBJECT_PATTERN.search(str(orig if orig is not None else exc)))


def column_probe(table: str, column: str) -> Probe:
    def probe(connection: Connection) -> bool:
        inspector = inspect(connection)
        if not inspector.has_table(table):
            return False
        return column in {item["name"] for item in inspector.get_columns(table)}

    return probe


def table_probe(table: str) -> Probe:
    def probe(connection: Connection) -> bool:
        return inspect(connection).has_table(table)

    return probe


class OptionalFeature:
    def __init__(self, name: str, probe: Probe) -> None:
        self.name = name
        self._probe = probe
        self._lock = threading.Lock()
        self._probed = False
        self._missing = False

    @property
    def missing(self) -> bool:
        return self._missing

    def is_supported(self, connection: Connection) -> bool:
        if self._missing:
            return False
        if self._probed:
            return True

        with self._lock:
            if not self._probed:
                if not self._probe(connection):
                    self._mark_missing("probe")
                self._probed = True
        return not self._missing

    def downgrade(self, reason: str) -> bool:
        with self._lock:
            if self._missing:
                return False
            self._mark_missing(reason)
            self._probed = True
            return True

    def _mark_missing(self, reason: str) -> None:
        self._missing = True
        record_schema_downgrade(self.name)
        logger.warning(
            "schema_feature_downgraded",
            extra={"feature": self.name, "reason": reason},
        )


def reflect_allowed_values(
    connection: Connection,
    table: str,
    column: str,
) -> frozenset[str] | None:
    inspector = inspect(connection)
    for item in inspector.get_columns(table):
        if item["name"] == column:
            enums = getattr(item["type"], "enums", None)
            if enums:
                return frozenset(enums)

    try:
        constraints = inspector.get_check_constraints(table)
    except NotImplementedError:
        return None

    column_pattern = re.compile(rf"\b{re.escape(column)}\b", re.IGNORECASE)
    for constraint in constraints:
        sqltext = constraint.get("sqltext") or ""
        if not column_pattern.search(sqltext):
            continue
        values = re.findall(r"'([^']*)'", sqltext)
        if values:
            return frozenset(values)
    return None


class StatusValueMapper:
    def __init__(
        self,
        table: str,
        column: str,
        fallbacks: Mapping[str, Sequence[str]],
        reflector: Reflector | None = None,
    ) -> None:
        self.table = table
        self.column = column
        self._fallbacks = dict(fallbacks)
        self._reflector = reflector or self._reflect
        self._lock = threading.Lock()
        self._reflected = False
        self._allowed: frozenset[str] | None = None
        self._mapping: dict[str, str] = {}

    @property
    def allowed_values(self) -> frozenset[str] | None:
        return self._allowed

    def to_storage(self, value: str, connection: Connection) -> str:
        stored = self._mapping.get(value)
        if stored is not None:
            return stored

        with self._lock:
            stored = self._mapping.get(value)
            if stored is not None:
                return stored
            if not self._reflected:
                self._allowed = self._reflector(connection)
                self._reflected = True
            stored = self._resolve(value)
            self._mapping[value] = stored

        if stored != value:
            record_status_fallback(f"{self.table}.{self.column}", value, stored)
            logger.warning(
                "status_value_fallback",
                extra={
                    "column": f"{self.table}.{self.column}",
                    "requested": value,
                    "stored": stored,
                },
            )
        return stored

    def _resolve(self, value: str) -> str:
        allowed = self._allowed
        if allowed is None or value in allowed:
            return value
        for candidate in self._fallbacks.get(value, ()):
            if candidate in allowed:
                return candidate
        raise PersistenceError(
            f"{self.table}.{self.column} does not accept {value} and has no supported fallback",
            operation="status_mapping",
        )

    def _reflect(self, connection: Connection) -> frozenset[str] | None:
        return reflect_allowed_values(connection, self.table, self.column)


class SchemaCapabilities:
    def __init__(
        self,
        order_status_reflector: Reflector | None = None,
        table_status_reflector: Reflector | None = None,
    ) -> None:
        self.expense_description = OptionalFeature(
            "expenses.description", column_probe("expenses", "description")
        )
        self.expense_recorded_by = OptionalFeature(
            "expenses.recorded_by", column_probe("expenses", "recorded_by")
        )
        self.order_log = OptionalFeature("order_logs", table_probe("order_logs"))
        self.order_status = StatusValueMapper(
            "orders", "status", ORDER_STATUS_FALLBACKS, order_status_reflector
        )
        self.table_status = StatusValueMapper(
            "dining_tables", "status", TABLE_STATUS_FALLBACKS, table_status_reflector
        )

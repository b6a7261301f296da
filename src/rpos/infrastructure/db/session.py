from __future__ import annotations

import os
import re
from functools import lru_cache
from typing import Any

from sqlalchemy import create_engine, event, text
from sqlalchemy import exc as sa_exc
from sqlalchemy.engine import Engine, make_url

from rpos.application.ports.repositories import PersistenceError, PersistenceTimeoutError

DEFAULT_TIMEOUT_SECONDS = 5.0

_TIMEOUT_SQLSTATES = {"57014", "55P03", "HYT00", "HYT01"}
_TIMEOUT_PATTERN = re.compile(
    r"database is locked|lock wait timeout|timed out|timeout expired|statement timeout",
    re.IGNORECASE,
)


def _database_url() -> str:
    url = os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is not set")
    return url


def timeout_from_env() -> float:
    raw = os.getenv("DB_TIMEOUT_SECONDS")
    if not raw:
        return DEFAULT_TIMEOUT_SECONDS
    try:
        value = float(raw)
    except ValueError as exc:
        raise RuntimeError(f"DB_TIMEOUT_SECONDS must be a number, got {raw!r}") from exc
    if value <= 0:
        raise RuntimeError("DB_TIMEOUT_SECONDS must be > 0")
    return value


def _connect_args(backend: str, timeout_seconds: float) -> dict[str, Any]:
    if backend == "sqlite":
        return {"timeout": timeout_seconds, "check_same_thread": False}
    if backend == "postgresql":
        timeout_ms = int(timeout_seconds * 1000)
        return {
            "connect_timeout": max(1, int(timeout_seconds)),
            "options": f"-c statement_timeout={timeout_ms} -c lock_timeout={timeout_ms}",
        }
    if backend == "mysql":
        return {"connect_timeout": max(1, int(timeout_seconds))}
    return {}


@lru_cache(maxsize=8)
def build_engine(database_url: str, timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS) -> Engine:
    backend = make_url(database_url).get_backend_name()
    options: dict[str, Any] = {
        "pool_pre_ping": True,
        "connect_args": _connect_args(backend, timeout_seconds),
    }
    if backend != "sqlite":
        options["pool_timeout"] = timeout_seconds

    engine = create_engine(database_url, **options)
    if backend == "sqlite":
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    return engine


def _enable_sqlite_foreign_keys(dbapi_connection: Any, connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def get_engine(timeout_seconds: float | None = None) -> Engine:
    timeout = timeout_seconds if timeout_seconds is not None else timeout_from_env()
    return build_engine(_database_url(), timeout)


def ping_database(timeout_seconds: float = 1.0) -> bool:
    try:
        with get_engine(timeout_seconds).connect() as connection:
            connection.execute(text("SELECT 1"))
        return True
    except Exception:
        return False


def is_timeout_error(exc: BaseException) -> bool:
    if isinstance(exc, sa_exc.TimeoutError):
        return True
    orig = getattr(exc, "orig", None)
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in _TIMEOUT_SQLSTATES:
        return True
    return bool(_TIMEOUT_PATTERN.search(str(orig if orig is not None else exc)))


def translate_error(exc: sa_exc.SQLAlchemyError, operation: str) -> PersistenceError:
    message = f"{operation} failed: {exc.__class__.__name__}"
    if is_timeout_error(exc):
        return PersistenceTimeoutError(message, operation=operation)
    return PersistenceError(message, operation=operation)

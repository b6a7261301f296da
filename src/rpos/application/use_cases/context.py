from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator
from uuid import uuid4

operation_id_context: ContextVar[str | None] = ContextVar("operation_id", default=None)


def get_operation_id() -> str | None:
    return operation_id_context.get()


@contextmanager
def operation_scope(operation_id: str | None = None) -> Iterator[str]:
    current = operation_id_context.get()
    if current is not None and operation_id is None:
        yield current
        return

    value = operation_id or uuid4().hex
    token = operation_id_context.set(value)
    try:
        yield value
    finally:
        operation_id_context.reset(token)

from __future__ import annotations

from typing import Any


class PosError(Exception):
    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.details: dict[str, Any] = details


class ValidationError(PosError, ValueError):
    pass


class NotFoundError(PosError, LookupError):
    pass


class InsufficientStockError(PosError):
    def __init__(self, product_id: int, requested: int, available: int | None) -> None:
        super().__init__(
            f"insufficient stock for product {product_id}: requested={requested}, "
            f"available={available}",
            product_id=product_id,
            requested=requested,
            available=available,
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class ConflictError(PosError):
    pass


class UnknownTableError(ValidationError, NotFoundError):
    def __init__(self, table_no: int) -> None:
        super().__init__(f"unknown table {table_no}", table_no=table_no)
        self.table_no = table_no

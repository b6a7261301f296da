from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from rpos.domain.common.errors import ValidationError
from rpos.domain.common.ids import CategoryId, ProductId
from rpos.domain.common.money import Money
from rpos.domain.order.entities import DEFAULT_VAT_RATE, ensure_vat_rate

DEFAULT_CATEGORY_NAME = "General"
PRODUCT_NAME_MAX_LENGTH = 100


@dataclass(frozen=True)
class Category:
    category_id: CategoryId
    name: str


@dataclass(frozen=True)
class Product:
    product_id: ProductId
    name: str
    unit_price: Money
    category_id: CategoryId | None
    stock: int | None = None
    vat_rate: Decimal = DEFAULT_VAT_RATE
    active: bool = True

    def __post_init__(self) -> None:
        if not self.name.strip():
            raise ValidationError("product name is required")
        if len(self.name) > PRODUCT_NAME_MAX_LENGTH:
            raise ValidationError(
                f"product name must be at most {PRODUCT_NAME_MAX_LENGTH} characters",
                name=self.name,
            )
        if self.stock is not None and self.stock < 0:
            raise ValidationError("stock must be >= 0", product_id=self.product_id)
        ensure_vat_rate(self.vat_rate)

    @property
    def tracks_stock(self) -> bool:
        return self.stock is not None

    def can_supply(self, quantity: int) -> bool:
        return self.stock is None or self.stock >= quantity

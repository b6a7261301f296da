from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum

from rpos.domain.common.errors import ValidationError
from rpos.domain.common.ids import TableNo, UserId
from rpos.domain.common.money import ZERO, Money, ensure_positive_quantity

HISTORY_CAPACITY = 50
SYSTEM_ACTOR_NAME = "System"


class TableOrderStatus(str, Enum):
    EMPTY = "EMPTY"
    ORDERED = "ORDERED"
    SERVED = "SERVED"


@dataclass(frozen=True)
class Actor:
    display_name: str = SYSTEM_ACTOR_NAME
    user_id: UserId | None = None

    @classmethod
    def named(cls, display_name: str | None, user_id: UserId | None = None) -> Actor:
        name = (display_name or "").strip()
        return cls(display_name=name or SYSTEM_ACTOR_NAME, user_id=user_id)


SYSTEM_ACTOR = Actor()


def resolve_actor(actor: Actor | str | None) -> Actor:
    if actor is None:
        return SYSTEM_ACTOR
    if isinstance(actor, Actor):
        return actor
    return Actor.named(actor)


@dataclass(frozen=True)
class OrderLogEntry:
    timestamp: datetime
    actor: str
    message: str

    @classmethod
    def parse(
        cls, timestamp: datetime, raw: str, default_actor: str = SYSTEM_ACTOR_NAME
    ) -> OrderLogEntry:
        actor, separator, message = raw.partition("|")
        if not separator:
            return cls(timestamp=timestamp, actor=default_actor, message=raw.strip())
        return cls(
            timestamp=timestamp,
            actor=actor.strip() or default_actor,
            message=message.strip(),
        )

    def to_storage(self) -> str:
        return f"{self.actor} | {self.message}"

    def format_for_display(self) -> str:
        return f"{self.timestamp:%H:%M} - {self.actor} {self.message}"


def product_key(product_name: str) -> str:
    name = product_name.strip()
    if not name:
        raise ValidationError("product name is required")
    return name.casefold()


@dataclass(frozen=True)
class OrderLine:
    product_name: str
    unit_price: Money
    quantity: int

    def __post_init__(self) -> None:
        product_key(self.product_name)
        ensure_positive_quantity(self.quantity)

    @property
    def key(self) -> str:
        return product_key(self.product_name)

    @property
    def line_total(self) -> Money:
        return self.unit_price.times(self.quantity)


@dataclass(frozen=True)
class TableOrder:
    table_no: TableNo
    status: TableOrderStatus = TableOrderStatus.EMPTY
    lines: tuple[OrderLine, ...] = ()
    history: tuple[OrderLogEntry, ...] = field(default=())

    def __post_init__(self) -> None:
        if (self.status == TableOrderStatus.EMPTY) != (not self.lines):
            raise ValueError("status must be EMPTY exactly when the order has no lines")
        if len(self.history) > HISTORY_CAPACITY:
            raise ValueError(f"history holds at most {HISTORY_CAPACITY} entries")
        keys = [line.key for line in self.lines]
        if len(keys) != len(set(keys)):
            raise ValueError("order lines must be unique per product name")

    @property
    def total(self) -> Money:
        if not self.lines:
            return ZERO
        return Money.total(line.line_total for line in self.lines)

    @property
    def is_empty(self) -> bool:
        return not self.lines

    def find_line(self, product_name: str) -> OrderLine | None:
        key = product_key(product_name)
        for line in self.lines:
            if line.key == key:
                return line
        return None

    def with_item_added(
        self,
        product_name: str,
        unit_price: Money,
        quantity: int,
        actor: str,
        now: datetime,
    ) -> TableOrder:
        ensure_positive_quantity(quantity)
        existing = self.find_line(product_name)
        if existing is None:
            line = OrderLine(
                product_name=product_name.strip(), unit_price=unit_price, quantity=quantity
            )
            lines = self.lines + (line,)
            label = line.product_name
        else:
            lines = tuple(
                replace(line, quantity=line.quantity + quantity) if line is existing else line
                for line in self.lines
            )
            label = existing.product_name
        return replace(
            self,
            status=TableOrderStatus.ORDERED,
            lines=lines,
            history=_logged(self.history, OrderLogEntry(now, actor, f"added {quantity} x {label}")),
        )

    def with_item_decreased(
        self,
        product_name: str,
        quantity: int,
        actor: str,
        now: datetime,
    ) -> TableOrder | None:
        ensure_positive_quantity(quantity)
        existing = self.find_line(product_name)
        if existing is None:
            return None
        remaining = existing.quantity - quantity
        if remaining > 0:
            lines = tuple(
                replace(line, quantity=remaining) if line is existing else line
                for line in self.lines
            )
        else:
            lines = tuple(line for line in self.lines if line is not existing)
        entry = OrderLogEntry(now, actor, f"decreased {existing.product_name} by {quantity}")
        return self._after_line_change(lines, _logged(self.history, entry), actor, now)

    def with_item_removed(self, product_name: str, actor: str, now: datetime) -> TableOrder | None:
        existing = self.find_line(product_name)
        if existing is None:
            return None
        lines = tuple(line for line in self.lines if line is not existing)
        entry = OrderLogEntry(now, actor, f"removed {existing.product_name}")
        return self._after_line_change(lines, _logged(self.history, entry), actor, now)

    def served(self, actor: str, now: datetime) -> TableOrder | None:
        if self.status != TableOrderStatus.ORDERED:
            return None
        return replace(
            self,
            status=TableOrderStatus.SERVED,
            history=_logged(self.history, OrderLogEntry(now, actor, "marked served")),
        )

    def cleared(self, actor: str, now: datetime, message: str = "cleared") -> TableOrder:
        return replace(
            self,
            status=TableOrderStatus.EMPTY,
            lines=(),
            history=_logged(self.history, OrderLogEntry(now, actor, message)),
        )

    def _after_line_change(
        self,
        lines: tuple[OrderLine, ...],
        history: tuple[OrderLogEntry, ...],
        actor: str,
        now: datetime,
    ) -> TableOrder:
        if lines:
            return replace(self, lines=lines, history=history)
        return replace(
            self,
            status=TableOrderStatus.EMPTY,
            lines=(),
            history=_logged(history, OrderLogEntry(now, actor, "cleared")),
        )


def _logged(
    history: tuple[OrderLogEntry, ...],
    entry: OrderLogEntry,
) -> tuple[OrderLogEntry, ...]:
    return ((entry,) + history)[:HISTORY_CAPACITY]

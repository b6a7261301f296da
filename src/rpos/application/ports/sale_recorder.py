from __future__ import annotations

from typing import Protocol

from rpos.domain.order.entities import PaymentMethod
from rpos.domain.reporting.records import SaleRecord
from rpos.domain.table.entities import Table
from rpos.domain.table.live_order import Actor, TableOrder


class SaleRecorder(Protocol):
    def record(
        self,
        table: Table,
        order: TableOrder,
        method: PaymentMethod,
        actor: Actor,
    ) -> SaleRecord: ...

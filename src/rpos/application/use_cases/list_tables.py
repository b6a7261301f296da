from __future__ import annotations

from rpos.application.dto.responses import TableOrderResponse, TableOverviewResponse
from rpos.application.mappers.table_mapper import (
    to_money_response,
    to_table_order_response,
    to_table_overview_item,
)
from rpos.application.state.table_state import TableStateContainer
from rpos.domain.common.errors import ValidationError
from rpos.domain.common.money import Money
from rpos.domain.table.live_order import TableOrderStatus

_STATUS_MAP: dict[str, TableOrderStatus | None] = {
    "ALL": None,
    "EMPTY": TableOrderStatus.EMPTY,
    "ORDERED": TableOrderStatus.ORDERED,
    "SERVED": TableOrderStatus.SERVED,
}


class ListTables:
    def __init__(self, container: TableStateContainer) -> None:
        self._container = container

    def execute(self, *, building: str | None = None, status: str = "ALL") -> TableOverviewResponse:
        normalized_status = status.upper()
        if normalized_status not in _STATUS_MAP:
            raise ValidationError(f"invalid table status filter: {status}", status=status)
        wanted = _STATUS_MAP[normalized_status]

        items = []
        open_totals: list[Money] = []
        for table in self._container.tables():
            if building is not None and table.building != building:
                continue
            order = self._container.snapshot(table.table_no)
            if wanted is not None and order.status != wanted:
                continue
            if not order.is_empty:
                open_totals.append(order.total)
            items.append(to_table_overview_item(table, order))

        return TableOverviewResponse(
            tables=items,
            occupied=len(open_totals),
            openTotal=to_money_response(Money.total(open_totals)),
        )


class GetTableOrder:
    def __init__(self, container: TableStateContainer) -> None:
        self._container = container

    def execute(self, table_no: int) -> TableOrderResponse:
        table = self._container.table(table_no)
        return to_table_order_response(table, self._container.snapshot(table.table_no))

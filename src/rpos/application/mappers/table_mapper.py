from __future__ import annotations

from rpos.application.dto.responses import (
    MoneyResponse,
    OrderLogEntryResponse,
    TableOrderLineResponse,
    TableOrderResponse,
    TableOverviewItemResponse,
)
from rpos.domain.common.money import Money
from rpos.domain.table.entities import Table
from rpos.domain.table.live_order import OrderLogEntry, TableOrder


def to_money_response(money: Money) -> MoneyResponse:
    return MoneyResponse(amountCents=money.cents, display=str(money))


def to_log_entry_response(entry: OrderLogEntry) -> OrderLogEntryResponse:
    return OrderLogEntryResponse(
        timestamp=entry.timestamp,
        actor=entry.actor,
        message=entry.message,
        display=entry.format_for_display(),
    )


def to_table_order_response(table: Table, order: TableOrder) -> TableOrderResponse:
    return TableOrderResponse(
        tableNo=int(table.table_no),
        building=table.building,
        section=table.section,
        status=order.status.value,
        lines=[
            TableOrderLineResponse(
                productName=line.product_name,
                quantity=line.quantity,
                unitPrice=to_money_response(line.unit_price),
                lineTotal=to_money_response(line.line_total),
            )
            for line in order.lines
        ],
        history=[to_log_entry_response(entry) for entry in order.history],
        total=to_money_response(order.total),
    )


def to_table_overview_item(table: Table, order: TableOrder) -> TableOverviewItemResponse:
    return TableOverviewItemResponse(
        tableNo=int(table.table_no),
        building=table.building,
        section=table.section,
        status=order.status.value,
        lineCount=len(order.lines),
        total=to_money_response(order.total),
        lastActivity=order.history[0].format_for_display() if order.history else None,
    )

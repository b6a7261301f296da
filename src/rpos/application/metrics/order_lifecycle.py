from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

from rpos.domain.order.entities import OrderStatus
from rpos.domain.reporting.records import SaleRecord

TABLE_MUTATIONS_TOTAL = Counter(
    "rpos_table_mutations_total",
    "Total number of live table mutations by operation and outcome.",
    ["operation", "outcome"],
)

OCCUPIED_TABLES = Gauge(
    "rpos_occupied_tables",
    "Current number of tables with a non-empty live order.",
)

SALES_RECORDED_TOTAL = Counter(
    "rpos_sales_recorded_total",
    "Total number of recorded sales.",
    ["method"],
)

SALES_AMOUNT_TOTAL = Counter(
    "rpos_sales_amount_total",
    "Total amount of recorded sales.",
    ["method"],
)

ORDER_TRANSITION_TOTAL = Counter(
    "rpos_order_transition_total",
    "Total number of persisted order status changes.",
    ["to"],
)

CHECKOUT_DURATION_SECONDS = Histogram(
    "rpos_checkout_duration_seconds",
    "Time spent in the checkout transaction.",
)

CHECKOUT_FAILURES_TOTAL = Counter(
    "rpos_checkout_failures_total",
    "Total number of failed checkout attempts.",
    ["reason"],
)

STOCK_REJECTIONS_TOTAL = Counter(
    "rpos_stock_rejections_total",
    "Total number of item additions rejected for insufficient stock.",
)

TABLE_RELEASE_FAILURES_TOTAL = Counter(
    "rpos_table_release_failures_total",
    "Total number of table releases that exhausted their retries.",
)

SCHEMA_DOWNGRADES_TOTAL = Counter(
    "rpos_schema_downgrades_total",
    "Total number of optional schema features found missing.",
    ["feature"],
)

STATUS_FALLBACKS_TOTAL = Counter(
    "rpos_status_fallbacks_total",
    "Total number of status values mapped to a schema fallback.",
    ["column", "requested", "stored"],
)


def record_table_mutation(operation: str, outcome: str) -> None:
    TABLE_MUTATIONS_TOTAL.labels(operation=operation, outcome=outcome).inc()


def record_occupied_tables(count: int) -> None:
    OCCUPIED_TABLES.set(count)


def record_sale(sale: SaleRecord) -> None:
    SALES_RECORDED_TOTAL.labels(method=sale.method.value).inc()
    SALES_AMOUNT_TOTAL.labels(method=sale.method.value).inc(float(sale.total.amount))


def record_transition(to_status: OrderStatus) -> None:
    ORDER_TRANSITION_TOTAL.labels(to=to_status.value).inc()


def record_checkout_duration(seconds: float) -> None:
    CHECKOUT_DURATION_SECONDS.observe(max(seconds, 0.0))


def record_checkout_failure(reason: str) -> None:
    CHECKOUT_FAILURES_TOTAL.labels(reason=reason).inc()


def record_stock_rejection() -> None:
    STOCK_REJECTIONS_TOTAL.inc()


def record_table_release_failure() -> None:
    TABLE_RELEASE_FAILURES_TOTAL.inc()


def record_schema_downgrade(feature: str) -> None:
    SCHEMA_DOWNGRADES_TOTAL.labels(feature=feature).inc()


def record_status_fallback(column: str, requested: str, stored: str) -> None:
    STATUS_FALLBACKS_TOTAL.labels(column=column, requested=requested, stored=stored).inc()

from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, Field


class MoneyResponse(BaseModel):
    amountCents: int
    display: str


class TableOrderLineResponse(BaseModel):
    productName: str
    quantity: int
    unitPrice: MoneyResponse
    lineTotal: MoneyResponse


class OrderLogEntryResponse(BaseModel):
    timestamp: datetime
    actor: str
    message: str
    display: str


class TableOrderResponse(BaseModel):
    tableNo: int
    building: str
    section: str
    status: str
    lines: list[TableOrderLineResponse] = Field(default_factory=list)
    history: list[OrderLogEntryResponse] = Field(default_factory=list)
    total: MoneyResponse


class TableOverviewItemResponse(BaseModel):
    tableNo: int
    building: str
    section: str
    status: str
    lineCount: int
    total: MoneyResponse
    lastActivity: str | None = None


class TableOverviewResponse(BaseModel):
    tables: list[TableOverviewItemResponse] = Field(default_factory=list)
    occupied: int
    openTotal: MoneyResponse


class DailySalesResponse(BaseModel):
    day: date
    saleCount: int
    total: MoneyResponse


class MonthlySalesReportResponse(BaseModel):
    year: int
    month: int
    days: list[DailySalesResponse] = Field(default_factory=list)
    saleCount: int
    total: MoneyResponse


class ProfitSummaryResponse(BaseModel):
    periodStart: date
    periodEnd: date
    sales: MoneyResponse
    expenses: MoneyResponse
    netProfitCents: int
    netProfit: str

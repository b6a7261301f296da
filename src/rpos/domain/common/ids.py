from __future__ import annotations

from typing import NewType

TableNo = NewType("TableNo", int)
TableId = NewType("TableId", int)
OrderId = NewType("OrderId", int)
OrderItemId = NewType("OrderItemId", int)
PaymentId = NewType("PaymentId", int)
ProductId = NewType("ProductId", int)
CategoryId = NewType("CategoryId", int)
ExpenseId = NewType("ExpenseId", int)
UserId = NewType("UserId", int)

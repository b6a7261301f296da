from __future__ import annotations

from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from rpos.domain.table.entities import TableStatus
from rpos.infrastructure.db.models.product import Base, in_values_check


class DiningTableModel(Base):
    __tablename__ = "dining_tables"
    __table_args__ = (
        in_values_check(
            "status", [status.value for status in TableStatus], "ck_dining_tables_status"
        ),
    )

    table_no: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    building: Mapped[str] = mapped_column(String(50), nullable=False)
    section: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)

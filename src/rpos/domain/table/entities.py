from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Iterable

from rpos.domain.common.errors import ValidationError
from rpos.domain.common.ids import TableNo


class TableStatus(str, Enum):
    EMPTY = "EMPTY"
    OCCUPIED = "OCCUPIED"
    RESERVED = "RESERVED"


@dataclass(frozen=True)
class Table:
    table_no: TableNo
    building: str
    section: str
    status: TableStatus = TableStatus.EMPTY

    def __post_init__(self) -> None:
        if self.table_no <= 0:
            raise ValidationError("table_no must be > 0", table_no=self.table_no)
        if not self.building.strip() or not self.section.strip():
            raise ValidationError("building and section are required", table_no=self.table_no)

    def occupy(self) -> Table:
        if self.status == TableStatus.OCCUPIED:
            return self
        return replace(self, status=TableStatus.OCCUPIED)

    def release(self) -> Table:
        if self.status == TableStatus.EMPTY:
            return self
        return replace(self, status=TableStatus.EMPTY)


@dataclass(frozen=True)
class AreaDefinition:
    building: str
    section: str
    first_table_no: int
    table_count: int

    def __post_init__(self) -> None:
        if self.first_table_no <= 0 or self.table_count <= 0:
            raise ValidationError(
                "area must start at a positive table number and hold at least one table",
                building=self.building,
                section=self.section,
            )

    def tables(self) -> list[Table]:
        return [
            Table(
                table_no=TableNo(self.first_table_no + offset),
                building=self.building,
                section=self.section,
            )
            for offset in range(self.table_count)
        ]


DEFAULT_AREAS: tuple[AreaDefinition, ...] = (
    AreaDefinition("Building 1", "Floor 1", 101, 10),
    AreaDefinition("Building 1", "Floor 2", 111, 10),
    AreaDefinition("Building 1", "Floor 3", 121, 10),
    AreaDefinition("Building 2", "Floor 1", 201, 10),
    AreaDefinition("Building 2", "Floor 2", 211, 10),
    AreaDefinition("Building 2", "Floor 3", 221, 10),
    AreaDefinition("Building 3", "Garden", 301, 10),
)


def build_layout(areas: Iterable[AreaDefinition] = DEFAULT_AREAS) -> tuple[Table, ...]:
    tables: list[Table] = []
    seen: set[int] = set()
    for area in areas:
        for table in area.tables():
            if table.table_no in seen:
                raise ValidationError(
                    f"table {table.table_no} is defined twice", table_no=table.table_no
                )
            seen.add(table.table_no)
            tables.append(table)
    return tuple(tables)

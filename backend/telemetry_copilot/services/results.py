"""
Tabular execution results shared by every data source.

A result is a list of tables; each table has typed columns and
positional rows.  Missing cells are ``None``, never omitted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

Row = list[Any]


@dataclass(frozen=True)
class Column:
    name: str
    type: str = "string"


@dataclass
class Table:
    """One result table.  Row length must match the column count."""

    name: str
    columns: list[Column] = field(default_factory=list)
    rows: list[Row] = field(default_factory=list)

    def __post_init__(self) -> None:
        width = len(self.columns)
        for i, row in enumerate(self.rows):
            if len(row) != width:
                raise ValueError(
                    f"Row {i} of table '{self.name}' has {len(row)} values, "
                    f"expected {width}"
                )

    @property
    def row_count(self) -> int:
        return len(self.rows)

    def column_values(self, index: int) -> list[Any]:
        return [row[index] for row in self.rows]


@dataclass
class ExecutionResult:
    tables: list[Table] = field(default_factory=list)

    @property
    def total_rows(self) -> int:
        return sum(t.row_count for t in self.tables)

    @property
    def first_table(self) -> Table | None:
        return self.tables[0] if self.tables else None

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe representation (same shape the API accepts)."""
        return {
            "tables": [
                {
                    "name": t.name,
                    "columns": [{"name": c.name, "type": c.type} for c in t.columns],
                    "rows": [[serialise(v) for v in row] for row in t.rows],
                }
                for t in self.tables
            ]
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ExecutionResult":
        """
        Build a result from the ``{"tables": [...]}`` wire shape.

        Raises ValueError if a row does not match its column count.
        """
        tables: list[Table] = []
        for i, raw in enumerate(data.get("tables") or []):
            columns = [
                Column(name=str(c.get("name", f"col{j}")), type=str(c.get("type") or "string"))
                for j, c in enumerate(raw.get("columns") or [])
            ]
            rows = [list(r) for r in raw.get("rows") or []]
            tables.append(Table(name=str(raw.get("name") or f"Table_{i}"), columns=columns, rows=rows))
        return cls(tables=tables)


def serialise(value: Any) -> Any:
    """Convert driver types to JSON-safe Python types."""
    if value is None:
        return None
    if isinstance(value, (int, float, str, bool)):
        return value
    if hasattr(value, "isoformat"):
        return value.isoformat()
    # Decimal, UUID, intervals → string
    return str(value)

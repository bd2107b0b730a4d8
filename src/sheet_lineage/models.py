# models.py
"""
Data model for a single trace call.

Everything here is created and consumed inside one ``trace()`` invocation;
nothing is cached between calls.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

CIRCULAR_SENTINEL = "(circular reference — already visited)"


class TraceMode(str, Enum):
    PRECEDENTS = "precedents"
    DEPENDENTS = "dependents"


class TraceSource(str, Enum):
    API = "api"
    FORMULA_SCAN = "formula_scan"
    MIXED = "mixed"
    NONE = "none"


@dataclass(frozen=True)
class CellAddress:
    """A single cell, 0-based column and row."""

    sheet: str
    col: int
    row: int

    def __post_init__(self):
        if self.col < 0 or self.row < 0:
            raise ValueError(f"Negative cell coordinates: col={self.col} row={self.row}")


@dataclass(frozen=True)
class AreaRef:
    """A rectangle on one sheet; a single cell is the case start == end."""

    sheet: str
    start_col: int
    start_row: int
    end_col: int
    end_row: int

    def __post_init__(self):
        if self.start_col > self.end_col or self.start_row > self.end_row:
            raise ValueError("AreaRef corners must be normalized (start <= end)")

    @classmethod
    def from_corners(cls, sheet: str, col_a: int, row_a: int, col_b: int, row_b: int) -> "AreaRef":
        return cls(sheet, min(col_a, col_b), min(row_a, row_b), max(col_a, col_b), max(row_a, row_b))

    @property
    def is_single_cell(self) -> bool:
        return self.start_col == self.end_col and self.start_row == self.end_row

    @property
    def cell_count(self) -> int:
        return (self.end_col - self.start_col + 1) * (self.end_row - self.start_row + 1)

    def contains(self, cell: CellAddress) -> bool:
        if self.sheet.strip().lower() != cell.sheet.strip().lower():
            return False
        return (
            self.start_col <= cell.col <= self.end_col
            and self.start_row <= cell.row <= self.end_row
        )


@dataclass(frozen=True)
class ParsedReference:
    """One reference found in formula text.

    ``anchor_address`` is the sheet-less top-left cell (``"A1"``),
    ``qualified_anchor`` the same cell with its sheet (``"'My Sheet'!A1"``).
    """

    sheet: str
    area: AreaRef
    anchor_address: str
    qualified_anchor: str

    def contains(self, cell: CellAddress) -> bool:
        return self.area.contains(cell)


@dataclass(frozen=True)
class DependentCandidate:
    """A formula cell and the references its formula makes."""

    dependent_address: str
    references: tuple[ParsedReference, ...]


@dataclass
class DependencyNode:
    address: str
    value: Any = None
    number_format: str | None = None
    formula: str | None = None
    children: list["DependencyNode"] = field(default_factory=list)

    @property
    def is_circular(self) -> bool:
        return self.formula == CIRCULAR_SENTINEL

    def to_dict(self) -> dict:
        return {
            "address": self.address,
            "value": self.value,
            "numberFormat": self.number_format,
            "formula": self.formula,
            "children": [child.to_dict() for child in self.children],
        }


@dataclass
class TraceContext:
    """Mutable state owned by exactly one top-level trace call."""

    visited: set[str] = field(default_factory=set)
    used_host_index: bool = False
    used_formula_scan: bool = False
    truncated: bool = False
    candidate_cache: list[DependentCandidate] | None = None
    skipped_sheets: list[str] = field(default_factory=list)
    cancel_event: asyncio.Event | None = None

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()


@dataclass(frozen=True)
class TraceResult:
    root: DependencyNode | None
    mode: TraceMode
    max_depth: int
    node_count: int = 0
    edge_count: int = 0
    source: TraceSource = TraceSource.NONE
    truncated: bool = False
    skipped_sheets: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "root": self.root.to_dict() if self.root else None,
            "mode": self.mode.value,
            "maxDepth": self.max_depth,
            "nodeCount": self.node_count,
            "edgeCount": self.edge_count,
            "source": self.source.value,
            "truncated": self.truncated,
            "skippedSheets": list(self.skipped_sheets),
        }

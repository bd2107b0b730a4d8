from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest
from openpyxl import Workbook

from sheet_lineage.data_source import CellSnapshot, UsedRangeFormulas
from sheet_lineage.parser import (
    cell_address,
    normalize_traversal_address,
    parse_qualified_cell,
    qualified_address,
)


class InMemoryDataSource:
    """WorkbookDataSource double backed by a ``{"Sheet!A1": value}`` dict.

    String values starting with "=" are formulas (their value is ``None``
    unless given in ``values``). ``precedents`` / ``dependents`` play the
    host index: addresses missing from them (or the whole mapping left as
    ``None``) are "unsupported" and force the formula fallback.
    """

    def __init__(
        self,
        cells: dict[str, Any],
        *,
        sheets: list[str] | None = None,
        values: dict[str, Any] | None = None,
        number_formats: dict[str, str] | None = None,
        precedents: dict[str, list[list[str]]] | None = None,
        dependents: dict[str, list[list[str]]] | None = None,
        fail_on: set[str] | None = None,
        on_read: Callable[[str], None] | None = None,
    ) -> None:
        self.cells: dict[str, Any] = {}
        for ref, raw in cells.items():
            key = normalize_traversal_address(ref, "Sheet1")
            assert key is not None, ref
            self.cells[key] = raw
        self.sheets = sheets or _sheets_in_order(self.cells)
        self.values = {normalize_traversal_address(k, "Sheet1"): v for k, v in (values or {}).items()}
        self.number_formats = {
            normalize_traversal_address(k, "Sheet1"): v for k, v in (number_formats or {}).items()
        }
        self.precedents = precedents
        self.dependents = dependents
        self.fail_on = {normalize_traversal_address(a, "Sheet1") for a in (fail_on or set())}
        self.on_read = on_read
        self.reads: list[str] = []
        self.calls: list[str] = []

    async def read_cell(self, address: str) -> CellSnapshot:
        key = normalize_traversal_address(address, "")
        assert key is not None, address
        self.reads.append(key)
        self.calls.append("read_cell")
        if self.on_read:
            self.on_read(key)
        if key in self.fail_on:
            raise OSError(f"host connection lost reading {key}")
        raw = self.cells.get(key)
        formula = raw if isinstance(raw, str) and raw.startswith("=") else None
        value = self.values.get(key) if formula else raw
        return CellSnapshot(
            value=value,
            formula=formula,
            number_format=self.number_formats.get(key),
            resolved_address=key,
        )

    async def list_sheets(self) -> list[str]:
        self.calls.append("list_sheets")
        return list(self.sheets)

    def _bounds(self, sheet: str) -> tuple[int, int, int, int] | None:
        coords = [
            parse_qualified_cell(key, "")
            for key in self.cells
            if parse_qualified_cell(key, "").sheet == sheet
        ]
        if not coords:
            return None
        return (
            min(c.col for c in coords), min(c.row for c in coords),
            max(c.col for c in coords), max(c.row for c in coords),
        )

    async def read_used_range_address(self, sheet: str) -> str | None:
        self.calls.append("read_used_range_address")
        bounds = self._bounds(sheet)
        if bounds is None:
            return None
        c0, r0, c1, r1 = bounds
        return qualified_address(sheet, f"{cell_address(c0, r0)}:{cell_address(c1, r1)}")

    async def read_used_range_formulas(self, sheet: str) -> UsedRangeFormulas | None:
        self.calls.append(f"read_used_range_formulas:{sheet}")
        address = await self.read_used_range_address(sheet)
        if address is None:
            return None
        c0, r0, c1, r1 = self._bounds(sheet)
        grid = []
        for row in range(r0, r1 + 1):
            line = []
            for col in range(c0, c1 + 1):
                raw = self.cells.get(qualified_address(sheet, cell_address(col, row)))
                line.append(raw if isinstance(raw, str) else None)
            grid.append(line)
        return UsedRangeFormulas(area_address=address, formulas=grid)

    async def get_direct_precedents(self, address: str) -> list[list[str]] | None:
        self.calls.append("get_direct_precedents")
        if self.precedents is None:
            return None
        return self.precedents.get(address)

    async def get_direct_dependents(self, address: str) -> list[list[str]] | None:
        self.calls.append("get_direct_dependents")
        if self.dependents is None:
            return None
        return self.dependents.get(address)


def _sheets_in_order(cells: dict[str, Any]) -> list[str]:
    sheets: list[str] = []
    for key in cells:
        sheet = parse_qualified_cell(key, "").sheet
        if sheet not in sheets:
            sheets.append(sheet)
    return sheets


@pytest.fixture
def memory_source() -> type[InMemoryDataSource]:
    """The in-memory WorkbookDataSource class, for building workbooks inline."""
    return InMemoryDataSource


@pytest.fixture
def sample_xlsx(tmp_path):
    """Two-sheet workbook: Inputs feed Calc, Calc!B3 sums a range."""
    wb = Workbook()
    ws = wb.active
    ws.title = "Inputs"
    ws["A1"] = 10
    ws["A2"] = 20
    ws["A3"] = 0.25
    ws["A3"].number_format = "0.0%"

    calc = wb.create_sheet("Calc")
    calc["B1"] = "=Inputs!A1*2"
    calc["B2"] = "=Inputs!A2+B1"
    calc["B3"] = "=SUM(Inputs!A1:A2)*Inputs!A3"

    wb.create_sheet("Empty")

    path = tmp_path / "model.xlsx"
    wb.save(path)
    return path

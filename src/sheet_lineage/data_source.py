# data_source.py
"""
Read-only workbook access consumed by the tracer.

``WorkbookDataSource`` is the whole boundary to host storage: a desktop
host, a cloud spreadsheet service, the openpyxl reader below or an
in-memory test double can all sit behind it.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import networkx as nx
from openpyxl import load_workbook
from openpyxl.utils import get_column_letter
from openpyxl.workbook.workbook import Workbook
from openpyxl.worksheet.worksheet import Worksheet

from .errors import DataSourceError
from .ingest import build_workbook_index, direct_dependents, direct_precedents, formula_text
from .parser import cell_address, parse_qualified_cell, qualified_address, split_sheet

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class CellSnapshot:
    value: Any
    formula: str | None
    number_format: str | None
    resolved_address: str  # canonical "Sheet!A1"


@dataclass(frozen=True)
class UsedRangeFormulas:
    area_address: str
    formulas: list[list[str | None]]  # row-major


@runtime_checkable
class WorkbookDataSource(Protocol):
    """Async read interface to a workbook.

    ``get_direct_precedents`` / ``get_direct_dependents`` return ``None``
    when the host has no index for the address (callers fall back to
    formula parsing) and ``[]`` when the index exists but is empty.
    """

    async def read_cell(self, address: str) -> CellSnapshot:
        ...

    async def list_sheets(self) -> list[str]:
        ...

    async def read_used_range_address(self, sheet: str) -> str | None:
        ...

    async def read_used_range_formulas(self, sheet: str) -> UsedRangeFormulas | None:
        ...

    async def get_direct_precedents(self, address: str) -> list[list[str]] | None:
        ...

    async def get_direct_dependents(self, address: str) -> list[list[str]] | None:
        ...


# --------------------------------------------------------------------------- #
class OpenpyxlDataSource:
    """
    ``WorkbookDataSource`` over an .xlsx file.

    openpyxl keeps formulas and cached values in separate loads, so the
    file is opened twice. Values of formula cells are whatever Excel last
    cached (``None`` for files never opened in Excel).
    """

    def __init__(self, formulas_wb: Workbook, values_wb: Workbook | None = None,
                 index: nx.DiGraph | None = None):
        self._formulas = formulas_wb
        self._values = values_wb or formulas_wb
        self._index = index
        self._titles = {name.lower(): name for name in formulas_wb.sheetnames}

    @classmethod
    def from_path(cls, path: str | Path, use_index: bool = False) -> "OpenpyxlDataSource":
        path = Path(path)
        try:
            formulas_wb = load_workbook(path, data_only=False)
            values_wb = load_workbook(path, data_only=True)
        except (OSError, ValueError, KeyError) as e:
            raise DataSourceError(f"Could not open workbook {path}: {e}") from e
        index = build_workbook_index(formulas_wb) if use_index else None
        log.info("Loaded %s (%d sheets, index=%s)", path.name, len(formulas_wb.sheetnames), use_index)
        return cls(formulas_wb, values_wb, index)

    @property
    def has_index(self) -> bool:
        return self._index is not None

    # -- helpers ------------------------------------------------------------ #
    def _sheet_title(self, sheet: str | None) -> str:
        title = self._titles.get((sheet or "").strip().lower())
        if title is None:
            raise DataSourceError(f"Unknown sheet: {sheet!r}")
        return title

    @staticmethod
    def _peek(ws: Worksheet, row: int, col: int):
        # ws.cell() would create cells outside the used range
        if row > ws.max_row or col > ws.max_column:
            return None
        return ws.cell(row=row, column=col)

    @staticmethod
    def _is_empty(ws: Worksheet) -> bool:
        return ws.max_row == 1 and ws.max_column == 1 and ws.cell(1, 1).value is None

    # -- WorkbookDataSource ------------------------------------------------- #
    async def read_cell(self, address: str) -> CellSnapshot:
        sheet, _ = split_sheet(address)
        if sheet is None:
            raise DataSourceError(f"Address is not sheet-qualified: {address!r}", address)
        title = self._sheet_title(sheet)
        cell = parse_qualified_cell(address, title)
        if cell is None:
            raise DataSourceError(f"Invalid cell address: {address!r}", address)

        row, col = cell.row + 1, cell.col + 1
        f_cell = self._peek(self._formulas[title], row, col)
        v_cell = self._peek(self._values[title], row, col)

        formula = formula_text(f_cell.value) if f_cell is not None else None
        if formula is not None:
            value = v_cell.value if v_cell is not None else None
        else:
            value = f_cell.value if f_cell is not None else None

        number_format = f_cell.number_format if f_cell is not None else None
        if number_format in ("", "General"):
            number_format = None

        return CellSnapshot(
            value=value,
            formula=formula,
            number_format=number_format,
            resolved_address=qualified_address(title, cell_address(cell.col, cell.row)),
        )

    async def list_sheets(self) -> list[str]:
        return list(self._formulas.sheetnames)

    async def read_used_range_address(self, sheet: str) -> str | None:
        ws = self._formulas[self._sheet_title(sheet)]
        if self._is_empty(ws):
            return None
        start = f"{get_column_letter(ws.min_column)}{ws.min_row}"
        end = f"{get_column_letter(ws.max_column)}{ws.max_row}"
        return qualified_address(ws.title, f"{start}:{end}")

    async def read_used_range_formulas(self, sheet: str) -> UsedRangeFormulas | None:
        area_address = await self.read_used_range_address(sheet)
        if area_address is None:
            return None
        ws = self._formulas[self._sheet_title(sheet)]
        grid = [
            [formula_text(v) for v in row]
            for row in ws.iter_rows(
                min_row=ws.min_row, max_row=ws.max_row,
                min_col=ws.min_column, max_col=ws.max_column,
                values_only=True,
            )
        ]
        return UsedRangeFormulas(area_address=area_address, formulas=grid)

    async def get_direct_precedents(self, address: str) -> list[list[str]] | None:
        if self._index is None:
            return None
        return direct_precedents(self._index, self._canonical(address))

    async def get_direct_dependents(self, address: str) -> list[list[str]] | None:
        if self._index is None:
            return None
        canonical = self._canonical(address)
        cell = parse_qualified_cell(canonical, "")
        return direct_dependents(self._index, canonical, cell)

    def _canonical(self, address: str) -> str:
        sheet, _ = split_sheet(address)
        title = self._sheet_title(sheet)
        cell = parse_qualified_cell(address, title)
        if cell is None:
            raise DataSourceError(f"Invalid cell address: {address!r}", address)
        return qualified_address(title, cell_address(cell.col, cell.row))

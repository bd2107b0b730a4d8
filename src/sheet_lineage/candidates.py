# candidates.py
"""
Budgeted inventory of formula cells, used to answer "who points at me"
when the host has no dependents index.
"""

import asyncio
import logging
from dataclasses import dataclass, field

from .config import Settings
from .data_source import WorkbookDataSource
from .errors import TraceCancelledError
from .models import DependentCandidate
from .parser import area_cell_count, cell_address, extract_references, parse_qualified_cell, qualified_address

log = logging.getLogger(__name__)


@dataclass
class CandidateScan:
    candidates: list[DependentCandidate] = field(default_factory=list)
    truncated: bool = False
    skipped_sheets: list[str] = field(default_factory=list)


async def build_candidates(
    data_source: WorkbookDataSource,
    budget: int | None = None,
    cancel_event: asyncio.Event | None = None,
) -> CandidateScan:
    """
    1) ask every sheet for its used-range address (cheap),
    2) drop whole sheets that don't fit in the remaining cell budget,
    3) load formula grids for the rest and parse every formula once.

    ``budget`` defaults to ``Settings.MAX_DEPENDENT_SCAN_FORMULA_CELLS``.
    """
    def check_cancelled():
        if cancel_event is not None and cancel_event.is_set():
            raise TraceCancelledError("Dependents scan cancelled")

    if budget is None:
        budget = Settings().MAX_DEPENDENT_SCAN_FORMULA_CELLS

    scan = CandidateScan()
    check_cancelled()
    sheets = await data_source.list_sheets()
    addresses = []
    for sheet in sheets:
        check_cancelled()
        addresses.append(await data_source.read_used_range_address(sheet))

    remaining = budget
    selected: list[str] = []
    for sheet, address in zip(sheets, addresses):
        if address is None:
            continue
        cells = area_cell_count(address, sheet)
        if cells > remaining:
            log.info("Dependents scan skips sheet %r (%d cells, %d left in budget)", sheet, cells, remaining)
            scan.truncated = True
            scan.skipped_sheets.append(sheet)
            continue
        remaining -= cells
        selected.append(sheet)

    check_cancelled()
    grids = await asyncio.gather(*(data_source.read_used_range_formulas(s) for s in selected))

    for sheet, used in zip(selected, grids):
        if used is None:
            continue
        origin = parse_qualified_cell(used.area_address, sheet)
        if origin is None:
            log.warning("Unparsable used range %r on sheet %r", used.area_address, sheet)
            continue
        for r, row in enumerate(used.formulas):
            for c, formula in enumerate(row):
                if not isinstance(formula, str) or not formula.startswith("="):
                    continue
                refs = extract_references(formula, sheet)
                if not refs:
                    continue
                scan.candidates.append(DependentCandidate(
                    dependent_address=qualified_address(sheet, cell_address(origin.col + c, origin.row + r)),
                    references=tuple(refs),
                ))

    log.debug(
        "Dependents scan: %d sheets, %d formula candidates, %d skipped",
        len(selected), len(scan.candidates), len(scan.skipped_sheets),
    )
    return scan

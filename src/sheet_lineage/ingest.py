# ingest.py

import logging
from dataclasses import replace

import networkx as nx
from openpyxl.workbook.workbook import Workbook

from .models import AreaRef, CellAddress
from .parser import cell_address, extract_references, iter_area_cells, qualified_address

log = logging.getLogger(__name__)

# Areas bigger than this are kept as "wide" references instead of being
# expanded into one edge per cell.
MAX_EXPANDED_AREA_CELLS = 10_000


def formula_text(raw) -> str | None:
    """Formula string of an openpyxl cell value, ``None`` for constants."""
    text = getattr(raw, "text", raw)  # ArrayFormula / DataTableFormula
    if isinstance(text, str) and text.startswith("="):
        return text
    return None


def build_workbook_index(wb: Workbook, max_area_cells: int = MAX_EXPANDED_AREA_CELLS) -> nx.DiGraph:
    """
    Reads every sheet of an openpyxl workbook (loaded with data_only=False),
    parses formulas (including ranges), and returns a directed graph G where
    edges are PRECEDENT → DEPENDENT. Node IDs are canonical 'Sheet!A1'.

    Formula nodes carry ``formula`` and ``references`` (one qualified area
    string per reference, in formula order). Areas larger than
    ``max_area_cells`` are listed in ``G.graph["wide_refs"]`` as
    ``(AreaRef, dependent)`` pairs rather than expanded.
    """
    G = nx.DiGraph()
    titles = {name.lower(): name for name in wb.sheetnames}
    wide_refs: list[tuple[AreaRef, str]] = []

    for ws in wb.worksheets:
        sheet = ws.title
        for row in ws.iter_rows():
            for cell in row:
                formula = formula_text(cell.value)
                if formula is None:
                    continue
                dst = qualified_address(sheet, cell.coordinate)
                refs = extract_references(formula, sheet)
                G.add_node(dst, formula=formula, references=[_area_text(r.area) for r in refs])

                for ref in refs:
                    area = replace(ref.area, sheet=titles.get(ref.sheet.lower(), ref.sheet))
                    if area.cell_count > max_area_cells:
                        wide_refs.append((area, dst))
                        continue
                    for src in iter_area_cells(area):
                        G.add_edge(src, dst)

    G.graph["wide_refs"] = wide_refs
    log.info(
        "Indexed workbook: %d nodes, %d edges, %d wide references",
        G.number_of_nodes(), G.number_of_edges(), len(wide_refs),
    )
    return G


def _area_text(area: AreaRef) -> str:
    start = cell_address(area.start_col, area.start_row)
    if area.is_single_cell:
        return qualified_address(area.sheet, start)
    return qualified_address(area.sheet, f"{start}:{cell_address(area.end_col, area.end_row)}")


def direct_precedents(G: nx.DiGraph, address: str) -> list[list[str]]:
    """Grouped precedent areas of ``address`` (one group per reference)."""
    if address not in G:
        return []
    return [[area] for area in G.nodes[address].get("references", [])]


def direct_dependents(G: nx.DiGraph, address: str, cell: CellAddress) -> list[list[str]]:
    """Formula cells whose formulas reference ``address``."""
    found = list(G.successors(address)) if address in G else []
    for area, dst in G.graph.get("wide_refs", []):
        if area.contains(cell) and dst not in found:
            found.append(dst)
    return [found] if found else []

# parser.py
"""
Reference grammar for spreadsheet formulas.

Everything that needs to know what a formula points at goes through
``extract_references``: precedent fallback, the dependents scan, the
workbook index and the ``refs`` surfaces of the CLI/API.
"""

import re
from collections.abc import Iterable, Iterator

from openpyxl.utils import column_index_from_string, get_column_letter

from .models import AreaRef, CellAddress, ParsedReference

MAX_COLUMNS = 16_384       # XFD
MAX_ROWS = 1_048_576

# Matches:
#   A1, $B$2, A1:B2, Sheet2!D4:D9, 'Input Data'!$C$5, 'It''s'!A1
# but not identifiers that merely end in digits (LOG10(, Sheet1, my_A1)
# External-workbook references ([1]Sheet1!A1, '[Book.xlsx]S'!A1) match
# whole so their tail is never read as a local reference; callers drop them.
_SHEET_PREFIX = r"(?:'(?P<quoted>(?:[^']|'')+)'|(?P<book>\[[^\]]+\])?(?P<bare>[A-Za-z_][A-Za-z0-9_.]*))!"
_CELL_TOKEN = r"\$?[A-Za-z]{1,3}\$?\d+"
_REFERENCE_RE = re.compile(
    rf"(?<![\w.$!'\]])"
    rf"(?:{_SHEET_PREFIX})?"
    rf"(?P<start>{_CELL_TOKEN})"
    rf"(?::(?P<end>{_CELL_TOKEN}))?"
    rf"(?![\w.(!'$])"
)

_CELL_RE = re.compile(r"^([A-Za-z]{1,3})(\d+)$")
_BARE_SHEET_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_.]*$")
_LOOKS_LIKE_CELL_RE = re.compile(r"^[A-Za-z]{1,3}\d+$")

# String literals ("" is an escaped quote) and quoted sheet names
_STRING_RE = re.compile(r'"(?:[^"]|"")*"')
_QUOTED_SHEET_RE = re.compile(r"'(?:[^']|'')+'")
_FUNCTION_RE = re.compile(r"(?<![\w.])([A-Za-z_][A-Za-z0-9_.]*)\s*\(")

# One area of a possibly multi-area address; commas inside quotes don't split
_AREA_SPLIT_RE = re.compile(r"(?:'(?:[^']|'')*'|[^,])+")


def _strip_strings(formula: str) -> str:
    """Blank out string literals so refs inside quotes aren't matched."""
    return _STRING_RE.sub('""', formula)


def _sheet_key(sheet: str) -> str:
    return sheet.strip().lower()


# --------------------------------------------------------------------------- #
# Addresses
# --------------------------------------------------------------------------- #

def parse_cell(token: str) -> tuple[int, int]:
    """``"$B$3"`` -> ``(1, 2)`` (0-based col, row). Raises ValueError."""
    m = _CELL_RE.match(token.replace("$", "").strip())
    if not m:
        raise ValueError(f"Invalid cell reference: {token!r}")
    col = column_index_from_string(m.group(1).upper())
    row = int(m.group(2))
    if col > MAX_COLUMNS or not 1 <= row <= MAX_ROWS:
        raise ValueError(f"Cell reference out of bounds: {token!r}")
    return col - 1, row - 1


def cell_address(col: int, row: int) -> str:
    """``(1, 2)`` -> ``"B3"``."""
    return f"{get_column_letter(col + 1)}{row + 1}"


def quote_sheet(sheet: str) -> str:
    if _BARE_SHEET_RE.match(sheet) and not _LOOKS_LIKE_CELL_RE.match(sheet):
        return sheet
    return "'" + sheet.replace("'", "''") + "'"


def qualified_address(sheet: str, address: str) -> str:
    return f"{quote_sheet(sheet)}!{address}"


def split_sheet(ref: str) -> tuple[str | None, str]:
    """Split ``"'My Sheet'!A1:B2"`` into ``("My Sheet", "A1:B2")``."""
    ref = ref.strip()
    if ref.startswith("'"):
        m = re.match(r"^'((?:[^']|'')+)'!(.*)$", ref)
        if m:
            return m.group(1).replace("''", "'"), m.group(2).strip()
        return None, ref
    sheet, bang, address = ref.rpartition("!")
    if not bang:
        return None, ref
    return sheet.strip() or None, address.strip()


def split_areas(address: str) -> list[str]:
    """Split a multi-area address on commas that are not inside a quoted sheet."""
    return [a.strip() for a in _AREA_SPLIT_RE.findall(address) if a.strip()]


def is_multi_cell(ref: str) -> bool:
    """True for ranges (``A1:B2``) and multi-area addresses (``A1,B2``)."""
    if len(split_areas(ref)) > 1:
        return True
    _, address = split_sheet(ref)
    return ":" in address


def parse_area(ref: str, default_sheet: str) -> AreaRef | None:
    """Parse one area (``"Sheet1!$A$1:B5"``), ``None`` if malformed."""
    sheet, address = split_sheet(ref)
    sheet = sheet or default_sheet
    start, _, end = address.partition(":")
    try:
        col_a, row_a = parse_cell(start)
        col_b, row_b = parse_cell(end or start)
    except ValueError:
        return None
    return AreaRef.from_corners(sheet, col_a, row_a, col_b, row_b)


def parse_qualified_cell(ref: str, default_sheet: str) -> CellAddress | None:
    """First cell of the first area of ``ref``; ``None`` when unparsable."""
    sheet, address = split_sheet(ref)
    sheet = sheet or default_sheet
    if not sheet:
        return None
    areas = split_areas(address)
    if not areas:
        return None
    first = areas[0].split(":")[0]
    try:
        col, row = parse_cell(first)
    except ValueError:
        return None
    return CellAddress(sheet, col, row)


def normalize_traversal_address(ref: str, default_sheet: str) -> str | None:
    """Canonical ``Sheet!A1`` form used as the visited-set key."""
    cell = parse_qualified_cell(ref, default_sheet)
    if cell is None:
        return None
    return qualified_address(cell.sheet, cell_address(cell.col, cell.row))


def area_cell_count(address: str, default_sheet: str = "") -> int:
    """Estimated cells in a (multi-area, possibly qualified) range address."""
    total = 0
    for area_text in split_areas(address):
        area = parse_area(area_text, default_sheet)
        if area is not None:
            total += area.cell_count
    return total


def iter_area_cells(area: AreaRef) -> Iterator[str]:
    """Qualified addresses of every cell in ``area``, row by row."""
    for row in range(area.start_row, area.end_row + 1):
        for col in range(area.start_col, area.end_col + 1):
            yield qualified_address(area.sheet, cell_address(col, row))


# --------------------------------------------------------------------------- #
# Formula references
# --------------------------------------------------------------------------- #

def extract_references(formula: str, owner_sheet: str) -> list[ParsedReference]:
    """
    Extract every area referenced by ``formula``.

    Unqualified references belong to ``owner_sheet``. Each comma-separated
    area is its own reference; duplicates are emitted once. Malformed tokens
    are dropped.
    """
    clean = _strip_strings(formula)
    refs: list[ParsedReference] = []
    seen: set[tuple] = set()

    for m in _REFERENCE_RE.finditer(clean):
        if m.group("quoted") is not None:
            sheet = m.group("quoted").replace("''", "'")
            if "]" in sheet:
                continue  # '[Book.xlsx]Sheet'!A1 lives in another workbook
        elif m.group("book"):
            continue
        else:
            sheet = m.group("bare") or owner_sheet

        try:
            col_a, row_a = parse_cell(m.group("start"))
            col_b, row_b = parse_cell(m.group("end") or m.group("start"))
        except ValueError:
            continue

        area = AreaRef.from_corners(sheet, col_a, row_a, col_b, row_b)
        key = (_sheet_key(sheet), area.start_col, area.start_row, area.end_col, area.end_row)
        if key in seen:
            continue
        seen.add(key)

        anchor = cell_address(area.start_col, area.start_row)
        refs.append(ParsedReference(
            sheet=sheet,
            area=area,
            anchor_address=anchor,
            qualified_anchor=qualified_address(sheet, anchor),
        ))

    return refs


def references_target(references: Iterable[ParsedReference], target: CellAddress) -> bool:
    """True if any reference is ``target`` or a rectangle containing it."""
    return any(ref.contains(target) for ref in references)


def formula_references_target(formula: str, owner_sheet: str, target_ref: str) -> bool:
    target = parse_qualified_cell(target_ref, owner_sheet)
    if target is None:
        return False
    return references_target(extract_references(formula, owner_sheet), target)


def extract_function_names(formula: str) -> list[str]:
    """Upper-cased function names in first-seen order."""
    clean = _QUOTED_SHEET_RE.sub("''", _strip_strings(formula))
    names: list[str] = []
    seen: set[str] = set()
    for m in _FUNCTION_RE.finditer(clean):
        name = m.group(1).upper()
        if name not in seen:
            names.append(name)
            seen.add(name)
    return names

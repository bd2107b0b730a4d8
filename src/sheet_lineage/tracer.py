# tracer.py
"""
Bounded, cycle-safe traversal of precedents / dependents.

Edges are never materialized: children of a node come either from the
host's index (``get_direct_precedents`` / ``get_direct_dependents``) or,
when the host returns ``None``, from parsing formula text. All per-call
state lives in a ``TraceContext`` threaded through the recursion.
"""

import asyncio
import logging

from .candidates import build_candidates
from .config import Settings
from .data_source import CellSnapshot, WorkbookDataSource
from .errors import DataSourceError, InvalidInputError, TraceCancelledError, TraceError
from .models import (
    CIRCULAR_SENTINEL,
    CellAddress,
    DependencyNode,
    TraceContext,
    TraceMode,
    TraceResult,
)
from .parser import (
    cell_address,
    extract_references,
    is_multi_cell,
    normalize_traversal_address,
    parse_qualified_cell,
    qualified_address,
    references_target,
    split_sheet,
)
from .tree import resolve_source, summarize

log = logging.getLogger(__name__)

MIN_DEPTH = 1


def clamp_depth(depth: int | None, settings: Settings) -> int:
    if depth is None:
        depth = settings.DEFAULT_DEPTH
    return max(MIN_DEPTH, min(int(depth), settings.MAX_DEPTH))


def ensure_single_cell(cell: str, default_sheet: str = "") -> str:
    """Validate a trace target and return it as a canonical ``Sheet!A1``."""
    if is_multi_cell(cell):
        raise InvalidInputError(f"Expected a single cell, not a range: {cell!r}")
    sheet, _ = split_sheet(cell)
    if not (sheet or default_sheet):
        raise InvalidInputError(f"Cell reference must be sheet-qualified: {cell!r}")
    address = normalize_traversal_address(cell, default_sheet)
    if address is None:
        raise InvalidInputError(f"Not a valid cell reference: {cell!r}")
    return address


async def _call(ctx: TraceContext, what: str, address: str | None, coro_fn, *args):
    """Run one data-source read, honoring cancellation and wrapping failures."""
    if ctx.cancelled:
        raise TraceCancelledError(f"Trace cancelled before {what}")
    try:
        return await coro_fn(*args)
    except TraceError:
        raise
    except Exception as e:
        raise DataSourceError(f"{what} failed for {address or '?'}: {e}", address) from e


class _Tracer:
    """One trace call. Holds only immutable inputs; state is in ``ctx``."""

    def __init__(self, data_source: WorkbookDataSource, mode: TraceMode, max_depth: int, settings: Settings):
        self.ds = data_source
        self.mode = mode
        self.max_depth = max_depth
        self.settings = settings

    async def read(self, ctx: TraceContext, address: str) -> CellSnapshot:
        return await _call(ctx, "read_cell", address, self.ds.read_cell, address)

    async def leaf(self, ctx: TraceContext, address: str) -> DependencyNode:
        snap = await self.read(ctx, address)
        return DependencyNode(
            address=snap.resolved_address,
            value=snap.value,
            number_format=snap.number_format,
            formula=snap.formula,
        )

    async def visit(self, ctx: TraceContext, address: str, depth: int) -> DependencyNode | None:
        snap = await self.read(ctx, address)
        full = snap.resolved_address

        if full in ctx.visited:
            return DependencyNode(
                address=full,
                value=snap.value,
                number_format=snap.number_format,
                formula=CIRCULAR_SENTINEL,
            )
        ctx.visited.add(full)

        # Precedent tracing requires a formula at the current node.
        if self.mode is TraceMode.PRECEDENTS and not snap.formula:
            return None

        node = DependencyNode(
            address=full,
            value=snap.value,
            number_format=snap.number_format,
            formula=snap.formula,
        )
        if depth >= self.max_depth:
            return node

        for child_address in await self.resolve_children(ctx, node):
            child = await self.visit(ctx, child_address, depth + 1)
            if child is None:
                child = await self.leaf(ctx, child_address)
            node.children.append(child)

        return node

    # -- child resolution --------------------------------------------------- #
    def _collect(self, ctx: TraceContext, addresses, sheet: str) -> list[str]:
        cap = self.settings.MAX_CHILDREN_PER_NODE
        children: list[str] = []
        for raw in addresses:
            address = normalize_traversal_address(raw, sheet)
            if address is None or address in children:
                continue
            if len(children) >= cap:
                ctx.truncated = True
                break
            children.append(address)
        return children

    async def resolve_children(self, ctx: TraceContext, node: DependencyNode) -> list[str]:
        sheet, _ = split_sheet(node.address)
        sheet = sheet or ""

        if self.mode is TraceMode.PRECEDENTS:
            groups = await _call(ctx, "get_direct_precedents", node.address,
                                 self.ds.get_direct_precedents, node.address)
        else:
            groups = await _call(ctx, "get_direct_dependents", node.address,
                                 self.ds.get_direct_dependents, node.address)

        if groups is not None:
            ctx.used_host_index = True
            return self._collect(ctx, (a for group in groups for a in group), sheet)

        log.debug("No host %s index for %s, parsing formulas", self.mode.value, node.address)
        ctx.used_formula_scan = True
        if self.mode is TraceMode.PRECEDENTS:
            return self._precedents_from_formula(ctx, node, sheet)
        return await self._dependents_from_scan(ctx, node)

    def _precedents_from_formula(self, ctx: TraceContext, node: DependencyNode, sheet: str) -> list[str]:
        if not node.formula:
            return []
        refs = extract_references(node.formula, sheet)
        limit = self.settings.MAX_PRECEDENT_FALLBACK_REFS
        if len(refs) > limit:
            ctx.truncated = True
        return self._collect(ctx, (ref.qualified_anchor for ref in refs[:limit]), sheet)

    async def _dependents_from_scan(self, ctx: TraceContext, node: DependencyNode) -> list[str]:
        target = parse_qualified_cell(node.address, "")
        if target is None:
            return []

        if ctx.candidate_cache is None:
            scan = await _call(
                ctx, "dependents scan", None, build_candidates,
                self.ds, self.settings.MAX_DEPENDENT_SCAN_FORMULA_CELLS, ctx.cancel_event,
            )
            ctx.candidate_cache = scan.candidates
            ctx.skipped_sheets.extend(scan.skipped_sheets)
            if scan.truncated:
                ctx.truncated = True

        matches = (
            c.dependent_address
            for c in ctx.candidate_cache
            if references_target(c.references, target)
        )
        return self._collect(ctx, matches, target.sheet)


async def trace(
    data_source: WorkbookDataSource,
    target: CellAddress | str,
    mode: TraceMode | str = TraceMode.PRECEDENTS,
    max_depth: int | None = None,
    *,
    settings: Settings | None = None,
    cancel_event: asyncio.Event | None = None,
) -> TraceResult:
    """
    Trace precedents or dependents of a single cell.

    Raises InvalidInputError for ranges, DataSourceError when a read fails
    and TraceCancelledError once ``cancel_event`` is set. Budget and cap
    enforcement only set ``truncated`` on the result.
    """
    settings = settings or Settings()
    mode = TraceMode(mode)
    depth = clamp_depth(max_depth, settings)

    if isinstance(target, CellAddress):
        address = qualified_address(target.sheet, cell_address(target.col, target.row))
    else:
        address = ensure_single_cell(target)

    ctx = TraceContext(cancel_event=cancel_event)
    log.info("Tracing %s of %s (depth %d)", mode.value, address, depth)

    root = await _Tracer(data_source, mode, depth, settings).visit(ctx, address, 0)

    if root is None:
        log.info("%s has no formula; nothing to trace", address)
        return TraceResult(
            root=None,
            mode=mode,
            max_depth=depth,
            source=resolve_source(ctx),
            truncated=ctx.truncated,
            skipped_sheets=tuple(ctx.skipped_sheets),
        )

    summary = summarize(root)
    result = TraceResult(
        root=root,
        mode=mode,
        max_depth=depth,
        node_count=summary.node_count,
        edge_count=summary.edge_count,
        source=resolve_source(ctx),
        truncated=ctx.truncated,
        skipped_sheets=tuple(ctx.skipped_sheets),
    )
    log.info(
        "Traced %s: %d nodes, %d edges, source=%s%s",
        root.address, result.node_count, result.edge_count, result.source.value,
        " (truncated)" if result.truncated else "",
    )
    return result

# tools.py
"""
``trace_dependencies``: the tool-style entry point shared by the CLI and
the HTTP API. It never raises for expected failures; every outcome is a
``TraceReport`` with an explicit status.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum

from .config import Settings
from .data_source import WorkbookDataSource
from .errors import DataSourceError, InvalidInputError, TraceCancelledError
from .models import TraceMode, TraceResult
from .parser import is_multi_cell, split_sheet
from .tracer import ensure_single_cell, trace
from .tree import render_tree

log = logging.getLogger(__name__)


class TraceStatus(str, Enum):
    OK = "ok"
    NO_FORMULA = "no_formula"
    INVALID_INPUT = "invalid_input"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(frozen=True)
class TraceReport:
    status: TraceStatus
    message: str
    result: TraceResult | None = None
    text: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is TraceStatus.OK

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "message": self.message,
            "text": self.text,
            "result": self.result.to_dict() if self.result else None,
        }


def normalize_trace_mode(mode: str | None) -> TraceMode:
    return TraceMode.DEPENDENTS if mode == "dependents" else TraceMode.PRECEDENTS


async def _first_sheet(data_source: WorkbookDataSource) -> str:
    try:
        sheets = await data_source.list_sheets()
    except Exception as e:
        raise DataSourceError(f"list_sheets failed: {e}") from e
    if not sheets:
        raise InvalidInputError("Workbook has no sheets")
    return sheets[0]


def render_report_text(result: TraceResult) -> str:
    heading = "Dependents" if result.mode is TraceMode.DEPENDENTS else "Precedents"
    lines = [render_tree(result.root, f"**{heading} tree for {result.root.address}:**")]

    if result.mode is TraceMode.DEPENDENTS and not result.root.children:
        lines.append("\n_No direct dependents found._")
    if result.truncated:
        lines.append("\n_Trace output was truncated to keep the result responsive._")
        if result.skipped_sheets:
            lines.append("_Sheets skipped by the dependents scan: " + ", ".join(result.skipped_sheets) + "._")
    return "\n".join(lines)


async def trace_dependencies(
    data_source: WorkbookDataSource,
    cell: str,
    mode: str | None = None,
    depth: int | None = None,
    *,
    default_sheet: str | None = None,
    settings: Settings | None = None,
    cancel_event: asyncio.Event | None = None,
) -> TraceReport:
    """Validate ``cell``, run the trace and describe the outcome."""
    trace_mode = normalize_trace_mode(mode)

    if is_multi_cell(cell):
        return TraceReport(
            TraceStatus.INVALID_INPUT,
            "Error: trace_dependencies expects a single cell, not a range.",
        )

    try:
        if default_sheet is None and split_sheet(cell)[0] is None:
            default_sheet = await _first_sheet(data_source)
        target = ensure_single_cell(cell, default_sheet or "")
    except InvalidInputError as e:
        return TraceReport(TraceStatus.INVALID_INPUT, f"Error: {e}")
    except DataSourceError as e:
        log.exception("Could not resolve %s", cell)
        return TraceReport(TraceStatus.FAILED, f"Error tracing dependencies: {e}")

    try:
        result = await trace(
            data_source, target, trace_mode, depth,
            settings=settings, cancel_event=cancel_event,
        )
    except InvalidInputError as e:
        return TraceReport(TraceStatus.INVALID_INPUT, f"Error: {e}")
    except TraceCancelledError:
        log.info("Trace of %s cancelled", target)
        return TraceReport(TraceStatus.CANCELLED, f"Trace of {cell} was cancelled.")
    except DataSourceError as e:
        log.exception("Trace of %s failed", target)
        return TraceReport(TraceStatus.FAILED, f"Error tracing dependencies: {e}")

    if result.root is None:
        return TraceReport(
            TraceStatus.NO_FORMULA,
            f"{cell} has no formula — it's a direct value or empty.",
            result=result,
        )

    return TraceReport(
        TraceStatus.OK,
        f"Traced {result.mode.value} of {result.root.address}",
        result=result,
        text=render_report_text(result),
    )

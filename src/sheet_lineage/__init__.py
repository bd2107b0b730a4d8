"""sheet_lineage - trace spreadsheet formula precedents and dependents."""

from .candidates import CandidateScan, build_candidates
from .config import Settings
from .data_source import CellSnapshot, OpenpyxlDataSource, UsedRangeFormulas, WorkbookDataSource
from .errors import DataSourceError, InvalidInputError, TraceCancelledError, TraceError
from .models import (
    AreaRef,
    CellAddress,
    DependencyNode,
    DependentCandidate,
    ParsedReference,
    TraceContext,
    TraceMode,
    TraceResult,
    TraceSource,
)
from .parser import extract_function_names, extract_references
from .tools import TraceReport, TraceStatus, trace_dependencies
from .tracer import trace
from .tree import render_tree, resolve_source, summarize, to_networkx

__all__ = [
    "AreaRef",
    "CandidateScan",
    "CellAddress",
    "CellSnapshot",
    "DataSourceError",
    "DependencyNode",
    "DependentCandidate",
    "InvalidInputError",
    "OpenpyxlDataSource",
    "ParsedReference",
    "Settings",
    "TraceCancelledError",
    "TraceContext",
    "TraceError",
    "TraceMode",
    "TraceReport",
    "TraceResult",
    "TraceSource",
    "TraceStatus",
    "UsedRangeFormulas",
    "WorkbookDataSource",
    "build_candidates",
    "extract_function_names",
    "extract_references",
    "render_tree",
    "resolve_source",
    "summarize",
    "to_networkx",
    "trace",
    "trace_dependencies",
]

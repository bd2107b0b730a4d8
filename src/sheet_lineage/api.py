# src/sheet_lineage/api.py
import asyncio
from pathlib import Path
from typing import Any

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from .config import Settings
from .data_source import OpenpyxlDataSource
from .errors import DataSourceError
from .models import DependencyNode, TraceResult
from .parser import extract_function_names, extract_references
from .tools import TraceStatus, trace_dependencies

_settings = Settings()


# ──────────────────────────────────────────────────────────────
# 1) Request / response schemas
# ──────────────────────────────────────────────────────────────
class TraceRequest(BaseModel):
    path: str = Field(..., description="Path to an .xlsx workbook on the server")
    cell: str = Field(..., description='Single cell, e.g. "D10" or "Sheet2!F5"')
    mode: str | None = Field(None, description="precedents (default) or dependents")
    depth: int | None = Field(None, description=f"Levels to trace, max {_settings.MAX_DEPTH}")
    use_index: bool = Field(False, description="Build a workbook index for lookups")


class ReferencesRequest(BaseModel):
    formula: str
    sheet: str = "Sheet1"


class NodeOut(BaseModel):
    address: str
    value: Any = None
    numberFormat: str | None = None
    formula: str | None = None
    children: list["NodeOut"] = []

    @classmethod
    def from_node(cls, node: DependencyNode) -> "NodeOut":
        return cls(
            address=node.address,
            value=node.value,
            numberFormat=node.number_format,
            formula=node.formula,
            children=[cls.from_node(c) for c in node.children],
        )


NodeOut.model_rebuild()


class TraceOut(BaseModel):
    root: NodeOut | None
    mode: str
    maxDepth: int
    nodeCount: int
    edgeCount: int
    source: str
    truncated: bool
    skippedSheets: list[str] = []

    @classmethod
    def from_result(cls, result: TraceResult) -> "TraceOut":
        return cls(
            root=NodeOut.from_node(result.root) if result.root else None,
            mode=result.mode.value,
            maxDepth=result.max_depth,
            nodeCount=result.node_count,
            edgeCount=result.edge_count,
            source=result.source.value,
            truncated=result.truncated,
            skippedSheets=list(result.skipped_sheets),
        )


class TraceResponse(BaseModel):
    status: str
    message: str
    text: str | None = None
    result: TraceOut | None = None


class ReferenceOut(BaseModel):
    sheet: str
    anchor: str
    address: str
    startCol: int
    startRow: int
    endCol: int
    endRow: int


class ReferencesResponse(BaseModel):
    references: list[ReferenceOut]
    functions: list[str]


# ──────────────────────────────────────────────────────────────
# 2) FastAPI setup
# ──────────────────────────────────────────────────────────────
app = FastAPI(title="Sheet Lineage API")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"], allow_methods=["*"], allow_headers=["*"],
)


@app.get("/health")
def health():
    return {"status": "ok"}


@app.post("/trace", response_model=TraceResponse)
async def trace(req: TraceRequest):
    """
    Trace precedents / dependents of one cell in a workbook:
      • 400 for ranges or malformed cells
      • 404 if the workbook can't be found
      • 502 if reading the workbook fails mid-trace
    """
    if not Path(req.path).is_file():
        raise HTTPException(404, detail=f"Workbook not found: {req.path}")
    try:
        # load_workbook and the index build are blocking; keep them off the loop
        source = await asyncio.to_thread(OpenpyxlDataSource.from_path, req.path, use_index=req.use_index)
    except DataSourceError as e:
        raise HTTPException(502, detail=str(e))

    report = await trace_dependencies(source, req.cell, req.mode, req.depth, settings=_settings)

    if report.status is TraceStatus.INVALID_INPUT:
        raise HTTPException(400, detail=report.message)
    if report.status is TraceStatus.FAILED:
        raise HTTPException(502, detail=report.message)

    return TraceResponse(
        status=report.status.value,
        message=report.message,
        text=report.text,
        result=TraceOut.from_result(report.result) if report.result else None,
    )


@app.post("/references", response_model=ReferencesResponse)
def references(req: ReferencesRequest):
    refs = extract_references(req.formula, req.sheet)
    return ReferencesResponse(
        references=[
            ReferenceOut(
                sheet=r.sheet,
                anchor=r.anchor_address,
                address=r.qualified_anchor,
                startCol=r.area.start_col,
                startRow=r.area.start_row,
                endCol=r.area.end_col,
                endRow=r.area.end_row,
            )
            for r in refs
        ],
        functions=extract_function_names(req.formula),
    )

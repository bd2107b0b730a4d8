import asyncio
import json
import logging

import typer
import uvicorn

from .config import Settings
from .data_source import OpenpyxlDataSource
from .errors import DataSourceError
from .parser import extract_function_names, extract_references
from .tools import TraceStatus, trace_dependencies

cli = typer.Typer(help="🧭 Sheet-Lineage CLI")

_cfg = Settings()


@cli.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging.")):
    logging.basicConfig(
        level=logging.DEBUG if verbose else _cfg.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(message)s",
    )


@cli.command()
def trace(
    xlsx: str,
    cell: str,
    mode: str = typer.Option("precedents", help="precedents or dependents"),
    depth: int = typer.Option(_cfg.DEFAULT_DEPTH, help=f"Levels to trace (max {_cfg.MAX_DEPTH})."),
    index: bool = typer.Option(False, "--index/--no-index", help="Answer lookups from a prebuilt workbook index."),
    as_json: bool = typer.Option(False, "--json", help="Print the full report as JSON."),
):
    """Trace precedents or dependents of CELL in XLSX."""
    try:
        source = OpenpyxlDataSource.from_path(xlsx, use_index=index)
    except DataSourceError as e:
        typer.echo(f"❌  {e}", err=True)
        raise typer.Exit(code=1)

    report = asyncio.run(trace_dependencies(source, cell, mode, depth, settings=_cfg))

    if as_json:
        typer.echo(json.dumps(report.to_dict(), indent=2, default=str))
    else:
        typer.echo(report.text or report.message)

    if report.status not in (TraceStatus.OK, TraceStatus.NO_FORMULA):
        raise typer.Exit(code=1)


@cli.command()
def refs(formula: str, sheet: str = typer.Option("Sheet1", help="Sheet that owns the formula.")):
    """Print the references and functions a FORMULA uses."""
    out = {
        "references": [
            {"sheet": r.sheet, "anchor": r.anchor_address, "address": r.qualified_anchor,
             "cells": r.area.cell_count}
            for r in extract_references(formula, sheet)
        ],
        "functions": extract_function_names(formula),
    }
    typer.echo(json.dumps(out, indent=2))


@cli.command()
def api(host: str = _cfg.API_HOST, port: int = _cfg.API_PORT):
    """Launch REST API."""
    from .api import app as fastapi_app

    uvicorn.run(fastapi_app, host=host, port=port, log_level="info")


if __name__ == "__main__":
    cli()

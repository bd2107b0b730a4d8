"""Tests for the budgeted dependents scan."""

from __future__ import annotations

import asyncio

import pytest

from sheet_lineage import candidates
from sheet_lineage.candidates import build_candidates
from sheet_lineage.config import Settings
from sheet_lineage.errors import TraceCancelledError


@pytest.mark.asyncio
async def test_only_formulas_with_references_become_candidates(memory_source) -> None:
    ds = memory_source({
        "Calc!A1": 3,
        "Calc!A2": "hello",
        "Calc!A3": "=1+2",
        "Calc!B1": "=A1*2",
        "Calc!B2": "='Other Sheet'!C3+A1",
    })
    scan = await build_candidates(ds)

    assert [c.dependent_address for c in scan.candidates] == ["Calc!B1", "Calc!B2"]
    assert [r.qualified_anchor for r in scan.candidates[1].references] == ["'Other Sheet'!C3", "Calc!A1"]
    assert not scan.truncated
    assert scan.skipped_sheets == []


@pytest.mark.asyncio
async def test_addresses_offset_by_used_range_origin(memory_source) -> None:
    ds = memory_source({"Calc!C5": 1, "Calc!D7": "=C5"})
    scan = await build_candidates(ds)
    assert [c.dependent_address for c in scan.candidates] == ["Calc!D7"]


@pytest.mark.asyncio
async def test_sheet_over_budget_is_skipped_whole(memory_source) -> None:
    cells = {"First!A1": "=Second!A1"}
    cells.update({f"Second!A{i}": f"=First!A1+{i}" for i in range(1, 21)})
    cells["Third!B2"] = "=First!A1"
    ds = memory_source(cells)

    scan = await build_candidates(ds, budget=5)

    assert scan.truncated
    assert scan.skipped_sheets == ["Second"]
    assert [c.dependent_address for c in scan.candidates] == ["First!A1", "Third!B2"]
    assert "read_used_range_formulas:Second" not in ds.calls


@pytest.mark.asyncio
async def test_default_budget_comes_from_settings(memory_source, monkeypatch) -> None:
    monkeypatch.setattr(candidates, "Settings", lambda: Settings(MAX_DEPENDENT_SCAN_FORMULA_CELLS=3))
    ds = memory_source({
        "Small!A1": "=Big!A1",
        **{f"Big!A{i}": f"=Small!A1+{i}" for i in range(1, 6)},
    })

    scan = await build_candidates(ds)

    assert scan.skipped_sheets == ["Big"]
    assert [c.dependent_address for c in scan.candidates] == ["Small!A1"]


@pytest.mark.asyncio
async def test_used_range_addresses_are_read_before_formulas(memory_source) -> None:
    ds = memory_source({"A!A1": "=B!A1", "B!A1": 1})
    await build_candidates(ds)
    first_formula_load = next(i for i, c in enumerate(ds.calls) if c.startswith("read_used_range_formulas"))
    assert ds.calls[:first_formula_load].count("read_used_range_address") == 2


@pytest.mark.asyncio
async def test_cancelled_scan(memory_source) -> None:
    event = asyncio.Event()
    event.set()
    ds = memory_source({"A!A1": "=B1"})
    with pytest.raises(TraceCancelledError):
        await build_candidates(ds, cancel_event=event)

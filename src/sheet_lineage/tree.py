# tree.py
"""
Walks over a traced ``DependencyNode`` tree: summary counts, provenance,
a text renderer and a networkx export.
"""

import json
import re
from dataclasses import dataclass
from typing import Any

import networkx as nx

from .models import DependencyNode, TraceContext, TraceSource


@dataclass(frozen=True)
class TreeSummary:
    node_count: int
    edge_count: int


def summarize(root: DependencyNode) -> TreeSummary:
    node_count = 0
    edge_count = 0
    stack = [root]
    while stack:
        node = stack.pop()
        node_count += 1
        edge_count += len(node.children)
        stack.extend(node.children)
    return TreeSummary(node_count, edge_count)


def resolve_source(ctx: TraceContext) -> TraceSource:
    if ctx.used_host_index and ctx.used_formula_scan:
        return TraceSource.MIXED
    if ctx.used_host_index:
        return TraceSource.API
    if ctx.used_formula_scan:
        return TraceSource.FORMULA_SCAN
    return TraceSource.NONE


# --------------------------------------------------------------------------- #
# Value formatting
# --------------------------------------------------------------------------- #

_CURRENCY_SYMBOLS = ("$", "£", "€", "¥", "₹", "CHF", "kr")
_LOCALE_CURRENCY_RE = re.compile(r"\[\$([^\]-]+)")
_LOCALE_CODE_RE = re.compile(r"\[\$[^\]]*\]")


def _decimal_digits(section: str) -> int:
    """Count 0/# placeholders right after the decimal point."""
    dot = section.find(".")
    if dot < 0:
        return 0
    n = 0
    for ch in section[dot + 1:]:
        if ch not in "0#":
            break
        n += 1
    return n


def _currency(section: str) -> str | None:
    # [$€-407] style locale codes first, they also contain "$"
    m = _LOCALE_CURRENCY_RE.search(section)
    if m and m.group(1).strip():
        return m.group(1).strip()
    # [$-409] only picks a locale
    section = _LOCALE_CODE_RE.sub("", section)
    for sym in _CURRENCY_SYMBOLS:
        if sym in section:
            return sym
    return None


def _smart_number(n: float) -> str:
    if float(n).is_integer():
        return f"{int(n):,}"
    magnitude = abs(n)
    if magnitude >= 100:
        return f"{n:,.2f}".rstrip("0").rstrip(".")
    if magnitude >= 0.01:
        return f"{n:,.4f}".rstrip("0").rstrip(".")
    return f"{n:.3g}"


def apply_number_format(value: float, fmt: str) -> str:
    """Render ``value`` with the positive section of an Excel number format."""
    section = fmt.split(";")[0]
    digits = _decimal_digits(section)

    if "%" in section:
        pct = value * 100
        text = f"{abs(pct):.{digits}f}%"
        return f"({text})" if pct < 0 else text

    symbol = _currency(section)
    if symbol:
        text = f"{symbol}{abs(value):,.{digits}f}"
        return f"({text})" if value < 0 else text

    if "," in section:
        return f"{value:,.{digits}f}"

    if "." in section and digits > 0:
        return f"{value:.{digits}f}"

    return _smart_number(value)


def format_value(value: Any, number_format: str | None = None) -> str:
    """Display text for a cell value; blank cells render as ''."""
    if value is None or value == "":
        return ""
    if isinstance(value, bool):
        return str(value).upper()
    if isinstance(value, (int, float)):
        if number_format and number_format != "General":
            return apply_number_format(value, number_format)
        return _smart_number(value)
    if isinstance(value, str):
        return value
    return json.dumps(value, default=str)


# --------------------------------------------------------------------------- #
# Rendering
# --------------------------------------------------------------------------- #

def _render(node: DependencyNode, lines: list[str], prefix: str, is_last: bool) -> None:
    connector = "└── " if is_last else "├── "
    shown = format_value(node.value, node.number_format)
    value_str = f" = {shown}" if shown else ""
    formula_str = f" ({node.formula})" if node.formula else ""
    lines.append(f"{prefix}{connector}**{node.address}**{value_str}{formula_str}")

    child_prefix = prefix + ("    " if is_last else "│   ")
    for i, child in enumerate(node.children):
        _render(child, lines, child_prefix, i == len(node.children) - 1)


def render_tree(root: DependencyNode, heading: str | None = None) -> str:
    """Depth-first text tree with ├──/└── connectors."""
    lines: list[str] = []
    if heading:
        lines += [heading, ""]
    _render(root, lines, "", True)
    return "\n".join(lines)


def to_networkx(root: DependencyNode) -> nx.DiGraph:
    """
    Parent → child DiGraph of a trace tree. Circular markers get their own
    node id ("<address> (circular)") so the export stays a DAG.
    """
    G = nx.DiGraph()

    def node_id(node: DependencyNode) -> str:
        return f"{node.address} (circular)" if node.is_circular else node.address

    stack = [root]
    G.add_node(node_id(root), value=root.value, formula=root.formula,
               number_format=root.number_format, circular=root.is_circular)
    while stack:
        node = stack.pop()
        for child in node.children:
            cid = node_id(child)
            G.add_node(cid, value=child.value, formula=child.formula,
                       number_format=child.number_format, circular=child.is_circular)
            G.add_edge(node_id(node), cid)
            stack.append(child)
    return G

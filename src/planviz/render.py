"""Laid-out plan tree to self-contained SVG markup."""
from __future__ import annotations

import html
import math
import xml.etree.ElementTree as ET
from decimal import ROUND_HALF_UP, Context, Decimal
from typing import List, Sequence, Tuple

from .layout import layout_tree
from .model import DEFAULT_THEME, PlanNode, PlanTheme
from .parser import parse_plan
from .resources import load_stylesheet

SVG_NS = "http://www.w3.org/2000/svg"
ET.register_namespace("", SVG_NS)

WARNING_GLYPH = "\u26a0"
PARALLEL_GLYPH = "\u2016"
ELLIPSIS = "\u2026"
ARROWHEAD_ID = "arrowhead"

# Wide enough to hold the exact decimal expansion of any finite double.
_HALF_UP = Context(prec=1100, rounding=ROUND_HALF_UP)


class PlanUnavailableError(ValueError):
    """Raised when plan XML cannot be turned into an operator tree."""

    code = "E_PLAN_UNAVAILABLE"

    def __init__(self, message: str = "Could not parse query plan XML.") -> None:
        super().__init__(message)
        self.message = message


class FocusNotFoundError(ValueError):
    """Raised when a requested focus node id does not exist in rendered SVG."""

    code = "E_FOCUS_NOT_FOUND"


def render_plan_xml(xml_text: str, theme: PlanTheme = DEFAULT_THEME) -> str:
    """Parse and render in one step, raising :class:`PlanUnavailableError` on bad input."""
    root = parse_plan(xml_text)
    if root is None:
        raise PlanUnavailableError()
    return render_plan_svg(root, theme)


def render_plan_svg(root: PlanNode, theme: PlanTheme = DEFAULT_THEME) -> str:
    """Lay out ``root`` in place and return the plan as an SVG document string."""
    bounds = layout_tree(root, theme)
    width = bounds.width + theme.padding * 2
    height = bounds.height + theme.padding * 2

    svg_root = ET.Element(
        _q("svg"),
        {
            "width": format_length(width),
            "height": format_length(height),
            "viewBox": f"0 0 {format_length(width)} {format_length(height)}",
            "style": "display:block",
        },
    )
    style = ET.SubElement(svg_root, _q("style"))
    style.text = load_stylesheet()
    _emit_arrow_marker(svg_root)
    _emit_tree(svg_root, root, theme)
    return _pretty_xml(svg_root)


def cost_color(fraction: float, theme: PlanTheme = DEFAULT_THEME) -> str:
    """Green for cheap operators through to red for the whole plan's cost."""
    clamped = min(max(fraction, 0.0), 1.0)
    hue = int(math.floor((1.0 - clamped) * theme.hue_low_cost + 0.5))
    return f"hsl({hue}, {theme.saturation}%, {theme.lightness}%)"


def edge_weight(rows: float, theme: PlanTheme = DEFAULT_THEME) -> float:
    if rows <= 0:
        return theme.edge_min_weight
    weight = theme.edge_min_weight + theme.edge_weight_scale * math.log10(rows)
    return min(max(weight, theme.edge_min_weight), theme.edge_max_weight)


def format_rows(rows: float) -> str:
    if rows >= 1_000_000:
        return f"{_fixed(rows / 1_000_000, 1)}M"
    if rows >= 1_000:
        return f"{_fixed(rows / 1_000, 1)}K"
    return _fixed(rows, 0)


def format_cost(cost: float) -> str:
    if cost >= 1:
        return _fixed(cost, 2)
    if cost >= 0.001:
        return _fixed(cost, 4)
    return _exponential(cost, 2)


def _fixed(value: float, digits: int) -> str:
    """``value`` with ``digits`` decimals, ties rounded away from zero."""
    if not math.isfinite(value):
        return f"{value:.{digits}f}"
    quantum = Decimal(1).scaleb(-digits)
    return f"{Decimal(value).quantize(quantum, context=_HALF_UP):f}"


def _exponential(value: float, digits: int) -> str:
    if not math.isfinite(value):
        return f"{value:.{digits}e}"
    exact = Decimal(value)
    if exact.is_zero():
        return f"{0:.{digits}f}e+0"
    quantum = Decimal(1).scaleb(-digits)
    exponent = exact.adjusted()
    mantissa = exact.scaleb(-exponent, _HALF_UP).quantize(quantum, context=_HALF_UP)
    if abs(mantissa) >= 10:
        exponent += 1
        mantissa = exact.scaleb(-exponent, _HALF_UP).quantize(quantum, context=_HALF_UP)
    return f"{mantissa:f}e{exponent:+d}"


def truncate(text: str, max_len: int) -> str:
    if len(text) > max_len:
        return text[: max_len - 1] + ELLIPSIS
    return text


def node_tooltip(node: PlanNode) -> str:
    rows: List[Tuple[str, str]] = [("Logical Op", node.logical_op)]
    if node.object_name:
        rows.append(("Object", node.object_name))
    rows.extend(
        [
            ("Est. Rows", format_rows(node.estimate_rows)),
            ("Est. CPU", format_cost(node.estimate_cpu)),
            ("Est. I/O", format_cost(node.estimate_io)),
            ("Subtree Cost", format_cost(node.total_subtree_cost)),
            ("Cost %", f"{_cost_percent(node)}%"),
            ("Avg Row Size", f"{_fixed(node.avg_row_size, 0)} B"),
        ]
    )
    if node.parallelism:
        rows.append(("Parallel", "Yes"))
    if node.estimate_rebinds > 0:
        rows.append(("Est. Rebinds", format_rows(node.estimate_rebinds)))
    if node.estimate_rewinds > 0:
        rows.append(("Est. Rewinds", format_rows(node.estimate_rewinds)))
    return _tooltip_html(node.physical_op, rows, node.warnings)


def edge_tooltip(parent: PlanNode, child: PlanNode) -> str:
    data_size = child.estimate_rows * child.avg_row_size
    rows = [
        ("Est. Rows", format_rows(child.estimate_rows)),
        ("Avg Row Size", f"{_fixed(child.avg_row_size, 0)} B"),
        ("Est. Data Size", f"{format_rows(data_size)} B"),
    ]
    return _tooltip_html(f"{child.physical_op} \u2192 {parent.physical_op}", rows)


def _tooltip_html(
    title: str, rows: Sequence[Tuple[str, str]], warnings: Sequence[str] = ()
) -> str:
    parts = [f'<div class="ptt-title">{_esc(title)}</div>']
    if warnings:
        parts.append(f'<div class="ptt-warn">{WARNING_GLYPH} {_esc(", ".join(warnings))}</div>')
    parts.append('<table class="ptt-metrics">')
    for label, value in rows:
        parts.append(
            f'<tr class="ptt-row"><td class="ptt-label">{_esc(label)}</td>'
            f'<td class="ptt-value">{_esc(value)}</td></tr>'
        )
    parts.append("</table>")
    return "".join(parts)


def _emit_arrow_marker(svg_root: ET.Element) -> None:
    defs = ET.SubElement(svg_root, _q("defs"))
    marker = ET.SubElement(
        defs,
        _q("marker"),
        {
            "id": ARROWHEAD_ID,
            "viewBox": "0 0 10 10",
            "refX": "9",
            "refY": "5",
            "markerWidth": "6",
            "markerHeight": "6",
            "markerUnits": "userSpaceOnUse",
            "orient": "auto",
        },
    )
    ET.SubElement(marker, _q("polygon"), {"points": "0,0 10,5 0,10"})


def _emit_tree(svg_root: ET.Element, root: PlanNode, theme: PlanTheme) -> None:
    """Emit nodes in pre-order, each child preceded by the edge into it."""
    _emit_node(svg_root, root, theme)
    stack = [(root, child) for child in reversed(root.children)]
    while stack:
        parent, child = stack.pop()
        _emit_edge(svg_root, parent, child, theme)
        _emit_node(svg_root, child, theme)
        stack.extend((child, grandchild) for grandchild in reversed(child.children))


def _emit_node(svg_root: ET.Element, node: PlanNode, theme: PlanTheme) -> None:
    w = theme.node_width
    h = theme.node_height
    group = ET.SubElement(
        svg_root,
        _q("g"),
        {
            "class": "plan-node",
            "data-node-id": str(node.node_id),
            "data-tooltip": node_tooltip(node),
        },
    )
    ET.SubElement(
        group,
        _q("rect"),
        {
            "x": format_length(node.x),
            "y": format_length(node.y),
            "width": format_length(w),
            "height": format_length(h),
            "rx": "4",
            "fill": cost_color(node.rel_op_cost, theme),
        },
    )

    op_label = truncate(node.physical_op, theme.op_label_chars)
    if node.warnings:
        op_label = f"{WARNING_GLYPH} {op_label}"
    if node.parallelism:
        op_label = f"{op_label} {PARALLEL_GLYPH}"
    detail = truncate(node.object_name or node.logical_op, theme.detail_label_chars)
    lines = [
        ("plan-node-op", op_label),
        ("plan-node-detail", detail),
        ("plan-node-metric", f"Cost: {_cost_percent(node)}%"),
        ("plan-node-metric", f"Rows: {format_rows(node.estimate_rows)}"),
    ]
    cx = node.x + w / 2.0
    for index, (css_class, value) in enumerate(lines):
        text = ET.SubElement(
            group,
            _q("text"),
            {
                "x": format_length(cx),
                "y": format_length(node.y + 1 + h * (index + 1) / 4.5),
                "text-anchor": "middle",
                "class": css_class,
            },
        )
        text.text = value


def _emit_edge(svg_root: ET.Element, parent: PlanNode, child: PlanNode, theme: PlanTheme) -> None:
    x1 = parent.x + theme.node_width / 2.0
    y1 = parent.y + theme.node_height
    x2 = child.x + theme.node_width / 2.0
    y2 = child.y
    cy = (y1 + y2) / 2.0

    group = ET.SubElement(
        svg_root,
        _q("g"),
        {"class": "plan-edge", "data-tooltip": edge_tooltip(parent, child)},
    )
    ET.SubElement(
        group,
        _q("path"),
        {
            "d": _curve_path(x1, y1, x2, y2, cy),
            "stroke-width": format_length(edge_weight(child.estimate_rows, theme)),
            "marker-end": f"url(#{ARROWHEAD_ID})",
        },
    )
    # The cubic's control points share cy, so its midpoint is ((x1 + x2) / 2, cy).
    label = ET.SubElement(
        group,
        _q("text"),
        {
            "x": format_length((x1 + x2) / 2.0),
            "y": format_length(cy - 3),
            "text-anchor": "middle",
            "class": "plan-edge-label",
        },
    )
    label.text = format_rows(child.estimate_rows)


def _curve_path(x1: float, y1: float, x2: float, y2: float, cy: float) -> str:
    start, c1, c2, end = [
        f"{format_length(px)},{format_length(py)}"
        for px, py in ((x1, y1), (x1, cy), (x2, cy), (x2, y2))
    ]
    return f"M{start} C{c1} {c2} {end}"


def _cost_percent(node: PlanNode) -> str:
    return _fixed(node.rel_op_cost * 100, 1)


def _esc(value: str) -> str:
    return html.escape(value, quote=True)


def _pretty_xml(element: ET.Element) -> str:
    ET.indent(element, space="  ")
    return ET.tostring(element, encoding="unicode")


def format_length(value: float) -> str:
    if math.isclose(value, round(value)):
        return str(int(round(value)))
    return f"{value:.3f}".rstrip("0").rstrip(".")


def _q(tag: str) -> str:
    return f"{{{SVG_NS}}}{tag}"


__all__ = [
    "FocusNotFoundError",
    "PlanUnavailableError",
    "cost_color",
    "edge_tooltip",
    "edge_weight",
    "format_cost",
    "format_rows",
    "node_tooltip",
    "render_plan_svg",
    "render_plan_xml",
    "truncate",
]

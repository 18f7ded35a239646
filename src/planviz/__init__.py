"""Public API for planviz."""
from .layout import Bounds, layout_tree
from .model import DEFAULT_THEME, PlanNode, PlanTheme
from .parser import parse_plan
from .render import (
    PlanUnavailableError,
    cost_color,
    edge_weight,
    format_cost,
    format_rows,
    render_plan_svg,
    render_plan_xml,
)

__all__ = [
    "Bounds",
    "DEFAULT_THEME",
    "PlanNode",
    "PlanTheme",
    "PlanUnavailableError",
    "cost_color",
    "edge_weight",
    "format_cost",
    "format_rows",
    "layout_tree",
    "parse_plan",
    "render_plan_svg",
    "render_plan_xml",
]

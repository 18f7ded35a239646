"""Deterministic top-down tree layout for parsed plans."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Tuple

from .model import DEFAULT_THEME, PlanNode, PlanTheme


@dataclass(frozen=True)
class Bounds:
    min_x: float
    min_y: float
    max_x: float
    max_y: float

    @property
    def width(self) -> float:
        return self.max_x - self.min_x

    @property
    def height(self) -> float:
        return self.max_y - self.min_y


def compute_layout(node: PlanNode, theme: PlanTheme = DEFAULT_THEME) -> Tuple[float, float]:
    """Size every subtree bottom-up.

    Sets ``node.width`` to the width of the node's subtree box and
    ``node.height`` to one node's height. Returns ``(box_width, subtree_height)``.
    """
    subtree_heights: Dict[int, float] = {}
    # Reversed pre-order visits every child before its parent.
    for current in reversed(list(node.walk())):
        current.height = theme.node_height
        if not current.children:
            current.width = theme.node_width
            subtree_heights[id(current)] = theme.node_height
            continue

        row_width = sum(child.width for child in current.children)
        row_width += theme.h_gap * (len(current.children) - 1)
        current.width = max(theme.node_width, row_width)
        tallest = max(subtree_heights[id(child)] for child in current.children)
        subtree_heights[id(current)] = theme.node_height + theme.v_gap + tallest
    return node.width, subtree_heights[id(node)]


def assign_positions(
    node: PlanNode, x: float, y: float, theme: PlanTheme = DEFAULT_THEME
) -> None:
    """Place ``node`` centred in the box starting at ``x`` and its children below it."""
    stack: List[Tuple[PlanNode, float, float]] = [(node, x, y)]
    while stack:
        current, left, top = stack.pop()
        current.x = left + (current.width - theme.node_width) / 2.0
        current.y = top
        if not current.children:
            continue

        row_width = sum(child.width for child in current.children)
        row_width += theme.h_gap * (len(current.children) - 1)
        cx = left + (current.width - row_width) / 2.0
        child_y = top + theme.node_height + theme.v_gap
        for child in current.children:
            stack.append((child, cx, child_y))
            cx += child.width + theme.h_gap


def tree_bounds(node: PlanNode, theme: PlanTheme = DEFAULT_THEME) -> Bounds:
    """Smallest rectangle enclosing every drawn node rectangle."""
    nodes = list(node.walk())
    return Bounds(
        min(n.x for n in nodes),
        min(n.y for n in nodes),
        max(n.x for n in nodes) + theme.node_width,
        max(n.y for n in nodes) + theme.node_height,
    )


def translate(node: PlanNode, dx: float, dy: float) -> None:
    for each in node.walk():
        each.x += dx
        each.y += dy


def layout_tree(root: PlanNode, theme: PlanTheme = DEFAULT_THEME) -> Bounds:
    """Lay out ``root`` in place with its top-left corner at ``(padding, padding)``.

    Returns the bounds of the drawn nodes after the shift.
    """
    compute_layout(root, theme)
    assign_positions(root, 0.0, 0.0, theme)
    bounds = tree_bounds(root, theme)
    dx = theme.padding - bounds.min_x
    dy = theme.padding - bounds.min_y
    translate(root, dx, dy)
    return Bounds(bounds.min_x + dx, bounds.min_y + dy, bounds.max_x + dx, bounds.max_y + dy)


__all__ = [
    "Bounds",
    "assign_positions",
    "compute_layout",
    "layout_tree",
    "translate",
    "tree_bounds",
]

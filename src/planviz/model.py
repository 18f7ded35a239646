"""Plan tree model and visual theme shared by the parser, layout and renderer."""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterator, List


@dataclass(frozen=True)
class PlanTheme:
    """Geometry, colour scale and label lengths used to lay out and draw a plan."""

    node_width: float = 150.0
    node_height: float = 72.0
    h_gap: float = 30.0
    v_gap: float = 50.0
    padding: float = 20.0

    hue_low_cost: int = 120
    saturation: int = 70
    lightness: int = 45

    edge_min_weight: float = 0.5
    edge_weight_scale: float = 0.75
    edge_max_weight: float = 6.0

    op_label_chars: int = 18
    detail_label_chars: int = 22

    def replace(self, **changes: Any) -> "PlanTheme":
        return replace(self, **changes)


DEFAULT_THEME = PlanTheme()


@dataclass
class PlanNode:
    """One relational operator (``RelOp``) of an execution plan."""

    physical_op: str = "Unknown"
    logical_op: str = ""
    object_name: str = ""
    estimate_rows: float = 0.0
    estimate_cpu: float = 0.0
    estimate_io: float = 0.0
    estimate_rebinds: float = 0.0
    estimate_rewinds: float = 0.0
    estimate_executions: float = 1.0
    avg_row_size: float = 0.0
    total_subtree_cost: float = 0.0
    rel_op_cost: float = 0.0
    parallelism: bool = False
    node_id: int = 0
    warnings: List[str] = field(default_factory=list)
    children: List["PlanNode"] = field(default_factory=list)

    # Written by the layout engine only.
    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0

    def walk(self) -> Iterator["PlanNode"]:
        """Yield this node and every descendant in pre-order."""
        stack = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def to_dict(self) -> Dict[str, Any]:
        converted: Dict[int, Dict[str, Any]] = {}
        # Reversed pre-order converts every child before its parent.
        for node in reversed(list(self.walk())):
            converted[id(node)] = {
                "node_id": node.node_id,
                "physical_op": node.physical_op,
                "logical_op": node.logical_op,
                "object_name": node.object_name,
                "estimate_rows": node.estimate_rows,
                "estimate_cpu": node.estimate_cpu,
                "estimate_io": node.estimate_io,
                "estimate_rebinds": node.estimate_rebinds,
                "estimate_rewinds": node.estimate_rewinds,
                "estimate_executions": node.estimate_executions,
                "avg_row_size": node.avg_row_size,
                "total_subtree_cost": node.total_subtree_cost,
                "rel_op_cost": node.rel_op_cost,
                "parallelism": node.parallelism,
                "warnings": list(node.warnings),
                "children": [converted[id(child)] for child in node.children],
            }
        return converted[id(self)]


__all__ = ["DEFAULT_THEME", "PlanNode", "PlanTheme"]

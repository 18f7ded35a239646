"""ShowPlan XML to :class:`PlanNode` tree."""
from __future__ import annotations

import logging
import math
import re
import xml.etree.ElementTree as ET
from typing import Dict, Iterator, List, Optional, Set

from .model import PlanNode

logger = logging.getLogger(__name__)

_XML_DECLARATION = re.compile(r"^\s*<\?xml[^>]*\?>")

# Checked in this order; anything else under <Warnings> is passed through by tag name.
KNOWN_WARNINGS: Dict[str, str] = {
    "SpillToTempDb": "SpillToTempDb",
    "NoJoinPredicate": "No Join Predicate",
    "ColumnsWithNoStatistics": "Missing Statistics",
    "UnmatchedIndexes": "Unmatched Indexes",
}
_ATTRIBUTE_WARNINGS = ("NoJoinPredicate", "UnmatchedIndexes")

# Plans with more nested operator levels than this are rejected.
MAX_PLAN_DEPTH = 300


class _PlanTooDeep(Exception):
    pass


def parse_plan(xml_text: str) -> Optional[PlanNode]:
    """Parse a ShowPlan XML document.

    Returns ``None`` when the document is not well-formed XML, when it holds no
    ``RelOp`` element, or when operators nest deeper than ``MAX_PLAN_DEPTH``.
    """
    try:
        root = ET.fromstring(_strip_declaration(xml_text))
    except (ET.ParseError, ValueError, TypeError) as exc:
        logger.debug("plan XML is not well-formed: %s", exc)
        return None

    rel_op = _find_root_rel_op(root)
    if rel_op is None:
        logger.debug("no RelOp element found in plan document <%s>", _local_name(root.tag))
        return None

    root_cost = _parse_float(rel_op.get("TotalSubtreeCost"), 0.0)
    if root_cost <= 0:
        root_cost = 1.0

    try:
        return _parse_rel_op(rel_op, root_cost, 1)
    except (_PlanTooDeep, RecursionError):
        logger.debug("plan tree is deeper than %d operators", MAX_PLAN_DEPTH)
        return None


def _strip_declaration(xml_text: str) -> str:
    # The declaration usually claims utf-16, which expat rejects for str input.
    return _XML_DECLARATION.sub("", xml_text.lstrip("\ufeff"), count=1)


def _find_root_rel_op(root: ET.Element) -> Optional[ET.Element]:
    for statement in ("StmtSimple", "StmtCursor"):
        for stmt in _iter_local(root, statement):
            for query_plan in _children(stmt, "QueryPlan"):
                for rel_op in _children(query_plan, "RelOp"):
                    return rel_op
    for rel_op in _iter_local(root, "RelOp"):
        return rel_op
    return None


def _parse_rel_op(el: ET.Element, root_cost: float, depth: int) -> PlanNode:
    if depth > MAX_PLAN_DEPTH:
        raise _PlanTooDeep()
    seen: Set[int] = set()
    children: List[PlanNode] = []
    for wrapper in el:
        for candidate in _children(wrapper, "RelOp"):
            if id(candidate) in seen:
                continue
            seen.add(id(candidate))
            children.append(_parse_rel_op(candidate, root_cost, depth + 1))

    total_cost = _parse_float(el.get("TotalSubtreeCost"), 0.0)
    return PlanNode(
        physical_op=el.get("PhysicalOp", "Unknown"),
        logical_op=el.get("LogicalOp", ""),
        object_name=_extract_object_name(el),
        estimate_rows=_parse_float(el.get("EstimateRows"), 0.0),
        estimate_cpu=_parse_float(el.get("EstimateCPU"), 0.0),
        estimate_io=_parse_float(el.get("EstimateIO"), 0.0),
        estimate_rebinds=_parse_float(el.get("EstimateRebinds"), 0.0),
        estimate_rewinds=_parse_float(el.get("EstimateRewinds"), 0.0),
        estimate_executions=_parse_float(el.get("EstimateExecutions"), 1.0),
        avg_row_size=_parse_float(el.get("AvgRowSize"), 0.0),
        total_subtree_cost=total_cost,
        rel_op_cost=total_cost / root_cost,
        parallelism=el.get("Parallel") in ("1", "true"),
        node_id=_parse_int(el.get("NodeId"), 0),
        warnings=_extract_warnings(el),
        children=children,
    )


def _extract_object_name(el: ET.Element) -> str:
    obj = None
    for wrapper in el:
        obj = next(_children(wrapper, "Object"), None)
        if obj is not None:
            break
    if obj is None:
        obj = next(_iter_local(el, "Object"), None)
    if obj is None:
        return ""

    schema = _strip_brackets(obj.get("Schema", ""))
    table = _strip_brackets(obj.get("Table", ""))
    index = _strip_brackets(obj.get("Index", ""))
    if table:
        qualified = f"{schema}.{table}" if schema else table
        return f"{qualified}.{index}" if index else qualified
    return index


def _extract_warnings(el: ET.Element) -> List[str]:
    container = next(_children(el, "Warnings"), None)
    if container is None:
        for wrapper in el:
            container = next(_children(wrapper, "Warnings"), None)
            if container is not None:
                break
    if container is None:
        return []

    tags = [_local_name(child.tag) for child in container if isinstance(child.tag, str)]
    flagged = {
        name for name in _ATTRIBUTE_WARNINGS
        if (container.get(name) or "").lower() in ("1", "true")
    }

    warnings: List[str] = []
    for tag, label in KNOWN_WARNINGS.items():
        if tag in tags or tag in flagged:
            warnings.append(label)
    for tag in tags:
        if tag not in KNOWN_WARNINGS and tag not in warnings:
            warnings.append(tag)
    return warnings


def _strip_brackets(value: str) -> str:
    value = value.strip()
    if value.startswith("[") and value.endswith("]"):
        return value[1:-1]
    return value


def _parse_float(value: Optional[str], default: float) -> float:
    if value is None:
        return default
    try:
        number = float(value)
    except ValueError:
        return default
    if not math.isfinite(number):
        return default
    return number


def _parse_int(value: Optional[str], default: int) -> int:
    if value is None:
        return default
    try:
        return int(value.strip())
    except ValueError:
        return default


def _children(el: ET.Element, local: str) -> Iterator[ET.Element]:
    for child in el:
        if isinstance(child.tag, str) and _local_name(child.tag) == local:
            yield child


def _iter_local(el: ET.Element, local: str) -> Iterator[ET.Element]:
    for node in el.iter():
        if isinstance(node.tag, str) and _local_name(node.tag) == local:
            yield node


def _local_name(tag: str) -> str:
    if tag.startswith("{"):
        return tag.split("}", 1)[1]
    return tag


__all__ = ["KNOWN_WARNINGS", "MAX_PLAN_DEPTH", "parse_plan"]

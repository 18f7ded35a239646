from __future__ import annotations

import sys
import unittest
from pathlib import Path

TESTS_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = TESTS_DIR.parent
sys.path.insert(0, str(PROJECT_ROOT / "src"))
sys.path.insert(0, str(TESTS_DIR))

from planviz import parse_plan
from planviz.parser import MAX_PLAN_DEPTH

import sample_plans as plans


class ParsePlanFailureTests(unittest.TestCase):
    def test_invalid_xml_returns_none(self) -> None:
        self.assertIsNone(parse_plan(plans.INVALID_XML))

    def test_garbage_text_returns_none(self) -> None:
        for text in ["", "   ", "plain text", "<<<>>>", "<a><b></a>", "\x00\x01"]:
            with self.subTest(text=text):
                self.assertIsNone(parse_plan(text))

    def test_document_without_relop_returns_none(self) -> None:
        self.assertIsNone(parse_plan(plans.NO_RELOP_XML))

    def test_too_deep_tree_returns_none(self) -> None:
        self.assertIsNone(parse_plan(plans.deep_plan(5000)))

    def test_depth_limit_is_inclusive(self) -> None:
        root = parse_plan(plans.deep_plan(MAX_PLAN_DEPTH))
        self.assertIsNotNone(root)
        self.assertEqual(sum(1 for _ in root.walk()), MAX_PLAN_DEPTH)
        self.assertIsNone(parse_plan(plans.deep_plan(MAX_PLAN_DEPTH + 1)))


class ParsePlanTests(unittest.TestCase):
    def test_single_node_plan(self) -> None:
        root = parse_plan(plans.SIMPLE_SCAN_PLAN)
        self.assertIsNotNone(root)
        self.assertEqual(root.physical_op, "Clustered Index Scan")
        self.assertEqual(root.logical_op, "Clustered Index Scan")
        self.assertEqual(root.estimate_rows, 1000)
        self.assertAlmostEqual(root.estimate_cpu, 0.01)
        self.assertAlmostEqual(root.estimate_io, 0.05)
        self.assertAlmostEqual(root.total_subtree_cost, 0.06)
        self.assertEqual(root.avg_row_size, 100)
        self.assertEqual(root.estimate_executions, 1)
        self.assertEqual(root.node_id, 0)
        self.assertEqual(root.children, [])
        self.assertEqual(root.warnings, [])
        self.assertFalse(root.parallelism)

    def test_root_cost_fraction_is_one(self) -> None:
        root = parse_plan(plans.SIMPLE_SCAN_PLAN)
        self.assertAlmostEqual(root.rel_op_cost, 1.0)

    def test_child_cost_fraction_is_relative_to_root(self) -> None:
        root = parse_plan(plans.NESTED_LOOP_PLAN)
        self.assertAlmostEqual(root.rel_op_cost, 1.0)
        self.assertAlmostEqual(root.children[0].rel_op_cost, 0.035 / 0.15)
        self.assertAlmostEqual(root.children[1].rel_op_cost, 0.113 / 0.15)
        for node in root.walk():
            self.assertGreater(node.rel_op_cost, 0)
            self.assertLessEqual(node.rel_op_cost, 1.0)

    def test_builds_tree_in_document_order(self) -> None:
        root = parse_plan(plans.NESTED_LOOP_PLAN)
        self.assertEqual(root.physical_op, "Nested Loops")
        self.assertEqual([c.physical_op for c in root.children], ["Index Seek", "Clustered Index Seek"])
        self.assertEqual([c.node_id for c in root.children], [1, 2])
        self.assertEqual(root.children[1].estimate_rebinds, 499)
        self.assertEqual(root.children[1].estimate_executions, 500)

    def test_object_names(self) -> None:
        self.assertEqual(parse_plan(plans.SIMPLE_SCAN_PLAN).object_name, "dbo.Users.PK_Users")
        root = parse_plan(plans.NESTED_LOOP_PLAN)
        self.assertEqual(root.children[0].object_name, "dbo.Orders.IX_Orders_UserId")
        self.assertEqual(root.children[1].object_name, "dbo.Users.PK_Users")

    def test_object_name_falls_back_to_descendant(self) -> None:
        root = parse_plan(plans.NESTED_LOOP_PLAN)
        self.assertEqual(root.object_name, "dbo.Orders.IX_Orders_UserId")

    def test_object_name_partial_references(self) -> None:
        root = parse_plan(plans.WARNINGS_PLAN)
        self.assertEqual(root.children[0].object_name, "dbo.LargeTable")
        bare = parse_plan(plans.BARE_RELOP_PLAN)
        self.assertEqual(bare.children[0].object_name, "Events")
        lenient = parse_plan(plans.LENIENT_ATTRIBUTES_PLAN)
        self.assertEqual(lenient.children[0].object_name, "IX_Only")
        self.assertEqual(parse_plan(plans.ATTRIBUTE_WARNING_PLAN).object_name, "")

    def test_known_warnings(self) -> None:
        root = parse_plan(plans.WARNINGS_PLAN)
        self.assertEqual(root.warnings, ["SpillToTempDb", "No Join Predicate"])
        self.assertEqual(root.children[0].warnings, [])

    def test_warning_priority_and_passthrough(self) -> None:
        root = parse_plan(plans.MIXED_WARNINGS_PLAN)
        self.assertEqual(
            root.warnings,
            [
                "SpillToTempDb",
                "Missing Statistics",
                "Unmatched Indexes",
                "PlanAffectingConvert",
                "MemoryGrantWarning",
            ],
        )
        self.assertEqual(root.children[0].warnings, [])

    def test_warning_attribute_form(self) -> None:
        root = parse_plan(plans.ATTRIBUTE_WARNING_PLAN)
        self.assertEqual(root.warnings, ["No Join Predicate"])
        self.assertEqual(root.children, [])

    def test_parallelism(self) -> None:
        root = parse_plan(plans.PARALLEL_PLAN)
        self.assertTrue(root.parallelism)
        self.assertTrue(root.children[0].parallelism)
        self.assertFalse(parse_plan(plans.LENIENT_ATTRIBUTES_PLAN).parallelism)

    def test_lenient_attribute_defaults(self) -> None:
        root = parse_plan(plans.LENIENT_ATTRIBUTES_PLAN)
        self.assertEqual(root.physical_op, "Unknown")
        self.assertEqual(root.logical_op, "")
        self.assertEqual(root.node_id, 0)
        self.assertEqual(root.estimate_rows, 0)
        self.assertEqual(root.estimate_cpu, 0)
        self.assertEqual(root.estimate_io, 0)
        self.assertEqual(root.avg_row_size, 0)
        self.assertEqual(root.estimate_executions, 1)

    def test_zero_root_cost_uses_unit_baseline(self) -> None:
        root = parse_plan(plans.LENIENT_ATTRIBUTES_PLAN)
        self.assertEqual(root.rel_op_cost, 0.0)
        self.assertAlmostEqual(root.children[0].rel_op_cost, 0.5)

    def test_root_discovery_prefers_simple_statement(self) -> None:
        self.assertEqual(parse_plan(plans.CURSOR_PLAN).physical_op, "Constant Scan")

    def test_root_discovery_cursor_then_any_relop(self) -> None:
        self.assertEqual(parse_plan(plans.CURSOR_ONLY_PLAN).node_id, 7)
        bare = parse_plan(plans.BARE_RELOP_PLAN)
        self.assertEqual(bare.node_id, 3)
        self.assertEqual([c.node_id for c in bare.children], [4])
        self.assertAlmostEqual(bare.children[0].rel_op_cost, 0.2)

    def test_byte_order_mark_is_ignored(self) -> None:
        root = parse_plan("\ufeff" + plans.SIMPLE_SCAN_PLAN)
        self.assertEqual(root.object_name, "dbo.Users.PK_Users")

    def test_each_parse_returns_a_fresh_tree(self) -> None:
        first = parse_plan(plans.NESTED_LOOP_PLAN)
        second = parse_plan(plans.NESTED_LOOP_PLAN)
        self.assertIsNot(first, second)
        self.assertEqual(first.to_dict(), second.to_dict())

    def test_walk_is_preorder(self) -> None:
        root = parse_plan(plans.NESTED_LOOP_PLAN)
        self.assertEqual([n.node_id for n in root.walk()], [0, 1, 2])


if __name__ == "__main__":
    unittest.main()

"""
Unit tests for collection processing (select, groupBy, orderBy) and diagnostics.
"""

import pytest

from gridfill.commands.nodes import GroupOrder
from gridfill.context import Context
from gridfill.engine.collections import (
    GroupData,
    compare_keys,
    group_items,
    order_groups,
    order_items,
    parse_order_by,
    qualify,
    select_items,
)
from gridfill.engine.diagnostics import Diagnostic, DiagnosticLog, Severity
from gridfill.exceptions import EvaluationError, ExpressionSyntaxError, UnresolvedVariableError
from gridfill.expressions.evaluator import Evaluator


@pytest.fixture
def evaluator():
    return Evaluator()


@pytest.fixture
def errors():
    return []


def _names(items):
    return [item["name"] for item in items]


class TestQualify:
    """Test bare key qualification."""

    def test_bare_name(self):
        """Bare names are read from the loop variable."""
        assert qualify("department", "e") == "e.department"

    def test_expression_left_alone(self):
        """Dotted names and expressions are not changed."""
        assert qualify("e.department", "e") == "e.department"
        assert qualify("upper(e.name)", "e") == "upper(e.name)"

    def test_loop_variable_itself(self):
        """The loop variable is not qualified with itself."""
        assert qualify("e", "e") == "e"


class TestParseOrderBy:
    """Test orderBy key parsing."""

    def test_directions(self):
        """ASC is the default; DESC is case-insensitive."""
        keys = parse_order_by("e.name, e.salary desc, e.age ASC", "e")
        assert [(k.expression, k.descending) for k in keys] == [
            ("e.name", False), ("e.salary", True), ("e.age", False),
        ]

    def test_empty_key(self):
        """Empty keys are a syntax error."""
        with pytest.raises(ExpressionSyntaxError):
            parse_order_by("e.name,,", "e")


class TestSelect:
    """Test filtering."""

    def test_keeps_matching_in_order(self, employees, evaluator, errors):
        """Matching items keep their order."""
        kept = select_items(employees, "e", "e.salary > 5500", Context.root({}), evaluator, errors.append)
        assert _names(kept) == ["Bob", "Carol"]

    def test_outer_names_visible(self, employees, evaluator, errors):
        """The condition sees names from enclosing scopes."""
        kept = select_items(employees, "e", "e.salary < limit", Context.root({"limit": 6000}), evaluator, errors.append)
        assert _names(kept) == ["Alice"]

    def test_failing_item_dropped(self, evaluator, errors):
        """Items whose condition fails are dropped and reported."""
        items = [{"v": 1}, {"other": 2}]
        kept = select_items(items, "x", "x.v > 0", Context.root({}), evaluator, errors.append)
        assert kept == [{"v": 1}]
        assert isinstance(errors[0], UnresolvedVariableError)

    def test_scopes_released(self, employees, evaluator, errors):
        """Per-item scopes do not leak."""
        context = Context.root({})
        select_items(employees, "e", "e.salary > 0", context, evaluator, errors.append)
        assert len(context.arena) == 1


class TestGroup:
    """Test grouping."""

    def test_first_seen_order(self, employees, evaluator, errors):
        """Groups are formed in first-seen key order."""
        groups = group_items(employees, "e", "department", Context.root({}), evaluator, errors.append)
        assert [g.key for g in groups] == ["Engineering", "Sales"]
        assert _names(groups[0].items) == ["Alice", "Carol"]
        assert groups[0].item["name"] == "Alice"
        assert len(groups[1]) == 1

    def test_group_order(self, employees, evaluator, errors):
        """groupOrder sorts the groups."""
        groups = group_items(
            employees, "e", "department", Context.root({}), evaluator, errors.append, GroupOrder.DESC
        )
        assert [g.key for g in groups] == ["Sales", "Engineering"]

    def test_ignorecase(self, evaluator, errors):
        """IGNORECASE orders groups by lower-cased key."""
        items = [{"k": "b"}, {"k": "A"}, {"k": "c"}]
        groups = group_items(items, "x", "k", Context.root({}), evaluator, errors.append, GroupOrder.IGNORECASE)
        assert [g.key for g in groups] == ["A", "b", "c"]

    def test_true_and_one_are_different_keys(self, evaluator, errors):
        """Keys of different kinds never share a group."""
        items = [{"k": 1}, {"k": True}]
        groups = group_items(items, "x", "k", Context.root({}), evaluator, errors.append)
        assert len(groups) == 2

    def test_order_within_groups(self, employees, evaluator, errors):
        """orderBy with groupBy sorts members inside each group."""
        groups = group_items(employees, "e", "department", Context.root({}), evaluator, errors.append)
        ordered = order_groups(groups, "e", "salary DESC", Context.root({}), evaluator, errors.append)
        assert [g.key for g in ordered] == ["Engineering", "Sales"]
        assert _names(ordered[0].items) == ["Carol", "Alice"]


class TestOrder:
    """Test sorting."""

    def test_stable(self, evaluator, errors):
        """Equal keys keep their original order."""
        items = [{"k": 1, "id": "a"}, {"k": 0, "id": "b"}, {"k": 1, "id": "c"}]
        ordered = order_items(items, "x", "k", Context.root({}), evaluator, errors.append)
        assert [i["id"] for i in ordered] == ["b", "a", "c"]

    def test_nulls_first(self, evaluator, errors):
        """Null keys sort before everything else."""
        items = [{"k": 2}, {"k": None}, {"k": 1}]
        ordered = order_items(items, "x", "k", Context.root({}), evaluator, errors.append)
        assert [i["k"] for i in ordered] == [None, 1, 2]

    def test_compare_keys_mixed(self):
        """Mixed kinds fall back to text comparison."""
        assert compare_keys(2, 10) < 0
        assert compare_keys("10", 2) < 0
        assert compare_keys(False, True) < 0

    def test_group_data_equality(self):
        """GroupData compares by key and members."""
        assert GroupData("a", (1, 2)) == GroupData("a", (1, 2))


class TestDiagnosticLog:
    """Test the recoverable-error policy."""

    def test_records(self):
        """Errors become diagnostics with location and expression."""
        log = DiagnosticLog()
        log.record(EvaluationError("boom", expression="x"), "Sheet1!A1")
        assert list(log) == [Diagnostic(Severity.ERROR, "Sheet1!A1", "boom", "x")]
        assert str(log.entries[0]) == "ERROR Sheet1!A1: boom [x]"

    def test_fail_fast(self):
        """Fail-fast re-raises with the location attached."""
        log = DiagnosticLog(fail_fast=True)
        with pytest.raises(EvaluationError) as exc_info:
            log.record(EvaluationError("boom"), "Sheet1!B2")
        assert exc_info.value.location == "Sheet1!B2"
        assert str(exc_info.value) == "Sheet1!B2: boom"
        assert len(log) == 0

    def test_warn(self):
        """Warnings are collected alongside errors."""
        log = DiagnosticLog()
        log.warn("careful")
        assert log.entries[0].severity is Severity.WARNING
        assert log.entries[0].to_dict()["message"] == "careful"

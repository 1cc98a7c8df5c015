"""
Tests for template inspection without data: describe() and validate().
"""

import pytest

from gridfill import describe, validate
from gridfill.exceptions import TemplateParseError
from gridfill.options import FillOptions
from gridfill.validate import IssueLevel, ValidationIssue
from tests.helpers.templates import make_sheet, make_workbook

EACH = 'jx:each(items="employees" var="e" lastCell="B2")'


def _report(cells=None, comments=None):
    base_cells = {"A1": "Name", "B1": "Salary", "A2": "${e.name}", "B2": "${e.salary}"}
    base_cells.update(cells or {})
    base_comments = {"A1": 'jx:area(lastCell="B3")', "A2": EACH}
    base_comments.update(comments or {})
    return make_workbook(make_sheet("Sheet1", base_cells, base_comments))


class TestDescribe:
    """Test the command tree dump."""

    def test_tree(self):
        """Areas are headers; commands are indented by depth."""
        assert describe(_report()).splitlines() == [
            "Sheet1!A1:B3",
            "  area A1:B3",
            "    each A2:B2 items='employees' var='e' direction=DOWN",
        ]

    def test_no_commands(self):
        """A template without commands says so."""
        assert describe(make_workbook(make_sheet("Sheet1", {"A1": "plain"}))) == "No commands found"

    def test_quoted_sheet(self):
        """Sheet names needing quotes are quoted in headers."""
        workbook = make_workbook(make_sheet("My Sheet", {"A1": "x"}, {"A1": 'jx:area(lastCell="A1")'}))
        assert describe(workbook).splitlines()[0] == "'My Sheet'!A1"

    def test_else_block(self):
        """An if with an else block lists it one level below the if."""
        workbook = make_workbook(make_sheet(
            "Sheet1",
            {"A1": "x"},
            {
                "A1": 'jx:area(lastCell="B2")',
                "A2": 'jx:if(condition="ok" lastCell="B2" areas=["A2:B2","A5:B5"])',
            },
        ))
        assert describe(workbook).splitlines() == [
            "Sheet1!A1:B2",
            "  area A1:B2",
            "    if A2:B2 condition='ok' else_area=A5:B5",
            "      else A5:B5",
        ]

    def test_parse_error_raised(self):
        """Invalid annotations raise instead of being described."""
        with pytest.raises(TemplateParseError):
            describe(_report(comments={"A2": 'jx:loop(lastCell="B2")'}))


class TestValidate:
    """Test static template validation."""

    def test_clean_template(self):
        """A valid template has no issues."""
        assert validate(_report()) == []

    def test_unknown_command(self):
        """Unknown commands are errors at their cell."""
        issues = validate(_report(comments={"A2": 'jx:loop(lastCell="B2")'}))
        assert len(issues) == 1
        assert issues[0].level is IssueLevel.ERROR
        assert issues[0].location == "Sheet1!A2"
        assert "jx:loop" in issues[0].message

    def test_all_parse_errors_reported(self):
        """Every bad annotation is reported, not just the first."""
        issues = validate(_report(comments={"A2": "jx:each(", "B1": 'jx:if(lastCell="B1")'}))
        assert sorted(issue.location for issue in issues) == ["Sheet1!A2", "Sheet1!B1"]

    def test_geometry_error(self):
        """A command extending outside its area is an error."""
        issues = validate(_report(comments={"A2": 'jx:each(items="employees" var="e" lastCell="C2")'}))
        assert [issue.level for issue in issues] == [IssueLevel.ERROR]
        assert "extends outside" in issues[0].message

    def test_bad_expression_in_command(self):
        """Syntax errors in command expressions are errors."""
        issues = validate(_report(comments={"A2": 'jx:each(items="employees[" var="e" lastCell="B2")'}))
        assert len(issues) == 1
        assert issues[0].message.startswith("jx:each items:")

    def test_bad_order_by(self):
        """Empty orderBy keys are reported."""
        issues = validate(_report(
            comments={"A2": 'jx:each(items="employees" var="e" orderBy="e.name,," lastCell="B2")'}
        ))
        assert len(issues) == 1
        assert issues[0].message.startswith("jx:each orderBy:")

    def test_bad_placeholder(self):
        """Syntax errors inside placeholders are errors at the cell."""
        issues = validate(_report(cells={"A2": "${e.name +}"}))
        assert len(issues) == 1
        assert issues[0].location == "Sheet1!A2"
        assert issues[0].message.startswith("placeholder:")

    def test_placeholder_outside_area(self):
        """Placeholders outside every area are a warning."""
        issues = validate(_report(cells={"D5": "${title}"}))
        assert issues == [
            ValidationIssue(IssueLevel.WARNING, "Sheet1!D5", "placeholder outside every jx:area is left as text"),
        ]

    def test_formula_reference_outside_area(self):
        """Area formulas reading cells outside every area are a warning."""
        issues = validate(_report(cells={"A3": "Total", "B3": "=SUM(B2)*D1"}))
        assert len(issues) == 1
        assert issues[0].level is IssueLevel.WARNING
        assert "Sheet1!D1" in issues[0].message

    def test_bad_formula_params(self):
        """An unknown formula strategy is an error at its cell."""
        issues = validate(_report(
            cells={"A3": "Total", "B3": "=SUM(B2)"},
            comments={"B3": 'jx:params(formulaStrategy="DIAGONAL")'},
        ))
        assert len(issues) == 1
        assert issues[0].level is IssueLevel.ERROR
        assert issues[0].location == "Sheet1!B3"

    def test_formula_params_accepted(self):
        """A valid jx:params declaration is not reported."""
        issues = validate(_report(
            cells={"A3": "Total", "B3": "=SUM(B2)"},
            comments={"B3": 'jx:params(defaultValue="0" formulaStrategy="BY_COLUMN")'},
        ))
        assert issues == []

    def test_custom_notation(self):
        """The configured notation is used to find placeholders."""
        workbook = _report(cells={"A2": "#{e.name +}", "B2": "#{e.salary}"})
        issues = validate(workbook, FillOptions(notation_begin="#{", notation_end="}"))
        assert [issue.location for issue in issues] == ["Sheet1!A2"]

    def test_issue_str(self):
        """Issues render with level and location."""
        issue = ValidationIssue(IssueLevel.ERROR, "Sheet1!A1", "bad")
        assert str(issue) == "ERROR Sheet1!A1: bad"

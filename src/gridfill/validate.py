"""
Static template validation.

Checks a template without any data: every annotation must parse, the command
geometry must nest, and every expression must be syntactically valid. Problems
are reported as a list of ValidationIssue instead of being raised, so a
template author sees all of them at once.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

from gridfill.commands.nodes import (
    CommandNode,
    EachCommand,
    GridCommand,
    IfCommand,
    ImageCommand,
    MergeCellsCommand,
)
from gridfill.commands.parser import parse_annotation, parse_params
from gridfill.commands.tree import build_tree
from gridfill.engine.collections import parse_order_by
from gridfill.engine.formulas import references
from gridfill.exceptions import (
    ConfigurationError,
    ExpressionSyntaxError,
    TemplateParseError,
)
from gridfill.expressions.evaluator import Evaluator, find_placeholders
from gridfill.expressions.parser import parse_expression
from gridfill.options import FillOptions
from gridfill.spreadsheet.model import CellRef, Region
from gridfill.spreadsheet.workbook import Workbook

logger = logging.getLogger(__name__)


class IssueLevel(Enum):
    ERROR = "error"
    WARNING = "warning"


@dataclass(frozen=True)
class ValidationIssue:
    """A problem found in a template.

    Attributes:
        level: ERROR when a fill would fail, WARNING when it would likely
            not do what the author meant
        location: Sheet-qualified template cell
        message: Human-readable description
    """
    level: IssueLevel
    location: Optional[str]
    message: str

    def __str__(self) -> str:
        where = f"{self.location}: " if self.location else ""
        return f"{self.level.value.upper()} {where}{self.message}"


def _expressions(command: CommandNode) -> List[Tuple[str, str]]:
    """(attribute, expression) pairs of a command that are evaluated at fill time."""
    if isinstance(command, EachCommand):
        pairs = [("items", command.items)]
        for attr in ("select", "multisheet"):
            value = getattr(command, attr)
            if value:
                pairs.append((attr, value))
        if command.group_by:
            pairs.append(("groupBy", command.group_by))
        return pairs
    if isinstance(command, IfCommand):
        return [("condition", command.condition)]
    if isinstance(command, GridCommand):
        return [("headers", command.headers), ("data", command.data)]
    if isinstance(command, ImageCommand):
        return [("src", command.src)]
    if isinstance(command, MergeCellsCommand):
        return [
            (attr, value)
            for attr, value in (
                ("cols", command.cols),
                ("rows", command.rows),
                ("minCols", command.min_cols),
                ("minRows", command.min_rows),
            )
            if value
        ]
    return []


class TemplateValidator:
    """Collects validation issues for one workbook."""

    def __init__(self, workbook: Workbook, options: Optional[FillOptions] = None) -> None:
        self.workbook = workbook
        self.options = options or FillOptions()
        self.evaluator = Evaluator(self.options.notation)
        self.issues: List[ValidationIssue] = []

    def error(self, location: Optional[str], message: str) -> None:
        self.issues.append(ValidationIssue(IssueLevel.ERROR, location, message))

    def warning(self, location: Optional[str], message: str) -> None:
        self.issues.append(ValidationIssue(IssueLevel.WARNING, location, message))

    def _check_expression(self, expression: str, location: str, what: str) -> None:
        try:
            parse_expression(self.evaluator.strip_notation(expression))
        except ExpressionSyntaxError as e:
            self.error(location, f"{what}: {e.message}")

    def _parse_commands(self) -> List[CommandNode]:
        commands: List[CommandNode] = []
        for sheet in self.workbook.sheets:
            for row, col, cell in sheet.iter_cells():
                if not cell.comment:
                    continue
                anchor = CellRef(sheet.name, row, col)
                try:
                    commands.extend(parse_annotation(cell.comment, anchor, len(commands)))
                    parse_params(cell.comment, anchor)
                except TemplateParseError as e:
                    self.error(e.location or str(anchor), e.message)
        return commands

    def _check_commands(self, commands: List[CommandNode]) -> None:
        for command in commands:
            for attr, expression in _expressions(command):
                self._check_expression(expression, command.location, f"jx:{command.kind.value} {attr}")
            if isinstance(command, EachCommand) and command.order_by:
                try:
                    keys = parse_order_by(self.evaluator.strip_notation(command.order_by), command.var)
                except ExpressionSyntaxError as e:
                    self.error(command.location, f"jx:each orderBy: {e.message}")
                    continue
                for key in keys:
                    self._check_expression(key.expression, command.location, "jx:each orderBy")

    def _check_cells(self, areas: List[Region]) -> None:
        notation = self.evaluator.notation

        def in_area(ref: CellRef) -> bool:
            return any(a.sheet == ref.sheet and a.contains_cell(ref.row, ref.col) for a in areas)

        for sheet in self.workbook.sheets:
            for row, col, cell in sheet.iter_cells():
                ref = CellRef(sheet.name, row, col)
                text = cell.formula if cell.formula is not None else cell.value
                if not isinstance(text, str):
                    continue
                placeholders = find_placeholders(text, notation)
                for placeholder in placeholders:
                    self._check_expression(placeholder.expression, str(ref), "placeholder")
                if placeholders and areas and not in_area(ref):
                    self.warning(str(ref), "placeholder outside every jx:area is left as text")
                if cell.formula is not None and in_area(ref):
                    outside = [r for r in references(cell.formula, sheet.name) if not in_area(r)]
                    if outside:
                        self.warning(
                            str(ref),
                            f"formula references {', '.join(str(r) for r in outside)} outside every "
                            "jx:area; these references are not adjusted",
                        )

    def run(self) -> List[ValidationIssue]:
        commands = self._parse_commands()
        areas: List[Region] = []
        if not self.issues:
            try:
                areas = [root.region for root in build_tree(commands, self.workbook.sheet_names)]
            except ConfigurationError as e:
                self.error(e.location, e.message)
        self._check_commands(commands)
        self._check_cells(areas)
        logger.debug("Validation found %d issue(s)", len(self.issues))
        return self.issues


def validate(workbook: Workbook, options: Optional[FillOptions] = None) -> List[ValidationIssue]:
    """Check a template without data.

    Args:
        workbook: The template workbook
        options: Fill options (only the notation matters here)

    Returns:
        Issues found, in discovery order; empty when the template is clean
    """
    return TemplateValidator(workbook, options).run()

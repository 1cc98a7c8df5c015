"""
Publishing plan for remote spreadsheets.

This module provides the PublishPlan class, which organizes the flat list of
publishing operations derived from a filled workbook into ordered, batchable
steps.

The plan ensures:
- Sheets are created before anything is written to them
- Values land before formulas that may read them
- Merges are applied last, once every cell of a block holds its content
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from gridfill.exceptions import PublishValidationError
from gridfill.spreadsheet.operations import (
    CreateSheet,
    MergeCells,
    PublishOp,
    SetFormula,
    SetValues,
    op_from_dict,
)


class StepType(Enum):
    """Type of publishing step, defining the fixed execution order."""
    CREATE_SHEETS = "create_sheets"
    WRITE_VALUES = "write_values"
    WRITE_FORMULAS = "write_formulas"
    MERGE_CELLS = "merge_cells"


@dataclass
class PublishStep:
    """A batch of operations that can be executed together.

    Attributes:
        step_type: The type of step (determines execution order)
        operations: List of operations to execute in this step
        target_sheets: Set of sheet names involved in this step
    """
    step_type: StepType
    operations: List[PublishOp]
    target_sheets: Set[str]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "step_type": self.step_type.value,
            "operations": [op.to_dict() for op in self.operations],
            "target_sheets": sorted(self.target_sheets),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PublishStep":
        """Create from dictionary representation."""
        return cls(
            step_type=StepType(data["step_type"]),
            operations=[op_from_dict(op_data) for op_data in data["operations"]],
            target_sheets=set(data["target_sheets"]),
        )


class PublishPlan:
    """Orders publishing operations into executable steps.

    Operations are grouped by type:
    1. CreateSheets - all sheets created first
    2. WriteValues - static values written to sheets
    3. WriteFormulas - formulas, in input order
    4. MergeCells - merged blocks

    Attributes:
        steps: Ordered list of publishing steps
        main_sheet: Name of the sheet to show first, if known
    """

    def __init__(self, steps: List[PublishStep], main_sheet: Optional[str] = None):
        self.steps = steps
        self.main_sheet = main_sheet

    @classmethod
    def from_operations(
        cls,
        ops: List[PublishOp],
        main_sheet: Optional[str] = None
    ) -> "PublishPlan":
        """Construct a plan from a flat list of operations.

        Args:
            ops: List of publishing operations
            main_sheet: Optional name of the sheet to show first

        Returns:
            PublishPlan ready for execution

        Raises:
            PublishValidationError: If the operation list is invalid
        """
        if not ops:
            return cls(steps=[], main_sheet=main_sheet)

        create_ops: List[CreateSheet] = []
        value_ops: List[SetValues] = []
        formula_ops: List[SetFormula] = []
        merge_ops: List[MergeCells] = []

        for op in ops:
            if isinstance(op, CreateSheet):
                create_ops.append(op)
            elif isinstance(op, SetValues):
                value_ops.append(op)
            elif isinstance(op, SetFormula):
                formula_ops.append(op)
            elif isinstance(op, MergeCells):
                merge_ops.append(op)

        sheet_names = [op.name for op in create_ops]
        duplicates = {name for name in sheet_names if sheet_names.count(name) > 1}
        if duplicates:
            raise PublishValidationError(
                f"Duplicate sheet names in CreateSheet operations: {sorted(duplicates)}"
            )
        known = set(sheet_names)

        for op in value_ops + formula_ops + merge_ops:
            if op.sheet not in known:
                raise PublishValidationError(
                    f"{type(op).__name__} references non-existent sheet: {op.sheet}"
                )
        for op in merge_ops:
            if op.row_end < op.row_start or op.col_end < op.col_start:
                raise PublishValidationError(
                    f"MergeCells on sheet '{op.sheet}' has an inverted range"
                )

        steps: List[PublishStep] = []
        if create_ops:
            steps.append(PublishStep(StepType.CREATE_SHEETS, create_ops, set(known)))
        if value_ops:
            steps.append(PublishStep(StepType.WRITE_VALUES, value_ops, {op.sheet for op in value_ops}))
        if formula_ops:
            steps.append(PublishStep(StepType.WRITE_FORMULAS, formula_ops, {op.sheet for op in formula_ops}))
        if merge_ops:
            steps.append(PublishStep(StepType.MERGE_CELLS, merge_ops, {op.sheet for op in merge_ops}))

        return cls(steps=steps, main_sheet=main_sheet)

    def count(self, step_type: StepType) -> int:
        return sum(len(step.operations) for step in self.steps if step.step_type == step_type)

    def explain(self) -> str:
        """Generate a human-readable summary of the plan.

        Returns:
            Multi-line string describing the plan structure
        """
        if not self.steps:
            return "Empty publish plan (no operations)"

        lines = ["Publish Plan Summary", "=" * 50]
        lines.append(f"Sheets: {self.count(StepType.CREATE_SHEETS)}")
        lines.append(f"Value operations: {self.count(StepType.WRITE_VALUES)}")
        lines.append(f"Formula operations: {self.count(StepType.WRITE_FORMULAS)}")
        lines.append(f"Merged blocks: {self.count(StepType.MERGE_CELLS)}")
        lines.append(f"Total steps: {len(self.steps)}")
        if self.main_sheet:
            lines.append(f"Main sheet: {self.main_sheet}")

        lines.append("")
        lines.append("Steps:")
        lines.append("-" * 50)
        for i, step in enumerate(self.steps, 1):
            step_name = step.step_type.value.replace("_", " ").title()
            lines.append(f"{i}. {step_name}")
            lines.append(f"   Operations: {len(step.operations)}")
            lines.append(f"   Target sheets: {', '.join(sorted(step.target_sheets))}")

        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the plan to a JSON-compatible dictionary."""
        return {
            "steps": [step.to_dict() for step in self.steps],
            "main_sheet": self.main_sheet,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PublishPlan":
        """Deserialize a plan produced by to_dict()."""
        steps = [PublishStep.from_dict(step_data) for step_data in data["steps"]]
        return cls(steps=steps, main_sheet=data.get("main_sheet"))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PublishPlan):
            return NotImplemented
        return (
            len(self.steps) == len(other.steps)
            and all(
                s1.step_type == s2.step_type
                and s1.operations == s2.operations
                and s1.target_sheets == s2.target_sheets
                for s1, s2 in zip(self.steps, other.steps)
            )
            and self.main_sheet == other.main_sheet
        )

"""
Fill configuration.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from gridfill.expressions.evaluator import Notation
from gridfill.spreadsheet.workbook import Workbook


@dataclass
class FillOptions:
    """Options controlling a fill.

    Attributes:
        notation_begin: Marker opening a placeholder
        notation_end: Marker closing a placeholder
        keep_template_sheet: Keep sheets that hosted a multisheet each instead
            of removing them once their copies are rendered
        hide_template_sheet: Keep such sheets but mark them hidden
        fail_fast: Abort on the first evaluation error instead of rendering the
            cell empty and recording a diagnostic
        clear_template_cells: Clear each area region before rendering into it
        recalculate_on_open: Ask the spreadsheet application to recalculate
            formulas when the output is opened
        pre_write: Callback receiving the filled Workbook before it is written
    """
    notation_begin: str = "${"
    notation_end: str = "}"
    keep_template_sheet: bool = False
    hide_template_sheet: bool = False
    fail_fast: bool = False
    clear_template_cells: bool = True
    recalculate_on_open: bool = False
    pre_write: Optional[Callable[[Workbook], None]] = None

    def __post_init__(self) -> None:
        # raises ValueError on unusable markers
        self.notation

    @property
    def notation(self) -> Notation:
        return Notation(self.notation_begin, self.notation_end)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation (callbacks are omitted)."""
        return {
            "notation_begin": self.notation_begin,
            "notation_end": self.notation_end,
            "keep_template_sheet": self.keep_template_sheet,
            "hide_template_sheet": self.hide_template_sheet,
            "fail_fast": self.fail_fast,
            "clear_template_cells": self.clear_template_cells,
            "recalculate_on_open": self.recalculate_on_open,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FillOptions":
        """Create from dictionary representation; unknown keys are rejected.

        Raises:
            ValueError: If ``data`` contains an unknown option
        """
        known = set(cls().to_dict())
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown fill option(s): {', '.join(sorted(unknown))}")
        return cls(**data)

"""
Spreadsheet document module.

This module provides the coordinate model, the in-memory workbook that templates
and outputs are held in, and the operations used to publish a workbook remotely.
"""

from gridfill.spreadsheet.model import (
    CellRef,
    Region,
    Size,
    col_to_letter,
    letter_to_col,
)
from gridfill.spreadsheet.workbook import (
    Cell,
    ImageAnchor,
    Worksheet,
    Workbook,
)
from gridfill.spreadsheet.operations import (
    CreateSheet,
    SetValues,
    SetFormula,
    MergeCells,
    PublishOp,
    op_from_dict,
    workbook_to_operations,
)

__all__ = [
    "CellRef",
    "Region",
    "Size",
    "col_to_letter",
    "letter_to_col",
    "Cell",
    "ImageAnchor",
    "Worksheet",
    "Workbook",
    "CreateSheet",
    "SetValues",
    "SetFormula",
    "MergeCells",
    "PublishOp",
    "op_from_dict",
    "workbook_to_operations",
]

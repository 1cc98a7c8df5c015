"""
Publishing operation classes.

This module defines the operations a filled workbook is reduced to when it is
published to a remote spreadsheet service:
- CreateSheet: Create a new sheet with specified dimensions
- SetValues: Write static values to a cell range
- SetFormula: Install a formula in a cell
- MergeCells: Merge a block of cells

They represent pure state transitions on a remote spreadsheet and are executed
by the SheetsPublisher. ``workbook_to_operations`` derives them from a Workbook.
"""

from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Any, Dict, List, Union

from gridfill.spreadsheet.workbook import Workbook


@dataclass
class CreateSheet:
    """Create a new sheet in the spreadsheet.

    Attributes:
        name: The sheet name (must be unique within the spreadsheet)
        rows: Number of rows in the new sheet
        cols: Number of columns in the new sheet
    """
    name: str
    rows: int
    cols: int

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "type": "CreateSheet",
            "name": self.name,
            "rows": self.rows,
            "cols": self.cols,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CreateSheet":
        """Create from dictionary representation."""
        return cls(
            name=data["name"],
            rows=data["rows"],
            cols=data["cols"],
        )


@dataclass
class SetValues:
    """Write static values to a rectangular cell region.

    Attributes:
        sheet: The target sheet name
        row: Starting row (0-indexed)
        col: Starting column (0-indexed)
        values: 2D list of cell values (rows × columns)
    """
    sheet: str
    row: int
    col: int
    values: List[List[Any]]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "type": "SetValues",
            "sheet": self.sheet,
            "row": self.row,
            "col": self.col,
            "values": self.values,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SetValues":
        """Create from dictionary representation."""
        return cls(
            sheet=data["sheet"],
            row=data["row"],
            col=data["col"],
            values=data["values"],
        )


@dataclass
class SetFormula:
    """Install a formula in a specific cell.

    Attributes:
        sheet: The target sheet name
        row: Target row (0-indexed)
        col: Target column (0-indexed)
        formula: The formula expression (with or without leading '=')
    """
    sheet: str
    row: int
    col: int
    formula: str

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "type": "SetFormula",
            "sheet": self.sheet,
            "row": self.row,
            "col": self.col,
            "formula": self.formula,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SetFormula":
        """Create from dictionary representation."""
        return cls(
            sheet=data["sheet"],
            row=data["row"],
            col=data["col"],
            formula=data["formula"],
        )


@dataclass
class MergeCells:
    """Merge a rectangular block of cells.

    Attributes:
        sheet: The sheet containing the block
        row_start: Starting row (0-indexed)
        col_start: Starting column (0-indexed)
        row_end: Ending row (0-indexed, inclusive)
        col_end: Ending column (0-indexed, inclusive)
    """
    sheet: str
    row_start: int
    col_start: int
    row_end: int
    col_end: int

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "type": "MergeCells",
            "sheet": self.sheet,
            "row_start": self.row_start,
            "col_start": self.col_start,
            "row_end": self.row_end,
            "col_end": self.col_end,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MergeCells":
        """Create from dictionary representation."""
        return cls(
            sheet=data["sheet"],
            row_start=data["row_start"],
            col_start=data["col_start"],
            row_end=data["row_end"],
            col_end=data["col_end"],
        )


# Type alias for all operation types
PublishOp = Union[CreateSheet, SetValues, SetFormula, MergeCells]


def op_from_dict(data: Dict[str, Any]) -> PublishOp:
    """Deserialize an operation from dictionary representation.

    Args:
        data: Dictionary with 'type' key indicating operation type

    Returns:
        The corresponding operation object

    Raises:
        ValueError: If the operation type is unknown
    """
    op_type = data.get("type")
    if op_type == "CreateSheet":
        return CreateSheet.from_dict(data)
    elif op_type == "SetValues":
        return SetValues.from_dict(data)
    elif op_type == "SetFormula":
        return SetFormula.from_dict(data)
    elif op_type == "MergeCells":
        return MergeCells.from_dict(data)
    else:
        raise ValueError(f"Unknown operation type: {op_type}")


def _publishable(value: Any) -> Any:
    """Convert a cell value into something the Sheets API accepts."""
    if value is None:
        return ""
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, bytes):
        return ""
    return value


def workbook_to_operations(workbook: Workbook, min_rows: int = 100, min_cols: int = 26) -> List[PublishOp]:
    """Reduce a filled workbook to publishing operations.

    Each sheet becomes one CreateSheet, one SetValues covering its populated
    rectangle (formula cells left blank), one SetFormula per formula cell and
    one MergeCells per merge. Hidden sheets are skipped.

    Args:
        workbook: The workbook to publish
        min_rows: Minimum row count of created sheets
        min_cols: Minimum column count of created sheets

    Returns:
        Flat list of operations in sheet order
    """
    ops: List[PublishOp] = []
    for sheet in workbook.sheets:
        if sheet.hidden:
            continue
        max_row, max_col = sheet.max_row, sheet.max_col
        ops.append(CreateSheet(
            name=sheet.name,
            rows=max(max_row + 1, min_rows),
            cols=max(max_col + 1, min_cols),
        ))
        if max_row < 0:
            continue

        values = [["" for _ in range(max_col + 1)] for _ in range(max_row + 1)]
        formulas: List[SetFormula] = []
        for row, col, cell in sheet.iter_cells():
            if cell.formula is not None:
                formulas.append(SetFormula(sheet=sheet.name, row=row, col=col, formula=cell.formula))
            else:
                values[row][col] = _publishable(cell.value)
        ops.append(SetValues(sheet=sheet.name, row=0, col=0, values=values))
        ops.extend(formulas)
        for merge in sheet.merges:
            ops.append(MergeCells(
                sheet=sheet.name,
                row_start=merge.row,
                col_start=merge.col,
                row_end=merge.row_end,
                col_end=merge.col_end,
            ))
    return ops

"""
Grid coordinate model classes.

This module provides the coordinate abstractions shared by every gridfill component:
- CellRef: A single cell on a named sheet
- Region: A rectangular block of cells on a named sheet (e.g., Sheet1!A2:C10)
- Size: The height and width of a rendered block

All coordinates are 0-indexed internally and converted to 1-indexed A1 notation
only at the edges (parsing annotations, writing formulas, talking to adapters).
"""

import re
from dataclasses import dataclass
from typing import Optional, Tuple


_CELL_PATTERN = re.compile(r"^\$?([A-Za-z]{1,3})\$?(\d+)$")


def col_to_letter(col: int) -> str:
    """Convert column number (0-indexed internal) to letter(s) for A1 notation.

    Args:
        col: Column number (0-indexed: 0 = A, 25 = Z, 26 = AA, etc.)

    Returns:
        Column letter(s) in A1 notation
    """
    # Convert 0-indexed to 1-indexed for A1 notation
    col_1indexed = col + 1
    result = ""
    while col_1indexed > 0:
        col_1indexed -= 1
        result = chr(65 + (col_1indexed % 26)) + result
        col_1indexed //= 26
    return result


def letter_to_col(letters: str) -> int:
    """Convert column letter(s) to number (0-indexed internal).

    Args:
        letters: Column letter(s) in A1 notation (A, Z, AA, etc.)

    Returns:
        Column number (0-indexed: A = 0, Z = 25, AA = 26, etc.)
    """
    col_1indexed = 0
    for char in letters.upper():
        col_1indexed = col_1indexed * 26 + (ord(char) - 64)
    return col_1indexed - 1


def parse_a1(notation: str) -> Tuple[Optional[str], int, int]:
    """Parse a possibly sheet-qualified cell address.

    Accepts ``B3``, ``$B$3``, ``Sheet1!B3`` and ``'My Sheet'!B3``.

    Args:
        notation: A1 cell address

    Returns:
        Tuple of (sheet name or None, 0-indexed row, 0-indexed column)

    Raises:
        ValueError: If notation is not a cell address
    """
    notation = notation.strip()
    sheet: Optional[str] = None
    if "!" in notation:
        sheet_part, notation = notation.rsplit("!", 1)
        sheet = sheet_part.strip()
        if len(sheet) >= 2 and sheet[0] == sheet[-1] == "'":
            sheet = sheet[1:-1].replace("''", "'")
        if not sheet:
            raise ValueError(f"Invalid cell notation: {notation}")
    match = _CELL_PATTERN.match(notation.strip())
    if not match:
        raise ValueError(f"Invalid cell notation: {notation}")
    letters, digits = match.groups()
    row = int(digits) - 1
    if row < 0:
        raise ValueError(f"Invalid cell notation: {notation}")
    return sheet, row, letter_to_col(letters)


def quote_sheet_name(name: str) -> str:
    """Quote a sheet name for use in a formula reference when needed."""
    if re.match(r"^[A-Za-z_][A-Za-z0-9_.]*$", name):
        return name
    return "'" + name.replace("'", "''") + "'"


@dataclass(frozen=True)
class CellRef:
    """A single cell on a named sheet.

    Attributes:
        sheet: Sheet name
        row: Row (0-indexed)
        col: Column (0-indexed)
    """
    sheet: str
    row: int
    col: int

    @classmethod
    def from_a1(cls, notation: str, sheet: str) -> "CellRef":
        """Parse an A1 address, using ``sheet`` when the address is unqualified."""
        ref_sheet, row, col = parse_a1(notation)
        return cls(sheet=ref_sheet or sheet, row=row, col=col)

    def to_a1(self, include_sheet: bool = False) -> str:
        """Convert to A1 notation (1-indexed), optionally sheet-qualified."""
        cell = f"{col_to_letter(self.col)}{self.row + 1}"
        if include_sheet:
            return f"{quote_sheet_name(self.sheet)}!{cell}"
        return cell

    def __str__(self) -> str:
        return self.to_a1(include_sheet=True)


@dataclass(frozen=True)
class Size:
    """Height and width of a block, in cells."""
    height: int
    width: int

    @property
    def is_empty(self) -> bool:
        return self.height <= 0 or self.width <= 0


ZERO_SIZE = Size(0, 0)


class Region:
    """A rectangular block of cells on a named sheet.

    Region uses 0-indexed, inclusive coordinates internally and converts to
    1-indexed A1 notation via to_a1().

    Attributes:
        sheet: Sheet name
        row: Starting row (0-indexed)
        col: Starting column (0-indexed)
        row_end: Ending row (0-indexed, inclusive)
        col_end: Ending column (0-indexed, inclusive)
    """

    __slots__ = ("sheet", "row", "col", "row_end", "col_end")

    def __init__(
        self,
        sheet: str,
        row: int,
        col: int,
        row_end: Optional[int] = None,
        col_end: Optional[int] = None
    ) -> None:
        """Initialize a Region with 0-indexed coordinates.

        Args:
            sheet: Sheet name
            row: Starting row (0-indexed, non-negative)
            col: Starting column (0-indexed, non-negative)
            row_end: Ending row (defaults to row for a single cell)
            col_end: Ending column (defaults to col for a single cell)

        Raises:
            ValueError: If coordinates are invalid
        """
        if row < 0 or col < 0:
            raise ValueError("Row and column must be non-negative (0-indexed)")

        self.sheet = sheet
        self.row = row
        self.col = col
        self.row_end = row_end if row_end is not None else row
        self.col_end = col_end if col_end is not None else col

        if self.row_end < self.row or self.col_end < self.col:
            raise ValueError("End coordinates must be >= start coordinates")

    @classmethod
    def from_a1(cls, notation: str, sheet: str) -> "Region":
        """Parse ``A1`` or ``A1:C3`` notation on the given sheet.

        Raises:
            ValueError: If notation is invalid
        """
        notation = notation.strip()
        if not notation:
            raise ValueError("Empty range notation")
        if ":" in notation:
            start, end = notation.split(":", 1)
            start_sheet, row, col = parse_a1(start)
            _, row_end, col_end = parse_a1(end)
            return cls(start_sheet or sheet, row, col, row_end, col_end)
        ref_sheet, row, col = parse_a1(notation)
        return cls(ref_sheet or sheet, row, col)

    @classmethod
    def spanning(cls, start: CellRef, end: CellRef) -> "Region":
        """Build the region whose top-left is ``start`` and bottom-right is ``end``."""
        return cls(start.sheet, start.row, start.col, end.row, end.col)

    @property
    def start(self) -> CellRef:
        return CellRef(self.sheet, self.row, self.col)

    @property
    def height(self) -> int:
        return self.row_end - self.row + 1

    @property
    def width(self) -> int:
        return self.col_end - self.col + 1

    @property
    def size(self) -> Size:
        return Size(self.height, self.width)

    @property
    def area(self) -> int:
        return self.height * self.width

    def to_a1(self, include_sheet: bool = False) -> str:
        """Convert Region to A1 notation string (1-indexed).

        Returns:
            A1 notation string (e.g., "A1" or "A1:B10")
        """
        start_cell = f"{col_to_letter(self.col)}{self.row + 1}"
        if self.row == self.row_end and self.col == self.col_end:
            cells = start_cell
        else:
            cells = f"{start_cell}:{col_to_letter(self.col_end)}{self.row_end + 1}"
        if include_sheet:
            return f"{quote_sheet_name(self.sheet)}!{cells}"
        return cells

    def contains_cell(self, row: int, col: int) -> bool:
        return self.row <= row <= self.row_end and self.col <= col <= self.col_end

    def contains(self, other: "Region") -> bool:
        """Check whether ``other`` lies entirely inside this region."""
        return (
            self.sheet == other.sheet
            and self.row <= other.row
            and self.col <= other.col
            and other.row_end <= self.row_end
            and other.col_end <= self.col_end
        )

    def intersect(self, other: "Region") -> Optional["Region"]:
        """Compute the intersection of two regions.

        Returns:
            New Region representing the intersection, or None if no overlap
        """
        if self.sheet != other.sheet:
            return None
        row_start = max(self.row, other.row)
        col_start = max(self.col, other.col)
        row_end = min(self.row_end, other.row_end)
        col_end = min(self.col_end, other.col_end)

        if row_start > row_end or col_start > col_end:
            return None

        return Region(self.sheet, row_start, col_start, row_end, col_end)

    def offset(self, row_offset: int = 0, col_offset: int = 0) -> "Region":
        """Create a new Region offset by the given amounts.

        Raises:
            ValueError: If offset would result in invalid coordinates (< 0)
        """
        return Region(
            self.sheet,
            self.row + row_offset,
            self.col + col_offset,
            self.row_end + row_offset,
            self.col_end + col_offset,
        )

    def __repr__(self) -> str:
        return f"Region({self.to_a1(include_sheet=True)!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Region):
            return NotImplemented
        return (
            self.sheet == other.sheet
            and self.row == other.row
            and self.col == other.col
            and self.row_end == other.row_end
            and self.col_end == other.col_end
        )

    def __hash__(self) -> int:
        return hash((self.sheet, self.row, self.col, self.row_end, self.col_end))

"""
In-memory grid document.

This module provides the document model that every gridfill component works on:
- Cell: value, formula, style reference, comment and hyperlink of one cell
- ImageAnchor: an image placed over a block of cells
- Worksheet: cells plus merges, row heights, column widths and images of one sheet
- Workbook: an ordered list of worksheets

The same classes hold the read-only template and the output being rendered.
Adapters translate between a Workbook and a concrete file format; the
``native`` attribute lets an adapter keep its own handle (e.g. the openpyxl
workbook that owns the style tables referenced by ``Cell.style``).
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Dict, Iterator, List, Optional, Set, Tuple

from gridfill.spreadsheet.model import Region


@dataclass
class Cell:
    """Content of a single cell.

    Attributes:
        value: Scalar value (str, int, float, bool, date/datetime or None)
        formula: Formula text without the leading '=' (None for plain values)
        style: Opaque style reference owned by the adapter; copied, never interpreted
        comment: Comment/annotation text
        comment_author: Author recorded with the comment
        hyperlink: Target URL when the cell links somewhere
    """
    value: Any = None
    formula: Optional[str] = None
    style: Any = None
    comment: Optional[str] = None
    comment_author: Optional[str] = None
    hyperlink: Optional[str] = None

    @property
    def is_formula(self) -> bool:
        return self.formula is not None

    @property
    def is_blank(self) -> bool:
        return (
            self.value is None
            and self.formula is None
            and self.comment is None
            and self.hyperlink is None
        )

    def copy(self) -> "Cell":
        return replace(self)


@dataclass
class ImageAnchor:
    """An image anchored at a cell, sized to a block of cells.

    Attributes:
        row: Anchor row (0-indexed)
        col: Anchor column (0-indexed)
        rows: Height of the block the image is fitted into
        cols: Width of the block the image is fitted into
        data: Encoded image bytes
        image_type: Upper-case format name (PNG, JPEG, ...)
        scale_x: Horizontal scale factor
        scale_y: Vertical scale factor
    """
    row: int
    col: int
    rows: int
    cols: int
    data: bytes
    image_type: str = "PNG"
    scale_x: float = 1.0
    scale_y: float = 1.0


class Worksheet:
    """A single sheet of a workbook.

    Attributes:
        name: Sheet name
        cells: Mapping of (row, col) to Cell, 0-indexed
        merges: Merged blocks on this sheet
        row_heights: Explicit row heights in points, keyed by row
        col_widths: Explicit column widths in characters, keyed by column
        images: Images placed on this sheet
        auto_height_rows: Rows whose height should be recalculated on write
        hidden: Whether the sheet is hidden
    """

    def __init__(self, name: str) -> None:
        if not name or not isinstance(name, str):
            raise ValueError("Sheet name must be a non-empty string")
        self.name = name
        self.cells: Dict[Tuple[int, int], Cell] = {}
        self.merges: List[Region] = []
        self.row_heights: Dict[int, float] = {}
        self.col_widths: Dict[int, float] = {}
        self.images: List[ImageAnchor] = []
        self.auto_height_rows: Set[int] = set()
        self.hidden = False

    def cell(self, row: int, col: int) -> Optional[Cell]:
        return self.cells.get((row, col))

    def value(self, row: int, col: int) -> Any:
        """Return the value of a cell, or its formula text prefixed with '='."""
        cell = self.cells.get((row, col))
        if cell is None:
            return None
        if cell.formula is not None:
            return "=" + cell.formula
        return cell.value

    def set_cell(self, row: int, col: int, cell: Cell) -> None:
        if row < 0 or col < 0:
            raise ValueError(f"Invalid cell position ({row}, {col}) on sheet {self.name!r}")
        self.cells[(row, col)] = cell

    def set_value(self, row: int, col: int, value: Any) -> Cell:
        """Set a plain value, keeping any existing style."""
        cell = self.cells.get((row, col))
        if cell is None:
            cell = Cell()
            self.set_cell(row, col, cell)
        cell.value = value
        cell.formula = None
        return cell

    def remove_cell(self, row: int, col: int) -> None:
        self.cells.pop((row, col), None)

    def iter_cells(self, region: Optional[Region] = None) -> Iterator[Tuple[int, int, Cell]]:
        """Yield (row, col, cell) for populated cells, row-major.

        Args:
            region: Restrict to cells inside this region (any sheet name)
        """
        for (row, col) in sorted(self.cells):
            if region is not None and not region.contains_cell(row, col):
                continue
            yield row, col, self.cells[(row, col)]

    def clear_region(self, region: Region) -> None:
        """Remove cells, merges, images and auto-height flags inside ``region``."""
        for key in [k for k in self.cells if region.contains_cell(*k)]:
            del self.cells[key]
        self.merges = [
            m for m in self.merges
            if not (region.contains_cell(m.row, m.col) and region.contains_cell(m.row_end, m.col_end))
        ]
        self.images = [i for i in self.images if not region.contains_cell(i.row, i.col)]
        self.auto_height_rows = {
            r for r in self.auto_height_rows if not (region.row <= r <= region.row_end)
        }

    def add_merge(self, region: Region) -> None:
        """Declare a merged block, replacing any merge it overlaps."""
        region = Region(self.name, region.row, region.col, region.row_end, region.col_end)
        self.merges = [m for m in self.merges if m.intersect(region) is None]
        self.merges.append(region)

    def merges_in(self, region: Region) -> List[Region]:
        """Return merges lying entirely inside ``region``."""
        return [
            m for m in self.merges
            if region.contains_cell(m.row, m.col) and region.contains_cell(m.row_end, m.col_end)
        ]

    @property
    def max_row(self) -> int:
        """Last populated row (0-indexed), or -1 for an empty sheet."""
        rows = [r for r, _ in self.cells]
        rows.extend(m.row_end for m in self.merges)
        return max(rows, default=-1)

    @property
    def max_col(self) -> int:
        """Last populated column (0-indexed), or -1 for an empty sheet."""
        cols = [c for _, c in self.cells]
        cols.extend(m.col_end for m in self.merges)
        return max(cols, default=-1)

    def copy(self, name: Optional[str] = None) -> "Worksheet":
        """Copy this sheet, optionally under a new name."""
        clone = Worksheet(name or self.name)
        clone.cells = {key: cell.copy() for key, cell in self.cells.items()}
        clone.merges = [Region(clone.name, m.row, m.col, m.row_end, m.col_end) for m in self.merges]
        clone.row_heights = dict(self.row_heights)
        clone.col_widths = dict(self.col_widths)
        clone.images = [replace(image) for image in self.images]
        clone.auto_height_rows = set(self.auto_height_rows)
        clone.hidden = self.hidden
        return clone

    def __repr__(self) -> str:
        return f"Worksheet(name={self.name!r}, cells={len(self.cells)})"


class Workbook:
    """An ordered collection of worksheets.

    Attributes:
        sheets: Worksheets in tab order
        native: Adapter-owned handle to the underlying document, if any
        recalculate_on_open: Ask the consuming application to recalculate formulas
    """

    def __init__(self, sheets: Optional[List[Worksheet]] = None, native: Any = None) -> None:
        self.sheets: List[Worksheet] = list(sheets or [])
        self.native = native
        self.recalculate_on_open = False

    @property
    def sheet_names(self) -> List[str]:
        return [sheet.name for sheet in self.sheets]

    def has_sheet(self, name: str) -> bool:
        return any(sheet.name == name for sheet in self.sheets)

    def sheet(self, name: str) -> Worksheet:
        """Look up a sheet by name.

        Raises:
            KeyError: If no sheet has that name
        """
        for sheet in self.sheets:
            if sheet.name == name:
                return sheet
        raise KeyError(f"No sheet named {name!r}")

    def add_sheet(self, name: str, index: Optional[int] = None) -> Worksheet:
        """Create an empty sheet.

        Raises:
            ValueError: If a sheet with that name already exists
        """
        return self.insert_sheet(Worksheet(name), index)

    def insert_sheet(self, sheet: Worksheet, index: Optional[int] = None) -> Worksheet:
        if self.has_sheet(sheet.name):
            raise ValueError(f"Duplicate sheet name: {sheet.name!r}")
        if index is None:
            self.sheets.append(sheet)
        else:
            self.sheets.insert(index, sheet)
        return sheet

    def copy_sheet(self, source: str, name: str, index: Optional[int] = None) -> Worksheet:
        """Duplicate ``source`` under ``name``."""
        return self.insert_sheet(self.sheet(source).copy(name), index)

    def rename_sheet(self, old: str, new: str) -> None:
        if old != new and self.has_sheet(new):
            raise ValueError(f"Duplicate sheet name: {new!r}")
        sheet = self.sheet(old)
        sheet.name = new
        sheet.merges = [Region(new, m.row, m.col, m.row_end, m.col_end) for m in sheet.merges]

    def move_sheet(self, name: str, index: int) -> None:
        sheet = self.sheet(name)
        self.sheets.remove(sheet)
        self.sheets.insert(index, sheet)

    def remove_sheet(self, name: str) -> None:
        self.sheets.remove(self.sheet(name))

    def copy(self) -> "Workbook":
        """Copy every sheet. The native handle is shared, not copied."""
        clone = Workbook([sheet.copy() for sheet in self.sheets], native=self.native)
        clone.recalculate_on_open = self.recalculate_on_open
        return clone

    def __repr__(self) -> str:
        return f"Workbook(sheets={self.sheet_names!r})"

"""
openpyxl-backed grid document adapter.

Reading keeps everything the engine needs from a template: formulas as text,
comments, hyperlinks, merges, row heights, column widths, sheet order and
visibility, and a reference to each cell's style. Styles stay openpyxl style
arrays; they are only meaningful inside the workbook they were read from, so
writing goes back into that same openpyxl workbook (``Workbook.native``).

Images are decoded and validated with Pillow before openpyxl embeds them.
"""

import logging
import math
from collections import defaultdict
from copy import copy
from io import BytesIO
from pathlib import Path
from typing import Any, BinaryIO, Dict, List, Optional, Union
from zipfile import BadZipFile

import openpyxl
from openpyxl.cell.cell import MergedCell
from openpyxl.comments import Comment
from openpyxl.drawing.image import Image as XLImage
from openpyxl.utils import column_index_from_string, get_column_letter
from openpyxl.utils.exceptions import InvalidFileException
from openpyxl.worksheet.formula import ArrayFormula
from PIL import Image as PILImage

from gridfill.exceptions import AdapterError
from gridfill.expressions.values import to_text
from gridfill.spreadsheet.model import Region
from gridfill.spreadsheet.workbook import Cell, ImageAnchor, Workbook, Worksheet

logger = logging.getLogger(__name__)

Source = Union[str, Path, BinaryIO]

# Excel defaults (characters / points)
DEFAULT_COLUMN_WIDTH = 8.43
DEFAULT_ROW_HEIGHT = 15.0
LINE_HEIGHT = 15.0
DEFAULT_COMMENT_AUTHOR = "gridfill"


def _describe(target: Any) -> str:
    if isinstance(target, (str, Path)):
        return str(target)
    return getattr(target, "name", None) or type(target).__name__


# ----------------------------------------------------------------------
# reading


def _read_cell(cell: Any) -> Cell:
    value = cell.value
    formula: Optional[str] = None
    if isinstance(value, ArrayFormula):
        formula = (value.text or "").lstrip("=")
        value = None
    elif cell.data_type == "f" and isinstance(value, str):
        formula = value[1:] if value.startswith("=") else value
        value = None

    return Cell(
        value=value,
        formula=formula,
        style=copy(cell._style) if cell.has_style else None,
        comment=cell.comment.text if cell.comment is not None else None,
        comment_author=cell.comment.author if cell.comment is not None else None,
        hyperlink=cell.hyperlink.target if cell.hyperlink is not None else None,
    )


def _read_worksheet(ws: Any) -> Worksheet:
    sheet = Worksheet(ws.title)
    sheet.hidden = ws.sheet_state != "visible"
    for row in ws.iter_rows():
        for cell in row:
            if isinstance(cell, MergedCell):
                continue
            if cell.value is None and cell.comment is None and cell.hyperlink is None and not cell.has_style:
                continue
            sheet.set_cell(cell.row - 1, cell.column - 1, _read_cell(cell))

    for merged in ws.merged_cells.ranges:
        sheet.merges.append(Region(
            ws.title, merged.min_row - 1, merged.min_col - 1, merged.max_row - 1, merged.max_col - 1
        ))
    for index, dimension in ws.row_dimensions.items():
        if dimension.height is not None:
            sheet.row_heights[index - 1] = dimension.height
    for letter, dimension in ws.column_dimensions.items():
        if dimension.width:
            sheet.col_widths[column_index_from_string(letter) - 1] = dimension.width
    return sheet


def workbook_from_openpyxl(native: Any) -> Workbook:
    """Build a Workbook from a loaded openpyxl workbook."""
    workbook = Workbook(native=native)
    for ws in native.worksheets:
        workbook.insert_sheet(_read_worksheet(ws))
    return workbook


# ----------------------------------------------------------------------
# writing


def estimate_row_height(cells: List[Any], col_widths: Dict[int, float]) -> float:
    """Estimate the height a row needs to show its text without clipping.

    Each cell contributes one line per explicit line break, plus wrapped lines
    when a line is longer than its column is wide (one character per width unit).

    Args:
        cells: (col, Cell) pairs of the row
        col_widths: Explicit column widths of the sheet

    Returns:
        Row height in points
    """
    lines = 1
    for col, cell in cells:
        if cell.formula is not None or cell.value is None:
            continue
        chars = max(int(col_widths.get(col, DEFAULT_COLUMN_WIDTH)), 1)
        count = sum(max(1, math.ceil(len(part) / chars)) for part in to_text(cell.value).split("\n"))
        lines = max(lines, count)
    return max(lines * LINE_HEIGHT, DEFAULT_ROW_HEIGHT)


def _region_pixels(sheet: Worksheet, anchor: ImageAnchor) -> tuple:
    width = sum(
        sheet.col_widths.get(col, DEFAULT_COLUMN_WIDTH) * 7 + 5
        for col in range(anchor.col, anchor.col + anchor.cols)
    )
    height = sum(
        sheet.row_heights.get(row, DEFAULT_ROW_HEIGHT) * 4 / 3
        for row in range(anchor.row, anchor.row + anchor.rows)
    )
    return int(width), int(height)


def _build_image(sheet: Worksheet, anchor: ImageAnchor) -> XLImage:
    try:
        with PILImage.open(BytesIO(anchor.data)) as decoded:
            decoded.verify()
    except (OSError, SyntaxError, ValueError) as e:
        raise AdapterError(
            f"Invalid {anchor.image_type} image for {sheet.name}!{get_column_letter(anchor.col + 1)}{anchor.row + 1}: {e}"
        ) from e
    image = XLImage(BytesIO(anchor.data))
    width, height = _region_pixels(sheet, anchor)
    image.width = int(width * anchor.scale_x)
    image.height = int(height * anchor.scale_y)
    return image


def _clear_worksheet(ws: Any) -> None:
    for merged in list(ws.merged_cells.ranges):
        ws.unmerge_cells(str(merged))
    if ws.max_row:
        ws.delete_rows(1, ws.max_row)
    for dimension in ws.row_dimensions.values():
        dimension.height = None


def _write_worksheet(ws: Any, sheet: Worksheet) -> None:
    _clear_worksheet(ws)
    rows: Dict[int, List[Any]] = defaultdict(list)
    for row, col, cell in sheet.iter_cells():
        target = ws.cell(row=row + 1, column=col + 1)
        if cell.formula is not None:
            target.value = "=" + cell.formula
        else:
            target.value = cell.value
            if isinstance(cell.value, str) and cell.value.startswith("="):
                target.data_type = "s"
        if cell.style is not None:
            target._style = copy(cell.style)
        if cell.comment:
            target.comment = Comment(cell.comment, cell.comment_author or DEFAULT_COMMENT_AUTHOR)
        if cell.hyperlink:
            target.hyperlink = cell.hyperlink
        rows[row].append((col, cell))

    for merge in sheet.merges:
        ws.merge_cells(
            start_row=merge.row + 1,
            start_column=merge.col + 1,
            end_row=merge.row_end + 1,
            end_column=merge.col_end + 1,
        )
    for row, height in sheet.row_heights.items():
        ws.row_dimensions[row + 1].height = height
    for col, width in sheet.col_widths.items():
        ws.column_dimensions[get_column_letter(col + 1)].width = width
    for row in sorted(sheet.auto_height_rows):
        ws.row_dimensions[row + 1].height = estimate_row_height(rows.get(row, []), sheet.col_widths)
    for anchor in sheet.images:
        ws.add_image(_build_image(sheet, anchor), f"{get_column_letter(anchor.col + 1)}{anchor.row + 1}")
    ws.sheet_state = "hidden" if sheet.hidden else "visible"


def workbook_to_openpyxl(workbook: Workbook) -> Any:
    """Apply a Workbook to its openpyxl workbook (or a new one) and return it."""
    native = workbook.native
    if native is None:
        native = openpyxl.Workbook()
        native.remove(native.active)

    wanted = set(workbook.sheet_names)
    for ws in list(native.worksheets):
        if ws.title not in wanted:
            native.remove(ws)
    for sheet in workbook.sheets:
        ws = native[sheet.name] if sheet.name in native.sheetnames else native.create_sheet(sheet.name)
        _write_worksheet(ws, sheet)
    for index, name in enumerate(workbook.sheet_names):
        current = native.sheetnames.index(name)
        if current != index:
            native.move_sheet(name, offset=index - current)

    visible = [i for i, sheet in enumerate(workbook.sheets) if not sheet.hidden]
    if visible:
        native.active = visible[0]
    native.calculation.fullCalcOnLoad = workbook.recalculate_on_open
    return native


class XlsxAdapter:
    """Reads .xlsx templates and writes filled .xlsx documents.

    Attributes:
        source: Template path or readable binary stream
    """

    def __init__(self, source: Source) -> None:
        self.source = source

    def read(self) -> Workbook:
        """Load the template.

        Raises:
            AdapterError: If the document cannot be opened or is not valid xlsx
        """
        try:
            native = openpyxl.load_workbook(self.source, data_only=False)
        except (OSError, InvalidFileException, BadZipFile, KeyError) as e:
            raise AdapterError(f"Cannot read template {_describe(self.source)}: {e}") from e
        workbook = workbook_from_openpyxl(native)
        logger.debug("Read template %s with sheets %s", _describe(self.source), workbook.sheet_names)
        return workbook

    def write(self, workbook: Workbook, target: Any) -> None:
        """Write a filled workbook to a path or writable binary stream.

        Raises:
            AdapterError: If the document cannot be written
        """
        native = workbook_to_openpyxl(workbook)
        try:
            native.save(target)
        except OSError as e:
            raise AdapterError(f"Cannot write output {_describe(target)}: {e}") from e
        logger.debug("Wrote %s with sheets %s", _describe(target), workbook.sheet_names)

    def to_bytes(self, workbook: Workbook) -> bytes:
        buffer = BytesIO()
        self.write(workbook, buffer)
        return buffer.getvalue()

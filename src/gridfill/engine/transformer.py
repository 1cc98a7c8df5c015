"""
Transform engine.

Walks the command tree depth-first and renders the template into the output
workbook. Every render function receives an explicit Cursor (where its block
starts in the output) and returns the Size it actually produced; callers use
that size to place whatever follows, so growth and shrinkage of one command
shift its later siblings without any shared mutable position.

A body (the region of an area, each iteration, true if, ...) is rendered in
row bands. Children whose row spans overlap form one band; rows between bands
are static and copied as they are. Inside a band, static cells right of a
child move right by that child's column growth, and the band occupies as many
rows as its tallest child needs. A band that also holds static cells never
shrinks below its template height.
"""

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd

from gridfill.commands.nodes import (
    DEFAULT_FORMULA_PARAMS,
    AreaCommand,
    AutoRowHeightCommand,
    Direction,
    EachCommand,
    FormulaParams,
    GridCommand,
    IfCommand,
    ImageCommand,
    MergeCellsCommand,
)
from gridfill.commands.parser import parse_formula_params, strip_commands
from gridfill.commands.tree import CommandTreeNode
from gridfill.context import Context
from gridfill.engine.collections import (
    group_items,
    order_groups,
    order_items,
    select_items,
)
from gridfill.engine.diagnostics import DiagnosticLog
from gridfill.engine.formulas import FormulaRewriter, LoopPath, TargetMap
from gridfill.exceptions import EvaluationError, MultisheetMismatchError, TypeMismatchError
from gridfill.expressions.evaluator import Evaluator
from gridfill.expressions.values import (
    Hyperlink,
    ValueKind,
    get_property,
    kind_of,
    normalize,
    to_sequence,
    to_text,
)
from gridfill.options import FillOptions
from gridfill.spreadsheet.model import CellRef, Region, Size
from gridfill.spreadsheet.workbook import Cell, ImageAnchor, Workbook, Worksheet

logger = logging.getLogger(__name__)

MAX_SHEET_NAME = 31
_INVALID_SHEET_CHARS = re.compile(r"[\[\]:*?/\\]")


@dataclass(frozen=True)
class Cursor:
    """Output position a block is rendered at (0-indexed)."""
    sheet: str
    row: int
    col: int

    def moved(self, rows: int = 0, cols: int = 0) -> "Cursor":
        return Cursor(self.sheet, self.row + rows, self.col + cols)


@dataclass
class Band:
    """Template rows [row, row_end] holding children with overlapping row spans."""
    row: int
    row_end: int
    nodes: List[CommandTreeNode] = field(default_factory=list)


@dataclass(frozen=True)
class PendingFormula:
    """An emitted formula waiting for its references to be rewritten."""
    target: CellRef
    source: CellRef
    formula: str
    loops: LoopPath
    params: FormulaParams = DEFAULT_FORMULA_PARAMS


@dataclass
class TargetGrid:
    """The output being built plus the bookkeeping needed to finalize it.

    Attributes:
        workbook: Output workbook (starts as a copy of the template)
        targets: Template cell -> rendered copies
        formulas: Formulas emitted so far, rewritten once rendering ends
    """
    workbook: Workbook
    targets: TargetMap = field(default_factory=TargetMap)
    formulas: List[PendingFormula] = field(default_factory=list)


def sanitize_sheet_name(name: str) -> str:
    """Make ``name`` acceptable as a sheet name (no ``[]:*?/\\``, max 31 chars)."""
    return _INVALID_SHEET_CHARS.sub("_", name).strip().strip("'")[:MAX_SHEET_NAME]


def _bands(children: List[CommandTreeNode]) -> List[Band]:
    bands: List[Band] = []
    for node in sorted(children, key=lambda n: (n.region.row, n.region.col)):
        region = node.region
        if bands and region.row <= bands[-1].row_end:
            bands[-1].row_end = max(bands[-1].row_end, region.row_end)
            bands[-1].nodes.append(node)
        else:
            bands.append(Band(region.row, region.row_end, [node]))
    for band in bands:
        band.nodes.sort(key=lambda n: (n.region.col, n.region.row))
    return bands


class Transformer:
    """Renders a command forest from a template into a TargetGrid.

    Attributes:
        template: The read-only template workbook
        grid: Output under construction
        evaluator: Expression evaluator (carries the placeholder notation)
        log: Recoverable error policy and collected diagnostics
        options: Fill options
    """

    def __init__(
        self,
        template: Workbook,
        evaluator: Evaluator,
        log: DiagnosticLog,
        options: Optional[FillOptions] = None,
    ) -> None:
        self.template = template
        self.grid = TargetGrid(template.copy())
        self.evaluator = evaluator
        self.log = log
        self.options = options or FillOptions()
        self.area_regions: List[Region] = []
        self.else_regions: List[Region] = []
        self.formula_params = parse_formula_params(template)
        self.multisheet_hosts: List[str] = []
        self._inserted_after: Dict[str, int] = {}

    @property
    def output(self) -> Workbook:
        return self.grid.workbook

    # ------------------------------------------------------------------
    # entry point

    def transform(self, roots: List[CommandTreeNode], context: Context) -> Workbook:
        """Render every area, then rewrite formulas and finish sheet bookkeeping.

        Args:
            roots: Area nodes from ``build_tree``
            context: Root context holding the fill data

        Returns:
            The output workbook
        """
        self.area_regions = [root.region for root in roots]
        self.else_regions = [
            node.region
            for root in roots
            for _, node in root.walk()
            if node.is_else and not any(area.contains(node.region) for area in self.area_regions)
        ]
        if self.options.clear_template_cells:
            for region in self.area_regions:
                self.output.sheet(region.sheet).clear_region(region)
        # else blocks outside every area exist only in the template
        for region in self.else_regions:
            self.output.sheet(region.sheet).clear_region(region)

        for root in roots:
            size = self.render_area(root, context)
            logger.debug("Rendered area %s as %dx%d", root.region.to_a1(True), size.height, size.width)

        self._rewrite_formulas()
        self._finish_multisheet_hosts()
        self.output.recalculate_on_open = self.options.recalculate_on_open
        return self.output

    def render_area(self, node: CommandTreeNode, context: Context) -> Size:
        region = node.region
        return self.render_body(node, Cursor(region.sheet, region.row, region.col), context, ())

    # ------------------------------------------------------------------
    # bodies and bands

    def render_body(
        self,
        node: CommandTreeNode,
        cursor: Cursor,
        context: Context,
        loops: LoopPath,
    ) -> Size:
        """Render the region of ``node`` (static cells and children) at ``cursor``."""
        region = node.region
        source = self.template.sheet(region.sheet)
        placed: Dict[Tuple[int, int], Tuple[int, int]] = {}
        out_row = cursor.row
        src_row = region.row
        width = region.width

        for band in _bands(node.children):
            while src_row < band.row:
                self._copy_row(source, src_row, region, cursor, out_row, context, loops, placed)
                src_row += 1
                out_row += 1
            band_size = self._render_band(node, band, source, cursor, out_row, context, loops, placed)
            out_row += band_size.height
            width = max(width, band_size.width)
            src_row = band.row_end + 1

        while src_row <= region.row_end:
            self._copy_row(source, src_row, region, cursor, out_row, context, loops, placed)
            src_row += 1
            out_row += 1

        self._copy_merges(source, node, cursor.sheet, placed)
        return Size(out_row - cursor.row, width)

    def _copy_row(self, source, src_row, region, cursor, out_row, context, loops, placed) -> None:
        out = self.output.sheet(cursor.sheet)
        for col in range(region.col, region.col_end + 1):
            target_col = cursor.col + col - region.col
            self._copy_cell(source, src_row, col, out, out_row, target_col, context, loops)
            placed[(src_row, col)] = (out_row, target_col)

    def _render_band(
        self,
        node: CommandTreeNode,
        band: Band,
        source: Worksheet,
        cursor: Cursor,
        band_top: int,
        context: Context,
        loops: LoopPath,
        placed: Dict[Tuple[int, int], Tuple[int, int]],
    ) -> Size:
        region = node.region
        growth: List[Tuple[int, int]] = []  # (col_end of child, column growth)

        def shift_before(col: int) -> int:
            return sum(delta for col_end, delta in growth if col_end < col)

        height = 0
        right_edge = cursor.col + region.width - 1
        covered = 0
        for child in band.nodes:
            child_region = child.region
            child_cursor = Cursor(
                cursor.sheet,
                band_top + child_region.row - band.row,
                cursor.col + child_region.col - region.col + shift_before(child_region.col),
            )
            size = self.render_command(child, child_cursor, context, loops)
            growth.append((child_region.col_end, size.width - child_region.width))
            height = max(height, child_region.row - band.row + size.height)
            right_edge = max(right_edge, child_cursor.col + size.width - 1)
            covered += child_region.area

        band_height = band.row_end - band.row + 1
        if covered < band_height * region.width:
            height = max(height, band_height)
            out = self.output.sheet(cursor.sheet)
            child_regions = [child.region for child in band.nodes]
            for row in range(band.row, band.row_end + 1):
                for col in range(region.col, region.col_end + 1):
                    if any(r.contains_cell(row, col) for r in child_regions):
                        continue
                    target = (band_top + row - band.row, cursor.col + col - region.col + shift_before(col))
                    self._copy_cell(source, row, col, out, target[0], target[1], context, loops)
                    placed[(row, col)] = target

        total_growth = sum(delta for _, delta in growth)
        right_edge = max(right_edge, cursor.col + region.width - 1 + total_growth)
        return Size(height, right_edge - cursor.col + 1)

    def _copy_merges(self, source: Worksheet, node: CommandTreeNode, sheet: str, placed) -> None:
        out = self.output.sheet(sheet)
        child_regions = [child.region for child in node.children]
        for merge in source.merges_in(node.region):
            if any(merge.intersect(r) is not None for r in child_regions):
                continue
            top = placed.get((merge.row, merge.col))
            bottom = placed.get((merge.row_end, merge.col_end))
            if top is None or bottom is None:
                continue
            out.add_merge(Region(sheet, top[0], top[1], bottom[0], bottom[1]))

    # ------------------------------------------------------------------
    # cells

    def _copy_cell(
        self,
        source: Worksheet,
        row: int,
        col: int,
        out: Worksheet,
        target_row: int,
        target_col: int,
        context: Context,
        loops: LoopPath,
    ) -> None:
        source_ref = CellRef(source.name, row, col)
        target_ref = CellRef(out.name, target_row, target_col)
        self.grid.targets.record(source_ref, target_ref, loops)

        if row in source.row_heights and target_row not in out.row_heights:
            out.row_heights[target_row] = source.row_heights[row]
        if target_col != col and col in source.col_widths and target_col not in out.col_widths:
            out.col_widths[target_col] = source.col_widths[col]

        cell = source.cell(row, col)
        if cell is None:
            out.remove_cell(target_row, target_col)
            return

        rendered = Cell(
            style=cell.style,
            comment=strip_commands(cell.comment),
            comment_author=cell.comment_author,
            hyperlink=cell.hyperlink,
        )
        if rendered.comment is None:
            rendered.comment_author = None

        position = {"_row": target_row + 1, "_col": target_col + 1}
        report = partial(self.log.record, location=str(source_ref))
        if cell.formula is not None:
            formula = cell.formula
            if self.evaluator.notation.begin in formula:
                with context.scope(position) as scope:
                    formula = self.evaluator.render_text(formula, scope, on_error=report)
            rendered.formula = formula
            params = self.formula_params.get(source_ref, DEFAULT_FORMULA_PARAMS)
            self.grid.formulas.append(PendingFormula(target_ref, source_ref, formula, loops, params))
        elif isinstance(cell.value, str) and self.evaluator.notation.begin in cell.value:
            with context.scope(position) as scope:
                value = self.evaluator.render(cell.value, scope, on_error=report)
            self._assign(rendered, value)
        else:
            rendered.value = cell.value

        out.set_cell(target_row, target_col, rendered)

    @staticmethod
    def _assign(cell: Cell, value: Any) -> None:
        value = normalize(value)
        if isinstance(value, Hyperlink):
            cell.value = value.display
            cell.hyperlink = value.url
        elif kind_of(value) is ValueKind.BINARY:
            cell.value = None
        elif kind_of(value) in (ValueKind.SEQUENCE, ValueKind.MAPPING, ValueKind.OBJECT):
            cell.value = to_text(value)
        else:
            cell.value = value

    # ------------------------------------------------------------------
    # commands

    def render_command(
        self,
        node: CommandTreeNode,
        cursor: Cursor,
        context: Context,
        loops: LoopPath,
    ) -> Size:
        """Render one command at ``cursor`` and return the size it produced."""
        command = node.command
        logger.debug("Rendering %s at %s!R%dC%d", command.describe(), cursor.sheet, cursor.row + 1, cursor.col + 1)
        if isinstance(command, EachCommand):
            return self._render_each(node, command, cursor, context, loops)
        elif isinstance(command, IfCommand):
            return self._render_if(node, command, cursor, context, loops)
        elif isinstance(command, GridCommand):
            return self._render_grid(command, cursor, context)
        elif isinstance(command, ImageCommand):
            return self._render_image(command, cursor, context)
        elif isinstance(command, MergeCellsCommand):
            return self._render_merge(node, command, cursor, context, loops)
        elif isinstance(command, AutoRowHeightCommand):
            return self._render_auto_row_height(node, cursor, context, loops)
        elif isinstance(command, AreaCommand):
            return self.render_body(node, cursor, context, loops)
        raise TypeError(f"Unhandled command {command!r}")

    def _record(self, error: EvaluationError, command) -> None:
        self.log.record(error, command.location)

    def _evaluate(self, expression: str, context: Context) -> Any:
        return self.evaluator.evaluate(self.evaluator.strip_notation(expression), context)

    def resolve_items(self, command: EachCommand, context: Context) -> List[Any]:
        """Evaluate ``items`` and apply select, groupBy and orderBy in that order."""
        try:
            items = to_sequence(self._evaluate(command.items, context))
        except EvaluationError as e:
            self._record(e, command)
            return []

        def on_error(error: EvaluationError) -> None:
            self._record(error, command)

        var = command.var
        if command.select:
            items = select_items(items, var, command.select, context, self.evaluator, on_error)
        try:
            if command.group_by:
                items = group_items(
                    items, var, command.group_by, context, self.evaluator, on_error, command.group_order
                )
                if command.order_by:
                    items = order_groups(items, var, command.order_by, context, self.evaluator, on_error)
            elif command.order_by:
                items = order_items(items, var, command.order_by, context, self.evaluator, on_error)
        except EvaluationError as e:
            self._record(e, command)
        return items

    def _bindings(self, command: EachCommand, item: Any, index: int) -> Dict[str, Any]:
        bindings = {command.var: item}
        if command.var_index:
            bindings[command.var_index] = index
        return bindings

    def _render_each(self, node, command: EachCommand, cursor, context, loops) -> Size:
        region = node.region
        recorded = len(self.log)
        items = self.resolve_items(command, context)
        if command.multisheet:
            if len(self.log) > recorded:
                # items are incomplete after an evaluation error
                logger.debug("Skipping multisheet jx:each at %s after evaluation errors", command.location)
                return Size(0, region.width)
            return self._render_multisheet(node, command, items, cursor, context, loops)

        height = width = 0
        position = cursor
        for index, item in enumerate(items):
            with context.scope(self._bindings(command, item, index)) as scope:
                size = self.render_body(node, position, scope, loops + ((command.sequence, index),))
            if command.direction is Direction.DOWN:
                position = position.moved(rows=size.height)
                height += size.height
                width = max(width, size.width)
            else:
                position = position.moved(cols=size.width)
                width += size.width
                height = max(height, size.height)

        if not items:
            logger.debug("jx:each at %s produced no items", command.location)
            if command.direction is Direction.DOWN:
                return Size(0, region.width)
            return Size(region.height, 0)
        return Size(height, width)

    def _render_multisheet(self, node, command: EachCommand, items, cursor, context, loops) -> Size:
        region = node.region
        try:
            names = [to_text(name) for name in to_sequence(self._evaluate(command.multisheet, context))]
        except EvaluationError as e:
            self._record(e, command)
            return Size(0, region.width)
        if len(names) != len(items):
            raise MultisheetMismatchError(
                f"multisheet lists {len(names)} sheet name(s) for {len(items)} item(s)",
                command.location,
            )

        for index, (item, name) in enumerate(zip(items, names)):
            sheet = self._create_sheet_copy(cursor.sheet, region.sheet, name, index)
            with context.scope(self._bindings(command, item, index)) as scope:
                self.render_body(
                    node,
                    Cursor(sheet.name, cursor.row, cursor.col),
                    scope,
                    loops + ((command.sequence, index),),
                )
        if cursor.sheet not in self.multisheet_hosts:
            self.multisheet_hosts.append(cursor.sheet)
        return Size(0, region.width)

    def _create_sheet_copy(self, host: str, template_sheet: str, name: str, index: int) -> Worksheet:
        base = sanitize_sheet_name(name) or f"{template_sheet}_{index + 1}"
        unique = base
        suffix = 2
        while self.output.has_sheet(unique):
            tail = f"_{suffix}"
            unique = base[:MAX_SHEET_NAME - len(tail)] + tail
            suffix += 1

        sheet = self.template.sheet(template_sheet).copy(unique)
        for region in self.area_regions + self.else_regions:
            if region.sheet == template_sheet:
                sheet.clear_region(region)
        inserted = self._inserted_after.get(host, 0)
        position = self.output.sheet_names.index(host) + 1 + inserted
        self.output.insert_sheet(sheet, position)
        self._inserted_after[host] = inserted + 1
        logger.debug("Created sheet %r from template sheet %r", unique, template_sheet)
        return sheet

    def _render_if(self, node, command: IfCommand, cursor, context, loops) -> Size:
        try:
            passed = self.evaluator.evaluate_condition(command.condition, context)
        except EvaluationError as e:
            self._record(e, command)
            passed = False
        if passed:
            return self.render_body(node, cursor, context, loops)
        if node.else_branch is not None:
            return self.render_body(node.else_branch, cursor, context, loops)
        return Size(0, node.region.width)

    def _grid_row(self, element: Any, props: Optional[List[str]], command: GridCommand) -> List[Any]:
        if props:
            values = []
            for prop in props:
                try:
                    values.append(get_property(element, prop))
                except EvaluationError as e:
                    self._record(e, command)
                    values.append(None)
            return values
        if isinstance(element, Mapping):
            return [normalize(v) for v in element.values()]
        if isinstance(element, pd.Series):
            return [normalize(v) for v in element.tolist()]
        if kind_of(element) is ValueKind.SEQUENCE:
            return [normalize(v) for v in to_sequence(element)]
        return [normalize(element)]

    def _render_grid(self, command: GridCommand, cursor: Cursor, context: Context) -> Size:
        region = command.region
        source = self.template.sheet(region.sheet)
        out = self.output.sheet(cursor.sheet)
        try:
            headers = to_sequence(self._evaluate(command.headers, context))
        except EvaluationError as e:
            self._record(e, command)
            headers = []
        try:
            data = to_sequence(self._evaluate(command.data, context))
        except EvaluationError as e:
            self._record(e, command)
            data = []
        props = [p.strip() for p in command.props.split(",") if p.strip()] if command.props else None

        header_template = source.cell(region.row, region.col)
        data_template = source.cell(region.row + 1, region.col) if region.height > 1 else header_template
        header_style = header_template.style if header_template else None
        data_style = data_template.style if data_template else None

        for row in range(region.row, region.row_end + 1):
            for col in range(region.col, region.col_end + 1):
                out.remove_cell(cursor.row + row - region.row, cursor.col + col - region.col)

        width = 0
        row = cursor.row
        if headers:
            for offset, header in enumerate(headers):
                out.set_cell(row, cursor.col + offset, Cell(value=normalize(header), style=header_style))
            width = len(headers)
            row += 1
        for element in data:
            values = self._grid_row(element, props, command)
            for offset, value in enumerate(values):
                cell = Cell(style=data_style)
                self._assign(cell, value)
                out.set_cell(row, cursor.col + offset, cell)
            width = max(width, len(values))
            row += 1

        if row == cursor.row:
            return Size(0, region.width)
        return Size(row - cursor.row, width)

    def _render_image(self, command: ImageCommand, cursor: Cursor, context: Context) -> Size:
        region = command.region
        try:
            data = self._evaluate(command.src, context)
        except EvaluationError as e:
            self._record(e, command)
            return region.size
        if data is None:
            return region.size
        if kind_of(data) is not ValueKind.BINARY:
            self._record(
                TypeMismatchError(f"Image source must be bytes, got {kind_of(data).value}", expression=command.src),
                command,
            )
            return region.size
        self.output.sheet(cursor.sheet).images.append(ImageAnchor(
            row=cursor.row,
            col=cursor.col,
            rows=region.height,
            cols=region.width,
            data=bytes(data),
            image_type=command.image_type,
            scale_x=command.scale_x,
            scale_y=command.scale_y,
        ))
        return region.size

    def _int_attribute(self, expression: Optional[str], command, context: Context) -> Optional[int]:
        if expression is None:
            return None
        try:
            value = self._evaluate(expression, context)
        except EvaluationError as e:
            self._record(e, command)
            return None
        if value is None:
            return None
        if kind_of(value) is not ValueKind.NUMBER:
            self._record(
                TypeMismatchError(f"Expected a number, got {kind_of(value).value}", expression=expression),
                command,
            )
            return None
        return int(value)

    def _render_merge(self, node, command: MergeCellsCommand, cursor, context, loops) -> Size:
        size = self.render_body(node, cursor, context, loops)
        cols = self._int_attribute(command.cols, command, context)
        rows = self._int_attribute(command.rows, command, context)
        if cols is None or rows is None:
            return size
        cols = max(cols, self._int_attribute(command.min_cols, command, context) or 0)
        rows = max(rows, self._int_attribute(command.min_rows, command, context) or 0)
        if cols <= 1 and rows <= 1:
            return size
        cols, rows = max(cols, 1), max(rows, 1)
        self.output.sheet(cursor.sheet).add_merge(
            Region(cursor.sheet, cursor.row, cursor.col, cursor.row + rows - 1, cursor.col + cols - 1)
        )
        return Size(max(size.height, rows), max(size.width, cols))

    def _render_auto_row_height(self, node, cursor, context, loops) -> Size:
        size = self.render_body(node, cursor, context, loops)
        self.output.sheet(cursor.sheet).auto_height_rows.update(
            range(cursor.row, cursor.row + size.height)
        )
        return size

    # ------------------------------------------------------------------
    # finishing

    def in_area(self, ref: CellRef) -> bool:
        return any(
            r.sheet == ref.sheet and r.contains_cell(ref.row, ref.col)
            for r in self.area_regions + self.else_regions
        )

    def _rewrite_formulas(self) -> None:
        rewriter = FormulaRewriter(self.grid.targets, self.in_area)
        for pending in self.grid.formulas:
            if not self.output.has_sheet(pending.target.sheet):
                continue
            cell = self.output.sheet(pending.target.sheet).cell(pending.target.row, pending.target.col)
            if cell is None or cell.formula != pending.formula:
                continue
            cell.formula = rewriter.rewrite(
                pending.formula,
                pending.source.sheet,
                pending.target.sheet,
                pending.loops,
                pending.params,
                pending.target,
            )

        # formulas outside every area still follow the cells they point at
        for source in self.template.sheets:
            if not self.output.has_sheet(source.name):
                continue
            out = self.output.sheet(source.name)
            for row, col, cell in source.iter_cells():
                ref = CellRef(source.name, row, col)
                if cell.formula is None or self.in_area(ref):
                    continue
                current = out.cell(row, col)
                if current is None or current.formula != cell.formula:
                    continue
                params = self.formula_params.get(ref, DEFAULT_FORMULA_PARAMS)
                current.formula = rewriter.rewrite(cell.formula, source.name, source.name, (), params, ref)
        logger.debug("Rewrote references of %d formula(s)", len(self.grid.formulas))

    def _finish_multisheet_hosts(self) -> None:
        for name in self.multisheet_hosts:
            if self.options.keep_template_sheet:
                continue
            if self.options.hide_template_sheet:
                self.output.sheet(name).hidden = True
            else:
                self.output.remove_sheet(name)
                logger.debug("Removed template sheet %r after multisheet rendering", name)

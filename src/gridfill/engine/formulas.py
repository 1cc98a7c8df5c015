"""
Formula reference rewriting.

Formulas are copied, never evaluated. While the engine renders, it records
where every template cell ended up (a TargetMap). Once rendering is done each
emitted formula has its cell references rewritten through that map:
- a reference to a cell rendered once points at the new position
- a reference to a replicated cell expands to the range (or list) of copies
- copies are restricted to those produced in the same iteration of every
  loop the formula cell shares with the referenced cell
- a reference into an area cell that produced no output becomes ``0``, or
  the ``defaultValue`` of the formula's ``jx:params``
- ``formulaStrategy=BY_ROW`` / ``BY_COLUMN`` keeps only the copies on the
  formula's own output row / column
- references outside every area are left alone
"""

import logging
import re
from dataclasses import dataclass
from typing import Callable, Dict, List, NamedTuple, Optional, Sequence, Tuple

from gridfill.commands.nodes import DEFAULT_FORMULA_PARAMS, FormulaParams, FormulaStrategy
from gridfill.spreadsheet.model import CellRef, col_to_letter, letter_to_col, quote_sheet_name

logger = logging.getLogger(__name__)

# (loop id, iteration index) for every enclosing each, outermost first
LoopPath = Tuple[Tuple[int, int], ...]

MAX_LIST_ENTRIES = 255

_STRING_LITERAL = re.compile(r'"(?:[^"]|"")*"')
_CELL = r"\$?[A-Za-z]{1,3}\$?\d+"
_REFERENCE = re.compile(
    r"(?<![A-Za-z0-9_.$:!'\"])"
    r"(?:(?P<sheet>'(?:[^']|'')+'|[A-Za-z_][A-Za-z0-9_.]*)!)?"
    rf"(?P<start>{_CELL})(?::(?P<end>{_CELL}))?"
    r"(?![A-Za-z0-9_(!])"
)
_CELL_PARTS = re.compile(r"^(\$?)([A-Za-z]{1,3})(\$?)(\d+)$")


@dataclass(frozen=True)
class Target:
    """A rendered copy of a template cell."""
    ref: CellRef
    loops: LoopPath


def loops_compatible(first: LoopPath, second: LoopPath) -> bool:
    """True when both paths agree on the iteration of every loop they share."""
    shared = dict(first)
    return all(shared.get(loop, index) == index for loop, index in second)


class TargetMap:
    """Maps template cells to the cells rendered from them."""

    def __init__(self) -> None:
        self._targets: Dict[CellRef, List[Target]] = {}

    def record(self, source: CellRef, target: CellRef, loops: LoopPath) -> None:
        self._targets.setdefault(source, []).append(Target(target, loops))

    def targets(self, source: CellRef) -> List[Target]:
        return self._targets.get(source, [])

    def __contains__(self, source: CellRef) -> bool:
        return source in self._targets

    def __len__(self) -> int:
        return len(self._targets)


def _parse_cell(text: str) -> Tuple[bool, int, bool, int]:
    col_abs, letters, row_abs, digits = _CELL_PARTS.match(text).groups()
    return bool(col_abs), letter_to_col(letters), bool(row_abs), int(digits) - 1


def _unquote(sheet: Optional[str]) -> Optional[str]:
    if sheet and sheet.startswith("'"):
        return sheet[1:-1].replace("''", "'")
    return sheet


def _format_cell(ref: CellRef, col_abs: bool = False, row_abs: bool = False) -> str:
    return f"{'$' if col_abs else ''}{col_to_letter(ref.col)}{'$' if row_abs else ''}{ref.row + 1}"


def _prefix(sheet: str, explicit: bool, formula_sheet: str) -> str:
    if explicit or sheet != formula_sheet:
        return f"{quote_sheet_name(sheet)}!"
    return ""


def _is_block(refs: Sequence[CellRef]) -> bool:
    """True when the cells exactly fill their bounding rectangle."""
    rows = [r.row for r in refs]
    cols = [r.col for r in refs]
    height = max(rows) - min(rows) + 1
    width = max(cols) - min(cols) + 1
    return len(set((r.row, r.col) for r in refs)) == len(refs) == height * width


def join_targets(refs: Sequence[CellRef], explicit_sheet: bool, formula_sheet: str) -> str:
    """Render several target cells as a range when contiguous, else as a list."""
    sheets = {r.sheet for r in refs}
    if len(sheets) == 1 and _is_block(refs):
        sheet = refs[0].sheet
        top = CellRef(sheet, min(r.row for r in refs), min(r.col for r in refs))
        bottom = CellRef(sheet, max(r.row for r in refs), max(r.col for r in refs))
        return f"{_prefix(sheet, explicit_sheet, formula_sheet)}{_format_cell(top)}:{_format_cell(bottom)}"
    parts = [f"{_prefix(r.sheet, explicit_sheet, formula_sheet)}{_format_cell(r)}" for r in refs]
    separator = "+" if len(parts) > MAX_LIST_ENTRIES else ","
    return separator.join(parts)


def references(formula: str, sheet: str) -> List[CellRef]:
    """Cells a formula points at (both corners for ranges), outside string literals."""
    refs: List[CellRef] = []
    for segment in _STRING_LITERAL.split(formula):
        for match in _REFERENCE.finditer(segment):
            target_sheet = _unquote(match.group("sheet")) or sheet
            for part in ("start", "end"):
                if match.group(part) is not None:
                    _, col, _, row = _parse_cell(match.group(part))
                    refs.append(CellRef(target_sheet, row, col))
    return refs


class _Site(NamedTuple):
    """Where one emitted formula came from and where it was written."""
    source_sheet: str
    output_sheet: str
    loops: LoopPath
    params: FormulaParams
    cell: Optional[CellRef]


class FormulaRewriter:
    """Rewrites references in emitted formulas through a TargetMap.

    Attributes:
        targets: Where template cells were rendered
        in_area: Predicate telling whether a template cell belongs to an area
    """

    def __init__(self, targets: TargetMap, in_area: Callable[[CellRef], bool]) -> None:
        self.targets = targets
        self.in_area = in_area

    def rewrite(
        self,
        formula: str,
        source_sheet: str,
        output_sheet: str,
        loops: LoopPath,
        params: FormulaParams = DEFAULT_FORMULA_PARAMS,
        cell: Optional[CellRef] = None,
    ) -> str:
        """Rewrite every reference of one emitted formula.

        Args:
            formula: Formula text without the leading '='
            source_sheet: Template sheet the formula cell came from
            output_sheet: Sheet the formula is written to
            loops: Loop iterations that produced this formula cell
            params: ``jx:params`` of the formula cell
            cell: Output cell of the formula; BY_ROW and BY_COLUMN keep only
                copies sharing its row or column

        Returns:
            The rewritten formula text
        """
        site = _Site(source_sheet, output_sheet, loops, params, cell)
        pieces: List[str] = []
        pos = 0
        for literal in _STRING_LITERAL.finditer(formula):
            pieces.append(self._rewrite_segment(formula[pos:literal.start()], site))
            pieces.append(literal.group(0))
            pos = literal.end()
        pieces.append(self._rewrite_segment(formula[pos:], site))
        result = "".join(pieces)
        if result != formula:
            logger.debug("Rewrote formula %r -> %r", formula, result)
        return result

    def _rewrite_segment(self, text: str, site: _Site) -> str:
        return _REFERENCE.sub(lambda m: self._replace(m, site), text)

    def _compatible(self, source: CellRef, site: _Site) -> Optional[List[CellRef]]:
        """Targets of ``source`` usable from ``site``; None if it was never rendered."""
        targets = self.targets.targets(source)
        if not targets:
            return None
        refs = [t.ref for t in targets if loops_compatible(site.loops, t.loops)]
        strategy = site.params.strategy
        if site.cell is not None and strategy is FormulaStrategy.BY_ROW:
            refs = [r for r in refs if r.row == site.cell.row]
        elif site.cell is not None and strategy is FormulaStrategy.BY_COLUMN:
            refs = [r for r in refs if r.col == site.cell.col]
        return refs

    def _replace(self, match: "re.Match", site: _Site) -> str:
        explicit = match.group("sheet") is not None
        sheet = _unquote(match.group("sheet")) or site.source_sheet
        col_abs, col, row_abs, row = _parse_cell(match.group("start"))
        start = CellRef(sheet, row, col)
        default_value = site.params.default_value

        if match.group("end") is None:
            refs = self._compatible(start, site)
            if refs is None:
                return default_value if self.in_area(start) else match.group(0)
            if not refs:
                return default_value
            if len(refs) == 1:
                return _prefix(refs[0].sheet, explicit, site.output_sheet) + _format_cell(refs[0], col_abs, row_abs)
            return join_targets(refs, explicit, site.output_sheet)

        _, end_col, _, end_row = _parse_cell(match.group("end"))
        end = CellRef(sheet, end_row, end_col)
        start_refs = self._compatible(start, site)
        end_refs = self._compatible(end, site)
        if start_refs is None and end_refs is None:
            if self.in_area(start) or self.in_area(end):
                return default_value
            return match.group(0)
        found = (start_refs or []) + (end_refs or [])
        if not found:
            return default_value
        if len({r.sheet for r in found}) != 1:
            return match.group(0)
        target_sheet = found[0].sheet
        first = start_refs or end_refs
        last = end_refs or start_refs
        top = CellRef(target_sheet, min(r.row for r in first), min(r.col for r in first))
        bottom = CellRef(target_sheet, max(r.row for r in last), max(r.col for r in last))
        prefix = _prefix(target_sheet, explicit, site.output_sheet)
        if top == bottom:
            return prefix + _format_cell(top)
        return f"{prefix}{_format_cell(top)}:{_format_cell(bottom)}"

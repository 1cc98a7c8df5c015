"""
Command declarations.

Every ``jx:`` declaration found in a cell annotation is parsed into one of a fixed
set of frozen dataclasses:
- AreaCommand: the rectangle processed in one fill pass
- EachCommand: replicate a block once per item of a collection
- IfCommand: include a block only when a condition holds, or an else block otherwise
- GridCommand: render a header row followed by data rows
- ImageCommand: place image bytes over a block
- MergeCellsCommand: merge a block of cells
- AutoRowHeightCommand: mark rows for height recalculation

FormulaParams is not a command: ``jx:params`` carries no region and only tunes
how references of the formula in its cell are rewritten.

``CommandNode`` is the union of these classes; consumers dispatch on the concrete
class and raise for anything else, so adding a kind without handling it fails loudly.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, ClassVar, Dict, Optional, Union

from gridfill.spreadsheet.model import CellRef, Region


class CommandKind(Enum):
    """Command names as they appear after ``jx:`` in annotations."""
    AREA = "area"
    EACH = "each"
    IF = "if"
    GRID = "grid"
    IMAGE = "image"
    MERGE_CELLS = "mergeCells"
    AUTO_ROW_HEIGHT = "autoRowHeight"


class Direction(Enum):
    """Replication axis of an each command."""
    DOWN = "DOWN"
    RIGHT = "RIGHT"


class GroupOrder(Enum):
    """Ordering applied to groups produced by ``groupBy``."""
    ASC = "ASC"
    DESC = "DESC"
    IGNORECASE = "IGNORECASE"


class FormulaStrategy(Enum):
    """Which copies of a replicated cell a formula reference expands to."""
    DEFAULT = "DEFAULT"
    BY_ROW = "BY_ROW"
    BY_COLUMN = "BY_COLUMN"


IMAGE_TYPES = ("PNG", "JPEG", "JPG", "GIF", "BMP", "TIFF", "EMF", "WMF")


def _display(value: Any) -> str:
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, Region):
        return value.to_a1()
    return repr(value)


@dataclass(frozen=True)
class Command:
    """Fields shared by every command.

    Attributes:
        anchor: The annotated cell, top-left corner of the region
        last_cell: Bottom-right corner declared by ``lastCell``
        sequence: Declaration order within the template, used to break ties
            between commands covering the same region
    """
    anchor: CellRef
    last_cell: CellRef
    sequence: int

    kind: ClassVar[CommandKind]
    is_container: ClassVar[bool] = False

    @property
    def region(self) -> Region:
        """The governed rectangle.

        Raises:
            ValueError: If ``last_cell`` lies above or left of the anchor
        """
        return Region.spanning(self.anchor, self.last_cell)

    @property
    def has_valid_extent(self) -> bool:
        return (
            self.last_cell.sheet == self.anchor.sheet
            and self.last_cell.row >= self.anchor.row
            and self.last_cell.col >= self.anchor.col
        )

    @property
    def location(self) -> str:
        return str(self.anchor)

    def attributes(self) -> Dict[str, Any]:
        """Declared attributes other than the region, for display."""
        skip = {"anchor", "last_cell", "sequence"}
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if f.name not in skip and getattr(self, f.name) is not None
        }

    def describe(self) -> str:
        attrs = " ".join(f"{name}={_display(value)}" for name, value in self.attributes().items())
        text = f"{self.kind.value} {self.anchor.to_a1()}:{self.last_cell.to_a1()}"
        return f"{text} {attrs}" if attrs else text


@dataclass(frozen=True)
class AreaCommand(Command):
    kind: ClassVar[CommandKind] = CommandKind.AREA
    is_container: ClassVar[bool] = True


@dataclass(frozen=True)
class EachCommand(Command):
    """Replicate the region once per item.

    Attributes:
        items: Expression resolving to the collection
        var: Name bound to the current item (or group)
        var_index: Name bound to the 0-based iteration index
        direction: DOWN stacks copies vertically, RIGHT horizontally
        select: Filter expression evaluated per item
        order_by: Comma-separated ``<expr> [ASC|DESC]`` sort keys
        group_by: Key expression partitioning the items
        group_order: Optional ordering of the groups themselves
        multisheet: Expression resolving to one sheet name per item
    """
    items: str
    var: str
    var_index: Optional[str] = None
    direction: Direction = Direction.DOWN
    select: Optional[str] = None
    order_by: Optional[str] = None
    group_by: Optional[str] = None
    group_order: Optional[GroupOrder] = None
    multisheet: Optional[str] = None

    kind: ClassVar[CommandKind] = CommandKind.EACH
    is_container: ClassVar[bool] = True


@dataclass(frozen=True)
class IfCommand(Command):
    """Render the region when ``condition`` holds.

    Attributes:
        condition: Expression that must evaluate to a boolean or null
        else_area: Template block rendered in place of the region when the
            condition is false, declared as the second entry of ``areas``
    """
    condition: str
    else_area: Optional[Region] = None

    kind: ClassVar[CommandKind] = CommandKind.IF
    is_container: ClassVar[bool] = True


@dataclass(frozen=True)
class GridCommand(Command):
    """Render ``headers`` as one row, then one row per element of ``data``.

    ``props`` names the properties pulled from each element when the elements
    are mappings or objects rather than sequences.
    """
    headers: str
    data: str
    props: Optional[str] = None

    kind: ClassVar[CommandKind] = CommandKind.GRID


@dataclass(frozen=True)
class ImageCommand(Command):
    src: str
    image_type: str = "PNG"
    scale_x: float = 1.0
    scale_y: float = 1.0

    kind: ClassVar[CommandKind] = CommandKind.IMAGE


@dataclass(frozen=True)
class MergeCellsCommand(Command):
    cols: str
    rows: str
    min_cols: Optional[str] = None
    min_rows: Optional[str] = None

    kind: ClassVar[CommandKind] = CommandKind.MERGE_CELLS
    is_container: ClassVar[bool] = True


@dataclass(frozen=True)
class AutoRowHeightCommand(Command):
    kind: ClassVar[CommandKind] = CommandKind.AUTO_ROW_HEIGHT
    is_container: ClassVar[bool] = True


CommandNode = Union[
    AreaCommand,
    EachCommand,
    IfCommand,
    GridCommand,
    ImageCommand,
    MergeCellsCommand,
    AutoRowHeightCommand,
]

COMMAND_CLASSES = {
    cls.kind: cls
    for cls in (
        AreaCommand,
        EachCommand,
        IfCommand,
        GridCommand,
        ImageCommand,
        MergeCellsCommand,
        AutoRowHeightCommand,
    )
}


@dataclass(frozen=True)
class FormulaParams:
    """Per-formula settings declared with ``jx:params`` on a formula cell.

    Attributes:
        default_value: Text substituted for a reference whose cells produced
            no output
        strategy: BY_ROW keeps only copies on the formula's own output row,
            BY_COLUMN only those in its column
    """
    default_value: str = "0"
    strategy: FormulaStrategy = FormulaStrategy.DEFAULT


DEFAULT_FORMULA_PARAMS = FormulaParams()

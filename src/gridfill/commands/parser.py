"""
Command parser.

Turns the annotation text attached to a cell into command declarations. An
annotation may hold several declarations, one per line:

    jx:area(lastCell="C5")
    jx:each(items="employees" var="e" lastCell="C2")

Lines that do not start with ``jx:`` are ordinary comment text and are ignored.
Parsing is pure: it looks at nothing but the annotation text and its anchor cell.
"""

import logging
import re
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from gridfill.commands.nodes import (
    COMMAND_CLASSES,
    IMAGE_TYPES,
    CommandKind,
    CommandNode,
    Direction,
    FormulaParams,
    FormulaStrategy,
    GroupOrder,
)
from gridfill.exceptions import (
    InvalidAttributeError,
    MalformedCommandError,
    MissingAttributeError,
    UnknownCommandError,
)
from gridfill.spreadsheet.model import CellRef, Region
from gridfill.spreadsheet.workbook import Workbook

logger = logging.getLogger(__name__)

COMMAND_PREFIX = "jx:"
PARAMS_COMMAND = "params"

_LINE_SPLIT = re.compile(r"\r\n|\r|\n")
_DECLARATION = re.compile(r"^jx:\s*(\w+)\s*\((.*)\)\s*$", re.DOTALL)
_ATTR_KEY = re.compile(r"(\w+)\s*=\s*")
_BARE_VALUE = re.compile(r"[^\s,]+")
_SEPARATORS = " \t,"
_QUOTES = {
    '"': '"',
    "'": "'",
    "“": "”",
    "”": "”",
    "‘": "’",
    "’": "’",
}


def _upper_choice(choices: Iterable[str]) -> Callable[[str], str]:
    allowed = tuple(choices)

    def convert(value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in allowed:
            raise ValueError(f"expected one of {', '.join(allowed)}")
        return normalized

    return convert


def _to_float(value: str) -> float:
    return float(value.strip())


# attribute name -> (dataclass field, converter)
_Field = Tuple[str, Optional[Callable[[str], object]]]

_REQUIRED: Dict[CommandKind, Dict[str, _Field]] = {
    CommandKind.AREA: {},
    CommandKind.EACH: {"items": ("items", None), "var": ("var", None)},
    CommandKind.IF: {"condition": ("condition", None)},
    CommandKind.GRID: {"headers": ("headers", None), "data": ("data", None)},
    CommandKind.IMAGE: {
        "src": ("src", None),
        "imageType": ("image_type", _upper_choice(IMAGE_TYPES)),
    },
    CommandKind.MERGE_CELLS: {"cols": ("cols", None), "rows": ("rows", None)},
    CommandKind.AUTO_ROW_HEIGHT: {},
}

_OPTIONAL: Dict[CommandKind, Dict[str, _Field]] = {
    CommandKind.AREA: {},
    CommandKind.EACH: {
        "varIndex": ("var_index", None),
        "direction": ("direction", lambda v: Direction(_upper_choice(("DOWN", "RIGHT"))(v))),
        "select": ("select", None),
        "orderBy": ("order_by", None),
        "groupBy": ("group_by", None),
        "groupOrder": ("group_order", lambda v: GroupOrder(_upper_choice(("ASC", "DESC", "IGNORECASE"))(v))),
        "multisheet": ("multisheet", None),
    },
    CommandKind.IF: {},
    CommandKind.GRID: {"props": ("props", None)},
    CommandKind.IMAGE: {"scaleX": ("scale_x", _to_float), "scaleY": ("scale_y", _to_float)},
    CommandKind.MERGE_CELLS: {"minCols": ("min_cols", None), "minRows": ("min_rows", None)},
    CommandKind.AUTO_ROW_HEIGHT: {},
}

_KINDS_BY_NAME = {kind.value: kind for kind in CommandKind}

_PARAMS_DECLARATION = re.compile(r"^jx:\s*params\b")

_PARAMS_ATTRIBUTES: Dict[str, _Field] = {
    "defaultValue": ("default_value", str),
    "formulaStrategy": (
        "strategy",
        lambda v: FormulaStrategy(_upper_choice(s.value for s in FormulaStrategy)(v)),
    ),
}


def is_command_line(line: str) -> bool:
    """Check whether an annotation line is a command declaration."""
    return line.strip().startswith(COMMAND_PREFIX)


def is_params_line(line: str) -> bool:
    return bool(_PARAMS_DECLARATION.match(line.strip()))


def split_annotation(text: str) -> Tuple[List[str], List[str]]:
    """Split annotation text into command lines and ordinary comment lines."""
    commands: List[str] = []
    other: List[str] = []
    for line in _LINE_SPLIT.split(text or ""):
        if is_command_line(line):
            commands.append(line.strip())
        else:
            other.append(line)
    return commands, other


def strip_commands(text: Optional[str]) -> Optional[str]:
    """Remove command lines from an annotation, keeping ordinary comment text.

    Returns:
        Remaining comment text, or None when nothing but commands was present
    """
    if text is None:
        return None
    _, other = split_annotation(text)
    remaining = "\n".join(other).strip()
    return remaining or None


def parse_attributes(text: str, location: Optional[str] = None) -> Dict[str, str]:
    """Parse ``key="value"`` pairs.

    Values may be quoted with double, single or typographic quotes; a value
    quoted with one kind may contain the others (``select="e.city == 'Rome'"``).
    Unquoted values run to the next whitespace or comma. A bracketed list such
    as ``areas=["A2:C2","A3:C3"]`` is returned as the text between the brackets.

    Raises:
        MalformedCommandError: On stray text, unterminated quotes or lists, or
            duplicate keys
    """
    attrs: Dict[str, str] = {}
    pos = 0
    length = len(text)
    while pos < length:
        while pos < length and text[pos] in _SEPARATORS:
            pos += 1
        if pos >= length:
            break
        match = _ATTR_KEY.match(text, pos)
        if not match:
            raise MalformedCommandError(
                f"Expected key=\"value\" at {text[pos:]!r}", location
            )
        key = match.group(1)
        pos = match.end()
        if pos < length and text[pos] in _QUOTES:
            close = _QUOTES[text[pos]]
            end = text.find(close, pos + 1)
            if end < 0:
                raise MalformedCommandError(
                    f"Unterminated value for attribute {key!r}", location
                )
            value = text[pos + 1:end]
            pos = end + 1
        elif pos < length and text[pos] == "[":
            end = text.find("]", pos + 1)
            if end < 0:
                raise MalformedCommandError(f"Unterminated list for attribute {key!r}", location)
            value = text[pos + 1:end]
            pos = end + 1
        else:
            bare = _BARE_VALUE.match(text, pos)
            if not bare:
                raise MalformedCommandError(f"Missing value for attribute {key!r}", location)
            value = bare.group(0)
            pos = bare.end()
        if key in attrs:
            raise MalformedCommandError(f"Duplicate attribute {key!r}", location)
        attrs[key] = value
    return attrs


def parse_declaration(line: str, anchor: CellRef, sequence: int = 0) -> CommandNode:
    """Parse one ``jx:`` declaration anchored at ``anchor``.

    Args:
        line: The declaration text
        anchor: Cell the annotation is attached to
        sequence: Declaration order, recorded on the command

    Returns:
        The parsed command

    Raises:
        MalformedCommandError: If the declaration does not match ``jx:name(...)``
        UnknownCommandError: If the name is not a known command
        MissingAttributeError: If a required attribute is absent
        InvalidAttributeError: If an attribute value is not acceptable
    """
    location = str(anchor)
    match = _DECLARATION.match(line.strip())
    if not match:
        raise MalformedCommandError(f"Malformed command declaration: {line.strip()!r}", location)

    name, body = match.groups()
    kind = _KINDS_BY_NAME.get(name)
    if kind is None:
        raise UnknownCommandError(f"Unknown command 'jx:{name}'", location)

    attrs = parse_attributes(body, location)

    if "lastCell" not in attrs:
        raise MissingAttributeError(f"jx:{name} requires attribute 'lastCell'", location)
    try:
        last_cell = CellRef.from_a1(attrs.pop("lastCell"), anchor.sheet)
    except ValueError as e:
        raise InvalidAttributeError(f"jx:{name} has an invalid lastCell: {e}", location) from e
    if last_cell.sheet != anchor.sheet:
        raise InvalidAttributeError(
            f"jx:{name} lastCell must be on sheet {anchor.sheet!r}", location
        )

    values: Dict[str, object] = {}
    if kind is CommandKind.IF and "areas" in attrs:
        values["else_area"] = _else_area(attrs.pop("areas"), anchor, location)

    for attr, (field_name, convert) in _REQUIRED[kind].items():
        if attr not in attrs:
            raise MissingAttributeError(f"jx:{name} requires attribute {attr!r}", location)
        values[field_name] = _convert(name, attr, attrs.pop(attr), convert, location)

    for attr, (field_name, convert) in _OPTIONAL[kind].items():
        if attr in attrs:
            values[field_name] = _convert(name, attr, attrs.pop(attr), convert, location)

    for attr in attrs:
        logger.warning("Ignoring unknown attribute %r of jx:%s at %s", attr, name, location)

    return COMMAND_CLASSES[kind](anchor=anchor, last_cell=last_cell, sequence=sequence, **values)


def _convert(name, attr, raw, convert, location):
    if convert is None:
        if not raw.strip():
            raise InvalidAttributeError(f"jx:{name} attribute {attr!r} is empty", location)
        return raw
    try:
        return convert(raw)
    except ValueError as e:
        raise InvalidAttributeError(
            f"jx:{name} attribute {attr!r} has invalid value {raw!r}: {e}", location
        ) from e


def _else_area(raw: str, anchor: CellRef, location: str) -> Optional[Region]:
    """Else block of ``jx:if``: the second entry of ``areas``; the first restates the if block."""
    quotes = "".join(_QUOTES)
    parts = [part.strip().strip(quotes).strip() for part in raw.strip().strip("[]").split(",") if part.strip()]
    if not parts or len(parts) > 2:
        raise InvalidAttributeError(f"jx:if attribute 'areas' must list one or two ranges, got {raw!r}", location)
    try:
        regions = [Region.from_a1(part, anchor.sheet) for part in parts]
    except ValueError as e:
        raise InvalidAttributeError(f"jx:if attribute 'areas' has an invalid range: {e}", location) from e
    if any(region.sheet != anchor.sheet for region in regions):
        raise InvalidAttributeError(f"jx:if areas must be on sheet {anchor.sheet!r}", location)
    return regions[1] if len(regions) == 2 else None


def parse_annotation(text: str, anchor: CellRef, sequence_start: int = 0) -> List[CommandNode]:
    """Parse every declaration in one annotation.

    Args:
        text: Annotation (comment) text
        anchor: Cell the annotation is attached to
        sequence_start: Sequence number given to the first declaration

    Returns:
        Commands in declaration order (empty when there are none)
    """
    lines = [line for line in split_annotation(text)[0] if not is_params_line(line)]
    return [
        parse_declaration(line, anchor, sequence_start + offset)
        for offset, line in enumerate(lines)
    ]


def parse_template(workbook: Workbook) -> List[CommandNode]:
    """Parse the annotations of every cell in a workbook.

    Sheets are scanned in tab order and cells row by row, so sequence numbers
    follow reading order.

    Returns:
        All commands found in the workbook
    """
    commands: List[CommandNode] = []
    for sheet in workbook.sheets:
        for row, col, cell in sheet.iter_cells():
            if not cell.comment:
                continue
            anchor = CellRef(sheet.name, row, col)
            parsed = parse_annotation(cell.comment, anchor, len(commands))
            if parsed:
                logger.debug("Parsed %d command(s) at %s", len(parsed), anchor)
            commands.extend(parsed)
    return commands


def parse_params(text: Optional[str], anchor: CellRef) -> Optional[FormulaParams]:
    """Parse the ``jx:params`` declaration of one annotation.

    Args:
        text: Annotation (comment) text
        anchor: Cell the annotation is attached to

    Returns:
        The declared parameters, or None when the annotation has none

    Raises:
        MalformedCommandError: On a malformed or repeated declaration
        InvalidAttributeError: If ``formulaStrategy`` is not a known strategy
    """
    location = str(anchor)
    found: Optional[FormulaParams] = None
    for line in split_annotation(text or "")[0]:
        if not is_params_line(line):
            continue
        if found is not None:
            raise MalformedCommandError("Duplicate jx:params declaration", location)
        match = _DECLARATION.match(line.strip())
        if not match:
            raise MalformedCommandError(f"Malformed command declaration: {line!r}", location)
        attrs = parse_attributes(match.group(2), location)
        values: Dict[str, object] = {}
        for attr, (field_name, convert) in _PARAMS_ATTRIBUTES.items():
            if attr in attrs:
                values[field_name] = _convert(PARAMS_COMMAND, attr, attrs.pop(attr), convert, location)
        for attr in attrs:
            logger.warning("Ignoring unknown attribute %r of jx:params at %s", attr, location)
        found = FormulaParams(**values)
    return found


def parse_formula_params(workbook: Workbook) -> Dict[CellRef, FormulaParams]:
    """Collect the ``jx:params`` of every formula cell in a workbook.

    A declaration on a cell without a formula has nothing to tune and is
    ignored with a warning.
    """
    params: Dict[CellRef, FormulaParams] = {}
    for sheet in workbook.sheets:
        for row, col, cell in sheet.iter_cells():
            if not cell.comment:
                continue
            anchor = CellRef(sheet.name, row, col)
            found = parse_params(cell.comment, anchor)
            if found is None:
                continue
            if cell.formula is None:
                logger.warning("Ignoring jx:params at %s: the cell holds no formula", anchor)
                continue
            params[anchor] = found
    return params

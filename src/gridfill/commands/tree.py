"""
Command tree builder.

Nests parsed commands by geometric containment. Area commands are the roots;
every other command is attached to the smallest container command (area, each,
if, mergeCells, autoRowHeight) whose region holds its anchor cell. When two
containers cover exactly the same region, the one declared first is the outer one.

The else block of an if command is a container of its own, hung off the if
node as ``else_branch``; commands anchored inside it render only with it.
"""

import logging
from dataclasses import dataclass, field
from itertools import combinations
from typing import Iterator, List, Optional, Sequence

from gridfill.commands.nodes import AreaCommand, CommandNode, EachCommand, IfCommand
from gridfill.exceptions import (
    EmptyEachRegionError,
    OverlappingCommandsError,
    RegionOutOfBoundsError,
)
from gridfill.spreadsheet.model import CellRef, Region

logger = logging.getLogger(__name__)


@dataclass
class CommandTreeNode:
    """A command together with the commands nested inside its region."""
    command: CommandNode
    children: List["CommandTreeNode"] = field(default_factory=list)
    else_branch: Optional["CommandTreeNode"] = None
    is_else: bool = False

    @property
    def region(self) -> Region:
        return self.command.region

    def walk(self, depth: int = 0) -> Iterator[tuple]:
        """Yield (depth, node) pairs depth-first, parents before children.

        An else branch follows the children of its if node, one level deeper.
        """
        yield depth, self
        for child in self.children:
            yield from child.walk(depth + 1)
        if self.else_branch is not None:
            yield from self.else_branch.walk(depth + 1)


def _check_extent(command: CommandNode) -> None:
    if command.has_valid_extent:
        return
    message = (
        f"jx:{command.kind.value} lastCell {command.last_cell.to_a1()} lies before "
        f"its anchor {command.anchor.to_a1()}"
    )
    if isinstance(command, EachCommand):
        raise EmptyEachRegionError(message, command.location)
    raise RegionOutOfBoundsError(message, command.location)


def _check_siblings(nodes: Sequence[CommandTreeNode]) -> None:
    for first, second in combinations(nodes, 2):
        if first.region.intersect(second.region) is not None:
            raise OverlappingCommandsError(
                f"jx:{second.command.kind.value} {second.region.to_a1()} overlaps "
                f"jx:{first.command.kind.value} {first.region.to_a1()}",
                second.command.location,
            )


def _label(node: CommandTreeNode) -> str:
    return "jx:if else block" if node.is_else else f"jx:{node.command.kind.value}"



def _else_node(command: IfCommand) -> CommandTreeNode:
    block = command.else_area
    if block.intersect(command.region) is not None:
        raise OverlappingCommandsError(
            f"jx:if else block {block.to_a1()} overlaps its if block {command.region.to_a1()}",
            command.location,
        )
    stand_in = AreaCommand(
        anchor=block.start,
        last_cell=CellRef(block.sheet, block.row_end, block.col_end),
        sequence=command.sequence,
    )
    return CommandTreeNode(stand_in, is_else=True)


def _sort_key(node: CommandTreeNode, sheet_order: Sequence[str]):
    command = node.command
    sheet = command.anchor.sheet
    sheet_index = sheet_order.index(sheet) if sheet in sheet_order else len(sheet_order)
    return (sheet_index, command.anchor.row, command.anchor.col, command.sequence)


def build_tree(
    commands: Sequence[CommandNode],
    sheet_order: Optional[Sequence[str]] = None,
) -> List[CommandTreeNode]:
    """Arrange commands into a forest rooted at area commands.

    Args:
        commands: Parsed commands (any order)
        sheet_order: Sheet names in tab order, used to order the roots

    Returns:
        Root nodes (areas) ordered by sheet, then top-to-bottom, left-to-right.
        Children of every node are ordered the same way.

    Raises:
        EmptyEachRegionError: If an each command has a negative extent
        RegionOutOfBoundsError: If a command is not contained in its parent,
            lies outside every area, or has a negative extent
        OverlappingCommandsError: If two siblings share a cell, or an if
            command's else block overlaps its if block
    """
    sheet_order = list(sheet_order or [])
    for command in commands:
        _check_extent(command)

    ordered = sorted(commands, key=lambda c: (-c.region.area, c.sequence))
    roots: List[CommandTreeNode] = []
    containers: List[CommandTreeNode] = []

    # else blocks are known up front so commands of any size can land in them
    else_nodes = {
        command.sequence: _else_node(command)
        for command in commands
        if isinstance(command, IfCommand) and command.else_area is not None
    }
    containers.extend(else_nodes.values())

    for command in ordered:
        node = CommandTreeNode(command, else_branch=else_nodes.get(command.sequence))
        if isinstance(command, AreaCommand):
            roots.append(node)
            containers.append(node)
            continue

        parent: Optional[CommandTreeNode] = None
        for candidate in containers:
            if candidate.region.contains(Region.spanning(command.anchor, command.anchor)):
                # the smallest match is the innermost; on ties the later one
                if parent is None or candidate.region.area <= parent.region.area:
                    parent = candidate
        if parent is None:
            raise RegionOutOfBoundsError(
                f"jx:{command.kind.value} is not inside any jx:area", command.location
            )
        if not parent.region.contains(command.region):
            raise RegionOutOfBoundsError(
                f"jx:{command.kind.value} {command.region.to_a1()} extends outside "
                f"{_label(parent)} {parent.region.to_a1()}",
                command.location,
            )
        parent.children.append(node)
        if command.is_container:
            containers.append(node)

    _check_siblings(roots)
    for root in roots:
        for _, node in root.walk():
            _check_siblings(node.children)
            node.children.sort(key=lambda n: _sort_key(n, sheet_order))
    roots.sort(key=lambda n: _sort_key(n, sheet_order))

    logger.debug("Built command tree with %d area(s) from %d command(s)", len(roots), len(commands))
    return roots

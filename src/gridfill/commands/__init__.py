"""
Template command module.

Parses ``jx:`` declarations from cell annotations and nests them into a tree.
"""

from gridfill.commands.nodes import (
    AreaCommand,
    AutoRowHeightCommand,
    CommandKind,
    CommandNode,
    Direction,
    EachCommand,
    GridCommand,
    GroupOrder,
    IfCommand,
    ImageCommand,
    MergeCellsCommand,
)
from gridfill.commands.parser import (
    parse_annotation,
    parse_declaration,
    parse_template,
    strip_commands,
)
from gridfill.commands.tree import CommandTreeNode, build_tree

__all__ = [
    "AreaCommand",
    "AutoRowHeightCommand",
    "CommandKind",
    "CommandNode",
    "Direction",
    "EachCommand",
    "GridCommand",
    "GroupOrder",
    "IfCommand",
    "ImageCommand",
    "MergeCellsCommand",
    "parse_annotation",
    "parse_declaration",
    "parse_template",
    "strip_commands",
    "CommandTreeNode",
    "build_tree",
]

"""
Human-readable dump of a template's command tree.
"""

from typing import List

from gridfill.commands.parser import parse_template
from gridfill.commands.tree import build_tree
from gridfill.spreadsheet.model import quote_sheet_name
from gridfill.spreadsheet.workbook import Workbook


def describe(workbook: Workbook) -> str:
    """Render the areas and commands of a template as an indented tree.

    Example output::

        Sheet1!A1:C4
          area A1:C4
            each A2:C2 items='employees' var='e' direction=DOWN
            if A3:C3 condition='total > 0' else_area=A5:C5
              else A5:C5

    Raises:
        TemplateParseError: If an annotation is not a valid command
        ConfigurationError: If the command geometry is invalid
    """
    roots = build_tree(parse_template(workbook), workbook.sheet_names)
    if not roots:
        return "No commands found"

    lines: List[str] = []
    for root in roots:
        lines.append(f"{quote_sheet_name(root.region.sheet)}!{root.region.to_a1()}")
        for depth, node in root.walk():
            text = f"else {node.region.to_a1()}" if node.is_else else node.command.describe()
            lines.append("  " * (depth + 1) + text)
    return "\n".join(lines)

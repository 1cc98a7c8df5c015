"""
Transform engine module.

Renders a parsed command tree against data: collection processing for each
commands, the recoverable-error policy, and formula reference rewriting.
"""

from gridfill.engine.collections import GroupData, group_items, order_items, select_items
from gridfill.engine.diagnostics import Diagnostic, DiagnosticLog, Severity
from gridfill.engine.formulas import FormulaRewriter, TargetMap
from gridfill.engine.transformer import Cursor, TargetGrid, Transformer, sanitize_sheet_name

__all__ = [
    "GroupData",
    "group_items",
    "order_items",
    "select_items",
    "Diagnostic",
    "DiagnosticLog",
    "Severity",
    "FormulaRewriter",
    "TargetMap",
    "Cursor",
    "TargetGrid",
    "Transformer",
    "sanitize_sheet_name",
]

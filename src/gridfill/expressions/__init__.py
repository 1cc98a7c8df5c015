"""
Template expression module.

Parses and evaluates the expressions found in placeholders and command
attributes (``items``, ``select``, ``condition``, ``orderBy``, ...).
"""

from gridfill.expressions.evaluator import (
    BUILTIN_FUNCTIONS,
    DEFAULT_NOTATION,
    ContextEval,
    Evaluator,
    Notation,
    Placeholder,
    find_placeholders,
    has_placeholders,
)
from gridfill.expressions.parser import parse_expression
from gridfill.expressions.values import Hyperlink, ValueKind, kind_of, normalize, to_sequence

__all__ = [
    "BUILTIN_FUNCTIONS",
    "DEFAULT_NOTATION",
    "ContextEval",
    "Evaluator",
    "Notation",
    "Placeholder",
    "find_placeholders",
    "has_placeholders",
    "parse_expression",
    "Hyperlink",
    "ValueKind",
    "kind_of",
    "normalize",
    "to_sequence",
]

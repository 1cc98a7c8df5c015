"""
Expression parser.

Template expressions are parsed with Python's own ``ast`` module after two
rewrites: the C-style aliases ``&&``, ``||`` and ``!`` are spelled out as
``and``, ``or`` and ``not``, and the constants ``true``, ``false`` and
``null`` become literals. ``x.size()`` is sugar for ``size(x)``.

Only a small subset of Python syntax is accepted. Precedence, lowest first:

    or  ||
    and &&
    not !
    == != > >= < <=
    + -
    * / %
    unary - +
    literal, name, call, (...), postfix ``.name`` / ``.name(...)``

Parsed expressions are cached.
"""

import ast
import re
from functools import lru_cache

from gridfill.exceptions import ExpressionSyntaxError

_ALIASES = {"&&": " and ", "||": " or ", "!": " not "}

# String literals are matched first so aliases inside them are left alone
_ALIAS_PATTERN = re.compile(r"""("(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')|&&|\|\||!(?!=)""", re.DOTALL)

_CONSTANTS = {"true": True, "false": False, "null": None}

_ALLOWED_NODES = (
    ast.Expression,
    ast.Constant,
    ast.Name,
    ast.Load,
    ast.Attribute,
    ast.Call,
    ast.BoolOp,
    ast.And,
    ast.Or,
    ast.UnaryOp,
    ast.Not,
    ast.USub,
    ast.UAdd,
    ast.BinOp,
    ast.Add,
    ast.Sub,
    ast.Mult,
    ast.Div,
    ast.Mod,
    ast.Compare,
    ast.Eq,
    ast.NotEq,
    ast.Lt,
    ast.LtE,
    ast.Gt,
    ast.GtE,
)

_LITERAL_TYPES = (str, int, float, type(None))


def spell_aliases(text: str) -> str:
    """Replace ``&&``, ``||`` and ``!`` outside string literals with keywords."""
    return _ALIAS_PATTERN.sub(lambda m: m.group(1) or _ALIASES[m.group(0)], text)


class _TemplateSyntax(ast.NodeTransformer):
    """Rewrites template-only spellings into plain Python nodes."""

    def visit_Name(self, node: ast.Name) -> ast.AST:
        if node.id in _CONSTANTS:
            return ast.copy_location(ast.Constant(_CONSTANTS[node.id]), node)
        return node

    def visit_Call(self, node: ast.Call) -> ast.AST:
        self.generic_visit(node)
        if isinstance(node.func, ast.Attribute):
            func = ast.copy_location(ast.Name(node.func.attr, ast.Load()), node.func)
            return ast.copy_location(
                ast.Call(func=func, args=[node.func.value] + node.args, keywords=node.keywords),
                node,
            )
        return node


def _check_subset(tree: ast.AST, text: str) -> None:
    for node in ast.walk(tree):
        if not isinstance(node, _ALLOWED_NODES):
            raise ExpressionSyntaxError(f"Unsupported syntax: {type(node).__name__}", expression=text)
        if isinstance(node, ast.Compare) and len(node.ops) > 1:
            raise ExpressionSyntaxError("Comparisons cannot be chained", expression=text)
        if isinstance(node, ast.Constant) and not isinstance(node.value, _LITERAL_TYPES):
            raise ExpressionSyntaxError(f"Unsupported literal {node.value!r}", expression=text)
        if isinstance(node, ast.Call) and (node.keywords or not isinstance(node.func, ast.Name)):
            raise ExpressionSyntaxError("Only plain function calls with positional arguments are allowed",
                                        expression=text)


@lru_cache(maxsize=4096)
def parse_expression(text: str) -> ast.expr:
    """Parse an expression string into a Python AST expression node.

    Args:
        text: Expression source, without placeholder markers

    Returns:
        Root node of the expression

    Raises:
        ExpressionSyntaxError: If the expression is malformed or uses syntax
            outside the template subset
    """
    source = spell_aliases(text).strip()
    if not source:
        raise ExpressionSyntaxError("Empty expression", expression=text)
    try:
        tree = ast.parse(source, mode="eval")
    except SyntaxError as e:
        raise ExpressionSyntaxError(f"Invalid expression: {e.msg}", expression=text) from e
    tree = ast.fix_missing_locations(_TemplateSyntax().visit(tree))
    _check_subset(tree, text)
    return tree.body

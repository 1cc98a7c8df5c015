"""
Expression evaluator and placeholder templating.

Expressions are evaluated with simpleeval. Identifiers resolve against a
Context, every operator goes through the coercion rules in ``values`` and a
small set of built-in functions is exposed. ``render`` substitutes
placeholders in cell text: a cell that is exactly one placeholder keeps the
value's native type, anything else is concatenated as text.
"""

import ast
import logging
from dataclasses import dataclass
from functools import partial, wraps
from typing import Any, Callable, Dict, List, NamedTuple, Optional

from simpleeval import FunctionNotDefined, InvalidExpression, SimpleEval

from gridfill.context import Context
from gridfill.exceptions import (
    EvaluationError,
    ExpressionSyntaxError,
    TypeMismatchError,
    UnresolvedVariableError,
)
from gridfill.expressions.parser import parse_expression
from gridfill.expressions.values import (
    Hyperlink,
    ValueKind,
    arithmetic,
    compare,
    get_property,
    kind_of,
    normalize,
    to_bool,
    to_text,
)

logger = logging.getLogger(__name__)

_MISSING = object()


@dataclass(frozen=True)
class Notation:
    """Placeholder markers, ``${`` and ``}`` by default."""
    begin: str = "${"
    end: str = "}"

    def __post_init__(self) -> None:
        if not self.begin or not self.end:
            raise ValueError("Placeholder markers must be non-empty")
        if self.begin == self.end:
            raise ValueError("Placeholder begin and end markers must differ")


DEFAULT_NOTATION = Notation()


class Placeholder(NamedTuple):
    start: int
    end: int
    expression: str


def find_placeholders(text: str, notation: Notation = DEFAULT_NOTATION) -> List[Placeholder]:
    """Locate placeholders in ``text``.

    Braces and quoted strings inside a placeholder are skipped over so that
    ``${ {'a': 1} }``-like content does not end it early. An unterminated
    placeholder is left as literal text.

    Returns:
        Placeholders in order; ``end`` is the index just past the end marker
    """
    found: List[Placeholder] = []
    pos = 0
    while True:
        start = text.find(notation.begin, pos)
        if start < 0:
            return found
        i = start + len(notation.begin)
        depth = 0
        quote: Optional[str] = None
        close = -1
        while i < len(text):
            ch = text[i]
            if quote:
                if ch == "\\":
                    i += 2
                    continue
                if ch == quote:
                    quote = None
            elif ch in "'\"":
                quote = ch
            elif depth == 0 and text.startswith(notation.end, i):
                close = i
                break
            elif ch == "{":
                depth += 1
            elif ch == "}" and depth > 0:
                depth -= 1
            i += 1
        if close < 0:
            return found
        found.append(Placeholder(start, close + len(notation.end), text[start + len(notation.begin):close]))
        pos = close + len(notation.end)


def has_placeholders(value: Any, notation: Notation = DEFAULT_NOTATION) -> bool:
    return isinstance(value, str) and bool(find_placeholders(value, notation))


def _hyperlink(url: Any, label: Any = None) -> Hyperlink:
    if url is None:
        raise TypeMismatchError("hyperlink() needs a url")
    display = to_text(label) if label is not None else to_text(url)
    return Hyperlink(url=to_text(url), display=display)


def _size(value: Any) -> int:
    value = normalize(value)
    if value is None:
        return 0
    if kind_of(value) in (ValueKind.STRING, ValueKind.SEQUENCE, ValueKind.MAPPING, ValueKind.BINARY):
        return len(value) if not isinstance(value, Hyperlink) else len(value.display)
    if hasattr(value, "__len__"):
        return len(value)
    raise TypeMismatchError(f"size() needs a collection or string, got {kind_of(value).value}")


def _empty(value: Any) -> bool:
    value = normalize(value)
    if value is None:
        return True
    if isinstance(value, str):
        return value == ""
    if hasattr(value, "__len__"):
        return len(value) == 0
    return False


def _string_function(name: str, transform: Callable[[str], str]) -> Callable[[Any], Any]:
    def apply(value: Any) -> Any:
        value = normalize(value)
        if value is None:
            return None
        if kind_of(value) is not ValueKind.STRING:
            raise TypeMismatchError(f"{name}() needs a string, got {kind_of(value).value}")
        return transform(str(value))

    return apply


def _round(value: Any, digits: Any = 0) -> Any:
    value = normalize(value)
    if value is None:
        return None
    if kind_of(value) is not ValueKind.NUMBER or kind_of(digits) is not ValueKind.NUMBER:
        raise TypeMismatchError("round() needs numbers")
    result = round(value, int(digits))
    return int(result) if int(digits) <= 0 else result


BUILTIN_FUNCTIONS: Dict[str, Callable[..., Any]] = {
    "hyperlink": _hyperlink,
    "size": _size,
    "empty": _empty,
    "upper": _string_function("upper", str.upper),
    "lower": _string_function("lower", str.lower),
    "trim": _string_function("trim", str.strip),
    "round": _round,
}


def _guarded(name: str, func: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(func)
    def call(*args: Any) -> Any:
        try:
            return func(*args)
        except TypeError as e:
            raise TypeMismatchError(f"Bad arguments for {name}(): {e}") from e

    return call


def _negate(value: Any) -> bool:
    return not to_bool(value)


OPERATORS: Dict[type, Callable[..., Any]] = {
    ast.Add: partial(arithmetic, "+"),
    ast.Sub: partial(arithmetic, "-"),
    ast.Mult: partial(arithmetic, "*"),
    ast.Div: partial(arithmetic, "/"),
    ast.Mod: partial(arithmetic, "%"),
    ast.USub: partial(arithmetic, "-", 0),
    ast.UAdd: partial(arithmetic, "*", 1),
    ast.Not: _negate,
    ast.Eq: partial(compare, "=="),
    ast.NotEq: partial(compare, "!="),
    ast.Lt: partial(compare, "<"),
    ast.LtE: partial(compare, "<="),
    ast.Gt: partial(compare, ">"),
    ast.GtE: partial(compare, ">="),
}


class ContextEval(SimpleEval):
    """simpleeval bound to one Context.

    Names resolve innermost-first through the context, ``a.b`` follows the
    property rules of ``values`` and ``and``/``or`` accept only booleans and
    null, short-circuiting left to right.
    """

    def __init__(self, context: Context, functions: Dict[str, Callable[..., Any]]) -> None:
        super().__init__(operators=OPERATORS, functions=functions, names=self.resolve)
        self.context = context
        self.nodes[ast.Attribute] = self._property
        self.nodes[ast.BoolOp] = self._logical

    def resolve(self, node: ast.Name) -> Any:
        value = self.context.lookup(node.id, _MISSING)
        if value is _MISSING:
            raise UnresolvedVariableError(f"Unresolved variable {node.id!r}")
        return normalize(value)

    def _property(self, node: ast.Attribute) -> Any:
        target = self._eval(node.value)
        try:
            return get_property(target, node.attr)
        except UnresolvedVariableError as e:
            raise UnresolvedVariableError(f"{e.message} in {ast.unparse(node)}") from e

    def _logical(self, node: ast.BoolOp) -> bool:
        stop = isinstance(node.op, ast.Or)
        for operand in node.values:
            if to_bool(self._eval(operand)) is stop:
                return stop
        return not stop


class Evaluator:
    """Evaluates template expressions against a Context.

    Attributes:
        notation: Placeholder markers used by ``render``
        functions: Callable registry for function calls
    """

    def __init__(
        self,
        notation: Notation = DEFAULT_NOTATION,
        functions: Optional[Dict[str, Callable[..., Any]]] = None,
    ) -> None:
        self.notation = notation
        registry = dict(BUILTIN_FUNCTIONS)
        if functions:
            registry.update(functions)
        self.functions = {name: _guarded(name, func) for name, func in registry.items()}

    def evaluate(self, expression: str, context: Context) -> Any:
        """Parse and evaluate an expression.

        Raises:
            EvaluationError: If the expression is malformed or cannot be evaluated
        """
        try:
            tree = parse_expression(expression)
            return normalize(ContextEval(context, self.functions).eval(expression, previously_parsed=tree))
        except FunctionNotDefined as e:
            raise EvaluationError(f"Unknown function {e.func_name!r}", expression=expression) from e
        except InvalidExpression as e:
            raise ExpressionSyntaxError(str(e), expression=expression) from e
        except EvaluationError as e:
            if e.expression is None:
                e.expression = expression
            raise

    def evaluate_condition(self, expression: str, context: Context) -> bool:
        """Evaluate an expression that must produce a boolean (null is false).

        Raises:
            TypeMismatchError: If the result is not a boolean or null
        """
        value = self.evaluate(self.strip_notation(expression), context)
        try:
            return to_bool(value)
        except TypeMismatchError as e:
            e.expression = expression
            raise

    def strip_notation(self, expression: str) -> str:
        """Accept attribute values written as a single placeholder, e.g. ``${items}``."""
        text = expression.strip()
        placeholders = find_placeholders(text, self.notation)
        if len(placeholders) == 1 and placeholders[0].start == 0 and placeholders[0].end == len(text):
            return placeholders[0].expression
        return text

    def render(
        self,
        text: str,
        context: Context,
        on_error: Optional[Callable[[EvaluationError], None]] = None,
    ) -> Any:
        """Substitute placeholders in cell text.

        Args:
            text: Cell text
            context: Scope the placeholders are evaluated in
            on_error: When given, a failing placeholder is passed to it and
                renders as null (empty inside text) instead of raising

        Returns:
            The native value when ``text`` is exactly one placeholder, the
            concatenated string otherwise, or ``text`` unchanged when it has no
            placeholders

        Raises:
            EvaluationError: If a placeholder fails to evaluate and no
                ``on_error`` is given
        """
        placeholders = find_placeholders(text, self.notation)
        if not placeholders:
            return text
        if len(placeholders) == 1 and placeholders[0].start == 0 and placeholders[0].end == len(text):
            return self._evaluate_placeholder(placeholders[0], context, on_error)
        return self.render_text(text, context, placeholders, on_error)

    def render_text(
        self,
        text: str,
        context: Context,
        placeholders: Optional[List[Placeholder]] = None,
        on_error: Optional[Callable[[EvaluationError], None]] = None,
    ) -> str:
        """Substitute placeholders, always producing a string."""
        if placeholders is None:
            placeholders = find_placeholders(text, self.notation)
        parts: List[str] = []
        pos = 0
        for placeholder in placeholders:
            parts.append(text[pos:placeholder.start])
            parts.append(to_text(self._evaluate_placeholder(placeholder, context, on_error)))
            pos = placeholder.end
        parts.append(text[pos:])
        return "".join(parts)

    def _evaluate_placeholder(
        self,
        placeholder: Placeholder,
        context: Context,
        on_error: Optional[Callable[[EvaluationError], None]],
    ) -> Any:
        if on_error is None:
            return self.evaluate(placeholder.expression, context)
        try:
            return self.evaluate(placeholder.expression, context)
        except EvaluationError as e:
            logger.debug("Placeholder %r rendered empty: %s", placeholder.expression, e)
            on_error(e)
            return None

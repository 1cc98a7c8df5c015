"""
Collection processing for each commands.

Items resolved from ``items`` pass through three stages, in this order:
- select: keep items whose condition holds
- groupBy: partition into GroupData records in first-seen key order
- orderBy: stable multi-key sort (members within each group when grouped)

Expressions are evaluated with the loop variable bound to the item. Keys
written without a dot (``Department``) are read from the loop variable
(``e.Department``). Evaluation errors go to an ``on_error`` callback which
either records them or raises; a failing item is dropped by select and sorts
or groups under a null key otherwise.
"""

import functools
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Tuple

from gridfill.commands.nodes import GroupOrder
from gridfill.context import Context
from gridfill.exceptions import EvaluationError, ExpressionSyntaxError
from gridfill.expressions.evaluator import Evaluator
from gridfill.expressions.values import ValueKind, kind_of, to_text

ErrorHandler = Callable[[EvaluationError], None]

_BARE_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_DIRECTION = re.compile(r"^(.*?)(?:\s+(ASC|DESC))?$", re.IGNORECASE | re.DOTALL)


@dataclass(frozen=True)
class GroupData:
    """One group produced by ``groupBy``.

    Attributes:
        key: The group key shared by all members
        items: Members in their original (or sorted) order
    """
    key: Any
    items: Tuple[Any, ...]

    @property
    def item(self) -> Any:
        """The first member, handy for reading group-level fields."""
        return self.items[0] if self.items else None

    def __len__(self) -> int:
        return len(self.items)


class SortKey(NamedTuple):
    expression: str
    descending: bool = False


def qualify(expression: str, var: str) -> str:
    """Read a bare property name from the loop variable."""
    expression = expression.strip()
    if _BARE_NAME.match(expression) and expression != var:
        return f"{var}.{expression}"
    return expression


def parse_order_by(order_by: str, var: str) -> List[SortKey]:
    """Parse ``"e.Name ASC, e.Payment DESC"`` into sort keys.

    Raises:
        ExpressionSyntaxError: If a key is empty
    """
    keys: List[SortKey] = []
    for part in order_by.split(","):
        part = part.strip()
        match = _DIRECTION.match(part)
        expression = match.group(1).strip() if match else ""
        if not expression:
            raise ExpressionSyntaxError(f"Empty sort key in orderBy {order_by!r}", expression=order_by)
        descending = bool(match.group(2)) and match.group(2).upper() == "DESC"
        keys.append(SortKey(qualify(expression, var), descending))
    return keys


def _evaluate_per_item(
    items: List[Any],
    var: str,
    expression: str,
    context: Context,
    evaluator: Evaluator,
    on_error: ErrorHandler,
) -> List[Tuple[bool, Any]]:
    results: List[Tuple[bool, Any]] = []
    for item in items:
        with context.scope({var: item}) as scope:
            try:
                results.append((True, evaluator.evaluate(expression, scope)))
            except EvaluationError as e:
                on_error(e)
                results.append((False, None))
    return results


def select_items(
    items: List[Any],
    var: str,
    condition: str,
    context: Context,
    evaluator: Evaluator,
    on_error: ErrorHandler,
) -> List[Any]:
    """Keep items whose condition evaluates to true, preserving order."""
    kept: List[Any] = []
    condition = evaluator.strip_notation(condition)
    for item in items:
        with context.scope({var: item}) as scope:
            try:
                if evaluator.evaluate_condition(condition, scope):
                    kept.append(item)
            except EvaluationError as e:
                on_error(e)
    return kept


def _hashable_key(value: Any) -> Any:
    try:
        hash(value)
    except TypeError:
        return ("__unhashable__", repr(value))
    # 1 and True hash alike; keep them apart
    return (kind_of(value).value, value)


def group_items(
    items: List[Any],
    var: str,
    key_expression: str,
    context: Context,
    evaluator: Evaluator,
    on_error: ErrorHandler,
    group_order: Optional[GroupOrder] = None,
) -> List[GroupData]:
    """Partition items by key, keeping first-seen group order."""
    expression = qualify(evaluator.strip_notation(key_expression), var)
    buckets: Dict[Any, List[Any]] = {}
    keys: Dict[Any, Any] = {}
    for item, (_, key) in zip(items, _evaluate_per_item(items, var, expression, context, evaluator, on_error)):
        marker = _hashable_key(key)
        if marker not in buckets:
            buckets[marker] = []
            keys[marker] = key
        buckets[marker].append(item)
    groups = [GroupData(keys[marker], tuple(members)) for marker, members in buckets.items()]

    if group_order is GroupOrder.ASC:
        groups.sort(key=functools.cmp_to_key(lambda a, b: compare_keys(a.key, b.key)))
    elif group_order is GroupOrder.DESC:
        groups.sort(key=functools.cmp_to_key(lambda a, b: compare_keys(b.key, a.key)))
    elif group_order is GroupOrder.IGNORECASE:
        groups.sort(key=lambda g: to_text(g.key).lower())
    return groups


def compare_keys(left: Any, right: Any) -> int:
    """Total order used for sorting: nulls first, numbers numerically, else text."""
    if left is None and right is None:
        return 0
    if left is None:
        return -1
    if right is None:
        return 1
    left_kind, right_kind = kind_of(left), kind_of(right)
    if left_kind is right_kind and left_kind in (ValueKind.NUMBER, ValueKind.STRING, ValueKind.TEMPORAL):
        try:
            return (left > right) - (left < right)
        except TypeError:
            pass
    if left_kind is ValueKind.BOOL and right_kind is ValueKind.BOOL:
        return int(left) - int(right)
    left_text, right_text = to_text(left), to_text(right)
    return (left_text > right_text) - (left_text < right_text)


def order_items(
    items: List[Any],
    var: str,
    order_by: str,
    context: Context,
    evaluator: Evaluator,
    on_error: ErrorHandler,
) -> List[Any]:
    """Stable sort by comma-separated ``<expr> [ASC|DESC]`` keys."""
    sort_keys = parse_order_by(evaluator.strip_notation(order_by), var)
    columns = [
        [value for _, value in _evaluate_per_item(items, var, key.expression, context, evaluator, on_error)]
        for key in sort_keys
    ]
    rows = list(range(len(items)))

    def compare(a: int, b: int) -> int:
        for sort_key, values in zip(sort_keys, columns):
            result = compare_keys(values[a], values[b])
            if result:
                return -result if sort_key.descending else result
        return 0

    rows.sort(key=functools.cmp_to_key(compare))
    return [items[i] for i in rows]


def order_groups(
    groups: List[GroupData],
    var: str,
    order_by: str,
    context: Context,
    evaluator: Evaluator,
    on_error: ErrorHandler,
) -> List[GroupData]:
    """Sort the members of every group; group order is left as is."""
    return [
        GroupData(group.key, tuple(order_items(list(group.items), var, order_by, context, evaluator, on_error)))
        for group in groups
    ]

"""
Value kinds and coercion rules.

Template data is untyped: mappings of mappings of sequences of scalars, possibly
coming from pandas. Every operator site in the evaluator goes through the
functions here, which classify values into a closed set of kinds and apply
explicit rules instead of leaning on Python's own dynamic behaviour.
"""

import math
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, List

import numpy as np
import pandas as pd

from gridfill.exceptions import EvaluationError, TypeMismatchError, UnresolvedVariableError


class ValueKind(Enum):
    """Kinds a data value can have."""
    NULL = "null"
    BOOL = "bool"
    NUMBER = "number"
    STRING = "string"
    TEMPORAL = "temporal"
    SEQUENCE = "sequence"
    MAPPING = "mapping"
    BINARY = "binary"
    OBJECT = "object"


@dataclass(frozen=True)
class Hyperlink:
    """A cell value that displays ``display`` and links to ``url``."""
    url: str
    display: str

    def __str__(self) -> str:
        return self.display


def normalize(value: Any) -> Any:
    """Convert pandas/numpy scalars to plain Python values.

    NaN, NaT and ``pd.NA`` become None; numpy scalars become their Python
    equivalent; ``pd.Timestamp`` becomes ``datetime``.
    """
    if value is None:
        return None
    if isinstance(value, float):
        return None if math.isnan(value) else value
    if value is pd.NaT or value is pd.NA:
        return None
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()
    if isinstance(value, pd.Timedelta):
        return value.to_pytimedelta()
    if isinstance(value, np.generic):
        return normalize(value.item())
    return value


def kind_of(value: Any) -> ValueKind:
    """Classify a (normalized) value."""
    if value is None:
        return ValueKind.NULL
    if isinstance(value, (bool, np.bool_)):
        return ValueKind.BOOL
    if isinstance(value, (int, float, Decimal, np.number)):
        return ValueKind.NUMBER
    if isinstance(value, (str, Hyperlink)):
        return ValueKind.STRING
    if isinstance(value, (datetime, date, time, timedelta)):
        return ValueKind.TEMPORAL
    if isinstance(value, (bytes, bytearray, memoryview)):
        return ValueKind.BINARY
    if isinstance(value, (Mapping, pd.Series)):
        return ValueKind.MAPPING
    if isinstance(value, (list, tuple, set, frozenset, pd.DataFrame, pd.Index, np.ndarray)):
        return ValueKind.SEQUENCE
    return ValueKind.OBJECT


def to_sequence(value: Any) -> List[Any]:
    """Materialize a collection for iteration.

    DataFrames iterate their rows as dicts; Series and arrays iterate their
    values; null is the empty collection.

    Raises:
        TypeMismatchError: If the value is not a collection
    """
    if value is None:
        return []
    if isinstance(value, pd.DataFrame):
        return [
            {str(k): normalize(v) for k, v in record.items()}
            for record in value.to_dict(orient="records")
        ]
    if isinstance(value, (pd.Series, pd.Index, np.ndarray)):
        return [normalize(v) for v in value.tolist()]
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=repr)
    if isinstance(value, (str, bytes, bytearray, Mapping)):
        raise TypeMismatchError(f"Expected a collection, got {kind_of(value).value}")
    if isinstance(value, (list, tuple)):
        return list(value)
    if hasattr(value, "__iter__"):
        return list(value)
    raise TypeMismatchError(f"Expected a collection, got {kind_of(value).value}")


def get_property(target: Any, name: str) -> Any:
    """Resolve ``target.name``.

    Mappings are looked up by key, pandas rows by label and other objects by
    public attribute.

    Raises:
        UnresolvedVariableError: If the property does not exist
    """
    if target is None:
        raise UnresolvedVariableError(f"Cannot read property {name!r} of null")
    if isinstance(target, Mapping):
        if name in target:
            return normalize(target[name])
        raise UnresolvedVariableError(f"Unknown property {name!r}")
    if isinstance(target, pd.Series):
        if name in target.index:
            return normalize(target[name])
        raise UnresolvedVariableError(f"Unknown property {name!r}")
    if not name.startswith("_") and hasattr(target, name):
        return normalize(getattr(target, name))
    raise UnresolvedVariableError(
        f"Unknown property {name!r} on {type(target).__name__}"
    )


def to_text(value: Any) -> str:
    """Render a value as text for concatenation into a cell."""
    value = normalize(value)
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _number(value: Any, op: str) -> Any:
    if kind_of(value) is not ValueKind.NUMBER:
        raise TypeMismatchError(
            f"Operator {op!r} needs numbers, got {kind_of(value).value}"
        )
    return value


def _align(left: Any, right: Any):
    # Decimal does not mix with float
    if isinstance(left, Decimal) and isinstance(right, float):
        return float(left), right
    if isinstance(right, Decimal) and isinstance(left, float):
        return left, float(right)
    return left, right


def arithmetic(op: str, left: Any, right: Any) -> Any:
    """Apply ``+ - * / %``.

    ``+`` concatenates when either side is a string; otherwise both sides must
    be numbers. Exact integer division yields an int.

    Raises:
        TypeMismatchError: On incompatible operands
        EvaluationError: On division by zero
    """
    left, right = normalize(left), normalize(right)
    if op == "+" and (kind_of(left) is ValueKind.STRING or kind_of(right) is ValueKind.STRING):
        return to_text(left) + to_text(right)
    left, right = _align(_number(left, op), _number(right, op))
    if op == "+":
        return left + right
    if op == "-":
        return left - right
    if op == "*":
        return left * right
    if op in ("/", "%"):
        if right == 0:
            raise EvaluationError("Division by zero")
        if op == "%":
            return left % right
        if isinstance(left, int) and isinstance(right, int) and left % right == 0:
            return left // right
        return left / right
    raise TypeMismatchError(f"Unknown operator {op!r}")


def _ordering_kind(value: Any) -> ValueKind:
    kind = kind_of(value)
    if kind in (ValueKind.NUMBER, ValueKind.STRING, ValueKind.TEMPORAL):
        return kind
    raise TypeMismatchError(f"Cannot order values of kind {kind.value}")


def equals(left: Any, right: Any) -> bool:
    """Equality; values of different kinds are never equal."""
    left, right = normalize(left), normalize(right)
    if kind_of(left) is not kind_of(right):
        return False
    if isinstance(left, Hyperlink) or isinstance(right, Hyperlink):
        return to_text(left) == to_text(right)
    try:
        return bool(left == right)
    except (TypeError, ValueError):
        return False


def compare(op: str, left: Any, right: Any) -> bool:
    """Apply a comparison operator.

    Raises:
        TypeMismatchError: If an ordering comparison mixes kinds
    """
    if op == "==":
        return equals(left, right)
    if op == "!=":
        return not equals(left, right)
    left, right = normalize(left), normalize(right)
    if _ordering_kind(left) is not _ordering_kind(right):
        raise TypeMismatchError(
            f"Cannot compare {kind_of(left).value} with {kind_of(right).value} using {op!r}"
        )
    left, right = _align(left, right)
    if isinstance(left, Hyperlink) or isinstance(right, Hyperlink):
        left, right = to_text(left), to_text(right)
    try:
        if op == "<":
            return left < right
        if op == "<=":
            return left <= right
        if op == ">":
            return left > right
        if op == ">=":
            return left >= right
    except TypeError as e:
        # e.g. date against datetime
        raise TypeMismatchError(f"Cannot compare values: {e}") from e
    raise TypeMismatchError(f"Unknown operator {op!r}")


def to_bool(value: Any) -> bool:
    """Coerce an operand of a logical operator or a condition.

    Null counts as false; anything other than a bool is a type mismatch.
    """
    value = normalize(value)
    if value is None:
        return False
    if isinstance(value, (bool, np.bool_)):
        return bool(value)
    raise TypeMismatchError(f"Expected a boolean, got {kind_of(value).value}")

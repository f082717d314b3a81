from __future__ import annotations

from enum import Enum
from typing import Any, Mapping, Sequence, Union


Value = Union[None, bool, int, float, str, Mapping[str, Any], Sequence[Any]]


class ValueKind(str, Enum):
    NULL = "null"
    BOOL = "bool"
    NUMBER = "number"
    STRING = "string"
    MAPPING = "mapping"
    SEQUENCE = "sequence"
    UNKNOWN = "unknown"


SCALAR_KINDS = frozenset({ValueKind.BOOL, ValueKind.NUMBER, ValueKind.STRING})


def kind_of(value: Any) -> ValueKind:
    """
    Classify a decoded YAML/JSON node.

    bool is checked before number because bool is a subclass of int.
    """
    if value is None:
        return ValueKind.NULL
    if isinstance(value, bool):
        return ValueKind.BOOL
    if isinstance(value, (int, float)):
        return ValueKind.NUMBER
    if isinstance(value, str):
        return ValueKind.STRING
    if isinstance(value, Mapping):
        return ValueKind.MAPPING
    if isinstance(value, (list, tuple)):
        return ValueKind.SEQUENCE
    return ValueKind.UNKNOWN


def is_scalar(value: Any) -> bool:
    return kind_of(value) in SCALAR_KINDS


def scalar_text(value: Any) -> str:
    """String form used for glob comparison (booleans as YAML spells them)."""
    kind = kind_of(value)
    if kind == ValueKind.BOOL:
        return "true" if value else "false"
    if kind == ValueKind.NUMBER:
        if isinstance(value, float) and value.is_integer():
            return str(int(value))
        return str(value)
    return str(value)


def scalars_equal(left: Any, right: Any) -> bool:
    left_kind = kind_of(left)
    right_kind = kind_of(right)
    if left_kind != right_kind:
        return False
    return left == right

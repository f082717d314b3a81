"""
Variable expressions: dot/bracket paths such as
``request.object.spec.containers[0].image`` or
``request.object.metadata.labels["app.kubernetes.io/name"]``.

Resolution is all-or-nothing. A missing key, an out-of-range index, an index
into a scalar or a key into a sequence raises ResolutionError for the whole
expression.
"""
from __future__ import annotations

import json
import re
from typing import Any, List, Mapping, Union

from policygate.engine_core.context import EvaluationContext
from policygate.engine_core.values import ValueKind, kind_of, scalar_text


Segment = Union[str, int]

_TEMPLATE_RE = re.compile(r"\{\{\s*([^{}]+?)\s*\}\}")
_WHOLE_TEMPLATE_RE = re.compile(r"^\s*\{\{\s*([^{}]+?)\s*\}\}\s*$")
_NAME_RE = re.compile(r"[A-Za-z_$][A-Za-z0-9_$\-]*")
_INDEX_RE = re.compile(r"\[(\d+)\]")
_QUOTED_RE = re.compile(r"""\[(?:"([^"]*)"|'([^']*)')\]""")


class ResolutionError(LookupError):
    """Raised when a variable path does not exist in the evaluation context."""

    def __init__(self, path: str, detail: str = ""):
        self.path = path
        self.detail = detail
        message = f"variable not found: {path}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


def _strip_template(expression: str) -> str:
    match = _WHOLE_TEMPLATE_RE.match(expression)
    return match.group(1) if match else expression.strip()


def parse_path(expression: str) -> List[Segment]:
    path = _strip_template(expression)
    segments: List[Segment] = []
    pos = 0
    expect_name = True
    while pos < len(path):
        if path[pos] == "[":
            index_match = _INDEX_RE.match(path, pos)
            if index_match:
                segments.append(int(index_match.group(1)))
                pos = index_match.end()
                expect_name = False
                continue
            quoted_match = _QUOTED_RE.match(path, pos)
            if quoted_match:
                key = quoted_match.group(1)
                if key is None:
                    key = quoted_match.group(2)
                segments.append(key)
                pos = quoted_match.end()
                expect_name = False
                continue
            raise ResolutionError(path, f"invalid bracket at offset {pos}")
        if path[pos] == ".":
            if expect_name:
                raise ResolutionError(path, f"empty segment at offset {pos}")
            pos += 1
            expect_name = True
            continue
        if not expect_name:
            raise ResolutionError(path, f"unexpected character at offset {pos}")
        name_match = _NAME_RE.match(path, pos)
        if not name_match:
            raise ResolutionError(path, f"invalid segment at offset {pos}")
        segments.append(name_match.group(0))
        pos = name_match.end()
        expect_name = False
    if not segments or expect_name:
        raise ResolutionError(path, "empty path")
    return segments


def resolve_in(tree: Any, expression: str) -> Any:
    path = _strip_template(expression)
    current = tree
    for segment in parse_path(path):
        kind = kind_of(current)
        if isinstance(segment, int):
            if kind != ValueKind.SEQUENCE:
                raise ResolutionError(path, f"cannot index {kind.value} with [{segment}]")
            if segment >= len(current):
                raise ResolutionError(path, f"index {segment} out of bounds")
            current = current[segment]
            continue
        if kind != ValueKind.MAPPING:
            raise ResolutionError(path, f"cannot read '{segment}' from {kind.value}")
        if segment not in current:
            raise ResolutionError(path, f"missing key '{segment}'")
        current = current[segment]
    return current


def resolve(expression: str, context: EvaluationContext) -> Any:
    return resolve_in(context.variables(), expression)


def has_variables(value: Any) -> bool:
    kind = kind_of(value)
    if kind == ValueKind.STRING:
        return _TEMPLATE_RE.search(value) is not None
    if kind == ValueKind.MAPPING:
        return any(has_variables(v) for v in value.values())
    if kind == ValueKind.SEQUENCE:
        return any(has_variables(v) for v in value)
    return False


def _render(value: Any) -> str:
    if kind_of(value) in (ValueKind.MAPPING, ValueKind.SEQUENCE):
        return json.dumps(value, sort_keys=True, separators=(",", ":"))
    if value is None:
        return "null"
    return scalar_text(value)


def _substitute_string(text: str, tree: Mapping[str, Any]) -> Any:
    whole = _WHOLE_TEMPLATE_RE.match(text)
    if whole:
        return resolve_in(tree, whole.group(1))
    return _TEMPLATE_RE.sub(lambda m: _render(resolve_in(tree, m.group(1))), text)


def _substitute(value: Any, tree: Mapping[str, Any]) -> Any:
    kind = kind_of(value)
    if kind == ValueKind.STRING:
        return _substitute_string(value, tree)
    if kind == ValueKind.MAPPING:
        return {k: _substitute(v, tree) for k, v in value.items()}
    if kind == ValueKind.SEQUENCE:
        return [_substitute(v, tree) for v in value]
    return value


def substitute(pattern: Any, context: EvaluationContext) -> Any:
    """
    Return a copy of ``pattern`` with every ``{{ expr }}`` resolved.

    A leaf that is exactly one expression takes the resolved value with its
    type; expressions embedded in longer strings are rendered as text.
    Resolved values are inserted as-is and never rescanned.
    """
    return _substitute(pattern, context.variables())


def template_expressions(value: Any) -> List[str]:
    """Every ``{{ expr }}`` body found in a pattern, in document order."""
    kind = kind_of(value)
    if kind == ValueKind.STRING:
        return [m.group(1) for m in _TEMPLATE_RE.finditer(value)]
    if kind == ValueKind.MAPPING:
        return [expr for v in value.values() for expr in template_expressions(v)]
    if kind == ValueKind.SEQUENCE:
        return [expr for v in value for expr in template_expressions(v)]
    return []

"""
Structural pattern matching for validation rules.

A pattern is a partial template of the document it checks:

- mappings are subset specifications; keys absent from the pattern are ignored
- a one-element sequence is a predicate every document element must satisfy
- equal-length sequences are compared element-wise
- scalar leaves compare exactly, except wildcard leaves

Wildcards:
  "*"      any non-null scalar
  "a*b"    glob; "*" is a run of characters and "?" one character. A "*" or
           "?" next to a "/" in the pattern never crosses a "/" in the value,
           so "ghcr.io/org/*" matches one path segment while "*:*" matches any
           value containing a colon.

Key anchors:
  "=(key)" key is optional, but when present its value must match
  "X(key)" key must be absent (or null)

All wildcard semantics live in this module. Matching is total: any
unmatchable input is a non-match, never an exception.
"""
from __future__ import annotations

import re
from functools import lru_cache
from typing import Any, Mapping, Optional, Sequence, Tuple

from policygate.engine_core.values import (
    ValueKind,
    is_scalar,
    kind_of,
    scalar_text,
    scalars_equal,
)


WILDCARD = "*"
_SEGMENT_DELIMITER = "/"
_ANCHOR_RE = re.compile(r"^(=|X)\((.+)\)$")


def is_glob(value: Any) -> bool:
    return isinstance(value, str) and ("*" in value or "?" in value)


@lru_cache(maxsize=1024)
def _compile_glob(pattern: str) -> "re.Pattern[str]":
    parts = []
    for index, char in enumerate(pattern):
        if char not in ("*", "?"):
            parts.append(re.escape(char))
            continue
        left = pattern[index - 1] if index > 0 else ""
        right = pattern[index + 1] if index + 1 < len(pattern) else ""
        bounded = _SEGMENT_DELIMITER in (left, right)
        if char == "*":
            parts.append("[^/]*" if bounded else ".*")
        else:
            parts.append("[^/]" if bounded else ".")
    return re.compile("".join(parts), re.DOTALL)


def glob_match(pattern: str, value: Any) -> bool:
    """Match one scalar against a glob pattern (see module docstring)."""
    if value is None or not is_scalar(value):
        return False
    if pattern == WILDCARD:
        return True
    if not is_glob(pattern):
        return scalar_text(value) == pattern
    return _compile_glob(pattern).fullmatch(scalar_text(value)) is not None


def _parse_key(key: Any) -> Tuple[Optional[str], Any]:
    if isinstance(key, str):
        match = _ANCHOR_RE.match(key)
        if match:
            return match.group(1), match.group(2)
    return None, key


def _match_scalar(pattern: Any, document: Any) -> bool:
    if document is None:
        return pattern is None
    if not is_scalar(document):
        return False
    if is_glob(pattern):
        return glob_match(pattern, document)
    return scalars_equal(pattern, document)


def _match_mapping(pattern: Mapping[Any, Any], document: Any) -> bool:
    if kind_of(document) != ValueKind.MAPPING:
        return False
    for raw_key, sub_pattern in pattern.items():
        anchor, key = _parse_key(raw_key)
        present = key in document
        if anchor == "X":
            if present and document[key] is not None:
                return False
            continue
        if not present:
            if anchor == "=":
                continue
            return False
        if not _match(sub_pattern, document[key]):
            return False
    return True


def _match_sequence(pattern: Sequence[Any], document: Any) -> bool:
    if kind_of(document) != ValueKind.SEQUENCE:
        return False
    if len(pattern) == 1:
        return all(_match(pattern[0], item) for item in document)
    if len(pattern) != len(document):
        return False
    return all(_match(p, d) for p, d in zip(pattern, document))


def _match(pattern: Any, document: Any) -> bool:
    kind = kind_of(pattern)
    if kind == ValueKind.MAPPING:
        return _match_mapping(pattern, document)
    if kind == ValueKind.SEQUENCE:
        return _match_sequence(pattern, document)
    if kind == ValueKind.NULL:
        return document is None
    if kind in (ValueKind.BOOL, ValueKind.NUMBER, ValueKind.STRING):
        return _match_scalar(pattern, document)
    return False


def matches(pattern: Any, document: Any) -> bool:
    """Return True when ``document`` satisfies ``pattern``."""
    try:
        return _match(pattern, document)
    except RecursionError:
        return False


def first_mismatch(pattern: Any, document: Any, path: str = "") -> Optional[str]:
    """
    Path of the first pattern node the document fails, or None on a match.
    Used for violation messages only; the verdict always comes from matches().
    """
    if matches(pattern, document):
        return None
    if kind_of(pattern) == ValueKind.MAPPING and kind_of(document) == ValueKind.MAPPING:
        for raw_key, sub_pattern in pattern.items():
            anchor, key = _parse_key(raw_key)
            child_path = f"{path}.{key}" if path else str(key)
            if anchor == "X":
                if document.get(key) is not None:
                    return child_path
                continue
            if key not in document:
                if anchor == "=":
                    continue
                return child_path
            found = first_mismatch(sub_pattern, document[key], child_path)
            if found is not None:
                return found
        return path or "$"
    if kind_of(pattern) == ValueKind.SEQUENCE and kind_of(document) == ValueKind.SEQUENCE:
        if len(pattern) == 1:
            for index, item in enumerate(document):
                found = first_mismatch(pattern[0], item, f"{path}[{index}]")
                if found is not None:
                    return found
        elif len(pattern) == len(document):
            for index, (p, d) in enumerate(zip(pattern, document)):
                found = first_mismatch(p, d, f"{path}[{index}]")
                if found is not None:
                    return found
    return path or "$"

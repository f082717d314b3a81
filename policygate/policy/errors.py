from __future__ import annotations

from enum import Enum
from typing import Optional


class ParseErrorKind(str, Enum):
    MISSING_FIELD = "MissingField"
    INVALID_ENFORCEMENT_MODE = "InvalidEnforcementMode"
    EMPTY_RULE_SET = "EmptyRuleSet"
    INVALID_RULE = "InvalidRule"
    MALFORMED_DOCUMENT = "MalformedDocument"


class ParseError(ValueError):
    """Raised when a policy document cannot be turned into a PolicyDocument."""

    def __init__(
        self,
        kind: ParseErrorKind,
        field: str = "",
        message: str = "",
        *,
        source: Optional[str] = None,
    ):
        self.kind = kind
        self.field = field
        self.source = source
        text = message or f"{kind.value}: {field}"
        if source:
            text = f"{source}: {text}"
        super().__init__(text)

    def with_source(self, source: str) -> "ParseError":
        return ParseError(self.kind, self.field, self._bare_message(), source=source)

    def _bare_message(self) -> str:
        text = str(self)
        if self.source and text.startswith(f"{self.source}: "):
            return text[len(self.source) + 2 :]
        return text

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "field": self.field,
            "message": self._bare_message(),
            "source": self.source,
        }

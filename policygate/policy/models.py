from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Dict, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field


class EnforcementMode(str, Enum):
    ENFORCE = "enforce"
    AUDIT = "audit"


class MatchSelector(BaseModel):
    """Which resources a rule applies to. Every populated predicate must hold."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    kinds: Tuple[str, ...] = Field(..., min_length=1)
    namespaces: Tuple[str, ...] = ()
    labels: Dict[str, str] = Field(default_factory=dict)
    operations: Tuple[str, ...] = ()


class ImageVerificationSpec(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    image: str = Field(..., min_length=1) # glob, e.g. "ghcr.io/org/*"
    key: str = ""


class ValidationBody(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    type: Literal["validate"] = "validate"
    pattern: Dict[str, Any]
    message: Optional[str] = None


class ImageVerificationBody(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    type: Literal["verifyImages"] = "verifyImages"
    images: Tuple[ImageVerificationSpec, ...] = Field(..., min_length=1)


RuleBody = Annotated[Union[ValidationBody, ImageVerificationBody], Field(discriminator="type")]


class Rule(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(..., min_length=1)
    match: MatchSelector
    body: RuleBody


class PolicyDocument(BaseModel):
    """
    A named, ordered set of rules with an enforcement mode.
    Rules are evaluated in declaration order.
    """
    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(..., min_length=1)
    enforcement_mode: EnforcementMode = EnforcementMode.AUDIT
    rules: Tuple[Rule, ...] = Field(..., min_length=1)
    description: Optional[str] = None
    source_file: Optional[str] = None

    @property
    def blocking(self) -> bool:
        return self.enforcement_mode == EnforcementMode.ENFORCE

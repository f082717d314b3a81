from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Mapping


class CheckStatus(str, Enum):
    PASS = "PASS"
    FAIL = "FAIL"
    WARN = "WARN"
    INFO = "INFO"


@dataclass(frozen=True)
class CheckResult:
    name: str
    status: CheckStatus
    message: str = ""
    details: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status.value,
            "message": self.message,
            "details": dict(self.details or {}),
        }


# executor(target_snapshot) -> CheckResult
CheckExecutor = Callable[[Mapping[str, Any]], CheckResult]


@dataclass(frozen=True)
class ComplianceCheck:
    name: str
    executor: CheckExecutor
    description: str = ""


class EmptyCheckSet(ValueError):
    """Raised when a scan is requested with no checks to run."""


class UnknownCheckError(KeyError):
    """Raised when a check set names a check that is not registered."""


class CheckExecutionError(RuntimeError):
    """A check misbehaved; the scanner records it as a FAIL result."""

from __future__ import annotations

from typing import Any, Dict, List, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from policygate.reporting.compliance_report import SCHEMA_VERSION


class _CheckEntry(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True)

    name: str = Field(min_length=1)
    status: Literal["PASS", "FAIL", "WARN", "INFO"]
    message: str
    details: Dict[str, Any]


class _Summary(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True)

    score: int = Field(ge=0, le=100)
    total: int = Field(ge=0)
    passed: int = Field(ge=0)
    failed: int = Field(ge=0)
    warnings: int = Field(ge=0)
    info: int = Field(ge=0)


class _ComplianceReportDocument(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True)

    schema_version: Literal[SCHEMA_VERSION]  # type: ignore[valid-type]
    timestamp: str = Field(min_length=1)
    target: str
    checks: List[_CheckEntry]
    summary: _Summary


def _location(loc) -> str:
    path = "$"
    for part in loc:
        path += f"[{part}]" if isinstance(part, int) else f".{part}"
    return path


def validate_compliance_report(report: Dict[str, Any]) -> List[str]:
    """Problems with a serialized report, empty when it matches the wire shape."""
    try:
        doc = _ComplianceReportDocument.model_validate(report)
    except ValidationError as exc:
        return [f"{_location(err['loc'])}: {err['msg']}" for err in exc.errors()]

    errors: List[str] = []
    summary = doc.summary
    if summary.total != len(doc.checks):
        errors.append(f"$.summary.total: {summary.total} does not match {len(doc.checks)} checks")
    tallied = summary.passed + summary.failed + summary.warnings + summary.info
    if tallied != summary.total:
        errors.append(f"$.summary: status counts add up to {tallied}, expected {summary.total}")
    return errors

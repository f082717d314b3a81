from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

from policygate.compliance.scoring import DEFAULT_SCORING, ScoringConfig, compute_score, status_counts
from policygate.compliance.types import CheckResult, CheckStatus


SCHEMA_VERSION = "compliance_report_v1"


@dataclass(frozen=True)
class ComplianceReport:
    timestamp: str
    target: str
    checks: Tuple[CheckResult, ...]
    score: int
    counts: Mapping[CheckStatus, int] = field(default_factory=dict)
    schema_version: str = SCHEMA_VERSION

    @property
    def total(self) -> int:
        return len(self.checks)

    def summary(self) -> Dict[str, int]:
        return {
            "score": self.score,
            "total": self.total,
            "passed": self.counts.get(CheckStatus.PASS, 0),
            "failed": self.counts.get(CheckStatus.FAIL, 0),
            "warnings": self.counts.get(CheckStatus.WARN, 0),
            "info": self.counts.get(CheckStatus.INFO, 0),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schema_version": self.schema_version,
            "timestamp": self.timestamp,
            "target": self.target,
            "checks": [c.to_dict() for c in self.checks],
            "summary": self.summary(),
        }


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def build_compliance_report(
    target: str,
    results: Sequence[CheckResult],
    scoring: ScoringConfig = DEFAULT_SCORING,
    timestamp: Optional[str] = None,
) -> ComplianceReport:
    """Assemble the report; the score depends only on ``results``."""
    checks = tuple(results)
    return ComplianceReport(
        timestamp=timestamp or _utc_timestamp(),
        target=str(target or "").strip() or "unknown",
        checks=checks,
        score=compute_score(checks, scoring),
        counts=status_counts(checks),
    )


def exit_code_for_score(report: ComplianceReport, threshold: int) -> int:
    return 0 if report.score >= int(threshold) else 1


def format_compliance_report(report: ComplianceReport) -> str:
    summary = report.summary()
    lines = [
        f"Compliance report for {report.target} ({report.timestamp})",
        "",
    ]
    for check in report.checks:
        line = f"  [{check.status.value:<4}] {check.name}: {check.message}"
        reason = (check.details or {}).get("reason")
        if reason:
            line += f" ({reason})"
        lines.append(line)
    lines.extend(
        [
            "",
            f"Score: {summary['score']}%",
            (
                f"Total: {summary['total']}  Passed: {summary['passed']}  Failed: {summary['failed']}  "
                f"Warnings: {summary['warnings']}  Info: {summary['info']}"
            ),
        ]
    )
    return "\n".join(lines)

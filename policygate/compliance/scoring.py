from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, Mapping

from policygate.compliance.types import CheckResult, CheckStatus, EmptyCheckSet
from policygate.config import count_info_checks, get_status_weights


def _default_weights() -> Dict[CheckStatus, float]:
    return {
        CheckStatus.PASS: 1.0,
        CheckStatus.FAIL: 0.0,
        CheckStatus.WARN: 0.0,
        CheckStatus.INFO: 0.0,
    }


@dataclass(frozen=True)
class ScoringConfig:
    """
    How check statuses turn into a score.

    weights: credit each status earns, from 0.0 to 1.0
    counted: statuses that count toward the denominator
    """

    weights: Mapping[CheckStatus, float] = field(default_factory=_default_weights)
    counted: FrozenSet[CheckStatus] = frozenset(CheckStatus)

    @classmethod
    def from_env(cls) -> "ScoringConfig":
        raw = get_status_weights()
        weights = {status: float(raw.get(status.value, 0.0)) for status in CheckStatus}
        counted = frozenset(CheckStatus) if count_info_checks() else frozenset(CheckStatus) - {CheckStatus.INFO}
        return cls(weights=weights, counted=counted)

    def weight(self, status: CheckStatus) -> float:
        return min(1.0, max(0.0, float(self.weights.get(status, 0.0))))


DEFAULT_SCORING = ScoringConfig()


def status_counts(results: Iterable[CheckResult]) -> Dict[CheckStatus, int]:
    counts = {status: 0 for status in CheckStatus}
    for result in results:
        counts[result.status] += 1
    return counts


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def compute_score(results: Iterable[CheckResult], config: ScoringConfig = DEFAULT_SCORING) -> int:
    """
    Weighted pass percentage, rounded half-up to an integer.

    With the default config this is round(100 * passed / total), where WARN
    and INFO count toward the total but earn nothing.
    """
    items = list(results)
    counted = [r for r in items if r.status in config.counted]
    if not counted:
        raise EmptyCheckSet("no scorable check results")
    earned = sum(config.weight(r.status) for r in counted)
    return _round_half_up(100.0 * earned / len(counted))

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from policygate.engine_core.context import EvaluationContext
from policygate.engine_core.images import ImageVerifier
from policygate.engine_core.rules import (
    OUTCOME_ALLOW,
    OUTCOME_DENY,
    OUTCOME_NOT_APPLICABLE,
    RuleResult,
    evaluate_rule,
)
from policygate.observability.internal_metrics import incr
from policygate.policy.models import EnforcementMode, PolicyDocument, Rule

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PolicyResult:
    policy_name: str
    enforcement_mode: EnforcementMode
    outcome: str
    rule_results: Tuple[RuleResult, ...] = ()  # denials only, declaration order
    evaluated_rules: Tuple[RuleResult, ...] = ()

    @property
    def blocking(self) -> bool:
        return self.outcome == OUTCOME_DENY and self.enforcement_mode == EnforcementMode.ENFORCE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "policy": self.policy_name,
            "enforcement_mode": self.enforcement_mode.value,
            "outcome": self.outcome,
            "blocking": self.blocking,
            "violations": [r.to_dict() for r in self.rule_results],
            "rules": [r.to_dict() for r in self.evaluated_rules],
        }


@dataclass(frozen=True)
class AdmissionDecision:
    allowed: bool
    policy_results: Tuple[PolicyResult, ...] = field(default_factory=tuple)

    @property
    def blocking_policies(self) -> List[str]:
        return [p.policy_name for p in self.policy_results if p.blocking]

    @property
    def violations(self) -> List[Tuple[str, RuleResult]]:
        return [(p.policy_name, r) for p in self.policy_results for r in p.rule_results]

    @property
    def status(self) -> str:
        return "allowed" if self.allowed else "blocked"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed": self.allowed,
            "status": self.status,
            "blocking_policies": self.blocking_policies,
            "violation_count": len(self.violations),
            "policies": [p.to_dict() for p in self.policy_results],
        }


def _evaluate_rule_safely(
    rule: Rule,
    policy: PolicyDocument,
    context: EvaluationContext,
    verifier: Optional[ImageVerifier],
) -> RuleResult:
    try:
        return evaluate_rule(rule, context, enforcement_mode=policy.enforcement_mode, verifier=verifier)
    except Exception as exc:
        logger.exception("Rule %s/%s raised during evaluation", policy.name, rule.name, extra={"policy": policy.name})
        return RuleResult(
            rule_name=rule.name,
            matched=True,
            outcome=OUTCOME_DENY,
            reason=f"rule-error:{type(exc).__name__}",
            message=str(exc),
        )


def _policy_outcome(results: Iterable[RuleResult]) -> str:
    outcomes = {r.outcome for r in results}
    if OUTCOME_DENY in outcomes:
        return OUTCOME_DENY
    if OUTCOME_ALLOW in outcomes:
        return OUTCOME_ALLOW
    return OUTCOME_NOT_APPLICABLE


def evaluate_policy(
    policy: PolicyDocument,
    context: EvaluationContext,
    verifier: Optional[ImageVerifier] = None,
) -> PolicyResult:
    """Evaluate every rule in declaration order; never stops at the first denial."""
    evaluated = tuple(_evaluate_rule_safely(rule, policy, context, verifier) for rule in policy.rules)
    denials = tuple(r for r in evaluated if r.denied)
    return PolicyResult(
        policy_name=policy.name,
        enforcement_mode=policy.enforcement_mode,
        outcome=_policy_outcome(evaluated),
        rule_results=denials,
        evaluated_rules=evaluated,
    )


def evaluate_all(
    policies: Iterable[PolicyDocument],
    context: EvaluationContext,
    verifier: Optional[ImageVerifier] = None,
) -> AdmissionDecision:
    """
    Evaluate an ordered set of policies against one resource.

    Every policy is evaluated and reported. Only a denial from an
    enforce-mode policy blocks admission; audit-mode denials are recorded.
    """
    results: List[PolicyResult] = []
    for policy in policies:
        result = evaluate_policy(policy, context, verifier)
        results.append(result)
        if result.outcome != OUTCOME_DENY:
            continue
        reasons = ", ".join(r.reason for r in result.rule_results)
        if result.blocking:
            logger.info("Policy %s blocked %s: %s", policy.name, context.kind, reasons, extra={"policy": policy.name})
        else:
            incr("audit_violations_total", len(result.rule_results))
            logger.info(
                "Policy %s (audit) recorded violations for %s: %s",
                policy.name,
                context.kind,
                reasons,
                extra={"policy": policy.name},
            )

    allowed = not any(r.blocking for r in results)
    incr("policy_evaluations_total")
    if not allowed:
        incr("admissions_blocked_total")
    return AdmissionDecision(allowed=allowed, policy_results=tuple(results))

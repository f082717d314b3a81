from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from policygate.engine_core.context import EvaluationContext
from policygate.engine_core.images import ImageVerifier, container_images
from policygate.engine_core.pattern import first_mismatch, glob_match, matches
from policygate.engine_core.variables import ResolutionError, has_variables, substitute
from policygate.policy.models import (
    EnforcementMode,
    ImageVerificationBody,
    MatchSelector,
    Rule,
    ValidationBody,
)

logger = logging.getLogger(__name__)

OUTCOME_ALLOW = "allow"
OUTCOME_DENY = "deny"
OUTCOME_NOT_APPLICABLE = "not-applicable"

REASON_NO_MATCH = "no-match"
REASON_PATTERN_VIOLATION = "pattern-violation"
REASON_PATTERN_MATCHED = "pattern-matched"
REASON_IMAGES_VERIFIED = "images-verified"
REASON_NO_MATCHING_IMAGES = "no-matching-images"


@dataclass(frozen=True)
class RuleResult:
    rule_name: str
    matched: bool
    outcome: str
    reason: str
    message: str = ""
    details: Mapping[str, Any] = field(default_factory=dict)

    @property
    def denied(self) -> bool:
        return self.outcome == OUTCOME_DENY

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rule": self.rule_name,
            "matched": self.matched,
            "outcome": self.outcome,
            "reason": self.reason,
            "message": self.message,
            "details": dict(self.details or {}),
        }


def selector_matches(selector: MatchSelector, context: EvaluationContext) -> bool:
    kind = context.kind
    api_version = str(context.resource.get("apiVersion") or "")
    candidates = [kind, f"{api_version}/{kind}"] if api_version else [kind]
    if not kind or not any(glob_match(p, c) for p in selector.kinds for c in candidates):
        return False

    if selector.namespaces:
        namespace = context.resource_namespace
        if not any(glob_match(p, namespace) for p in selector.namespaces):
            return False

    labels = context.labels
    for key, expected in selector.labels.items():
        if key not in labels or not glob_match(expected, labels[key]):
            return False

    if selector.operations and str(context.operation).upper() not in selector.operations:
        return False
    return True


def _evaluate_validation(
    rule: Rule,
    body: ValidationBody,
    context: EvaluationContext,
    enforcement_mode: EnforcementMode,
) -> RuleResult:
    pattern = body.pattern
    if has_variables(pattern):
        try:
            pattern = substitute(pattern, context)
        except ResolutionError as exc:
            outcome = OUTCOME_DENY if enforcement_mode == EnforcementMode.ENFORCE else OUTCOME_NOT_APPLICABLE
            return RuleResult(
                rule_name=rule.name,
                matched=True,
                outcome=outcome,
                reason=f"variable-unresolved:{exc.path}",
                message=str(exc),
                details={"path": exc.path, "detail": exc.detail},
            )

    if matches(pattern, context.resource):
        return RuleResult(rule_name=rule.name, matched=True, outcome=OUTCOME_ALLOW, reason=REASON_PATTERN_MATCHED)

    failed_at = first_mismatch(pattern, context.resource)
    message = body.message or f"validation error: rule {rule.name} failed at path {failed_at}"
    return RuleResult(
        rule_name=rule.name,
        matched=True,
        outcome=OUTCOME_DENY,
        reason=REASON_PATTERN_VIOLATION,
        message=message,
        details={"path": failed_at},
    )


def _verify_one(verifier: Optional[ImageVerifier], image: str, key: str) -> Optional[str]:
    """None when verified, otherwise the failure description."""
    if verifier is None:
        return "no image verifier configured"
    try:
        if verifier(image, key):
            return None
        return "verification failed"
    except Exception as exc:
        logger.warning("Image verifier raised for %s: %s", image, exc)
        return f"verifier error: {type(exc).__name__}: {exc}"


def _evaluate_images(
    rule: Rule,
    body: ImageVerificationBody,
    context: EvaluationContext,
    verifier: Optional[ImageVerifier],
) -> RuleResult:
    images = container_images(context.resource)
    checked: List[str] = []
    failures: List[Dict[str, str]] = []

    for spec in body.images:
        for image in images:
            if not glob_match(spec.image, image):
                continue
            checked.append(image)
            error = _verify_one(verifier, image, spec.key)
            if error is not None:
                failures.append({"image": image, "glob": spec.image, "error": error})

    if failures:
        first = failures[0]["image"]
        return RuleResult(
            rule_name=rule.name,
            matched=True,
            outcome=OUTCOME_DENY,
            reason=f"unverified-image:{first}",
            message=f"image verification failed for {', '.join(f['image'] for f in failures)}",
            details={"failures": failures},
        )
    if not checked:
        return RuleResult(rule_name=rule.name, matched=True, outcome=OUTCOME_ALLOW, reason=REASON_NO_MATCHING_IMAGES)
    return RuleResult(
        rule_name=rule.name,
        matched=True,
        outcome=OUTCOME_ALLOW,
        reason=REASON_IMAGES_VERIFIED,
        details={"images": checked},
    )


def evaluate_rule(
    rule: Rule,
    context: EvaluationContext,
    *,
    enforcement_mode: EnforcementMode = EnforcementMode.ENFORCE,
    verifier: Optional[ImageVerifier] = None,
) -> RuleResult:
    """
    Apply one rule to one resource.

    Pure function of (rule, context, verifier): the selector decides
    applicability, then exactly one of the validation or image branches runs.
    """
    if not selector_matches(rule.match, context):
        return RuleResult(rule_name=rule.name, matched=False, outcome=OUTCOME_NOT_APPLICABLE, reason=REASON_NO_MATCH)

    body = rule.body
    if isinstance(body, ValidationBody):
        return _evaluate_validation(rule, body, context, enforcement_mode)
    return _evaluate_images(rule, body, context, verifier)

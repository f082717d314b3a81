from policygate.engine_core.aggregate import (
    AdmissionDecision,
    PolicyResult,
    evaluate_all,
    evaluate_policy,
)
from policygate.engine_core.context import EvaluationContext
from policygate.engine_core.images import ImageVerifier, container_images
from policygate.engine_core.pattern import glob_match, matches
from policygate.engine_core.rules import (
    OUTCOME_ALLOW,
    OUTCOME_DENY,
    OUTCOME_NOT_APPLICABLE,
    RuleResult,
    evaluate_rule,
)
from policygate.engine_core.variables import ResolutionError, resolve, substitute

__all__ = [
    "AdmissionDecision",
    "EvaluationContext",
    "ImageVerifier",
    "OUTCOME_ALLOW",
    "OUTCOME_DENY",
    "OUTCOME_NOT_APPLICABLE",
    "PolicyResult",
    "ResolutionError",
    "RuleResult",
    "container_images",
    "evaluate_all",
    "evaluate_policy",
    "evaluate_rule",
    "glob_match",
    "matches",
    "resolve",
    "substitute",
]

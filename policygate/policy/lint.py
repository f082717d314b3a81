from __future__ import annotations

from collections import Counter
from typing import Any, Dict, List

from policygate.engine_core.variables import ResolutionError, parse_path, template_expressions
from policygate.policy.errors import ParseError
from policygate.policy.loader import PolicyLoader, load_policies_from_text
from policygate.policy.models import PolicyDocument, ValidationBody


def _issue(code: str, message: str, **extra: Any) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"code": code, "message": message}
    payload.update({k: v for k, v in extra.items() if v is not None})
    return payload


def lint_policy_documents(policies: List[PolicyDocument]) -> List[Dict[str, Any]]:
    issues: List[Dict[str, Any]] = []

    name_counts = Counter(p.name for p in policies)
    for name, count in sorted(name_counts.items()):
        if count > 1:
            issues.append(_issue("DUPLICATE_POLICY_NAME", f"policy '{name}' is defined {count} times", policy=name))

    for policy in policies:
        rule_counts = Counter(rule.name for rule in policy.rules)
        for rule_name, count in sorted(rule_counts.items()):
            if count > 1:
                issues.append(
                    _issue(
                        "DUPLICATE_RULE_NAME",
                        f"rule '{rule_name}' appears {count} times",
                        policy=policy.name,
                        rule=rule_name,
                        file=policy.source_file,
                    )
                )
        for rule in policy.rules:
            if not isinstance(rule.body, ValidationBody):
                continue
            for expression in template_expressions(rule.body.pattern):
                try:
                    parse_path(expression)
                except ResolutionError as exc:
                    issues.append(
                        _issue(
                            "INVALID_VARIABLE_EXPRESSION",
                            str(exc),
                            policy=policy.name,
                            rule=rule.name,
                            file=policy.source_file,
                        )
                    )
    return issues


def lint_policies(policy_dir: str) -> Dict[str, Any]:
    """
    Check every policy file without stopping at the first problem.
    """
    loader = PolicyLoader(policy_dir=policy_dir, strict=False)
    issues: List[Dict[str, Any]] = []
    policies: List[PolicyDocument] = []

    try:
        files = loader.policy_files()
    except (OSError, ValueError) as exc:
        return {"ok": False, "policy_dir": policy_dir, "policy_count": 0, "issues": [_issue("POLICY_DIR_INVALID", str(exc))]}

    for path in files:
        try:
            policies.extend(load_policies_from_text(path.read_text(encoding="utf-8"), source_file=str(path)))
        except ParseError as exc:
            issues.append(_issue("PARSE_ERROR", str(exc), kind=exc.kind.value, field=exc.field, file=str(path)))
        except OSError as exc:
            issues.append(_issue("READ_ERROR", str(exc), file=str(path)))

    if not files:
        issues.append(_issue("NO_POLICIES", f"no policy files found in {policy_dir}"))

    issues.extend(lint_policy_documents(policies))
    return {
        "ok": not issues,
        "policy_dir": policy_dir,
        "policy_count": len(policies),
        "issues": issues,
    }


def format_lint_report(report: Dict[str, Any]) -> str:
    lines = [f"Policy lint: {'OK' if report.get('ok') else 'FAILED'} ({report.get('policy_count', 0)} policies)"]
    for issue in report.get("issues", []):
        where = issue.get("file") or issue.get("policy") or ""
        suffix = f" [{where}]" if where else ""
        lines.append(f"- {issue['code']}: {issue['message']}{suffix}")
    return "\n".join(lines)

"""
Built-in cluster compliance checks.

Each check reads one immutable target snapshot, a JSON document collected by
the cluster tooling:

    target             cluster identity
    apiServer.flags    kube-apiserver flags, e.g. {"anonymous-auth": "false"}
    apiVersions        served API group versions
    namespaces         namespace names (or Namespace manifests)
    pods               Pod manifests
    networkPolicies    NetworkPolicy manifests
    clusterPolicies    policy documents installed in the cluster
    policyReports      PolicyReport manifests (summary.fail is counted)

Missing sections are treated as empty.
"""
from __future__ import annotations

import logging
import re
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from policygate.compliance.types import CheckResult, CheckStatus, ComplianceCheck
from policygate.config import SECRET_VALUE_MARKERS
from policygate.engine_core.aggregate import evaluate_all
from policygate.engine_core.context import EvaluationContext
from policygate.engine_core.images import ImageVerifier, containers, image_tag, pod_specs
from policygate.policy.errors import ParseError
from policygate.policy.loader import load_policy
from policygate.policy.models import PolicyDocument

logger = logging.getLogger(__name__)

_SECRET_RE = re.compile("|".join(re.escape(m) for m in SECRET_VALUE_MARKERS), re.IGNORECASE)


def _items(snapshot: Mapping[str, Any], key: str) -> List[Mapping[str, Any]]:
    raw = snapshot.get(key)
    if isinstance(raw, Mapping) and isinstance(raw.get("items"), list):
        raw = raw["items"]
    if not isinstance(raw, list):
        return []
    return [item for item in raw if isinstance(item, Mapping)]


def _pod_name(pod: Mapping[str, Any]) -> str:
    meta = pod.get("metadata") if isinstance(pod.get("metadata"), Mapping) else {}
    name = str(meta.get("name") or "<unnamed>")
    namespace = meta.get("namespace")
    return f"{namespace}/{name}" if namespace else name


def _security_context(node: Mapping[str, Any]) -> Mapping[str, Any]:
    ctx = node.get("securityContext")
    return ctx if isinstance(ctx, Mapping) else {}


def _pods_where(snapshot: Mapping[str, Any], predicate) -> List[str]:
    return [_pod_name(pod) for pod in _items(snapshot, "pods") if predicate(pod)]


def _result(name: str, status: CheckStatus, message: str, **details: Any) -> CheckResult:
    return CheckResult(name=name, status=status, message=message, details=details)


def check_api_server_anonymous_auth(snapshot: Mapping[str, Any]) -> CheckResult:
    name = "api_server_anonymous_auth"
    api_server = snapshot.get("apiServer") if isinstance(snapshot.get("apiServer"), Mapping) else {}
    flags = api_server.get("flags") if isinstance(api_server.get("flags"), Mapping) else {}
    value = flags.get("anonymous-auth")
    if str(value).strip().lower() == "false":
        return _result(name, CheckStatus.PASS, "Anonymous authentication is disabled")
    return _result(
        name,
        CheckStatus.FAIL,
        "Anonymous authentication should be disabled",
        reason="Anonymous auth not explicitly disabled",
        value=value,
    )


def check_rbac_enabled(snapshot: Mapping[str, Any]) -> CheckResult:
    name = "rbac_enabled"
    versions = [str(v) for v in snapshot.get("apiVersions") or []]
    if any("rbac" in v for v in versions):
        return _result(name, CheckStatus.PASS, "RBAC is enabled")
    return _result(name, CheckStatus.FAIL, "RBAC should be enabled", reason="RBAC not found in API versions")


def _any_container(pod: Mapping[str, Any], predicate) -> bool:
    return any(predicate(c) for c in containers(pod))


def check_privileged_pods(snapshot: Mapping[str, Any]) -> CheckResult:
    name = "privileged_pods"
    pods = _pods_where(snapshot, lambda pod: _any_container(pod, lambda c: _security_context(c).get("privileged") is True))
    if pods:
        return _result(name, CheckStatus.WARN, "Privileged pods found", count=len(pods), pods=pods)
    return _result(name, CheckStatus.PASS, "No privileged pods found")


def _runs_as_root(pod: Mapping[str, Any]) -> bool:
    for spec in pod_specs(pod):
        pod_uid = _security_context(spec).get("runAsUser")
        for container in containers({"spec": spec}):
            uid = _security_context(container).get("runAsUser", pod_uid)
            if uid == 0:
                return True
    return False


def check_root_containers(snapshot: Mapping[str, Any]) -> CheckResult:
    name = "root_containers"
    pods = _pods_where(snapshot, _runs_as_root)
    if pods:
        return _result(name, CheckStatus.WARN, "Root containers found", count=len(pods), pods=pods)
    return _result(name, CheckStatus.PASS, "No root containers found")


def check_security_contexts(snapshot: Mapping[str, Any]) -> CheckResult:
    name = "security_contexts"
    pods = _pods_where(snapshot, lambda pod: _any_container(pod, lambda c: not _security_context(c)))
    if pods:
        return _result(name, CheckStatus.WARN, "Some pods are missing security contexts", count=len(pods), pods=pods)
    return _result(name, CheckStatus.PASS, "All containers declare a security context")


def check_network_policies(snapshot: Mapping[str, Any]) -> CheckResult:
    name = "network_policies"
    count = len(_items(snapshot, "networkPolicies"))
    if count == 0:
        return _result(name, CheckStatus.FAIL, "No network policies found", reason="Network policies are required for security")
    return _result(name, CheckStatus.PASS, "Network policies configured", count=count)


def _is_default_deny(policy: Mapping[str, Any]) -> bool:
    spec = policy.get("spec") if isinstance(policy.get("spec"), Mapping) else {}
    selector = spec.get("podSelector")
    types = spec.get("policyTypes") or []
    return isinstance(selector, Mapping) and not selector and "Ingress" in types


def check_default_deny_policies(snapshot: Mapping[str, Any]) -> CheckResult:
    name = "default_deny_policies"
    count = sum(1 for p in _items(snapshot, "networkPolicies") if _is_default_deny(p))
    if count == 0:
        return _result(name, CheckStatus.WARN, "No default deny policies found", reason="Consider implementing default deny policies")
    return _result(name, CheckStatus.PASS, "Default deny policies configured", count=count)


def _uses_latest(image: Any) -> bool:
    if not isinstance(image, str) or "@" in image:
        return False
    return image_tag(image) in ("", "latest")


def check_latest_image_tags(snapshot: Mapping[str, Any]) -> CheckResult:
    name = "latest_image_tags"
    images = [
        str(c.get("image"))
        for pod in _items(snapshot, "pods")
        for c in containers(pod)
        if _uses_latest(c.get("image"))
    ]
    if images:
        return _result(name, CheckStatus.WARN, "Latest image tags found", count=len(images), images=sorted(set(images)))
    return _result(name, CheckStatus.PASS, "No latest image tags found")


def check_image_pull_policy(snapshot: Mapping[str, Any]) -> CheckResult:
    name = "image_pull_policy"
    count = sum(
        1
        for pod in _items(snapshot, "pods")
        for c in containers(pod)
        if c.get("imagePullPolicy") == "Always"
    )
    if count == 0:
        return _result(name, CheckStatus.WARN, "No Always image pull policy found", reason="Consider using imagePullPolicy: Always")
    return _result(name, CheckStatus.PASS, "Image pull policy configured", count=count)


def _plaintext_secret_env(pod: Mapping[str, Any]) -> List[str]:
    found = []
    for container in containers(pod):
        for env in container.get("env") or []:
            if not isinstance(env, Mapping) or env.get("value") in (None, ""):
                continue
            if _SECRET_RE.search(str(env["value"])):
                found.append(f"{_pod_name(pod)}/{container.get('name', '?')}/{env.get('name')}")
    return found


def check_plaintext_secrets(snapshot: Mapping[str, Any]) -> CheckResult:
    name = "plaintext_secrets"
    found = [entry for pod in _items(snapshot, "pods") for entry in _plaintext_secret_env(pod)]
    if found:
        return _result(name, CheckStatus.FAIL, "Plaintext secrets in environment variables", count=len(found), env=found)
    return _result(name, CheckStatus.PASS, "No plaintext secrets in environment")


def _secret_refs(pod: Mapping[str, Any]) -> int:
    total = 0
    for container in containers(pod):
        for source in container.get("envFrom") or []:
            if isinstance(source, Mapping) and isinstance(source.get("secretRef"), Mapping):
                total += 1
        for env in container.get("env") or []:
            value_from = env.get("valueFrom") if isinstance(env, Mapping) else None
            if isinstance(value_from, Mapping) and isinstance(value_from.get("secretKeyRef"), Mapping):
                total += 1
    for spec in pod_specs(pod):
        for volume in spec.get("volumes") or []:
            if isinstance(volume, Mapping) and isinstance(volume.get("secret"), Mapping):
                total += 1
    return total


def check_secret_usage(snapshot: Mapping[str, Any]) -> CheckResult:
    name = "secret_usage"
    total = sum(_secret_refs(pod) for pod in _items(snapshot, "pods"))
    if total > 0:
        return _result(name, CheckStatus.PASS, "Secrets properly configured", count=total)
    return _result(name, CheckStatus.INFO, "No secrets found", reason="No secrets currently in use")


def check_resource_limits(snapshot: Mapping[str, Any]) -> CheckResult:
    name = "resource_limits"
    pods = _pods_where(snapshot, lambda pod: _any_container(pod, lambda c: "resources" not in c))
    if pods:
        return _result(name, CheckStatus.WARN, "Pods without resource limits", count=len(pods), pods=pods)
    return _result(name, CheckStatus.PASS, "All pods have resource limits")


def _namespace_names(snapshot: Mapping[str, Any]) -> List[str]:
    names = []
    for item in snapshot.get("namespaces") or []:
        if isinstance(item, str):
            names.append(item)
        elif isinstance(item, Mapping) and isinstance(item.get("metadata"), Mapping):
            names.append(str(item["metadata"].get("name") or ""))
    return names


def check_kyverno_policies(snapshot: Mapping[str, Any]) -> CheckResult:
    name = "kyverno_policies"
    if "kyverno" not in _namespace_names(snapshot):
        return _result(name, CheckStatus.FAIL, "Kyverno not installed", reason="Kyverno is required for policy enforcement")
    count = len(_items(snapshot, "clusterPolicies"))
    if count == 0:
        return _result(name, CheckStatus.WARN, "No Kyverno policies found", reason="Consider implementing Kyverno policies")
    return _result(name, CheckStatus.PASS, "Kyverno policies configured", count=count)


def _report_failures(snapshot: Mapping[str, Any]) -> int:
    total = 0
    for report in _items(snapshot, "policyReports"):
        summary = report.get("summary") if isinstance(report.get("summary"), Mapping) else {}
        try:
            total += int(summary.get("fail") or 0)
        except (TypeError, ValueError):
            continue
    return total


def make_policy_violations_check(
    policies: Optional[Sequence[PolicyDocument]] = None,
    verifier: Optional[ImageVerifier] = None,
) -> ComplianceCheck:
    """
    Count policy violations across the snapshot's pods.

    Evaluates the snapshot's clusterPolicies plus ``policies`` with the policy
    aggregator, and adds the failures already recorded in policyReports.
    Installed policies that do not parse are listed under skipped_policies.
    """
    extra = tuple(policies or ())

    def _execute(snapshot: Mapping[str, Any]) -> CheckResult:
        name = "policy_violations"
        installed: List[PolicyDocument] = []
        skipped: List[Dict[str, str]] = []
        for raw in _items(snapshot, "clusterPolicies"):
            try:
                installed.append(load_policy(raw))
            except ParseError as exc:
                meta = raw.get("metadata") if isinstance(raw.get("metadata"), Mapping) else {}
                policy_name = str(meta.get("name") or raw.get("name") or "<unnamed>")
                logger.warning("Skipping installed policy %s: %s", policy_name, exc, extra={"policy": policy_name})
                skipped.append({"policy": policy_name, "error": str(exc)})
        active = list(extra) + installed

        violations: List[Dict[str, str]] = []
        for pod in _items(snapshot, "pods"):
            decision = evaluate_all(active, EvaluationContext(resource=pod), verifier)
            for policy_name, rule_result in decision.violations:
                violations.append(
                    {"resource": _pod_name(pod), "policy": policy_name, "rule": rule_result.rule_name, "reason": rule_result.reason}
                )

        reported = _report_failures(snapshot)
        total = len(violations) + reported
        if total > 0:
            return _result(
                name,
                CheckStatus.WARN,
                "Policy violations found",
                count=total,
                evaluated=violations,
                reported=reported,
                skipped_policies=skipped,
            )
        return _result(name, CheckStatus.PASS, "No policy violations", policies=len(active), skipped_policies=skipped)

    return ComplianceCheck(
        name="policy_violations",
        executor=_execute,
        description="Policy violations across workloads, evaluated and reported",
    )


BUILTIN_EXECUTORS: Tuple[Tuple[str, Any, str], ...] = (
    ("api_server_anonymous_auth", check_api_server_anonymous_auth, "Anonymous API server auth is disabled"),
    ("rbac_enabled", check_rbac_enabled, "RBAC API group is served"),
    ("privileged_pods", check_privileged_pods, "No privileged containers"),
    ("root_containers", check_root_containers, "No containers running as UID 0"),
    ("security_contexts", check_security_contexts, "Containers declare a security context"),
    ("network_policies", check_network_policies, "Network policies exist"),
    ("default_deny_policies", check_default_deny_policies, "A default-deny ingress policy exists"),
    ("latest_image_tags", check_latest_image_tags, "No images use the latest tag"),
    ("image_pull_policy", check_image_pull_policy, "Images are pulled with imagePullPolicy Always"),
    ("plaintext_secrets", check_plaintext_secrets, "No credentials in plain env vars"),
    ("secret_usage", check_secret_usage, "Workloads consume Secrets"),
    ("resource_limits", check_resource_limits, "Containers declare resources"),
    ("kyverno_policies", check_kyverno_policies, "Kyverno is installed with policies"),
)


def builtin_checks(names: Iterable[str] = ()) -> List[ComplianceCheck]:
    wanted = set(names)
    return [
        ComplianceCheck(name=name, executor=fn, description=description)
        for name, fn, description in BUILTIN_EXECUTORS
        if not wanted or name in wanted
    ]

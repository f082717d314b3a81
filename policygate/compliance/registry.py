"""
Check registry: the named battery of compliance checks a scan can run.

Checks run in registration order, which is also the order results appear in
the report.
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import yaml

from policygate.compliance.checks import builtin_checks, make_policy_violations_check
from policygate.compliance.types import ComplianceCheck, UnknownCheckError
from policygate.engine_core.images import ImageVerifier
from policygate.policy.models import PolicyDocument

DEFAULT_CHECK_SET = "default"


class CheckRegistry:
    """
    Holds compliance checks in deterministic order.

    Default order follows the cluster validation battery: control plane,
    pod security, network, images, secrets, resources, policy engine.
    """

    def __init__(
        self,
        policies: Optional[Sequence[PolicyDocument]] = None,
        verifier: Optional[ImageVerifier] = None,
        register_defaults: bool = True,
    ):
        self._checks: Dict[str, ComplianceCheck] = {}
        if register_defaults:
            self._register_default_checks(policies, verifier)

    def _register_default_checks(self, policies, verifier) -> None:
        for check in builtin_checks():
            self.register(check)
        self.register(make_policy_violations_check(policies, verifier))

    def register(self, check: ComplianceCheck) -> None:
        if check.name in self._checks:
            raise ValueError(f"duplicate check name: {check.name}")
        self._checks[check.name] = check

    @property
    def names(self) -> List[str]:
        return list(self._checks)

    def get(self, name: str) -> ComplianceCheck:
        try:
            return self._checks[name]
        except KeyError:
            raise UnknownCheckError(name) from None

    def all(self) -> List[ComplianceCheck]:
        return list(self._checks.values())

    def select(self, names: Iterable[str]) -> List[ComplianceCheck]:
        """Checks for ``names`` in the order given; duplicates run once."""
        selected: List[ComplianceCheck] = []
        seen = set()
        for name in names:
            key = str(name).strip()
            if key in seen:
                continue
            seen.add(key)
            selected.append(self.get(key))
        return selected


def default_checks(
    policies: Optional[Sequence[PolicyDocument]] = None,
    verifier: Optional[ImageVerifier] = None,
) -> List[ComplianceCheck]:
    return CheckRegistry(policies=policies, verifier=verifier).all()


def resolve_checks(
    names: Optional[Iterable[str]],
    policies: Optional[Sequence[PolicyDocument]] = None,
    verifier: Optional[ImageVerifier] = None,
) -> List[ComplianceCheck]:
    """
    Resolve check names against the registry.

    ``None`` means the full default battery. An explicit empty list resolves to
    no checks, and the scanner rejects it.
    """
    registry = CheckRegistry(policies=policies, verifier=verifier)
    if names is None:
        return registry.all()
    return registry.select(names)


def load_check_set(path: str) -> Tuple[Optional[List[str]], Optional[str]]:
    """
    Read a check-set file.

    Returns (check names, policy dir). The literal ``default`` selects every
    registered check. A relative policy dir is resolved against the file.
    """
    if path == DEFAULT_CHECK_SET:
        return None, None

    source = Path(path)
    text = source.read_text(encoding="utf-8")
    if source.suffix.lower() == ".json":
        raw: Any = json.loads(text)
    else:
        raw = yaml.safe_load(text)

    if isinstance(raw, list):
        raw = {"checks": raw}
    if not isinstance(raw, dict):
        raise ValueError(f"check set must be a mapping or list: {path}")

    checks = raw.get("checks")
    if checks is not None and not isinstance(checks, list):
        raise ValueError(f"check set 'checks' must be a list: {path}")
    names = None if checks is None else [str(c).strip() for c in checks]

    policy_dir = raw.get("policies")
    if policy_dir:
        policy_path = Path(str(policy_dir))
        if not policy_path.is_absolute():
            policy_path = source.parent / policy_path
        policy_dir = str(policy_path)
    return names, policy_dir or None

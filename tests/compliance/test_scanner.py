import subprocess
import sys
import threading
import time
from pathlib import Path

import pytest
import yaml

from policygate.compliance.registry import CheckRegistry, default_checks, load_check_set, resolve_checks
from policygate.compliance.scanner import run_scan
from policygate.compliance.scoring import ScoringConfig
from policygate.compliance.types import CheckResult, CheckStatus, ComplianceCheck, EmptyCheckSet, UnknownCheckError
from policygate.observability.internal_metrics import snapshot


def _fixed(name: str, status: str) -> ComplianceCheck:
    return ComplianceCheck(name=name, executor=lambda target: CheckResult(name=name, status=CheckStatus(status), message=status))


def test_scan_summary_end_to_end():
    checks = [_fixed("a", "PASS"), _fixed("b", "PASS"), _fixed("c", "FAIL"), _fixed("d", "WARN")]

    report = run_scan(checks, {"target": {"name": "kind-dev"}})
    summary = report.to_dict()["summary"]

    assert summary["score"] == 50
    assert summary["total"] == 4
    assert summary["passed"] == 2
    assert summary["failed"] == 1
    assert summary["warnings"] == 1
    assert report.target == "kind-dev"
    assert [c.name for c in report.checks] == ["a", "b", "c", "d"]


def test_empty_check_set_raises():
    with pytest.raises(EmptyCheckSet):
        run_scan([], {})
    assert snapshot().get("scans_total", 0) == 0


def test_raising_check_becomes_fail_and_scan_continues():
    def explode(target):
        raise RuntimeError("kubectl not found")

    checks = [_fixed("first", "PASS"), ComplianceCheck(name="broken", executor=explode), _fixed("last", "PASS")]
    report = run_scan(checks, {})

    broken = report.checks[1]
    assert broken.name == "broken"
    assert broken.status == CheckStatus.FAIL
    assert broken.details["error"] == "kubectl not found"
    assert report.score == 67
    assert snapshot()["scan_check_errors_total"] == 1


def test_wrong_return_type_is_recorded_as_fail():
    report = run_scan([ComplianceCheck(name="sloppy", executor=lambda target: "PASS")], {})
    assert report.checks[0].status == CheckStatus.FAIL
    assert report.checks[0].details["error_type"] == "CheckExecutionError"


def test_result_name_follows_check_name():
    check = ComplianceCheck(name="declared", executor=lambda target: CheckResult(name="other", status=CheckStatus.PASS))
    assert run_scan([check], {}).checks[0].name == "declared"


def test_slow_check_times_out_as_fail():
    release = threading.Event()

    def slow(target):
        release.wait(5)
        return CheckResult(name="slow", status=CheckStatus.PASS)

    try:
        report = run_scan([_fixed("fast", "PASS"), ComplianceCheck(name="slow", executor=slow)], {}, timeout_seconds=0.2)
    finally:
        release.set()

    assert [c.name for c in report.checks] == ["fast", "slow"]
    assert report.checks[0].status == CheckStatus.PASS
    assert report.checks[1].status == CheckStatus.FAIL
    assert report.checks[1].details["reason"] == "timeout"
    assert report.score == 50
    assert snapshot()["scan_check_timeouts_total"] == 1


HUNG_SCAN = """
import time
from policygate.compliance.scanner import run_scan
from policygate.compliance.types import ComplianceCheck

def hang(target):
    time.sleep(30)

report = run_scan([ComplianceCheck(name="hang", executor=hang)], {}, timeout_seconds=0.2)
print(report.checks[0].status.value, report.checks[0].details["reason"])
"""


def test_timed_out_check_does_not_block_process_exit():
    started = time.monotonic()
    proc = subprocess.run(
        [sys.executable, "-c", HUNG_SCAN],
        capture_output=True,
        text=True,
        timeout=20,
        cwd=str(Path(__file__).resolve().parents[2]),
    )

    assert proc.returncode == 0, proc.stderr
    assert proc.stdout.split() == ["FAIL", "timeout"]
    assert time.monotonic() - started < 10



def test_results_keep_declaration_order_under_concurrency():
    gates = [threading.Event() for _ in range(3)]

    def make(index):
        def run(target):
            # Later checks finish first.
            if index < 2:
                gates[index + 1].wait(2)
            gates[index].set()
            return CheckResult(name=f"c{index}", status=CheckStatus.PASS)

        return ComplianceCheck(name=f"c{index}", executor=run)

    report = run_scan([make(i) for i in range(3)], {}, max_workers=3)
    assert [c.name for c in report.checks] == ["c0", "c1", "c2"]


def test_scoring_config_is_applied():
    checks = [_fixed("a", "PASS"), _fixed("b", "WARN")]
    config = ScoringConfig(weights={CheckStatus.PASS: 1.0, CheckStatus.WARN: 0.5})
    assert run_scan(checks, {}, scoring=config).score == 75


def test_default_battery_runs_against_snapshot():
    snapshot_doc = {
        "target": "prod-cluster",
        "apiServer": {"flags": {"anonymous-auth": "false"}},
        "apiVersions": ["v1", "rbac.authorization.k8s.io/v1"],
        "namespaces": ["default", "kyverno"],
        "pods": [],
        "networkPolicies": [{"spec": {"podSelector": {}, "policyTypes": ["Ingress"]}}],
        "clusterPolicies": [],
    }
    report = run_scan(default_checks(), snapshot_doc)
    names = [c.name for c in report.checks]
    assert names[0] == "api_server_anonymous_auth"
    assert names[-1] == "policy_violations"
    assert len(names) == 14
    assert report.target == "prod-cluster"
    assert all(c.details.get("error") is None for c in report.checks)


def test_registry_resolution():
    assert len(resolve_checks(None)) == 14
    assert [c.name for c in resolve_checks(["rbac_enabled", "network_policies", "rbac_enabled"])] == [
        "rbac_enabled",
        "network_policies",
    ]
    assert resolve_checks([]) == []
    with pytest.raises(UnknownCheckError):
        resolve_checks(["no_such_check"])


def test_registry_rejects_duplicate_names():
    registry = CheckRegistry(register_defaults=False)
    registry.register(_fixed("a", "PASS"))
    with pytest.raises(ValueError):
        registry.register(_fixed("a", "FAIL"))
    assert registry.names == ["a"]


def test_load_check_set(tmp_path: Path):
    assert load_check_set("default") == (None, None)

    path = tmp_path / "checks.yaml"
    path.write_text(yaml.safe_dump({"checks": ["rbac_enabled"], "policies": "policies"}), encoding="utf-8")
    names, policy_dir = load_check_set(str(path))
    assert names == ["rbac_enabled"]
    assert policy_dir == str(tmp_path / "policies")

    listed = tmp_path / "list.json"
    listed.write_text('["network_policies"]', encoding="utf-8")
    assert load_check_set(str(listed)) == (["network_policies"], None)

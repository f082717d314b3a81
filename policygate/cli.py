import argparse
import json
import sys
from pathlib import Path

import yaml

from policygate import __version__, config
from policygate.compliance.registry import load_check_set, resolve_checks
from policygate.compliance.scanner import run_scan
from policygate.compliance.types import EmptyCheckSet, UnknownCheckError
from policygate.engine_core.aggregate import evaluate_all
from policygate.engine_core.context import EvaluationContext
from policygate.observability.logging_config import configure_logging
from policygate.policy.errors import ParseError
from policygate.policy.lint import format_lint_report, lint_policies
from policygate.policy.loader import PolicyLoader
from policygate.reporting.compliance_report import exit_code_for_score, format_compliance_report
from policygate.reporting.write_report import write_json_report_atomic
from policygate.verification.verifiers import load_verifier

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INPUT_ERROR = 2


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="policygate")
    sub = p.add_subparsers(dest="cmd", required=True)

    eval_p = sub.add_parser("evaluate", help="Evaluate a resource against a policy directory.")
    eval_p.add_argument("policy_dir", help="Directory (or single file) of policy documents")
    eval_p.add_argument("resource", help="Resource manifest (YAML or JSON)")
    eval_p.add_argument("--operation", default="CREATE", help="Admission operation (CREATE, UPDATE, ...)")
    eval_p.add_argument("--namespace", help="Namespace override for the request")
    eval_p.add_argument("--signature-store", default=config.SIGNATURE_STORE_PATH, help="JSON signature store for image verification")
    eval_p.add_argument("--format", default="text", choices=["text", "json"])

    scan_p = sub.add_parser("scan", help="Run compliance checks against a cluster snapshot.")
    scan_p.add_argument("check_set", help="Check-set file, or 'default' for every built-in check")
    scan_p.add_argument("target", help="Target snapshot (JSON or YAML)")
    scan_p.add_argument("--threshold", type=int, default=None, help="Minimum passing score (0-100)")
    scan_p.add_argument("--timeout", type=float, default=None, help="Scan timeout in seconds")
    scan_p.add_argument("--signature-store", default=config.SIGNATURE_STORE_PATH, help="JSON signature store for image verification")
    scan_p.add_argument("--output", help="Write JSON report to file")
    scan_p.add_argument("--format", default="text", choices=["text", "json"])

    lint_p = sub.add_parser("lint", help="Validate policy documents.")
    lint_p.add_argument("policy_dir")
    lint_p.add_argument("--format", default="text", choices=["text", "json"])

    sub.add_parser("version", help="Print version.")
    return p


def _read_document(path: str):
    text = Path(path).read_text(encoding="utf-8")
    if path.endswith(".json"):
        return json.loads(text)
    return yaml.safe_load(text)


def _read_mapping(path: str, what: str) -> dict:
    try:
        data = _read_document(path)
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ValueError(f"{what} is not valid YAML/JSON: {e}") from e
    if not isinstance(data, dict):
        raise ValueError(f"{what} must be a mapping: {path}")
    return data


def _print_decision(decision, fmt: str) -> None:
    if fmt == "json":
        print(json.dumps(decision.to_dict(), indent=2, sort_keys=True))
        return
    print(f"Admission: {decision.status.upper()}")
    for policy in decision.policy_results:
        mode = policy.enforcement_mode.value
        print(f"  {policy.policy_name} [{mode}]: {policy.outcome}")
        for rule in policy.rule_results:
            line = f"    - {rule.rule_name}: {rule.reason}"
            if rule.message:
                line += f" ({rule.message})"
            print(line)


def _cmd_evaluate(args) -> int:
    try:
        policies = PolicyLoader(policy_dir=args.policy_dir).load_policies()
        resource = _read_mapping(args.resource, "resource")
        verifier = load_verifier(args.signature_store)
    except ParseError as e:
        print(f"Error: invalid policy: {e}", file=sys.stderr)
        return EXIT_INPUT_ERROR
    except (OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_INPUT_ERROR

    context = EvaluationContext(
        resource=resource,
        operation=str(args.operation).upper(),
        namespace=args.namespace,
    )
    decision = evaluate_all(policies, context, verifier)
    _print_decision(decision, args.format)
    return EXIT_OK if decision.allowed else EXIT_FAILED


def _cmd_scan(args) -> int:
    threshold = config.get_pass_threshold() if args.threshold is None else args.threshold
    try:
        names, policy_dir = load_check_set(args.check_set)
        snapshot = _read_mapping(args.target, "target snapshot")
        policies = PolicyLoader(policy_dir=policy_dir).load_policies() if policy_dir else []
        verifier = load_verifier(args.signature_store)
        checks = resolve_checks(names, policies=policies, verifier=verifier)
        report = run_scan(checks, snapshot, timeout_seconds=args.timeout)
    except UnknownCheckError as e:
        print(f"Error: unknown check: {e.args[0]}", file=sys.stderr)
        return EXIT_INPUT_ERROR
    except ParseError as e:
        print(f"Error: invalid policy: {e}", file=sys.stderr)
        return EXIT_INPUT_ERROR
    except (EmptyCheckSet, OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_INPUT_ERROR

    payload = report.to_dict()
    if args.output:
        try:
            write_json_report_atomic(args.output, payload)
        except OSError as e:
            print(f"Error writing output {args.output}: {e}", file=sys.stderr)
            return EXIT_INPUT_ERROR

    if args.format == "json":
        print(json.dumps(payload, indent=2, sort_keys=True))
    else:
        print(format_compliance_report(report))
        print(f"Threshold: {threshold}%")
    return exit_code_for_score(report, threshold)


def _cmd_lint(args) -> int:
    report = lint_policies(args.policy_dir)
    if args.format == "json":
        print(json.dumps(report, indent=2, sort_keys=True))
    else:
        print(format_lint_report(report))
    return EXIT_OK if report["ok"] else EXIT_FAILED


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging()

    if args.cmd == "evaluate":
        return _cmd_evaluate(args)
    if args.cmd == "scan":
        return _cmd_scan(args)
    if args.cmd == "lint":
        return _cmd_lint(args)
    if args.cmd == "version":
        print(__version__)
        return EXIT_OK
    return EXIT_INPUT_ERROR


if __name__ == "__main__":
    sys.exit(main())

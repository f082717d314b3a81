from __future__ import annotations

import logging
import queue
import threading
import time
from concurrent.futures import ALL_COMPLETED, Future, wait
from typing import Any, List, Mapping, Optional, Sequence

from policygate.compliance.scoring import ScoringConfig
from policygate.compliance.types import (
    CheckExecutionError,
    CheckResult,
    CheckStatus,
    ComplianceCheck,
    EmptyCheckSet,
)
from policygate.config import get_scan_max_workers, get_scan_timeout_seconds
from policygate.observability.internal_metrics import incr
from policygate.reporting.compliance_report import ComplianceReport, build_compliance_report

logger = logging.getLogger(__name__)


def _target_name(target_snapshot: Mapping[str, Any]) -> str:
    target = target_snapshot.get("target") if isinstance(target_snapshot, Mapping) else None
    if isinstance(target, Mapping):
        return str(target.get("name") or target.get("cluster") or "unknown")
    if target:
        return str(target)
    return "unknown"


def _run_check(check: ComplianceCheck, target_snapshot: Mapping[str, Any]) -> CheckResult:
    result = check.executor(target_snapshot)
    if not isinstance(result, CheckResult):
        raise CheckExecutionError(
            f"check {check.name} returned {type(result).__name__}, expected CheckResult"
        )
    if result.name != check.name:
        result = CheckResult(name=check.name, status=result.status, message=result.message, details=result.details)
    return result


def _error_result(check: ComplianceCheck, exc: BaseException) -> CheckResult:
    incr("scan_check_errors_total")
    logger.warning("Compliance check %s failed: %s", check.name, exc, extra={"check": check.name})
    return CheckResult(
        name=check.name,
        status=CheckStatus.FAIL,
        message=f"Check raised {type(exc).__name__}",
        details={"error": str(exc), "error_type": type(exc).__name__},
    )


def _timeout_result(check: ComplianceCheck, timeout_seconds: float) -> CheckResult:
    incr("scan_check_timeouts_total")
    logger.warning(
        "Compliance check %s timed out after %.2fs", check.name, timeout_seconds, extra={"check": check.name}
    )
    return CheckResult(
        name=check.name,
        status=CheckStatus.FAIL,
        message=f"Check did not complete within {timeout_seconds:.2f}s",
        details={"reason": "timeout", "timeout_seconds": timeout_seconds},
    )


def _collect(check: ComplianceCheck, future: Future, done: set, timeout_seconds: float) -> CheckResult:
    if future not in done:
        return _timeout_result(check, timeout_seconds)
    exc = future.exception()
    if exc is not None:
        return _error_result(check, exc)
    return future.result()


def _worker(jobs: queue.SimpleQueue, target_snapshot: Mapping[str, Any]) -> None:
    while True:
        try:
            check, future = jobs.get_nowait()
        except queue.Empty:
            return
        if not future.set_running_or_notify_cancel():
            continue
        try:
            future.set_result(_run_check(check, target_snapshot))
        except BaseException as exc:
            future.set_exception(exc)


def _start_workers(
    checks: Sequence[ComplianceCheck], target_snapshot: Mapping[str, Any], workers: int
) -> List[Future]:
    # Daemon threads: a check that never returns must not hold the process open.
    jobs: queue.SimpleQueue = queue.SimpleQueue()
    futures: List[Future] = []
    for check in checks:
        future: Future = Future()
        jobs.put((check, future))
        futures.append(future)
    for index in range(min(workers, len(checks))):
        threading.Thread(
            target=_worker,
            args=(jobs, target_snapshot),
            name=f"policygate-scan-{index}",
            daemon=True,
        ).start()
    return futures


def run_scan(
    checks: Sequence[ComplianceCheck],
    target_snapshot: Mapping[str, Any],
    *,
    timeout_seconds: Optional[float] = None,
    max_workers: Optional[int] = None,
    scoring: Optional[ScoringConfig] = None,
    target: Optional[str] = None,
) -> ComplianceReport:
    """
    Run every check against one snapshot and build the compliance report.

    Checks run concurrently; results come back in declaration order. A check
    that raises, returns the wrong type or misses the scan deadline is recorded
    as FAIL and the scan carries on.
    """
    checks = list(checks)
    if not checks:
        raise EmptyCheckSet("scan requested with no checks")

    timeout = get_scan_timeout_seconds() if timeout_seconds is None else float(timeout_seconds)
    workers = get_scan_max_workers() if max_workers is None else max(1, int(max_workers))
    scoring = scoring or ScoringConfig.from_env()
    target_name = target or _target_name(target_snapshot)

    incr("scans_total")
    started = time.monotonic()
    futures = _start_workers(checks, target_snapshot, workers)
    done, pending = wait(futures, timeout=max(timeout, 0.0), return_when=ALL_COMPLETED)
    for future in pending:
        future.cancel()

    results: List[CheckResult] = [_collect(check, future, done, timeout) for check, future in zip(checks, futures)]

    report = build_compliance_report(target_name, results, scoring)
    logger.info(
        "Compliance scan of %s: score=%s checks=%s duration_ms=%s",
        target_name,
        report.score,
        len(results),
        int((time.monotonic() - started) * 1000),
        extra={"target": target_name},
    )
    return report

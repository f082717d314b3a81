import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from policygate import __version__, config
from policygate.compliance.registry import resolve_checks
from policygate.compliance.scanner import run_scan
from policygate.compliance.types import EmptyCheckSet, UnknownCheckError
from policygate.engine_core.aggregate import evaluate_all
from policygate.engine_core.context import EvaluationContext
from policygate.observability.internal_metrics import snapshot as metrics_snapshot
from policygate.observability.logging_config import configure_logging
from policygate.policy.errors import ParseError
from policygate.policy.loader import PolicyLoader
from policygate.verification.verifiers import load_verifier

configure_logging()

app = FastAPI(
    title="PolicyGate",
    version=__version__,
    docs_url=None,
    redoc_url=None,
    openapi_url=None,
)
logger = logging.getLogger(__name__)


class EvaluateRequest(BaseModel):
    resource: Dict[str, Any]
    operation: str = "CREATE"
    namespace: Optional[str] = None
    userInfo: Dict[str, Any] = Field(default_factory=dict)


class ScanRequest(BaseModel):
    target: Dict[str, Any]
    checks: Optional[List[str]] = None
    timeout_seconds: Optional[float] = Field(default=None, gt=0)


def _load_policies():
    try:
        return PolicyLoader(policy_dir=config.POLICY_DIR).load_policies()
    except ParseError as exc:
        logger.error("Policy directory %s has an invalid policy: %s", config.POLICY_DIR, exc)
        raise HTTPException(status_code=500, detail=exc.to_dict()) from exc
    except (OSError, ValueError) as exc:
        logger.error("Failed to load policies from %s: %s", config.POLICY_DIR, exc)
        raise HTTPException(status_code=503, detail=str(exc)) from exc


def _load_verifier():
    try:
        return load_verifier(config.SIGNATURE_STORE_PATH)
    except (OSError, ValueError) as exc:
        logger.error("Failed to load signature store %s: %s", config.SIGNATURE_STORE_PATH, exc)
        raise HTTPException(status_code=503, detail=f"signature store unavailable: {exc}") from exc


@app.get("/health")
def health():
    return {"status": "ok", "version": __version__, "policy_dir": config.POLICY_DIR}


@app.post("/evaluate")
def evaluate(request: EvaluateRequest):
    policies = _load_policies()
    verifier = _load_verifier()
    context = EvaluationContext(
        resource=request.resource,
        operation=request.operation.upper(),
        user_info=request.userInfo,
        namespace=request.namespace,
    )
    decision = evaluate_all(policies, context, verifier)
    return decision.to_dict()


@app.post("/scan")
def scan(request: ScanRequest):
    try:
        checks = resolve_checks(request.checks, verifier=_load_verifier())
        report = run_scan(checks, request.target, timeout_seconds=request.timeout_seconds)
    except UnknownCheckError as exc:
        raise HTTPException(status_code=400, detail=f"unknown check: {exc.args[0]}") from exc
    except EmptyCheckSet as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return report.to_dict()


@app.get("/metrics/internal")
def internal_metrics():
    return metrics_snapshot()

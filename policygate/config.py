import os
from dotenv import load_dotenv

# Load params from .env file
load_dotenv()

# Policy sources
POLICY_DIR = os.getenv("POLICYGATE_POLICY_DIR", "policies")
SIGNATURE_STORE_PATH = os.getenv("POLICYGATE_SIGNATURE_STORE", "")

# Scan defaults
DEFAULT_SCAN_TIMEOUT_SECONDS = 30.0
DEFAULT_SCAN_MAX_WORKERS = 4

# Score a scan must reach for `policygate scan` to exit 0
DEFAULT_PASS_THRESHOLD = 80

# Env-var literals that look like credentials
SECRET_VALUE_MARKERS = [
 "password",
 "secret",
 "key",
 "token",
]


def _env_bool(name: str, default: bool) -> bool:
    raw = str(os.getenv(name, "true" if default else "false")).strip().lower()
    return raw in {"1", "true", "yes", "on"}


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not str(raw).strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def get_scan_timeout_seconds() -> float:
    return _env_float("POLICYGATE_SCAN_TIMEOUT_SECONDS", DEFAULT_SCAN_TIMEOUT_SECONDS)


def get_scan_max_workers() -> int:
    return max(1, int(_env_float("POLICYGATE_SCAN_MAX_WORKERS", DEFAULT_SCAN_MAX_WORKERS)))


def get_pass_threshold() -> int:
    return int(_env_float("POLICYGATE_PASS_THRESHOLD", DEFAULT_PASS_THRESHOLD))


def get_status_weights() -> dict:
    """
    Scoring weights per check status.
    PASS always counts fully and FAIL never counts; WARN and INFO are tunable.
    """
    return {
        "PASS": 1.0,
        "FAIL": 0.0,
        "WARN": _env_float("POLICYGATE_WARN_WEIGHT", 0.0),
        "INFO": _env_float("POLICYGATE_INFO_WEIGHT", 0.0),
    }


def count_info_checks() -> bool:
    """
    Whether INFO results count toward the score denominator.
    Defaults to enabled to match the pass/total percentage of the shell audit.
    """
    return _env_bool("POLICYGATE_COUNT_INFO", True)


def get_log_level() -> str:
    return (os.getenv("POLICYGATE_LOG_LEVEL", "INFO") or "INFO").upper()


def get_log_format() -> str:
    return (os.getenv("POLICYGATE_LOG_FORMAT", "json") or "json").strip().lower()

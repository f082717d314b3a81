import json
import logging

from policygate.observability.logging_config import JsonLogFormatter, configure_logging


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("policygate.compliance.scanner", logging.WARNING, __file__, 10, "check %s timed out", ("rbac",), None)
    record.created = 1767225600.0
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_emits_context_fields():
    line = JsonLogFormatter().format(_record(check="rbac_enabled", target="kind-dev"))
    payload = json.loads(line)

    assert payload["level"] == "WARNING"
    assert payload["logger"] == "policygate.compliance.scanner"
    assert payload["message"] == "check rbac timed out"
    assert payload["check"] == "rbac_enabled"
    assert payload["target"] == "kind-dev"
    assert "policy" not in payload
    assert payload["timestamp"].startswith("2026-01-01T00:00:00")


def test_configure_logging_replaces_its_own_handler(monkeypatch):
    monkeypatch.setenv("POLICYGATE_LOG_FORMAT", "json")
    monkeypatch.setenv("POLICYGATE_LOG_LEVEL", "warning")
    root = logging.getLogger()
    previous_level = root.level
    foreign = logging.NullHandler()
    root.addHandler(foreign)
    try:
        first = configure_logging()
        second = configure_logging()

        ours = [h for h in root.handlers if h.get_name() == "policygate"]
        assert ours == [second]
        assert first not in root.handlers
        assert foreign in root.handlers
        assert isinstance(second.formatter, JsonLogFormatter)
        assert root.level == logging.WARNING
    finally:
        root.removeHandler(foreign)
        root.removeHandler(second)
        root.setLevel(previous_level)


def test_policy_logs_reach_stderr_as_json(monkeypatch, capsys):
    monkeypatch.setenv("POLICYGATE_LOG_FORMAT", "json")
    monkeypatch.setenv("POLICYGATE_LOG_LEVEL", "INFO")
    root = logging.getLogger()
    previous_level = root.level
    handler = configure_logging()
    try:
        logging.getLogger("policygate.engine_core.aggregate").info("Policy blocked", extra={"policy": "require-tag"})
    finally:
        root.removeHandler(handler)
        root.setLevel(previous_level)

    lines = [json.loads(line) for line in capsys.readouterr().err.splitlines() if line.startswith("{")]
    assert lines[-1]["policy"] == "require-tag"
    assert lines[-1]["message"] == "Policy blocked"

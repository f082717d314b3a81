import os

import pytest

from policygate.observability.internal_metrics import reset


def pytest_configure(config):
    os.environ.setdefault("POLICYGATE_LOG_FORMAT", "text")
    os.environ.setdefault("POLICYGATE_LOG_LEVEL", "WARNING")


@pytest.fixture(autouse=True)
def _reset_internal_metrics():
    reset()
    yield
    reset()

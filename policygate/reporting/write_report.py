from __future__ import annotations

import json
import os
import tempfile
from contextlib import contextmanager, suppress
from typing import Any, Dict


@contextmanager
def atomic_write(filepath: str, mode: str = "w"):
    """
    Write to a temp file beside ``filepath`` and rename it into place.

    Readers see either the old file or the complete new one.
    """
    folder = os.path.dirname(filepath)
    if folder:
        os.makedirs(folder, exist_ok=True)

    fd, temp_path = tempfile.mkstemp(dir=folder or None, prefix=".policygate-", text="b" not in mode)
    try:
        with os.fdopen(fd, mode) as f:
            yield f
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_path, filepath)
    except BaseException:
        with suppress(FileNotFoundError):
            os.remove(temp_path)
        raise


def write_json_report_atomic(path: str, payload: Dict[str, Any]) -> None:
    """
    Write a compliance report where a CI job or dashboard will pick it up.

    The file is replaced in one step, so a gate polling the path never reads a
    half-written scan. Keys are sorted and indented to match `policygate scan
    --format json` output.
    """
    data = json.dumps(payload, sort_keys=True, ensure_ascii=False, indent=2).encode("utf-8") + b"\n"
    with atomic_write(path, "wb") as f:
        f.write(data)

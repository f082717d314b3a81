from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class EvaluationContext:
    """
    The resource under test plus the admission request metadata.
    Read-only for the duration of one evaluation.
    """

    resource: Mapping[str, Any]
    operation: str = "CREATE"
    timestamp: datetime = field(default_factory=_utc_now)
    user_info: Mapping[str, Any] = field(default_factory=dict)
    namespace: Optional[str] = None

    @property
    def kind(self) -> str:
        return str(self.resource.get("kind") or "")

    @property
    def metadata(self) -> Mapping[str, Any]:
        meta = self.resource.get("metadata")
        return meta if isinstance(meta, Mapping) else {}

    @property
    def resource_namespace(self) -> str:
        if self.namespace:
            return self.namespace
        return str(self.metadata.get("namespace") or "")

    @property
    def labels(self) -> Mapping[str, Any]:
        labels = self.metadata.get("labels")
        return labels if isinstance(labels, Mapping) else {}

    def variables(self) -> Dict[str, Any]:
        """Tree that variable expressions resolve against."""
        return {
            "request": {
                "object": self.resource,
                "operation": self.operation,
                "namespace": self.resource_namespace,
                "userInfo": dict(self.user_info),
                "timestamp": self.timestamp.isoformat(),
            }
        }

from __future__ import annotations

from typing import Any, Callable, Iterator, List, Mapping, Tuple

from policygate.engine_core.values import ValueKind, kind_of


# verify(image_ref, key) -> bool
ImageVerifier = Callable[[str, str], bool]

CONTAINER_FIELDS = ("initContainers", "containers", "ephemeralContainers")

# Where pod specs live for the workload kinds we understand.
_POD_SPEC_PATHS: Tuple[Tuple[str, ...], ...] = (
    ("spec",),
    ("spec", "template", "spec"),
    ("spec", "jobTemplate", "spec", "template", "spec"),
)


def _walk(node: Any, path: Tuple[str, ...]) -> Any:
    for key in path:
        if kind_of(node) != ValueKind.MAPPING:
            return None
        node = node.get(key)
    return node


def pod_specs(resource: Mapping[str, Any]) -> Iterator[Mapping[str, Any]]:
    for path in _POD_SPEC_PATHS:
        spec = _walk(resource, path)
        if kind_of(spec) == ValueKind.MAPPING and any(f in spec for f in CONTAINER_FIELDS):
            yield spec


def containers(resource: Mapping[str, Any]) -> Iterator[Mapping[str, Any]]:
    for spec in pod_specs(resource):
        for field in CONTAINER_FIELDS:
            items = spec.get(field)
            if kind_of(items) != ValueKind.SEQUENCE:
                continue
            for item in items:
                if kind_of(item) == ValueKind.MAPPING:
                    yield item


def container_images(resource: Mapping[str, Any]) -> List[str]:
    """Image references in declaration order, duplicates removed."""
    seen = set()
    out: List[str] = []
    for container in containers(resource):
        image = container.get("image")
        if not isinstance(image, str) or not image.strip() or image in seen:
            continue
        seen.add(image)
        out.append(image)
    return out


def image_tag(image: str) -> str:
    """Tag of an image reference, "" when untagged or digest-pinned only."""
    name = image.split("@", 1)[0]
    last_segment = name.rsplit("/", 1)[-1]
    if ":" not in last_segment:
        return ""
    return last_segment.rsplit(":", 1)[1]

from __future__ import annotations

import logging
import os
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Mapping, Optional, Union

import yaml
from pydantic import ValidationError

from policygate.policy.errors import ParseError, ParseErrorKind
from policygate.policy.models import EnforcementMode, PolicyDocument

logger = logging.getLogger(__name__)

POLICY_SUFFIXES = (".yaml", ".yml", ".json")

PolicySource = Union[str, bytes, Mapping[str, Any]]


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def _normalize_mode(raw: Any) -> EnforcementMode:
    if raw is None:
        return EnforcementMode.AUDIT
    value = str(raw).strip().lower()
    for mode in EnforcementMode:
        if value == mode.value:
            return mode
    raise ParseError(
        ParseErrorKind.INVALID_ENFORCEMENT_MODE,
        "enforcementMode",
        f"InvalidEnforcementMode: expected 'enforce' or 'audit', got {raw!r}",
    )


def _unwrap_kyverno(data: Mapping[str, Any]) -> Dict[str, Any]:
    """Flatten a ClusterPolicy/Policy manifest into the native shape."""
    spec = data.get("spec")
    if "rules" in data or not isinstance(spec, Mapping):
        return dict(data)
    metadata = data.get("metadata") if isinstance(data.get("metadata"), Mapping) else {}
    annotations = metadata.get("annotations") if isinstance(metadata.get("annotations"), Mapping) else {}
    return {
        "name": metadata.get("name"),
        "enforcementMode": spec.get("validationFailureAction"),
        "rules": spec.get("rules"),
        "description": annotations.get("policies.kyverno.io/description"),
    }


def _parse_match(raw: Any, field: str) -> Dict[str, Any]:
    if not isinstance(raw, Mapping):
        raise ParseError(ParseErrorKind.MISSING_FIELD, field)
    block = raw.get("resources") if isinstance(raw.get("resources"), Mapping) else raw

    kinds = [str(k) for k in _as_list(block.get("kinds")) if not _is_blank(k)]
    if not kinds:
        raise ParseError(ParseErrorKind.MISSING_FIELD, f"{field}.kinds")

    labels = block.get("labels")
    selector = block.get("selector")
    if labels is None and isinstance(selector, Mapping):
        labels = selector.get("matchLabels")
    if labels is not None and not isinstance(labels, Mapping):
        raise ParseError(ParseErrorKind.INVALID_RULE, f"{field}.labels", "InvalidRule: labels must be a mapping")

    operations = block.get("operations", raw.get("operations"))
    return {
        "kinds": tuple(kinds),
        "namespaces": tuple(str(n) for n in _as_list(block.get("namespaces"))),
        "labels": {str(k): str(v) for k, v in (labels or {}).items()},
        "operations": tuple(str(o).upper() for o in _as_list(operations)),
    }


def _parse_image_specs(raw: Any, field: str) -> List[Dict[str, Any]]:
    entries = _as_list(raw)
    if not entries:
        raise ParseError(ParseErrorKind.MISSING_FIELD, field)
    specs: List[Dict[str, Any]] = []
    for index, entry in enumerate(entries):
        entry_field = f"{field}[{index}]"
        if not isinstance(entry, Mapping):
            raise ParseError(ParseErrorKind.INVALID_RULE, entry_field, "InvalidRule: verifyImages entries must be mappings")
        refs = _as_list(entry.get("imageReferences")) or _as_list(entry.get("image"))
        refs = [str(r) for r in refs if not _is_blank(r)]
        if not refs:
            raise ParseError(ParseErrorKind.MISSING_FIELD, f"{entry_field}.image")
        key = entry.get("key") or ""
        for ref in refs:
            specs.append({"image": ref, "key": str(key)})
    return specs


def _parse_rule(raw: Any, index: int) -> Dict[str, Any]:
    field = f"rules[{index}]"
    if not isinstance(raw, Mapping):
        raise ParseError(ParseErrorKind.INVALID_RULE, field, "InvalidRule: rule must be a mapping")
    if _is_blank(raw.get("name")):
        raise ParseError(ParseErrorKind.MISSING_FIELD, f"{field}.name")

    has_validate = raw.get("validate") is not None
    has_images = raw.get("verifyImages") is not None
    if has_validate == has_images:
        raise ParseError(
            ParseErrorKind.INVALID_RULE,
            field,
            "InvalidRule: a rule needs exactly one of 'validate' or 'verifyImages'",
        )

    if has_validate:
        validate = raw.get("validate")
        pattern = validate.get("pattern") if isinstance(validate, Mapping) else None
        if not isinstance(pattern, Mapping):
            raise ParseError(ParseErrorKind.MISSING_FIELD, f"{field}.validate.pattern")
        body: Dict[str, Any] = {
            "type": "validate",
            "pattern": dict(pattern),
            "message": validate.get("message"),
        }
    else:
        body = {
            "type": "verifyImages",
            "images": _parse_image_specs(raw.get("verifyImages"), f"{field}.verifyImages"),
        }

    return {
        "name": str(raw["name"]),
        "match": _parse_match(raw.get("match"), f"{field}.match"),
        "body": body,
    }


def _field_from_validation_error(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return ""
    parts = []
    for item in errors[0].get("loc", ()):
        if isinstance(item, int):
            parts.append(f"[{item}]")
        else:
            parts.append(f".{item}" if parts else str(item))
    return "".join(parts)


def parse_policy_data(data: Any, *, source_file: Optional[str] = None) -> PolicyDocument:
    if not isinstance(data, Mapping):
        raise ParseError(ParseErrorKind.MALFORMED_DOCUMENT, "", "MalformedDocument: policy must be a mapping")
    flat = _unwrap_kyverno(data)

    if _is_blank(flat.get("name")):
        raise ParseError(ParseErrorKind.MISSING_FIELD, "name")
    if flat.get("rules") is None:
        raise ParseError(ParseErrorKind.MISSING_FIELD, "rules")
    raw_rules = flat.get("rules")
    if not isinstance(raw_rules, (list, tuple)):
        raise ParseError(ParseErrorKind.MALFORMED_DOCUMENT, "rules", "MalformedDocument: rules must be a list")
    if not raw_rules:
        raise ParseError(ParseErrorKind.EMPTY_RULE_SET, "rules")

    mode = _normalize_mode(flat.get("enforcementMode"))
    rules = [_parse_rule(raw, index) for index, raw in enumerate(raw_rules)]

    try:
        return PolicyDocument(
            name=str(flat["name"]),
            enforcement_mode=mode,
            rules=rules,
            description=flat.get("description"),
            source_file=source_file,
        )
    except ValidationError as exc:
        raise ParseError(
            ParseErrorKind.INVALID_RULE,
            _field_from_validation_error(exc),
            f"InvalidRule: {exc.errors()[0].get('msg', 'invalid value')}",
        ) from exc


def _decode_documents(text: Union[str, bytes]) -> List[Any]:
    # JSON is a YAML subset, so one parser covers both.
    try:
        return [doc for doc in yaml.safe_load_all(text) if doc is not None]
    except yaml.YAMLError as exc:
        raise ParseError(ParseErrorKind.MALFORMED_DOCUMENT, "", f"MalformedDocument: {exc}") from exc


def load_policy(source: PolicySource, *, source_file: Optional[str] = None) -> PolicyDocument:
    """
    Parse one policy from a mapping or YAML/JSON text.
    Loading never evaluates anything; it either returns the immutable
    document or raises ParseError.
    """
    if isinstance(source, Mapping):
        return parse_policy_data(source, source_file=source_file)
    documents = _decode_documents(source)
    if len(documents) != 1:
        raise ParseError(
            ParseErrorKind.MALFORMED_DOCUMENT,
            "",
            f"MalformedDocument: expected one policy document, found {len(documents)}",
        )
    return parse_policy_data(documents[0], source_file=source_file)


def load_policies_from_text(text: Union[str, bytes], *, source_file: Optional[str] = None) -> List[PolicyDocument]:
    return [parse_policy_data(doc, source_file=source_file) for doc in _decode_documents(text)]


class PolicyLoader:
    def __init__(self, policy_dir: str, strict: bool = True):
        self.policy_dir = policy_dir
        self.strict = strict

    def policy_files(self) -> List[Path]:
        policy_dir_norm = str(self.policy_dir).replace("\\", "/")
        if ".." in PurePosixPath(policy_dir_norm).parts:
            raise ValueError(f"Invalid policy directory (path traversal): {self.policy_dir}")

        base = Path(policy_dir_norm).resolve(strict=False)
        if base.is_file():
            return [base]
        if not base.exists():
            raise FileNotFoundError(f"Policy directory not found: {base}")

        found: List[Path] = []
        for root, dirs, files in os.walk(base):
            dirs.sort()
            for file in sorted(files):
                if file.startswith("_") or not file.endswith(POLICY_SUFFIXES):
                    continue
                path = (Path(root) / file).resolve()
                if base not in path.parents:
                    raise ValueError(f"Policy path escapes base directory: {path}")
                found.append(path)
        return found

    def load_policies(self) -> List[PolicyDocument]:
        """
        Load every policy file under the directory in file-name order.
        Strict mode raises on the first bad file; otherwise bad files are
        logged and skipped.
        """
        policies: List[PolicyDocument] = []
        for path in self.policy_files():
            try:
                text = path.read_text(encoding="utf-8")
                policies.extend(load_policies_from_text(text, source_file=str(path)))
            except ParseError as exc:
                if self.strict:
                    raise exc.with_source(str(path)) from exc
                logger.warning("Skipping invalid policy %s: %s", path, exc)

        if self.strict and not policies:
            raise ValueError(f"No policies loaded from {self.policy_dir}")
        return policies

    def load_all(self) -> List[PolicyDocument]:
        """Alias for load_policies."""
        return self.load_policies()

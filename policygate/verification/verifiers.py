"""
Image verification capabilities.

A verifier is any callable ``verify(image_ref, key) -> bool``; the rule
evaluator only ever calls it. These implementations cover the two checks the
cluster tooling relies on: digest pinning, and signatures produced with a
cosign-style key pair and recorded in a signature store.
"""
from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Dict, Mapping, Optional

from policygate.verification.crypto import parse_public_key, verify_image_signature

logger = logging.getLogger(__name__)

_DIGEST_RE = re.compile(r"@sha256:[0-9a-f]{64}$")


class VerificationFailure(Exception):
    """A verifier may raise this instead of returning False."""


def verify_digest_pinned(image_ref: str, key: str = "") -> bool:
    return bool(_DIGEST_RE.search(str(image_ref or "").strip()))


class SignatureStoreVerifier:
    """
    Checks an image against signatures recorded per image reference.

    The store maps image references to base64 signatures over the sha256 of
    the reference. The rule's ``key`` is the PEM public key to verify with.
    """

    def __init__(self, signatures: Mapping[str, str]):
        self.signatures: Dict[str, str] = {str(k).strip(): str(v).strip() for k, v in signatures.items()}

    @classmethod
    def from_file(cls, path: str) -> "SignatureStoreVerifier":
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        if not isinstance(raw, dict):
            raise ValueError(f"signature store must be a JSON object: {path}")
        return cls(raw)

    def __call__(self, image_ref: str, key: str) -> bool:
        ref = str(image_ref or "").strip()
        signature = self.signatures.get(ref)
        if not signature:
            logger.info("No signature recorded for image %s", ref)
            return False
        try:
            public_key = parse_public_key(key)
        except ValueError as exc:
            raise VerificationFailure(f"unusable verification key for {ref}: {exc}") from exc
        return verify_image_signature(public_key, ref, signature)


def load_verifier(signature_store_path: Optional[str]):
    """Signature store verifier when a store is configured, digest pinning otherwise."""
    if signature_store_path:
        return SignatureStoreVerifier.from_file(signature_store_path)
    return verify_digest_pinned

from __future__ import annotations

import base64
import hashlib
from functools import lru_cache
from typing import Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)


PublicKey = Union[Ed25519PublicKey, ec.EllipticCurvePublicKey]
PrivateKey = Union[Ed25519PrivateKey, ec.EllipticCurvePrivateKey]


def image_payload_hash(image_ref: str) -> str:
    """Digest that image signatures are computed over."""
    return hashlib.sha256(str(image_ref).strip().encode("utf-8")).hexdigest()


@lru_cache(maxsize=64)
def parse_public_key(pem: str) -> PublicKey:
    value = (pem or "").strip()
    if not value.startswith("-----BEGIN"):
        raise ValueError("public key must be PEM encoded")
    loaded = serialization.load_pem_public_key(value.encode("utf-8"))
    if isinstance(loaded, Ed25519PublicKey):
        return loaded
    if isinstance(loaded, ec.EllipticCurvePublicKey):
        return loaded
    raise ValueError("public key must be Ed25519 or ECDSA")


def public_key_pem_from_private(private_key: PrivateKey) -> str:
    return private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("utf-8")


def sign_image_ref(private_key: PrivateKey, image_ref: str) -> str:
    message = bytes.fromhex(image_payload_hash(image_ref))
    if isinstance(private_key, Ed25519PrivateKey):
        signature = private_key.sign(message)
    else:
        signature = private_key.sign(message, ec.ECDSA(hashes.SHA256()))
    return base64.b64encode(signature).decode("ascii")


def verify_image_signature(public_key: PublicKey, image_ref: str, signature_b64: str) -> bool:
    try:
        signature = base64.b64decode(signature_b64.encode("ascii"), validate=True)
    except (ValueError, UnicodeEncodeError):
        return False
    message = bytes.fromhex(image_payload_hash(image_ref))
    try:
        if isinstance(public_key, Ed25519PublicKey):
            public_key.verify(signature, message)
        else:
            public_key.verify(signature, message, ec.ECDSA(hashes.SHA256()))
        return True
    except InvalidSignature:
        return False

from policygate.verification.verifiers import (
    SignatureStoreVerifier,
    VerificationFailure,
    load_verifier,
    verify_digest_pinned,
)

__all__ = [
    "SignatureStoreVerifier",
    "VerificationFailure",
    "load_verifier",
    "verify_digest_pinned",
]

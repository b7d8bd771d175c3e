"""Collector packaging, signing and verification."""

from velobuild.packaging.packager import CollectorPackager, PackageResult
from velobuild.packaging.signing import (
    SignatureInfo,
    SigningKey,
    VerificationKey,
    generate_key_pair,
    load_signing_key,
    load_verification_key,
)
from velobuild.packaging.verify import PackageVerifier, VerificationResult

__all__ = [
    "CollectorPackager",
    "PackageResult",
    "PackageVerifier",
    "SignatureInfo",
    "SigningKey",
    "VerificationKey",
    "VerificationResult",
    "generate_key_pair",
    "load_signing_key",
    "load_verification_key",
]

"""Manifest signing and verification.

Supports Ed25519 and RSA (PKCS#1 v1.5, SHA-256) signatures over the exact
bytes of ``build-manifest.json``. The signature travels inside the package
as ``signature.json``.
"""

import base64
import hashlib
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Literal

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ed25519, padding, rsa
from pydantic import BaseModel

from velobuild.core.errors import ConfigError

SignatureAlgorithm = Literal["ed25519", "rsa-sha256"]

PRIVATE_KEY_FILE = "velobuild-signing.pem"
PUBLIC_KEY_FILE = "velobuild-signing.pub.pem"


class SignatureInfo(BaseModel):
    """Contents of ``signature.json``."""

    algorithm: SignatureAlgorithm
    key_id: str
    signed_at: datetime
    signature: str
    manifest_sha256: str


@dataclass
class SigningKey:
    """A private key for creating signatures."""

    algorithm: SignatureAlgorithm
    key_id: str
    private_key_pem: bytes


@dataclass
class VerificationKey:
    """A public key for verifying signatures."""

    algorithm: SignatureAlgorithm
    key_id: str
    public_key_pem: bytes


def _public_pem(public_key: ed25519.Ed25519PublicKey | rsa.RSAPublicKey) -> bytes:
    return public_key.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def key_id_for(public_pem: bytes) -> str:
    """Key id: first 16 hex chars of the public key PEM's SHA-256."""
    return hashlib.sha256(public_pem).hexdigest()[:16]


def _algorithm_of(key: object) -> SignatureAlgorithm:
    if isinstance(key, (ed25519.Ed25519PrivateKey, ed25519.Ed25519PublicKey)):
        return "ed25519"
    if isinstance(key, (rsa.RSAPrivateKey, rsa.RSAPublicKey)):
        return "rsa-sha256"
    raise ValueError(f"Unsupported key type: {type(key).__name__}")


def generate_key_pair(
    algorithm: SignatureAlgorithm = "ed25519",
) -> tuple[SigningKey, VerificationKey]:
    """Generate a new signing/verification key pair.

    Args:
        algorithm: Signature algorithm to use

    Returns:
        Tuple of (SigningKey, VerificationKey)
    """
    if algorithm == "ed25519":
        private_key = ed25519.Ed25519PrivateKey.generate()
    elif algorithm == "rsa-sha256":
        private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    else:
        raise ValueError(f"Unsupported algorithm: {algorithm}")

    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public_pem = _public_pem(private_key.public_key())
    key_id = key_id_for(public_pem)

    return (
        SigningKey(algorithm=algorithm, key_id=key_id, private_key_pem=private_pem),
        VerificationKey(algorithm=algorithm, key_id=key_id, public_key_pem=public_pem),
    )


def write_key_pair(
    directory: Path, algorithm: SignatureAlgorithm = "ed25519", overwrite: bool = False
) -> tuple[Path, Path]:
    """Generate a key pair and write both PEM files to ``directory``.

    Returns:
        (private key path, public key path)

    Raises:
        ConfigError: If a key file exists and ``overwrite`` is False
    """
    directory = Path(directory)
    private_path = directory / PRIVATE_KEY_FILE
    public_path = directory / PUBLIC_KEY_FILE
    for path in (private_path, public_path):
        if path.exists() and not overwrite:
            raise ConfigError(f"Key file {path} already exists", path=str(path))

    signing_key, verification_key = generate_key_pair(algorithm)
    directory.mkdir(parents=True, exist_ok=True)
    private_path.write_bytes(signing_key.private_key_pem)
    private_path.chmod(0o600)
    public_path.write_bytes(verification_key.public_key_pem)
    return private_path, public_path


def load_signing_key(key_path: Path, algorithm: SignatureAlgorithm | None = None) -> SigningKey:
    """Load a signing key from a PEM file.

    The algorithm is taken from the key type; when ``algorithm`` is given
    it must agree.

    Raises:
        ConfigError: If the file is unreadable, not a private key, or of
            the wrong type
    """
    key_path = Path(key_path)
    try:
        private_pem = key_path.read_bytes()
        private_key = serialization.load_pem_private_key(private_pem, password=None)
        detected = _algorithm_of(private_key)
    except (OSError, ValueError, TypeError) as e:
        raise ConfigError(f"Cannot load signing key {key_path}: {e}", path=str(key_path))

    if algorithm is not None and algorithm != detected:
        raise ConfigError(
            f"Signing key {key_path} is {detected}, not {algorithm}", path=str(key_path)
        )

    return SigningKey(
        algorithm=detected,
        key_id=key_id_for(_public_pem(private_key.public_key())),
        private_key_pem=private_pem,
    )


def load_verification_key(key_path: Path) -> VerificationKey:
    """Load a verification key from a PEM file.

    Raises:
        ConfigError: If the file is unreadable or not a supported public key
    """
    key_path = Path(key_path)
    try:
        public_key = serialization.load_pem_public_key(key_path.read_bytes())
        algorithm = _algorithm_of(public_key)
    except (OSError, ValueError, TypeError) as e:
        raise ConfigError(f"Cannot load public key {key_path}: {e}", path=str(key_path))

    public_pem = _public_pem(public_key)
    return VerificationKey(
        algorithm=algorithm, key_id=key_id_for(public_pem), public_key_pem=public_pem
    )


def sign_manifest(signing_key: SigningKey, manifest_bytes: bytes) -> SignatureInfo:
    """Sign manifest bytes.

    Args:
        signing_key: Private key
        manifest_bytes: Exact bytes of build-manifest.json

    Returns:
        SignatureInfo to store as signature.json
    """
    private_key = serialization.load_pem_private_key(signing_key.private_key_pem, password=None)
    if signing_key.algorithm == "rsa-sha256":
        signature = private_key.sign(manifest_bytes, padding.PKCS1v15(), hashes.SHA256())
    else:
        signature = private_key.sign(manifest_bytes)

    return SignatureInfo(
        algorithm=signing_key.algorithm,
        key_id=signing_key.key_id,
        signed_at=datetime.now(UTC),
        signature=base64.b64encode(signature).decode("ascii"),
        manifest_sha256=hashlib.sha256(manifest_bytes).hexdigest(),
    )


def verify_manifest(
    key: VerificationKey, manifest_bytes: bytes, info: SignatureInfo
) -> list[str]:
    """Verify a manifest signature.

    Returns:
        List of problems; empty when the signature is valid
    """
    errors = []

    manifest_hash = hashlib.sha256(manifest_bytes).hexdigest()
    if manifest_hash != info.manifest_sha256:
        errors.append(
            f"Manifest hash mismatch: expected {info.manifest_sha256}, got {manifest_hash}"
        )

    if key.key_id != info.key_id:
        errors.append(f"Signed with key {info.key_id}, verifying with {key.key_id}")
        return errors

    if key.algorithm != info.algorithm:
        errors.append(f"Signature uses {info.algorithm}, key is {key.algorithm}")
        return errors

    public_key = serialization.load_pem_public_key(key.public_key_pem)
    try:
        signature = base64.b64decode(info.signature)
        if info.algorithm == "rsa-sha256":
            public_key.verify(signature, manifest_bytes, padding.PKCS1v15(), hashes.SHA256())
        else:
            public_key.verify(signature, manifest_bytes)
    except (InvalidSignature, ValueError) as e:
        errors.append(f"Signature verification failed: {str(e) or 'invalid signature'}")

    return errors

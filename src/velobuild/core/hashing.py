"""SHA-256 helpers shared by the cache, fetcher and packager."""

import hashlib
import re
from pathlib import Path

_SHA256_RE = re.compile(r"^[A-Fa-f0-9]{64}$")

CHUNK_SIZE = 65536


def is_sha256(value: str | None) -> bool:
    """Check whether a string is a hex SHA-256 digest."""
    return bool(value) and bool(_SHA256_RE.match(value.strip()))


def compute_file_hash(file_path: Path) -> str:
    """Compute SHA-256 hash of a file.

    Args:
        file_path: Path to file

    Returns:
        Hex-encoded SHA-256 hash
    """
    sha256 = hashlib.sha256()
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            sha256.update(chunk)
    return sha256.hexdigest()


def hash_bytes(data: bytes) -> str:
    """Hex SHA-256 of in-memory bytes."""
    return hashlib.sha256(data).hexdigest()

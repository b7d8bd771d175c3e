"""Content-addressed tool cache.

Fetched binaries are stored under their SHA-256::

    <cache>/sha256/<first two hex chars>/<hash>
    <cache>/tmp/                          in-progress downloads

A cached file is re-hashed on every read; a corrupted entry is evicted
and treated as a miss.
"""

import os
import shutil
import tempfile
import threading
from pathlib import Path

from pydantic import BaseModel

from velobuild.core import logging as log
from velobuild.core.hashing import compute_file_hash, is_sha256


class CacheStats(BaseModel):
    """Cache statistics."""

    cache_dir: str
    total_entries: int
    total_size_bytes: int
    temp_files: int


class ContentCache:
    """File cache keyed by SHA-256, safe to share between fetch workers."""

    OBJECTS_DIR = "sha256"
    TEMP_DIR = "tmp"

    def __init__(self, cache_dir: Path) -> None:
        """Initialize the cache.

        Args:
            cache_dir: Root directory of the cache (created on demand)
        """
        self.cache_dir = Path(cache_dir)
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @property
    def objects_dir(self) -> Path:
        return self.cache_dir / self.OBJECTS_DIR

    @property
    def temp_dir(self) -> Path:
        return self.cache_dir / self.TEMP_DIR

    def path_for(self, sha256: str) -> Path:
        """Location a hash is stored at, whether or not it exists."""
        if not is_sha256(sha256):
            raise ValueError(f"Not a SHA-256 digest: {sha256!r}")
        digest = sha256.lower()
        return self.objects_dir / digest[:2] / digest

    def _lock_for(self, sha256: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(sha256)
            if lock is None:
                lock = threading.Lock()
                self._locks[sha256] = lock
            return lock

    def contains(self, sha256: str) -> bool:
        """Whether an entry exists, without verifying it."""
        return self.path_for(sha256).is_file()

    def get(self, sha256: str) -> Path | None:
        """Return the verified cached file for a hash.

        Args:
            sha256: Expected SHA-256

        Returns:
            Path to the cached file, or None on a miss or a corrupted entry
        """
        digest = sha256.lower()
        path = self.path_for(digest)
        with self._lock_for(digest):
            if not path.is_file():
                return None
            actual = compute_file_hash(path)
            if actual != digest:
                log.warning(
                    "Evicting corrupted cache entry",
                    path=str(path),
                    expected=digest,
                    actual=actual,
                )
                path.unlink(missing_ok=True)
                return None
            return path

    def new_temp_file(self) -> Path:
        """Create an empty temp file for an in-progress download."""
        self.temp_dir.mkdir(parents=True, exist_ok=True)
        fd, name = tempfile.mkstemp(prefix="download-", suffix=".part", dir=self.temp_dir)
        os.close(fd)
        return Path(name)

    def put(self, temp_path: Path, sha256: str) -> Path:
        """Move a downloaded file into the cache under its hash.

        Idempotent: if a valid entry already exists the temp file is
        discarded and the existing entry returned.

        Args:
            temp_path: Fully written file whose hash is ``sha256``
            sha256: Hash of the file's contents

        Returns:
            Path of the cache entry
        """
        digest = sha256.lower()
        target = self.path_for(digest)
        with self._lock_for(digest):
            if target.is_file() and compute_file_hash(target) == digest:
                Path(temp_path).unlink(missing_ok=True)
                return target
            target.parent.mkdir(parents=True, exist_ok=True)
            os.replace(temp_path, target)
        log.debug("Cached tool binary", path=str(target))
        return target

    def discard(self, temp_path: Path | None) -> None:
        """Remove a temp file if it still exists."""
        if temp_path is not None:
            Path(temp_path).unlink(missing_ok=True)

    def stats(self) -> CacheStats:
        """Get cache statistics."""
        entries = 0
        size = 0
        if self.objects_dir.is_dir():
            for path in self.objects_dir.rglob("*"):
                if path.is_file():
                    entries += 1
                    size += path.stat().st_size
        temp_files = 0
        if self.temp_dir.is_dir():
            temp_files = sum(1 for p in self.temp_dir.iterdir() if p.is_file())
        return CacheStats(
            cache_dir=str(self.cache_dir),
            total_entries=entries,
            total_size_bytes=size,
            temp_files=temp_files,
        )

    def clear(self) -> int:
        """Remove every cached entry and temp file.

        Returns:
            Number of cached entries removed
        """
        removed = self.stats().total_entries
        for sub in (self.objects_dir, self.temp_dir):
            if sub.is_dir():
                shutil.rmtree(sub)
        return removed

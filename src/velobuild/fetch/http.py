"""HTTP downloads with retry, backoff and cancellation.

Network and HTTP errors (timeouts, connection/DNS failures, 4xx/5xx) are
retried with bounded exponential backoff. A cancellation event is checked
before each attempt, while waiting between attempts and between chunks.
"""

import hashlib
import re
import threading
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, TypeVar

import requests

from velobuild import __version__
from velobuild.core import logging as log
from velobuild.core.errors import DownloadError, OperationCancelled
from velobuild.core.hashing import CHUNK_SIZE

T = TypeVar("T")

USER_AGENT = f"velobuild/{__version__}"


@dataclass
class DownloadedFile:
    """A completed download."""

    path: Path
    sha256: str
    size_bytes: int
    attempts: int


class Downloader:
    """Streams URLs to disk while hashing them."""

    def __init__(
        self,
        session: requests.Session | None = None,
        timeout: float = 30.0,
        retries: int = 3,
        backoff_base: float = 0.5,
        backoff_max: float = 8.0,
        github_api_base: str = "https://api.github.com",
        cancel_event: threading.Event | None = None,
        chunk_size: int = CHUNK_SIZE,
    ) -> None:
        """Initialize the downloader.

        Args:
            session: requests session (a fresh one when omitted)
            timeout: Per-request timeout in seconds
            retries: Total attempts per URL
            backoff_base: Delay before the second attempt
            backoff_max: Upper bound for any delay
            github_api_base: GitHub API root for release lookups
            cancel_event: Set to abort downloads
            chunk_size: Streaming chunk size in bytes
        """
        self.session = session or requests.Session()
        self.session.headers.setdefault("User-Agent", USER_AGENT)
        self.timeout = timeout
        self.retries = max(1, retries)
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.github_api_base = github_api_base.rstrip("/")
        self.cancel_event = cancel_event or threading.Event()
        self.chunk_size = chunk_size

    def backoff_delay(self, attempt: int) -> float:
        """Delay after a failed ``attempt`` (1-based)."""
        return min(self.backoff_max, self.backoff_base * (2 ** (attempt - 1)))

    def _check_cancelled(self, item: str | None) -> None:
        if self.cancel_event.is_set():
            raise OperationCancelled(item)

    def _with_retries(
        self, url: str, tool: str | None, operation: Callable[[], T]
    ) -> tuple[T, int]:
        """Run ``operation`` until it succeeds or attempts run out.

        Returns:
            (operation result, attempts used)

        Raises:
            DownloadError: When every attempt failed
            OperationCancelled: If cancelled before or between attempts
        """
        reason = "no attempt made"
        status_code = None

        for attempt in range(1, self.retries + 1):
            self._check_cancelled(tool)
            try:
                return operation(), attempt
            except requests.HTTPError as e:
                status_code = e.response.status_code if e.response is not None else None
                reason = f"HTTP {status_code}"
            except requests.Timeout:
                reason = f"timed out after {self.timeout}s"
            except requests.RequestException as e:
                reason = str(e) or type(e).__name__

            log.debug(
                f"Attempt {attempt}/{self.retries} failed: {reason}", url=url, tool=tool
            )
            if attempt < self.retries and self.cancel_event.wait(self.backoff_delay(attempt)):
                raise OperationCancelled(tool)

        raise DownloadError(url, reason, attempts=self.retries, tool=tool, status_code=status_code)

    def _stream_to(self, url: str, dest: Path, tool: str | None) -> tuple[str, int]:
        sha256 = hashlib.sha256()
        size = 0
        with self.session.get(url, stream=True, timeout=self.timeout) as response:
            response.raise_for_status()
            with open(dest, "wb") as f:
                for chunk in response.iter_content(chunk_size=self.chunk_size):
                    self._check_cancelled(tool)
                    if not chunk:
                        continue
                    f.write(chunk)
                    sha256.update(chunk)
                    size += len(chunk)
        return sha256.hexdigest(), size

    def download(self, url: str, dest: Path, tool: str | None = None) -> DownloadedFile:
        """Download ``url`` into ``dest``, hashing the full byte stream.

        ``dest`` is truncated on every attempt. The caller owns it and
        removes it on failure.

        Args:
            url: Source URL
            dest: File to write
            tool: Tool name for log and error context

        Returns:
            DownloadedFile with the computed SHA-256

        Raises:
            DownloadError: When all attempts failed
            OperationCancelled: If the cancel event was set
        """
        log.debug("Downloading", url=url, tool=tool)
        (digest, size), attempts = self._with_retries(
            url, tool, lambda: self._stream_to(url, dest, tool)
        )
        return DownloadedFile(path=Path(dest), sha256=digest, size_bytes=size, attempts=attempts)

    def resolve_github_asset(self, project: str, asset_regex: str, tool: str | None = None) -> str:
        """Find a download URL in a project's latest GitHub release.

        Args:
            project: ``owner/repo``
            asset_regex: Regex matched (search) against asset names
            tool: Tool name for error context

        Returns:
            The matching asset's browser download URL

        Raises:
            DownloadError: If the release cannot be fetched or no asset matches
        """
        api_url = f"{self.github_api_base}/repos/{project}/releases/latest"

        def fetch_release() -> dict[str, Any]:
            response = self.session.get(
                api_url,
                headers={"Accept": "application/vnd.github+json"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            return response.json()

        release, attempts = self._with_retries(api_url, tool, fetch_release)

        try:
            pattern = re.compile(asset_regex)
        except re.error as e:
            raise DownloadError(api_url, f"invalid asset regex {asset_regex!r}: {e}", tool=tool)

        if not isinstance(release, dict):
            raise DownloadError(
                api_url,
                f"unexpected release response ({type(release).__name__}, expected an object)",
                attempts=attempts,
                tool=tool,
            )

        assets = release.get("assets")
        for asset in assets if isinstance(assets, list) else []:
            if not isinstance(asset, dict):
                continue
            name = asset.get("name") or ""
            url = asset.get("browser_download_url")
            if url and pattern.search(name):
                log.debug(
                    f"Resolved {project} release asset {name}",
                    tool=tool,
                    release=release.get("tag_name"),
                )
                return url

        raise DownloadError(
            api_url,
            f"no asset in release {release.get('tag_name', 'latest')} matches {asset_regex!r}",
            attempts=attempts,
            tool=tool,
        )

"""Concurrent tool fetching and verification.

Each pending ToolDependency is handed to one worker of a bounded thread
pool. The worker moves it to Downloading, does its I/O and returns an
outcome; the calling thread applies the terminal status, emits progress
and collects issues. Inputs are deduplicated, so no two workers ever share
a dependency.
"""

import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path

from velobuild.core import logging as log
from velobuild.core.errors import DownloadError, HashMismatchError, OperationCancelled
from velobuild.fetch.cache import ContentCache
from velobuild.fetch.http import Downloader
from velobuild.models.build import BuildIssue, error_issue, warning_issue
from velobuild.models.error import ErrorCode
from velobuild.models.tool import ToolDependency, ToolStatus

MAX_WORKERS = 32
CANCELLED_REASON = "cancelled"

# (item, status, message)
FetchProgress = Callable[[str, str, str], None]


@dataclass
class FetchOutcome:
    """What one worker did for one dependency."""

    dependency: ToolDependency
    started: bool = True
    status: ToolStatus | None = None
    resolved_url: str | None = None
    computed_hash: str | None = None
    local_path: str | None = None
    from_cache: bool = False
    issues: list[BuildIssue] = field(default_factory=list)


@dataclass
class FetchReport:
    """Result of fetching a batch of dependencies."""

    dependencies: list[ToolDependency] = field(default_factory=list)
    warnings: list[BuildIssue] = field(default_factory=list)
    errors: list[BuildIssue] = field(default_factory=list)
    cancelled: bool = False
    cache_hits: int = 0
    downloads: int = 0


class ToolFetcher:
    """Fetches tool binaries into the content cache."""

    def __init__(
        self,
        cache: ContentCache,
        downloader: Downloader,
        workers: int = 4,
        cancel_event: threading.Event | None = None,
    ) -> None:
        """Initialize the fetcher.

        Args:
            cache: Content-addressed cache receiving the binaries
            downloader: HTTP downloader (shares ``cancel_event``)
            workers: Concurrent downloads, clamped to 1..32
            cancel_event: Set to stop starting new downloads
        """
        self.cache = cache
        self.downloader = downloader
        self.workers = max(1, min(MAX_WORKERS, workers))
        self.cancel_event = cancel_event or downloader.cancel_event

    def fetch_all(
        self,
        dependencies: list[ToolDependency],
        progress: FetchProgress | None = None,
    ) -> FetchReport:
        """Fetch and verify every Pending dependency.

        Non-pending dependencies are passed through untouched. Issues are
        reported in dependency order; progress follows completion order.

        Args:
            dependencies: Deduplicated dependencies
            progress: Called as ``progress(item, status, message)``

        Returns:
            FetchReport
        """
        report = FetchReport(dependencies=list(dependencies))
        pending = [d for d in dependencies if d.status == ToolStatus.PENDING]
        if not pending:
            return report

        outcomes: dict[int, FetchOutcome] = {}
        with ThreadPoolExecutor(max_workers=self.workers) as executor:
            futures = {
                executor.submit(self._fetch_one, dep): index for index, dep in enumerate(pending)
            }
            for future in as_completed(futures):
                outcome = future.result()
                outcomes[futures[future]] = outcome
                self._apply(outcome, report)
                if progress is not None:
                    status, message = self._describe(outcome)
                    progress(outcome.dependency.label, status, message)

        for index in range(len(pending)):
            for issue in outcomes[index].issues:
                if issue.severity == "error":
                    report.errors.append(issue)
                else:
                    report.warnings.append(issue)

        report.cancelled = self.cancel_event.is_set()
        return report

    def _fetch_one(self, dep: ToolDependency) -> FetchOutcome:
        """Worker body: fetch one dependency. Never raises for per-tool failures."""
        if self.cancel_event.is_set():
            return FetchOutcome(dependency=dep, started=False)

        dep.transition(ToolStatus.DOWNLOADING)
        outcome = FetchOutcome(dependency=dep, resolved_url=dep.resolved_url)

        if dep.expected_hash:
            cached = self.cache.get(dep.expected_hash)
            if cached is not None:
                outcome.status = ToolStatus.VERIFIED
                outcome.computed_hash = dep.expected_hash
                outcome.local_path = str(cached)
                outcome.from_cache = True
                return outcome

        temp: Path | None = None
        try:
            if not outcome.resolved_url:
                outcome.resolved_url = self.downloader.resolve_github_asset(
                    dep.github_project or "", dep.github_asset_regex or "", tool=dep.tool_name
                )

            temp = self.cache.new_temp_file()
            downloaded = self.downloader.download(outcome.resolved_url, temp, tool=dep.tool_name)
            outcome.computed_hash = downloaded.sha256

            if dep.expected_hash and downloaded.sha256 != dep.expected_hash:
                outcome.status = ToolStatus.HASH_MISMATCH
                outcome.issues.append(
                    HashMismatchError(
                        dep.expected_hash,
                        downloaded.sha256,
                        url=outcome.resolved_url,
                        tool=dep.tool_name,
                    ).to_issue()
                )
                return outcome

            outcome.local_path = str(self.cache.put(temp, downloaded.sha256))
            if dep.expected_hash:
                outcome.status = ToolStatus.VERIFIED
            else:
                outcome.status = ToolStatus.UNVERIFIED
                outcome.issues.append(
                    warning_issue(
                        ErrorCode.UNVERIFIED_TOOL,
                        f"Tool {dep.label} has no expected SHA-256; "
                        f"downloaded bytes hash to {downloaded.sha256}",
                        artifact=", ".join(dep.artifacts),
                        tool=dep.tool_name,
                        url=outcome.resolved_url,
                        remediation="Add expected_hash to the tools block or the tool catalog",
                    )
                )
        except DownloadError as e:
            outcome.status = ToolStatus.UNREACHABLE
            outcome.issues.append(e.to_issue())
        except OperationCancelled:
            outcome.status = ToolStatus.UNREACHABLE
            outcome.issues.append(
                error_issue(
                    ErrorCode.CANCELLED,
                    f"Download of {dep.label} interrupted by cancellation",
                    tool=dep.tool_name,
                    url=outcome.resolved_url,
                )
            )
        except OSError as e:
            outcome.status = ToolStatus.UNREACHABLE
            outcome.issues.append(
                error_issue(
                    ErrorCode.IO_ERROR,
                    f"Cannot store {dep.label}: {e}",
                    tool=dep.tool_name,
                    path=str(self.cache.cache_dir),
                )
            )
        finally:
            self.cache.discard(temp)

        return outcome

    def _apply(self, outcome: FetchOutcome, report: FetchReport) -> None:
        dep = outcome.dependency
        if not outcome.started:
            dep.skip(CANCELLED_REASON)
            outcome.issues.append(
                warning_issue(
                    ErrorCode.CANCELLED,
                    f"Tool {dep.label} not fetched: build cancelled",
                    tool=dep.tool_name,
                    url=dep.resolved_url,
                )
            )
            return

        dep.resolved_url = outcome.resolved_url
        dep.computed_hash = outcome.computed_hash
        dep.local_path = outcome.local_path
        dep.transition(outcome.status)

        if outcome.from_cache:
            report.cache_hits += 1
        elif outcome.computed_hash is not None:
            report.downloads += 1

        if dep.status in (ToolStatus.HASH_MISMATCH, ToolStatus.UNREACHABLE):
            log.warning(f"Fetch failed for {dep.label}: {dep.status.value}", url=dep.resolved_url)

    @staticmethod
    def _describe(outcome: FetchOutcome) -> tuple[str, str]:
        dep = outcome.dependency
        if not outcome.started:
            return "skipped", CANCELLED_REASON
        if outcome.from_cache:
            return "cached", dep.local_path or ""
        if dep.status in (ToolStatus.HASH_MISMATCH, ToolStatus.UNREACHABLE):
            message = outcome.issues[0].message if outcome.issues else ""
            return dep.status.value, message
        return dep.status.value, dep.resolved_url or ""

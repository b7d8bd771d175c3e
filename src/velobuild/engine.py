"""Build engine.

Drives the pipeline for one invocation::

    read → extract → map (+ catalog) → fetch → package → export

Each ``run`` is a fresh, self-contained build: no state survives between
runs, results come back as a frozen BuildResult and progress is reported
through the caller's callback as numbered events.
"""

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

import requests

from velobuild.core import logging as log
from velobuild.core.config import BuildSettings
from velobuild.core.errors import (
    ArtifactStoreNotFoundError,
    CatalogError,
    ConfigError,
    PackagingError,
)
from velobuild.core.logging import format_duration
from velobuild.export.exporter import MappingExporter
from velobuild.fetch.cache import ContentCache
from velobuild.fetch.fetcher import ToolFetcher
from velobuild.fetch.http import Downloader
from velobuild.models.artifact import ArtifactDefinition
from velobuild.models.build import (
    BuildAction,
    BuildIssue,
    BuildResult,
    CollectionManifest,
    ProgressEvent,
    ProgressPhase,
    ToolSummary,
    error_issue,
    warning_issue,
)
from velobuild.models.error import ErrorCode
from velobuild.models.tool import FAILED_STATUSES, ToolReference
from velobuild.packaging.packager import CollectorPackager
from velobuild.packaging.signing import load_signing_key
from velobuild.resolve.catalog import ToolCatalog
from velobuild.resolve.extractor import ToolReferenceExtractor
from velobuild.resolve.mapper import DependencyMapper, MappingResult
from velobuild.store.reader import ArtifactStoreReader

ProgressCallback = Callable[[ProgressEvent], None]


@dataclass
class _Run:
    """Mutable state of one run; discarded when the BuildResult is built."""

    action: BuildAction
    artifacts: list[ArtifactDefinition] = field(default_factory=list)
    pairs: list[tuple[ArtifactDefinition, list[ToolReference]]] = field(default_factory=list)
    mapping: MappingResult = field(default_factory=MappingResult)
    warnings: list[BuildIssue] = field(default_factory=list)
    errors: list[BuildIssue] = field(default_factory=list)
    fatal: bool = False
    cancelled: bool = False
    manifest: CollectionManifest | None = None
    package_path: Path | None = None
    export_dir: Path | None = None
    sequence: int = 0


class BuildEngine:
    """Runs build actions against one set of settings."""

    def __init__(
        self,
        settings: BuildSettings,
        progress: ProgressCallback | None = None,
        cancel_event: threading.Event | None = None,
        session: requests.Session | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            settings: Build settings
            progress: Receives every ProgressEvent, in order
            cancel_event: Set from another thread to cancel a running build
            session: requests session for downloads (a new one per run when omitted)
        """
        self.settings = settings
        self.progress = progress
        self.cancel_event = cancel_event or threading.Event()
        self.session = session

    def run(self, action: BuildAction | str) -> BuildResult:
        """Run one action.

        Args:
            action: scan, resolve, download, build or export

        Returns:
            BuildResult; check ``success``
        """
        action = BuildAction(action)
        run = _Run(action=action)
        started = time.monotonic()

        self._scan(run)
        if not run.fatal and action != BuildAction.SCAN:
            self._resolve(run)
        if not run.fatal and action in (BuildAction.DOWNLOAD, BuildAction.BUILD):
            self._download(run)
        if not run.fatal and action == BuildAction.BUILD:
            self._package(run)
        if not run.fatal and action in (BuildAction.BUILD, BuildAction.EXPORT):
            self._export(run)

        result = self._result(run)
        log.info(
            f"{action.value}: {'ok' if result.success else 'failed'} "
            f"({result.artifact_count} artifacts, {result.tool_count} tools, "
            f"{len(result.warnings)} warnings, {len(result.errors)} errors) "
            f"in {format_duration(time.monotonic() - started)}"
        )
        return result

    def _emit(
        self, run: _Run, phase: ProgressPhase, item: str, status: str, message: str = ""
    ) -> None:
        if self.progress is None:
            return
        event = ProgressEvent(
            sequence=run.sequence, phase=phase, item=item, status=status, message=message
        )
        run.sequence += 1
        self.progress(event)

    def _scan(self, run: _Run) -> None:
        """Read and extract; the scan action also maps without resolving."""
        reader = ArtifactStoreReader(self.settings.artifact_root, include=self.settings.include)
        try:
            scan = reader.scan()
        except ArtifactStoreNotFoundError as e:
            if self.settings.allow_empty:
                run.warnings.append(e.to_issue("warning"))
            else:
                run.errors.append(e.to_issue())
                run.fatal = True
            return

        for parse_error in scan.parse_errors:
            run.warnings.append(parse_error.to_issue("warning"))
            self._emit(
                run,
                ProgressPhase.SCAN,
                parse_error.error.context.get("path", "?") if parse_error.error.context else "?",
                "failed",
                parse_error.error.message,
            )
        run.warnings.extend(scan.warnings)

        run.artifacts = scan.artifacts
        for artifact in run.artifacts:
            self._emit(run, ProgressPhase.SCAN, artifact.name, "loaded", artifact.raw_path)

        extractor = ToolReferenceExtractor()
        for artifact in run.artifacts:
            extraction = extractor.extract(artifact)
            run.warnings.extend(extraction.warnings)
            run.pairs.append((artifact, extraction.references))
            self._emit(
                run,
                ProgressPhase.EXTRACT,
                artifact.name,
                "extracted",
                f"{len(extraction.references)} tool reference(s)",
            )

        if run.action == BuildAction.SCAN:
            run.mapping = DependencyMapper().map(run.pairs, resolve=False)
            run.warnings.extend(run.mapping.warnings)

    def _resolve(self, run: _Run) -> None:
        """Map with catalog lookup and platform filtering."""
        catalog = None
        if self.settings.catalog_path is not None:
            try:
                catalog = ToolCatalog.load(self.settings.catalog_path)
            except CatalogError as e:
                run.errors.append(e.to_issue())
                run.fatal = True
                return

        mapper = DependencyMapper(catalog=catalog, target_platform=self.settings.platform)
        run.mapping = mapper.map(run.pairs)
        run.warnings.extend(run.mapping.warnings)

        for dep in run.mapping.dependencies:
            self._emit(
                run,
                ProgressPhase.RESOLVE,
                dep.label,
                dep.status.value,
                dep.skip_reason or dep.resolved_url or "",
            )

    def _download(self, run: _Run) -> None:
        settings = self.settings
        downloader = Downloader(
            session=self.session,
            timeout=settings.timeout_seconds,
            retries=settings.retries,
            backoff_base=settings.backoff_base_seconds,
            backoff_max=settings.backoff_max_seconds,
            github_api_base=settings.github_api_base,
            cancel_event=self.cancel_event,
        )
        fetcher = ToolFetcher(
            ContentCache(settings.cache_dir),
            downloader,
            workers=settings.workers,
            cancel_event=self.cancel_event,
        )

        report = fetcher.fetch_all(
            run.mapping.dependencies,
            progress=lambda item, status, message: self._emit(
                run, ProgressPhase.DOWNLOAD, item, status, message
            ),
        )
        run.warnings.extend(report.warnings)
        run.errors.extend(report.errors)
        run.cancelled = report.cancelled
        log.debug(
            f"Fetched tools: {report.cache_hits} from cache, {report.downloads} downloaded",
            cache_dir=str(settings.cache_dir),
        )

    def _package(self, run: _Run) -> None:
        settings = self.settings

        if run.cancelled:
            run.errors.append(
                error_issue(
                    ErrorCode.CANCELLED,
                    "Build cancelled; no package written",
                    path=str(settings.output_path),
                )
            )
            run.fatal = True
            return

        if not run.artifacts:
            run.warnings.append(
                warning_issue(
                    ErrorCode.NOTHING_TO_PACKAGE,
                    "No artifacts selected; no package written",
                    path=str(settings.output_path),
                )
            )
            return

        failed = [d.label for d in run.mapping.dependencies if d.status in FAILED_STATUSES]
        if settings.strict and failed:
            run.errors.append(
                error_issue(
                    ErrorCode.BUILD_FAILED_STRICT,
                    f"{len(failed)} tool(s) failed to download or verify; no package written "
                    f"(strict mode): {', '.join(failed)}",
                    path=str(settings.output_path),
                )
            )
            self._emit(run, ProgressPhase.PACKAGE, str(settings.output_path), "failed")
            return

        signing_key = None
        try:
            if settings.signing_key_path is not None:
                signing_key = load_signing_key(
                    settings.signing_key_path, settings.signing_algorithm
                )
            result = CollectorPackager().package(
                run.artifacts,
                run.mapping.dependencies,
                run.mapping.mapping,
                settings.output_path,
                platform=settings.platform,
                strict=settings.strict,
                signing_key=signing_key,
                overwrite=settings.overwrite,
            )
        except (PackagingError, ConfigError) as e:
            run.errors.append(e.to_issue())
            run.fatal = True
            self._emit(run, ProgressPhase.PACKAGE, str(settings.output_path), "failed", str(e))
            return

        run.warnings.extend(result.warnings)
        run.manifest = result.manifest
        run.package_path = result.package_path
        self._emit(
            run,
            ProgressPhase.PACKAGE,
            str(result.package_path),
            "written",
            f"{len(result.manifest.included_tools)} tools",
        )

    def _export(self, run: _Run) -> None:
        settings = self.settings
        if run.action == BuildAction.BUILD:
            if run.package_path is None:
                return
            directory = run.package_path.parent
        else:
            directory = settings.output_path

        exporter = MappingExporter(run.mapping.mapping, run.mapping.dependencies, run.manifest)
        try:
            written = exporter.write_all(directory)
        except OSError as e:
            run.errors.append(
                error_issue(
                    ErrorCode.IO_ERROR, f"Cannot write exports: {e}", path=str(directory)
                )
            )
            run.fatal = True
            return

        run.export_dir = directory
        log.debug(exporter.render_summary(), path=str(directory))
        for path in written:
            self._emit(run, ProgressPhase.EXPORT, str(path), "written")

    def _result(self, run: _Run) -> BuildResult:
        dependencies = run.mapping.dependencies
        failed = any(d.status in FAILED_STATUSES for d in dependencies)
        success = not run.fatal and not run.cancelled and not (self.settings.strict and failed)

        return BuildResult(
            action=run.action,
            success=success,
            artifact_count=len(run.artifacts),
            tool_count=len(dependencies),
            edge_count=len(run.mapping.mapping),
            warnings=run.warnings,
            errors=run.errors,
            tools=[ToolSummary.from_dependency(d) for d in dependencies],
            output_artifacts_path=str(run.export_dir) if run.export_dir else None,
            output_package_path=str(run.package_path) if run.package_path else None,
            build_id=run.manifest.build_id if run.manifest else None,
            cancelled=run.cancelled,
        )

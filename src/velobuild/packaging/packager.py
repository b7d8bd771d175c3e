"""Collector package assembly.

Builds a self-contained zip::

    collector.config.yaml
    artifacts/<artifact name>.yaml
    tools/<platform>/<file>
    build-manifest.json
    README.txt
    signature.json            (when signed)

The archive is written to a temp file next to the destination and moved
into place with ``os.replace``; on any failure the temp file is removed and
nothing appears at the destination.
"""

import os
import tempfile
import zipfile
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from urllib.parse import unquote, urlparse

from velobuild import __version__
from velobuild.core import logging as log
from velobuild.core.errors import PackagingError
from velobuild.core.hashing import compute_file_hash
from velobuild.models.artifact import ArtifactDefinition
from velobuild.models.build import (
    BuildIssue,
    CollectionManifest,
    IncludedTool,
    SkippedTool,
    generate_build_id,
    warning_issue,
)
from velobuild.models.error import ErrorCode
from velobuild.models.tool import ArtifactToolMapping, Platform, ToolDependency, ToolStatus
from velobuild.packaging.collector_config import build_collector_config, render_collector_config
from velobuild.packaging.signing import SignatureInfo, SigningKey, sign_manifest

CONFIG_NAME = "collector.config.yaml"
MANIFEST_NAME = "build-manifest.json"
SIGNATURE_NAME = "signature.json"
README_NAME = "README.txt"
ARTIFACTS_DIR = "artifacts"
TOOLS_DIR = "tools"

README_TEMPLATE = """\
Velociraptor offline collector package
======================================

Build:     {build_id}
Platform:  {platform}
Artifacts: {artifact_count}
Tools:     {tool_count} ({unverified} unverified)

Contents
--------
{config_name}   collector configuration (artifacts and parameters)
{artifacts_dir}/               artifact definitions
{tools_dir}/<platform>/        bundled tool binaries, served locally
{manifest_name}     what was packaged, with SHA-256 of every tool

Check the package before deploying it:

    velobuild verify <package.zip> [--public-key KEY]

Tools flagged "verified: false" in {config_name} had no
expected hash and were included without verification.
"""


@dataclass
class PackageResult:
    """Result of building a collector package."""

    manifest: CollectionManifest
    package_path: Path
    warnings: list[BuildIssue] = field(default_factory=list)
    signature: SignatureInfo | None = None


def _safe_name(name: str) -> bool:
    return bool(name) and not name.startswith(".") and not any(c in name for c in "/\\\0")


def tool_filename(dep: ToolDependency) -> str:
    """File name for a tool inside the package: the URL's basename, else the tool name.

    The URL path is unquoted before the basename is taken, and names that
    could escape ``tools/<platform>/`` fall back to the tool name.
    """
    if dep.resolved_url:
        name = PurePosixPath(unquote(urlparse(dep.resolved_url).path)).name
        if _safe_name(name):
            return name
    return _sanitized(dep.tool_name)


def _sanitized(name: str) -> str:
    name = name.strip()
    for sep in ("/", "\\", "\0"):
        name = name.replace(sep, "_")
    return name.lstrip(".") or "tool"


class CollectorPackager:
    """Assembles offline collector packages."""

    def __init__(self, velobuild_version: str = __version__) -> None:
        self.velobuild_version = velobuild_version

    def package(
        self,
        selected: list[ArtifactDefinition],
        dependencies: list[ToolDependency],
        mapping: ArtifactToolMapping,
        output_path: Path,
        platform: Platform | None = None,
        strict: bool = True,
        signing_key: SigningKey | None = None,
        overwrite: bool = False,
        build_id: str | None = None,
    ) -> PackageResult:
        """Build the collector package.

        Args:
            selected: Artifacts to package, in order
            dependencies: Fetched dependencies of those artifacts
            mapping: Artifact → tool edges
            output_path: Destination zip
            platform: Collector platform (``any`` when None)
            strict: Only include Verified tools
            signing_key: Sign the manifest when given
            overwrite: Replace an existing destination
            build_id: Override the generated build id

        Returns:
            PackageResult with the written manifest

        Raises:
            PackagingError: If the package cannot be written; no output is left behind
        """
        output_path = Path(output_path)
        if output_path.exists() and not overwrite:
            raise PackagingError(
                f"Output {output_path} already exists; pass --force to replace it",
                path=str(output_path),
            )

        selected_names = [a.name for a in selected]
        warnings: list[BuildIssue] = []
        included, skipped, sources = self._select_tools(
            dependencies, mapping, selected_names, strict, warnings
        )

        manifest = CollectionManifest(
            build_id=build_id or generate_build_id(),
            selected_artifacts=selected_names,
            included_tools=included,
            skipped_tools=skipped,
            platform=platform or Platform.ANY,
            output_path=str(output_path),
            strict=strict,
            velobuild_version=self.velobuild_version,
        )
        manifest_bytes = manifest.model_dump_json(indent=2).encode("utf-8")

        signature = None
        if signing_key is not None:
            try:
                signature = sign_manifest(signing_key, manifest_bytes)
            except (ValueError, TypeError) as e:
                raise PackagingError(f"Cannot sign manifest: {e}", path=str(output_path))

        self._write_atomically(output_path, selected, manifest, manifest_bytes, sources, signature)

        log.info(
            f"Wrote collector {output_path} "
            f"({len(selected_names)} artifacts, {len(included)} tools)"
        )
        return PackageResult(
            manifest=manifest, package_path=output_path, warnings=warnings, signature=signature
        )

    def _select_tools(
        self,
        dependencies: list[ToolDependency],
        mapping: ArtifactToolMapping,
        selected_names: list[str],
        strict: bool,
        warnings: list[BuildIssue],
    ) -> tuple[list[IncludedTool], list[SkippedTool], dict[str, Path]]:
        """Decide which tools go into the package.

        Returns:
            (included tools, skipped tools, archive path → cached file)
        """
        included: list[IncludedTool] = []
        skipped: list[SkippedTool] = []
        sources: dict[str, Path] = {}
        used_names: set[str] = set()
        selected_set = set(selected_names)

        for dep in dependencies:
            artifacts = [a for a in mapping.artifacts_for(dep.key) if a in selected_set]
            if not artifacts:
                artifacts = [a for a in dep.artifacts if a in selected_set]

            if dep.status == ToolStatus.SKIPPED:
                skipped.append(self._skipped(dep, dep.skip_reason or "skipped"))
                continue

            include = dep.status == ToolStatus.VERIFIED or (
                dep.status == ToolStatus.UNVERIFIED and not strict
            )
            if not include:
                reason = self._exclusion_reason(dep, strict)
                for artifact in artifacts or [None]:
                    warnings.append(
                        warning_issue(
                            ErrorCode.TOOL_EXCLUDED,
                            f"Tool {dep.label} excluded from the package: {reason}",
                            artifact=artifact,
                            tool=dep.tool_name,
                            url=dep.resolved_url,
                        )
                    )
                # Failed downloads never appear in a manifest.
                if dep.status not in (ToolStatus.HASH_MISMATCH, ToolStatus.UNREACHABLE):
                    skipped.append(self._skipped(dep, reason))
                continue

            if dep.status == ToolStatus.UNVERIFIED:
                warnings.append(
                    warning_issue(
                        ErrorCode.UNVERIFIED_TOOL_INCLUDED,
                        f"Unverified tool {dep.label} included (permissive mode)",
                        artifact=", ".join(artifacts) or None,
                        tool=dep.tool_name,
                        url=dep.resolved_url,
                    )
                )

            local = Path(dep.local_path) if dep.local_path else None
            if local is None or not local.is_file():
                raise PackagingError(
                    f"Fetched file for {dep.label} is missing from the cache", path=dep.local_path
                )
            actual = compute_file_hash(local)
            if actual != dep.computed_hash:
                raise PackagingError(
                    f"Cached file for {dep.label} changed since download "
                    f"(expected {dep.computed_hash}, got {actual})",
                    path=str(local),
                )

            archive_path = self._archive_path(dep, used_names)
            sources[archive_path] = local
            included.append(
                IncludedTool(
                    tool_name=dep.tool_name,
                    platform=dep.platform,
                    version_hint=dep.version_hint,
                    status=dep.status,
                    source_url=dep.resolved_url,
                    sha256=actual,
                    archive_path=archive_path,
                    size_bytes=local.stat().st_size,
                    artifacts=artifacts,
                )
            )

        return included, skipped, sources

    @staticmethod
    def _exclusion_reason(dep: ToolDependency, strict: bool) -> str:
        if dep.status == ToolStatus.UNVERIFIED and strict:
            return "no expected hash (strict mode)"
        if dep.status == ToolStatus.HASH_MISMATCH:
            return "hash mismatch"
        if dep.status == ToolStatus.UNREACHABLE:
            return "download failed"
        return "not fetched"

    @staticmethod
    def _skipped(dep: ToolDependency, reason: str) -> SkippedTool:
        return SkippedTool(
            tool_name=dep.tool_name,
            platform=dep.platform,
            version_hint=dep.version_hint,
            reason=reason,
        )

    @staticmethod
    def _archive_path(dep: ToolDependency, used: set[str]) -> str:
        base = f"{TOOLS_DIR}/{dep.platform.value}"
        name = tool_filename(dep)
        prefix = _sanitized(dep.tool_name)
        candidate = f"{base}/{name}"
        if candidate in used:
            candidate = f"{base}/{prefix}-{name}"
            counter = 2
            while candidate in used:
                candidate = f"{base}/{prefix}-{counter}-{name}"
                counter += 1
        used.add(candidate)
        return candidate

    def _write_atomically(
        self,
        output_path: Path,
        selected: list[ArtifactDefinition],
        manifest: CollectionManifest,
        manifest_bytes: bytes,
        sources: dict[str, Path],
        signature: SignatureInfo | None,
    ) -> None:
        tmp_path: Path | None = None
        try:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            fd, name = tempfile.mkstemp(
                prefix=f".{output_path.name}.", suffix=".tmp", dir=output_path.parent
            )
            os.close(fd)
            tmp_path = Path(name)

            with zipfile.ZipFile(
                tmp_path, "w", compression=zipfile.ZIP_DEFLATED, strict_timestamps=False
            ) as zf:
                config = build_collector_config(
                    manifest.build_id, manifest.platform, selected, manifest.included_tools
                )
                zf.writestr(CONFIG_NAME, render_collector_config(config))

                for artifact in selected:
                    zf.write(artifact.raw_path, f"{ARTIFACTS_DIR}/{artifact.name}.yaml")

                for archive_path, source in sources.items():
                    zf.write(source, archive_path)

                zf.writestr(MANIFEST_NAME, manifest_bytes)
                zf.writestr(README_NAME, self._readme(manifest))
                if signature is not None:
                    zf.writestr(SIGNATURE_NAME, signature.model_dump_json(indent=2))

            os.replace(tmp_path, output_path)
            tmp_path = None
        except (OSError, ValueError, zipfile.LargeZipFile) as e:
            raise PackagingError(f"Cannot write package {output_path}: {e}", path=str(output_path))
        finally:
            if tmp_path is not None:
                tmp_path.unlink(missing_ok=True)

    @staticmethod
    def _readme(manifest: CollectionManifest) -> str:
        unverified = sum(1 for t in manifest.included_tools if t.status == ToolStatus.UNVERIFIED)
        return README_TEMPLATE.format(
            build_id=manifest.build_id,
            platform=manifest.platform.value,
            artifact_count=len(manifest.selected_artifacts),
            tool_count=len(manifest.included_tools),
            unverified=unverified,
            config_name=CONFIG_NAME,
            artifacts_dir=ARTIFACTS_DIR,
            tools_dir=TOOLS_DIR,
            manifest_name=MANIFEST_NAME,
        )

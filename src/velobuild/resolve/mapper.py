"""Dependency mapping.

Turns per-artifact tool references into deduplicated ToolDependencies and
the artifact → tool edge set, resolving sources from the curated catalog
and filtering by target platform.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field

from velobuild.core import logging as log
from velobuild.core.errors import ConflictWarning, UnresolvedToolReference
from velobuild.models.artifact import ArtifactDefinition
from velobuild.models.build import BuildIssue, warning_issue
from velobuild.models.error import ErrorCode
from velobuild.models.tool import (
    ArtifactToolMapping,
    MappingEdge,
    Platform,
    ToolDependency,
    ToolKey,
    ToolReference,
    ToolStatus,
)
from velobuild.resolve.catalog import ToolCatalog

PLATFORM_MISMATCH_REASON = "platform mismatch"
UNRESOLVED_REASON = "unresolved source"


@dataclass
class MappingResult:
    """Deduplicated dependencies, their edges and mapping warnings."""

    dependencies: list[ToolDependency] = field(default_factory=list)
    mapping: ArtifactToolMapping = field(default_factory=ArtifactToolMapping)
    warnings: list[BuildIssue] = field(default_factory=list)

    def active(self) -> list[ToolDependency]:
        """Dependencies still Pending, i.e. the ones to fetch."""
        return [d for d in self.dependencies if d.status == ToolStatus.PENDING]


def platform_matches(tool_platform: Platform, target: Platform | None) -> bool:
    """Whether a tool for ``tool_platform`` belongs in a ``target`` build."""
    if target is None or target == Platform.ANY:
        return True
    return tool_platform in (Platform.ANY, target)


class DependencyMapper:
    """Builds the dependency set from extracted references."""

    def __init__(
        self,
        catalog: ToolCatalog | None = None,
        target_platform: Platform | None = None,
    ) -> None:
        """Initialize the mapper.

        Args:
            catalog: Curated sources for tools declared without a URL
            target_platform: Build platform; other-platform tools are skipped
        """
        self.catalog = catalog
        self.target_platform = target_platform

    def map(
        self,
        pairs: Iterable[tuple[ArtifactDefinition, list[ToolReference]]],
        resolve: bool = True,
    ) -> MappingResult:
        """Map artifacts to deduplicated tool dependencies.

        Mapping the same input twice yields equal results.

        Args:
            pairs: (artifact, references) in artifact order
            resolve: Apply catalog lookup and platform filtering; when False
                every dependency stays Pending

        Returns:
            MappingResult
        """
        result = MappingResult()
        index: dict[ToolKey, ToolDependency] = {}
        # Artifact that supplied the current URL / hash of each dependency.
        url_owner: dict[ToolKey, str] = {}
        hash_owner: dict[ToolKey, str] = {}

        for artifact, references in pairs:
            for ref in references:
                key = ref.key
                result.mapping.add(
                    MappingEdge(
                        artifact=artifact.name,
                        tool=ref.tool_name,
                        platform=ref.platform,
                        version_hint=ref.version_hint,
                    )
                )

                dep = index.get(key)
                if dep is None:
                    dep = ToolDependency(
                        tool_name=ref.tool_name,
                        platform=ref.platform,
                        version_hint=ref.version_hint,
                        resolved_url=ref.source_url,
                        expected_hash=ref.expected_hash,
                        artifacts=[artifact.name],
                        github_project=ref.github_project,
                        github_asset_regex=ref.github_asset_regex,
                    )
                    index[key] = dep
                    result.dependencies.append(dep)
                    if ref.source_url:
                        url_owner[key] = artifact.name
                    if ref.expected_hash:
                        hash_owner[key] = artifact.name
                    continue

                if artifact.name not in dep.artifacts:
                    dep.artifacts.append(artifact.name)
                self._merge(dep, ref, url_owner, hash_owner, result.warnings)

        if resolve:
            for dep in result.dependencies:
                self._resolve(dep, result.warnings)

        log.debug(
            f"Mapped {len(result.dependencies)} tools across {len(result.mapping)} edges",
            active=len(result.active()),
        )
        return result

    def _merge(
        self,
        dep: ToolDependency,
        ref: ToolReference,
        url_owner: dict[ToolKey, str],
        hash_owner: dict[ToolKey, str],
        warnings: list[BuildIssue],
    ) -> None:
        key = dep.key

        if ref.source_url:
            if not dep.resolved_url:
                dep.resolved_url = ref.source_url
                url_owner[key] = ref.artifact_name
            elif dep.resolved_url != ref.source_url:
                warnings.append(
                    ConflictWarning(
                        dep.tool_name,
                        "url",
                        url_owner[key],
                        dep.resolved_url,
                        ref.artifact_name,
                        ref.source_url,
                    ).to_issue("warning")
                )

        if ref.expected_hash:
            if not dep.expected_hash:
                dep.expected_hash = ref.expected_hash
                hash_owner[key] = ref.artifact_name
            elif dep.expected_hash != ref.expected_hash:
                warnings.append(
                    ConflictWarning(
                        dep.tool_name,
                        "expected_hash",
                        hash_owner[key],
                        dep.expected_hash,
                        ref.artifact_name,
                        ref.expected_hash,
                    ).to_issue("warning")
                )

        if not dep.github_project and ref.github_project:
            dep.github_project = ref.github_project
            dep.github_asset_regex = ref.github_asset_regex

    def _resolve(self, dep: ToolDependency, warnings: list[BuildIssue]) -> None:
        """Apply platform filtering and catalog resolution to one dependency."""
        if not platform_matches(dep.platform, self.target_platform):
            dep.skip(PLATFORM_MISMATCH_REASON)
            warnings.append(
                warning_issue(
                    ErrorCode.PLATFORM_MISMATCH,
                    f"Tool {dep.label} skipped for {self.target_platform.value} build",
                    artifact=", ".join(dep.artifacts),
                    tool=dep.tool_name,
                )
            )
            return

        if not dep.resolved_url and self.catalog is not None:
            entry = self.catalog.lookup(dep.tool_name, dep.platform, dep.version_hint)
            if entry is not None:
                if entry.url:
                    dep.resolved_url = entry.url
                if not dep.expected_hash and entry.sha256:
                    dep.expected_hash = entry.sha256
                if not dep.github_project and entry.github_project:
                    dep.github_project = entry.github_project
                    dep.github_asset_regex = entry.github_asset_regex
                log.debug(f"Resolved {dep.label} from catalog", url=dep.resolved_url)

        if not dep.resolved_url and not (dep.github_project and dep.github_asset_regex):
            dep.skip(UNRESOLVED_REASON)
            warnings.append(
                UnresolvedToolReference(dep.tool_name, list(dep.artifacts)).to_issue("warning")
            )

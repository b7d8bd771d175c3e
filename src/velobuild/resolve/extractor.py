"""Tool reference extraction from artifact definitions.

Tools are discovered from structured hints only:

- the artifact's ``tools:`` metadata block, and
- parameters typed ``tool`` or named ``...ToolName`` whose default holds
  the tool name.

Query bodies are never scanned, so a tool name that merely appears in VQL
text is not a dependency.
"""

from dataclasses import dataclass, field

from velobuild.core import logging as log
from velobuild.core.hashing import is_sha256
from velobuild.models.artifact import ArtifactDefinition, ArtifactParameter, DeclaredTool
from velobuild.models.build import BuildIssue, warning_issue
from velobuild.models.error import ErrorCode
from velobuild.models.tool import Platform, ReferenceOrigin, ToolReference

TOOL_PARAMETER_TYPE = "tool"
TOOL_PARAMETER_SUFFIX = "ToolName"

_NAMESPACE_PLATFORMS = {
    "windows": Platform.WINDOWS,
    "linux": Platform.LINUX,
    "macos": Platform.DARWIN,
    "darwin": Platform.DARWIN,
}

_PLATFORM_ALIASES = {
    "windows": Platform.WINDOWS,
    "win": Platform.WINDOWS,
    "linux": Platform.LINUX,
    "darwin": Platform.DARWIN,
    "macos": Platform.DARWIN,
    "osx": Platform.DARWIN,
    "any": Platform.ANY,
    "all": Platform.ANY,
}


def infer_platform(artifact_name: str) -> Platform:
    """Infer a tool platform from the artifact's top-level namespace."""
    namespace = artifact_name.split(".", 1)[0].lower()
    return _NAMESPACE_PLATFORMS.get(namespace, Platform.ANY)


def parse_platform(value: str | None) -> Platform | None:
    """Parse a declared platform name; None if absent or unknown."""
    if not value:
        return None
    return _PLATFORM_ALIASES.get(value.strip().lower())


def is_tool_parameter(parameter: ArtifactParameter) -> bool:
    """Whether a parameter names a tool by type or naming convention."""
    return (
        parameter.type.strip().lower() == TOOL_PARAMETER_TYPE
        or parameter.name.endswith(TOOL_PARAMETER_SUFFIX)
    )


@dataclass
class ExtractionResult:
    """Tool references of one artifact plus extraction warnings."""

    artifact: ArtifactDefinition
    references: list[ToolReference] = field(default_factory=list)
    warnings: list[BuildIssue] = field(default_factory=list)


class ToolReferenceExtractor:
    """Extracts ToolReferences from an ArtifactDefinition."""

    def extract(self, definition: ArtifactDefinition) -> ExtractionResult:
        """Extract the tools an artifact declares.

        Args:
            definition: Loaded artifact definition

        Returns:
            ExtractionResult; references keep declaration order and are
            unique per dedup key within the artifact
        """
        result = ExtractionResult(artifact=definition)
        default_platform = infer_platform(definition.name)
        seen: set = set()
        declared_names: set[str] = set()

        for tool in definition.tools:
            reference = self._from_tools_block(definition, tool, default_platform, result)
            declared_names.add(tool.name.strip().lower())
            if reference.key not in seen:
                seen.add(reference.key)
                result.references.append(reference)

        for parameter in definition.parameters:
            if not is_tool_parameter(parameter):
                continue
            tool_name = (parameter.default or "").strip()
            if not tool_name:
                log.debug(
                    f"Tool parameter {parameter.name} has no default; nothing to resolve",
                    artifact=definition.name,
                )
                continue
            if tool_name.lower() in declared_names:
                continue
            reference = ToolReference(
                tool_name=tool_name,
                platform=default_platform,
                artifact_name=definition.name,
                origin=ReferenceOrigin.PARAMETER,
            )
            if reference.key not in seen:
                seen.add(reference.key)
                result.references.append(reference)

        return result

    def _from_tools_block(
        self,
        definition: ArtifactDefinition,
        tool: DeclaredTool,
        default_platform: Platform,
        result: ExtractionResult,
    ) -> ToolReference:
        platform = parse_platform(tool.platform)
        if platform is None:
            if tool.platform:
                result.warnings.append(
                    warning_issue(
                        ErrorCode.PARSE_ERROR,
                        f"Unknown platform '{tool.platform}' for tool {tool.name}; "
                        f"using {default_platform.value}",
                        artifact=definition.name,
                        tool=tool.name,
                    )
                )
            platform = default_platform

        expected_hash = tool.expected_hash
        if expected_hash and not is_sha256(expected_hash):
            result.warnings.append(
                warning_issue(
                    ErrorCode.INVALID_HASH,
                    f"Ignoring malformed expected_hash '{expected_hash}' for tool {tool.name}",
                    artifact=definition.name,
                    tool=tool.name,
                    url=tool.url,
                )
            )
            expected_hash = None

        return ToolReference(
            tool_name=tool.name.strip(),
            platform=platform,
            version_hint=tool.version or None,
            source_url=tool.url or None,
            expected_hash=expected_hash,
            artifact_name=definition.name,
            origin=ReferenceOrigin.TOOLS_BLOCK,
            github_project=tool.github_project,
            github_asset_regex=tool.github_asset_regex,
        )

"""Pydantic models for velobuild."""

from velobuild.models.artifact import (
    ArtifactDefinition,
    ArtifactParameter,
    ArtifactSource,
    ArtifactType,
    DeclaredTool,
)
from velobuild.models.build import (
    BuildAction,
    BuildIssue,
    BuildResult,
    CollectionManifest,
    IncludedTool,
    ProgressEvent,
    ProgressPhase,
    SkippedTool,
    ToolSummary,
)
from velobuild.models.error import ErrorCode, StructuredError
from velobuild.models.tool import (
    ArtifactToolMapping,
    MappingEdge,
    Platform,
    ReferenceOrigin,
    ToolDependency,
    ToolReference,
    ToolStatus,
)

__all__ = [
    "ArtifactDefinition",
    "ArtifactParameter",
    "ArtifactSource",
    "ArtifactToolMapping",
    "ArtifactType",
    "BuildAction",
    "BuildIssue",
    "BuildResult",
    "CollectionManifest",
    "DeclaredTool",
    "ErrorCode",
    "IncludedTool",
    "MappingEdge",
    "Platform",
    "ProgressEvent",
    "ProgressPhase",
    "ReferenceOrigin",
    "SkippedTool",
    "StructuredError",
    "ToolDependency",
    "ToolReference",
    "ToolStatus",
    "ToolSummary",
]

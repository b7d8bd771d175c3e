"""Build manifest, result, issue and progress models."""

import secrets
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field

from velobuild.models.tool import Platform, ToolDependency, ToolStatus


class BuildAction(str, Enum):
    """Invocation modes of the build engine."""

    SCAN = "scan"
    RESOLVE = "resolve"
    DOWNLOAD = "download"
    BUILD = "build"
    EXPORT = "export"


class ProgressPhase(str, Enum):
    """Pipeline phase a progress event belongs to."""

    SCAN = "scan"
    EXTRACT = "extract"
    RESOLVE = "resolve"
    DOWNLOAD = "download"
    PACKAGE = "package"
    EXPORT = "export"


class ProgressEvent(BaseModel):
    """A discrete, ordered progress notification."""

    sequence: int = Field(..., ge=0, description="Monotonic event number within a run")
    phase: ProgressPhase = Field(..., description="Pipeline phase")
    item: str = Field(..., description="Artifact, tool or file the event is about")
    status: str = Field(..., description="Outcome or state (loaded, verified, ...)")
    message: str = Field(default="", description="Human-readable detail")

    model_config = {"frozen": True}


class BuildIssue(BaseModel):
    """A warning or error with enough context to act on it."""

    severity: Literal["warning", "error"] = Field(..., description="Issue severity")
    code: str = Field(..., pattern=r"^[A-Z][A-Z0-9_]*$", description="Issue code")
    message: str = Field(..., description="Human-readable message")
    artifact: str | None = Field(default=None, description="Artifact involved")
    tool: str | None = Field(default=None, description="Tool involved")
    url: str | None = Field(default=None, description="URL involved")
    path: str | None = Field(default=None, description="File involved")
    remediation: str | None = Field(default=None, description="Suggested fix")

    model_config = {"frozen": True}

    def __str__(self) -> str:
        parts = [f"[{self.code}] {self.message}"]
        for label, value in (
            ("artifact", self.artifact),
            ("tool", self.tool),
            ("url", self.url),
            ("path", self.path),
        ):
            if value:
                parts.append(f"{label}={value}")
        return " ".join(parts)


def warning_issue(code: str, message: str, **context: Any) -> BuildIssue:
    """Create a warning BuildIssue."""
    return BuildIssue(severity="warning", code=code, message=message, **context)


def error_issue(code: str, message: str, **context: Any) -> BuildIssue:
    """Create an error BuildIssue."""
    return BuildIssue(severity="error", code=code, message=message, **context)


class IncludedTool(BaseModel):
    """A tool binary packaged into a collector."""

    tool_name: str = Field(..., description="Tool name")
    platform: Platform = Field(..., description="Tool platform")
    version_hint: str | None = Field(default=None, description="Version hint")
    status: ToolStatus = Field(..., description="Verified, or Unverified in permissive mode")
    source_url: str | None = Field(default=None, description="Where the tool was fetched from")
    sha256: str = Field(..., pattern=r"^[a-f0-9]{64}$", description="SHA-256 of packaged bytes")
    archive_path: str = Field(..., description="Path inside the package")
    size_bytes: int = Field(..., ge=0, description="Size in bytes")
    artifacts: list[str] = Field(default_factory=list, description="Artifacts needing it")

    model_config = {"frozen": True}


class SkippedTool(BaseModel):
    """A tool deliberately left out of a collector."""

    tool_name: str
    platform: Platform
    version_hint: str | None = None
    reason: str

    model_config = {"frozen": True}


class CollectionManifest(BaseModel):
    """Authoritative record of what one build packaged. Immutable."""

    manifest_version: str = Field(default="1.0.0", description="Manifest schema version")
    build_id: str = Field(..., description="Timestamp-based build identifier")
    selected_artifacts: list[str] = Field(..., description="Packaged artifacts, ordered")
    included_tools: list[IncludedTool] = Field(
        default_factory=list, description="Packaged tool binaries, ordered"
    )
    skipped_tools: list[SkippedTool] = Field(
        default_factory=list, description="Tools left out on purpose"
    )
    platform: Platform = Field(..., description="Target platform of the collector")
    output_path: str = Field(..., description="Final package path")
    strict: bool = Field(..., description="Whether strict verification was enforced")
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC), description="Creation timestamp"
    )
    velobuild_version: str = Field(..., description="Version of the build engine")

    model_config = {"frozen": True}


def generate_build_id(now: datetime | None = None) -> str:
    """Build a timestamp-based build id like ``20261019T120501Z-3f9a``."""
    now = now or datetime.now(UTC)
    return f"{now.strftime('%Y%m%dT%H%M%SZ')}-{secrets.token_hex(2)}"


class ToolSummary(BaseModel):
    """Final state of one dependency as reported to the caller."""

    tool_name: str
    platform: Platform
    version_hint: str | None = None
    status: ToolStatus
    resolved_url: str | None = None
    expected_hash: str | None = None
    computed_hash: str | None = None
    skip_reason: str | None = None
    artifacts: list[str] = Field(default_factory=list)

    model_config = {"frozen": True}

    @classmethod
    def from_dependency(cls, dep: ToolDependency) -> "ToolSummary":
        """Snapshot a dependency."""
        return cls(
            tool_name=dep.tool_name,
            platform=dep.platform,
            version_hint=dep.version_hint,
            status=dep.status,
            resolved_url=dep.resolved_url,
            expected_hash=dep.expected_hash,
            computed_hash=dep.computed_hash,
            skip_reason=dep.skip_reason,
            artifacts=list(dep.artifacts),
        )


class BuildResult(BaseModel):
    """Outcome of one engine invocation.

    Callers must read ``success``; the absence of an exception says nothing.
    """

    action: BuildAction = Field(..., description="Action that ran")
    success: bool = Field(..., description="Whether the action succeeded")
    artifact_count: int = Field(default=0, ge=0, description="Artifacts selected")
    tool_count: int = Field(default=0, ge=0, description="Unique tool dependencies")
    edge_count: int = Field(default=0, ge=0, description="Artifact → tool edges")
    warnings: list[BuildIssue] = Field(default_factory=list, description="Ordered warnings")
    errors: list[BuildIssue] = Field(default_factory=list, description="Ordered errors")
    tools: list[ToolSummary] = Field(default_factory=list, description="Every tool's final state")
    output_artifacts_path: str | None = Field(
        default=None, description="Directory holding mapping/manifest exports"
    )
    output_package_path: str | None = Field(default=None, description="Built package path")
    build_id: str | None = Field(default=None, description="Build id when a package was built")
    cancelled: bool = Field(default=False, description="Whether the run was cancelled")

    model_config = {"frozen": True}

"""Tool reference, dependency and mapping models.

A ToolReference is what an artifact declares. A ToolDependency is the
deduplicated, resolved unit the fetcher works on, keyed by
(tool name, platform, version hint). The ArtifactToolMapping records which
artifact needs which tool.
"""

from collections.abc import Iterator
from enum import Enum

from pydantic import BaseModel, Field, field_validator


SHA256_PATTERN = r"^[a-f0-9]{64}$"


class Platform(str, Enum):
    """Platform a tool binary targets."""

    WINDOWS = "windows"
    LINUX = "linux"
    DARWIN = "darwin"
    ANY = "any"


class ToolStatus(str, Enum):
    """Lifecycle status of a ToolDependency."""

    PENDING = "pending"
    DOWNLOADING = "downloading"
    VERIFIED = "verified"
    UNVERIFIED = "unverified"
    HASH_MISMATCH = "hash_mismatch"
    UNREACHABLE = "unreachable"
    SKIPPED = "skipped"


class ReferenceOrigin(str, Enum):
    """Structured hint a tool reference was extracted from."""

    TOOLS_BLOCK = "tools_block"
    PARAMETER = "parameter"


# Allowed forward transitions; anything else is rejected.
_TRANSITIONS: dict[ToolStatus, frozenset[ToolStatus]] = {
    ToolStatus.PENDING: frozenset({ToolStatus.DOWNLOADING, ToolStatus.SKIPPED}),
    ToolStatus.DOWNLOADING: frozenset(
        {
            ToolStatus.VERIFIED,
            ToolStatus.UNVERIFIED,
            ToolStatus.HASH_MISMATCH,
            ToolStatus.UNREACHABLE,
        }
    ),
}

TERMINAL_STATUSES = frozenset(
    {
        ToolStatus.VERIFIED,
        ToolStatus.UNVERIFIED,
        ToolStatus.HASH_MISMATCH,
        ToolStatus.UNREACHABLE,
        ToolStatus.SKIPPED,
    }
)

FAILED_STATUSES = frozenset({ToolStatus.HASH_MISMATCH, ToolStatus.UNREACHABLE})

ToolKey = tuple[str, Platform, str | None]


def make_tool_key(tool_name: str, platform: Platform, version_hint: str | None) -> ToolKey:
    """Build the deduplication key for a tool.

    Tool names compare case-insensitively; an empty version hint is the
    same as no version hint.
    """
    return (tool_name.strip().lower(), platform, version_hint or None)


def _normalize_hash(v: str | None) -> str | None:
    if v is None:
        return None
    v = v.strip().lower()
    return v or None


class ToolReference(BaseModel):
    """A tool an artifact declares it needs. Not authoritative until resolved."""

    tool_name: str = Field(..., min_length=1, description="Tool name")
    platform: Platform = Field(default=Platform.ANY, description="Target platform")
    version_hint: str | None = Field(default=None, description="Optional version hint")
    source_url: str | None = Field(default=None, description="Declared download URL")
    expected_hash: str | None = Field(
        default=None, pattern=SHA256_PATTERN, description="Declared SHA-256"
    )
    artifact_name: str = Field(..., description="Artifact that declared the tool")
    origin: ReferenceOrigin = Field(
        default=ReferenceOrigin.TOOLS_BLOCK, description="Hint the reference came from"
    )
    github_project: str | None = Field(default=None, description="GitHub owner/repo")
    github_asset_regex: str | None = Field(default=None, description="Release asset regex")

    model_config = {"frozen": True}

    @field_validator("expected_hash", mode="before")
    @classmethod
    def lowercase_hash(cls, v: str | None) -> str | None:
        """Normalize hash to lowercase, empty to None."""
        return _normalize_hash(v)

    @property
    def key(self) -> ToolKey:
        """Deduplication key."""
        return make_tool_key(self.tool_name, self.platform, self.version_hint)


class ToolDependency(BaseModel):
    """A resolved, deduplicated tool dependency.

    Status only moves forward through ``transition``; a dependency is owned
    by exactly one fetch worker while it is downloading.
    """

    tool_name: str = Field(..., min_length=1, description="Tool name (first-seen spelling)")
    platform: Platform = Field(default=Platform.ANY, description="Target platform")
    version_hint: str | None = Field(default=None, description="Version hint")
    resolved_url: str | None = Field(default=None, description="URL the tool is fetched from")
    expected_hash: str | None = Field(
        default=None,
        pattern=SHA256_PATTERN,
        description="Expected SHA-256; None means the tool cannot be verified",
    )
    computed_hash: str | None = Field(default=None, description="SHA-256 of fetched bytes")
    local_path: str | None = Field(default=None, description="Cached file path once fetched")
    status: ToolStatus = Field(default=ToolStatus.PENDING, description="Lifecycle status")
    skip_reason: str | None = Field(default=None, description="Why the tool was skipped")
    artifacts: list[str] = Field(
        default_factory=list, description="Artifacts referencing this tool, in order"
    )
    github_project: str | None = Field(default=None, description="GitHub owner/repo")
    github_asset_regex: str | None = Field(default=None, description="Release asset regex")

    model_config = {"validate_assignment": True}

    @field_validator("expected_hash", "computed_hash", mode="before")
    @classmethod
    def lowercase_hash(cls, v: str | None) -> str | None:
        """Normalize hash to lowercase, empty to None."""
        return _normalize_hash(v)

    @property
    def key(self) -> ToolKey:
        """Deduplication key."""
        return make_tool_key(self.tool_name, self.platform, self.version_hint)

    @property
    def label(self) -> str:
        """Short human label, e.g. ``Autoruns@14.11 (windows)``."""
        version = f"@{self.version_hint}" if self.version_hint else ""
        return f"{self.tool_name}{version} ({self.platform.value})"

    @property
    def is_terminal(self) -> bool:
        """Whether the dependency reached a terminal status."""
        return self.status in TERMINAL_STATUSES

    def transition(self, new_status: ToolStatus, reason: str | None = None) -> None:
        """Move to a new status.

        Args:
            new_status: Target status
            reason: Skip reason, recorded when moving to SKIPPED

        Raises:
            InvalidTransitionError: If the move is not a forward transition
        """
        from velobuild.core.errors import InvalidTransitionError

        allowed = _TRANSITIONS.get(self.status, frozenset())
        if new_status not in allowed:
            raise InvalidTransitionError(self.label, self.status.value, new_status.value)
        self.status = new_status
        if new_status == ToolStatus.SKIPPED:
            self.skip_reason = reason

    def skip(self, reason: str) -> None:
        """Mark the dependency as skipped."""
        self.transition(ToolStatus.SKIPPED, reason)


class MappingEdge(BaseModel):
    """One artifact → tool edge."""

    artifact: str = Field(..., description="Artifact name")
    tool: str = Field(..., description="Tool name")
    platform: Platform = Field(..., description="Tool platform")
    version_hint: str | None = Field(default=None, description="Tool version hint")

    model_config = {"frozen": True}

    @property
    def tool_key(self) -> ToolKey:
        """Key of the dependency this edge points to."""
        return make_tool_key(self.tool, self.platform, self.version_hint)


class ArtifactToolMapping:
    """Insertion-ordered set of artifact → tool edges without duplicates.

    Derived data: rebuilt on every scan, never edited by hand.
    """

    def __init__(self) -> None:
        self._edges: dict[tuple[str, ToolKey], MappingEdge] = {}

    def add(self, edge: MappingEdge) -> bool:
        """Add an edge.

        Returns:
            True if the edge was new, False if it already existed
        """
        identity = (edge.artifact, edge.tool_key)
        if identity in self._edges:
            return False
        self._edges[identity] = edge
        return True

    @property
    def edges(self) -> list[MappingEdge]:
        """Edges in insertion order."""
        return list(self._edges.values())

    def artifacts(self) -> list[str]:
        """Distinct artifact names with at least one tool, in order."""
        return list(dict.fromkeys(e.artifact for e in self._edges.values()))

    def tools_for(self, artifact: str) -> list[MappingEdge]:
        """Edges of one artifact."""
        return [e for e in self._edges.values() if e.artifact == artifact]

    def artifacts_for(self, key: ToolKey) -> list[str]:
        """Artifacts referencing a tool key."""
        return [e.artifact for e in self._edges.values() if e.tool_key == key]

    def __iter__(self) -> Iterator[MappingEdge]:
        return iter(list(self._edges.values()))

    def __len__(self) -> int:
        return len(self._edges)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ArtifactToolMapping):
            return NotImplemented
        return self.edges == other.edges

    def __repr__(self) -> str:
        return f"ArtifactToolMapping(edges={len(self._edges)})"

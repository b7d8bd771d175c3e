"""Artifact definition models.

An artifact is a named, declarative forensic-collection definition loaded
from a YAML file. Definitions are frozen once loaded; the store keeps one
definition per artifact name.
"""

from enum import Enum

from pydantic import BaseModel, Field

ARTIFACT_NAME_PATTERN = r"^[A-Za-z][A-Za-z0-9_]*(\.[A-Za-z0-9_]+)*$"


class ArtifactType(str, Enum):
    """Where an artifact executes."""

    CLIENT = "CLIENT"
    SERVER = "SERVER"
    CLIENT_EVENT = "CLIENT_EVENT"
    SERVER_EVENT = "SERVER_EVENT"


class ArtifactParameter(BaseModel):
    """A declared artifact parameter."""

    name: str = Field(..., min_length=1, description="Parameter name")
    default: str | None = Field(default=None, description="Default value")
    type: str = Field(default="string", description="Parameter type (string, bool, tool, ...)")
    description: str = Field(default="", description="Parameter description")

    model_config = {"frozen": True}


class ArtifactSource(BaseModel):
    """A query block of an artifact."""

    name: str | None = Field(default=None, description="Optional source name")
    precondition: str | None = Field(default=None, description="Precondition query")
    query: str = Field(default="", description="VQL query body")

    model_config = {"frozen": True}


class DeclaredTool(BaseModel):
    """An entry of the artifact's ``tools:`` metadata block."""

    name: str = Field(..., min_length=1, description="Tool name")
    url: str | None = Field(default=None, description="Download URL")
    expected_hash: str | None = Field(default=None, description="Expected SHA-256 (hex)")
    version: str | None = Field(default=None, description="Tool version hint")
    platform: str | None = Field(default=None, description="Target platform of the binary")
    github_project: str | None = Field(
        default=None, description="GitHub owner/repo publishing the tool"
    )
    github_asset_regex: str | None = Field(
        default=None, description="Regex selecting the release asset"
    )

    model_config = {"frozen": True}


class ArtifactDefinition(BaseModel):
    """A loaded artifact definition."""

    name: str = Field(..., pattern=ARTIFACT_NAME_PATTERN, description="Dotted artifact name")
    type: ArtifactType = Field(default=ArtifactType.CLIENT, description="Artifact type")
    description: str = Field(default="", description="Artifact description")
    author: str | None = Field(default=None, description="Artifact author")
    parameters: list[ArtifactParameter] = Field(
        default_factory=list, description="Ordered parameters"
    )
    sources: list[ArtifactSource] = Field(default_factory=list, description="Ordered sources")
    tools: list[DeclaredTool] = Field(default_factory=list, description="Declared tool block")
    raw_path: str = Field(..., description="File the definition was loaded from")

    model_config = {"frozen": True}

    @property
    def namespace(self) -> str:
        """Top-level namespace (e.g. ``Windows``)."""
        return self.name.split(".", 1)[0]

    @property
    def category(self) -> str:
        """First two name segments (e.g. ``Windows.System``)."""
        return ".".join(self.name.split(".")[:2])

    def parameter_defaults(self) -> dict[str, str | None]:
        """Map parameter names to their defaults, in declaration order."""
        return {p.name: p.default for p in self.parameters}

"""Curated tool catalog.

A YAML file listing known-good download sources and hashes for tools that
artifacts only name. Example::

    tools:
      - name: Autoruns
        platform: windows
        version: "14.11"
        url: https://download.sysinternals.com/files/Autoruns.zip
        sha256: 0f5b...
      - name: yara
        github_project: VirusTotal/yara
        github_asset_regex: "yara-.*-win64.zip"
"""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from velobuild.core import logging as log
from velobuild.core.errors import CatalogError
from velobuild.models.tool import SHA256_PATTERN, Platform, ToolKey, make_tool_key


class CatalogEntry(BaseModel):
    """A curated source for one tool."""

    name: str = Field(..., min_length=1, description="Tool name")
    platform: Platform = Field(default=Platform.ANY, description="Target platform")
    version: str | None = Field(default=None, description="Tool version")
    url: str | None = Field(default=None, description="Download URL")
    sha256: str | None = Field(default=None, pattern=SHA256_PATTERN, description="Known SHA-256")
    github_project: str | None = Field(default=None, description="GitHub owner/repo")
    github_asset_regex: str | None = Field(default=None, description="Release asset regex")

    model_config = {"frozen": True, "extra": "forbid"}

    @field_validator("sha256", mode="before")
    @classmethod
    def lowercase_hash(cls, v: Any) -> Any:
        """Normalize hash to lowercase."""
        if isinstance(v, str):
            return v.strip().lower() or None
        return v

    @field_validator("platform", mode="before")
    @classmethod
    def normalize_platform(cls, v: Any) -> Any:
        """Accept ``macos`` and mixed case."""
        if isinstance(v, str):
            v = v.strip().lower()
            return "darwin" if v == "macos" else v
        return v

    @field_validator("version", mode="before")
    @classmethod
    def version_text(cls, v: Any) -> Any:
        """YAML reads ``14.11`` as a float; keep it as text."""
        if v is None or v == "":
            return None
        return str(v)

    @property
    def key(self) -> ToolKey:
        """Catalog key."""
        return make_tool_key(self.name, self.platform, self.version)

    @property
    def is_fetchable(self) -> bool:
        """Whether the entry names a download source."""
        return bool(self.url or (self.github_project and self.github_asset_regex))


class ToolCatalog:
    """Lookup table of curated tool sources."""

    def __init__(self, entries: list[CatalogEntry] | None = None) -> None:
        self._entries: dict[ToolKey, CatalogEntry] = {}
        for entry in entries or []:
            self.add(entry)

    def add(self, entry: CatalogEntry) -> None:
        """Add an entry; a later entry with the same key replaces the earlier."""
        self._entries[entry.key] = entry

    @classmethod
    def load(cls, path: Path) -> "ToolCatalog":
        """Load a catalog file.

        Args:
            path: YAML catalog path

        Returns:
            Loaded ToolCatalog

        Raises:
            CatalogError: If the file is missing, unreadable or invalid
        """
        path = Path(path)
        if not path.is_file():
            raise CatalogError(f"Tool catalog {path} not found", path=str(path))

        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise CatalogError(f"Cannot read tool catalog {path}: {e}", path=str(path))

        if data is None:
            data = {}
        if not isinstance(data, dict) or not isinstance(data.get("tools", []), list):
            raise CatalogError(
                f"Tool catalog {path} must be a mapping with a 'tools' list", path=str(path)
            )

        entries = []
        for i, raw in enumerate(data.get("tools") or []):
            if not isinstance(raw, dict):
                raise CatalogError(f"tools[{i}] must be a mapping", path=str(path))
            try:
                entries.append(CatalogEntry(**raw))
            except ValidationError as e:
                problems = "; ".join(
                    f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
                )
                raise CatalogError(f"Invalid catalog entry tools[{i}]: {problems}", path=str(path))

        log.debug(f"Loaded {len(entries)} catalog entries", path=str(path))
        return cls(entries)

    def lookup(
        self, name: str, platform: Platform, version: str | None = None
    ) -> CatalogEntry | None:
        """Find the best entry for a tool.

        Tries the exact key, then any version on the same platform, then the
        same version for any platform, then any version for any platform.
        """
        candidates = [
            make_tool_key(name, platform, version),
            make_tool_key(name, platform, None),
            make_tool_key(name, Platform.ANY, version),
            make_tool_key(name, Platform.ANY, None),
        ]
        for key in dict.fromkeys(candidates):
            entry = self._entries.get(key)
            if entry is not None:
                return entry
        return None

    @property
    def entries(self) -> list[CatalogEntry]:
        """All entries in load order."""
        return list(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

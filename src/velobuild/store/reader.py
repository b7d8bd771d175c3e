"""Artifact store reader for YAML artifact definitions.

Walks an artifact directory, parses each definition and validates it
against the ArtifactDefinition model. A malformed file never aborts the
scan: it becomes a ParseError collected next to the results.
"""

import fnmatch
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from velobuild.core import logging as log
from velobuild.core.errors import ArtifactStoreNotFoundError, ParseError
from velobuild.models.artifact import ArtifactDefinition
from velobuild.models.build import BuildIssue, warning_issue
from velobuild.models.error import ErrorCode

ARTIFACT_SUFFIXES = (".yaml", ".yml")
_GLOB_CHARS = set("*?[")


def matches_filter(name: str, patterns: list[str] | None) -> bool:
    """Check an artifact name against inclusion patterns.

    Patterns with glob characters match with fnmatch; anything else is a
    dotted prefix, so ``Windows.System`` selects ``Windows.System.Pslist``
    but not ``Windows.SystemX``. No patterns selects everything.
    """
    if not patterns:
        return True
    for pattern in patterns:
        if _GLOB_CHARS & set(pattern):
            if fnmatch.fnmatchcase(name, pattern):
                return True
        elif name == pattern or name.startswith(pattern.rstrip(".") + "."):
            return True
    return False


@dataclass
class StoreScan:
    """Result of scanning an artifact directory."""

    definitions: dict[str, ArtifactDefinition] = field(default_factory=dict)
    parse_errors: list[ParseError] = field(default_factory=list)
    warnings: list[BuildIssue] = field(default_factory=list)
    files_scanned: int = 0

    @property
    def artifacts(self) -> list[ArtifactDefinition]:
        """Definitions in name order."""
        return [self.definitions[name] for name in sorted(self.definitions)]


class ArtifactStoreReader:
    """Loads artifact definitions from a directory tree."""

    def __init__(
        self,
        root: Path,
        include: list[str] | None = None,
        recursive: bool = True,
    ) -> None:
        """Initialize the reader.

        Args:
            root: Directory holding artifact definition files
            include: Name patterns to select (glob or dotted prefix)
            recursive: Descend into subdirectories
        """
        self.root = Path(root)
        self.include = list(include or [])
        self.recursive = recursive

    def iter_files(self) -> list[Path]:
        """List candidate definition files in a stable order.

        Raises:
            ArtifactStoreNotFoundError: If the root directory does not exist
        """
        if not self.root.is_dir():
            raise ArtifactStoreNotFoundError(str(self.root))

        walker = self.root.rglob("*") if self.recursive else self.root.glob("*")
        return sorted(
            p for p in walker if p.is_file() and p.suffix.lower() in ARTIFACT_SUFFIXES
        )

    def iter_definitions(
        self, errors: list[ParseError] | None = None
    ) -> Iterator[ArtifactDefinition]:
        """Lazily yield definitions matching the inclusion filter.

        Each call restarts the walk from scratch.

        Args:
            errors: List that receives a ParseError per malformed file

        Yields:
            ArtifactDefinition per selected file
        """
        for path in self.iter_files():
            try:
                definition = self.load_file(path)
            except ParseError as e:
                log.warning(str(e), path=str(path))
                if errors is not None:
                    errors.append(e)
                continue

            if matches_filter(definition.name, self.include):
                yield definition

    def scan(self) -> StoreScan:
        """Scan the whole store.

        Duplicate names: the file read last wins and a warning names both
        files.

        Returns:
            StoreScan with definitions, parse errors and warnings
        """
        result = StoreScan()
        result.files_scanned = len(self.iter_files())

        for definition in self.iter_definitions(result.parse_errors):
            previous = result.definitions.get(definition.name)
            if previous is not None:
                result.warnings.append(
                    warning_issue(
                        ErrorCode.DUPLICATE_ARTIFACT,
                        f"Artifact {definition.name} defined in {previous.raw_path} "
                        f"and {definition.raw_path}; using {definition.raw_path}",
                        artifact=definition.name,
                        path=definition.raw_path,
                    )
                )
            result.definitions[definition.name] = definition

        log.debug(
            f"Scanned {result.files_scanned} files, {len(result.definitions)} artifacts selected",
            root=str(self.root),
        )
        return result

    def load_file(self, path: Path) -> ArtifactDefinition:
        """Load and validate one artifact definition file.

        Args:
            path: Path to the YAML file

        Returns:
            Parsed ArtifactDefinition

        Raises:
            ParseError: If the file is unreadable or malformed
        """
        try:
            with open(path, encoding="utf-8") as f:
                content = f.read()
        except (OSError, UnicodeDecodeError) as e:
            raise ParseError(f"Cannot read {path}: {e}", path=str(path))

        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise ParseError(f"YAML parse error in {path}: {e}", path=str(path))

        problems = self._validate_artifact_data(data)
        if problems:
            raise ParseError(f"Invalid artifact {path}: {'; '.join(problems)}", path=str(path))

        try:
            return ArtifactDefinition(
                name=data["name"],
                type=str(data.get("type") or "CLIENT").upper(),
                description=str(data.get("description") or ""),
                author=data.get("author"),
                parameters=[self._parameter(p) for p in data.get("parameters") or []],
                sources=[self._source(s) for s in data.get("sources") or []],
                tools=[self._tool(t) for t in data.get("tools") or []],
                raw_path=str(path),
            )
        except ValidationError as e:
            problems = [
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            ]
            raise ParseError(f"Invalid artifact {path}: {'; '.join(problems)}", path=str(path))

    def _validate_artifact_data(self, data: Any) -> list[str]:
        """Validate the raw structure before building models.

        Args:
            data: Parsed YAML data

        Returns:
            List of validation errors
        """
        errors = []

        if not isinstance(data, dict):
            errors.append("Artifact must be a YAML mapping")
            return errors

        if not isinstance(data.get("name"), str) or not data["name"].strip():
            errors.append("Missing required field: name")

        for section in ("parameters", "sources", "tools"):
            value = data.get(section)
            if value is None:
                continue
            if not isinstance(value, list):
                errors.append(f"'{section}' must be a list")
                continue
            for i, item in enumerate(value):
                if not isinstance(item, dict):
                    errors.append(f"{section}[{i}] must be a mapping")
                elif section in ("parameters", "tools") and not item.get("name"):
                    errors.append(f"{section}[{i}] missing required field: name")

        return errors

    @staticmethod
    def _text(value: Any) -> str | None:
        if value is None:
            return None
        if isinstance(value, bool):
            return "Y" if value else "N"
        return str(value)

    def _parameter(self, data: dict[str, Any]) -> dict[str, Any]:
        return {
            "name": str(data["name"]),
            "default": self._text(data.get("default")),
            "type": str(data.get("type") or "string"),
            "description": str(data.get("description") or ""),
        }

    def _source(self, data: dict[str, Any]) -> dict[str, Any]:
        return {
            "name": self._text(data.get("name")),
            "precondition": self._text(data.get("precondition")),
            "query": str(data.get("query") or ""),
        }

    def _tool(self, data: dict[str, Any]) -> dict[str, Any]:
        return {
            "name": str(data["name"]),
            "url": self._text(data.get("url")),
            "expected_hash": self._text(data.get("expected_hash") or data.get("sha256")),
            "version": self._text(data.get("version")),
            "platform": self._text(data.get("platform")),
            "github_project": self._text(data.get("github_project")),
            "github_asset_regex": self._text(data.get("github_asset_regex")),
        }

"""Mapping export.

Serializes the artifact → tool mapping, the dependency statuses and the
build manifest for downstream consumers (GUI layers, reports). Output is
deterministic: records follow mapping order and JSON keys are sorted.
"""

import csv
import json
from pathlib import Path
from typing import Any

from velobuild.models.build import CollectionManifest
from velobuild.models.tool import ArtifactToolMapping, ToolDependency

MAPPING_JSON = "tool-mapping.json"
MAPPING_CSV = "tool-mapping.csv"
DEPENDENCIES_JSON = "tool-dependencies.json"
MANIFEST_JSON = "build-manifest.json"
CSV_FIELDS = ["artifact", "tool", "platform", "status"]
UNRESOLVED = "unresolved"


class MappingExporter:
    """Read-only view over a mapping, its dependencies and an optional manifest."""

    def __init__(
        self,
        mapping: ArtifactToolMapping,
        dependencies: list[ToolDependency],
        manifest: CollectionManifest | None = None,
    ) -> None:
        self.mapping = mapping
        self.dependencies = list(dependencies)
        self.manifest = manifest
        self._by_key = {d.key: d for d in self.dependencies}

    def records(self) -> list[dict[str, str]]:
        """One record per edge, with the dependency's status."""
        records = []
        for edge in self.mapping:
            dep = self._by_key.get(edge.tool_key)
            records.append(
                {
                    "artifact": edge.artifact,
                    "tool": edge.tool,
                    "platform": edge.platform.value,
                    "status": dep.status.value if dep is not None else UNRESOLVED,
                }
            )
        return records

    def to_json(self) -> str:
        """Edge records as a JSON array."""
        return json.dumps(self.records(), indent=2, sort_keys=True)

    def dependencies_json(self) -> str:
        """Per-tool details and the summary as JSON."""
        document = {
            "tools": [
                {
                    "tool": d.tool_name,
                    "platform": d.platform.value,
                    "version": d.version_hint,
                    "status": d.status.value,
                    "url": d.resolved_url,
                    "sha256": d.computed_hash or d.expected_hash,
                    "skip_reason": d.skip_reason,
                    "artifacts": d.artifacts,
                }
                for d in self.dependencies
            ],
            "summary": self.summary(),
        }
        return json.dumps(document, indent=2, sort_keys=True)

    def write_json(self, path: Path) -> Path:
        """Write the edge records as a JSON array."""
        path = Path(path)
        path.write_text(self.to_json() + "\n", encoding="utf-8")
        return path

    def write_dependencies(self, path: Path) -> Path:
        """Write the per-tool details and summary."""
        path = Path(path)
        path.write_text(self.dependencies_json() + "\n", encoding="utf-8")
        return path

    def write_csv(self, path: Path) -> Path:
        """Write the edges as CSV."""
        path = Path(path)
        with open(path, "w", encoding="utf-8", newline="") as f:
            writer = csv.DictWriter(f, fieldnames=CSV_FIELDS)
            writer.writeheader()
            writer.writerows(self.records())
        return path

    def write_manifest(self, path: Path) -> Path | None:
        """Write the build manifest, if there is one."""
        if self.manifest is None:
            return None
        path = Path(path)
        path.write_text(self.manifest.model_dump_json(indent=2) + "\n", encoding="utf-8")
        return path

    def summary(self) -> dict[str, Any]:
        """Counts of artifacts, tools and edges with status and category breakdowns."""
        by_status: dict[str, int] = {}
        for dep in self.dependencies:
            by_status[dep.status.value] = by_status.get(dep.status.value, 0) + 1

        by_category: dict[str, dict[str, int]] = {}
        for artifact in self.mapping.artifacts():
            category = ".".join(artifact.split(".")[:2])
            entry = by_category.setdefault(category, {"artifacts": 0, "edges": 0})
            entry["artifacts"] += 1
            entry["edges"] += len(self.mapping.tools_for(artifact))

        return {
            "artifacts": len(self.mapping.artifacts()),
            "tools": len(self.dependencies),
            "edges": len(self.mapping),
            "by_status": dict(sorted(by_status.items())),
            "by_category": dict(sorted(by_category.items())),
        }

    def render_summary(self) -> str:
        """Human-readable summary."""
        summary = self.summary()
        lines = [
            f"Artifacts with tools: {summary['artifacts']}",
            f"Unique tools:         {summary['tools']}",
            f"Mapping edges:        {summary['edges']}",
        ]
        if summary["by_status"]:
            lines.append("")
            lines.append("Tools by status:")
            for status, count in summary["by_status"].items():
                lines.append(f"  {status:<14} {count}")
        if summary["by_category"]:
            lines.append("")
            lines.append("By category:")
            for category, counts in summary["by_category"].items():
                lines.append(
                    f"  {category:<30} {counts['artifacts']} artifacts, {counts['edges']} edges"
                )
        if self.manifest is not None:
            lines.append("")
            lines.append(
                f"Build {self.manifest.build_id}: {len(self.manifest.included_tools)} tools "
                f"packaged, {len(self.manifest.skipped_tools)} skipped"
            )
        return "\n".join(lines)

    def write_all(self, directory: Path) -> list[Path]:
        """Write mapping JSON and CSV, tool details and (if present) the manifest."""
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)
        written = [
            self.write_json(directory / MAPPING_JSON),
            self.write_csv(directory / MAPPING_CSV),
            self.write_dependencies(directory / DEPENDENCIES_JSON),
        ]
        manifest_path = self.write_manifest(directory / MANIFEST_JSON)
        if manifest_path is not None:
            written.append(manifest_path)
        return written

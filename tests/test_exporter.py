"""Tests for mapping export."""

import csv
import json

from velobuild.export.exporter import (
    DEPENDENCIES_JSON,
    MANIFEST_JSON,
    MAPPING_CSV,
    MAPPING_JSON,
    MappingExporter,
)
from velobuild.models.build import CollectionManifest
from velobuild.models.tool import (
    ArtifactToolMapping,
    MappingEdge,
    Platform,
    ToolDependency,
    ToolStatus,
)


def sample():
    mapping = ArtifactToolMapping()
    mapping.add(MappingEdge(artifact="Windows.Sys.One", tool="Autoruns", platform=Platform.WINDOWS))
    mapping.add(MappingEdge(artifact="Windows.Sys.Two", tool="Autoruns", platform=Platform.WINDOWS))
    mapping.add(MappingEdge(artifact="Windows.Sys.Two", tool="yara", platform=Platform.WINDOWS))
    mapping.add(MappingEdge(artifact="Linux.Sys.Three", tool="lsof", platform=Platform.LINUX))

    autoruns = ToolDependency(
        tool_name="Autoruns",
        platform=Platform.WINDOWS,
        artifacts=["Windows.Sys.One", "Windows.Sys.Two"],
    )
    yara = ToolDependency(tool_name="yara", platform=Platform.WINDOWS, artifacts=["Windows.Sys.Two"])
    yara.skip("unresolved source")
    return mapping, [autoruns, yara]


class TestMappingExporter:
    """Test mapping records, summaries and files."""

    def test_records_follow_mapping_order(self):
        mapping, deps = sample()

        records = MappingExporter(mapping, deps).records()

        assert records == [
            {"artifact": "Windows.Sys.One", "tool": "Autoruns", "platform": "windows",
             "status": "pending"},
            {"artifact": "Windows.Sys.Two", "tool": "Autoruns", "platform": "windows",
             "status": "pending"},
            {"artifact": "Windows.Sys.Two", "tool": "yara", "platform": "windows",
             "status": "skipped"},
            {"artifact": "Linux.Sys.Three", "tool": "lsof", "platform": "linux",
             "status": "unresolved"},
        ]

    def test_summary(self):
        mapping, deps = sample()

        summary = MappingExporter(mapping, deps).summary()

        assert summary["artifacts"] == 3
        assert summary["tools"] == 2
        assert summary["edges"] == 4
        assert summary["by_status"] == {"pending": 1, "skipped": 1}
        assert summary["by_category"] == {
            "Linux.Sys": {"artifacts": 1, "edges": 1},
            "Windows.Sys": {"artifacts": 2, "edges": 3},
        }

    def test_json_is_deterministic(self):
        mapping, deps = sample()

        first = MappingExporter(mapping, deps).to_json()
        second = MappingExporter(mapping, deps).to_json()

        assert first == second
        assert json.loads(first) == MappingExporter(mapping, deps).records()

    def test_dependencies_json(self):
        mapping, deps = sample()

        document = json.loads(MappingExporter(mapping, deps).dependencies_json())

        assert list(document) == ["summary", "tools"]
        assert document["tools"][1]["skip_reason"] == "unresolved source"

    def test_render_summary(self):
        mapping, deps = sample()

        text = MappingExporter(mapping, deps).render_summary()

        assert "Artifacts with tools: 3" in text
        assert "Windows.Sys" in text

    def test_write_all_without_manifest(self, tmp_path):
        mapping, deps = sample()

        written = MappingExporter(mapping, deps).write_all(tmp_path / "exports")

        assert [p.name for p in written] == [MAPPING_JSON, MAPPING_CSV, DEPENDENCIES_JSON]
        edges = json.loads((tmp_path / "exports" / MAPPING_JSON).read_text(encoding="utf-8"))
        assert isinstance(edges, list)
        assert len(edges) == 4
        assert all(set(e) == {"artifact", "tool", "platform", "status"} for e in edges)
        with open(tmp_path / "exports" / MAPPING_CSV, newline="", encoding="utf-8") as f:
            rows = list(csv.DictReader(f))
        assert len(rows) == 4
        assert rows[0]["tool"] == "Autoruns"

    def test_write_all_with_manifest(self, tmp_path):
        mapping, deps = sample()
        manifest = CollectionManifest(
            build_id="20261019T120000Z-abcd",
            selected_artifacts=["Windows.Sys.One"],
            platform=Platform.WINDOWS,
            output_path=str(tmp_path / "c.zip"),
            strict=True,
            velobuild_version="0.4.0",
        )

        written = MappingExporter(mapping, deps, manifest).write_all(tmp_path)

        assert written[-1].name == MANIFEST_JSON
        data = json.loads(written[-1].read_text(encoding="utf-8"))
        assert data["build_id"] == "20261019T120000Z-abcd"

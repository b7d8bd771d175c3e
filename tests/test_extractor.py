"""Tests for tool reference extraction."""

import pytest

from velobuild.models.artifact import ArtifactDefinition, ArtifactParameter
from velobuild.models.tool import Platform, ReferenceOrigin
from velobuild.resolve.extractor import (
    ToolReferenceExtractor,
    infer_platform,
    is_tool_parameter,
    parse_platform,
)

HASH = "b" * 64


def make_artifact(name: str = "Windows.Test.Tools", **fields) -> ArtifactDefinition:
    return ArtifactDefinition(name=name, raw_path=f"/store/{name}.yaml", **fields)


class TestPlatformHelpers:
    @pytest.mark.parametrize(
        "name,expected",
        [
            ("Windows.System.Pslist", Platform.WINDOWS),
            ("Linux.Sys.Users", Platform.LINUX),
            ("MacOS.Applications.List", Platform.DARWIN),
            ("Generic.Client.Info", Platform.ANY),
            ("Server.Monitor.Health", Platform.ANY),
        ],
    )
    def test_infer_platform(self, name, expected):
        assert infer_platform(name) == expected

    def test_parse_platform_aliases(self):
        assert parse_platform("Win") == Platform.WINDOWS
        assert parse_platform("osx") == Platform.DARWIN
        assert parse_platform("all") == Platform.ANY
        assert parse_platform("beos") is None
        assert parse_platform(None) is None

    def test_tool_parameter_detection(self):
        assert is_tool_parameter(ArtifactParameter(name="Binary", type="tool"))
        assert is_tool_parameter(ArtifactParameter(name="AutorunsToolName"))
        assert not is_tool_parameter(ArtifactParameter(name="ToolNameFilter"))


class TestToolReferenceExtractor:
    """Test extraction from structured hints."""

    def test_tools_block(self):
        artifact = make_artifact(
            tools=[
                {
                    "name": "Autoruns",
                    "url": "https://example.com/autoruns.zip",
                    "expected_hash": HASH.upper(),
                    "version": "14.11",
                }
            ]
        )

        result = ToolReferenceExtractor().extract(artifact)

        assert result.warnings == []
        [ref] = result.references
        assert ref.tool_name == "Autoruns"
        assert ref.platform == Platform.WINDOWS
        assert ref.version_hint == "14.11"
        assert ref.source_url == "https://example.com/autoruns.zip"
        assert ref.expected_hash == HASH
        assert ref.artifact_name == "Windows.Test.Tools"
        assert ref.origin == ReferenceOrigin.TOOLS_BLOCK

    def test_declared_platform_overrides_namespace(self):
        artifact = make_artifact(
            "Generic.Test.Tools", tools=[{"name": "yara", "platform": "linux"}]
        )

        [ref] = ToolReferenceExtractor().extract(artifact).references

        assert ref.platform == Platform.LINUX

    def test_unknown_platform_warns_and_falls_back(self):
        artifact = make_artifact(tools=[{"name": "yara", "platform": "plan9"}])

        result = ToolReferenceExtractor().extract(artifact)

        assert result.references[0].platform == Platform.WINDOWS
        assert [w.code for w in result.warnings] == ["PARSE_ERROR"]

    def test_malformed_hash_dropped_with_warning(self):
        artifact = make_artifact(tools=[{"name": "yara", "expected_hash": "not-a-hash"}])

        result = ToolReferenceExtractor().extract(artifact)

        assert result.references[0].expected_hash is None
        assert len(result.warnings) == 1
        assert result.warnings[0].code == "INVALID_HASH"
        assert result.warnings[0].tool == "yara"

    def test_tool_parameter_default(self):
        artifact = make_artifact(
            parameters=[
                {"name": "SysmonToolName", "default": "SysmonBinary"},
                {"name": "Other", "default": "value"},
            ]
        )

        [ref] = ToolReferenceExtractor().extract(artifact).references

        assert ref.tool_name == "SysmonBinary"
        assert ref.origin == ReferenceOrigin.PARAMETER
        assert ref.source_url is None

    def test_tool_parameter_without_default_ignored(self):
        artifact = make_artifact(parameters=[{"name": "Binary", "type": "tool"}])

        assert ToolReferenceExtractor().extract(artifact).references == []

    def test_parameter_naming_declared_tool_not_duplicated(self):
        artifact = make_artifact(
            tools=[{"name": "Autoruns", "url": "https://example.com/a.zip"}],
            parameters=[{"name": "AutorunsToolName", "default": "autoruns"}],
        )

        refs = ToolReferenceExtractor().extract(artifact).references

        assert len(refs) == 1
        assert refs[0].origin == ReferenceOrigin.TOOLS_BLOCK

    def test_repeated_tool_deduplicated_within_artifact(self):
        artifact = make_artifact(tools=[{"name": "yara"}, {"name": "YARA"}])

        refs = ToolReferenceExtractor().extract(artifact).references

        assert [r.tool_name for r in refs] == ["yara"]

    def test_query_text_is_not_scanned(self):
        artifact = make_artifact(
            sources=[{"query": "SELECT * FROM execve(argv=['Autoruns.exe'])"}]
        )

        assert ToolReferenceExtractor().extract(artifact).references == []

    def test_declaration_order_kept(self):
        artifact = make_artifact(
            tools=[{"name": "b"}, {"name": "a"}],
            parameters=[{"name": "CToolName", "default": "c"}],
        )

        refs = ToolReferenceExtractor().extract(artifact).references

        assert [r.tool_name for r in refs] == ["b", "a", "c"]

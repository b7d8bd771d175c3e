"""End-to-end tests for the build engine."""

import json
import os
import threading
import zipfile

from conftest import FakeResponse, FakeSession, sha256_of
from velobuild.engine import BuildEngine
from velobuild.export.exporter import MAPPING_CSV, MAPPING_JSON
from velobuild.models.build import BuildAction, ProgressPhase
from velobuild.models.tool import Platform, ToolStatus

URL_A = "https://example.com/a.exe"
URL_B = "https://example.com/b.exe"
DATA_A = b"tool a"
DATA_B = b"tool b"


def codes(issues):
    return [i.code for i in issues]


class TestBuildEngine:
    """Test the pipeline across actions."""

    def test_scan_does_not_resolve_or_download(self, settings, write_artifact):
        write_artifact("Generic.One", tools=[{"name": "A"}])
        session = FakeSession()

        result = BuildEngine(settings, session=session).run(BuildAction.SCAN)

        assert result.success
        assert result.artifact_count == 1
        assert result.edge_count == 1
        assert [t.status for t in result.tools] == [ToolStatus.PENDING]
        assert result.warnings == []
        assert session.calls == []

    def test_shared_tool_resolved_once(self, settings, write_artifact):
        write_artifact("Generic.One", tools=[{"name": "A", "url": URL_A}])
        write_artifact("Generic.Two", tools=[{"name": "B", "url": URL_B}])
        write_artifact("Generic.Three", tools=[{"name": "A"}])

        result = BuildEngine(settings).run("resolve")

        assert result.success
        assert result.artifact_count == 3
        assert result.tool_count == 2
        assert result.edge_count == 3

    def test_conflicting_urls(self, settings, write_artifact):
        write_artifact("Generic.One", tools=[{"name": "A", "url": URL_A}])
        write_artifact("Generic.Two", tools=[{"name": "A", "url": URL_B}])

        result = BuildEngine(settings).run(BuildAction.RESOLVE)

        assert result.tool_count == 1
        assert result.tools[0].resolved_url == URL_A
        [conflict] = [w for w in result.warnings if w.code == "CONFLICT"]
        assert "Generic.One" in conflict.artifact and "Generic.Two" in conflict.artifact

    def test_build_verified(self, settings, write_artifact):
        write_artifact(
            "Windows.Test.Tool",
            tools=[{"name": "A", "url": URL_A, "sha256": sha256_of(DATA_A)}],
        )
        session = FakeSession({URL_A: DATA_A})
        events = []

        result = BuildEngine(settings, progress=events.append, session=session).run("build")

        assert result.success
        assert result.errors == []
        assert result.tools[0].status == ToolStatus.VERIFIED
        assert result.output_package_path == str(settings.output_path)
        assert result.build_id is not None
        with zipfile.ZipFile(settings.output_path) as zf:
            assert "tools/windows/a.exe" in zf.namelist()

        export_dir = settings.output_path.parent
        assert result.output_artifacts_path == str(export_dir)
        assert (export_dir / MAPPING_JSON).is_file()
        assert (export_dir / MAPPING_CSV).is_file()

        assert [e.sequence for e in events] == list(range(len(events)))
        phases = [e.phase for e in events]
        assert phases[0] == ProgressPhase.SCAN
        assert ProgressPhase.DOWNLOAD in phases
        assert ProgressPhase.PACKAGE in phases

    def test_hash_mismatch_fails_strict_build(self, settings, write_artifact):
        write_artifact(
            "Windows.Test.Tool",
            tools=[{"name": "A", "url": URL_A, "sha256": sha256_of(b"expected")}],
        )
        session = FakeSession({URL_A: b"something else"})

        result = BuildEngine(settings, session=session).run("build")

        assert not result.success
        assert result.tools[0].status == ToolStatus.HASH_MISMATCH
        assert "HASH_MISMATCH" in codes(result.errors)
        assert "BUILD_FAILED_STRICT" in codes(result.errors)
        assert not settings.output_path.exists()
        assert result.output_package_path is None

    def test_hash_mismatch_permissive_build_succeeds(self, settings, write_artifact):
        write_artifact(
            "Windows.Test.Tool",
            tools=[{"name": "A", "url": URL_A, "sha256": sha256_of(b"expected")}],
        )
        session = FakeSession({URL_A: b"something else"})
        permissive = settings.model_copy(update={"strict": False})

        result = BuildEngine(permissive, session=session).run("build")

        assert result.success
        assert "TOOL_EXCLUDED" in codes(result.warnings)
        assert permissive.output_path.is_file()

    def test_unverified_tool_strict(self, settings, write_artifact):
        write_artifact("Windows.Test.Tool", tools=[{"name": "A", "url": URL_A}])
        session = FakeSession({URL_A: DATA_A})

        result = BuildEngine(settings, session=session).run("build")

        assert result.success
        assert result.tools[0].status == ToolStatus.UNVERIFIED
        assert "UNVERIFIED_TOOL" in codes(result.warnings)
        assert "TOOL_EXCLUDED" in codes(result.warnings)

    def test_empty_selection(self, settings, write_artifact):
        write_artifact("Windows.Test.Tool", tools=[{"name": "A", "url": URL_A}])
        filtered = settings.model_copy(update={"include": ["Nothing.*"]})
        session = FakeSession()

        result = BuildEngine(filtered, session=session).run("build")

        assert result.success
        assert result.artifact_count == 0
        assert result.errors == []
        assert "NOTHING_TO_PACKAGE" in codes(result.warnings)
        assert not filtered.output_path.exists()
        assert session.calls == []

    def test_missing_root(self, settings, tmp_path):
        missing = settings.model_copy(update={"artifact_root": tmp_path / "nowhere"})

        result = BuildEngine(missing).run("build")

        assert not result.success
        assert codes(result.errors) == ["ARTIFACT_ROOT_NOT_FOUND"]

    def test_missing_root_allowed(self, settings, tmp_path):
        missing = settings.model_copy(
            update={"artifact_root": tmp_path / "nowhere", "allow_empty": True}
        )

        result = BuildEngine(missing).run("scan")

        assert result.success
        assert codes(result.warnings) == ["ARTIFACT_ROOT_NOT_FOUND"]

    def test_parse_errors_are_warnings(self, settings, write_artifact, artifact_root):
        write_artifact("Generic.Good")
        (artifact_root / "bad.yaml").write_text("name: [", encoding="utf-8")

        result = BuildEngine(settings).run("scan")

        assert result.success
        assert result.artifact_count == 1
        assert codes(result.warnings) == ["PARSE_ERROR"]

    def test_download_failure_isolated(self, settings, write_artifact):
        write_artifact(
            "Windows.Test.Tool",
            tools=[
                {"name": "A", "url": URL_A, "sha256": sha256_of(DATA_A)},
                {"name": "B", "url": URL_B, "sha256": sha256_of(DATA_B)},
            ],
        )
        session = FakeSession({URL_A: DATA_A, URL_B: FakeResponse(404)})

        result = BuildEngine(settings, session=session).run("download")

        statuses = {t.tool_name: t.status for t in result.tools}
        assert statuses == {"A": ToolStatus.VERIFIED, "B": ToolStatus.UNREACHABLE}
        assert not result.success
        assert codes(result.errors) == ["DOWNLOAD_FAILED"]

    def test_platform_filter(self, settings, write_artifact):
        write_artifact("Linux.Test.Tool", tools=[{"name": "lsof", "url": URL_A}])
        write_artifact("Generic.Test.Tool", tools=[{"name": "B", "url": URL_B}])
        windows = settings.model_copy(update={"platform": Platform.WINDOWS})

        result = BuildEngine(windows).run("resolve")

        statuses = {t.tool_name: t.status for t in result.tools}
        assert statuses == {"lsof": ToolStatus.SKIPPED, "B": ToolStatus.PENDING}
        assert "PLATFORM_MISMATCH" in codes(result.warnings)

    def test_cancelled_build(self, settings, write_artifact):
        write_artifact("Windows.Test.Tool", tools=[{"name": "A", "url": URL_A}])
        event = threading.Event()
        event.set()
        session = FakeSession({URL_A: DATA_A})

        result = BuildEngine(settings, cancel_event=event, session=session).run("build")

        assert result.cancelled
        assert not result.success
        assert result.tools[0].status == ToolStatus.SKIPPED
        assert "CANCELLED" in codes(result.errors)
        assert not settings.output_path.exists()
        assert session.calls == []

    def test_existing_output_is_fatal(self, settings, write_artifact):
        write_artifact("Generic.Test.Tool")
        settings.output_path.parent.mkdir(parents=True)
        settings.output_path.write_bytes(b"old")

        result = BuildEngine(settings).run("build")

        assert not result.success
        assert codes(result.errors) == ["PACKAGING_FAILED"]
        assert settings.output_path.read_bytes() == b"old"

    def test_old_artifact_timestamps_build(self, settings, write_artifact, artifact_root):
        write_artifact("Generic.Test.Tool")
        for path in artifact_root.rglob("*.yaml"):
            os.utime(path, (0, 0))

        result = BuildEngine(settings).run("build")

        assert result.success, result.errors
        assert settings.output_path.is_file()

    def test_invalid_catalog_is_fatal(self, settings, write_artifact, tmp_path):
        write_artifact("Generic.Test.Tool", tools=[{"name": "A"}])
        catalog = tmp_path / "catalog.yaml"
        catalog.write_text("tools: nope\n", encoding="utf-8")
        with_catalog = settings.model_copy(update={"catalog_path": catalog})

        result = BuildEngine(with_catalog).run("resolve")

        assert not result.success
        assert codes(result.errors) == ["CATALOG_ERROR"]

    def test_export_action(self, settings, write_artifact, tmp_path):
        write_artifact("Generic.Test.Tool", tools=[{"name": "A", "url": URL_A}])
        export_dir = tmp_path / "exports"
        exporting = settings.model_copy(update={"output_path": export_dir})

        result = BuildEngine(exporting).run("export")

        assert result.success
        assert result.output_artifacts_path == str(export_dir)
        assert result.output_package_path is None
        records = json.loads((export_dir / MAPPING_JSON).read_text(encoding="utf-8"))
        assert records == [
            {"artifact": "Generic.Test.Tool", "tool": "A", "platform": "any", "status": "pending"}
        ]

    def test_runs_are_independent(self, settings, write_artifact):
        write_artifact("Generic.One", tools=[{"name": "A", "url": URL_A}])
        engine = BuildEngine(settings)

        first = engine.run("resolve")
        second = engine.run("resolve")

        assert first.tools == second.tools
        assert first.warnings == second.warnings

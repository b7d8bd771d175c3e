"""Tests for the HTTP downloader and the concurrent tool fetcher."""

import threading

import pytest
import requests

from conftest import FakeResponse, FakeSession, sha256_of
from velobuild.core.errors import DownloadError, OperationCancelled
from velobuild.fetch.cache import ContentCache
from velobuild.fetch.fetcher import CANCELLED_REASON, ToolFetcher
from velobuild.fetch.http import USER_AGENT, Downloader
from velobuild.models.tool import ToolDependency, ToolStatus

URL = "https://example.com/tool.zip"
DATA = b"MZ tool binary"
DIGEST = sha256_of(DATA)
API = "https://api.github.test"


def make_downloader(session, cancel_event=None, retries=3) -> Downloader:
    return Downloader(
        session=session,
        retries=retries,
        backoff_base=0,
        backoff_max=0,
        github_api_base=API,
        cancel_event=cancel_event,
        chunk_size=4,
    )


def make_fetcher(tmp_path, session, cancel_event=None, retries=3):
    cache = ContentCache(tmp_path / "cache")
    downloader = make_downloader(session, cancel_event, retries)
    return ToolFetcher(cache, downloader, workers=2, cancel_event=cancel_event), cache


def dependency(name="tool", url=URL, expected_hash=None, **kwargs) -> ToolDependency:
    return ToolDependency(
        tool_name=name,
        resolved_url=url,
        expected_hash=expected_hash,
        artifacts=["Generic.Test"],
        **kwargs,
    )


class TestDownloader:
    """Test retries, backoff and GitHub release lookups."""

    def test_download_hashes_stream(self, tmp_path):
        session = FakeSession({URL: DATA})
        dest = tmp_path / "out.bin"

        result = make_downloader(session).download(URL, dest)

        assert result.sha256 == DIGEST
        assert result.size_bytes == len(DATA)
        assert result.attempts == 1
        assert dest.read_bytes() == DATA
        assert session.headers["User-Agent"] == USER_AGENT

    def test_retry_then_success(self, tmp_path):
        session = FakeSession({URL: [FakeResponse(503), requests.Timeout(), DATA]})

        result = make_downloader(session).download(URL, tmp_path / "out.bin")

        assert result.attempts == 3
        assert result.sha256 == DIGEST
        assert len(session.calls) == 3

    def test_all_attempts_fail(self, tmp_path):
        session = FakeSession({URL: FakeResponse(404)})

        with pytest.raises(DownloadError) as exc_info:
            make_downloader(session, retries=2).download(URL, tmp_path / "out.bin")

        assert exc_info.value.status_code == 404
        assert len(session.calls) == 2
        assert "2 attempt(s)" in str(exc_info.value)

    def test_connection_error_retried(self, tmp_path):
        session = FakeSession()

        with pytest.raises(DownloadError):
            make_downloader(session, retries=3).download(URL, tmp_path / "out.bin")

        assert len(session.calls) == 3

    def test_cancelled_before_first_attempt(self, tmp_path):
        event = threading.Event()
        event.set()
        session = FakeSession({URL: DATA})

        with pytest.raises(OperationCancelled):
            make_downloader(session, cancel_event=event).download(URL, tmp_path / "out.bin")

        assert session.calls == []

    def test_backoff_is_bounded(self):
        downloader = Downloader(session=FakeSession(), backoff_base=0.5, backoff_max=3)
        assert [downloader.backoff_delay(n) for n in (1, 2, 3, 4)] == [0.5, 1.0, 2.0, 3]

    def test_github_asset(self):
        release = {
            "tag_name": "v4.5.0",
            "assets": [
                {"name": "yara-4.5.0-linux.zip", "browser_download_url": "https://gh/linux.zip"},
                {"name": "yara-4.5.0-win64.zip", "browser_download_url": "https://gh/win64.zip"},
            ],
        }
        session = FakeSession(
            {f"{API}/repos/VirusTotal/yara/releases/latest": FakeResponse(json_data=release)}
        )

        url = make_downloader(session).resolve_github_asset("VirusTotal/yara", r"win64\.zip$")

        assert url == "https://gh/win64.zip"

    def test_github_no_matching_asset(self):
        session = FakeSession(
            {f"{API}/repos/o/r/releases/latest": FakeResponse(json_data={"assets": []})}
        )

        with pytest.raises(DownloadError):
            make_downloader(session).resolve_github_asset("o/r", "win64")

    def test_github_invalid_regex(self):
        session = FakeSession(
            {f"{API}/repos/o/r/releases/latest": FakeResponse(json_data={"assets": []})}
        )

        with pytest.raises(DownloadError):
            make_downloader(session).resolve_github_asset("o/r", "([unclosed")

    @pytest.mark.parametrize(
        "body",
        [[{"name": "win64.zip"}], "not found", None, {"assets": "win64.zip"}, {"assets": ["win64"]}],
    )
    def test_github_malformed_release(self, body):
        session = FakeSession(
            {f"{API}/repos/o/r/releases/latest": FakeResponse(json_data=body)}
        )

        with pytest.raises(DownloadError):
            make_downloader(session).resolve_github_asset("o/r", "win64")


class TestToolFetcher:
    """Test fetching, verification and cancellation."""

    def test_verified_download_is_cached(self, tmp_path):
        session = FakeSession({URL: DATA})
        fetcher, cache = make_fetcher(tmp_path, session)
        dep = dependency(expected_hash=DIGEST)
        events = []

        report = fetcher.fetch_all([dep], progress=lambda *e: events.append(e))

        assert dep.status == ToolStatus.VERIFIED
        assert dep.computed_hash == DIGEST
        assert dep.local_path == str(cache.path_for(DIGEST))
        assert report.downloads == 1
        assert report.errors == [] and report.warnings == []
        assert events == [(dep.label, "verified", URL)]

    def test_cache_hit_makes_no_request(self, tmp_path):
        fetcher, cache = make_fetcher(tmp_path, FakeSession({URL: DATA}))
        fetcher.fetch_all([dependency(expected_hash=DIGEST)])

        session = FakeSession({URL: DATA})
        fetcher, _ = make_fetcher(tmp_path, session)
        dep = dependency(expected_hash=DIGEST)
        report = fetcher.fetch_all([dep])

        assert dep.status == ToolStatus.VERIFIED
        assert session.calls == []
        assert report.cache_hits == 1
        assert report.downloads == 0

    def test_hash_mismatch(self, tmp_path):
        session = FakeSession({URL: b"tampered bytes"})
        fetcher, cache = make_fetcher(tmp_path, session)
        dep = dependency(expected_hash=DIGEST)

        report = fetcher.fetch_all([dep])

        assert dep.status == ToolStatus.HASH_MISMATCH
        assert dep.computed_hash == sha256_of(b"tampered bytes")
        assert dep.local_path is None
        [error] = report.errors
        assert error.code == "HASH_MISMATCH"
        assert cache.stats().total_entries == 0
        assert cache.stats().temp_files == 0

    def test_unverified_when_no_expected_hash(self, tmp_path):
        fetcher, _ = make_fetcher(tmp_path, FakeSession({URL: DATA}))
        dep = dependency()

        report = fetcher.fetch_all([dep])

        assert dep.status == ToolStatus.UNVERIFIED
        assert dep.computed_hash == DIGEST
        assert [w.code for w in report.warnings] == ["UNVERIFIED_TOOL"]
        assert DIGEST in report.warnings[0].message

    def test_unreachable_after_retries(self, tmp_path):
        session = FakeSession({URL: FakeResponse(500)})
        fetcher, cache = make_fetcher(tmp_path, session, retries=2)
        dep = dependency(expected_hash=DIGEST)

        report = fetcher.fetch_all([dep])

        assert dep.status == ToolStatus.UNREACHABLE
        assert len(session.calls) == 2
        assert [e.code for e in report.errors] == ["DOWNLOAD_FAILED"]
        assert cache.stats().temp_files == 0

    def test_one_failure_does_not_stop_others(self, tmp_path):
        other_url = "https://example.com/other.zip"
        session = FakeSession({URL: DATA, other_url: FakeResponse(404)})
        fetcher, _ = make_fetcher(tmp_path, session, retries=1)
        good = dependency("good", expected_hash=DIGEST)
        bad = dependency("bad", url=other_url)

        report = fetcher.fetch_all([bad, good])

        assert good.status == ToolStatus.VERIFIED
        assert bad.status == ToolStatus.UNREACHABLE
        assert len(report.errors) == 1

    def test_non_pending_passed_through(self, tmp_path):
        session = FakeSession({URL: DATA})
        fetcher, _ = make_fetcher(tmp_path, session)
        dep = dependency()
        dep.skip("platform mismatch")

        report = fetcher.fetch_all([dep])

        assert dep.status == ToolStatus.SKIPPED
        assert report.dependencies == [dep]
        assert session.calls == []

    def test_cancelled_before_start(self, tmp_path):
        event = threading.Event()
        event.set()
        session = FakeSession({URL: DATA})
        fetcher, _ = make_fetcher(tmp_path, session, cancel_event=event)
        deps = [dependency("one"), dependency("two", url="https://example.com/two")]

        report = fetcher.fetch_all(deps)

        assert report.cancelled
        assert session.calls == []
        assert all(d.status == ToolStatus.SKIPPED for d in deps)
        assert all(d.skip_reason == CANCELLED_REASON for d in deps)
        assert [w.code for w in report.warnings] == ["CANCELLED", "CANCELLED"]

    def test_cancelled_mid_download(self, tmp_path):
        event = threading.Event()

        class CancellingResponse(FakeResponse):
            def iter_content(self, chunk_size=1024):
                yield b"part"
                event.set()
                yield b"rest"

        session = FakeSession({URL: CancellingResponse()})
        fetcher, cache = make_fetcher(tmp_path, session, cancel_event=event)
        dep = dependency(expected_hash=DIGEST)

        report = fetcher.fetch_all([dep])

        assert dep.status == ToolStatus.UNREACHABLE
        assert [e.code for e in report.errors] == ["CANCELLED"]
        assert report.cancelled
        assert cache.stats().temp_files == 0

    def test_github_source(self, tmp_path):
        release = {"assets": [{"name": "tool-win64.zip", "browser_download_url": URL}]}
        session = FakeSession(
            {
                f"{API}/repos/acme/tool/releases/latest": FakeResponse(json_data=release),
                URL: DATA,
            }
        )
        fetcher, _ = make_fetcher(tmp_path, session)
        dep = dependency(
            url=None,
            expected_hash=DIGEST,
            github_project="acme/tool",
            github_asset_regex="win64",
        )

        fetcher.fetch_all([dep])

        assert dep.status == ToolStatus.VERIFIED
        assert dep.resolved_url == URL

    def test_github_malformed_release_is_unreachable(self, tmp_path):
        session = FakeSession(
            {
                f"{API}/repos/acme/tool/releases/latest": FakeResponse(json_data=[]),
                URL: DATA,
            }
        )
        fetcher, _ = make_fetcher(tmp_path, session)
        broken = dependency(url=None, github_project="acme/tool", github_asset_regex="win64")
        plain = dependency("plain", expected_hash=DIGEST)

        report = fetcher.fetch_all([broken, plain])

        assert broken.status == ToolStatus.UNREACHABLE
        assert plain.status == ToolStatus.VERIFIED
        assert [e.code for e in report.errors] == ["DOWNLOAD_FAILED"]

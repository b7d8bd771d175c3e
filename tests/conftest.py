"""Shared fixtures: artifact trees on disk and a fake HTTP session."""

import hashlib
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
import requests
import yaml

from velobuild.core import logging as log
from velobuild.core.config import BuildSettings


def sha256_of(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class FakeResponse:
    """Minimal stand-in for requests.Response."""

    def __init__(self, status_code: int = 200, content: bytes = b"", json_data: Any = None):
        self.status_code = status_code
        self.content = content
        self._json = json_data

    def __enter__(self) -> "FakeResponse":
        return self

    def __exit__(self, *exc: Any) -> None:
        return None

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error", response=self)

    def iter_content(self, chunk_size: int = 1024):
        for i in range(0, len(self.content), chunk_size):
            yield self.content[i : i + chunk_size]

    def json(self) -> Any:
        return self._json


class FakeSession:
    """Serves canned responses per URL and records every request.

    A route is a bytes body, a FakeResponse, an exception instance, or a
    list of those consumed one per request (the last one repeats).
    """

    def __init__(self, routes: dict[str, Any] | None = None):
        self.routes: dict[str, Any] = dict(routes or {})
        self.headers: dict[str, str] = {}
        self.calls: list[str] = []

    def get(self, url: str, **kwargs: Any) -> FakeResponse:
        self.calls.append(url)
        route = self.routes.get(url)
        if route is None:
            raise requests.ConnectionError(f"no route to {url}")
        if isinstance(route, list):
            route = route.pop(0) if len(route) > 1 else route[0]
        if isinstance(route, BaseException):
            raise route
        if isinstance(route, FakeResponse):
            return route
        return FakeResponse(200, route)


@pytest.fixture(autouse=True)
def quiet_logging():
    """Keep test output clean and reset global logging state."""
    log.configure_logging(log_format="text", quiet=True)
    log.set_verbose(False)
    yield
    log.configure_logging(log_format="text", quiet=False)


@pytest.fixture
def artifact_root(tmp_path: Path) -> Path:
    root = tmp_path / "artifacts"
    root.mkdir()
    return root


@pytest.fixture
def write_artifact(artifact_root: Path) -> Callable[..., Path]:
    """Write an artifact definition file and return its path."""

    def _write(name: str, filename: str | None = None, **fields: Any) -> Path:
        data = {"name": name, "type": "CLIENT", **fields}
        path = artifact_root / (filename or f"{name}.yaml")
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def settings(tmp_path: Path, artifact_root: Path) -> BuildSettings:
    return BuildSettings(
        artifact_root=artifact_root,
        output_path=tmp_path / "out" / "collector.zip",
        cache_dir=tmp_path / "cache",
        backoff_base_seconds=0,
        backoff_max_seconds=0,
        workers=2,
    )

"""Build configuration.

Settings come from three layers, later layers winning:

1. a YAML/JSON config file (``velobuild.yaml`` in the working directory
   when no path is given),
2. ``VELOBUILD_*`` environment variables,
3. explicit overrides (CLI options).
"""

import json
import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from velobuild.core.errors import ConfigError
from velobuild.models.tool import Platform

DEFAULT_CONFIG_FILES = ("velobuild.yaml", "velobuild.yml", "velobuild.json")
ENV_PREFIX = "VELOBUILD_"


def default_cache_dir() -> Path:
    """Default tool cache location."""
    return Path.home() / ".velobuild" / "cache"


class BuildSettings(BaseModel):
    """Parameters of one build invocation."""

    artifact_root: Path = Field(default=Path("artifacts"), description="Artifact definitions root")
    include: list[str] = Field(
        default_factory=list, description="Artifact name patterns (glob or dotted prefix)"
    )
    platform: Platform | None = Field(default=None, description="Target platform filter")
    output_path: Path = Field(
        default=Path("collector.zip"), description="Package path (build) or export directory"
    )
    cache_dir: Path = Field(default_factory=default_cache_dir, description="Tool cache directory")
    catalog_path: Path | None = Field(default=None, description="Curated tool catalog (YAML)")
    strict: bool = Field(default=True, description="Only package verified tools")
    workers: int = Field(default=4, ge=1, le=32, description="Concurrent downloads")
    retries: int = Field(default=3, ge=1, le=10, description="Download attempts per tool")
    backoff_base_seconds: float = Field(default=0.5, ge=0, description="First retry delay")
    backoff_max_seconds: float = Field(default=8.0, ge=0, description="Retry delay cap")
    timeout_seconds: float = Field(default=30.0, gt=0, description="HTTP timeout per request")
    allow_empty: bool = Field(default=False, description="Accept a missing artifact root")
    overwrite: bool = Field(default=False, description="Replace an existing package")
    signing_key_path: Path | None = Field(default=None, description="PEM key to sign manifests")
    signing_algorithm: Literal["ed25519", "rsa-sha256"] = Field(
        default="ed25519", description="Manifest signature algorithm"
    )
    github_api_base: str = Field(
        default="https://api.github.com", description="GitHub API for release lookups"
    )

    model_config = {"extra": "forbid"}

    @field_validator("include", mode="before")
    @classmethod
    def split_include(cls, v: Any) -> Any:
        """Accept a comma-separated string as well as a list."""
        if isinstance(v, str):
            return [p.strip() for p in v.split(",") if p.strip()]
        return v

    @field_validator("platform", mode="before")
    @classmethod
    def normalize_platform(cls, v: Any) -> Any:
        """Lowercase platform names; empty means no filter."""
        if isinstance(v, str):
            v = v.strip().lower()
            if v in ("", "none"):
                return None
            if v == "macos":
                return "darwin"
        return v


def _read_config_file(path: Path) -> dict[str, Any]:
    try:
        with open(path, encoding="utf-8") as f:
            content = f.read()
    except OSError as e:
        raise ConfigError(f"Cannot read config file: {e}", path=str(path))

    try:
        if path.suffix == ".json":
            data = json.loads(content)
        else:
            data = yaml.safe_load(content)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigError(f"Config file is not valid: {e}", path=str(path))

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError("Config file must contain a mapping", path=str(path))
    return data


def _env_values(environ: dict[str, str]) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for name in BuildSettings.model_fields:
        raw = environ.get(f"{ENV_PREFIX}{name.upper()}")
        if raw is not None:
            values[name] = raw
    return values


def find_config_file(cwd: Path | None = None) -> Path | None:
    """Locate a default config file in the working directory."""
    base = cwd or Path.cwd()
    for name in DEFAULT_CONFIG_FILES:
        candidate = base / name
        if candidate.is_file():
            return candidate
    return None


def load_settings(
    config_path: Path | None = None,
    overrides: dict[str, Any] | None = None,
    environ: dict[str, str] | None = None,
) -> BuildSettings:
    """Load settings from file, environment and overrides.

    Args:
        config_path: Explicit config file; must exist when given
        overrides: Highest-precedence values; None entries are ignored
        environ: Environment mapping (defaults to ``os.environ``)

    Returns:
        Validated BuildSettings

    Raises:
        ConfigError: If a layer is unreadable or a value is invalid
    """
    values: dict[str, Any] = {}

    if config_path is not None:
        if not config_path.is_file():
            raise ConfigError(f"Config file {config_path} not found", path=str(config_path))
        values.update(_read_config_file(config_path))
    else:
        found = find_config_file()
        if found is not None:
            values.update(_read_config_file(found))

    values.update(_env_values(dict(os.environ) if environ is None else environ))

    if overrides:
        values.update({k: v for k, v in overrides.items() if v is not None})

    try:
        return BuildSettings(**values)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ConfigError(f"Invalid configuration: {problems}", path=str(config_path or ""))

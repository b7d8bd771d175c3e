"""Offline collector configuration.

Rendered as ``collector.config.yaml`` at the package root. The layout
follows the Velociraptor offline collector spec file (``OS``,
``Artifacts``, ``Target`` and ``Opt*`` keys) extended with a ``Tools``
section that points the collector at the bundled binaries instead of
their download URLs.
"""

from typing import Any

import yaml

from velobuild.models.artifact import ArtifactDefinition
from velobuild.models.build import IncludedTool
from velobuild.models.tool import Platform

_OS_NAMES = {
    Platform.WINDOWS: "Windows",
    Platform.LINUX: "Linux",
    Platform.DARWIN: "Darwin",
    Platform.ANY: "Generic",
}


def build_collector_config(
    build_id: str,
    platform: Platform,
    artifacts: list[ArtifactDefinition],
    tools: list[IncludedTool],
    target: str = "ZIP",
) -> dict[str, Any]:
    """Assemble the collector configuration mapping.

    Args:
        build_id: Build identifier
        platform: Collector target platform
        artifacts: Selected artifacts, in package order
        tools: Tools bundled in the package

    Returns:
        Mapping ready to dump as YAML
    """
    return {
        "BuildId": build_id,
        "OS": _OS_NAMES[platform],
        "Artifacts": {a.name: a.parameter_defaults() for a in artifacts},
        "Tools": [
            {
                "name": t.tool_name,
                "version": t.version_hint,
                "platform": t.platform.value,
                "path": t.archive_path,
                "sha256": t.sha256,
                "serve_locally": True,
                "verified": t.status.value == "verified",
            }
            for t in tools
        ],
        "Target": target,
        "OptVerbose": True,
        "OptBanner": True,
        "OptPrompt": False,
    }


def render_collector_config(config: dict[str, Any]) -> str:
    """Dump the configuration as YAML, keeping key order."""
    return yaml.safe_dump(config, sort_keys=False, default_flow_style=False, allow_unicode=True)

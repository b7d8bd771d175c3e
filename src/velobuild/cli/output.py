"""Output formatting for the velobuild CLI.

JSON (default), JSONL and human-readable modes. stdout carries only the
result of a command; progress, logs and diagnostics go to stderr.
"""

import json
import sys
from collections.abc import Iterable
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Literal, TextIO

from pydantic import BaseModel

from velobuild.models.build import BuildResult

OutputFormat = Literal["json", "jsonl", "human"]

_output_format: OutputFormat = "json"


def set_output_format(format: OutputFormat) -> None:
    """Set the global output format."""
    global _output_format
    _output_format = format


class JSONEncoder(json.JSONEncoder):
    """JSON encoder for velobuild types."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, Path):
            return str(obj)
        if isinstance(obj, Enum):
            return obj.value
        if isinstance(obj, BaseModel):
            return obj.model_dump(mode="json")
        return super().default(obj)


def _plain(data: Any) -> Any:
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json")
    return data


def output_json(data: Any, file: TextIO | None = None) -> None:
    """Write data as one JSON document.

    Args:
        data: dict, list or pydantic model
        file: Output stream (defaults to stdout)
    """
    file = file or sys.stdout
    json.dump(_plain(data), file, cls=JSONEncoder, ensure_ascii=False)
    file.write("\n")
    file.flush()


def output_jsonl(records: Iterable[Any], file: TextIO | None = None) -> None:
    """Write records as JSONL (one JSON object per line)."""
    file = file or sys.stdout
    for record in records:
        json.dump(_plain(record), file, cls=JSONEncoder, ensure_ascii=False)
        file.write("\n")
    file.flush()


def output_human(data: Any, title: str | None = None, file: TextIO | None = None) -> None:
    """Write data as indented key/value text."""
    file = file or sys.stdout

    if title:
        file.write(f"{title}\n")
        file.write("=" * len(title) + "\n")

    data = _plain(data)
    if isinstance(data, dict):
        _format_dict(data, file)
    elif isinstance(data, list):
        _format_list(data, file)
    else:
        file.write(f"{data}\n")
    file.flush()


def output_human_table(
    records: list[dict[str, Any]],
    columns: list[str],
    file: TextIO | None = None,
    max_width: int = 60,
) -> None:
    """Write records as an aligned table."""
    file = file or sys.stdout
    if not records:
        file.write("No records.\n")
        return

    widths = {col: len(col) for col in columns}
    for record in records:
        for col in columns:
            widths[col] = min(max_width, max(widths[col], len(str(record.get(col) or ""))))

    header = "  ".join(col.ljust(widths[col]) for col in columns)
    file.write(header.rstrip() + "\n")
    file.write("-" * len(header.rstrip()) + "\n")
    for record in records:
        cells = []
        for col in columns:
            value = str(record.get(col) or "")
            if len(value) > widths[col]:
                value = value[: widths[col] - 3] + "..."
            cells.append(value.ljust(widths[col]))
        file.write("  ".join(cells).rstrip() + "\n")
    file.flush()


def _format_dict(data: dict[str, Any], file: TextIO, indent: int = 0) -> None:
    prefix = "  " * indent
    for key, value in data.items():
        if isinstance(value, dict):
            file.write(f"{prefix}{key}:\n")
            _format_dict(value, file, indent + 1)
        elif isinstance(value, list):
            file.write(f"{prefix}{key}:\n")
            _format_list(value, file, indent + 1)
        else:
            file.write(f"{prefix}{key}: {value}\n")


def _format_list(data: list[Any], file: TextIO, indent: int = 0) -> None:
    prefix = "  " * indent
    for item in data:
        if isinstance(item, dict):
            file.write(f"{prefix}-\n")
            _format_dict(item, file, indent + 1)
        else:
            file.write(f"{prefix}- {item}\n")


def render_build_result(result: BuildResult, file: TextIO | None = None) -> None:
    """Human rendering of a BuildResult."""
    file = file or sys.stdout
    state = "OK" if result.success else "FAILED"
    if result.cancelled:
        state += " (cancelled)"
    file.write(f"{result.action.value}: {state}\n")
    file.write(
        f"  artifacts: {result.artifact_count}  tools: {result.tool_count}  "
        f"edges: {result.edge_count}\n"
    )
    if result.output_package_path:
        file.write(f"  package:   {result.output_package_path}\n")
    if result.build_id:
        file.write(f"  build id:  {result.build_id}\n")
    if result.output_artifacts_path:
        file.write(f"  exports:   {result.output_artifacts_path}\n")

    if result.tools:
        file.write("\n")
        output_human_table(
            [
                {
                    "tool": t.tool_name,
                    "platform": t.platform.value,
                    "version": t.version_hint,
                    "status": t.status.value,
                    "detail": t.skip_reason or t.resolved_url,
                }
                for t in result.tools
            ],
            ["tool", "platform", "version", "status", "detail"],
            file=file,
        )

    for label, issues in (("Warnings", result.warnings), ("Errors", result.errors)):
        if issues:
            file.write(f"\n{label}:\n")
            for issue in issues:
                file.write(f"  {issue}\n")
    file.flush()


def output(data: Any, format: OutputFormat | None = None, file: TextIO | None = None) -> None:
    """Write data in the given (or global) format."""
    format = format or _output_format

    if format == "human":
        if isinstance(data, BuildResult):
            render_build_result(data, file=file)
        else:
            output_human(data, file=file)
    elif format == "jsonl" and isinstance(data, list):
        output_jsonl(data, file=file)
    else:
        output_json(data, file=file)


def output_error(error: Any, file: TextIO | None = None) -> None:
    """Output an error to stdout in the current format.

    Errors go to stdout (not stderr) so callers can handle them
    programmatically.
    """
    output({"error": _plain(error)}, file=file)


class OutputFormatter:
    """Encapsulates output formatting for commands."""

    def __init__(self, format: OutputFormat = "json"):
        self.format = format

    def output(self, data: Any) -> None:
        """Write a command result to stdout."""
        output(data, format=self.format)

    def error(self, error: Any) -> None:
        """Write an error to stdout."""
        output({"error": _plain(error)}, format=self.format)

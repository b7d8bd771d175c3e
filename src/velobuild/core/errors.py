"""Structured error handling for velobuild.

Per-item failures (one artifact file, one tool) are raised inside a
component, caught at the batch boundary and recorded as BuildIssues so the
batch continues. Only PackagingError and a missing artifact root abort a
build.
"""

import sys
from typing import Any, Literal, NoReturn

from velobuild.models.build import BuildIssue
from velobuild.models.error import ErrorCode, StructuredError


class VelobuildError(Exception):
    """Base exception for velobuild errors.

    Wraps a StructuredError for consistent error handling.
    """

    def __init__(
        self,
        code: str,
        message: str,
        remediation: str,
        retryable: bool = False,
        context: dict[str, Any] | None = None,
    ):
        self.error = StructuredError(
            code=code,
            message=message,
            remediation=remediation,
            retryable=retryable,
            context=context,
        )
        super().__init__(message)

    @property
    def code(self) -> str:
        """Error code."""
        return self.error.code

    def to_structured(self) -> StructuredError:
        """Convert to StructuredError."""
        return self.error

    def to_structured_error(self) -> dict:
        """Convert to JSON-serializable dict for output."""
        return self.error.model_dump(mode="json", exclude_none=True)

    def to_issue(self, severity: Literal["warning", "error"] = "error") -> BuildIssue:
        """Convert to a BuildIssue carrying the identifying context."""
        context = self.error.context or {}
        return BuildIssue(
            severity=severity,
            code=self.error.code,
            message=self.error.message,
            artifact=context.get("artifact"),
            tool=context.get("tool"),
            url=context.get("url"),
            path=context.get("path"),
            remediation=self.error.remediation,
        )


class ParseError(VelobuildError):
    """An artifact definition file could not be parsed."""

    def __init__(self, message: str, path: str | None = None):
        super().__init__(
            code=ErrorCode.PARSE_ERROR,
            message=message,
            remediation="Fix the artifact definition file; it was skipped",
            retryable=False,
            context={"path": path} if path else None,
        )


class ArtifactStoreNotFoundError(VelobuildError):
    """The artifact root directory does not exist."""

    def __init__(self, root: str):
        super().__init__(
            code=ErrorCode.ARTIFACT_ROOT_NOT_FOUND,
            message=f"Artifact directory {root} does not exist",
            remediation="Check --root, or pass --allow-empty to accept an empty scan",
            retryable=False,
            context={"path": root},
        )


class UnresolvedToolReference(VelobuildError):
    """A tool was named but no fetchable source is known."""

    def __init__(self, tool: str, artifacts: list[str]):
        super().__init__(
            code=ErrorCode.UNRESOLVED_TOOL,
            message=(
                f"Tool '{tool}' has no download URL and no catalog entry; "
                f"referenced by {', '.join(artifacts)}"
            ),
            remediation="Add a url to the artifact's tools block or an entry to the tool catalog",
            retryable=False,
            context={"tool": tool, "artifact": ", ".join(artifacts)},
        )


class DownloadError(VelobuildError):
    """Network or HTTP failure while fetching a tool."""

    def __init__(
        self,
        url: str,
        reason: str,
        attempts: int = 1,
        tool: str | None = None,
        status_code: int | None = None,
    ):
        super().__init__(
            code=ErrorCode.DOWNLOAD_FAILED,
            message=f"Download of {url} failed after {attempts} attempt(s): {reason}",
            remediation="Check connectivity and the URL, or pre-seed the tool cache",
            retryable=True,
            context={
                "url": url,
                "tool": tool,
                "attempts": attempts,
                "status_code": status_code,
            },
        )
        self.status_code = status_code


class HashMismatchError(VelobuildError):
    """Downloaded bytes do not match the expected SHA-256."""

    def __init__(self, expected: str, actual: str, url: str | None = None, tool: str | None = None):
        super().__init__(
            code=ErrorCode.HASH_MISMATCH,
            message=f"Hash mismatch for {tool or url}: expected {expected}, got {actual}",
            remediation="The file may have been tampered with or updated upstream. "
            "Confirm the correct hash before trusting it.",
            retryable=False,
            context={"expected": expected, "actual": actual, "url": url, "tool": tool},
        )


class PackagingError(VelobuildError):
    """Writing the collector package failed. Fatal to the build."""

    def __init__(self, message: str, path: str | None = None):
        super().__init__(
            code=ErrorCode.PACKAGING_FAILED,
            message=message,
            remediation="Check free disk space and permissions on the output directory",
            retryable=True,
            context={"path": path} if path else None,
        )


class ConflictWarning(VelobuildError):
    """Two artifacts disagree on where a tool comes from."""

    def __init__(
        self,
        tool: str,
        field: str,
        first_artifact: str,
        first_value: str,
        other_artifact: str,
        other_value: str,
    ):
        super().__init__(
            code=ErrorCode.CONFLICT,
            message=(
                f"Conflicting {field} for tool '{tool}': {first_artifact} declares "
                f"{first_value}, {other_artifact} declares {other_value}; "
                f"keeping {first_value}"
            ),
            remediation="Align the tool declarations of both artifacts",
            retryable=False,
            context={
                "tool": tool,
                "artifact": f"{first_artifact}, {other_artifact}",
                "url": first_value if field == "url" else None,
                "field": field,
            },
        )


class InvalidTransitionError(VelobuildError):
    """A ToolDependency status change that is not a forward transition."""

    def __init__(self, tool: str, current: str, requested: str):
        super().__init__(
            code=ErrorCode.INVALID_TRANSITION,
            message=f"Cannot move tool {tool} from '{current}' to '{requested}'",
            remediation="Tool status only moves forward; start a fresh build",
            retryable=False,
            context={"tool": tool, "current": current, "requested": requested},
        )


class CatalogError(VelobuildError):
    """The tool catalog could not be loaded."""

    def __init__(self, message: str, path: str | None = None):
        super().__init__(
            code=ErrorCode.CATALOG_ERROR,
            message=message,
            remediation="Fix the tool catalog file",
            retryable=False,
            context={"path": path} if path else None,
        )


class ConfigError(VelobuildError):
    """Invalid configuration."""

    def __init__(self, message: str, path: str | None = None):
        super().__init__(
            code=ErrorCode.CONFIG_ERROR,
            message=message,
            remediation="Fix the configuration file, environment variable or option",
            retryable=False,
            context={"path": path} if path else None,
        )


class OperationCancelled(VelobuildError):
    """The run was cancelled by the caller."""

    def __init__(self, item: str | None = None):
        super().__init__(
            code=ErrorCode.CANCELLED,
            message=f"Cancelled before {item}" if item else "Operation cancelled",
            remediation="Re-run the build to continue",
            retryable=True,
            context={"tool": item} if item else None,
        )


def handle_error(error: VelobuildError | Exception, exit_code: int = 1) -> NoReturn:
    """Handle an error by outputting it and exiting.

    Args:
        error: The error to handle
        exit_code: Exit code to use
    """
    from velobuild.cli.output import output_error

    if isinstance(error, VelobuildError):
        output_error(error.to_structured())
    else:
        structured = StructuredError(
            code=ErrorCode.INTERNAL_ERROR,
            message=str(error),
            remediation="This is an unexpected error. Please report it.",
            retryable=False,
            context={"type": type(error).__name__},
        )
        output_error(structured)

    sys.exit(exit_code)

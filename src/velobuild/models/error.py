"""Structured error model for velobuild."""

from typing import Any

from pydantic import BaseModel, Field


class StructuredError(BaseModel):
    """Structured error response format.

    All errors emitted by velobuild follow this schema so callers can
    handle them programmatically and act on the remediation.
    """

    code: str = Field(
        ...,
        pattern=r"^[A-Z][A-Z0-9_]*$",
        description="Error code (e.g., HASH_MISMATCH)",
        examples=[
            "PARSE_ERROR",
            "UNRESOLVED_TOOL",
            "DOWNLOAD_FAILED",
            "HASH_MISMATCH",
            "PACKAGING_FAILED",
            "CONFLICT",
        ],
    )

    message: str = Field(
        ...,
        description="Human-readable error message",
    )

    remediation: str = Field(
        ...,
        description="Suggested fix or next step",
    )

    retryable: bool = Field(
        ...,
        description="Whether retry may succeed",
    )

    context: dict[str, Any] | None = Field(
        default=None,
        description="Additional context (artifact, tool, url, path)",
    )

    model_config = {"extra": "forbid"}


class ErrorCode:
    """Standard error and warning codes for velobuild."""

    PARSE_ERROR = "PARSE_ERROR"
    DUPLICATE_ARTIFACT = "DUPLICATE_ARTIFACT"
    ARTIFACT_ROOT_NOT_FOUND = "ARTIFACT_ROOT_NOT_FOUND"
    INVALID_HASH = "INVALID_HASH"
    UNRESOLVED_TOOL = "UNRESOLVED_TOOL"
    PLATFORM_MISMATCH = "PLATFORM_MISMATCH"
    CONFLICT = "CONFLICT"
    DOWNLOAD_FAILED = "DOWNLOAD_FAILED"
    HASH_MISMATCH = "HASH_MISMATCH"
    UNVERIFIED_TOOL = "UNVERIFIED_TOOL"
    UNVERIFIED_TOOL_INCLUDED = "UNVERIFIED_TOOL_INCLUDED"
    TOOL_EXCLUDED = "TOOL_EXCLUDED"
    CANCELLED = "CANCELLED"
    NOTHING_TO_PACKAGE = "NOTHING_TO_PACKAGE"
    PACKAGING_FAILED = "PACKAGING_FAILED"
    BUILD_FAILED_STRICT = "BUILD_FAILED_STRICT"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    CATALOG_ERROR = "CATALOG_ERROR"
    CONFIG_ERROR = "CONFIG_ERROR"
    VERIFICATION_FAILED = "VERIFICATION_FAILED"
    IO_ERROR = "IO_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"

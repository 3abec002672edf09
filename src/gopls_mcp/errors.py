"""Error taxonomy shared by the engine, router and tool surface."""

from __future__ import annotations

from enum import StrEnum


class ErrorKind(StrEnum):
    """Stable error codes surfaced to tool callers."""

    UNKNOWN_WORKSPACE = "UNKNOWN_WORKSPACE"
    NOT_READY = "NOT_READY"
    DEADLINE = "DEADLINE"
    ANALYZER_ERROR = "ANALYZER_ERROR"
    ANALYZER_GONE = "ANALYZER_GONE"
    PROTOCOL_FRAMING = "PROTOCOL_FRAMING"
    UNSUPPORTED_FILE = "UNSUPPORTED_FILE"
    FILE_UNREADABLE = "FILE_UNREADABLE"
    CANCELLED = "CANCELLED"
    INVALID_PARAMS = "INVALID_PARAMS"
    PATH_BLOCKED = "PATH_BLOCKED"


class EngineError(Exception):
    """Raised for every failure an engine operation can surface."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        details: dict[str, object] | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.details = details or {}

    def __repr__(self) -> str:
        return f"EngineError(kind={self.kind.value!r}, message={self.message!r})"


def analyzer_gone(workspace: str, reason: str = "analyzer is not running") -> EngineError:
    """Build the error reported once a workspace's analyzer is unavailable."""
    return EngineError(
        ErrorKind.ANALYZER_GONE,
        f"{reason} for workspace: {workspace}",
        {"workspace": workspace},
    )

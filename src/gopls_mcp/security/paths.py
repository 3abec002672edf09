"""Workspace-scoped path resolution and file URI helpers."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Final
from urllib.parse import unquote, urlsplit

from gopls_mcp.errors import EngineError, ErrorKind

WINDOWS_ABSOLUTE_PATTERN: Final[re.Pattern[str]] = re.compile(r"^[a-zA-Z]:[\\/]")


class PathBlockedError(EngineError):
    """Raised when a requested path falls outside the workspace root."""

    def __init__(self, reason: str, hint: str) -> None:
        super().__init__(ErrorKind.PATH_BLOCKED, reason, {"hint": hint})
        self.reason = reason
        self.hint = hint


def _normalize_input(candidate: str) -> tuple[str, bool]:
    """Normalize separators and detect absolute-style inputs."""
    normalized = candidate.replace("\\", "/")
    if normalized.startswith("/"):
        return normalized, True
    if WINDOWS_ABSOLUTE_PATTERN.match(normalized):
        return normalized, True
    return normalized, False


def resolve_workspace_path(workspace_root: Path, candidate: str) -> Path:
    """Resolve a workspace-relative (or contained absolute) path."""
    root = workspace_root.resolve()
    normalized, is_absolute_style = _normalize_input(candidate)

    if not normalized:
        raise PathBlockedError(
            reason="Path is empty.",
            hint="Provide a workspace-relative path such as 'cmd/main.go'.",
        )

    if is_absolute_style:
        resolved_absolute = Path(normalized).resolve(strict=False)
        if not resolved_absolute.is_relative_to(root):
            raise PathBlockedError(
                reason="Absolute path is outside the workspace.",
                hint="Use a path located under the workspace root.",
            )
        return resolved_absolute

    parts = [part for part in normalized.split("/") if part not in ("", ".")]
    if any(part == ".." for part in parts):
        raise PathBlockedError(
            reason="Path traversal is blocked.",
            hint="Remove '..' segments and use a workspace-relative path.",
        )

    resolved = (root / Path(*parts)).resolve(strict=False)
    if not resolved.is_relative_to(root):
        raise PathBlockedError(
            reason="Resolved path escapes the workspace.",
            hint="Use a path located under the workspace root.",
        )
    return resolved


def path_to_uri(path: Path) -> str:
    """Return the file URI form of an absolute path."""
    return path.as_uri()


def uri_to_path(uri: str) -> Path | None:
    """Return the filesystem path for a file URI, or None for other schemes."""
    parts = urlsplit(uri)
    if parts.scheme != "file":
        return None
    raw = unquote(parts.path)
    if WINDOWS_ABSOLUTE_PATTERN.match(raw.lstrip("/")):
        raw = raw.lstrip("/")
    return Path(raw)


def workspace_relative(workspace_root: Path, uri: str) -> str | None:
    """Return the POSIX workspace-relative path for a URI inside the workspace."""
    path = uri_to_path(uri)
    if path is None:
        return None
    root = workspace_root.resolve()
    if not path.is_relative_to(root):
        return None
    return path.relative_to(root).as_posix()

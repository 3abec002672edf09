"""Workspace path safety primitives."""

from .paths import (
    PathBlockedError,
    path_to_uri,
    resolve_workspace_path,
    uri_to_path,
    workspace_relative,
)

__all__ = [
    "PathBlockedError",
    "path_to_uri",
    "resolve_workspace_path",
    "uri_to_path",
    "workspace_relative",
]

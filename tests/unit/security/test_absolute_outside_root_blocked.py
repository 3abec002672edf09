from __future__ import annotations

from pathlib import Path

import pytest

from gopls_mcp.errors import ErrorKind
from gopls_mcp.security import PathBlockedError, resolve_workspace_path


def test_absolute_path_outside_root_is_blocked(tmp_path: Path) -> None:
    workspace = tmp_path / "ws"
    workspace.mkdir()
    outside_file = tmp_path / "outside.go"
    outside_file.write_text("package x\n", encoding="utf-8")

    with pytest.raises(PathBlockedError) as error:
        resolve_workspace_path(workspace_root=workspace, candidate=str(outside_file))

    assert error.value.reason == "Absolute path is outside the workspace."
    assert error.value.kind is ErrorKind.PATH_BLOCKED


def test_absolute_path_inside_root_is_allowed(tmp_path: Path) -> None:
    inside = tmp_path / "cmd" / "main.go"
    inside.parent.mkdir()
    inside.write_text("package main\n", encoding="utf-8")

    resolved = resolve_workspace_path(workspace_root=tmp_path, candidate=str(inside))

    assert resolved == inside.resolve()

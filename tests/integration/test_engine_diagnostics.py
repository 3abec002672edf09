from __future__ import annotations

from collections.abc import Callable
from dataclasses import replace

from conftest import FAST_SETTINGS, FakeWorkspace

from gopls_mcp.engine import WorkspaceEngine

UNDEFINED = {
    "range": {"start": {"line": 5, "character": 13}, "end": {"line": 5, "character": 21}},
    "severity": 1,
    "source": "compiler",
    "message": "undefined: Greeting",
    "code": "UndeclaredName",
}


def test_push_mode_returns_published_diagnostics(
    fake_workspace: Callable[..., FakeWorkspace],
    start_engine: Callable[..., WorkspaceEngine],
) -> None:
    workspace = fake_workspace("w", diagnostics={"/main.go": [UNDEFINED]})
    engine = start_engine(workspace)

    diagnostics = engine.get_diagnostics("main.go")

    assert diagnostics == [
        {
            "range": {"start": {"line": 6, "character": 13}, "end": {"line": 6, "character": 21}},
            "severity": 1,
            "severity_name": "error",
            "source": "compiler",
            "message": "undefined: Greeting",
            "code": "UndeclaredName",
        }
    ]
    assert workspace.requests("textDocument/diagnostic") == []


def test_push_mode_returns_empty_list_after_settle_window(
    fake_workspace: Callable[..., FakeWorkspace],
    start_engine: Callable[..., WorkspaceEngine],
) -> None:
    workspace = fake_workspace("w")
    settings = replace(FAST_SETTINGS, diagnostics_settle_seconds=0.1)
    engine = start_engine(workspace, settings=settings)

    assert engine.get_diagnostics("lib.go") == []


def test_pull_mode_requests_document_diagnostics(
    fake_workspace: Callable[..., FakeWorkspace],
    start_engine: Callable[..., WorkspaceEngine],
) -> None:
    workspace = fake_workspace(
        "w",
        replies={"textDocument/diagnostic": {"result": {"kind": "full", "items": [UNDEFINED]}}},
    )
    engine = start_engine(workspace, settings=replace(FAST_SETTINGS, diagnostics_mode="pull"))

    diagnostics = engine.get_diagnostics("main.go")

    assert diagnostics[0]["message"] == "undefined: Greeting"
    params = workspace.requests("textDocument/diagnostic")[0]["params"]
    assert params == {"textDocument": {"uri": (workspace.root / "main.go").as_uri()}}

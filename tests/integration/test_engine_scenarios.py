from __future__ import annotations

import threading
import time
from collections.abc import Callable
from pathlib import Path

import pytest
from conftest import FakeWorkspace

from gopls_mcp.engine import EngineState, WorkspaceEngine
from gopls_mcp.errors import EngineError, ErrorKind
from gopls_mcp.router import WorkspaceRouter


def _range(line: int, start: int, end: int) -> dict[str, dict[str, int]]:
    return {"start": {"line": line, "character": start}, "end": {"line": line, "character": end}}


def _hover(text: str) -> dict[str, object]:
    return {"result": {"contents": {"kind": "markdown", "value": text}}}


def test_definition_location_is_one_based(
    tmp_path: Path,
    fake_workspace: Callable[..., FakeWorkspace],
    start_engine: Callable[..., WorkspaceEngine],
) -> None:
    lib_uri = (tmp_path / "w" / "lib.go").resolve().as_uri()
    workspace = fake_workspace(
        "w",
        replies={
            "textDocument/definition": {"result": [{"uri": lib_uri, "range": _range(3, 0, 4)}]}
        },
    )
    engine = start_engine(workspace)

    locations = engine.go_to_definition("main.go", 10, 5)

    assert locations == [
        {
            "uri": lib_uri,
            "path": "lib.go",
            "line": 4,
            "character": 0,
            "end_line": 4,
            "end_character": 4,
        }
    ]
    sent = workspace.requests("textDocument/definition")[0]["params"]
    assert sent["position"] == {"line": 9, "character": 5}
    assert sent["textDocument"] == {"uri": (workspace.root / "main.go").as_uri()}


def test_two_workspaces_answer_concurrent_calls_independently(
    fake_workspace: Callable[..., FakeWorkspace],
    start_engine: Callable[..., WorkspaceEngine],
) -> None:
    first = fake_workspace(
        "a", replies={"textDocument/hover": {**_hover("from a"), "delay_ms": 150}}
    )
    second = fake_workspace("b", replies={"textDocument/hover": _hover("from b")})
    engines = {"a": start_engine(first), "b": start_engine(second)}
    router = WorkspaceRouter([first.root, second.root], lambda root: engines[root.name])
    results: dict[str, object] = {}

    def call(name: str, workspace: FakeWorkspace) -> None:
        engine = router.route(str(workspace.root))
        results[name] = engine.get_hover_info("main.go", 6, 13)["contents"]

    threads = [
        threading.Thread(target=call, args=("a", first)),
        threading.Thread(target=call, args=("b", second)),
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=5.0)

    assert results == {"a": ["from a"], "b": ["from b"]}
    assert len(first.requests("textDocument/hover")) == 1
    assert len(second.requests("textDocument/hover")) == 1
    # Each engine numbers its own requests from 1.
    assert first.requests("initialize")[0]["id"] == 1
    assert second.requests("initialize")[0]["id"] == 1


def test_call_waits_for_end_of_load_signal(
    fake_workspace: Callable[..., FakeWorkspace],
    start_engine: Callable[..., WorkspaceEngine],
) -> None:
    workspace = fake_workspace(
        "w", ready_after_ms=200, replies={"textDocument/hover": _hover("ok")}
    )
    started = time.monotonic()
    engine = start_engine(workspace)
    time.sleep(max(0.0, 0.05 - (time.monotonic() - started)))

    hover = engine.get_hover_info("main.go", 6, 13)
    elapsed = time.monotonic() - started

    assert hover["contents"] == ["ok"]
    assert elapsed >= 0.18
    records = workspace.records()
    ready_at = next(index for index, record in enumerate(records) if record.get("event") == "ready")
    did_open_at = next(
        index
        for index, record in enumerate(records)
        if record.get("method") == "textDocument/didOpen"
    )
    assert did_open_at > ready_at


def test_deadline_leaves_engine_usable(
    fake_workspace: Callable[..., FakeWorkspace],
    start_engine: Callable[..., WorkspaceEngine],
) -> None:
    workspace = fake_workspace(
        "w", replies={"textDocument/hover": [{"silent": True}, _hover("second")]}
    )
    engine = start_engine(workspace)
    engine.readiness.await_ready(2.0)

    with pytest.raises(EngineError) as error:
        engine.get_hover_info("main.go", 6, 13, timeout=0.1)

    assert error.value.kind is ErrorKind.DEADLINE
    assert engine.correlator.pending_count() == 0
    assert engine.get_hover_info("main.go", 6, 13)["contents"] == ["second"]
    assert engine.running is True


def test_crash_mid_call_reports_gone_and_not_running(
    fake_workspace: Callable[..., FakeWorkspace],
    start_engine: Callable[..., WorkspaceEngine],
) -> None:
    workspace = fake_workspace("w", crash_on="textDocument/hover")
    engine = start_engine(workspace)
    router = WorkspaceRouter([workspace.root], lambda _: engine)

    with pytest.raises(EngineError) as error:
        engine.get_hover_info("main.go", 6, 13)

    assert error.value.kind is ErrorKind.ANALYZER_GONE
    deadline = time.monotonic() + 3.0
    while engine.state is not EngineState.STOPPED and time.monotonic() < deadline:
        time.sleep(0.02)
    assert engine.status()["state"] == "stopped"
    assert engine.status()["returncode"] == 3
    assert router.list_workspaces() == [{"workspace": str(workspace.root), "running": False}]
    with pytest.raises(EngineError) as later:
        engine.get_document_symbols("main.go")
    assert later.value.kind is ErrorKind.ANALYZER_GONE


def test_unknown_workspace_enumerates_configured_ones(tmp_path: Path) -> None:
    router = WorkspaceRouter(
        [tmp_path / "a", tmp_path / "b"], lambda root: WorkspaceEngine(root)
    )

    with pytest.raises(EngineError) as error:
        router.route(str(tmp_path / "c"))

    assert error.value.kind is ErrorKind.UNKNOWN_WORKSPACE
    assert error.value.details["available"] == [
        str((tmp_path / "a").resolve()),
        str((tmp_path / "b").resolve()),
    ]
    assert "Available:" in error.value.message

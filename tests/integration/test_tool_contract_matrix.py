from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

from conftest import FAST_SETTINGS, FakeWorkspace

from gopls_mcp.config import CliOverrides
from gopls_mcp.engine import WorkspaceEngine
from gopls_mcp.server import create_server


def test_tool_contract_matrix_for_every_tool(
    tmp_path: Path, fake_workspace: Callable[..., FakeWorkspace]
) -> None:
    workspace = fake_workspace("ws")
    server = create_server(
        cwd=str(tmp_path),
        cli_overrides=CliOverrides(workspaces=(workspace.root,)),
        engine_factory=lambda root: WorkspaceEngine(
            root, command=workspace.command, settings=FAST_SETTINGS
        ),
    )
    server.start()
    ws = str(workspace.root)
    position = {"workspace": ws, "path": "main.go", "line": 6, "character": 13}
    document = {"workspace": ws, "path": "main.go"}
    requests = [
        ("list_workspaces", {}, "workspaces"),
        ("go_to_definition", position, "locations"),
        ("find_references", {**position, "include_declaration": False}, "locations"),
        ("get_hover_info", position, "contents"),
        ("get_document_symbols", document, "symbols"),
        ("search_workspace_symbols", {"workspace": ws, "query": "Greeting"}, "symbols"),
        ("go_to_type_definition", position, "locations"),
        ("get_diagnostics", document, "diagnostics"),
        ("find_implementations", position, "locations"),
        ("get_completions", position, "items"),
        ("get_signature_help", position, "signatures"),
        ("format_document", document, "edits"),
        ("organize_imports", document, "edits"),
        (
            "get_inlay_hints",
            {
                **document,
                "start_line": 1,
                "start_character": 0,
                "end_line": 7,
                "end_character": 0,
            },
            "hints",
        ),
        ("server_status", {}, "effective_config"),
        ("audit_log", {"limit": 20}, "entries"),
    ]

    try:
        listed = server.handle_payload({"id": "req-list", "method": "tools/list", "params": {}})
        assert [tool["name"] for tool in listed["result"]["tools"]] == [
            name for name, _, _ in requests
        ]
        for idx, (method, params, result_key) in enumerate(requests):
            response = server.handle_payload(
                {"id": f"req-matrix-{idx}", "method": method, "params": params}
            )
            assert set(response.keys()) >= {"request_id", "ok", "result", "warnings", "blocked"}
            assert response["request_id"] == f"req-matrix-{idx}"
            assert response["ok"] is True, (method, response.get("error"))
            assert isinstance(response["warnings"], list)
            assert result_key in response["result"], method
    finally:
        server.close()

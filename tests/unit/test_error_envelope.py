from __future__ import annotations

import json
from pathlib import Path

from gopls_mcp.config import CliOverrides
from gopls_mcp.server import StdioServer, create_server


def _server(tmp_path: Path) -> StdioServer:
    workspace = tmp_path / "ws"
    workspace.mkdir(exist_ok=True)
    return create_server(
        cwd=str(tmp_path), cli_overrides=CliOverrides(workspaces=(workspace,))
    )


def test_malformed_json_returns_invalid_json_error(tmp_path: Path) -> None:
    server = _server(tmp_path)

    response = server.handle_json_line("{not-json")

    assert response["ok"] is False
    assert response["error"] == {
        "code": "INVALID_JSON",
        "message": "Request must be valid JSON.",
    }
    assert str(response["request_id"]).startswith("req-")


def test_unknown_tool_returns_explicit_error(tmp_path: Path) -> None:
    server = _server(tmp_path)

    response = server.handle_payload(
        {"id": "abc-123", "method": "rename_symbol", "params": {"k": "v"}}
    )

    assert response["ok"] is False
    assert response["request_id"] == "abc-123"
    assert response["error"] == {
        "code": "UNKNOWN_TOOL",
        "message": "Unknown tool: rename_symbol",
    }


def test_invalid_tools_call_params_returns_invalid_params_error(tmp_path: Path) -> None:
    server = _server(tmp_path)
    payload = {
        "id": 7,
        "method": "tools/call",
        "params": {"name": "get_hover_info", "arguments": []},
    }

    response = server.handle_payload(json.loads(json.dumps(payload)))

    assert response["ok"] is False
    assert response["request_id"] == "7"
    assert response["error"] == {
        "code": "INVALID_PARAMS",
        "message": "tools/call params.arguments must be an object.",
    }


def test_unknown_workspace_lists_available_workspaces(tmp_path: Path) -> None:
    server = _server(tmp_path)

    response = server.handle_payload(
        {
            "id": "r1",
            "method": "get_hover_info",
            "params": {
                "workspace": str(tmp_path / "elsewhere"),
                "path": "main.go",
                "line": 1,
                "character": 0,
            },
        }
    )

    assert response["ok"] is False
    assert response["error"]["code"] == "UNKNOWN_WORKSPACE"
    assert response["result"]["available"] == [str((tmp_path / "ws").resolve())]


def test_engine_that_never_started_reports_analyzer_gone(tmp_path: Path) -> None:
    server = _server(tmp_path)

    response = server.handle_payload(
        {
            "id": "r2",
            "method": "get_document_symbols",
            "params": {"workspace": str(tmp_path / "ws"), "path": "main.go"},
        }
    )

    assert response["ok"] is False
    assert response["blocked"] is False
    assert response["error"]["code"] == "ANALYZER_GONE"


def test_invalid_line_is_rejected_before_reaching_the_engine(tmp_path: Path) -> None:
    server = _server(tmp_path)

    response = server.handle_payload(
        {
            "id": "r3",
            "method": "go_to_definition",
            "params": {
                "workspace": str(tmp_path / "ws"),
                "path": "main.go",
                "line": 0,
                "character": 0,
            },
        }
    )

    assert response["error"] == {
        "code": "INVALID_PARAMS",
        "message": "go_to_definition line must be an integer >= 1.",
    }


def test_every_request_is_audited(tmp_path: Path) -> None:
    server = _server(tmp_path)
    server.handle_json_line("{not-json")
    server.handle_payload({"id": "r4", "method": "list_workspaces", "params": {}})

    response = server.handle_payload({"id": "r5", "method": "audit_log", "params": {}})

    tools = [entry["tool"] for entry in response["result"]["entries"]]
    assert tools == ["invalid_json", "list_workspaces"]

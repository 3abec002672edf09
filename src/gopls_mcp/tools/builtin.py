"""Built-in tool set: argument validation and routing to workspace engines."""

from __future__ import annotations

from collections.abc import Callable

from gopls_mcp.config import ServerConfig
from gopls_mcp.engine import WorkspaceEngine
from gopls_mcp.router import WorkspaceRouter
from gopls_mcp.tools.registry import ToolDispatchError, ToolHandler, ToolRegistry, ToolSpec

AUDIT_LOG_MAX_LIMIT = 200

POSITION_ARGS = ("workspace", "path", "line", "character")
DOCUMENT_ARGS = ("workspace", "path")
COMMON_OPTIONAL = ("timeout_ms",)

Operation = Callable[..., object]


def register_builtin_tools(
    registry: ToolRegistry,
    router: WorkspaceRouter,
    config: ServerConfig,
    read_audit_entries: Callable[[str | None, int], list[dict[str, object]]],
) -> None:
    """Register the analyzer tools plus the status and audit helpers."""
    registry.register(
        ToolSpec("list_workspaces", "List configured workspaces and whether each is running."),
        _list_workspaces_handler(router),
    )
    registry.register(
        ToolSpec(
            "go_to_definition",
            "Locations where the symbol at a position is defined.",
            POSITION_ARGS,
            COMMON_OPTIONAL,
        ),
        _position_handler(router, "go_to_definition", "locations"),
    )
    registry.register(
        ToolSpec(
            "find_references",
            "Locations referencing the symbol at a position.",
            POSITION_ARGS,
            ("include_declaration", *COMMON_OPTIONAL),
        ),
        _find_references_handler(router),
    )
    registry.register(
        ToolSpec(
            "get_hover_info",
            "Hover documentation for the symbol at a position.",
            POSITION_ARGS,
            COMMON_OPTIONAL,
        ),
        _position_handler(router, "get_hover_info", None),
    )
    registry.register(
        ToolSpec(
            "get_document_symbols",
            "Symbol tree declared in a file.",
            DOCUMENT_ARGS,
            COMMON_OPTIONAL,
        ),
        _document_handler(router, "get_document_symbols", "symbols"),
    )
    registry.register(
        ToolSpec(
            "search_workspace_symbols",
            "Symbols across the workspace matching a query.",
            ("workspace", "query"),
            COMMON_OPTIONAL,
        ),
        _workspace_symbols_handler(router),
    )
    registry.register(
        ToolSpec(
            "go_to_type_definition",
            "Locations of the type of the symbol at a position.",
            POSITION_ARGS,
            COMMON_OPTIONAL,
        ),
        _position_handler(router, "go_to_type_definition", "locations"),
    )
    registry.register(
        ToolSpec(
            "get_diagnostics",
            "Errors and warnings the analyzer reports for a file.",
            DOCUMENT_ARGS,
            COMMON_OPTIONAL,
        ),
        _document_handler(router, "get_diagnostics", "diagnostics"),
    )
    registry.register(
        ToolSpec(
            "find_implementations",
            "Implementations of the interface or method at a position.",
            POSITION_ARGS,
            COMMON_OPTIONAL,
        ),
        _position_handler(router, "find_implementations", "locations"),
    )
    registry.register(
        ToolSpec(
            "get_completions",
            "Completion candidates at a position.",
            POSITION_ARGS,
            COMMON_OPTIONAL,
        ),
        _position_handler(router, "get_completions", None),
    )
    registry.register(
        ToolSpec(
            "get_signature_help",
            "Signature of the call surrounding a position.",
            POSITION_ARGS,
            COMMON_OPTIONAL,
        ),
        _position_handler(router, "get_signature_help", None),
    )
    registry.register(
        ToolSpec(
            "format_document",
            "Text edits that would gofmt a file. Edits are not applied.",
            DOCUMENT_ARGS,
            COMMON_OPTIONAL,
        ),
        _document_handler(router, "format_document", "edits"),
    )
    registry.register(
        ToolSpec(
            "organize_imports",
            "Text edits that would organize a file's imports. Edits are not applied.",
            DOCUMENT_ARGS,
            COMMON_OPTIONAL,
        ),
        _document_handler(router, "organize_imports", "edits"),
    )
    registry.register(
        ToolSpec(
            "get_inlay_hints",
            "Inlay hints for a line range of a file.",
            (
                "workspace",
                "path",
                "start_line",
                "start_character",
                "end_line",
                "end_character",
            ),
            COMMON_OPTIONAL,
        ),
        _inlay_hints_handler(router),
    )
    registry.register(
        ToolSpec("server_status", "Effective configuration and per-workspace engine status."),
        _server_status_handler(router, config),
    )
    registry.register(
        ToolSpec("audit_log", "Recent tool-call audit entries.", (), ("since", "limit")),
        _audit_log_handler(read_audit_entries),
    )


def _invalid(tool: str, message: str) -> ToolDispatchError:
    return ToolDispatchError(code="INVALID_PARAMS", message=f"{tool} {message}")


def _engine(router: WorkspaceRouter, tool: str, arguments: dict[str, object]) -> WorkspaceEngine:
    workspace = arguments.get("workspace")
    if not isinstance(workspace, str) or not workspace:
        raise _invalid(tool, "workspace must be a non-empty string.")
    return router.route(workspace)


def _path(tool: str, arguments: dict[str, object]) -> str:
    value = arguments.get("path")
    if not isinstance(value, str) or not value:
        raise _invalid(tool, "path must be a non-empty string.")
    return value


def _line(tool: str, arguments: dict[str, object], key: str = "line") -> int:
    value = arguments.get(key)
    if not isinstance(value, int) or isinstance(value, bool) or value < 1:
        raise _invalid(tool, f"{key} must be an integer >= 1.")
    return value


def _character(tool: str, arguments: dict[str, object], key: str = "character") -> int:
    value = arguments.get(key)
    if not isinstance(value, int) or isinstance(value, bool) or value < 0:
        raise _invalid(tool, f"{key} must be an integer >= 0.")
    return value


def _timeout(tool: str, arguments: dict[str, object]) -> float | None:
    value = arguments.get("timeout_ms")
    if value is None:
        return None
    if not isinstance(value, int) or isinstance(value, bool) or value < 1:
        raise _invalid(tool, "timeout_ms must be a positive integer.")
    return value / 1000.0


def _wrap(result: object, key: str | None) -> dict[str, object]:
    if key is None and isinstance(result, dict):
        return result
    return {key or "result": result}


def _list_workspaces_handler(router: WorkspaceRouter) -> ToolHandler:
    def handler(_: dict[str, object]) -> dict[str, object]:
        return {"workspaces": router.list_workspaces()}

    return handler


def _position_handler(
    router: WorkspaceRouter, tool: str, result_key: str | None
) -> ToolHandler:
    """Handler for a tool named after the engine operation it runs."""

    def handler(arguments: dict[str, object]) -> dict[str, object]:
        engine = _engine(router, tool, arguments)
        operation: Operation = getattr(engine, tool)
        result = operation(
            _path(tool, arguments),
            _line(tool, arguments),
            _character(tool, arguments),
            timeout=_timeout(tool, arguments),
        )
        return _wrap(result, result_key)

    return handler


def _document_handler(router: WorkspaceRouter, tool: str, result_key: str) -> ToolHandler:
    def handler(arguments: dict[str, object]) -> dict[str, object]:
        engine = _engine(router, tool, arguments)
        operation: Operation = getattr(engine, tool)
        result = operation(_path(tool, arguments), timeout=_timeout(tool, arguments))
        return _wrap(result, result_key)

    return handler


def _find_references_handler(router: WorkspaceRouter) -> ToolHandler:
    tool = "find_references"

    def handler(arguments: dict[str, object]) -> dict[str, object]:
        engine = _engine(router, tool, arguments)
        include_declaration = arguments.get("include_declaration", True)
        if not isinstance(include_declaration, bool):
            raise _invalid(tool, "include_declaration must be a boolean.")
        locations = engine.find_references(
            _path(tool, arguments),
            _line(tool, arguments),
            _character(tool, arguments),
            include_declaration=include_declaration,
            timeout=_timeout(tool, arguments),
        )
        return {"locations": locations}

    return handler


def _workspace_symbols_handler(router: WorkspaceRouter) -> ToolHandler:
    tool = "search_workspace_symbols"

    def handler(arguments: dict[str, object]) -> dict[str, object]:
        engine = _engine(router, tool, arguments)
        query = arguments.get("query")
        if not isinstance(query, str):
            raise _invalid(tool, "query must be a string.")
        symbols = engine.search_workspace_symbols(query, timeout=_timeout(tool, arguments))
        return {"symbols": symbols}

    return handler


def _inlay_hints_handler(router: WorkspaceRouter) -> ToolHandler:
    tool = "get_inlay_hints"

    def handler(arguments: dict[str, object]) -> dict[str, object]:
        engine = _engine(router, tool, arguments)
        start_line = _line(tool, arguments, "start_line")
        end_line = _line(tool, arguments, "end_line")
        if end_line < start_line:
            raise _invalid(tool, "end_line must be >= start_line.")
        hints = engine.get_inlay_hints(
            _path(tool, arguments),
            start_line,
            _character(tool, arguments, "start_character"),
            end_line,
            _character(tool, arguments, "end_character"),
            timeout=_timeout(tool, arguments),
        )
        return {"hints": hints}

    return handler


def _server_status_handler(router: WorkspaceRouter, config: ServerConfig) -> ToolHandler:
    def handler(_: dict[str, object]) -> dict[str, object]:
        return {
            "effective_config": config.to_public_dict(),
            "workspaces": router.status(),
        }

    return handler


def _audit_log_handler(
    read_audit_entries: Callable[[str | None, int], list[dict[str, object]]],
) -> ToolHandler:
    def handler(arguments: dict[str, object]) -> dict[str, object]:
        since_value = arguments.get("since")
        limit_value = arguments.get("limit", 50)

        since: str | None = since_value if isinstance(since_value, str) else None
        limit = limit_value if isinstance(limit_value, int) else 50
        limit = max(1, min(limit, AUDIT_LOG_MAX_LIMIT))
        return {"entries": read_audit_entries(since, limit)}

    return handler

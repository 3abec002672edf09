"""STDIO tool server entrypoint."""

from __future__ import annotations

import argparse
import json
import logging
import sys
import threading
import time
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import TextIO

from gopls_mcp.config import CliOverrides, ServerConfig, load_effective_config, parse_command
from gopls_mcp.engine import DIAGNOSTICS_MODES, WorkspaceEngine
from gopls_mcp.errors import EngineError
from gopls_mcp.logging import (
    AuditEvent,
    JsonlAuditLogger,
    configure_logging,
    sanitize_arguments,
    utc_timestamp,
)
from gopls_mcp.router import WorkspaceRouter
from gopls_mcp.security import PathBlockedError
from gopls_mcp.tools.builtin import register_builtin_tools
from gopls_mcp.tools.registry import ToolDispatchError, ToolRegistry

logger = logging.getLogger(__name__)

SERVE_WORKERS = 8

EngineFactory = Callable[[Path], WorkspaceEngine]


def _report_worker_failure(future: Future[None]) -> None:
    error = future.exception()
    if error is not None:
        logger.error("tool call worker failed", exc_info=error)


@dataclass(slots=True, frozen=True)
class Request:
    """Normalized incoming request."""

    request_id: str
    method: str
    params: dict[str, object]


def build_arg_parser() -> argparse.ArgumentParser:
    """Build argument parser for server startup configuration."""
    parser = argparse.ArgumentParser(prog="gopls-mcp")
    parser.add_argument(
        "--workspace",
        dest="workspaces",
        action="append",
        default=[],
        help="Go workspace directory; repeat for several workspaces.",
    )
    parser.add_argument("--config", required=False, default=None)
    parser.add_argument("--data-dir", required=False, default=None)
    parser.add_argument("--analyzer-command", required=False, default=None)
    parser.add_argument("--log-level", required=False, default=None)
    parser.add_argument("--log-format", choices=("text", "json"), required=False, default=None)
    parser.add_argument(
        "--diagnostics-mode", choices=DIAGNOSTICS_MODES, required=False, default=None
    )
    return parser


class StdioServer:
    """Line-oriented STDIO dispatcher in front of the workspace router."""

    def __init__(
        self,
        config: ServerConfig,
        engine_factory: EngineFactory | None = None,
    ) -> None:
        self._config = config
        factory = engine_factory or self._default_engine_factory
        self._router = WorkspaceRouter(config.workspaces, factory)
        self._audit_logger = JsonlAuditLogger(path=config.data_dir / "audit.jsonl")
        self._registry = ToolRegistry()
        register_builtin_tools(
            self._registry,
            router=self._router,
            config=config,
            read_audit_entries=self._audit_logger.read,
        )
        self._fallback_request_counter = 0
        self._counter_lock = threading.Lock()

    @property
    def config(self) -> ServerConfig:
        return self._config

    @property
    def router(self) -> WorkspaceRouter:
        return self._router

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    def start(self) -> None:
        self._router.start_all()

    def close(self) -> None:
        self._router.stop_all()

    def serve(self, in_stream: TextIO, out_stream: TextIO) -> None:
        """Process JSON-line requests from stdin and write JSON-line responses.

        Requests run on a worker pool so a call waiting on one workspace does
        not hold up calls to another. Each response is written when its call
        finishes and carries the request id it answers.
        """
        write_lock = threading.Lock()

        def answer(line: str) -> None:
            response = self.handle_json_line(line)
            with write_lock:
                out_stream.write(f"{json.dumps(response, sort_keys=True)}\n")
                out_stream.flush()

        with ThreadPoolExecutor(
            max_workers=SERVE_WORKERS, thread_name_prefix="tool-call"
        ) as pool:
            for raw_line in in_stream:
                line = raw_line.strip()
                if line:
                    pool.submit(answer, line).add_done_callback(_report_worker_failure)

    def handle_json_line(self, raw_line: str) -> dict[str, object]:
        """Handle a single JSON-line request."""
        try:
            payload = json.loads(raw_line)
        except json.JSONDecodeError:
            request_id = self.next_request_id()
            response = self.error_response(
                request_id=request_id,
                code="INVALID_JSON",
                message="Request must be valid JSON.",
            )
            self.log_request(
                request_id=request_id,
                tool_name="invalid_json",
                arguments={"raw_line_length": len(raw_line)},
                response=response,
                started=time.monotonic(),
            )
            return response
        return self.handle_payload(payload)

    def handle_payload(self, payload: object) -> dict[str, object]:
        """Validate and dispatch a parsed payload."""
        started = time.monotonic()
        parsed = self.parse_request(payload)
        if isinstance(parsed, dict):
            request_id_value = parsed.get("request_id")
            request_id = (
                request_id_value if isinstance(request_id_value, str) else self.next_request_id()
            )
            self.log_request(
                request_id=request_id,
                tool_name="invalid_request",
                arguments={},
                response=parsed,
                started=started,
            )
            return parsed

        request = parsed
        if request.method == "tools/list":
            return self.success_response(
                request_id=request.request_id,
                result={"tools": self._registry.describe()},
            )

        tool_name: str
        arguments: dict[str, object]
        if request.method == "tools/call":
            tool_name_value = request.params.get("name")
            arguments_value = request.params.get("arguments", {})
            if not isinstance(tool_name_value, str) or not tool_name_value:
                return self.error_response(
                    request_id=request.request_id,
                    code="INVALID_PARAMS",
                    message="tools/call params.name must be a non-empty string.",
                )
            if not isinstance(arguments_value, dict):
                return self.error_response(
                    request_id=request.request_id,
                    code="INVALID_PARAMS",
                    message="tools/call params.arguments must be an object.",
                )
            tool_name = tool_name_value
            arguments = arguments_value
        else:
            tool_name = request.method
            arguments = request.params

        response = self.dispatch(request.request_id, tool_name, arguments)
        self.log_request(
            request_id=request.request_id,
            tool_name=tool_name,
            arguments=arguments,
            response=response,
            started=started,
        )
        return response

    def dispatch(
        self, request_id: str, tool_name: str, arguments: dict[str, object]
    ) -> dict[str, object]:
        """Run one tool and convert every failure into an explicit envelope."""
        try:
            result = self._registry.dispatch(name=tool_name, arguments=arguments)
        except PathBlockedError as error:
            return self.blocked_response(
                request_id=request_id, reason=error.reason, hint=error.hint
            )
        except EngineError as error:
            return self.error_response(
                request_id=request_id,
                code=error.kind.value,
                message=error.message,
                details=error.details,
            )
        except ToolDispatchError as error:
            return self.error_response(
                request_id=request_id, code=error.code, message=error.message
            )
        except Exception:
            logger.exception("unhandled error while executing tool", extra={"tool": tool_name})
            return self.error_response(
                request_id=request_id,
                code="INTERNAL_ERROR",
                message="Unhandled server error while executing tool.",
            )
        return self.success_response(request_id=request_id, result=result)

    def parse_request(self, payload: object) -> Request | dict[str, object]:
        """Validate request payload and return normalized Request."""
        if not isinstance(payload, dict):
            return self.error_response(
                request_id=self.next_request_id(),
                code="INVALID_REQUEST",
                message="Request must be an object.",
            )

        request_id = self.extract_request_id(payload.get("id"))
        method = payload.get("method")
        params = payload.get("params", {})

        if not isinstance(method, str) or not method:
            return self.error_response(
                request_id=request_id,
                code="INVALID_REQUEST",
                message="Request method must be a non-empty string.",
            )
        if not isinstance(params, dict):
            return self.error_response(
                request_id=request_id,
                code="INVALID_PARAMS",
                message="Request params must be an object.",
            )

        return Request(request_id=request_id, method=method, params=params)

    def extract_request_id(self, request_id: object) -> str:
        """Extract request ID from payload or synthesize deterministic fallback."""
        if isinstance(request_id, str) and request_id:
            return request_id
        if isinstance(request_id, int) and not isinstance(request_id, bool):
            return str(request_id)
        return self.next_request_id()

    def next_request_id(self) -> str:
        """Generate deterministic fallback request IDs for invalid/missing IDs."""
        with self._counter_lock:
            self._fallback_request_counter += 1
            return f"req-{self._fallback_request_counter:06d}"

    @staticmethod
    def success_response(
        request_id: str,
        result: dict[str, object],
        warnings: list[str] | None = None,
    ) -> dict[str, object]:
        """Build success envelope."""
        return {
            "request_id": request_id,
            "ok": True,
            "result": result,
            "warnings": warnings or [],
            "blocked": False,
        }

    @staticmethod
    def error_response(
        request_id: str,
        code: str,
        message: str,
        details: dict[str, object] | None = None,
    ) -> dict[str, object]:
        """Build explicit error envelope."""
        return {
            "request_id": request_id,
            "ok": False,
            "result": dict(details or {}),
            "warnings": [],
            "blocked": False,
            "error": {"code": code, "message": message},
        }

    @staticmethod
    def blocked_response(request_id: str, reason: str, hint: str) -> dict[str, object]:
        """Build explicit blocked response envelope."""
        return {
            "request_id": request_id,
            "ok": False,
            "result": {"reason": reason, "hint": hint},
            "warnings": [],
            "blocked": True,
            "error": {"code": "PATH_BLOCKED", "message": reason},
        }

    def log_request(
        self,
        request_id: str,
        tool_name: str,
        arguments: dict[str, object],
        response: dict[str, object],
        started: float,
    ) -> None:
        """Log one sanitized request event."""
        error_payload = response.get("error")
        error_code: str | None = None
        if isinstance(error_payload, dict):
            code_value = error_payload.get("code")
            if isinstance(code_value, str):
                error_code = code_value
        event = AuditEvent(
            timestamp=utc_timestamp(),
            request_id=request_id,
            tool=tool_name,
            ok=bool(response.get("ok", False)),
            error_code=error_code,
            duration_ms=int((time.monotonic() - started) * 1000),
            metadata=sanitize_arguments(arguments),
        )
        self._audit_logger.append(event)

    def _default_engine_factory(self, workspace: Path) -> WorkspaceEngine:
        return WorkspaceEngine(
            workspace,
            command=self._config.analyzer.command,
            settings=self._config.engine,
        )


def create_server(
    cwd: str = ".",
    cli_overrides: CliOverrides | None = None,
    engine_factory: EngineFactory | None = None,
) -> StdioServer:
    """Create a configured STDIO server instance."""
    config = load_effective_config(cwd=Path(cwd).resolve(), overrides=cli_overrides)
    return StdioServer(config=config, engine_factory=engine_factory)


def main(argv: list[str] | None = None) -> int:
    """Entrypoint for the gopls tool server process."""
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    try:
        overrides = CliOverrides(
            workspaces=tuple(Path(item) for item in args.workspaces),
            config_path=Path(args.config) if args.config is not None else None,
            data_dir=Path(args.data_dir).resolve() if args.data_dir is not None else None,
            analyzer_command=(
                parse_command(args.analyzer_command)
                if args.analyzer_command is not None
                else None
            ),
            log_level=args.log_level,
            log_format=args.log_format,
            diagnostics_mode=args.diagnostics_mode,
        )
        server = create_server(cli_overrides=overrides)
    except ValueError as error:
        parser.error(str(error))
    configure_logging(server.config.logging.level, server.config.logging.format)
    logger.info("starting workspaces", extra={"workspaces": list(server.router.names())})
    server.start()
    try:
        server.serve(in_stream=sys.stdin, out_stream=sys.stdout)
    finally:
        server.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

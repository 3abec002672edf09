"""Per-workspace analyzer engine."""

from __future__ import annotations

import logging
import os
import subprocess
import threading
import time
from collections.abc import Sequence
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path

from gopls_mcp.errors import EngineError, analyzer_gone
from gopls_mcp.lsp.correlator import PendingWaiter, RequestCorrelator
from gopls_mcp.lsp.dispatch import DispatchCore
from gopls_mcp.lsp.documents import DiagnosticsSink, OpenDocumentCache, OpenFile
from gopls_mcp.lsp.framing import write_message
from gopls_mcp.lsp.process import AnalyzerProcess, ProcessFactory
from gopls_mcp.lsp.readiness import ReadinessTracker
from gopls_mcp.lsp.shapes import (
    code_action_edits,
    lsp_position,
    parse_completions,
    parse_diagnostics,
    parse_document_symbols,
    parse_hover,
    parse_inlay_hints,
    parse_locations,
    parse_signature_help,
    parse_text_edits,
    parse_workspace_symbols,
)
from gopls_mcp.security import path_to_uri

logger = logging.getLogger(__name__)

DIAGNOSTICS_MODES = ("push", "pull")


class EngineState(StrEnum):
    CREATED = "created"
    STARTING = "starting"
    INITIALISING = "initialising"
    READY = "ready"
    STOPPING = "stopping"
    STOPPED = "stopped"


@dataclass(slots=True, frozen=True)
class EngineSettings:
    """Timeouts and behaviour knobs shared by every engine."""

    request_timeout_seconds: float = 60.0
    ready_timeout_seconds: float = 30.0
    initialize_timeout_seconds: float = 60.0
    progress_log_interval_seconds: float = 10.0
    diagnostics_mode: str = "push"
    diagnostics_settle_seconds: float = 1.0
    shutdown_timeout_seconds: float = 5.0


def client_capabilities() -> dict[str, object]:
    return {
        "textDocument": {
            "hover": {"contentFormat": ["markdown", "plaintext"]},
            "definition": {"linkSupport": True},
            "typeDefinition": {"linkSupport": True},
            "implementation": {"linkSupport": True},
            "references": {},
            "documentSymbol": {"hierarchicalDocumentSymbolSupport": True},
            "completion": {"completionItem": {"documentationFormat": ["markdown", "plaintext"]}},
            "signatureHelp": {},
            "publishDiagnostics": {"relatedInformation": True},
            "diagnostic": {},
            "inlayHint": {},
        },
        "workspace": {
            "symbol": {},
            "workspaceFolders": True,
            "configuration": True,
        },
        "window": {"workDoneProgress": True},
    }


class WorkspaceEngine:
    """Supervises one analyzer and exposes the navigation operations.

    Every operation runs the same preamble: refuse if the engine is torn
    down, wait for readiness, make sure the file is open, then issue one
    request and reshape its result. ``timeout`` is one budget shared by the
    readiness wait and the response wait; ``cancel`` aborts either wait.
    """

    def __init__(
        self,
        workspace: Path,
        command: Sequence[str] = ("gopls",),
        settings: EngineSettings | None = None,
        process_factory: ProcessFactory = subprocess.Popen,
    ) -> None:
        self._root = workspace.resolve()
        self.key = str(self._root)
        self._settings = settings or EngineSettings()
        if self._settings.diagnostics_mode not in DIAGNOSTICS_MODES:
            raise ValueError(f"Unknown diagnostics mode: {self._settings.diagnostics_mode}")
        self._process = AnalyzerProcess(command, self._root, process_factory=process_factory)
        self._correlator = RequestCorrelator(
            self.key, progress_interval_seconds=self._settings.progress_log_interval_seconds
        )
        self._readiness = ReadinessTracker(self.key)
        self._readiness.on_ready(self._on_ready)
        self._documents = OpenDocumentCache(self._root, self.notify)
        self._diagnostics = DiagnosticsSink()
        self._dispatch: DispatchCore | None = None
        self._state = EngineState.CREATED
        self._state_lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._writer_closed = False
        self._gone: EngineError | None = None
        self._stop_lock = threading.Lock()

    @property
    def root(self) -> Path:
        return self._root

    @property
    def state(self) -> EngineState:
        with self._state_lock:
            return self._state

    @property
    def running(self) -> bool:
        with self._state_lock:
            live = self._state in (EngineState.INITIALISING, EngineState.READY)
            return live and self._gone is None and self._process.is_alive()

    @property
    def readiness(self) -> ReadinessTracker:
        return self._readiness

    @property
    def documents(self) -> OpenDocumentCache:
        return self._documents

    @property
    def correlator(self) -> RequestCorrelator:
        return self._correlator

    def start(self) -> None:
        """Launch the analyzer and complete the initialize handshake."""
        with self._state_lock:
            if self._state is not EngineState.CREATED:
                raise RuntimeError(f"Engine already started: {self.key}")
            self._state = EngineState.STARTING
        if not self._root.exists():
            self._fail_start()
            raise FileNotFoundError(f"Workspace path does not exist: {self.key}")
        if not self._root.is_dir():
            self._fail_start()
            raise NotADirectoryError(f"Workspace path is not a directory: {self.key}")
        try:
            self._process.start()
        except OSError:
            self._fail_start()
            raise
        self._dispatch = DispatchCore(
            self.key,
            self._process.stdout,
            self._correlator,
            send=self._send,
            on_notification=self._on_notification,
            on_exit=self._on_reader_exit,
        )
        self._dispatch.start()
        with self._state_lock:
            abandoned = self._state is not EngineState.STARTING
            if not abandoned:
                self._state = EngineState.INITIALISING
        if abandoned:
            self._abandon_start()
            raise analyzer_gone(self.key, "engine was stopped while starting")
        try:
            self.request(
                "initialize",
                self._initialize_params(),
                timeout=self._settings.initialize_timeout_seconds,
            )
            self.notify("initialized", {})
        except EngineError:
            logger.error("analyzer initialization failed", extra={"workspace": self.key})
            self.stop()
            raise
        logger.info("analyzer initialized", extra={"workspace": self.key, "pid": self._process.pid})
        if self._readiness.is_ready():
            self._on_ready()

    def stop(self) -> None:
        """Tear down the analyzer; every waiting caller observes ANALYZER_GONE.

        Callers are released as soon as stopping begins. Only the ``shutdown``
        request itself waits on the analyzer during the handshake.
        """
        with self._stop_lock:
            with self._state_lock:
                previous = self._state
                if previous is EngineState.STOPPED:
                    return
                self._state = EngineState.STOPPING
            gone = analyzer_gone(self.key, "engine is stopping")
            shutdown: PendingWaiter | None = None
            live = previous in (EngineState.INITIALISING, EngineState.READY)
            if live and self._process.is_alive():
                try:
                    shutdown = self._correlator.register("shutdown")
                except EngineError:
                    shutdown = None
            keep = shutdown.request_id if shutdown is not None else None
            drained = self._correlator.fail_all(gone, keep=keep)
            self._readiness.close(gone)
            if shutdown is not None:
                self._shutdown_handshake(shutdown)
            with self._write_lock:
                self._writer_closed = True
            self._process.stop(self._settings.shutdown_timeout_seconds)
            if self._dispatch is not None:
                self._dispatch.join(self._settings.shutdown_timeout_seconds)
            with self._state_lock:
                if self._gone is None:
                    self._gone = gone
                self._state = EngineState.STOPPED
        logger.info("engine stopped", extra={"workspace": self.key, "drained_waiters": drained})

    def request(
        self,
        method: str,
        params: object,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> object:
        """Send one request and block for its result."""
        waiter = self._correlator.register(method)
        wait_seconds = timeout if timeout is not None else self._settings.request_timeout_seconds
        return self._call(waiter, params, wait_seconds, cancel)

    def notify(self, method: str, params: object) -> None:
        self._send({"jsonrpc": "2.0", "method": method, "params": params})

    def status(self) -> dict[str, object]:
        return {
            "workspace": self.key,
            "state": self.state.value,
            "running": self.running,
            "pid": self._process.pid,
            "returncode": self._process.returncode(),
            "readiness": self._readiness.state.value,
            "progress": self._readiness.progress_message,
            "open_files": self._documents.open_count(),
            "pending_requests": self._correlator.pending_count(),
            "last_request_id": self._correlator.last_id,
            "diagnostics_mode": self._settings.diagnostics_mode,
        }

    def go_to_definition(
        self,
        path: str,
        line: int,
        character: int,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> list[dict[str, object]]:
        result = self._position_request(
            "textDocument/definition", path, line, character, timeout, cancel
        )
        return parse_locations(result, self._root)

    def find_references(
        self,
        path: str,
        line: int,
        character: int,
        include_declaration: bool = True,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> list[dict[str, object]]:
        result = self._position_request(
            "textDocument/references",
            path,
            line,
            character,
            timeout,
            cancel,
            extra={"context": {"includeDeclaration": include_declaration}},
        )
        return parse_locations(result, self._root)

    def get_hover_info(
        self,
        path: str,
        line: int,
        character: int,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> dict[str, object]:
        result = self._position_request(
            "textDocument/hover", path, line, character, timeout, cancel
        )
        return parse_hover(result)

    def get_document_symbols(
        self,
        path: str,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> list[dict[str, object]]:
        result = self._document_request("textDocument/documentSymbol", path, timeout, cancel)
        return parse_document_symbols(result)

    def search_workspace_symbols(
        self,
        query: str,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> list[dict[str, object]]:
        remaining = self._gate(timeout, cancel)
        result = self.request("workspace/symbol", {"query": query}, remaining, cancel)
        return parse_workspace_symbols(result, self._root)

    def go_to_type_definition(
        self,
        path: str,
        line: int,
        character: int,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> list[dict[str, object]]:
        result = self._position_request(
            "textDocument/typeDefinition", path, line, character, timeout, cancel
        )
        return parse_locations(result, self._root)

    def get_diagnostics(
        self,
        path: str,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> list[dict[str, object]]:
        """Pull diagnostics, or read the push buffer, depending on the mode."""
        record, remaining = self._open(path, timeout, cancel)
        if self._settings.diagnostics_mode == "pull":
            result = self.request(
                "textDocument/diagnostic",
                {"textDocument": {"uri": record.uri}},
                remaining,
                cancel,
            )
            return parse_diagnostics(result, self._root)
        published = self._diagnostics.get(record.uri)
        if published is None:
            published = self._diagnostics.wait_for(
                record.uri, self._settings.diagnostics_settle_seconds, cancel
            )
        return parse_diagnostics(published or [], self._root)

    def find_implementations(
        self,
        path: str,
        line: int,
        character: int,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> list[dict[str, object]]:
        result = self._position_request(
            "textDocument/implementation", path, line, character, timeout, cancel
        )
        return parse_locations(result, self._root)

    def get_completions(
        self,
        path: str,
        line: int,
        character: int,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> dict[str, object]:
        result = self._position_request(
            "textDocument/completion", path, line, character, timeout, cancel
        )
        return parse_completions(result)

    def get_signature_help(
        self,
        path: str,
        line: int,
        character: int,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> dict[str, object]:
        result = self._position_request(
            "textDocument/signatureHelp", path, line, character, timeout, cancel
        )
        return parse_signature_help(result)

    def format_document(
        self,
        path: str,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> list[dict[str, object]]:
        result = self._document_request(
            "textDocument/formatting",
            path,
            timeout,
            cancel,
            extra={"options": {"tabSize": 4, "insertSpaces": False}},
        )
        return parse_text_edits(result)

    def organize_imports(
        self,
        path: str,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> list[dict[str, object]]:
        origin = {"line": 0, "character": 0}
        record, remaining = self._open(path, timeout, cancel)
        result = self.request(
            "textDocument/codeAction",
            {
                "textDocument": {"uri": record.uri},
                "range": {"start": origin, "end": origin},
                "context": {"diagnostics": [], "only": ["source.organizeImports"]},
            },
            remaining,
            cancel,
        )
        return code_action_edits(result, record.uri)

    def get_inlay_hints(
        self,
        path: str,
        start_line: int,
        start_character: int,
        end_line: int,
        end_character: int,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> list[dict[str, object]]:
        result = self._document_request(
            "textDocument/inlayHint",
            path,
            timeout,
            cancel,
            extra={
                "range": {
                    "start": lsp_position(start_line, start_character),
                    "end": lsp_position(end_line, end_character),
                }
            },
        )
        return parse_inlay_hints(result)

    def _gate(self, timeout: float | None, cancel: threading.Event | None) -> float:
        """Wait for readiness; return what is left of the call budget."""
        budget = timeout if timeout is not None else self._settings.request_timeout_seconds
        deadline = time.monotonic() + budget
        with self._state_lock:
            gone = self._gone
            state = self._state
        if gone is not None:
            raise gone
        if state not in (EngineState.INITIALISING, EngineState.READY):
            raise analyzer_gone(self.key, f"engine is {state.value}")
        self._readiness.await_ready(min(self._settings.ready_timeout_seconds, budget), cancel)
        return max(deadline - time.monotonic(), 0.0)

    def _open(
        self, path: str, timeout: float | None, cancel: threading.Event | None
    ) -> tuple[OpenFile, float]:
        remaining = self._gate(timeout, cancel)
        return self._documents.ensure_open(path), remaining

    def _document_request(
        self,
        method: str,
        path: str,
        timeout: float | None,
        cancel: threading.Event | None,
        extra: dict[str, object] | None = None,
    ) -> object:
        record, remaining = self._open(path, timeout, cancel)
        params: dict[str, object] = {"textDocument": {"uri": record.uri}}
        params.update(extra or {})
        return self.request(method, params, remaining, cancel)

    def _position_request(
        self,
        method: str,
        path: str,
        line: int,
        character: int,
        timeout: float | None,
        cancel: threading.Event | None,
        extra: dict[str, object] | None = None,
    ) -> object:
        position: dict[str, object] = {"position": lsp_position(line, character)}
        position.update(extra or {})
        return self._document_request(method, path, timeout, cancel, extra=position)

    def _initialize_params(self) -> dict[str, object]:
        root_uri = path_to_uri(self._root)
        return {
            "processId": os.getpid(),
            "clientInfo": {"name": "gopls-mcp"},
            "rootUri": root_uri,
            "workspaceFolders": [{"uri": root_uri, "name": self._root.name}],
            "capabilities": client_capabilities(),
        }

    def _send(self, message: dict[str, object]) -> None:
        with self._write_lock:
            if self._writer_closed:
                raise self._gone or analyzer_gone(self.key)
            try:
                write_message(self._process.stdin, message)
            except (OSError, ValueError) as error:
                raise analyzer_gone(self.key, f"write to analyzer failed ({error})") from error

    def _call(
        self,
        waiter: PendingWaiter,
        params: object,
        timeout: float,
        cancel: threading.Event | None,
    ) -> object:
        message = {
            "jsonrpc": "2.0",
            "id": waiter.request_id,
            "method": waiter.method,
            "params": params,
        }
        logger.debug(
            "sending request",
            extra={"workspace": self.key, "request_id": waiter.request_id, "method": waiter.method},
        )
        try:
            self._send(message)
        except EngineError:
            self._correlator.discard(waiter.request_id)
            raise
        return self._correlator.wait(waiter, timeout, cancel)

    def _shutdown_handshake(self, waiter: PendingWaiter) -> None:
        try:
            self._call(waiter, None, self._settings.shutdown_timeout_seconds, None)
            self.notify("exit", None)
        except EngineError as error:
            logger.debug(
                "analyzer shutdown handshake failed",
                extra={"workspace": self.key, "error": error.message},
            )

    def _on_ready(self) -> None:
        with self._state_lock:
            if self._state is EngineState.INITIALISING:
                self._state = EngineState.READY

    def _on_notification(self, method: str, params: object) -> None:
        if method in ("$/progress", "window/showMessage"):
            self._readiness.observe(method, params)
        elif method == "textDocument/publishDiagnostics":
            self._diagnostics.publish(params)
        elif method == "window/logMessage" and isinstance(params, dict):
            logger.debug("analyzer log: %s", params.get("message"), extra={"workspace": self.key})

    def _on_reader_exit(self, failure: EngineError | None) -> None:
        with self._state_lock:
            stopping = self._state in (EngineState.STOPPING, EngineState.STOPPED)
            if self._gone is None:
                reason = "analyzer stream is unusable" if failure else "analyzer exited"
                self._gone = analyzer_gone(self.key, reason)
            gone = self._gone
        if failure is not None:
            self._process.kill()
        elif not stopping:
            logger.error(
                "analyzer exited unexpectedly",
                extra={"workspace": self.key, "returncode": self._process.returncode()},
            )
        self._correlator.fail_all(failure or gone)
        self._readiness.close(gone)
        if not stopping:
            self._teardown_after_exit()

    def _teardown_after_exit(self) -> None:
        """Close the writer, reap the child and settle in STOPPED."""
        # A concurrent stop() owns the teardown and joins this reader thread.
        if not self._stop_lock.acquire(blocking=False):
            return
        try:
            with self._state_lock:
                if self._state in (EngineState.STOPPING, EngineState.STOPPED):
                    return
                self._state = EngineState.STOPPING
            with self._write_lock:
                self._writer_closed = True
            code = self._process.stop(self._settings.shutdown_timeout_seconds)
            with self._state_lock:
                self._state = EngineState.STOPPED
        finally:
            self._stop_lock.release()
        logger.info(
            "engine stopped after analyzer exit",
            extra={"workspace": self.key, "returncode": code},
        )

    def _abandon_start(self) -> None:
        """Reap a child launched after stop() already ran."""
        with self._stop_lock:
            with self._write_lock:
                self._writer_closed = True
            self._process.stop(self._settings.shutdown_timeout_seconds)
            if self._dispatch is not None:
                self._dispatch.join(self._settings.shutdown_timeout_seconds)
            with self._state_lock:
                if self._gone is None:
                    self._gone = analyzer_gone(self.key, "engine was stopped while starting")
                self._state = EngineState.STOPPED

    def _fail_start(self) -> None:
        with self._state_lock:
            self._gone = analyzer_gone(self.key, "analyzer failed to start")
            self._state = EngineState.STOPPED


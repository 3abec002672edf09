"""Open-document bookkeeping and the published-diagnostics buffer."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from gopls_mcp.errors import EngineError, ErrorKind
from gopls_mcp.security import path_to_uri, resolve_workspace_path

logger = logging.getLogger(__name__)

LANGUAGE_BY_SUFFIX = {
    ".go": "go",
    ".mod": "go.mod",
    ".sum": "go.sum",
}

NotifySender = Callable[[str, dict[str, object]], None]


@dataclass(slots=True)
class OpenFile:
    """A file the analyzer has been told about."""

    path: Path
    uri: str
    language_id: str
    version: int = 1


def detect_language(path: Path) -> str:
    """Map a file to its analyzer language id or raise UNSUPPORTED_FILE."""
    language = LANGUAGE_BY_SUFFIX.get(path.suffix)
    if language is None:
        raise EngineError(
            ErrorKind.UNSUPPORTED_FILE,
            f"Unsupported file type: {path.name}",
            {"path": str(path), "supported": sorted(LANGUAGE_BY_SUFFIX)},
        )
    return language


class OpenDocumentCache:
    """Ensures each referenced file is opened with the analyzer exactly once."""

    def __init__(self, workspace_root: Path, notify: NotifySender) -> None:
        self._root = workspace_root
        self._notify = notify
        self._lock = threading.Lock()
        self._open: dict[str, OpenFile] = {}

    def resolve(self, path: str) -> tuple[Path, str]:
        """Return the absolute path and file URI for a workspace path."""
        absolute = resolve_workspace_path(self._root, path)
        return absolute, path_to_uri(absolute)

    def ensure_open(self, path: str) -> OpenFile:
        absolute, uri = self.resolve(path)
        # Held across read and send so concurrent callers never double-open.
        with self._lock:
            record = self._open.get(uri)
            if record is not None:
                return record
            language_id = detect_language(absolute)
            try:
                text = absolute.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as error:
                raise EngineError(
                    ErrorKind.FILE_UNREADABLE,
                    f"Cannot read {path}: {error}",
                    {"path": path},
                ) from error
            record = OpenFile(path=absolute, uri=uri, language_id=language_id)
            self._notify(
                "textDocument/didOpen",
                {
                    "textDocument": {
                        "uri": uri,
                        "languageId": language_id,
                        "version": record.version,
                        "text": text,
                    }
                },
            )
            self._open[uri] = record
        logger.debug("opened document", extra={"uri": uri, "language_id": language_id})
        return record

    def open_count(self) -> int:
        with self._lock:
            return len(self._open)


class DiagnosticsSink:
    """Most-recent-wins buffer of textDocument/publishDiagnostics by URI."""

    def __init__(self) -> None:
        self._condition = threading.Condition()
        self._latest: dict[str, list[object]] = {}

    def publish(self, params: object) -> None:
        if not isinstance(params, dict):
            return
        uri = params.get("uri")
        diagnostics = params.get("diagnostics")
        if not isinstance(uri, str):
            return
        with self._condition:
            self._latest[uri] = list(diagnostics) if isinstance(diagnostics, list) else []
            self._condition.notify_all()

    def get(self, uri: str) -> list[object] | None:
        with self._condition:
            latest = self._latest.get(uri)
            return list(latest) if latest is not None else None

    def wait_for(
        self,
        uri: str,
        timeout: float,
        cancel: threading.Event | None = None,
    ) -> list[object] | None:
        """Wait up to timeout for a first publication; None if none arrived."""
        deadline = time.monotonic() + timeout
        with self._condition:
            while uri not in self._latest:
                if cancel is not None and cancel.is_set():
                    raise EngineError(
                        ErrorKind.CANCELLED,
                        "Cancelled while waiting for diagnostics.",
                        {"uri": uri},
                    )
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return None
                self._condition.wait(min(remaining, 0.05))
            return list(self._latest[uri])

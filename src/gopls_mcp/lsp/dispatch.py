"""Single reader loop demultiplexing analyzer frames."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import BinaryIO

from gopls_mcp.errors import EngineError
from gopls_mcp.lsp.correlator import RequestCorrelator
from gopls_mcp.lsp.framing import FramingError, read_message

logger = logging.getLogger(__name__)

MessageSender = Callable[[dict[str, object]], None]
NotificationHandler = Callable[[str, object], None]
ExitHandler = Callable[[EngineError | None], None]


def acknowledgement(message: dict[str, object]) -> dict[str, object]:
    """Build the empty reply sent for a server-to-client request."""
    result: object = None
    params = message.get("params")
    if message.get("method") == "workspace/configuration" and isinstance(params, dict):
        items = params.get("items")
        if isinstance(items, list):
            result = [None for _ in items]
    return {"jsonrpc": "2.0", "id": message.get("id"), "result": result}


class DispatchCore:
    """Owns the analyzer's stdout and routes every inbound frame.

    Responses go to the correlator, server-to-client requests are
    acknowledged through ``send``, and notifications are handed to
    ``on_notification`` strictly in arrival order. ``on_exit`` fires once
    when the loop ends: with None on a clean end of stream, or with the
    framing error that made the stream unusable.
    """

    def __init__(
        self,
        workspace: str,
        reader: BinaryIO,
        correlator: RequestCorrelator,
        send: MessageSender,
        on_notification: NotificationHandler,
        on_exit: ExitHandler,
    ) -> None:
        self._workspace = workspace
        self._reader = reader
        self._correlator = correlator
        self._send = send
        self._on_notification = on_notification
        self._on_exit = on_exit
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        self._thread = threading.Thread(
            target=self._run,
            name=f"analyzer-reader-{self._workspace}",
            daemon=True,
        )
        self._thread.start()

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)

    def dispatch(self, message: dict[str, object]) -> None:
        """Classify one decoded frame and route it."""
        method = message.get("method")
        if "id" in message and method is None:
            if "result" in message or "error" in message:
                self._correlator.resolve(message)
                return
            logger.debug("dropping response without outcome", extra={"id": message.get("id")})
            return
        if not isinstance(method, str):
            logger.debug("dropping frame without method", extra={"workspace": self._workspace})
            return
        if "id" in message:
            logger.debug("acknowledging server request", extra={"method": method})
            try:
                self._send(acknowledgement(message))
            except (OSError, ValueError, EngineError) as error:
                logger.warning(
                    "failed to acknowledge server request",
                    extra={"method": method, "error": str(error)},
                )
            return
        self._on_notification(method, message.get("params"))

    def _run(self) -> None:
        failure: EngineError | None = None
        try:
            while True:
                message = read_message(self._reader)
                if message is None:
                    break
                self.dispatch(message)
        except FramingError as error:
            logger.error(
                "analyzer stream framing failure",
                extra={"workspace": self._workspace, "error": error.message},
            )
            failure = error
        except (OSError, ValueError) as error:
            # Stream closed underneath us during stop().
            logger.debug("analyzer stream closed", extra={"error": str(error)})
        self._on_exit(failure)

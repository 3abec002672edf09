"""Workspace readiness latch driven by analyzer notifications."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from enum import StrEnum

from gopls_mcp.errors import EngineError, ErrorKind

logger = logging.getLogger(__name__)

LOADING_PHRASE = "loading packages"
READY_PHRASE = "finished loading packages"
WAIT_SLICE_SECONDS = 0.05


class ReadinessState(StrEnum):
    UNKNOWN = "unknown"
    LOADING = "loading"
    READY = "ready"


class ReadinessTracker:
    """Monotonic unknown -> loading -> ready latch.

    Readiness is independent of process liveness: ``close`` wakes gate
    waiters with the teardown error without ever marking the workspace ready.
    """

    def __init__(self, workspace: str) -> None:
        self._workspace = workspace
        self._condition = threading.Condition()
        self._state = ReadinessState.UNKNOWN
        self._progress_message: str | None = None
        self._closed: EngineError | None = None
        self._listeners: list[Callable[[], None]] = []

    @property
    def state(self) -> ReadinessState:
        with self._condition:
            return self._state

    @property
    def progress_message(self) -> str | None:
        with self._condition:
            return self._progress_message

    def is_ready(self) -> bool:
        return self.state is ReadinessState.READY

    def on_ready(self, listener: Callable[[], None]) -> None:
        """Register a callback invoked once, on the transition to ready."""
        with self._condition:
            self._listeners.append(listener)

    def observe(self, method: str, params: object) -> None:
        """Feed one analyzer notification into the latch."""
        if not isinstance(params, dict):
            return
        if method == "window/showMessage":
            text = params.get("message")
            if isinstance(text, str) and READY_PHRASE in text.lower():
                self._mark_ready(text)
            return
        if method != "$/progress":
            return
        value = params.get("value")
        if not isinstance(value, dict):
            return
        kind = value.get("kind")
        text = " ".join(
            item for item in (value.get("title"), value.get("message")) if isinstance(item, str)
        )
        lowered = text.lower()
        if kind == "end":
            if READY_PHRASE in lowered:
                self._mark_ready(text)
            return
        if kind in ("begin", "report") and LOADING_PHRASE in lowered:
            self._mark_loading(text)

    def close(self, error: EngineError) -> None:
        """Wake every gate waiter with error; readiness is left untouched."""
        with self._condition:
            self._closed = error
            self._condition.notify_all()

    def await_ready(self, timeout: float, cancel: threading.Event | None = None) -> None:
        """Return once ready; raise NOT_READY when timeout elapses first."""
        deadline = time.monotonic() + timeout
        with self._condition:
            while self._state is not ReadinessState.READY:
                if self._closed is not None:
                    raise self._closed
                if cancel is not None and cancel.is_set():
                    raise EngineError(
                        ErrorKind.CANCELLED,
                        "Cancelled while waiting for the workspace to finish loading.",
                        {"workspace": self._workspace},
                    )
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise EngineError(
                        ErrorKind.NOT_READY,
                        f"Workspace did not finish loading within {timeout:g}s: "
                        f"{self._workspace}",
                        {
                            "workspace": self._workspace,
                            "readiness": self._state.value,
                            "progress": self._progress_message,
                        },
                    )
                self._condition.wait(min(remaining, WAIT_SLICE_SECONDS))

    def _mark_loading(self, text: str) -> None:
        with self._condition:
            if self._state is ReadinessState.READY:
                return
            self._state = ReadinessState.LOADING
            self._progress_message = text
        logger.debug("workspace loading", extra={"workspace": self._workspace, "progress": text})

    def _mark_ready(self, text: str) -> None:
        with self._condition:
            if self._state is ReadinessState.READY:
                return
            self._state = ReadinessState.READY
            self._progress_message = text
            listeners = list(self._listeners)
            self._condition.notify_all()
        logger.info("workspace ready", extra={"workspace": self._workspace})
        for listener in listeners:
            listener()

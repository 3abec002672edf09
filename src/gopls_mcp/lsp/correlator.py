"""Request id allocation and response rendezvous."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field

from gopls_mcp.errors import EngineError, ErrorKind

logger = logging.getLogger(__name__)

WAIT_SLICE_SECONDS = 0.05


@dataclass(slots=True)
class PendingWaiter:
    """Single-shot delivery slot for the response to one request id."""

    request_id: int
    method: str
    message: dict[str, object] | None = None
    error: EngineError | None = None
    _done: threading.Event = field(default_factory=threading.Event)

    def complete(self, message: dict[str, object]) -> None:
        self.message = message
        self._done.set()

    def fail(self, error: EngineError) -> None:
        self.error = error
        self._done.set()

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def wait(self, timeout: float | None) -> bool:
        return self._done.wait(timeout)


class RequestCorrelator:
    """Assigns monotonic request ids and wakes callers when responses arrive.

    Waiters are removed from the pending map by whoever completes them (the
    dispatch reader, a teardown, or the caller itself on deadline or
    cancellation), so every slot is delivered at most once and the map never
    retains a slot whose caller has gone away.
    """

    def __init__(self, workspace: str, progress_interval_seconds: float = 10.0) -> None:
        self._workspace = workspace
        self._progress_interval = progress_interval_seconds
        self._id_lock = threading.Lock()
        self._last_id = 0
        self._pending_lock = threading.Lock()
        self._pending: dict[int, PendingWaiter] = {}
        self._closed: EngineError | None = None

    def next_id(self) -> int:
        with self._id_lock:
            self._last_id += 1
            return self._last_id

    @property
    def last_id(self) -> int:
        with self._id_lock:
            return self._last_id

    def register(self, method: str) -> PendingWaiter:
        """Allocate an id and park a fresh waiter under it."""
        request_id = self.next_id()
        waiter = PendingWaiter(request_id=request_id, method=method)
        with self._pending_lock:
            if self._closed is not None:
                raise self._closed
            self._pending[request_id] = waiter
        return waiter

    def discard(self, request_id: int) -> PendingWaiter | None:
        with self._pending_lock:
            return self._pending.pop(request_id, None)

    def pending_count(self) -> int:
        with self._pending_lock:
            return len(self._pending)

    def resolve(self, message: dict[str, object]) -> bool:
        """Hand a response to its waiter; orphan responses are dropped."""
        request_id = message.get("id")
        if not isinstance(request_id, int) or isinstance(request_id, bool):
            logger.debug("dropping response with non-integer id", extra={"id": request_id})
            return False
        waiter = self.discard(request_id)
        if waiter is None:
            logger.debug("dropping orphan response", extra={"request_id": request_id})
            return False
        waiter.complete(message)
        return True

    def fail_all(self, error: EngineError, keep: int | None = None) -> int:
        """Complete every outstanding waiter with error and refuse new ones.

        The waiter registered under ``keep`` stays pending so a response to
        it can still be delivered.
        """
        with self._pending_lock:
            self._closed = error
            waiters = [w for rid, w in self._pending.items() if rid != keep]
            kept = self._pending.get(keep) if keep is not None else None
            self._pending.clear()
            if kept is not None:
                self._pending[keep] = kept
        for waiter in waiters:
            waiter.fail(error)
        return len(waiters)

    def wait(
        self,
        waiter: PendingWaiter,
        timeout: float,
        cancel: threading.Event | None = None,
    ) -> object:
        """Block until the waiter is completed, the deadline fires, or cancel is set."""
        started = time.monotonic()
        deadline = started + timeout
        next_progress = started + self._progress_interval
        while True:
            now = time.monotonic()
            if waiter.done:
                break
            if cancel is not None and cancel.is_set():
                if self.discard(waiter.request_id) is not None:
                    raise EngineError(
                        ErrorKind.CANCELLED,
                        f"Request {waiter.method} was cancelled by the caller.",
                        {"workspace": self._workspace, "request_id": waiter.request_id},
                    )
                # Already claimed by a completer; delivery is imminent.
                waiter.wait(None)
                break
            if now >= deadline:
                if self.discard(waiter.request_id) is not None:
                    raise EngineError(
                        ErrorKind.DEADLINE,
                        f"Timed out after {timeout:g}s waiting for {waiter.method} "
                        f"(request {waiter.request_id}).",
                        {"workspace": self._workspace, "request_id": waiter.request_id},
                    )
                waiter.wait(None)
                break
            if now >= next_progress:
                logger.info(
                    "still waiting for analyzer response",
                    extra={
                        "workspace": self._workspace,
                        "request_id": waiter.request_id,
                        "method": waiter.method,
                        "elapsed_seconds": round(now - started, 1),
                    },
                )
                next_progress = now + self._progress_interval
            waiter.wait(min(WAIT_SLICE_SECONDS, deadline - now, next_progress - now))
        return self._outcome(waiter)

    def _outcome(self, waiter: PendingWaiter) -> object:
        if waiter.error is not None:
            raise waiter.error
        message = waiter.message or {}
        error_payload = message.get("error")
        if error_payload is not None:
            code: object = None
            text = "analyzer returned an error"
            if isinstance(error_payload, dict):
                code = error_payload.get("code")
                raw_text = error_payload.get("message")
                if isinstance(raw_text, str):
                    text = raw_text
            raise EngineError(
                ErrorKind.ANALYZER_ERROR,
                f"LSP error {code}: {text}",
                {
                    "workspace": self._workspace,
                    "request_id": waiter.request_id,
                    "code": code,
                    "message": text,
                },
            )
        return message.get("result")

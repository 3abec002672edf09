"""Analyzer child-process supervision."""

from __future__ import annotations

import logging
import subprocess
import threading
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import BinaryIO

logger = logging.getLogger(__name__)

ProcessFactory = Callable[..., subprocess.Popen]

_ERROR_MARKERS = ("error", "panic", "fatal")


class AnalyzerProcess:
    """Owns one analyzer child process and its three standard streams."""

    def __init__(
        self,
        command: Sequence[str],
        cwd: Path,
        process_factory: ProcessFactory = subprocess.Popen,
    ) -> None:
        self._command = list(command)
        self._cwd = cwd
        self._process_factory = process_factory
        self._proc: subprocess.Popen | None = None
        self._stderr_thread: threading.Thread | None = None

    @property
    def pid(self) -> int | None:
        return self._proc.pid if self._proc is not None else None

    @property
    def stdin(self) -> BinaryIO:
        if self._proc is None or self._proc.stdin is None:
            raise RuntimeError("Analyzer process has not been started.")
        return self._proc.stdin

    @property
    def stdout(self) -> BinaryIO:
        if self._proc is None or self._proc.stdout is None:
            raise RuntimeError("Analyzer process has not been started.")
        return self._proc.stdout

    def start(self) -> None:
        """Launch the child with its working directory at the workspace root."""
        if self._proc is not None:
            raise RuntimeError("Analyzer process already started.")
        self._proc = self._process_factory(
            self._command,
            cwd=str(self._cwd),
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
        logger.info("analyzer started", extra={"pid": self._proc.pid, "cwd": str(self._cwd)})
        self._stderr_thread = threading.Thread(
            target=self._drain_stderr,
            name=f"analyzer-stderr-{self._proc.pid}",
            daemon=True,
        )
        self._stderr_thread.start()

    def is_alive(self) -> bool:
        return self._proc is not None and self._proc.poll() is None

    def returncode(self) -> int | None:
        if self._proc is None:
            return None
        return self._proc.poll()

    def wait(self, timeout: float | None = None) -> int | None:
        """Reap the child; returns None when it is still running after timeout."""
        if self._proc is None:
            return None
        try:
            return self._proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            return None

    def close_stdin(self) -> None:
        if self._proc is None or self._proc.stdin is None:
            return
        try:
            self._proc.stdin.close()
        except OSError:
            logger.debug("analyzer stdin already closed")

    def stop(self, grace_seconds: float) -> int | None:
        """Close stdin and reap; escalate to terminate, then kill, per grace period."""
        if self._proc is None:
            return None
        self.close_stdin()
        code = self.wait(timeout=grace_seconds)
        if code is None:
            self._proc.terminate()
            code = self.wait(timeout=grace_seconds)
        if code is None:
            logger.warning("analyzer ignored terminate; killing", extra={"pid": self._proc.pid})
            self._proc.kill()
            code = self.wait(timeout=grace_seconds)
        if self._proc.stdout is not None:
            self._proc.stdout.close()
        if self._stderr_thread is not None:
            self._stderr_thread.join(timeout=grace_seconds)
        logger.info("analyzer stopped", extra={"pid": self._proc.pid, "returncode": code})
        return code

    def kill(self) -> None:
        if self._proc is not None and self._proc.poll() is None:
            self._proc.kill()

    def _drain_stderr(self) -> None:
        proc = self._proc
        if proc is None or proc.stderr is None:
            return
        try:
            for raw_line in proc.stderr:
                line = raw_line.decode("utf-8", errors="replace").rstrip()
                if not line:
                    continue
                lowered = line.lower()
                if any(marker in lowered for marker in _ERROR_MARKERS):
                    logger.error("analyzer stderr: %s", line)
                elif "warn" in lowered:
                    logger.warning("analyzer stderr: %s", line)
                else:
                    logger.debug("analyzer stderr: %s", line)
        except (OSError, ValueError):
            logger.debug("analyzer stderr closed")
        finally:
            try:
                proc.stderr.close()
            except OSError as error:
                logger.debug("analyzer stderr close failed", extra={"error": str(error)})

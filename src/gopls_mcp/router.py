"""Routes tool calls to the engine that owns each workspace."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from pathlib import Path

from gopls_mcp.engine import WorkspaceEngine
from gopls_mcp.errors import EngineError, ErrorKind

logger = logging.getLogger(__name__)

EngineFactory = Callable[[Path], WorkspaceEngine]


def normalize_workspace(workspace: str | Path) -> str:
    """Return the canonical key for a workspace path."""
    return str(Path(workspace).expanduser().resolve())


class WorkspaceRouter:
    """Fixed mapping from workspace path to engine, built once at startup."""

    def __init__(self, workspaces: Iterable[str | Path], engine_factory: EngineFactory) -> None:
        self._engines: dict[str, WorkspaceEngine] = {}
        for workspace in workspaces:
            key = normalize_workspace(workspace)
            if key in self._engines:
                continue
            self._engines[key] = engine_factory(Path(key))

    def names(self) -> tuple[str, ...]:
        return tuple(self._engines.keys())

    def start_all(self) -> None:
        """Start every engine in order; failures leave that engine not running."""
        for key, engine in self._engines.items():
            try:
                engine.start()
            except (EngineError, OSError) as error:
                logger.error(
                    "failed to start workspace engine",
                    extra={"workspace": key, "error": str(error)},
                )

    def stop_all(self) -> None:
        for engine in self._engines.values():
            engine.stop()

    def route(self, workspace: object) -> WorkspaceEngine:
        """Return the engine for workspace or raise UNKNOWN_WORKSPACE."""
        if not isinstance(workspace, str) or not workspace:
            raise self._unknown(workspace)
        engine = self._engines.get(workspace)
        if engine is None:
            engine = self._engines.get(normalize_workspace(workspace))
        if engine is None:
            raise self._unknown(workspace)
        return engine

    def list_workspaces(self) -> list[dict[str, object]]:
        return [
            {"workspace": key, "running": engine.running}
            for key, engine in self._engines.items()
        ]

    def status(self) -> list[dict[str, object]]:
        return [engine.status() for engine in self._engines.values()]

    def _unknown(self, workspace: object) -> EngineError:
        available = list(self._engines.keys())
        return EngineError(
            ErrorKind.UNKNOWN_WORKSPACE,
            f"Unknown workspace: {workspace}. Available: {', '.join(available) or '(none)'}",
            {"workspace": workspace, "available": available},
        )

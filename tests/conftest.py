from __future__ import annotations

import json
import sys
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from pathlib import Path

import pytest

from gopls_mcp.engine import EngineSettings, WorkspaceEngine

FAKE_ANALYZER = Path(__file__).resolve().parent / "fixtures" / "fake_analyzer.py"

FAST_SETTINGS = EngineSettings(
    request_timeout_seconds=5.0,
    ready_timeout_seconds=5.0,
    initialize_timeout_seconds=5.0,
    progress_log_interval_seconds=1.0,
    diagnostics_settle_seconds=0.5,
    shutdown_timeout_seconds=1.0,
)

MAIN_GO = """package main

import "fmt"

func main() {
\tfmt.Println(Greeting())
}
"""

LIB_GO = """package main

func Greeting() string {
\treturn "hello"
}
"""


@dataclass(slots=True)
class FakeWorkspace:
    root: Path
    script_path: Path
    log_path: Path

    @property
    def command(self) -> list[str]:
        return [sys.executable, str(FAKE_ANALYZER), str(self.script_path)]

    def records(self) -> list[dict[str, object]]:
        if not self.log_path.exists():
            return []
        lines = self.log_path.read_text(encoding="utf-8").splitlines()
        return [json.loads(line) for line in lines if line.strip()]

    def methods(self) -> list[str]:
        return [str(record["method"]) for record in self.records() if record.get("method")]

    def requests(self, method: str) -> list[dict[str, object]]:
        return [record for record in self.records() if record.get("method") == method]


def write_workspace(root: Path) -> None:
    root.mkdir(parents=True, exist_ok=True)
    (root / "go.mod").write_text("module example.com/demo\n\ngo 1.22\n", encoding="utf-8")
    (root / "main.go").write_text(MAIN_GO, encoding="utf-8")
    (root / "lib.go").write_text(LIB_GO, encoding="utf-8")
    (root / "README.md").write_text("# demo\n", encoding="utf-8")


@pytest.fixture
def fake_workspace(tmp_path: Path) -> Callable[..., FakeWorkspace]:
    """Build a Go workspace plus a script for the fake analyzer."""

    def build(name: str = "ws", **script: object) -> FakeWorkspace:
        root = tmp_path / name
        write_workspace(root)
        log_path = tmp_path / f"{name}.log.jsonl"
        script_path = tmp_path / f"{name}.script.json"
        script_path.write_text(json.dumps({"log": str(log_path), **script}), encoding="utf-8")
        return FakeWorkspace(root=root.resolve(), script_path=script_path, log_path=log_path)

    return build


@pytest.fixture
def start_engine() -> Iterator[Callable[..., WorkspaceEngine]]:
    """Start engines against fake workspaces and stop them on teardown."""
    engines: list[WorkspaceEngine] = []

    def start(
        workspace: FakeWorkspace,
        settings: EngineSettings = FAST_SETTINGS,
        started: bool = True,
    ) -> WorkspaceEngine:
        engine = WorkspaceEngine(workspace.root, command=workspace.command, settings=settings)
        engines.append(engine)
        if started:
            engine.start()
        return engine

    yield start
    for engine in engines:
        engine.stop()


@pytest.fixture
def fast_settings() -> EngineSettings:
    return FAST_SETTINGS

from __future__ import annotations

from pathlib import Path

from gopls_mcp.config import CliOverrides, load_effective_config
from gopls_mcp.server import create_server


def _write_config(root: Path, *lines: str) -> None:
    (root / "gopls_mcp.toml").write_text("\n".join(lines), encoding="utf-8")


def test_merge_order_defaults_then_file_then_cli(tmp_path: Path) -> None:
    (tmp_path / "svc").mkdir()
    _write_config(
        tmp_path,
        'workspaces = ["svc"]',
        "",
        "[engine]",
        "request_timeout_seconds = 12",
        "ready_timeout_seconds = 7",
        "",
        "[logging]",
        'level = "debug"',
    )
    overrides = CliOverrides(log_level="WARNING", diagnostics_mode="pull")
    server = create_server(cwd=str(tmp_path), cli_overrides=overrides)

    response = server.handle_payload({"id": "req-merge", "method": "server_status", "params": {}})
    effective = response["result"]["effective_config"]

    assert effective["workspaces"] == [str((tmp_path / "svc").resolve())]
    assert effective["engine"]["request_timeout_seconds"] == 12.0
    assert effective["engine"]["ready_timeout_seconds"] == 7.0
    assert effective["engine"]["initialize_timeout_seconds"] == 60.0
    assert effective["engine"]["diagnostics_mode"] == "pull"
    assert effective["logging"]["level"] == "WARNING"


def test_cli_workspaces_replace_file_workspaces(tmp_path: Path) -> None:
    _write_config(tmp_path, 'workspaces = ["a", "b"]')

    config = load_effective_config(
        tmp_path, CliOverrides(workspaces=(Path("c"),)), environ={}
    )

    assert config.workspaces == ((tmp_path / "c").resolve(),)


def test_duplicate_workspaces_collapse_to_one(tmp_path: Path) -> None:
    _write_config(tmp_path, 'workspaces = ["a", "./a", "a/../a"]')

    config = load_effective_config(tmp_path, environ={})

    assert config.workspaces == ((tmp_path / "a").resolve(),)


def test_environment_sits_between_file_and_cli(tmp_path: Path) -> None:
    _write_config(tmp_path, 'workspaces = ["a"]', "[logging]", 'level = "ERROR"')

    from_env = load_effective_config(tmp_path, environ={"LOG_LEVEL": "debug"})
    from_cli = load_effective_config(
        tmp_path, CliOverrides(log_level="INFO"), environ={"LOG_LEVEL": "debug"}
    )

    assert from_env.logging.level == "DEBUG"
    assert from_cli.logging.level == "INFO"


def test_explicit_config_path_resolves_relative_entries_next_to_file(tmp_path: Path) -> None:
    conf_dir = tmp_path / "conf"
    conf_dir.mkdir()
    (conf_dir / "servers.toml").write_text(
        '\n'.join(['workspaces = ["../repo"]', 'data_dir = "state"']), encoding="utf-8"
    )

    config = load_effective_config(
        tmp_path, CliOverrides(config_path=Path("conf/servers.toml")), environ={}
    )

    assert config.workspaces == ((tmp_path / "repo").resolve(),)
    assert config.data_dir == (conf_dir / "state").resolve()


def test_analyzer_command_override(tmp_path: Path) -> None:
    _write_config(tmp_path, 'workspaces = ["a"]', "[analyzer]", 'command = ["gopls", "serve"]')

    from_file = load_effective_config(tmp_path, environ={})
    from_cli = load_effective_config(
        tmp_path,
        CliOverrides(analyzer_command=("/opt/go/bin/gopls", "-rpc.trace")),
        environ={},
    )

    assert from_file.analyzer.command == ("gopls", "serve")
    assert from_cli.analyzer.command == ("/opt/go/bin/gopls", "-rpc.trace")


def test_data_dir_override_has_highest_precedence(tmp_path: Path) -> None:
    custom_data_dir = tmp_path / ".custom_data"
    (tmp_path / "ws").mkdir()
    server = create_server(
        cwd=str(tmp_path),
        cli_overrides=CliOverrides(workspaces=(tmp_path / "ws",), data_dir=custom_data_dir),
    )

    response = server.handle_payload(
        {"id": "req-data-dir", "method": "server_status", "params": {}}
    )
    effective = response["result"]["effective_config"]
    assert effective["data_dir"] == str(custom_data_dir.resolve())

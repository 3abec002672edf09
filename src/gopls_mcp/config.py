"""Configuration loading and deterministic merge order."""

from __future__ import annotations

import os
import shlex
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, fields
from pathlib import Path

from gopls_mcp.engine import DIAGNOSTICS_MODES, EngineSettings

CONFIG_FILE_NAME = "gopls_mcp.toml"
DEFAULT_ANALYZER_COMMAND = ("gopls",)
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
LOG_FORMATS = ("text", "json")


@dataclass(slots=True, frozen=True)
class AnalyzerConfig:
    """How to launch the analyzer child process."""

    command: tuple[str, ...]


@dataclass(slots=True, frozen=True)
class LoggingConfig:
    """Runtime log level and output format."""

    level: str
    format: str


@dataclass(slots=True, frozen=True)
class ServerConfig:
    """Fully merged server configuration."""

    workspaces: tuple[Path, ...]
    data_dir: Path
    analyzer: AnalyzerConfig
    engine: EngineSettings
    logging: LoggingConfig

    def to_public_dict(self) -> dict[str, object]:
        """Return serializable config snapshot for tool responses."""
        return {
            "workspaces": [str(path) for path in self.workspaces],
            "data_dir": str(self.data_dir),
            "analyzer": {"command": list(self.analyzer.command)},
            "engine": {item.name: getattr(self.engine, item.name) for item in fields(self.engine)},
            "logging": {"level": self.logging.level, "format": self.logging.format},
        }


@dataclass(slots=True, frozen=True)
class CliOverrides:
    """Optional startup overrides applied at highest precedence."""

    workspaces: tuple[Path, ...] = ()
    config_path: Path | None = None
    data_dir: Path | None = None
    analyzer_command: tuple[str, ...] | None = None
    log_level: str | None = None
    log_format: str | None = None
    diagnostics_mode: str | None = None


def default_config(cwd: Path) -> ServerConfig:
    """Build default config rooted at the working directory."""
    resolved = cwd.resolve()
    return ServerConfig(
        workspaces=(),
        data_dir=resolved / ".gopls_mcp",
        analyzer=AnalyzerConfig(command=DEFAULT_ANALYZER_COMMAND),
        engine=EngineSettings(),
        logging=LoggingConfig(level="INFO", format="text"),
    )


def load_config_file(path: Path, required: bool = False) -> dict[str, object]:
    """Load an optional TOML config file."""
    if not path.exists():
        if required:
            raise ValueError(f"Config file does not exist: {path}")
        return {}
    with path.open("rb") as handle:
        payload = tomllib.load(handle)
    if not isinstance(payload, dict):
        raise ValueError(f"{path.name} must contain a top-level table.")
    return payload


def _get_table(payload: Mapping[str, object], key: str) -> Mapping[str, object]:
    value = payload.get(key, {})
    if not isinstance(value, dict):
        raise ValueError(f"Config section '{key}' must be a table.")
    return value


def _tuple_of_strings(value: object, name: str) -> tuple[str, ...]:
    if not isinstance(value, list):
        raise ValueError(f"Config field '{name}' must be a list of strings.")
    output: list[str] = []
    for item in value:
        if not isinstance(item, str):
            raise ValueError(f"Config field '{name}' must contain only strings.")
        output.append(item)
    return tuple(output)


def _resolve_workspaces(
    entries: tuple[str, ...] | tuple[Path, ...], base: Path
) -> tuple[Path, ...]:
    resolved: list[Path] = []
    for entry in entries:
        candidate = Path(entry).expanduser()
        if not candidate.is_absolute():
            candidate = base / candidate
        candidate = candidate.resolve()
        if candidate not in resolved:
            resolved.append(candidate)
    return tuple(resolved)


def merge_config(
    base: ServerConfig,
    file_payload: Mapping[str, object],
    overrides: CliOverrides,
    environ: Mapping[str, str] | None = None,
    file_dir: Path | None = None,
    cwd: Path | None = None,
) -> ServerConfig:
    """Merge defaults, config file, environment, then CLI/startup overrides."""
    working_dir = cwd or Path.cwd()
    analyzer_payload = _get_table(file_payload, "analyzer")
    engine_payload = _get_table(file_payload, "engine")
    logging_payload = _get_table(file_payload, "logging")
    relative_base = file_dir or working_dir

    workspaces = base.workspaces
    if "workspaces" in file_payload:
        workspaces = _resolve_workspaces(
            _tuple_of_strings(file_payload["workspaces"], "workspaces"), relative_base
        )

    data_dir = base.data_dir
    if "data_dir" in file_payload:
        raw_data_dir = file_payload["data_dir"]
        if not isinstance(raw_data_dir, str) or not raw_data_dir:
            raise ValueError("Config field 'data_dir' must be a non-empty string.")
        data_dir = Path(raw_data_dir)
        if not data_dir.is_absolute():
            data_dir = relative_base / data_dir

    command = base.analyzer.command
    if "command" in analyzer_payload:
        command = _command(_tuple_of_strings(analyzer_payload["command"], "analyzer.command"))

    engine = _merge_engine(base.engine, engine_payload)

    level = _log_level(logging_payload.get("level", base.logging.level), "logging.level")
    log_format = _log_format(logging_payload.get("format", base.logging.format), "logging.format")
    env = environ if environ is not None else os.environ
    if env.get("LOG_LEVEL"):
        level = _log_level(env["LOG_LEVEL"], "LOG_LEVEL")
    if env.get("LOG_FORMAT"):
        log_format = _log_format(env["LOG_FORMAT"], "LOG_FORMAT")

    merged = ServerConfig(
        workspaces=workspaces,
        data_dir=data_dir,
        analyzer=AnalyzerConfig(command=command),
        engine=engine,
        logging=LoggingConfig(level=level, format=log_format),
    )
    return apply_cli_overrides(merged, overrides, working_dir)


def apply_cli_overrides(
    config: ServerConfig, overrides: CliOverrides, cwd: Path | None = None
) -> ServerConfig:
    """Apply startup overrides at highest precedence."""
    base = cwd or Path.cwd()
    workspaces = config.workspaces
    if overrides.workspaces:
        workspaces = _resolve_workspaces(overrides.workspaces, base)
    engine = config.engine
    if overrides.diagnostics_mode is not None:
        engine = _merge_engine(engine, {"diagnostics_mode": overrides.diagnostics_mode})
    command = config.analyzer.command
    if overrides.analyzer_command is not None:
        command = _command(overrides.analyzer_command)
    level = config.logging.level
    if overrides.log_level is not None:
        level = _log_level(overrides.log_level, "overrides.log_level")
    log_format = config.logging.format
    if overrides.log_format is not None:
        log_format = _log_format(overrides.log_format, "overrides.log_format")
    data_dir = overrides.data_dir or config.data_dir
    return ServerConfig(
        workspaces=workspaces,
        data_dir=data_dir.resolve(),
        analyzer=AnalyzerConfig(command=command),
        engine=engine,
        logging=LoggingConfig(level=level, format=log_format),
    )


def load_effective_config(
    cwd: Path,
    overrides: CliOverrides | None = None,
    environ: Mapping[str, str] | None = None,
) -> ServerConfig:
    """Load effective config using merge order defaults -> file -> env -> overrides."""
    resolved_cwd = cwd.resolve()
    effective_overrides = overrides or CliOverrides()
    base = default_config(resolved_cwd)
    if effective_overrides.config_path is not None:
        config_path = effective_overrides.config_path
        if not config_path.is_absolute():
            config_path = resolved_cwd / config_path
        payload = load_config_file(config_path, required=True)
    else:
        config_path = resolved_cwd / CONFIG_FILE_NAME
        payload = load_config_file(config_path)
    merged = merge_config(
        base,
        payload,
        effective_overrides,
        environ,
        file_dir=config_path.parent.resolve(),
        cwd=resolved_cwd,
    )
    if not merged.workspaces:
        raise ValueError("At least one workspace must be configured.")
    return merged


def parse_command(raw: str) -> tuple[str, ...]:
    """Split a shell-style analyzer command line."""
    return _command(tuple(shlex.split(raw)))


def _command(value: tuple[str, ...]) -> tuple[str, ...]:
    if not value or not value[0]:
        raise ValueError("Config field 'analyzer.command' must not be empty.")
    return value


def _merge_engine(base: EngineSettings, payload: Mapping[str, object]) -> EngineSettings:
    known = {item.name for item in fields(base)}
    for key in payload:
        if key not in known:
            raise ValueError(f"Config field 'engine.{key}' is not recognised.")
    values: dict[str, object] = {}
    for name in known:
        current = getattr(base, name)
        raw = payload.get(name)
        if raw is None:
            values[name] = current
        elif name == "diagnostics_mode":
            if raw not in DIAGNOSTICS_MODES:
                raise ValueError(
                    "Config field 'engine.diagnostics_mode' must be one of: "
                    + ", ".join(DIAGNOSTICS_MODES)
                )
            values[name] = raw
        else:
            values[name] = _positive_number(raw, f"engine.{name}")
    return EngineSettings(**values)  # type: ignore[arg-type]


def _positive_number(value: object, name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ValueError(f"Config field '{name}' must be a positive number.")
    return float(value)


def _log_level(value: object, name: str) -> str:
    if not isinstance(value, str) or value.upper() not in LOG_LEVELS:
        raise ValueError(f"Config field '{name}' must be one of: {', '.join(LOG_LEVELS)}")
    return value.upper()


def _log_format(value: object, name: str) -> str:
    if not isinstance(value, str) or value.lower() not in LOG_FORMATS:
        raise ValueError(f"Config field '{name}' must be one of: {', '.join(LOG_FORMATS)}")
    return value.lower()

#!/usr/bin/env python3
"""Shared utilities for Claude Policy Hooks.

This module provides the plumbing every hook phase needs:
- Structured logging with an explicit logger handle (no global logger)
- Configuration loading/saving/validation from config.yaml
- Hook input parsing into a flat ToolInvocationEvent
- FileSnapshot construction
- Dry-run mode support
- Human-readable decision rendering for stderr

Usage:
    from _policy_utils import (
        load_config,
        create_logger,
        parse_event,
        build_file_snapshot,
        render_decision,
    )

Config resolution:
    1. Explicit path (--config)
    2. ~/.claude/hooks/config.yaml
    If the file does not exist, the built-in default config is written
    there and used.

Note on HookLogger:
    - File sink rotates at MAX_LOG_SIZE_BYTES, keeping one .log.1 backup
    - Silent fail on write errors so logging never breaks a hook
"""

import json
import os
import sys
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from pathlib import Path
from typing import Any, TextIO

import yaml

from _policy_matching import get_file_extension, is_documentation_file, is_test_file
from _policy_models import (
    TOOL_BASH,
    TOOL_EDIT,
    TOOL_MULTI_EDIT,
    TOOL_WRITE,
    ConfigError,
    Decision,
    EventParseError,
    FileSnapshot,
    HookAction,
    ToolInvocationEvent,
)

# ============================================================
# Constants
# ============================================================

DRY_RUN_ENV = "POLICY_HOOKS_DRY_RUN"
"""Environment variable to enable dry-run mode.
Set to "1", "true", or "yes" to enable."""

MAX_LOG_SIZE_BYTES = 1_000_000
"""Maximum log file size before rotation (1 MB)."""

MAX_PATH_PREVIEW_LENGTH = 60
"""Maximum path length for log display."""

MAX_COMMAND_PREVIEW_LENGTH = 80
"""Maximum command length for log display."""

DEFAULT_TIMEOUT_SECONDS = 5
"""Hook timeout used when neither --timeout nor general.timeout is set."""

LOG_LEVELS = {"debug": 10, "info": 20, "warn": 30, "warning": 30, "error": 40}
LOG_OUTPUTS = ("stdout", "stderr", "file")
LOG_FORMATS = ("text", "json")


def get_default_config_path() -> Path:
    return Path.home() / ".claude" / "hooks" / "config.yaml"


def get_default_log_file() -> str:
    return str(Path.home() / ".claude" / "logs" / "claude-hooks.log")


# ============================================================
# Dry-Run Mode
# ============================================================


def is_dry_run() -> bool:
    """Check if running in dry-run (simulation) mode.

    In dry-run mode, hooks compute and log the full decision but
    always exit 0, so nothing is actually blocked.

    Enable by setting environment variable:
        POLICY_HOOKS_DRY_RUN=1
    """
    value = os.environ.get(DRY_RUN_ENV, "").lower()
    return value in ("1", "true", "yes")


# ============================================================
# Logging with Rotation
# ============================================================


def _rotate_log_if_needed(log_file: Path) -> None:
    """Rotate log file if it exceeds MAX_LOG_SIZE_BYTES.

    The current log is renamed to .log.1 (overwriting any previous
    backup), keeping exactly one backup. Silent fail on any error.
    """
    try:
        if not log_file.exists():
            return
        if log_file.stat().st_size < MAX_LOG_SIZE_BYTES:
            return

        backup_file = log_file.with_suffix(".log.1")
        # On Windows the rename target must not exist
        if backup_file.exists():
            backup_file.unlink()
        log_file.rename(backup_file)
    except OSError:
        pass


class _LogSink:
    """Destination shared by a logger and all of its children."""

    def __init__(self, stream: TextIO | None = None, log_file: str | None = None):
        self.stream = stream
        self.log_file = Path(log_file) if log_file else None

    def write(self, line: str) -> None:
        try:
            if self.log_file is not None:
                self.log_file.parent.mkdir(parents=True, exist_ok=True)
                _rotate_log_if_needed(self.log_file)
                with open(self.log_file, "a", encoding="utf-8") as f:
                    f.write(line)
            elif self.stream is not None:
                self.stream.write(line)
                self.stream.flush()
        except (OSError, ValueError):
            # Silent fail - don't break hook on log error
            pass


class HookLogger:
    """Leveled logger handle passed explicitly to every component.

    with_fields() returns a child logger carrying extra key/value
    fields; the parent is never modified.

    Log format (text):
        TIMESTAMP [LEVEL] [DRY-RUN] MESSAGE key=value ...
    """

    def __init__(
        self,
        level: str = "info",
        fmt: str = "text",
        stream: TextIO | None = None,
        log_file: str | None = None,
        fields: dict[str, Any] | None = None,
        _sink: _LogSink | None = None,
    ):
        self.level = level.lower()
        self.threshold = LOG_LEVELS.get(self.level, LOG_LEVELS["info"])
        self.fmt = fmt
        self.fields = dict(fields or {})
        self._sink = _sink or _LogSink(stream=stream, log_file=log_file)

    def with_fields(self, **fields: Any) -> "HookLogger":
        return HookLogger(
            level=self.level,
            fmt=self.fmt,
            fields={**self.fields, **fields},
            _sink=self._sink,
        )

    def enabled_for(self, level: str) -> bool:
        return LOG_LEVELS[level] >= self.threshold

    def debug(self, message: str, **fields: Any) -> None:
        self._log("debug", message, fields)

    def info(self, message: str, **fields: Any) -> None:
        self._log("info", message, fields)

    def warn(self, message: str, **fields: Any) -> None:
        self._log("warn", message, fields)

    def error(self, message: str, **fields: Any) -> None:
        self._log("error", message, fields)

    def _log(self, level: str, message: str, extra: dict[str, Any]) -> None:
        if not self.enabled_for(level):
            return
        merged = {**self.fields, **extra}
        timestamp = datetime.now().isoformat(timespec="seconds")

        if self.fmt == "json":
            record = {"time": timestamp, "level": level.upper(), "msg": message}
            if is_dry_run():
                record["dry_run"] = True
            record.update({k: _plain(v) for k, v in merged.items()})
            line = json.dumps(record, ensure_ascii=False) + "\n"
        else:
            mode = "[DRY-RUN] " if is_dry_run() else ""
            pairs = "".join(f" {k}={_format_value(v)}" for k, v in merged.items())
            line = f"{timestamp} [{level.upper()}] {mode}{message}{pairs}\n"

        self._sink.write(line)


def _plain(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return str(value)


def _format_value(value: Any) -> str:
    text = str(value)
    if not text or any(ch.isspace() for ch in text) or '"' in text:
        return json.dumps(text, ensure_ascii=False)
    return text


@dataclass
class LoggerConfig:
    level: str = "info"
    format: str = "text"
    output: str = "stderr"
    file: str = ""


def create_logger(config: LoggerConfig | None = None) -> HookLogger:
    """Build a HookLogger from logger configuration.

    Raises:
        ConfigError: If output is "file" and no file path is set.
    """
    if config is None:
        config = LoggerConfig()

    if config.output == "file":
        if not config.file:
            raise ConfigError("log file path is required when output is 'file'")
        return HookLogger(level=config.level, fmt=config.format, log_file=config.file)
    if config.output == "stdout":
        return HookLogger(level=config.level, fmt=config.format, stream=sys.stdout)
    return HookLogger(level=config.level, fmt=config.format, stream=sys.stderr)


# ============================================================
# Configuration
# ============================================================


@dataclass
class GeneralConfig:
    log_level: str = "info"
    log_file: str = ""
    timeout: float = 0


@dataclass
class ValidatorConfig:
    enabled: bool = True
    exception_paths: list[str] = field(default_factory=list)
    exception_files: list[str] = field(default_factory=list)
    custom_patterns: list[str] = field(default_factory=list)
    suggestion_message: str = ""

    # emergency_defaults
    case_sensitive: bool = False

    # runtime_exit
    restrict_to_extension: str = ".go"
    test_exceptions: list[str] = field(default_factory=list)

    # secrets
    jwt_pattern: str = ""
    wallet_pattern: str = ""
    api_key_pattern: str = ""
    test_config_exceptions: list[str] = field(default_factory=list)

    @property
    def exceptions(self) -> list[str]:
        return [*self.exception_paths, *self.exception_files]


@dataclass
class ToolConfig:
    enabled: bool = True
    blocked_patterns: list[str] = field(default_factory=list)
    dangerous_commands: list[str] = field(default_factory=list)

    # formatter
    formatters: dict[str, str] = field(default_factory=dict)
    go_format: bool = True
    ts_format: bool = True

    # notifier
    work_dir: str = ""
    sound: bool = True
    desktop: bool = True


@dataclass
class Config:
    general: GeneralConfig = field(default_factory=GeneralConfig)
    validators: dict[str, ValidatorConfig] = field(default_factory=dict)
    tools: dict[str, ToolConfig] = field(default_factory=dict)
    logger: LoggerConfig = field(default_factory=LoggerConfig)

    def to_dict(self) -> dict[str, Any]:
        return {
            "general": asdict(self.general),
            "validators": {name: asdict(cfg) for name, cfg in self.validators.items()},
            "tools": {name: asdict(cfg) for name, cfg in self.tools.items()},
            "logger": asdict(self.logger),
        }


def _build_section(cls, data: Any, where: str):
    """Build a config dataclass from a mapping, ignoring unknown keys."""
    if data is None:
        return cls()
    if not isinstance(data, dict):
        raise ConfigError(f"{where} must be a mapping, got {type(data).__name__}")
    known = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in data.items() if k in known})


def _build_named_sections(cls, data: Any, where: str) -> dict:
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{where} must be a mapping, got {type(data).__name__}")
    return {str(name): _build_section(cls, section, f"{where}.{name}") for name, section in data.items()}


def config_from_dict(data: dict[str, Any]) -> Config:
    """Build a Config from parsed YAML data.

    Raises:
        ConfigError: If a section has the wrong shape.
    """
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError("config root must be a mapping")

    config = Config(
        general=_build_section(GeneralConfig, data.get("general"), "general"),
        validators=_build_named_sections(ValidatorConfig, data.get("validators"), "validators"),
        tools=_build_named_sections(ToolConfig, data.get("tools"), "tools"),
        logger=_build_section(LoggerConfig, data.get("logger"), "logger"),
    )
    _expand_config_paths(config)
    return config


def default_config() -> Config:
    """Built-in configuration written on first run."""
    log_file = get_default_log_file()
    return Config(
        general=GeneralConfig(log_level="info", log_file=log_file, timeout=0),
        validators={
            "emergency_defaults": ValidatorConfig(
                enabled=True,
                case_sensitive=False,
                exception_paths=["docs/", "README"],
                exception_files=["*.md", "*.txt", "*.rst"],
                suggestion_message="Use explicit validation, required parameters, error throwing",
            ),
            "runtime_exit": ValidatorConfig(
                enabled=True,
                restrict_to_extension=".go",
                test_exceptions=["*_test.go", "tests/", "test/"],
            ),
            "secrets": ValidatorConfig(
                enabled=True,
                test_config_exceptions=["test-config.ts", "test-config.js", "*test*.json"],
            ),
        },
        tools={
            "bash": ToolConfig(
                enabled=True,
                blocked_patterns=["rm -rf /", "rm -rf ~", ":(){ :|:& };:"],
            ),
            "formatter": ToolConfig(
                enabled=True,
                go_format=True,
                ts_format=True,
                formatters={
                    "go": "gofmt -w",
                    "ts": "prettier --write",
                    "tsx": "prettier --write",
                    "js": "prettier --write",
                    "jsx": "prettier --write",
                },
            ),
            "notifier": ToolConfig(enabled=True, sound=True, desktop=True),
        },
        logger=LoggerConfig(level="info", format="text", output="file", file=log_file),
    )


def _expand_path(path: str) -> str:
    if path.startswith("~/") or path == "~":
        return str(Path(path).expanduser())
    return path


def _expand_config_paths(config: Config) -> None:
    config.general.log_file = _expand_path(config.general.log_file)
    config.logger.file = _expand_path(config.logger.file)


def _string_list_errors(where: str, value: Any) -> list[str]:
    if not isinstance(value, list):
        return [f"{where} must be a list"]
    return [
        f"{where}[{i}] must be a string, got {type(item).__name__}"
        for i, item in enumerate(value)
        if not isinstance(item, str)
    ]


def validate_config(config: Config) -> list[str]:
    """Validate configuration semantics.

    Returns:
        List of validation error messages (empty if valid).
    """
    errors = []

    if config.general.log_level.lower() not in LOG_LEVELS:
        errors.append(f"Invalid general.log_level: {config.general.log_level}")

    timeout = config.general.timeout
    if not isinstance(timeout, (int, float)) or isinstance(timeout, bool) or timeout < 0:
        errors.append(f"Invalid general.timeout: {timeout} (must be a non-negative number)")

    if config.logger.level.lower() not in LOG_LEVELS:
        errors.append(f"Invalid logger.level: {config.logger.level}")
    if config.logger.output not in LOG_OUTPUTS:
        errors.append(f"Invalid logger.output: {config.logger.output} (must be: {', '.join(LOG_OUTPUTS)})")
    if config.logger.format not in LOG_FORMATS:
        errors.append(f"Invalid logger.format: {config.logger.format} (must be: {', '.join(LOG_FORMATS)})")
    if config.logger.output == "file" and not config.logger.file:
        errors.append("logger.file is required when logger.output is 'file'")

    for name, validator in config.validators.items():
        for key in ("exception_paths", "exception_files", "custom_patterns", "test_exceptions", "test_config_exceptions"):
            errors.extend(_string_list_errors(f"validators.{name}.{key}", getattr(validator, key)))

    for name, tool in config.tools.items():
        for key in ("blocked_patterns", "dangerous_commands"):
            errors.extend(_string_list_errors(f"tools.{name}.{key}", getattr(tool, key)))
        if not isinstance(tool.formatters, dict):
            errors.append(f"tools.{name}.formatters must be a mapping")
            continue
        for ext, command in tool.formatters.items():
            if not isinstance(command, str):
                errors.append(f"tools.{name}.formatters.{ext} must be a string, got {type(command).__name__}")

    return errors


def save_config(config: Config, config_path: str | Path) -> None:
    """Write configuration as YAML, creating parent directories.

    Raises:
        ConfigError: If the file cannot be written.
    """
    path = Path(config_path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            yaml.safe_dump(config.to_dict(), f, sort_keys=False, allow_unicode=True)
    except OSError as e:
        raise ConfigError(f"failed to write config file {path}: {e}") from e


def load_config(config_path: str | Path | None = None) -> Config:
    """Load config.yaml, creating the default one if it does not exist.

    Args:
        config_path: Explicit config path, or None for the default path.

    Returns:
        Validated Config.

    Raises:
        ConfigError: On unreadable, unparsable or invalid configuration.
    """
    path = Path(config_path).expanduser() if config_path else get_default_config_path()

    if not path.exists():
        config = default_config()
        save_config(config, path)
        return config

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"failed to parse config file {path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"failed to read config file {path}: {e}") from e

    config = config_from_dict(data)
    errors = validate_config(config)
    if errors:
        raise ConfigError("config validation failed: " + "; ".join(errors))
    return config


# ============================================================
# Hook Input Parsing
# ============================================================


def _decode_tool_input(raw: Any) -> dict[str, Any]:
    """tool_input arrives either as an object or as a JSON-encoded string."""
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str) and raw.strip():
        try:
            decoded = json.loads(raw)
        except json.JSONDecodeError:
            return {}
        return decoded if isinstance(decoded, dict) else {}
    return {}


def _str_field(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    return value if isinstance(value, str) else ""


def parse_event(payload: str | bytes) -> ToolInvocationEvent:
    """Parse a hook payload into a flat ToolInvocationEvent.

    Top-level fields are read first; kind-specific values from tool_input
    then override them:
    - Write: file_path, content
    - Edit: file_path, new_string
    - MultiEdit: file_path, edits[].new_string joined by newlines
    - Bash: command

    Raises:
        EventParseError: If the payload is not a JSON object.
    """
    try:
        data = json.loads(payload)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise EventParseError(f"failed to parse tool input: {e}") from e
    if not isinstance(data, dict):
        raise EventParseError(f"tool input must be a JSON object, got {type(data).__name__}")

    tool_name = _str_field(data, "tool_name")
    values = {
        "session_id": _str_field(data, "session_id"),
        "file_path": _str_field(data, "file_path"),
        "content": _str_field(data, "content"),
        "new_string": _str_field(data, "new_string"),
        "command": _str_field(data, "command"),
        "cwd": _str_field(data, "cwd"),
        "transcript_path": _str_field(data, "transcript_path"),
    }

    tool_input = _decode_tool_input(data.get("tool_input"))
    if tool_name in (TOOL_WRITE, TOOL_EDIT, TOOL_MULTI_EDIT):
        if _str_field(tool_input, "file_path"):
            values["file_path"] = tool_input["file_path"]

    if tool_name == TOOL_WRITE and _str_field(tool_input, "content"):
        values["content"] = tool_input["content"]
    elif tool_name == TOOL_EDIT and _str_field(tool_input, "new_string"):
        values["new_string"] = tool_input["new_string"]
    elif tool_name == TOOL_MULTI_EDIT:
        edits = tool_input.get("edits")
        if isinstance(edits, list):
            new_strings = [
                edit["new_string"]
                for edit in edits
                if isinstance(edit, dict) and isinstance(edit.get("new_string"), str)
            ]
            if new_strings:
                values["new_string"] = "\n".join(new_strings)
    elif tool_name == TOOL_BASH and _str_field(tool_input, "command"):
        values["command"] = tool_input["command"]

    return ToolInvocationEvent(tool_name=tool_name, **values)


def build_file_snapshot(event: ToolInvocationEvent) -> FileSnapshot | None:
    """Derive the FileSnapshot to scan, or None when there is no file."""
    if not event.file_path:
        return None
    return FileSnapshot(
        path=event.file_path,
        content=event.content or event.new_string,
        extension=get_file_extension(event.file_path),
        is_test_file=is_test_file(event.file_path),
        is_docs_file=is_documentation_file(event.file_path),
    )


# ============================================================
# Display Helpers
# ============================================================


def truncate_path(path: str, max_length: int = MAX_PATH_PREVIEW_LENGTH) -> str:
    """Truncate path for display, keeping its end."""
    if len(path) <= max_length:
        return path
    return f"...{path[-(max_length - 3) :]}"


def truncate_command(command: str, max_length: int = MAX_COMMAND_PREVIEW_LENGTH) -> str:
    """Truncate command for display, keeping its start."""
    if len(command) <= max_length:
        return command
    return f"{command[: max_length - 3]}..."


def render_decision(decision: Decision, verbose: bool = False) -> str:
    """Format a decision for stderr.

    Blocking outcomes always show their message and suggestion list.
    """
    lines: list[str] = []

    if decision.action == HookAction.BLOCK:
        lines.append(f"[BLOCKED] {decision.message}")
    elif decision.action == HookAction.WARN:
        lines.append(f"[WARNING] {decision.message}")
    elif verbose:
        lines.append("[ALLOWED] Operation passed all checks")

    if decision.is_blocking and decision.suggestions:
        lines.append("Suggestions:")
        lines.extend(f"  - {s}" for s in decision.suggestions)

    if decision.modified_event is not None and decision.modified_event.command:
        lines.append(f"[MODIFIED] {decision.modified_event.command}")

    if verbose and decision.violations:
        lines.append("Violations:")
        for v in decision.violations:
            location = f" (line {v.line}, col {v.column})" if v.line else ""
            lines.append(f"  - {v.type} [{v.severity.value}]{location}: {v.message}")
            if v.suggestion:
                lines.append(f"    {v.suggestion}")

    if verbose:
        lines.append(f"Processing time: {decision.duration * 1000:.1f}ms")

    return "\n".join(lines)

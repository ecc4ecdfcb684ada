#!/usr/bin/env python3
"""Tool validators: checks bound to a tool kind and a hook phase.

Tools:
- BashTool ("bash"): blocks shell commands containing configured
  dangerous substrings (pre phase)
- FormatterTool ("formatter"): runs the configured formatter on the
  written file (post phase, never blocks)
- NotifierTool ("notifier"): terminal title, sound and desktop
  notification when a session stops (stop phase, never blocks)

Every tool exposes:
    name, enabled, supported_tools, phases,
    validate_tool(event, phase) -> ValidationOutcome

A tool may return outcome.modified_event; the engine passes the
rewritten event to the next tool.
"""

import os
import shlex
import shutil
import subprocess
import sys
from pathlib import Path

import regex

from _policy_matching import REGEX_TIMEOUT_SECONDS, compile_patterns, get_file_extension
from _policy_models import (
    FILE_TOOLS,
    TOOL_BASH,
    TOOL_STOP,
    HookPhase,
    Level,
    ToolInvocationEvent,
    ValidationOutcome,
    Violation,
)
from _policy_utils import HookLogger, ToolConfig, truncate_command, truncate_path

# ============================================================
# Constants
# ============================================================

FORMATTER_TIMEOUT_SECONDS = 30
"""Upper bound for a single formatter run."""

GO_FORMAT_EXTENSIONS = ("go",)
TS_FORMAT_EXTENSIONS = ("ts", "tsx", "js", "jsx")

SOUND_FILES = (
    "/usr/share/sounds/freedesktop/stereo/window-attention.oga",
    "/usr/share/sounds/alsa/Front_Left.wav",
)


# ============================================================
# Base Tool
# ============================================================


class BaseTool:
    supported_tools: tuple[str, ...] = ()
    phases: tuple[HookPhase, ...] = ()

    def __init__(self, name: str, config: ToolConfig, logger: HookLogger):
        self.name = name
        self.enabled = config.enabled
        self.config = config
        self.logger = logger.with_fields(tool=name)

    def applies_to(self, event: ToolInvocationEvent, phase: HookPhase) -> bool:
        return phase in self.phases and event.tool_name in self.supported_tools

    def validate_tool(self, event: ToolInvocationEvent, phase: HookPhase) -> ValidationOutcome:
        raise NotImplementedError


# ============================================================
# Bash
# ============================================================


class BashTool(BaseTool):
    """Substring blocklist for shell commands.

    blocked_patterns wins; dangerous_commands is read only when
    blocked_patterns is empty (older config files).
    """

    supported_tools = (TOOL_BASH,)
    phases = (HookPhase.PRE,)

    def __init__(self, config: ToolConfig, logger: HookLogger):
        super().__init__("bash", config, logger)
        self.blocked_patterns = compile_patterns(
            [p for p in (config.blocked_patterns or config.dangerous_commands) if p], literal=True
        )

    def validate_tool(self, event: ToolInvocationEvent, phase: HookPhase) -> ValidationOutcome:
        if not self.enabled or not self.applies_to(event, phase):
            return ValidationOutcome.valid()

        command = event.command
        if not command:
            return ValidationOutcome.valid()

        self.logger.debug("validating bash command", command=truncate_command(command))

        violations = []
        for pattern in self.blocked_patterns:
            found = pattern.search(command, timeout=REGEX_TIMEOUT_SECONDS)
            if not found:
                continue
            violations.append(
                Violation(
                    type="dangerous_bash_command",
                    message=f"Dangerous bash command detected: {found.group()}",
                    suggestion="Avoid potentially destructive commands",
                    severity=Level.CRITICAL,
                    line=1,
                    column=found.start() + 1,
                )
            )

        if not violations:
            return ValidationOutcome.valid()

        self.logger.warn("dangerous command blocked", command=truncate_command(command), matches=len(violations))
        return ValidationOutcome(is_valid=False, violations=violations)


# ============================================================
# Formatter
# ============================================================


class FormatterTool(BaseTool):
    """Runs `<formatter command> <file>` after a file is written.

    The formatter for a file is looked up by extension in the
    `formatters` mapping; go_format and ts_format gate the Go and
    JS/TS families.
    """

    supported_tools = FILE_TOOLS
    phases = (HookPhase.POST,)

    def __init__(self, config: ToolConfig, logger: HookLogger):
        super().__init__("formatter", config, logger)
        self.formatters = {ext.lstrip(".").lower(): cmd for ext, cmd in config.formatters.items() if cmd}
        self.go_format = config.go_format
        self.ts_format = config.ts_format

    def formatter_for(self, path: str) -> list[str] | None:
        ext = get_file_extension(path).lstrip(".")
        if not ext:
            return None
        if ext in GO_FORMAT_EXTENSIONS and not self.go_format:
            return None
        if ext in TS_FORMAT_EXTENSIONS and not self.ts_format:
            return None
        command = self.formatters.get(ext)
        if not command:
            return None
        return shlex.split(command)

    def validate_tool(self, event: ToolInvocationEvent, phase: HookPhase) -> ValidationOutcome:
        if not self.enabled or not self.applies_to(event, phase):
            return ValidationOutcome.valid()

        path = event.file_path
        if not path:
            return ValidationOutcome.valid()

        argv = self.formatter_for(path)
        if not argv:
            return ValidationOutcome.valid()

        if shutil.which(argv[0]) is None:
            self.logger.debug("formatter not found, skipping", formatter=argv[0])
            return ValidationOutcome(
                violations=[
                    Violation(
                        type="formatter_unavailable",
                        message=f"Formatter {argv[0]} is not installed",
                        suggestion=f"Install {argv[0]} to enable automatic formatting",
                        severity=Level.INFO,
                    )
                ]
            )

        self.logger.debug("formatting file", file=truncate_path(path), formatter=argv[0])
        error = self._run(argv + [path], event.cwd)
        if error:
            self.logger.warn("failed to format file", file=truncate_path(path), error=error)
            return ValidationOutcome(
                violations=[
                    Violation(
                        type="format_error",
                        message=f"Formatting {truncate_path(path)} failed: {error}",
                        suggestion="Check the file for syntax errors",
                        severity=Level.INFO,
                    )
                ]
            )

        self.logger.info("formatted file", file=truncate_path(path), formatter=argv[0])
        return ValidationOutcome(suggestions=[f"{Path(path).name} was formatted with {argv[0]}"])

    def _run(self, argv: list[str], cwd: str) -> str:
        """Run the formatter; return an error description or ""."""
        try:
            result = subprocess.run(
                argv,
                capture_output=True,
                encoding="utf-8",
                errors="replace",
                cwd=cwd or None,
                timeout=FORMATTER_TIMEOUT_SECONDS,
            )
        except FileNotFoundError:
            return f"{argv[0]} not found"
        except subprocess.TimeoutExpired:
            return f"timed out after {FORMATTER_TIMEOUT_SECONDS}s"
        except OSError as e:
            return str(e)

        if result.returncode != 0:
            stderr_msg = (result.stderr or "").strip()[:500]
            return f"exit status {result.returncode}" + (f": {stderr_msg}" if stderr_msg else "")
        return ""


# ============================================================
# Notifier
# ============================================================


def _encode_path(path: str) -> str:
    """/home/user/work -> home-user-work (transcript directory naming)."""
    return path.lstrip("/").replace("/", "-")


class NotifierTool(BaseTool):
    """Session-finished notifications, fire-and-forget.

    Spawned processes are never waited on; failures are logged at debug
    level and never change the outcome.
    """

    supported_tools = (TOOL_STOP,)
    phases = (HookPhase.STOP,)

    def __init__(self, config: ToolConfig, logger: HookLogger):
        super().__init__("notifier", config, logger)
        work_dir = config.work_dir
        if not work_dir:
            home = os.environ.get("HOME", "")
            work_dir = os.path.join(home, "work") if home else ""
        self.work_dir = os.path.expanduser(work_dir).rstrip("/") if work_dir else ""
        self.sound = config.sound
        self.desktop = config.desktop

    def validate_tool(self, event: ToolInvocationEvent, phase: HookPhase) -> ValidationOutcome:
        if not self.enabled or not self.applies_to(event, phase):
            return ValidationOutcome.valid()

        project = self.extract_project_name(event.transcript_path)
        self.logger.debug("stop event detected", project=project)

        self._set_titles(project)
        if self.sound:
            self._play_sound()
        if self.desktop:
            self._spawn(
                [
                    "notify-send",
                    "Claude Code session completed",
                    f"Project: {project}",
                    "--urgency=low",
                    "--expire-time=5000",
                ]
            )

        return ValidationOutcome(
            violations=[
                Violation(
                    type="notification_sent",
                    message=f"Claude Code session [{project}] completed - notifications sent",
                    suggestion=f"Notifications activated for project [{project}]",
                    severity=Level.INFO,
                )
            ],
            suggestions=[f"Notifications sent for project [{project}]"],
        )

    def extract_project_name(self, transcript_path: str) -> str:
        """Derive the project name from the transcript path, or the cwd."""
        path = transcript_path
        if not path:
            try:
                path = os.getcwd()
            except OSError:
                return "unknown"
        return self.project_from_path(path)

    def project_from_path(self, path: str) -> str:
        if not self.work_dir:
            return "unknown"

        work_dir = regex.escape(self.work_dir)
        candidates = (
            rf"{work_dir}/([^/]+)(?:/|$)",
            rf"{regex.escape(_encode_path(self.work_dir))}-([^/]+)/",
            rf"{regex.escape(self.work_dir + '/saga-agents')}/([^/]+)(?:/|$)",
        )
        for pattern in candidates:
            found = regex.search(pattern, path)
            if found:
                return found.group(1)

        self.logger.debug("no project pattern matched", path=truncate_path(path))
        return "unknown"

    def _set_titles(self, project: str) -> None:
        try:
            sys.stderr.write(f"\033]30;Claude Code ({project}) - ready\007")
            sys.stderr.write(f"\033]0;Claude Code [{project}] - READY\007")
            sys.stderr.flush()
        except (OSError, ValueError):
            pass

    def _play_sound(self) -> None:
        if shutil.which("canberra-gtk-play"):
            self._spawn(["canberra-gtk-play", "-i", "window-attention"])
            return
        if not shutil.which("paplay"):
            self.logger.debug("no sound system available")
            return
        for sound_file in SOUND_FILES:
            if os.path.exists(sound_file):
                self._spawn(["paplay", sound_file])
                return
        self.logger.debug("no sound file available")

    def _spawn(self, argv: list[str]) -> None:
        if shutil.which(argv[0]) is None:
            self.logger.debug("command not available", command=argv[0])
            return
        try:
            subprocess.Popen(
                argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError as e:
            self.logger.debug("command failed to start", command=argv[0], error=str(e))

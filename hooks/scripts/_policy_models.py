#!/usr/bin/env python3
"""Data model for Claude Policy Hooks.

Every value here is created once per hook invocation and never mutated:
- ToolInvocationEvent: the action Claude Code proposes
- FileSnapshot: the file view the rule validators scan
- Violation / ValidationOutcome: what a single checker reports
- Decision: the final allow/warn/block verdict

Also defines the error taxonomy shared by all hook modules.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any

# ============================================================
# Tool Kinds and Phases
# ============================================================

TOOL_WRITE = "Write"
TOOL_EDIT = "Edit"
TOOL_MULTI_EDIT = "MultiEdit"
TOOL_BASH = "Bash"
TOOL_STOP = "Stop"

FILE_TOOLS = (TOOL_WRITE, TOOL_EDIT, TOOL_MULTI_EDIT)
"""Tool kinds that write file content and get a FileSnapshot."""


class HookPhase(str, Enum):
    """Lifecycle point at which checkers run."""

    PRE = "pre"
    POST = "post"
    STOP = "stop"


class HookAction(str, Enum):
    ALLOW = "allow"
    WARN = "warn"
    BLOCK = "block"


class Level(str, Enum):
    """Violation severity."""

    CRITICAL = "critical"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


# ============================================================
# Errors
# ============================================================


class PolicyHooksError(Exception):
    """Base class for all hook errors."""


class ConfigError(PolicyHooksError):
    """Configuration or pattern could not be loaded. Fatal at startup."""


class EventParseError(PolicyHooksError):
    """Hook input payload could not be parsed."""


class CheckerError(PolicyHooksError):
    """A tool checker failed while gating a pre-action event."""

    def __init__(self, checker: str, cause: Exception):
        super().__init__(f"{checker}: {type(cause).__name__}: {cause}")
        self.checker = checker
        self.cause = cause


class HookCancelledError(PolicyHooksError):
    """Evaluation was aborted by the caller's cancellation signal."""


# ============================================================
# Values
# ============================================================


@dataclass(frozen=True)
class ToolInvocationEvent:
    """Flat view of one hook payload."""

    tool_name: str
    session_id: str = ""
    file_path: str = ""
    content: str = ""
    new_string: str = ""
    command: str = ""
    cwd: str = ""
    transcript_path: str = ""

    @property
    def is_file_operation(self) -> bool:
        return self.tool_name in FILE_TOOLS

    def with_changes(self, **changes: Any) -> "ToolInvocationEvent":
        """Return a rewritten copy of this event."""
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        data = {
            "session_id": self.session_id,
            "tool_name": self.tool_name,
            "file_path": self.file_path,
            "content": self.content,
            "new_string": self.new_string,
            "command": self.command,
            "cwd": self.cwd,
            "transcript_path": self.transcript_path,
        }
        # Mirror the input format: empty optional fields are omitted
        return {k: v for k, v in data.items() if v or k == "tool_name"}


@dataclass(frozen=True)
class FileSnapshot:
    path: str
    content: str
    extension: str
    is_test_file: bool = False
    is_docs_file: bool = False


@dataclass(frozen=True)
class Violation:
    """One detected rule breach."""

    type: str
    message: str
    severity: Level
    suggestion: str = ""
    line: int = 0
    column: int = 0


@dataclass
class ValidationOutcome:
    """Result of one checker for one event."""

    is_valid: bool = True
    violations: list[Violation] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)
    modified_event: ToolInvocationEvent | None = None

    @classmethod
    def valid(cls) -> "ValidationOutcome":
        return cls(is_valid=True)


@dataclass(frozen=True)
class Decision:
    """Final verdict for one invocation."""

    action: HookAction
    message: str
    level: Level
    violations: tuple[Violation, ...] = ()
    suggestions: tuple[str, ...] = ()
    modified_event: ToolInvocationEvent | None = None
    timestamp: datetime = field(default_factory=datetime.now)
    duration: float = 0.0

    @property
    def is_blocking(self) -> bool:
        return self.action != HookAction.ALLOW

#!/usr/bin/env python3
"""Orchestration engine: runs checkers and folds their outcomes into a Decision.

Phases:
- pre:  rule validators on the FileSnapshot, then pre-phase tools
- post: post-phase tools only (formatter)
- stop: stop-phase tools only (notifier); always allows

Decision rules shared by all phases:
- any critical violation -> block; else any warning -> warn; else allow
- message is the first violation's message, or a generic phase message
- suggestions are merged and deduplicated in first-seen order

Error isolation:
- a rule validator that raises is logged and skipped
- a tool that raises in the pre phase halts the invocation (CheckerError)
- a tool that raises in post/stop is logged and skipped

Cancellation is checked before every checker; a set cancel_event raises
HookCancelledError.
"""

import threading
import time
from typing import Iterable

from _policy_models import (
    TOOL_STOP,
    CheckerError,
    Decision,
    HookAction,
    HookCancelledError,
    HookPhase,
    Level,
    ToolInvocationEvent,
    Violation,
)
from _policy_tools import BashTool, FormatterTool, NotifierTool
from _policy_utils import Config, HookLogger, build_file_snapshot, truncate_path
from _policy_validators import DefaultsValidator, RuntimeExitValidator, SecretsValidator

# ============================================================
# Checker Registry
# ============================================================

VALIDATOR_TYPES = (
    ("emergency_defaults", DefaultsValidator),
    ("runtime_exit", RuntimeExitValidator),
    ("secrets", SecretsValidator),
)
"""Rule validators in evaluation order."""

TOOL_TYPES = (
    ("notifier", NotifierTool),
    ("bash", BashTool),
    ("formatter", FormatterTool),
)
"""Tools in evaluation order."""


# ============================================================
# Decision Helpers
# ============================================================


def determine_action(violations: Iterable[Violation]) -> HookAction:
    severities = {v.severity for v in violations}
    if Level.CRITICAL in severities:
        return HookAction.BLOCK
    if Level.WARNING in severities:
        return HookAction.WARN
    return HookAction.ALLOW


def determine_level(violations: Iterable[Violation]) -> Level:
    """Highest severity present; error ranks below warning."""
    severities = {v.severity for v in violations}
    for level in (Level.CRITICAL, Level.WARNING, Level.ERROR):
        if level in severities:
            return level
    return Level.INFO


def dedupe(items: Iterable[str]) -> list[str]:
    """Drop exact duplicates, keeping first-seen order."""
    return list(dict.fromkeys(items))


def _generic_message(phase: HookPhase, action: HookAction, tool_name: str) -> str:
    if phase == HookPhase.STOP:
        return "Stop processing completed"
    if phase == HookPhase.POST:
        if action == HookAction.BLOCK:
            return f"Post-processing for {tool_name} blocked"
        if action == HookAction.WARN:
            return f"Post-processing for {tool_name} completed with warnings"
        return f"Post-processing for {tool_name} completed"
    if action == HookAction.BLOCK:
        return "Operation blocked"
    if action == HookAction.WARN:
        return "Warning"
    return "Operation allowed"


# ============================================================
# Engine
# ============================================================


class Engine:
    """Holds the enabled checkers for one configuration.

    Construction compiles every pattern; a bad pattern raises
    ConfigError before any event is evaluated.
    """

    def __init__(self, config: Config, logger: HookLogger):
        self.config = config
        self.logger = logger.with_fields(component="engine")

        self.validators = []
        for name, cls in VALIDATOR_TYPES:
            section = config.validators.get(name)
            if section is not None and section.enabled:
                self.validators.append(cls(section, logger))

        self.tools = []
        for name, cls in TOOL_TYPES:
            section = config.tools.get(name)
            if section is not None and section.enabled:
                self.tools.append(cls(section, logger))

        self.logger.info("engine initialized", validators=len(self.validators), tools=len(self.tools))

    # ---------- phases ----------

    def process_pre_tool_use(
        self,
        event: ToolInvocationEvent,
        cancel_event: threading.Event | None = None,
    ) -> Decision:
        start = time.perf_counter()
        self.logger.debug("processing pre-tool-use", tool=event.tool_name, file=truncate_path(event.file_path))

        violations: list[Violation] = []
        suggestions: list[str] = []

        if event.is_file_operation:
            snapshot = build_file_snapshot(event)
            if snapshot is not None:
                self._run_validators(snapshot, violations, suggestions, cancel_event)

        modified = self._run_tools(event, HookPhase.PRE, violations, suggestions, cancel_event)
        return self._decide(HookPhase.PRE, event, violations, suggestions, modified, start)

    def process_post_tool_use(
        self,
        event: ToolInvocationEvent,
        cancel_event: threading.Event | None = None,
    ) -> Decision:
        start = time.perf_counter()
        self.logger.debug("processing post-tool-use", tool=event.tool_name, file=truncate_path(event.file_path))

        violations: list[Violation] = []
        suggestions: list[str] = []
        modified = self._run_tools(event, HookPhase.POST, violations, suggestions, cancel_event)
        return self._decide(HookPhase.POST, event, violations, suggestions, modified, start)

    def process_stop(
        self,
        event: ToolInvocationEvent | None = None,
        cancel_event: threading.Event | None = None,
    ) -> Decision:
        start = time.perf_counter()
        if event is None:
            event = ToolInvocationEvent(tool_name=TOOL_STOP)
        self.logger.debug("processing stop", session=event.session_id)

        violations: list[Violation] = []
        suggestions: list[str] = []
        self._run_tools(event, HookPhase.STOP, violations, suggestions, cancel_event)

        return Decision(
            action=HookAction.ALLOW,
            message=_generic_message(HookPhase.STOP, HookAction.ALLOW, event.tool_name),
            level=Level.INFO,
            violations=tuple(violations),
            suggestions=tuple(dedupe(suggestions)),
            duration=time.perf_counter() - start,
        )

    # ---------- checker loops ----------

    def _check_cancelled(self, cancel_event: threading.Event | None, checker: str) -> None:
        if cancel_event is not None and cancel_event.is_set():
            self.logger.warn("evaluation cancelled", before=checker)
            raise HookCancelledError(f"evaluation cancelled before {checker}")

    def _run_validators(self, snapshot, violations, suggestions, cancel_event) -> None:
        for validator in self.validators:
            self._check_cancelled(cancel_event, validator.name)
            try:
                outcome = validator.validate(snapshot)
            except Exception as e:
                self.logger.error("validator failed", validator=validator.name, error=f"{type(e).__name__}: {e}")
                continue

            if not outcome.is_valid:
                violations.extend(outcome.violations)
                suggestions.extend(outcome.suggestions)

    def _run_tools(self, event, phase, violations, suggestions, cancel_event) -> ToolInvocationEvent | None:
        """Run tools for phase, threading rewritten events; return the final rewrite."""
        current = event
        modified = None

        for tool in self.tools:
            if phase not in tool.phases or current.tool_name not in tool.supported_tools:
                continue

            self._check_cancelled(cancel_event, tool.name)
            try:
                outcome = tool.validate_tool(current, phase)
            except Exception as e:
                if phase == HookPhase.PRE:
                    self.logger.error("tool failed, halting", tool=tool.name, error=f"{type(e).__name__}: {e}")
                    raise CheckerError(tool.name, e) from e
                self.logger.error("tool failed", tool=tool.name, error=f"{type(e).__name__}: {e}")
                continue

            violations.extend(outcome.violations)
            suggestions.extend(outcome.suggestions)
            if outcome.modified_event is not None:
                current = outcome.modified_event
                modified = current

        return modified

    def _decide(self, phase, event, violations, suggestions, modified, start) -> Decision:
        action = determine_action(violations)
        message = violations[0].message if violations else _generic_message(phase, action, event.tool_name)

        decision = Decision(
            action=action,
            message=message,
            level=determine_level(violations),
            violations=tuple(violations),
            suggestions=tuple(dedupe(suggestions)),
            modified_event=modified,
            duration=time.perf_counter() - start,
        )
        self.logger.info(
            f"{phase.value} decision",
            tool=event.tool_name,
            action=action.value,
            violations=len(violations),
            duration_ms=round(decision.duration * 1000, 2),
        )
        return decision

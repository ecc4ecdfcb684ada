#!/usr/bin/env python3
"""Claude Policy Hooks command line.

Reads one hook payload from stdin, evaluates it and reports the decision:
- stdout: the rewritten event as JSON, when a tool rewrote it
- stderr: status line, suggestions, and details with --verbose
- exit code: 0 allow, 2 warn/block, 1 error

Usage:
    policy-hooks pre-tool-use  < event.json
    policy-hooks -v post-tool-use < event.json
    policy-hooks stop < event.json
    policy-hooks config show|validate|init [--force]
    policy-hooks version
"""

import argparse
import json
import sys
import threading
from pathlib import Path
from typing import TextIO

import yaml

from _policy_engine import Engine
from _policy_models import (
    TOOL_STOP,
    CheckerError,
    ConfigError,
    EventParseError,
    HookCancelledError,
    HookPhase,
    ToolInvocationEvent,
)
from _policy_utils import (
    DEFAULT_TIMEOUT_SECONDS,
    HookLogger,
    create_logger,
    default_config,
    get_default_config_path,
    is_dry_run,
    load_config,
    parse_event,
    render_decision,
    save_config,
)

__version__ = "1.0.0"

EXIT_ALLOW = 0
EXIT_ERROR = 1
EXIT_BLOCK = 2

PHASE_COMMANDS = {
    "pre-tool-use": HookPhase.PRE,
    "post-tool-use": HookPhase.POST,
    "stop": HookPhase.STOP,
}


# ============================================================
# Hook Execution
# ============================================================


def _resolve_timeout(args: argparse.Namespace, configured: float) -> float:
    if args.timeout:
        return args.timeout
    if configured:
        return configured
    return DEFAULT_TIMEOUT_SECONDS


def run_hook(
    phase: HookPhase,
    args: argparse.Namespace,
    stdin: TextIO | None = None,
    stdout: TextIO | None = None,
    stderr: TextIO | None = None,
) -> int:
    """Evaluate one hook payload and return the process exit code."""
    stdin = stdin or sys.stdin
    stdout = stdout or sys.stdout
    stderr = stderr or sys.stderr

    try:
        config = load_config(args.config)
        if config.logger.output == "file" and not config.logger.file:
            config.logger.file = config.general.log_file
        logger = create_logger(config.logger).with_fields(phase=phase.value)
        engine = Engine(config, logger)
    except ConfigError as e:
        print(f"Error: {e}", file=stderr)
        return EXIT_ERROR

    payload = stdin.read()
    try:
        event = parse_event(payload)
    except EventParseError as e:
        if phase != HookPhase.STOP:
            logger.error("failed to parse hook input", error=str(e))
            print(f"Error: {e}", file=stderr)
            return EXIT_ERROR
        logger.debug("stop payload unreadable, using synthetic event", error=str(e))
        event = ToolInvocationEvent(tool_name=TOOL_STOP)

    if phase == HookPhase.STOP and not event.tool_name:
        event = event.with_changes(tool_name=TOOL_STOP)

    timeout = _resolve_timeout(args, config.general.timeout)
    cancel_event = threading.Event()
    timer = threading.Timer(timeout, cancel_event.set)
    timer.daemon = True
    timer.start()

    try:
        if phase == HookPhase.PRE:
            decision = engine.process_pre_tool_use(event, cancel_event)
        elif phase == HookPhase.POST:
            decision = engine.process_post_tool_use(event, cancel_event)
        else:
            decision = engine.process_stop(event, cancel_event)
    except HookCancelledError as e:
        logger.error("hook timed out", timeout=timeout, error=str(e))
        if phase == HookPhase.PRE:
            # Fail-close: an unfinished pre check must not let the action through
            print(f"[BLOCKED] Policy check timed out after {timeout}s", file=stderr)
            return EXIT_ALLOW if is_dry_run() else EXIT_BLOCK
        if phase == HookPhase.STOP:
            return EXIT_ALLOW
        print(f"Error: {e}", file=stderr)
        return EXIT_ERROR
    except CheckerError as e:
        logger.error("checker failed", checker=e.checker, error=str(e.cause))
        print(f"Error: {e}", file=stderr)
        return EXIT_ERROR
    finally:
        timer.cancel()

    if decision.modified_event is not None:
        print(json.dumps(decision.modified_event.to_dict(), ensure_ascii=False), file=stdout)

    rendered = render_decision(decision, verbose=args.verbose)
    if rendered:
        if is_dry_run():
            rendered = "[DRY-RUN] " + rendered
        print(rendered, file=stderr)

    if is_dry_run():
        logger.info("dry-run: would exit", action=decision.action.value)
        return EXIT_ALLOW

    return EXIT_BLOCK if decision.is_blocking else EXIT_ALLOW


# ============================================================
# Config Commands
# ============================================================


def _config_show(args: argparse.Namespace) -> int:
    config = load_config(args.config)
    yaml.safe_dump(config.to_dict(), sys.stdout, sort_keys=False, allow_unicode=True)
    return EXIT_ALLOW


def _config_validate(args: argparse.Namespace) -> int:
    try:
        config = load_config(args.config)
        # Compiles every pattern
        Engine(config, HookLogger(level="error"))
    except ConfigError as e:
        print(f"Configuration is invalid: {e}", file=sys.stderr)
        return EXIT_ERROR
    print("Configuration is valid")
    return EXIT_ALLOW


def _config_init(args: argparse.Namespace) -> int:
    path = Path(args.config).expanduser() if args.config else get_default_config_path()
    if path.exists() and not args.force:
        print(f"Error: {path} already exists (use --force to overwrite)", file=sys.stderr)
        return EXIT_ERROR
    save_config(default_config(), path)
    print(f"Wrote default configuration to {path}")
    return EXIT_ALLOW


CONFIG_COMMANDS = {
    "show": _config_show,
    "validate": _config_validate,
    "init": _config_init,
}


# ============================================================
# CLI
# ============================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="policy-hooks",
        description="Policy enforcement hooks for Claude Code",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  policy-hooks pre-tool-use < event.json
  policy-hooks -v --timeout 10 pre-tool-use < event.json
  policy-hooks -c ./config.yaml config validate
        """,
    )
    parser.add_argument(
        "-c",
        "--config",
        default=None,
        help="Path to config.yaml (default: ~/.claude/hooks/config.yaml)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show violation details and processing time",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=0,
        help=f"Hook timeout in seconds (default: general.timeout, or {DEFAULT_TIMEOUT_SECONDS})",
    )

    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("pre-tool-use", help="Check an action before it runs")
    commands.add_parser("post-tool-use", help="Run post-processing after an action")
    commands.add_parser("stop", help="Handle the end of a session")
    commands.add_parser("version", help="Print the version")

    config_parser = commands.add_parser("config", help="Manage configuration")
    config_commands = config_parser.add_subparsers(dest="config_command", required=True)
    config_commands.add_parser("show", help="Print the effective configuration")
    config_commands.add_parser("validate", help="Validate configuration and patterns")
    init_parser = config_commands.add_parser("init", help="Write the default configuration")
    init_parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite an existing file",
    )

    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entry point; returns the exit code."""
    args = build_parser().parse_args(argv)

    if args.command in PHASE_COMMANDS:
        return run_hook(PHASE_COMMANDS[args.command], args)

    if args.command == "version":
        print(f"policy-hooks {__version__}")
        return EXIT_ALLOW

    try:
        return CONFIG_COMMANDS[args.config_command](args)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())

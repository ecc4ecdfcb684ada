#!/usr/bin/env python3
"""End-to-end tests for the policy-hooks CLI.

Drives policy_hooks.main()/run_hook() in-process with an explicit config
file, and runs the per-phase hook scripts as subprocesses the way Claude
Code invokes them.

Exit codes: 0 allow, 2 warn/block, 1 error.
"""
import io
import json
import os
import subprocess
import sys
from pathlib import Path

import pytest
import yaml

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))
import _bootstrap  # noqa: E402

import policy_hooks  # noqa: E402
from _policy_models import HookPhase  # noqa: E402
from _policy_utils import DRY_RUN_ENV, default_config, save_config  # noqa: E402


@pytest.fixture
def config_path(tmp_path):
    config = default_config()
    config.tools["notifier"].sound = False
    config.tools["notifier"].desktop = False
    config.tools["notifier"].work_dir = "/home/dev/work"
    config.logger.file = str(tmp_path / "hooks.log")
    path = tmp_path / "config.yaml"
    save_config(config, path)
    return path


def run(config_path, phase_command, payload, *flags):
    """Run one hook phase in-process; return (exit_code, stdout, stderr)."""
    args = policy_hooks.build_parser().parse_args(["-c", str(config_path), *flags, phase_command])
    stdin = io.StringIO(payload if isinstance(payload, str) else json.dumps(payload))
    stdout, stderr = io.StringIO(), io.StringIO()
    code = policy_hooks.run_hook(policy_hooks.PHASE_COMMANDS[phase_command], args, stdin, stdout, stderr)
    return code, stdout.getvalue(), stderr.getvalue()


def write_payload(path, content):
    return {"session_id": "s", "tool_name": "Write", "tool_input": {"file_path": path, "content": content}}


# ============================================================
# pre-tool-use
# ============================================================


class TestPreToolUse:
    def test_panic_in_service_blocks(self, config_path):
        code, stdout, stderr = run(config_path, "pre-tool-use", write_payload("/repo/service.go", 'panic("x")'))
        assert code == 2
        assert stdout == ""
        assert "[BLOCKED]" in stderr
        assert "Suggestions:" in stderr

    def test_panic_in_cmd_main_allowed(self, config_path):
        code, _, stderr = run(config_path, "pre-tool-use", write_payload("cmd/app/main.go", 'panic("x")'))
        assert code == 0
        assert stderr == ""

    def test_dangerous_command_blocks(self, config_path):
        payload = {"tool_name": "Bash", "tool_input": {"command": "rm -rf /"}}
        code, _, stderr = run(config_path, "pre-tool-use", payload)
        assert code == 2
        assert "Dangerous bash command detected: rm -rf /" in stderr

    def test_safe_command_allowed(self, config_path):
        payload = {"tool_name": "Bash", "tool_input": {"command": "rm -rf ./build"}}
        assert run(config_path, "pre-tool-use", payload)[0] == 0

    def test_verbose_shows_details(self, config_path):
        code, _, stderr = run(config_path, "pre-tool-use", write_payload("/repo/a.ts", "x = y || 'z'"), "-v")
        assert code == 2
        assert "Violations:" in stderr
        assert "Processing time:" in stderr

    def test_invalid_input_is_error(self, config_path):
        code, _, stderr = run(config_path, "pre-tool-use", "{broken")
        assert code == 1
        assert "Error:" in stderr

    def test_invalid_config_is_error(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("validators:\n  emergency_defaults:\n    custom_patterns: ['(']\nlogger:\n  output: stderr\n")
        code, _, stderr = run(path, "pre-tool-use", write_payload("/repo/a.go", "x"))
        assert code == 1
        assert "Invalid pattern" in stderr

    def test_dry_run_never_blocks(self, config_path, monkeypatch):
        monkeypatch.setenv(DRY_RUN_ENV, "1")
        code, _, stderr = run(config_path, "pre-tool-use", write_payload("/repo/service.go", "os.Exit(1)"))
        assert code == 0
        assert stderr.startswith("[DRY-RUN] [BLOCKED]")

    def test_timeout_fails_closed(self, config_path, monkeypatch):
        class ExpiredTimer:
            def __init__(self, interval, function):
                self.function = function
                self.daemon = False

            def start(self):
                self.function()

            def cancel(self):
                pass

        monkeypatch.setattr(policy_hooks.threading, "Timer", ExpiredTimer)
        code, _, stderr = run(config_path, "pre-tool-use", write_payload("/repo/a.go", "x"))
        assert code == 2
        assert "timed out" in stderr

    def test_log_file_written(self, config_path, tmp_path):
        run(config_path, "pre-tool-use", write_payload("/repo/service.go", 'panic("x")'))
        log = (tmp_path / "hooks.log").read_text()
        assert "pre decision" in log
        assert "action=block" in log


# ============================================================
# post-tool-use and stop
# ============================================================


class TestPostAndStop:
    def test_post_never_blocks_on_missing_formatter(self, config_path, monkeypatch):
        monkeypatch.setenv("PATH", "")
        code, _, _ = run(config_path, "post-tool-use", write_payload("/repo/main.go", "package main"))
        assert code == 0

    def test_stop_without_transcript(self, config_path):
        code, _, _ = run(config_path, "stop", {"session_id": "s", "hook_event_name": "Stop"})
        assert code == 0

    def test_stop_tolerates_garbage(self, config_path):
        assert run(config_path, "stop", "not json at all")[0] == 0

    def test_stop_tolerates_empty_input(self, config_path):
        assert run(config_path, "stop", "")[0] == 0


# ============================================================
# config / version commands
# ============================================================


class TestCommands:
    def test_version(self, capsys):
        assert policy_hooks.main(["version"]) == 0
        assert policy_hooks.__version__ in capsys.readouterr().out

    def test_config_init_and_show(self, tmp_path, capsys):
        path = tmp_path / "new" / "config.yaml"
        assert policy_hooks.main(["-c", str(path), "config", "init"]) == 0
        assert path.exists()
        capsys.readouterr()

        assert policy_hooks.main(["-c", str(path), "config", "show"]) == 0
        shown = yaml.safe_load(capsys.readouterr().out)
        assert shown["tools"]["bash"]["blocked_patterns"][0] == "rm -rf /"

    def test_config_init_refuses_overwrite(self, config_path):
        assert policy_hooks.main(["-c", str(config_path), "config", "init"]) == 1
        assert policy_hooks.main(["-c", str(config_path), "config", "init", "--force"]) == 0

    def test_config_validate(self, config_path, tmp_path, capsys):
        assert policy_hooks.main(["-c", str(config_path), "config", "validate"]) == 0
        assert "Configuration is valid" in capsys.readouterr().out

        bad = tmp_path / "bad.yaml"
        bad.write_text("logger:\n  output: carrier-pigeon\n")
        assert policy_hooks.main(["-c", str(bad), "config", "validate"]) == 1

    def test_phase_commands_map(self):
        assert policy_hooks.PHASE_COMMANDS["stop"] == HookPhase.STOP


# ============================================================
# Hook scripts as subprocesses
# ============================================================


def run_script(script, config_path, payload, env_home):
    env = {k: v for k, v in os.environ.items() if k != DRY_RUN_ENV}
    env["HOME"] = str(env_home)
    result = subprocess.run(
        [sys.executable, str(_bootstrap.SCRIPTS_DIR / script), "-c", str(config_path)],
        input=json.dumps(payload),
        capture_output=True,
        encoding="utf-8",
        env=env,
        timeout=30,
    )
    return result


class TestHookScripts:
    def test_pre_script_blocks(self, config_path, isolated_home):
        result = run_script("pre_tool_use.py", config_path, write_payload("/repo/service.go", "os.Exit(1)"), isolated_home)
        assert result.returncode == 2
        assert "[BLOCKED]" in result.stderr

    def test_pre_script_allows(self, config_path, isolated_home):
        result = run_script("pre_tool_use.py", config_path, write_payload("/repo/service.go", "return nil"), isolated_home)
        assert result.returncode == 0

    def test_stop_script_allows(self, config_path, isolated_home):
        result = run_script("stop_hook.py", config_path, {"session_id": "s"}, isolated_home)
        assert result.returncode == 0

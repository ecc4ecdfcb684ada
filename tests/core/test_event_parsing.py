#!/usr/bin/env python3
"""Tests for hook input parsing, snapshots, logging and rendering in _policy_utils.py."""
import io
import json
import os
import sys
import tempfile
import unittest
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))
import _bootstrap  # noqa: F401, E402

from _policy_models import (  # noqa: E402
    Decision,
    EventParseError,
    HookAction,
    Level,
    ToolInvocationEvent,
    Violation,
)
from _policy_utils import (  # noqa: E402
    HookLogger,
    LoggerConfig,
    MAX_LOG_SIZE_BYTES,
    build_file_snapshot,
    create_logger,
    parse_event,
    render_decision,
    truncate_command,
    truncate_path,
)


# ============================================================
# parse_event()
# ============================================================


class TestParseEvent(unittest.TestCase):
    def test_write_payload(self):
        payload = json.dumps(
            {
                "session_id": "s1",
                "tool_name": "Write",
                "tool_input": {"file_path": "/src/a.go", "content": "package a"},
            }
        )
        event = parse_event(payload)
        self.assertEqual(event.tool_name, "Write")
        self.assertEqual(event.session_id, "s1")
        self.assertEqual(event.file_path, "/src/a.go")
        self.assertEqual(event.content, "package a")

    def test_edit_payload(self):
        payload = json.dumps({"tool_name": "Edit", "tool_input": {"file_path": "/a.ts", "new_string": "x"}})
        event = parse_event(payload)
        self.assertEqual(event.new_string, "x")
        self.assertEqual(event.content, "")

    def test_multiedit_joins_new_strings(self):
        payload = json.dumps(
            {
                "tool_name": "MultiEdit",
                "tool_input": {
                    "file_path": "/a.ts",
                    "edits": [{"new_string": "one"}, {"old_string": "x"}, {"new_string": "two"}],
                },
            }
        )
        self.assertEqual(parse_event(payload).new_string, "one\ntwo")

    def test_bash_payload(self):
        payload = json.dumps({"tool_name": "Bash", "tool_input": {"command": "ls -la"}})
        self.assertEqual(parse_event(payload).command, "ls -la")

    def test_tool_input_as_json_string(self):
        payload = json.dumps({"tool_name": "Bash", "tool_input": json.dumps({"command": "pwd"})})
        self.assertEqual(parse_event(payload).command, "pwd")

    def test_top_level_fields_used_without_tool_input(self):
        payload = json.dumps({"tool_name": "Write", "file_path": "/a.go", "content": "x"})
        event = parse_event(payload)
        self.assertEqual((event.file_path, event.content), ("/a.go", "x"))

    def test_stop_payload(self):
        payload = json.dumps({"tool_name": "Stop", "transcript_path": "/t.jsonl", "cwd": "/w"})
        event = parse_event(payload)
        self.assertEqual(event.transcript_path, "/t.jsonl")
        self.assertEqual(event.cwd, "/w")

    def test_invalid_json(self):
        with self.assertRaises(EventParseError):
            parse_event("{not json")

    def test_empty_payload(self):
        with self.assertRaises(EventParseError):
            parse_event("")

    def test_non_object(self):
        with self.assertRaises(EventParseError):
            parse_event("[1, 2]")


class TestEventValues(unittest.TestCase):
    def test_event_is_immutable(self):
        event = ToolInvocationEvent(tool_name="Bash", command="ls")
        with self.assertRaises(Exception):
            event.command = "rm"

    def test_with_changes_returns_copy(self):
        event = ToolInvocationEvent(tool_name="Bash", command="ls")
        changed = event.with_changes(command="ls -la")
        self.assertEqual(event.command, "ls")
        self.assertEqual(changed.command, "ls -la")

    def test_to_dict_omits_empty_fields(self):
        self.assertEqual(ToolInvocationEvent(tool_name="Bash", command="ls").to_dict(), {"tool_name": "Bash", "command": "ls"})

    def test_snapshot_from_write(self):
        snapshot = build_file_snapshot(ToolInvocationEvent(tool_name="Write", file_path="/x/a_test.go", content="c"))
        self.assertEqual(snapshot.extension, ".go")
        self.assertTrue(snapshot.is_test_file)
        self.assertFalse(snapshot.is_docs_file)
        self.assertEqual(snapshot.content, "c")

    def test_snapshot_uses_new_string(self):
        snapshot = build_file_snapshot(ToolInvocationEvent(tool_name="Edit", file_path="/README.md", new_string="n"))
        self.assertEqual(snapshot.content, "n")
        self.assertTrue(snapshot.is_docs_file)

    def test_no_snapshot_without_path(self):
        self.assertIsNone(build_file_snapshot(ToolInvocationEvent(tool_name="Write")))


# ============================================================
# HookLogger
# ============================================================


class TestHookLogger(unittest.TestCase):
    def test_text_format(self):
        stream = io.StringIO()
        HookLogger(level="info", stream=stream).info("engine ready", tools=3)
        line = stream.getvalue()
        self.assertIn("[INFO] engine ready tools=3", line)
        self.assertTrue(line.endswith("\n"))

    def test_level_threshold(self):
        stream = io.StringIO()
        logger = HookLogger(level="warn", stream=stream)
        logger.info("hidden")
        logger.warn("shown")
        self.assertNotIn("hidden", stream.getvalue())
        self.assertIn("[WARN] shown", stream.getvalue())

    def test_json_format(self):
        stream = io.StringIO()
        HookLogger(level="debug", fmt="json", stream=stream).debug("checked", file="/a b.go")
        record = json.loads(stream.getvalue())
        self.assertEqual(record["level"], "DEBUG")
        self.assertEqual(record["msg"], "checked")
        self.assertEqual(record["file"], "/a b.go")

    def test_with_fields_does_not_modify_parent(self):
        stream = io.StringIO()
        parent = HookLogger(level="info", stream=stream)
        child = parent.with_fields(component="engine")
        parent.info("from parent")
        child.info("from child")
        lines = stream.getvalue().splitlines()
        self.assertNotIn("component=", lines[0])
        self.assertIn("component=engine", lines[1])
        self.assertEqual(parent.fields, {})

    def test_values_with_spaces_are_quoted(self):
        stream = io.StringIO()
        HookLogger(stream=stream).info("x", error="bad thing")
        self.assertIn('error="bad thing"', stream.getvalue())

    def test_dry_run_marker(self):
        stream = io.StringIO()
        os.environ["POLICY_HOOKS_DRY_RUN"] = "1"
        try:
            HookLogger(stream=stream).info("x")
        finally:
            del os.environ["POLICY_HOOKS_DRY_RUN"]
        self.assertIn("[DRY-RUN]", stream.getvalue())

    def test_file_sink_rotates(self):
        with tempfile.TemporaryDirectory() as tmp:
            log_file = Path(tmp) / "logs" / "hooks.log"
            log_file.parent.mkdir()
            log_file.write_text("x" * (MAX_LOG_SIZE_BYTES + 1))
            logger = create_logger(LoggerConfig(output="file", file=str(log_file)))
            logger.info("fresh")
            self.assertTrue(log_file.with_suffix(".log.1").exists())
            self.assertIn("fresh", log_file.read_text())
            self.assertLess(log_file.stat().st_size, 1000)

    def test_unwritable_file_is_silent(self):
        logger = HookLogger(log_file="/proc/nonexistent/dir/hooks.log")
        logger.error("nothing raised")


# ============================================================
# Display helpers
# ============================================================


class TestRendering(unittest.TestCase):
    def test_truncation(self):
        self.assertEqual(truncate_path("short"), "short")
        self.assertTrue(truncate_path("/a" * 100).startswith("..."))
        self.assertEqual(len(truncate_path("/a" * 100)), 60)
        self.assertTrue(truncate_command("x" * 200).endswith("..."))

    def test_block_lists_suggestions(self):
        decision = Decision(
            action=HookAction.BLOCK,
            message="panic() in production code is forbidden",
            level=Level.CRITICAL,
            suggestions=("Return an error", "Handle errors gracefully"),
        )
        text = render_decision(decision)
        self.assertIn("[BLOCKED] panic() in production code is forbidden", text)
        self.assertIn("Suggestions:", text)
        self.assertIn("  - Return an error", text)

    def test_warn(self):
        decision = Decision(action=HookAction.WARN, message="careful", level=Level.WARNING)
        self.assertEqual(render_decision(decision), "[WARNING] careful")

    def test_allow_is_quiet(self):
        decision = Decision(action=HookAction.ALLOW, message="Operation allowed", level=Level.INFO)
        self.assertEqual(render_decision(decision), "")

    def test_verbose_details(self):
        violation = Violation(type="panic_usage", message="m", severity=Level.CRITICAL, line=3, column=2)
        decision = Decision(
            action=HookAction.BLOCK,
            message="m",
            level=Level.CRITICAL,
            violations=(violation,),
            duration=0.0125,
        )
        text = render_decision(decision, verbose=True)
        self.assertIn("panic_usage [critical] (line 3, col 2): m", text)
        self.assertIn("Processing time: 12.5ms", text)


if __name__ == "__main__":
    unittest.main()

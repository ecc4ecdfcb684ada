#!/usr/bin/env python3
"""Pattern matching and path exceptions shared by all checkers.

Two building blocks live here:
- Pattern Matcher: line-by-line scan of text against compiled patterns,
  reporting every occurrence with its 1-based line and column.
- Exception Resolver: decides whether a file path is exempt from a
  checker (configured allowlist, documentation files, test files).

Usage:
    from _policy_matching import compile_patterns, find_matches, is_exception_file

    patterns = compile_patterns([r"os\\.Exit\\s*\\("])
    for match in find_matches(content, patterns):
        print(match.line, match.column, match.text)

Patterns are compiled with the `regex` package so every search runs with a
timeout (ReDoS defense). A search that times out raises TimeoutError; the
engine treats that as a checker runtime error.
"""

import fnmatch
import os
from dataclasses import dataclass
from typing import Iterable

import regex

from _policy_models import ConfigError, Level, Violation

# ============================================================
# Constants
# ============================================================

REGEX_TIMEOUT_SECONDS = 0.5
"""Per-line timeout for a single pattern search."""

DOC_EXTENSIONS = (".md", ".txt", ".rst", ".adoc")
DOC_FILE_NAMES = ("README", "CHANGELOG", "LICENSE", "AUTHORS", "CONTRIBUTORS")
DOC_DIRS = ("/docs/", "/doc/", "/documentation/")

TEST_DIRS = ("/test/", "/tests/", "/testing/")
TEST_SUFFIXES = (
    "_test.go",
    "_test.py",
    ".test.ts", ".test.js", ".test.tsx", ".test.jsx",
    ".spec.ts", ".spec.js", ".spec.tsx", ".spec.jsx",
)

_GLOB_CHARS = ("*", "?", "[")


# ============================================================
# Pattern Matcher
# ============================================================


@dataclass(frozen=True)
class PatternMatch:
    line: int
    column: int
    text: str
    pattern: str


def compile_patterns(sources: Iterable[str], literal: bool = False) -> list["regex.Pattern"]:
    """Compile pattern sources, failing fast on the first bad one.

    Args:
        sources: Regular expressions, or plain substrings when literal=True.
        literal: Escape each source so it matches verbatim.

    Returns:
        Compiled patterns in input order.

    Raises:
        ConfigError: If any pattern does not compile.
    """
    compiled = []
    for source in sources:
        if not isinstance(source, str) or not source:
            raise ConfigError(f"Invalid pattern {source!r}: must be a non-empty string")
        try:
            compiled.append(regex.compile(regex.escape(source) if literal else source))
        except regex.error as e:
            raise ConfigError(f"Invalid pattern {source!r}: {e}") from e
    return compiled


def find_matches(content: str, patterns: Iterable["regex.Pattern"]) -> list[PatternMatch]:
    """Report every non-overlapping occurrence of each pattern in content.

    Lines are newline-delimited. Matches are ordered by line, then by
    pattern order, then by position within the line.
    """
    patterns = list(patterns)
    matches: list[PatternMatch] = []
    if not content or not patterns:
        return matches

    for line_num, line in enumerate(content.split("\n"), start=1):
        for pattern in patterns:
            for found in pattern.finditer(line, timeout=REGEX_TIMEOUT_SECONDS):
                if found.start() == found.end():
                    continue
                matches.append(
                    PatternMatch(
                        line=line_num,
                        column=found.start() + 1,
                        text=found.group(0),
                        pattern=pattern.pattern,
                    )
                )
    return matches


def create_violation(
    match: PatternMatch,
    violation_type: str,
    message: str,
    suggestion: str,
    severity: Level,
) -> Violation:
    """Build a Violation located at a pattern match."""
    return Violation(
        type=violation_type,
        message=message,
        suggestion=suggestion,
        severity=severity,
        line=match.line,
        column=match.column,
    )


# ============================================================
# Exception Resolver
# ============================================================


def normalize_path_for_matching(path: str) -> str:
    """Normalize separators and anchor relative paths at "/".

    Directory markers such as "/cmd/" or "/tests/" then also match
    at the start of a relative path ("cmd/app/main.go").
    """
    normalized = path.replace("\\", "/")
    if not normalized.startswith("/"):
        normalized = "/" + normalized
    return normalized


def get_file_name(path: str) -> str:
    """Return the base name of path without its last extension."""
    name = path.replace("\\", "/").rsplit("/", 1)[-1]
    stem, dot, _ = name.rpartition(".")
    if dot and stem:
        return stem
    return name


def get_file_extension(path: str) -> str:
    """Return the lowercase extension of the base name, with its dot."""
    name = path.replace("\\", "/").rsplit("/", 1)[-1]
    return os.path.splitext(name)[1].lower()


def is_supported_file_type(path: str, extensions: Iterable[str]) -> bool:
    lowered = path.lower()
    return any(lowered.endswith(ext) for ext in extensions)


def path_matches(path: str, entry: str) -> bool:
    """Match one configured exception entry against a path.

    Entries with glob characters are matched with fnmatch against the
    full path and the base name; all other entries are substring matches.
    """
    if not entry:
        return False
    normalized = path.replace("\\", "/")
    if any(ch in entry for ch in _GLOB_CHARS):
        base_name = normalized.rsplit("/", 1)[-1]
        return fnmatch.fnmatchcase(normalized, entry) or fnmatch.fnmatchcase(base_name, entry)
    return entry in normalized or entry in normalize_path_for_matching(normalized)


def matching_entry(path: str, entries: Iterable[str]) -> str | None:
    """Return the first entry that matches path, or None."""
    for entry in entries:
        if path_matches(path, entry):
            return entry
    return None


def is_documentation_file(path: str) -> bool:
    if is_supported_file_type(path, DOC_EXTENSIONS):
        return True

    file_name = get_file_name(path)
    if any(file_name.lower() == doc.lower() for doc in DOC_FILE_NAMES):
        return True

    anchored = normalize_path_for_matching(path)
    return any(doc_dir in anchored for doc_dir in DOC_DIRS)


def is_test_file(path: str) -> bool:
    """Check name and directory conventions for test files."""
    anchored = normalize_path_for_matching(path)
    if anchored.endswith(TEST_SUFFIXES):
        return True

    base_name = anchored.rsplit("/", 1)[-1]
    if base_name.startswith("test_") and base_name.endswith(".py"):
        return True

    return any(test_dir in anchored for test_dir in TEST_DIRS)


def is_exception_file(path: str, exceptions: Iterable[str], logger=None) -> bool:
    """Check whether path is exempt from a checker.

    A path is exempt when it matches a configured exception entry, or is
    a documentation file, or is a test file.

    Args:
        path: File path from the hook event.
        exceptions: Configured exception entries (substring or glob).
        logger: Optional HookLogger for debug tracing.

    Returns:
        True if the checker should skip this file.
    """
    entry = matching_entry(path, exceptions)
    if entry is not None:
        if logger:
            logger.debug("file matched exception path", file=path, exception=entry)
        return True

    if is_documentation_file(path):
        if logger:
            logger.debug("file is documentation", file=path)
        return True

    if is_test_file(path):
        if logger:
            logger.debug("file is test file", file=path)
        return True

    return False

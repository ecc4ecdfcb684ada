#!/usr/bin/env python3
"""Rule validators: content checks on the file a Write/Edit would produce.

Validators:
- DefaultsValidator ("emergency_defaults"): forbidden keyword and
  silent default-value idioms (`||`, `??`, `${VAR:-x}`)
- SecretsValidator ("secrets"): hardcoded JWTs, wallet addresses, API keys
- RuntimeExitValidator ("runtime_exit"): forced process termination
  (panic, log.Fatal*, os.Exit) outside entry points and tests

Every validator exposes the same small surface used by the engine:
    name, enabled, validate(snapshot) -> ValidationOutcome

Patterns are compiled when the validator is constructed; a bad pattern
raises ConfigError there, never during evaluation.
"""

import regex

from _policy_matching import (
    REGEX_TIMEOUT_SECONDS,
    compile_patterns,
    create_violation,
    find_matches,
    is_exception_file,
    is_supported_file_type,
    is_test_file,
    matching_entry,
)
from _policy_models import FileSnapshot, Level, ValidationOutcome, Violation
from _policy_utils import HookLogger, ValidatorConfig

# ============================================================
# Constants
# ============================================================

FORBIDDEN_KEYWORD = "fallback"
"""Word that may not appear in executable code lines."""

SOURCE_EXTENSIONS = (".go", ".ts", ".js", ".tsx", ".jsx", ".py", ".sh", ".bash")
SECRETS_EXTENSIONS = SOURCE_EXTENSIONS + (".json", ".yaml", ".yml")

DEFAULTS_EXCEPTIONS = (
    "/test-config.", "/fixture", "/mock", "/stub",
    ".example", ".sample", ".template",
)
SECRETS_EXCEPTIONS = (
    ".example", ".sample", ".template",
    "/examples/", "/demo/", "/fixtures/", "/mocks/", "/stubs/",
)
RUNTIME_EXIT_EXCEPTIONS = (
    "/cmd/", "/main.go",
    "/examples/", "/demo/",
    "/benchmark/", "_bench.go",
)

DEFAULT_JWT_PATTERN = r"eyJ[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]*"
DEFAULT_WALLET_PATTERN = r"\b0x[a-fA-F0-9]{40}\b"
DEFAULT_API_KEY_PATTERN = r"(sk_|pk_|api_key_|access_token_)[a-zA-Z0-9]{20,}"

RUNTIME_EXIT_PATTERNS = (
    r"\bpanic\s*\(",
    r"log\.Fatal\s*\(",
    r"log\.Fatalf\s*\(",
    r"log\.Fatalln\s*\(",
    r"os\.Exit\s*\(",
)

_COMMENT_PREFIXES = ("//", "#", "/*", "/**", "*")
_OR_LITERAL_DEFAULT = regex.compile(r"\|\|\s*[\"'`\d]")
_NULLISH_LITERAL_DEFAULT = regex.compile(r"\?\?\s*[\"'`\d]")

_FUNCTION_DECL = regex.compile(r"^\s*(?:export\s+)?(?:async\s+)?(?:func|def|function)\b")
_RECOVER_CALL = regex.compile(r"recover\s*\(\s*\)")


# ============================================================
# Base Validator
# ============================================================


class BaseValidator:
    """Shared state and exception handling for rule validators.

    Subclasses extend EXTRA_EXCEPTIONS with checker-specific path
    markers (plain substrings, matched against the anchored path).
    """

    EXTRA_EXCEPTIONS: tuple[str, ...] = ()

    def __init__(self, name: str, config: ValidatorConfig, logger: HookLogger):
        self.name = name
        self.enabled = config.enabled
        self.config = config
        self.exceptions = config.exceptions
        self.logger = logger.with_fields(validator=name)

    def is_exception_file(self, path: str) -> bool:
        if is_exception_file(path, self.exceptions, self.logger):
            return True

        entry = matching_entry(path, self.EXTRA_EXCEPTIONS)
        if entry is not None:
            self.logger.debug("file matched exception", file=path, exception=entry)
            return True
        return False

    def validate(self, snapshot: FileSnapshot) -> ValidationOutcome:
        raise NotImplementedError


# ============================================================
# Forbidden Keyword / Default Fallback
# ============================================================


def _is_legitimate_construct(line: str) -> bool:
    """switch defaults, struct tags and Default* constructors are allowed."""
    if "default:" in line:
        return True
    if "`" in line and "default" in line:
        return True
    if _FUNCTION_DECL.search(line) and "Default" in line:
        return True
    return False


def _is_comment(trimmed: str) -> bool:
    return trimmed.startswith(_COMMENT_PREFIXES)


class DefaultsValidator(BaseValidator):
    """Blocks the forbidden keyword and silent default-value idioms.

    Rules are evaluated per line, first match wins:
        1. legitimate construct -> skip
        2. comment line -> skip
        3. forbidden keyword (whole word)
        4. `||` followed by a literal
        5. `??` followed by a literal
        6. shell `${VAR:-value}`
        7. configured custom_patterns
    """

    EXTRA_EXCEPTIONS = DEFAULTS_EXCEPTIONS

    def __init__(self, config: ValidatorConfig, logger: HookLogger):
        super().__init__("emergency_defaults", config, logger)
        flags = 0 if config.case_sensitive else regex.IGNORECASE
        self.keyword_pattern = regex.compile(rf"\b{regex.escape(FORBIDDEN_KEYWORD)}\b", flags)
        self.custom_patterns = compile_patterns(config.custom_patterns)

    def validate(self, snapshot: FileSnapshot) -> ValidationOutcome:
        if not self.enabled:
            return ValidationOutcome.valid()

        if not is_supported_file_type(snapshot.path, SOURCE_EXTENSIONS):
            self.logger.debug("unsupported file type, skipping", file=snapshot.path)
            return ValidationOutcome.valid()

        if self.is_exception_file(snapshot.path):
            return ValidationOutcome.valid()

        violations = []
        for line_num, line in enumerate(snapshot.content.split("\n"), start=1):
            violation = self._check_line(line, line_num)
            if violation is not None:
                violations.append(violation)

        if not violations:
            return ValidationOutcome.valid()

        self.logger.info("default values detected", file=snapshot.path, violations=len(violations))
        return ValidationOutcome(
            is_valid=False,
            violations=violations,
            suggestions=self._suggestions(),
        )

    def _check_line(self, line: str, line_num: int) -> Violation | None:
        trimmed = line.strip()
        if not trimmed:
            return None
        if _is_legitimate_construct(trimmed) or _is_comment(trimmed):
            return None

        found = self.keyword_pattern.search(line)
        if found:
            return self._violation(
                line_num,
                found.start(),
                "critical_default",
                f"Forbidden keyword '{FORBIDDEN_KEYWORD}' in executable code",
                "Use explicit validation instead of default values",
            )

        found = _OR_LITERAL_DEFAULT.search(line)
        if found:
            return self._violation(
                line_num,
                found.start(),
                "critical_default",
                "Default value via || detected",
                "Use explicit validation: if (!value) throw new Error('required')",
            )

        found = _NULLISH_LITERAL_DEFAULT.search(line)
        if found:
            return self._violation(
                line_num,
                found.start(),
                "critical_default",
                "Default value via ?? detected",
                "Use explicit validation instead of nullish coalescing with a default",
            )

        idx = line.find(":-")
        if idx != -1 and "}" in line[idx:]:
            return self._violation(
                line_num,
                idx,
                "critical_default",
                "Shell default value ${VAR:-value} detected",
                'Check explicitly: if [ -z "$VAR" ]; then exit 1; fi',
            )

        for pattern in self.custom_patterns:
            found = pattern.search(line, timeout=REGEX_TIMEOUT_SECONDS)
            if found:
                return self._violation(
                    line_num,
                    found.start(),
                    "critical_default",
                    f"Line matches forbidden pattern {pattern.pattern!r}",
                    "Use explicit validation instead of default values",
                )
        return None

    def _violation(self, line_num: int, index: int, kind: str, message: str, suggestion: str) -> Violation:
        return Violation(
            type=kind,
            message=message,
            suggestion=suggestion,
            severity=Level.CRITICAL,
            line=line_num,
            column=index + 1,
        )

    def _suggestions(self) -> list[str]:
        suggestions = []
        if self.config.suggestion_message:
            suggestions.append(self.config.suggestion_message)
        suggestions.extend(
            [
                "Remove default values from code",
                'Use explicit validation: if value == "" { return errors.New("required") }',
                "Configuration errors must be explicit, not hidden behind default values",
            ]
        )
        return suggestions


# ============================================================
# Hardcoded Secrets
# ============================================================


class SecretsValidator(BaseValidator):
    EXTRA_EXCEPTIONS = SECRETS_EXCEPTIONS

    def __init__(self, config: ValidatorConfig, logger: HookLogger):
        super().__init__("secrets", config, logger)
        self.test_config_exceptions = list(config.test_config_exceptions)
        (self.jwt_pattern,) = compile_patterns([config.jwt_pattern or DEFAULT_JWT_PATTERN])
        (self.wallet_pattern,) = compile_patterns([config.wallet_pattern or DEFAULT_WALLET_PATTERN])
        (self.api_key_pattern,) = compile_patterns([config.api_key_pattern or DEFAULT_API_KEY_PATTERN])

    def validate(self, snapshot: FileSnapshot) -> ValidationOutcome:
        if not self.enabled:
            return ValidationOutcome.valid()

        if not is_supported_file_type(snapshot.path, SECRETS_EXTENSIONS):
            return ValidationOutcome.valid()

        if self.is_exception_file(snapshot.path):
            return ValidationOutcome.valid()

        if matching_entry(snapshot.path, self.test_config_exceptions) is not None:
            self.logger.debug("secrets in test config, skipping", file=snapshot.path)
            return ValidationOutcome.valid()

        violations = []
        violations += self._check(
            snapshot.content,
            self.jwt_pattern,
            "hardcoded_jwt",
            "Hardcoded JWT token detected",
            "Read tokens from environment variables or a test config",
        )
        violations += self._check(
            snapshot.content,
            self.wallet_pattern,
            "hardcoded_wallet",
            "Hardcoded wallet address detected",
            "Use test account constants from a test config or environment variables",
        )
        violations += self._check(
            snapshot.content,
            self.api_key_pattern,
            "hardcoded_api_key",
            "Hardcoded API key detected",
            "Read API keys from environment variables or a config file",
        )

        if not violations:
            return ValidationOutcome.valid()

        self.logger.info("hardcoded secrets detected", file=snapshot.path, violations=len(violations))
        return ValidationOutcome(
            is_valid=False,
            violations=violations,
            suggestions=self._suggestions(snapshot.extension),
        )

    @staticmethod
    def _check(content, pattern, kind: str, message: str, suggestion: str) -> list[Violation]:
        return [
            create_violation(match, kind, message, suggestion, Level.CRITICAL)
            for match in find_matches(content, [pattern])
        ]

    @staticmethod
    def _suggestions(extension: str) -> list[str]:
        suggestions = []
        if extension == ".go":
            suggestions += [
                "Use os.Getenv() to read environment variables",
                "Validate required variables at application startup",
                "Keep settings in a single config layer",
            ]
        elif extension in (".ts", ".js", ".tsx", ".jsx"):
            suggestions += [
                "Use process.env.VARIABLE_NAME",
                "Create test-config.ts for test data",
                "Use test account constants instead of hardcoded values",
            ]
        elif extension == ".py":
            suggestions += [
                "Use os.environ[...] to read required secrets",
                "Load test credentials from fixtures outside the source tree",
            ]
        elif extension in (".json", ".yaml", ".yml"):
            suggestions += [
                "Use environment variable substitution",
                "Keep separate configs for test, dev and prod",
                "Document every required environment variable",
            ]

        suggestions += [
            "Never commit real secrets to the repository",
            "Use .env files for local development (and add them to .gitignore)",
            "Consider a secret manager (HashiCorp Vault, AWS Secrets Manager)",
            "Keep fixed test data in separate files",
        ]
        return suggestions


# ============================================================
# Forced Termination
# ============================================================

_EXIT_MESSAGES = {
    "panic_usage": (
        "panic() in production code is forbidden",
        'Return an error instead: return fmt.Errorf("context: %w", err)',
    ),
    "log_fatal_usage": (
        "log.Fatal in production code is not allowed",
        "Use logger.Error() and a graceful shutdown instead",
    ),
    "critical_exit": (
        "Forced program termination in production code",
        "Implement graceful error handling instead of forced termination",
    ),
}


def _exit_violation_type(text: str) -> str:
    if text.startswith("panic"):
        return "panic_usage"
    if "Fatal" in text:
        return "log_fatal_usage"
    return "critical_exit"


class RuntimeExitValidator(BaseValidator):
    EXTRA_EXCEPTIONS = RUNTIME_EXIT_EXCEPTIONS

    def __init__(self, config: ValidatorConfig, logger: HookLogger):
        super().__init__("runtime_exit", config, logger)
        self.restrict_to_extension = config.restrict_to_extension
        self.test_exceptions = list(config.test_exceptions)
        self.patterns = compile_patterns(RUNTIME_EXIT_PATTERNS)
        self.custom_patterns = compile_patterns(config.custom_patterns)

    def is_test_file(self, path: str) -> bool:
        return is_test_file(path) or matching_entry(path, self.test_exceptions) is not None

    def validate(self, snapshot: FileSnapshot) -> ValidationOutcome:
        if not self.enabled:
            return ValidationOutcome.valid()

        if self.restrict_to_extension and not snapshot.path.endswith(self.restrict_to_extension):
            self.logger.debug("file extension not checked, skipping", file=snapshot.path)
            return ValidationOutcome.valid()

        if self.is_test_file(snapshot.path):
            self.logger.debug("test file detected, skipping", file=snapshot.path)
            return ValidationOutcome.valid()

        if self.is_exception_file(snapshot.path):
            return ValidationOutcome.valid()

        violations = []
        for match in find_matches(snapshot.content, self.patterns):
            kind = _exit_violation_type(match.text)
            message, suggestion = _EXIT_MESSAGES[kind]
            violations.append(create_violation(match, kind, message, suggestion, Level.CRITICAL))

        message, suggestion = _EXIT_MESSAGES["critical_exit"]
        for match in find_matches(snapshot.content, self.custom_patterns):
            violations.append(create_violation(match, "critical_exit", message, suggestion, Level.CRITICAL))

        if not violations:
            return ValidationOutcome.valid()

        violations.sort(key=lambda v: (v.line, v.column))
        self.logger.info("forced termination detected", file=snapshot.path, violations=len(violations))
        return ValidationOutcome(
            is_valid=False,
            violations=violations,
            suggestions=self._suggestions(snapshot.content),
        )

    @staticmethod
    def _suggestions(content: str) -> list[str]:
        suggestions = [
            "Return errors from functions: func() error { return fmt.Errorf(...) }",
            "Handle errors gracefully at the application level",
            "Pass context.Context so operations can be cancelled",
            "Use defer recover() only where it is unavoidable",
            "Document possible errors in godoc comments",
        ]
        if _RECOVER_CALL.search(content):
            suggestions += [
                "If you use recover(), make sure it is architecturally justified",
                "Consider alternatives for error handling",
            ]
        if "func main()" in content:
            suggestions += [
                "Inside main(), fatal logging is acceptable for initialization errors",
                "Consider cobra.Command with RunE for CLI applications",
            ]
        return suggestions

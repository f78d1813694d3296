"""Command policy model: allow-list entries, parsed requests and results."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, Optional, Pattern, Tuple

DEFAULT_TIMEOUT_MS = 30_000
DEFAULT_MAX_OUTPUT_BYTES = 1024 * 1024

# One positional argument or flag. Shell metacharacters are refused even though
# nothing is ever handed to a shell.
ARG_TOKEN = r"[^\s;&|`$<>\\(){}]+"
_ARGS = rf"(?: {ARG_TOKEN})*"
_ONE_ARG = rf" {ARG_TOKEN}"

# ── Failure kinds ──
DISALLOWED_TOOL = "disallowed_tool"
DISALLOWED_SUBCOMMAND = "disallowed_subcommand"
PROCESS_SPAWN_ERROR = "process_spawn_error"
TIMEOUT = "timeout"
OUTPUT_TOO_LARGE = "output_too_large"
PROCESS_FAILED = "process_failed"
INVALID_OPTIONS = "invalid_options"
BACKEND_ERROR = "backend_error"

POLICY_VIOLATIONS = frozenset({DISALLOWED_TOOL, DISALLOWED_SUBCOMMAND, INVALID_OPTIONS})


@dataclass(frozen=True)
class AllowedOperation:
    """A single allow-listed subcommand.

    ``pattern`` is matched with ``re.fullmatch`` against the subcommand (the
    arguments after the program name joined by single spaces).
    """

    pattern: str
    usage: str
    description: str
    section: str
    example: str
    takes_args: bool = False

    def compiled(self) -> Pattern[str]:
        return re.compile(self.pattern)

    def matches(self, subcommand: str) -> bool:
        return re.fullmatch(self.pattern, subcommand) is not None


def literal(
    words: str,
    description: str,
    section: str,
    *,
    usage_args: str = "",
    example_args: str = "",
) -> AllowedOperation:
    """Allow exactly ``words`` and nothing after it."""
    usage = f"{words} {usage_args}".strip()
    return AllowedOperation(
        pattern=re.escape(words),
        usage=usage,
        description=description,
        section=section,
        example=f"{words} {example_args}".strip(),
    )


def with_args(
    words: str,
    description: str,
    section: str,
    *,
    usage_args: str = "",
    example_args: str = "",
    required: bool = False,
) -> AllowedOperation:
    """Allow ``words`` followed by whole argument tokens."""
    tail = _ONE_ARG + _ARGS if required else _ARGS
    usage = f"{words} {usage_args}".strip()
    return AllowedOperation(
        pattern=re.escape(words) + tail,
        usage=usage,
        description=description,
        section=section,
        example=f"{words} {example_args}".strip(),
        takes_args=True,
    )


def matching(
    pattern: str,
    usage: str,
    description: str,
    section: str,
    example: str,
) -> AllowedOperation:
    """Allow whatever the regex ``pattern`` fully matches."""
    re.compile(pattern)
    return AllowedOperation(
        pattern=pattern,
        usage=usage,
        description=description,
        section=section,
        example=example,
        takes_args=True,
    )


@dataclass(frozen=True)
class ExecutionRequest:
    """A tokenized command string, validated once at the boundary."""

    program: str
    args: Tuple[str, ...]
    declared_tool: str
    raw_command: str = ""

    @property
    def subcommand(self) -> str:
        return " ".join(self.args)

    @property
    def argv(self) -> Tuple[str, ...]:
        return (self.program, *self.args)


@dataclass(frozen=True)
class ExecutionResult:
    success: bool
    output: str = ""
    error: Optional[str] = None
    exit_code: int = 0
    kind: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.success:
            if self.output:
                raise ValueError("failed results must not carry output")
            if not self.error:
                raise ValueError("failed results must carry an error")

    @classmethod
    def ok(cls, output: str, exit_code: int = 0) -> "ExecutionResult":
        return cls(success=True, output=output, exit_code=exit_code)

    @classmethod
    def failure(cls, kind: str, error: str, exit_code: int = 1) -> "ExecutionResult":
        return cls(success=False, output="", error=error, exit_code=exit_code, kind=kind)

    @property
    def is_policy_violation(self) -> bool:
        return self.kind in POLICY_VIOLATIONS

    def to_dict(self) -> Dict[str, object]:
        return {
            "success": self.success,
            "output": self.output,
            "error": self.error,
            "exitCode": self.exit_code,
        }


def parse_command(command_string: str, declared_tool: str) -> ExecutionRequest:
    """Split on whitespace. Quotes, globs and metacharacters stay literal."""
    parts = str(command_string or "").split()
    program = parts[0] if parts else ""
    return ExecutionRequest(
        program=program,
        args=tuple(parts[1:]),
        declared_tool=declared_tool,
        raw_command=str(command_string or ""),
    )


@dataclass(frozen=True)
class CommandPolicy:
    """Static allow-list for one external tool."""

    tool_binary: str
    title: str
    operations: Tuple[AllowedOperation, ...]
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES
    spawns_process: bool = True
    note: str = "Only read-only commands are allowed for security."
    _compiled: Tuple[Pattern[str], ...] = field(default=(), init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not self.tool_binary or any(ch.isspace() for ch in self.tool_binary):
            raise ValueError(f"invalid tool binary: {self.tool_binary!r}")
        if self.timeout_ms <= 0:
            raise ValueError("timeout_ms must be positive")
        if self.max_output_bytes <= 0:
            raise ValueError("max_output_bytes must be positive")
        object.__setattr__(self, "_compiled", tuple(op.compiled() for op in self.operations))

    @property
    def exact_subcommands(self) -> frozenset:
        return frozenset(op.example for op in self.operations if not op.takes_args)

    @property
    def pattern_subcommands(self) -> Tuple[Pattern[str], ...]:
        return self._compiled

    def is_allowed(self, subcommand: str) -> bool:
        return any(p.fullmatch(subcommand) for p in self._compiled)

    def check(self, request: ExecutionRequest) -> Optional[ExecutionResult]:
        """Return a failure result when *request* is not allowed, else ``None``."""
        if not request.program or request.program != self.tool_binary:
            return ExecutionResult.failure(DISALLOWED_TOOL, f"must start with {self.tool_binary}")
        subcommand = request.subcommand
        if not self.is_allowed(subcommand):
            return ExecutionResult.failure(
                DISALLOWED_SUBCOMMAND,
                f"Subcommand '{subcommand}' is not allowed",
            )
        return None

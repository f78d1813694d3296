"""AI assistant CLI: allow-listed subcommands dispatched to an injected backend."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol

from gateway.policy import (
    BACKEND_ERROR,
    INVALID_OPTIONS,
    CommandPolicy,
    ExecutionResult,
    parse_command,
)
from gateway.tool_policies import GEMINI_CLI_VERSION, GEMINI_POLICY, render_help

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandOptions:
    """Editor context sent along with an AI command."""

    code: Optional[str] = None
    language: Optional[str] = None
    file_name: Optional[str] = None
    instructions: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: dict) -> "CommandOptions":
        def _text(key: str) -> Optional[str]:
            value = payload.get(key)
            return value if isinstance(value, str) and value else None

        return cls(
            code=_text("code"),
            language=_text("language"),
            file_name=_text("fileName"),
            instructions=_text("instructions"),
        )


class AssistantBackend(Protocol):
    async def explain(self, code: str, language: str) -> str: ...

    async def analyze(self, code: str, language: str) -> Any: ...

    async def generate_tests(self, code: str, language: str) -> str: ...

    async def generate_docs(self, code: str, language: str) -> str: ...

    async def refactor(self, code: str, language: str, instructions: str) -> str: ...

    async def complete(self, code: str, language: str) -> Any: ...


_CANONICAL = {
    "tests": "test",
    "documentation": "docs",
    "completion": "complete",
}
_LOCAL_VERBS = frozenset({"help", "version"})


class AssistantCLI:
    def __init__(self, backend: Optional[AssistantBackend] = None, policy: CommandPolicy = GEMINI_POLICY):
        self.backend = backend
        self.policy = policy

    def uses_backend(self, command_string: str) -> bool:
        """False for ``help`` and ``version``, which are answered locally."""
        args = str(command_string or "").split()[1:]
        if not args:
            return True
        return _CANONICAL.get(args[0], args[0]) not in _LOCAL_VERBS

    async def execute(self, command_string: str, options: Optional[CommandOptions] = None) -> ExecutionResult:
        opts = options or CommandOptions()
        request = parse_command(command_string, self.policy.tool_binary)
        rejection = self.policy.check(request)
        if rejection is not None:
            logger.warning("Rejected AI command kind=%s: %s", rejection.kind, rejection.error)
            return rejection

        verb = _CANONICAL.get(request.args[0], request.args[0])
        if verb == "help":
            return ExecutionResult.ok(render_help(self.policy))
        if verb == "version":
            return ExecutionResult.ok(GEMINI_CLI_VERSION)

        if not opts.code or not opts.language:
            return ExecutionResult.failure(INVALID_OPTIONS, f"Code and language are required for {verb} command")

        instructions = opts.instructions or " ".join(request.args[1:])
        if verb == "refactor" and not instructions:
            return ExecutionResult.failure(
                INVALID_OPTIONS,
                "Code, language, and instructions are required for refactoring",
            )

        if self.backend is None:
            return ExecutionResult.failure(BACKEND_ERROR, "AI backend is not configured")

        try:
            output = await self._dispatch(verb, opts, instructions)
        except Exception:
            logger.error("AI command %s failed", verb, exc_info=True)
            return ExecutionResult.failure(BACKEND_ERROR, f"Gemini command failed: {verb}")
        if not isinstance(output, str):
            output = json.dumps(output, ensure_ascii=False, indent=2)
        return ExecutionResult.ok(output or "(empty response)")

    async def _dispatch(self, verb: str, opts: CommandOptions, instructions: str) -> Any:
        backend = self.backend
        code, language = opts.code, opts.language
        if verb == "explain":
            return await backend.explain(code, language)
        if verb == "analyze":
            return await backend.analyze(code, language)
        if verb == "test":
            return await backend.generate_tests(code, language)
        if verb == "docs":
            return await backend.generate_docs(code, language)
        if verb == "refactor":
            return await backend.refactor(code, language, instructions)
        if verb == "complete":
            return await backend.complete(code, language)
        raise ValueError(f"no handler for allow-listed verb {verb!r}")

"""Route CLI-proxy command strings to the matching tool."""

from __future__ import annotations

import logging
from typing import Dict, Optional

from gateway.assistant_cli import AssistantCLI, CommandOptions
from gateway.executor import CommandExecutor
from gateway.policy import DISALLOWED_TOOL, ExecutionResult
from gateway.tool_policies import GEMINI_CLI_VERSION

logger = logging.getLogger(__name__)

AI_TOOL = "gemini"


def detect_tool(command: str) -> Optional[str]:
    """Return the tool a command string is addressed to, if any."""
    lowered = str(command or "").strip().lower()
    if lowered.startswith("gcloud"):
        return "gcloud"
    if lowered.startswith("gh "):
        return "gh"
    if lowered.startswith(AI_TOOL):
        return AI_TOOL
    return None


class CliRouter:
    def __init__(self, executor: CommandExecutor, assistant: Optional[AssistantCLI] = None):
        self.executor = executor
        self.assistant = assistant or AssistantCLI()

    async def dispatch(self, command: str, options: Optional[CommandOptions] = None) -> ExecutionResult:
        tool = detect_tool(command)
        if tool is None:
            return ExecutionResult.failure(DISALLOWED_TOOL, "Unknown CLI tool. Supported: gcloud, gh, gemini")
        if tool == AI_TOOL:
            return await self.assistant.execute(command, options)
        return await self.executor.execute(command, tool)

    async def status(self) -> Dict[str, Dict[str, object]]:
        gcloud = await self.executor.execute("gcloud version", "gcloud")
        gh = await self.executor.execute("gh version", "gh")
        return {
            "gcloud": {"available": gcloud.success, "version": gcloud.output.strip() if gcloud.success else None},
            "github": {"available": gh.success, "version": gh.output.strip() if gh.success else None},
            "gemini": {"available": self.assistant.backend is not None, "version": GEMINI_CLI_VERSION},
        }

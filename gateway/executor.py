"""Policy-checked command executor.

Commands are tokenized, checked against the tool's allow-list and spawned
directly with ``asyncio.create_subprocess_exec``. No shell is ever involved.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
from typing import Awaitable, Callable, Dict, Mapping, Optional, Tuple

from gateway.policy import (
    DISALLOWED_TOOL,
    OUTPUT_TOO_LARGE,
    PROCESS_FAILED,
    PROCESS_SPAWN_ERROR,
    TIMEOUT,
    CommandPolicy,
    ExecutionRequest,
    ExecutionResult,
    parse_command,
)
from gateway.tool_policies import POLICIES

logger = logging.getLogger(__name__)

SpawnFn = Callable[..., Awaitable["asyncio.subprocess.Process"]]

_READ_CHUNK = 65536
_MAX_ERROR_CHARS = 2000
_KILL_GRACE_SECONDS = 5.0


class CommandExecutor:
    """Run allow-listed, read-only CLI commands with a timeout and output cap."""

    def __init__(
        self,
        policies: Optional[Mapping[str, CommandPolicy]] = None,
        *,
        spawn: Optional[SpawnFn] = None,
        env: Optional[Dict[str, str]] = None,
        cwd: Optional[str] = None,
    ):
        self.policies: Dict[str, CommandPolicy] = dict(POLICIES if policies is None else policies)
        self._spawn: SpawnFn = spawn or asyncio.create_subprocess_exec
        self.env = dict(env) if env is not None else None
        self.cwd = cwd

    def policy_for(self, tool: str) -> Optional[CommandPolicy]:
        policy = self.policies.get(str(tool or "").strip().lower())
        if policy is None or not policy.spawns_process:
            return None
        return policy

    def validate(self, command_string: str, declared_tool: str) -> Tuple[Optional[ExecutionRequest], Optional[ExecutionResult]]:
        """Parse and policy-check without spawning anything."""
        policy = self.policy_for(declared_tool)
        if policy is None:
            return None, ExecutionResult.failure(DISALLOWED_TOOL, f"Tool '{declared_tool}' is not allowed")
        request = parse_command(command_string, policy.tool_binary)
        rejection = policy.check(request)
        if rejection is not None:
            return None, rejection
        return request, None

    async def execute(self, command_string: str, declared_tool: str) -> ExecutionResult:
        request, rejection = self.validate(command_string, declared_tool)
        if rejection is not None:
            logger.warning(
                "Rejected command for tool=%s kind=%s: %s",
                declared_tool,
                rejection.kind,
                rejection.error,
            )
            return rejection
        assert request is not None
        return await self._run(request, self.policy_for(declared_tool))

    async def _run(self, request: ExecutionRequest, policy: CommandPolicy) -> ExecutionResult:
        timeout_seconds = policy.timeout_ms / 1000.0
        limit = policy.max_output_bytes
        logger.info("Executing: %s", " ".join(request.argv))

        try:
            process = await self._spawn(
                request.program,
                *request.args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.cwd,
                env=self.env,
                start_new_session=True,
            )
        except OSError as e:
            logger.error("Failed to start %s: %s", request.program, e)
            return ExecutionResult.failure(
                PROCESS_SPAWN_ERROR,
                f"Failed to start {request.program}: {e.strerror or e.__class__.__name__}",
            )

        try:
            stdout, stderr, overflow = await asyncio.wait_for(
                self._collect(process, limit),
                timeout=timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning("%s timed out after %.1fs", request.program, timeout_seconds)
            await self._kill(process)
            return ExecutionResult.failure(TIMEOUT, "timeout")

        if overflow:
            await self._kill(process)
            logger.warning("%s output exceeded %d bytes", request.program, limit)
            return ExecutionResult.failure(OUTPUT_TOO_LARGE, f"Output exceeded {limit} bytes")

        out_text = stdout.decode("utf-8", errors="replace")
        err_text = stderr.decode("utf-8", errors="replace")
        code = process.returncode if process.returncode is not None else 1
        if code != 0:
            message = err_text.strip()[:_MAX_ERROR_CHARS] or f"{request.program} exited with status {code}"
            return ExecutionResult.failure(PROCESS_FAILED, message, exit_code=code)
        return ExecutionResult.ok(out_text or err_text or "Command executed successfully")

    async def _collect(self, process, limit: int) -> Tuple[bytes, bytes, bool]:
        (stdout, out_over), (stderr, err_over) = await asyncio.gather(
            self._read_capped(process, process.stdout, limit),
            self._read_capped(process, process.stderr, limit),
        )
        if not (out_over or err_over):
            await process.wait()
        return stdout, stderr, out_over or err_over

    async def _read_capped(self, process, stream, limit: int) -> Tuple[bytes, bool]:
        if stream is None:
            return b"", False
        chunks = []
        total = 0
        while True:
            chunk = await stream.read(_READ_CHUNK)
            if not chunk:
                return b"".join(chunks), False
            if total + len(chunk) > limit:
                chunks.append(chunk[: limit - total])
                # Stop the writer so the sibling stream reaches EOF too.
                self._signal_kill(process)
                return b"".join(chunks), True
            chunks.append(chunk)
            total += len(chunk)

    @staticmethod
    def _signal_kill(process) -> None:
        if process.returncode is not None:
            return
        try:
            pgid = os.getpgid(process.pid)
            if pgid != os.getpgid(0):
                os.killpg(pgid, signal.SIGKILL)
                return
        except (ProcessLookupError, PermissionError, OSError):
            pass
        try:
            process.kill()
        except ProcessLookupError:
            pass

    async def _kill(self, process) -> None:
        self._signal_kill(process)
        try:
            await asyncio.wait_for(process.wait(), timeout=_KILL_GRACE_SECONDS)
        except asyncio.TimeoutError:
            logger.warning("Process pid=%s did not exit after kill", getattr(process, "pid", None))

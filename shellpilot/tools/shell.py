"""Shell tool for executing commands."""

import asyncio
import os
from pathlib import Path
from typing import Any

from shellpilot.confirmation import ConfirmationBroker, ConfirmationRequest
from shellpilot.exceptions import ValidationError
from shellpilot.logging import get_logger
from shellpilot.safety import CommandGate, RateLimiter
from shellpilot.tools.registry import Tool, ToolResult

log = get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30
DEFAULT_MAX_OUTPUT_CHARS = 10000
NO_OUTPUT_MESSAGE = "Command executed successfully (no output)"


class ShellTool(Tool):
    """Execute shell commands behind the safety gate, rate limit and confirmation."""

    name = "bash"
    description = (
        "Execute a bash command in the session working directory and return its output. "
        "Use 'cd <dir>' to change the working directory for later commands."
    )
    parameters = {
        "type": "object",
        "properties": {
            "command": {
                "type": "string",
                "description": "The shell command to execute",
            },
            "timeout": {
                "type": "number",
                "description": "Timeout in seconds (optional, default from config)",
            },
        },
        "required": ["command"],
    }

    def __init__(
        self,
        broker: ConfirmationBroker,
        rate_limiter: RateLimiter,
        gate: CommandGate | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        max_output_chars: int = DEFAULT_MAX_OUTPUT_CHARS,
        cwd: str | Path | None = None,
    ):
        self.broker = broker
        self.rate_limiter = rate_limiter
        self.gate = gate or CommandGate()
        self.timeout_seconds = float(timeout or DEFAULT_TIMEOUT_SECONDS)
        self.max_output_chars = max_output_chars
        self.cwd = str(Path(cwd or os.getcwd()).resolve())

    async def execute(self, command: str, timeout: float | None = None, **kwargs: Any) -> ToolResult:
        """Execute a shell command.

        Args:
            command: Shell command to execute
            timeout: Optional timeout override in seconds

        Returns:
            ToolResult with command output

        Raises:
            ValidationError: the command is blocked by the safety gate
            RateLimitError: too many commands in the current window
            UserCancellationError: the operator rejected the command
        """
        safe_command = self.gate.sanitize_for_logging(command)

        validation = self.gate.validate(command)
        if not validation.is_valid:
            log.warning("Blocked dangerous command", command=safe_command, reason=validation.reason)
            raise ValidationError(
                self.gate.warning_message(command) or validation.reason or "Command rejected",
                validation.severity or "error",
            )

        self.rate_limiter.check(command)

        if self.gate.is_high_risk_command(command) or self.broker.needs_confirmation("bash_commands"):
            warning = self.gate.warning_message(command)
            content = f"Command: {safe_command}\nWorking directory: {self.cwd}"
            if warning:
                content += f"\n\n{warning}"
            await self.broker.require(
                ConfirmationRequest(
                    operation="Run bash command",
                    target=safe_command,
                    content=content,
                    category="bash_commands",
                )
            )

        stripped = command.strip()
        if stripped == "cd" or stripped.startswith("cd "):
            return self._change_directory(stripped[2:].strip())

        run_timeout = max(1.0, float(timeout if timeout is not None else self.timeout_seconds))
        abort_event = kwargs.get("_abort_event")
        if isinstance(abort_event, asyncio.Event) and abort_event.is_set():
            return ToolResult(success=False, error="Command aborted")

        log.info("Executing shell command", command=safe_command, cwd=self.cwd, timeout=run_timeout)
        return await self._run(command, safe_command, run_timeout, abort_event)

    def _change_directory(self, target: str) -> ToolResult:
        """Update the session working directory without spawning a process."""
        raw = target.strip("\"'") or "~"
        path = Path(os.path.expanduser(raw))
        if not path.is_absolute():
            path = Path(self.cwd) / path
        path = path.resolve()
        if not path.is_dir():
            return ToolResult(success=False, error=f"Cannot change directory: no such directory: {raw}")
        self.cwd = str(path)
        log.debug("Working directory changed", cwd=self.cwd)
        return ToolResult(success=True, output=f"Changed directory to: {self.cwd}")

    async def _run(
        self,
        command: str,
        safe_command: str,
        timeout: float,
        abort_event: Any,
    ) -> ToolResult:
        process = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=self.cwd,
            env=os.environ.copy(),
        )

        communicate_task = asyncio.create_task(process.communicate())
        abort_wait_task: asyncio.Task[bool] | None = None
        if isinstance(abort_event, asyncio.Event):
            abort_wait_task = asyncio.create_task(abort_event.wait())
        try:
            wait_tasks: set[asyncio.Task[Any]] = {communicate_task}
            if abort_wait_task is not None:
                wait_tasks.add(abort_wait_task)
            done, _ = await asyncio.wait(
                wait_tasks,
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )

            if communicate_task in done:
                stdout, stderr = communicate_task.result()
            elif abort_wait_task is not None and abort_wait_task in done:
                await self._kill(process, communicate_task)
                log.info("Shell command aborted", command=safe_command)
                return ToolResult(success=False, error="Command aborted")
            else:
                await self._kill(process, communicate_task)
                log.warning("Shell command timed out", command=safe_command, timeout=timeout)
                return ToolResult(success=False, error=f"Command timed out after {timeout:g}s")
        except asyncio.CancelledError:
            await self._kill(process, communicate_task)
            raise
        finally:
            if abort_wait_task is not None and not abort_wait_task.done():
                abort_wait_task.cancel()
                try:
                    await abort_wait_task
                except asyncio.CancelledError:
                    pass

        output = self._format_output(
            stdout.decode("utf-8", errors="replace"),
            stderr.decode("utf-8", errors="replace"),
        )
        if process.returncode != 0:
            log.info("Shell command failed", command=safe_command, exit_code=process.returncode)
            error = f"Command failed with exit code {process.returncode}"
            if output:
                error += f": {output}"
            return ToolResult(success=False, output=output, error=error)
        return ToolResult(success=True, output=output or NO_OUTPUT_MESSAGE)

    def _format_output(self, stdout: str, stderr: str) -> str:
        output = stdout.rstrip()
        if stderr.strip():
            output += f"\nSTDERR: {stderr.strip()}"
        output = output.strip()
        if len(output) > self.max_output_chars:
            output = output[: self.max_output_chars] + f"\n... [truncated, {len(output)} total chars]"
        return output

    @staticmethod
    async def _kill(process: asyncio.subprocess.Process, communicate_task: asyncio.Task[Any]) -> None:
        if process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
            await process.wait()
        communicate_task.cancel()
        try:
            await communicate_task
        except asyncio.CancelledError:
            pass

"""Tool base class and the router that dispatches model tool calls."""

import asyncio
import json
from abc import ABC, abstractmethod
from typing import Any

from shellpilot.exceptions import (
    ArgumentParseError,
    ShellPilotError,
    ToolExecutionError,
    ToolNotFoundError,
    UserCancellationError,
)
from shellpilot.logging import get_logger
from shellpilot.models import ToolCall, ToolResult

log = get_logger(__name__)

PROVIDER_SEPARATOR = "__"


class Tool(ABC):
    """Base class for all tools."""

    name: str = ""
    description: str = ""
    parameters: dict[str, Any] = {}

    @abstractmethod
    async def execute(self, **kwargs: Any) -> ToolResult:
        """Execute the tool.

        Args:
            **kwargs: Tool-specific arguments

        Returns:
            ToolResult with success status and output
        """
        pass

    def get_definition(self) -> dict[str, Any]:
        """Get the tool definition for LLM.

        Returns:
            OpenAI function-style definition
        """
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }

    def validate_arguments(self, arguments: dict[str, Any]) -> None:
        """Validate tool arguments against schema.

        Args:
            arguments: Arguments to validate

        Raises:
            ArgumentParseError if a required argument is missing
        """
        required = self.parameters.get("required", [])
        for field in required:
            if field not in arguments:
                raise ArgumentParseError(
                    self.name,
                    json.dumps(arguments),
                    f"Missing required argument: {field}",
                )


class ExternalToolProvider(ABC):
    """Tools served by an external process, addressed as ``<prefix>__<tool>``."""

    prefix: str = ""

    @abstractmethod
    async def call_tool(self, tool_name: str, arguments: dict[str, Any]) -> ToolResult | dict[str, Any] | str:
        pass

    def list_definitions(self) -> list[dict[str, Any]]:
        return []


def parse_arguments(tool_call: ToolCall) -> dict[str, Any]:
    """Decode the JSON argument text of a tool call."""
    raw = (tool_call.raw_arguments or "").strip()
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ArgumentParseError(tool_call.name, raw, str(e)) from e
    if not isinstance(parsed, dict):
        raise ArgumentParseError(tool_call.name, raw, "arguments must be a JSON object")
    return parsed


def normalize_result(tool_name: str, value: Any) -> ToolResult:
    """Coerce whatever a handler returned into a ToolResult."""
    if isinstance(value, ToolResult):
        return value
    if value is None:
        return ToolResult(success=True)
    if isinstance(value, str):
        return ToolResult(success=True, output=value)
    if isinstance(value, dict):
        payload = dict(value)
        if "output" not in payload and "content" in payload:
            payload["output"] = payload.pop("content")
        try:
            return ToolResult(
                success=bool(payload.get("success", True)),
                output=str(payload.get("output") or ""),
                error=payload.get("error"),
            )
        except Exception as e:
            raise ToolExecutionError(tool_name, "Tool returned invalid result payload", e) from e
    raise ToolExecutionError(tool_name, "Tool returned invalid result payload")


class ToolRouter:
    """Resolve tool-call names to handlers and run them one at a time."""

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}
        self._providers: dict[str, ExternalToolProvider] = {}
        self._lock = asyncio.Lock()

    def register(self, tool: Tool) -> None:
        """Register a tool.

        Args:
            tool: Tool instance to register
        """
        if not tool.name:
            raise ValueError("Tool must have a name")
        if PROVIDER_SEPARATOR in tool.name:
            raise ValueError(f"Tool name cannot contain '{PROVIDER_SEPARATOR}': {tool.name}")

        log.debug("Registering tool", tool=tool.name)
        self._tools[tool.name] = tool

    def unregister(self, name: str) -> None:
        self._tools.pop(name, None)

    def register_provider(self, provider: ExternalToolProvider) -> None:
        """Register an external provider reachable as ``<prefix>__<tool>``."""
        prefix = (provider.prefix or "").strip()
        if not prefix or PROVIDER_SEPARATOR in prefix:
            raise ValueError(f"Invalid provider prefix: {provider.prefix!r}")
        log.debug("Registering tool provider", prefix=prefix)
        self._providers[prefix] = provider

    def has_tool(self, name: str) -> bool:
        """Return whether a tool name currently resolves."""
        if name in self._tools:
            return True
        prefix, sep, tool_name = name.partition(PROVIDER_SEPARATOR)
        return bool(sep and tool_name and prefix in self._providers)

    def get(self, name: str) -> Tool:
        """Get a built-in tool by name.

        Raises:
            ToolNotFoundError if not found
        """
        if name not in self._tools:
            raise ToolNotFoundError(name, self.list_tools())
        return self._tools[name]

    def list_tools(self) -> list[str]:
        return list(self._tools.keys())

    def get_definitions(self) -> list[dict[str, Any]]:
        """All tool definitions for the model request."""
        definitions = [tool.get_definition() for tool in self._tools.values()]
        for provider in self._providers.values():
            definitions.extend(provider.list_definitions())
        return definitions

    @staticmethod
    async def _cancel_task(task: asyncio.Task[Any] | None) -> None:
        """Cancel task and await it to avoid pending task warnings."""
        if task is None:
            return
        if task.done():
            if not task.cancelled() and task.exception() is not None:
                log.debug("Discarding result of finished tool task", error=str(task.exception()))
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def dispatch(self, tool_call: ToolCall, abort_event: asyncio.Event | None = None) -> ToolResult:
        """Run one tool call and always return a ToolResult.

        Argument, lookup, safety and handler failures become
        ``ToolResult(success=False)``; only cancellation propagates.
        """
        async with self._lock:
            try:
                arguments = parse_arguments(tool_call)
                result = await self.execute(tool_call.name, arguments, abort_event=abort_event)
            except UserCancellationError as e:
                result = ToolResult(success=False, error=e.feedback or str(e))
            except ShellPilotError as e:
                result = ToolResult(success=False, error=str(e))
            except Exception as e:
                log.error("Tool raised unexpectedly", tool=tool_call.name, error=str(e))
                result = ToolResult(
                    success=False,
                    error=str(ToolExecutionError(tool_call.name, str(e), e)),
                )

        log.info("Tool dispatched", tool=tool_call.name, tool_call_id=tool_call.id, success=result.success)
        return result

    async def execute(
        self,
        name: str,
        arguments: dict[str, Any],
        abort_event: asyncio.Event | None = None,
    ) -> ToolResult:
        """Execute a tool by name.

        Raises:
            ToolNotFoundError if tool not found
            ArgumentParseError if arguments fail validation
            ToolExecutionError if execution fails or is aborted
        """
        if name in self._tools:
            tool = self._tools[name]
            tool.validate_arguments(arguments)
            work = tool.execute(**arguments, _abort_event=abort_event)
        else:
            prefix, sep, tool_name = name.partition(PROVIDER_SEPARATOR)
            provider = self._providers.get(prefix) if sep and tool_name else None
            if provider is None:
                raise ToolNotFoundError(name, self.list_tools())
            work = provider.call_tool(tool_name, arguments)

        execute_task: asyncio.Task[Any] = asyncio.create_task(work)
        abort_wait_task: asyncio.Task[bool] | None = None
        try:
            if abort_event is None:
                value = await execute_task
            else:
                abort_wait_task = asyncio.create_task(abort_event.wait())
                done, _ = await asyncio.wait(
                    {execute_task, abort_wait_task},
                    return_when=asyncio.FIRST_COMPLETED,
                )
                if execute_task not in done:
                    await self._cancel_task(execute_task)
                    raise ToolExecutionError(name, "Execution aborted")
                value = execute_task.result()
        except asyncio.CancelledError:
            await self._cancel_task(execute_task)
            raise
        except ShellPilotError:
            raise
        except Exception as e:
            log.error("Tool execution failed", tool=name, error=str(e))
            raise ToolExecutionError(name, str(e), e) from e
        finally:
            await self._cancel_task(abort_wait_task)

        return normalize_result(name, value)

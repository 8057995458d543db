"""Model/tool round loop that produces the stream events of one turn."""

import asyncio
import os
from collections.abc import AsyncIterator

from shellpilot.dispatcher import CANCELLED_MESSAGE
from shellpilot.exceptions import MaxToolRoundsError
from shellpilot.llm import LLMProvider, Message
from shellpilot.logging import get_logger
from shellpilot.models import StreamEvent, ToolCall
from shellpilot.tools.registry import ToolRouter

log = get_logger(__name__)

DEFAULT_MAX_TOOL_ROUNDS = 400

SYSTEM_PROMPT = """You are ShellPilot, a coding assistant working in the operator's terminal.

You can use these tools:
- view_file: view file contents (first 10 lines unless a range is given) or list a directory
- create_file: create a NEW file (never use it for existing files)
- str_replace_editor: edit an existing file by exact text replacement
- bash: run shell commands (use 'cd <dir>' to move between directories)
- search: find text in files or files by name
- create_todo_list / update_todo_list: plan and track multi-step work

Always view a file before editing it. Destructive or risky operations need the operator's
confirmation and may be rejected; if so, adjust your plan instead of retrying the same call.

Current working directory: {cwd}"""


class Agent:
    """Drive one conversation: stream model output, run tool calls, repeat."""

    def __init__(
        self,
        provider: LLMProvider,
        router: ToolRouter,
        max_tool_rounds: int = DEFAULT_MAX_TOOL_ROUNDS,
        system_prompt: str | None = None,
        cwd: str | None = None,
    ):
        self.provider = provider
        self.router = router
        self.max_tool_rounds = max_tool_rounds
        prompt = system_prompt or SYSTEM_PROMPT.format(cwd=cwd or os.getcwd())
        self.messages: list[Message] = [Message(role="system", content=prompt)]
        self.token_count = 0

    def reset(self) -> None:
        """Forget the conversation but keep the system prompt."""
        self.messages = self.messages[:1]
        self.token_count = 0

    async def process_message(
        self,
        text: str,
        abort_event: asyncio.Event | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Yield the stream events for one operator message.

        Tool calls are dispatched in call order between ``tool_calls`` and the
        next model round; every path ends with a ``done`` event.
        """
        self.messages.append(Message(role="user", content=text))
        tools = self.router.get_definitions()
        rounds = 0

        while True:
            if abort_event is not None and abort_event.is_set():
                log.info("Turn aborted before model round", rounds=rounds)
                break

            content_parts: list[str] = []
            tool_calls: list[ToolCall] = []
            usage_total = 0
            async for chunk in self.provider.stream_chat(self.messages, tools):
                if chunk.content:
                    content_parts.append(chunk.content)
                    yield StreamEvent.text(chunk.content)
                if chunk.tool_calls:
                    tool_calls.extend(chunk.tool_calls)
                if chunk.usage.get("total_tokens"):
                    usage_total = chunk.usage["total_tokens"]

            content = "".join(content_parts)
            self.messages.append(Message(role="assistant", content=content, tool_calls=list(tool_calls)))
            answered: set[str] = set()
            try:
                self.token_count = usage_total or self._estimate_tokens()
                yield StreamEvent.tokens(self.token_count)

                if not tool_calls:
                    break

                rounds += 1
                log.debug("Tool round", round=rounds, calls=[call.name for call in tool_calls])
                yield StreamEvent.calls(tool_calls)
                for call in tool_calls:
                    result = await self.router.dispatch(call, abort_event=abort_event)
                    self._append_tool_message(
                        call, result.output if result.success else (result.error or "Error occurred")
                    )
                    answered.add(call.id)
                    yield StreamEvent.result(call, result)
            finally:
                # Every tool call in the context needs a reply or the next request is rejected.
                for call in tool_calls:
                    if call.id not in answered:
                        self._append_tool_message(call, CANCELLED_MESSAGE)

            if rounds >= self.max_tool_rounds:
                notice = str(MaxToolRoundsError(self.max_tool_rounds))
                log.warning("Tool round limit reached", max_rounds=self.max_tool_rounds)
                self.messages.append(Message(role="assistant", content=notice))
                yield StreamEvent.text(notice)
                break

        yield StreamEvent.done()

    def _estimate_tokens(self) -> int:
        return self.provider.count_tokens("".join(msg.content for msg in self.messages))

    def _append_tool_message(self, call: ToolCall, content: str) -> None:
        self.messages.append(Message(role="tool", content=content, tool_call_id=call.id, tool_name=call.name))

"""Conversation entries, tool-call references and model-stream events."""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, model_validator

EntryKind = Literal["user", "assistant", "tool_call", "tool_result"]
StreamEventType = Literal["content", "token_count", "tool_calls", "tool_result", "done"]

TOOL_CALL_PENDING = "Executing..."


class ToolResult(BaseModel):
    """Uniform result returned by every tool handler."""

    success: bool = True
    output: str = ""
    error: str | None = None

    @model_validator(mode="after")
    def _normalize_failure_error(self) -> "ToolResult":
        """Ensure failed results always provide an error message."""
        if not self.success and not (self.error or "").strip():
            fallback = (self.output or "").strip()
            self.error = fallback or "Tool execution failed"
        return self

    def display_text(self) -> str:
        """Text shown in the history entry that replaces the pending call."""
        if self.success:
            return self.output or "Success"
        return self.error or "Error occurred"


@dataclass(frozen=True)
class ToolCall:
    """A tool call from the model stream; arguments stay JSON text until dispatch."""

    id: str
    name: str
    raw_arguments: str = ""


@dataclass(frozen=True)
class ChatEntry:
    """One row of conversation history as the renderer sees it."""

    kind: EntryKind
    content: str
    timestamp: datetime = field(default_factory=datetime.now)
    is_streaming: bool = False
    tool_call: ToolCall | None = None
    tool_calls: tuple[ToolCall, ...] = ()
    tool_result: ToolResult | None = None

    @classmethod
    def user(cls, content: str) -> "ChatEntry":
        return cls(kind="user", content=content)

    @classmethod
    def assistant(cls, content: str, streaming: bool = False) -> "ChatEntry":
        return cls(kind="assistant", content=content, is_streaming=streaming)

    @classmethod
    def pending_tool_call(cls, tool_call: ToolCall) -> "ChatEntry":
        return cls(kind="tool_call", content=TOOL_CALL_PENDING, tool_call=tool_call)

    def with_content(self, content: str) -> "ChatEntry":
        return replace(self, content=content)

    def finished(self, tool_calls: tuple[ToolCall, ...] | None = None) -> "ChatEntry":
        """Copy with streaming cleared and optional tool calls attached."""
        if tool_calls is None:
            return replace(self, is_streaming=False)
        return replace(self, is_streaming=False, tool_calls=tuple(tool_calls))

    def resolved(self, result: ToolResult) -> "ChatEntry":
        """Turn a pending tool_call entry into its tool_result entry."""
        return replace(
            self,
            kind="tool_result",
            content=result.display_text(),
            tool_result=result,
        )


@dataclass(frozen=True)
class StreamEvent:
    """Typed record emitted by the model stream during one turn."""

    type: StreamEventType
    content: str = ""
    token_count: int = 0
    tool_calls: tuple[ToolCall, ...] = ()
    tool_call: ToolCall | None = None
    tool_result: ToolResult | None = None

    @classmethod
    def text(cls, content: str) -> "StreamEvent":
        return cls(type="content", content=content)

    @classmethod
    def tokens(cls, count: int) -> "StreamEvent":
        return cls(type="token_count", token_count=int(count))

    @classmethod
    def calls(cls, tool_calls: list[ToolCall] | tuple[ToolCall, ...]) -> "StreamEvent":
        return cls(type="tool_calls", tool_calls=tuple(tool_calls))

    @classmethod
    def result(cls, tool_call: ToolCall, result: ToolResult) -> "StreamEvent":
        return cls(type="tool_result", tool_call=tool_call, tool_result=result)

    @classmethod
    def done(cls) -> "StreamEvent":
        return cls(type="done")

"""Turn state machine: apply model-stream events to conversation history."""

import asyncio
import time
from collections.abc import AsyncIterable, Callable
from dataclasses import dataclass
from enum import Enum

from shellpilot.coalescer import DEFAULT_FLUSH_INTERVAL_MS, ContentCoalescer
from shellpilot.exceptions import TurnInProgressError, format_error_for_user
from shellpilot.history import HistoryStore
from shellpilot.logging import get_logger
from shellpilot.models import ChatEntry, StreamEvent

log = get_logger(__name__)

CANCELLED_MESSAGE = "Operation cancelled"


class TurnState(str, Enum):
    """Lifecycle of one model turn."""

    IDLE = "idle"
    STREAMING = "streaming"
    TOOL_PENDING = "tool_pending"
    TOOL_EXECUTING = "tool_executing"
    DONE = "done"


class RenderState:
    """Counters the renderer polls alongside the history display window."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self.is_processing = False
        self.is_streaming = False
        self.token_count = 0
        self._started_at: float | None = None

    def begin_turn(self) -> None:
        self.is_processing = True
        self.is_streaming = False
        self._started_at = self._clock()

    def end_turn(self) -> None:
        self.is_processing = False
        self.is_streaming = False
        self._started_at = None

    def reset(self) -> None:
        """Drop every in-flight indicator (used when the operator rejects an operation)."""
        self.end_turn()
        self.token_count = 0

    def elapsed_seconds(self) -> int:
        if self._started_at is None:
            return 0
        return int(self._clock() - self._started_at)


@dataclass
class TurnOutcome:
    """How a turn ended."""

    completed: bool
    error: str | None = None
    cancelled: bool = False
    token_count: int = 0


class StreamDispatcher:
    """Consume one turn of stream events into a HistoryStore.

    The first text chunk of an assistant message is appended immediately;
    later chunks go through a ContentCoalescer so the renderer sees at most
    one update per quiet period. Every transition that makes history
    observable (tool calls, tool results, done, failure) flushes first.
    """

    def __init__(
        self,
        history: HistoryStore,
        render_state: RenderState | None = None,
        flush_interval_ms: int = DEFAULT_FLUSH_INTERVAL_MS,
    ):
        self.history = history
        self.render = render_state or RenderState()
        self.state = TurnState.IDLE
        self.turn_finished = asyncio.Event()
        self._active = False
        self._coalescer = ContentCoalescer(self._append_streamed, flush_interval_ms)
        self._pending_tool_ids: set[str] = set()
        self._handlers: dict[str, Callable[[StreamEvent], None]] = {
            "content": self._on_content,
            "token_count": self._on_token_count,
            "tool_calls": self._on_tool_calls,
            "tool_result": self._on_tool_result,
            "done": self._on_done,
        }

    @property
    def in_turn(self) -> bool:
        return self._active

    @property
    def pending_tool_ids(self) -> set[str]:
        return set(self._pending_tool_ids)

    async def consume(self, events: AsyncIterable[StreamEvent]) -> TurnOutcome:
        """Apply ``events`` in arrival order until ``done`` or the stream ends.

        Raises:
            TurnInProgressError: if the previous turn has not reached DONE
            asyncio.CancelledError: re-raised after the history is cleaned up
        """
        if self.in_turn:
            raise TurnInProgressError()
        self._begin_turn()

        outcome = TurnOutcome(completed=True)
        try:
            async for event in events:
                self.handle(event)
                if self.state is TurnState.DONE:
                    break
            if self.state is not TurnState.DONE:
                log.warning("Model stream ended without done event")
                self._finish_turn()
        except asyncio.CancelledError:
            self._fail_turn(CANCELLED_MESSAGE)
            raise
        except Exception as e:
            message = format_error_for_user(e)
            log.error("Stream consumption failed", error=message, error_type=type(e).__name__)
            self._fail_turn(f"Error: {message}")
            outcome = TurnOutcome(completed=False, error=message)
        finally:
            await self._close_events(events)

        outcome.token_count = self.render.token_count
        return outcome

    def handle(self, event: StreamEvent) -> None:
        """Apply a single event."""
        handler = self._handlers.get(event.type)
        if handler is None:
            log.warning("Ignoring unknown stream event", event_type=event.type)
            return
        handler(event)

    def flush(self) -> str:
        """Force buffered text into history."""
        return self._coalescer.flush()

    # ------------------------------------------------------------------
    # Event handlers

    def _on_content(self, event: StreamEvent) -> None:
        if not event.content:
            return
        if self.history.streaming_entry is None:
            self.history.append(ChatEntry.assistant(event.content, streaming=True))
            self.render.is_streaming = True
        else:
            self._coalescer.accumulate(event.content)
        self.state = TurnState.STREAMING

    def _on_token_count(self, event: StreamEvent) -> None:
        self.render.token_count = event.token_count

    def _on_tool_calls(self, event: StreamEvent) -> None:
        self._coalescer.flush()
        self.history.finish_streaming(tool_calls=event.tool_calls)
        self.render.is_streaming = False
        if event.tool_calls:
            self.history.append([ChatEntry.pending_tool_call(call) for call in event.tool_calls])
            self._pending_tool_ids.update(call.id for call in event.tool_calls)
        self.state = TurnState.TOOL_PENDING

    def _on_tool_result(self, event: StreamEvent) -> None:
        self._coalescer.flush()
        self.history.finish_streaming()
        self.render.is_streaming = False
        if event.tool_call is None or event.tool_result is None:
            log.warning("Tool result event without call or result")
            return
        if not self.history.resolve_tool_call(event.tool_call.id, event.tool_result):
            log.debug("No pending tool call for result", tool_call_id=event.tool_call.id)
            return
        self._pending_tool_ids.discard(event.tool_call.id)
        self.state = TurnState.TOOL_EXECUTING

    def _on_done(self, event: StreamEvent) -> None:
        self._finish_turn()

    # ------------------------------------------------------------------
    # Turn bookkeeping

    def _append_streamed(self, text: str) -> None:
        if not self.history.extend_streaming(text):
            # The streaming entry is gone; keep the text as its own entry.
            self.history.append(ChatEntry.assistant(text))

    def _begin_turn(self) -> None:
        self.state = TurnState.IDLE
        self._active = True
        self._pending_tool_ids.clear()
        self.turn_finished.clear()
        self.render.begin_turn()

    def _finish_turn(self) -> None:
        self._coalescer.close()
        self.history.finish_streaming()
        self.state = TurnState.DONE
        self._active = False
        self.render.end_turn()
        self.turn_finished.set()

    def _fail_turn(self, message: str) -> None:
        self._coalescer.close()
        self.history.finish_streaming()
        self.history.append(ChatEntry.assistant(message))
        self._finish_turn()

    @staticmethod
    async def _close_events(events: AsyncIterable[StreamEvent]) -> None:
        aclose = getattr(events, "aclose", None)
        if aclose is None:
            return
        try:
            await aclose()
        except RuntimeError as e:
            log.debug("Event stream close skipped", error=str(e))

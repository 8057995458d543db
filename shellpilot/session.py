"""Chat session: builds and owns every per-session service."""

import asyncio
import os
from collections.abc import Callable

from shellpilot.agent import Agent
from shellpilot.config import Config, get_config
from shellpilot.confirmation import ConfirmationBroker
from shellpilot.dispatcher import CANCELLED_MESSAGE, RenderState, StreamDispatcher, TurnOutcome
from shellpilot.exceptions import TurnInProgressError
from shellpilot.history import HistoryStore
from shellpilot.llm import LLMProvider, create_provider
from shellpilot.logging import get_logger
from shellpilot.models import ChatEntry
from shellpilot.safety import CommandGate, RateLimiter
from shellpilot.tools import (
    CreateFileTool,
    CreateTodoListTool,
    SearchTool,
    ShellTool,
    StrReplaceTool,
    TextEditor,
    TodoList,
    ToolRouter,
    UpdateTodoListTool,
    ViewFileTool,
)

log = get_logger(__name__)


class ChatSession:
    """One operator conversation.

    The broker, rate limiter, history and tools are created here and passed
    down explicitly, so two sessions never share confirmation flags or a
    rate window.
    """

    def __init__(
        self,
        config: Config | None = None,
        provider: LLMProvider | None = None,
        cwd: str | None = None,
        clock: Callable[[], float] | None = None,
    ):
        self.config = config or get_config()
        cfg = self.config

        self.history = HistoryStore(cfg.history.max_entries, cfg.history.display_size)
        self.render = RenderState(clock) if clock else RenderState()
        self.dispatcher = StreamDispatcher(self.history, self.render, cfg.streaming.flush_interval_ms)

        self.broker = ConfirmationBroker()
        self.broker.on_rejected(self._on_rejected)
        limiter_kwargs = {"clock": clock} if clock else {}
        self.rate_limiter = RateLimiter(
            cfg.tools.shell.rate_limit.max_commands,
            cfg.tools.shell.rate_limit.window_ms,
            **limiter_kwargs,
        )
        self.gate = CommandGate()

        self.shell = ShellTool(
            self.broker,
            self.rate_limiter,
            self.gate,
            timeout=cfg.tools.shell.timeout,
            max_output_chars=cfg.tools.shell.max_output_chars,
            cwd=cwd or os.getcwd(),
        )
        self.editor = TextEditor(self.broker, cwd=lambda: self.shell.cwd)
        self.todo_list = TodoList()

        self.router = ToolRouter()
        self.router.register(ViewFileTool(self.editor))
        self.router.register(CreateFileTool(self.editor))
        self.router.register(StrReplaceTool(self.editor))
        self.router.register(self.shell)
        self.router.register(
            SearchTool(
                cwd=lambda: self.shell.cwd,
                max_results=cfg.tools.search.max_results,
                max_file_bytes=cfg.tools.search.max_file_bytes,
            )
        )
        self.router.register(CreateTodoListTool(self.todo_list))
        self.router.register(UpdateTodoListTool(self.todo_list))

        self.provider = provider or create_provider(
            provider=cfg.model.provider,
            model=cfg.model.model,
            api_key=cfg.model.api_key or None,
            base_url=cfg.model.base_url or None,
            temperature=cfg.model.temperature,
            max_tokens=cfg.model.max_tokens,
        )
        self.agent = Agent(
            self.provider,
            self.router,
            max_tool_rounds=cfg.model.max_tool_rounds,
            cwd=self.shell.cwd,
        )

        self._turn_task: asyncio.Task[TurnOutcome] | None = None
        self._abort_event: asyncio.Event | None = None
        self._abort_requested = False

    @property
    def accepts_input(self) -> bool:
        """False while a turn runs or a confirmation is waiting for the operator."""
        return not self.dispatcher.in_turn and not self.broker.is_pending

    @property
    def is_processing(self) -> bool:
        return self._turn_task is not None and not self._turn_task.done()

    async def submit(self, text: str) -> TurnOutcome:
        """Run one turn for the operator's message.

        Raises:
            TurnInProgressError: a previous turn has not finished
        """
        if self.is_processing or self.dispatcher.in_turn:
            raise TurnInProgressError()

        self.history.append(ChatEntry.user(text))
        self._abort_event = asyncio.Event()
        self._abort_requested = False
        events = self.agent.process_message(text, abort_event=self._abort_event)
        self._turn_task = asyncio.create_task(self.dispatcher.consume(events))
        log.info("Turn started", chars=len(text))

        try:
            outcome = await self._turn_task
        except asyncio.CancelledError:
            if not self._abort_requested:
                raise
            log.info("Turn aborted by operator")
            outcome = TurnOutcome(
                completed=False,
                error=CANCELLED_MESSAGE,
                cancelled=True,
                token_count=self.render.token_count,
            )
        finally:
            self._turn_task = None
            self._abort_event = None

        if outcome.error and not outcome.cancelled:
            log.warning("Turn ended with error", error=outcome.error)
        return outcome

    def abort(self) -> bool:
        """Stop the running turn. Returns False when nothing is running."""
        if not self.is_processing:
            return False
        self._abort_requested = True
        if self._abort_event is not None:
            self._abort_event.set()
        self.broker.cancel_pending()
        assert self._turn_task is not None
        self._turn_task.cancel()
        return True

    def clear(self) -> None:
        """Drop history and model context."""
        if self.is_processing:
            raise TurnInProgressError()
        self.history.clear()
        self.agent.reset()
        self.render.reset()

    async def close(self) -> None:
        if self.is_processing:
            self.abort()
        await self.provider.close()

    def _on_rejected(self, feedback: str | None) -> None:
        log.debug("Operation rejected; resetting render state", feedback=feedback)
        self.render.reset()

"""Bounded, ordered conversation history consumed by the renderer."""

from collections import deque
from collections.abc import Iterable, Iterator

from shellpilot.exceptions import ConfigurationError
from shellpilot.logging import get_logger
from shellpilot.models import ChatEntry, ToolCall, ToolResult

log = get_logger(__name__)

DEFAULT_MAX_ENTRIES = 100
DEFAULT_DISPLAY_SIZE = 20


class HistoryStore:
    """Session history capped at ``max_entries``, evicting from the oldest end.

    Entries are immutable; growing the streaming entry or resolving a tool
    call swaps in a new entry at the same position.
    """

    def __init__(
        self,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        display_size: int = DEFAULT_DISPLAY_SIZE,
    ):
        if max_entries < 1:
            raise ConfigurationError("History must retain at least one entry", "history.max_entries")
        if display_size < 0 or display_size > max_entries:
            raise ConfigurationError(
                f"Display window ({display_size}) must be between 0 and the retention cap ({max_entries})",
                "history.display_size",
            )
        self.max_entries = max_entries
        self.display_size = display_size
        self._entries: deque[ChatEntry] = deque()

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[ChatEntry]:
        return iter(list(self._entries))

    def entries(self) -> list[ChatEntry]:
        return list(self._entries)

    def display_window(self) -> list[ChatEntry]:
        """Most recent entries for the renderer."""
        if self.display_size == 0:
            return []
        return list(self._entries)[-self.display_size:]

    def clear(self) -> None:
        self._entries.clear()

    def append(self, entry: ChatEntry | Iterable[ChatEntry]) -> None:
        """Append one entry or a batch, then trim the oldest overflow."""
        if isinstance(entry, ChatEntry):
            self._entries.append(entry)
        else:
            self._entries.extend(entry)
        self._trim()

    def _trim(self) -> None:
        evicted = 0
        while len(self._entries) > self.max_entries:
            if self._entries[0].is_streaming:
                raise ConfigurationError(
                    f"History cap ({self.max_entries}) is too small to keep the streaming entry",
                    "history.max_entries",
                )
            self._entries.popleft()
            evicted += 1
        if evicted:
            log.debug("History trimmed", evicted=evicted, retained=len(self._entries))

    # ------------------------------------------------------------------
    # Streaming entry

    def _streaming_index(self) -> int | None:
        for idx in range(len(self._entries) - 1, -1, -1):
            if self._entries[idx].is_streaming:
                return idx
        return None

    @property
    def streaming_entry(self) -> ChatEntry | None:
        idx = self._streaming_index()
        return None if idx is None else self._entries[idx]

    def extend_streaming(self, text: str) -> bool:
        """Grow the streaming entry's content. Returns False when none is active."""
        idx = self._streaming_index()
        if idx is None:
            return False
        current = self._entries[idx]
        self._entries[idx] = current.with_content(current.content + text)
        return True

    def finish_streaming(self, tool_calls: tuple[ToolCall, ...] | None = None) -> bool:
        """Clear every streaming flag; attach ``tool_calls`` to the entry that was streaming."""
        finished = False
        for idx in range(len(self._entries)):
            entry = self._entries[idx]
            if entry.is_streaming:
                self._entries[idx] = entry.finished(tool_calls)
                finished = True
        return finished

    # ------------------------------------------------------------------
    # Tool calls

    def resolve_tool_call(self, tool_call_id: str, result: ToolResult) -> bool:
        """Replace the pending tool_call entry for ``tool_call_id`` with its result."""
        for idx in range(len(self._entries)):
            entry = self._entries[idx]
            if entry.kind == "tool_call" and entry.tool_call is not None and entry.tool_call.id == tool_call_id:
                self._entries[idx] = entry.resolved(result)
                return True
        return False

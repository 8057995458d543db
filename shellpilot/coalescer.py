"""Debounced buffering of streamed text deltas."""

import asyncio
from collections.abc import Callable

DEFAULT_FLUSH_INTERVAL_MS = 50


class ContentCoalescer:
    """Buffer text deltas and hand them to ``sink`` after a quiet period.

    Every delta reaches the sink exactly once: the quiescence timer and a
    forced ``flush()`` share one code path on one event loop, so whichever
    runs second finds an empty buffer.
    """

    def __init__(
        self,
        sink: Callable[[str], None],
        flush_interval_ms: int = DEFAULT_FLUSH_INTERVAL_MS,
    ):
        self._sink = sink
        self.flush_interval = max(0, flush_interval_ms) / 1000.0
        self._buffer: list[str] = []
        self._timer: asyncio.TimerHandle | None = None
        self.flush_count = 0

    @property
    def pending(self) -> bool:
        return bool(self._buffer)

    def accumulate(self, delta: str) -> None:
        """Buffer ``delta`` and restart the quiescence timer."""
        if not delta:
            return
        self._buffer.append(delta)
        self._cancel_timer()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.flush_interval, self._on_timer)

    def flush(self) -> str:
        """Move buffered text into the sink; no-op when nothing is buffered."""
        self._cancel_timer()
        if not self._buffer:
            return ""
        text = "".join(self._buffer)
        self._buffer.clear()
        self._sink(text)
        self.flush_count += 1
        return text

    def close(self) -> None:
        """Flush what is left and stop the timer."""
        self.flush()

    def _on_timer(self) -> None:
        self._timer = None
        self.flush()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

"""Single-flight operator confirmation for risky tool operations."""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from typing import Literal

from shellpilot.exceptions import UserCancellationError
from shellpilot.logging import get_logger

log = get_logger(__name__)

ConfirmationCategory = Literal["file_operations", "bash_commands", "all_operations"]

_CATEGORIES: tuple[str, ...] = ("file_operations", "bash_commands", "all_operations")


@dataclass(frozen=True)
class ConfirmationRequest:
    """What the operator is asked to approve."""

    operation: str
    target: str = ""
    content: str = ""
    category: ConfirmationCategory = "all_operations"

    def describe(self) -> str:
        """Single human-readable description for the confirmation prompt."""
        lines = [self.operation if not self.target else f"{self.operation}: {self.target}"]
        if self.content:
            lines.append(self.content)
        return "\n".join(lines)


@dataclass(frozen=True)
class Decision:
    """Operator's answer to a confirmation request."""

    confirmed: bool
    dont_ask_again: bool = False
    feedback: str | None = None


class ConfirmationBroker:
    """Suspend tool calls until the operator confirms or rejects them.

    Only one request is outstanding at a time; later callers wait on an
    internal lock. ``is_pending`` tells the input layer to route keystrokes
    to the confirmation prompt instead of the chat input.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._pending: asyncio.Future[Decision] | None = None
        self._pending_request: ConfirmationRequest | None = None
        self._flags: dict[str, bool] = {name: False for name in _CATEGORIES}
        self._request_listeners: list[Callable[[ConfirmationRequest], None]] = []
        self._rejection_listeners: list[Callable[[str | None], None]] = []

    # ------------------------------------------------------------------
    # Listeners

    def on_request(self, listener: Callable[[ConfirmationRequest], None]) -> Callable[[], None]:
        """Register a listener for new requests; returns an unsubscribe callable."""
        self._request_listeners.append(listener)
        return lambda: self._remove(self._request_listeners, listener)

    def on_rejected(self, listener: Callable[[str | None], None]) -> Callable[[], None]:
        """Register a listener called with the feedback of every rejection."""
        self._rejection_listeners.append(listener)
        return lambda: self._remove(self._rejection_listeners, listener)

    @staticmethod
    def _remove(listeners: list, listener: Callable) -> None:
        if listener in listeners:
            listeners.remove(listener)

    # ------------------------------------------------------------------
    # Session flags

    @property
    def session_flags(self) -> dict[str, bool]:
        return dict(self._flags)

    def set_session_flag(self, category: str, value: bool) -> None:
        if category not in self._flags:
            raise ValueError(f"Unknown confirmation category: {category}")
        self._flags[category] = bool(value)

    def reset_session_flags(self) -> None:
        for name in self._flags:
            self._flags[name] = False

    def needs_confirmation(self, category: str) -> bool:
        """False when the operator already said "don't ask again" for this category."""
        return not (self._flags.get(category, False) or self._flags["all_operations"])

    # ------------------------------------------------------------------
    # Request / resolve

    @property
    def is_pending(self) -> bool:
        return self._pending is not None and not self._pending.done()

    @property
    def pending_request(self) -> ConfirmationRequest | None:
        return self._pending_request if self.is_pending else None

    async def request(self, request: ConfirmationRequest) -> Decision:
        """Ask the operator and wait for a decision."""
        async with self._lock:
            if not self._request_listeners:
                log.warning("Confirmation requested with no operator attached; rejecting", operation=request.operation)
                return Decision(confirmed=False, feedback="No operator available to confirm this operation")

            future: asyncio.Future[Decision] = asyncio.get_running_loop().create_future()
            self._pending = future
            self._pending_request = request
            log.info("Confirmation requested", operation=request.operation, category=request.category)
            try:
                for listener in list(self._request_listeners):
                    listener(request)
                decision = await future
            finally:
                self._pending = None
                self._pending_request = None

        if decision.confirmed and decision.dont_ask_again:
            self.set_session_flag(request.category, True)
        log.info("Confirmation resolved", operation=request.operation, confirmed=decision.confirmed)
        return decision

    async def require(self, request: ConfirmationRequest) -> Decision:
        """Request confirmation and raise UserCancellationError on rejection."""
        decision = await self.request(request)
        if not decision.confirmed:
            raise UserCancellationError(request.operation, decision.feedback)
        return decision

    def confirm(self, dont_ask_again: bool = False) -> bool:
        """Approve the outstanding request. Returns False when nothing is pending."""
        return self._resolve(Decision(confirmed=True, dont_ask_again=dont_ask_again))

    def reject(self, feedback: str | None = None) -> bool:
        """Reject the outstanding request with optional feedback."""
        cleaned = (feedback or "").strip() or None
        resolved = self._resolve(Decision(confirmed=False, feedback=cleaned))
        if resolved:
            self._notify_rejected(cleaned)
        return resolved

    def cancel_pending(self) -> bool:
        """Reject whatever is outstanding, used when the turn is aborted."""
        return self.reject("Operation cancelled")

    def _resolve(self, decision: Decision) -> bool:
        if not self.is_pending:
            return False
        assert self._pending is not None
        self._pending.set_result(decision)
        return True

    def _notify_rejected(self, feedback: str | None) -> None:
        for listener in list(self._rejection_listeners):
            listener(feedback)

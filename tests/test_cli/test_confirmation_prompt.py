import asyncio
from pathlib import Path

import pytest

from shellpilot import main
from shellpilot.config import Config
from shellpilot.confirmation import ConfirmationRequest
from shellpilot.llm import LLMProvider
from shellpilot.session import ChatSession


class IdleProvider(LLMProvider):
    model = "idle"

    async def stream_chat(self, messages, tools=None):
        return
        yield

    async def close(self) -> None:
        return None


def _answers(monkeypatch: pytest.MonkeyPatch, *answers: str) -> None:
    pending = list(answers)
    monkeypatch.setattr(main.Prompt, "ask", lambda *args, **kwargs: pending.pop(0))


async def _pending(session: ChatSession, request: ConfirmationRequest) -> asyncio.Task:
    session.broker.on_request(lambda _request: None)
    task = asyncio.create_task(session.broker.request(request))
    await asyncio.sleep(0)
    assert session.broker.pending_request is request
    return task


@pytest.mark.asyncio
async def test_answer_for_cancelled_request_does_not_resolve_newer_one(tmp_path: Path, monkeypatch):
    session = ChatSession(Config(), provider=IdleProvider(), cwd=str(tmp_path))
    stale = ConfirmationRequest("Run bash command", target="rm old.txt", category="bash_commands")
    current = ConfirmationRequest("Run bash command", target="rm new.txt", category="bash_commands")
    request_task = await _pending(session, current)
    _answers(monkeypatch, "y")

    await main.ask_confirmation(session, stale)

    assert session.broker.is_pending is True
    session.broker.reject()
    decision = await request_task
    assert decision.confirmed is False


@pytest.mark.asyncio
async def test_always_answer_confirms_and_sets_session_flag(tmp_path: Path, monkeypatch):
    session = ChatSession(Config(), provider=IdleProvider(), cwd=str(tmp_path))
    request = ConfirmationRequest("Run bash command", target="ls", category="bash_commands")
    request_task = await _pending(session, request)
    _answers(monkeypatch, "a")

    await main.ask_confirmation(session, request)
    decision = await request_task

    assert decision.confirmed is True
    assert session.broker.needs_confirmation("bash_commands") is False


@pytest.mark.asyncio
async def test_no_answer_rejects_with_feedback(tmp_path: Path, monkeypatch):
    session = ChatSession(Config(), provider=IdleProvider(), cwd=str(tmp_path))
    request = ConfirmationRequest("Create file", target="a.txt", category="file_operations")
    request_task = await _pending(session, request)
    _answers(monkeypatch, "n", "use b.txt")

    await main.ask_confirmation(session, request)
    decision = await request_task

    assert decision.confirmed is False
    assert decision.feedback == "use b.txt"

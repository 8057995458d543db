import asyncio

import pytest

from shellpilot.confirmation import ConfirmationBroker, ConfirmationRequest
from shellpilot.exceptions import UserCancellationError


def _request(category: str = "bash_commands") -> ConfirmationRequest:
    return ConfirmationRequest(operation="Run bash command", target="ls", content="Command: ls", category=category)


@pytest.mark.asyncio
async def test_request_waits_for_confirm():
    broker = ConfirmationBroker()
    seen: list[ConfirmationRequest] = []
    broker.on_request(seen.append)

    task = asyncio.create_task(broker.request(_request()))
    await asyncio.sleep(0)

    assert broker.is_pending is True
    assert broker.pending_request == seen[0]
    assert broker.confirm() is True

    decision = await task
    assert decision.confirmed is True
    assert broker.is_pending is False
    assert broker.session_flags["bash_commands"] is False


@pytest.mark.asyncio
async def test_reject_passes_feedback_and_notifies_listeners():
    broker = ConfirmationBroker()
    broker.on_request(lambda request: None)
    rejections: list[str | None] = []
    broker.on_rejected(rejections.append)

    task = asyncio.create_task(broker.request(_request()))
    await asyncio.sleep(0)
    broker.reject("  use a dry run first  ")

    decision = await task
    assert decision.confirmed is False
    assert decision.feedback == "use a dry run first"
    assert rejections == ["use a dry run first"]


@pytest.mark.asyncio
async def test_dont_ask_again_sets_session_flag():
    broker = ConfirmationBroker()
    broker.on_request(lambda request: broker.confirm(dont_ask_again=True))

    await broker.request(_request("file_operations"))

    assert broker.session_flags["file_operations"] is True
    assert broker.needs_confirmation("file_operations") is False
    assert broker.needs_confirmation("bash_commands") is True


def test_all_operations_flag_covers_every_category():
    broker = ConfirmationBroker()
    broker.set_session_flag("all_operations", True)

    assert broker.needs_confirmation("bash_commands") is False
    assert broker.needs_confirmation("file_operations") is False

    broker.reset_session_flags()
    assert broker.needs_confirmation("bash_commands") is True


def test_unknown_session_flag_rejected():
    broker = ConfirmationBroker()

    with pytest.raises(ValueError):
        broker.set_session_flag("network", True)


@pytest.mark.asyncio
async def test_requests_are_single_flight():
    broker = ConfirmationBroker()
    seen: list[str] = []
    broker.on_request(lambda request: seen.append(request.target))

    first = asyncio.create_task(broker.request(ConfirmationRequest(operation="op", target="one")))
    second = asyncio.create_task(broker.request(ConfirmationRequest(operation="op", target="two")))
    await asyncio.sleep(0)

    assert seen == ["one"]
    broker.confirm()
    assert (await first).confirmed is True

    await asyncio.sleep(0)
    assert seen == ["one", "two"]
    broker.reject()
    assert (await second).confirmed is False


@pytest.mark.asyncio
async def test_require_raises_on_rejection():
    broker = ConfirmationBroker()
    broker.on_request(lambda request: broker.reject("not now"))

    with pytest.raises(UserCancellationError) as exc_info:
        await broker.require(_request())

    assert exc_info.value.feedback == "not now"
    assert "cancelled by user: not now" in str(exc_info.value)


@pytest.mark.asyncio
async def test_request_without_listener_is_rejected():
    broker = ConfirmationBroker()
    rejections: list[str | None] = []
    broker.on_rejected(rejections.append)

    decision = await broker.request(_request())

    assert decision.confirmed is False
    assert decision.feedback
    assert rejections == []


@pytest.mark.asyncio
async def test_cancel_pending_rejects_outstanding_request():
    broker = ConfirmationBroker()
    broker.on_request(lambda request: None)

    task = asyncio.create_task(broker.request(_request()))
    await asyncio.sleep(0)

    assert broker.cancel_pending() is True
    decision = await task
    assert decision.feedback == "Operation cancelled"
    assert broker.cancel_pending() is False


def test_confirm_without_pending_request_is_noop():
    broker = ConfirmationBroker()

    assert broker.confirm() is False
    assert broker.reject("x") is False


@pytest.mark.asyncio
async def test_unsubscribe_removes_listener():
    broker = ConfirmationBroker()
    calls: list[ConfirmationRequest] = []
    unsubscribe = broker.on_request(calls.append)
    unsubscribe()

    decision = await broker.request(_request())

    assert calls == []
    assert decision.confirmed is False


def test_describe_joins_operation_target_and_content():
    request = ConfirmationRequest(operation="Write", target="a.txt", content="+hello")

    assert request.describe() == "Write: a.txt\n+hello"

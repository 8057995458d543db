import json

import httpx
import pytest

from shellpilot.exceptions import LLMAPIError
from shellpilot.llm import (
    LLMChunk,
    Message,
    OllamaProvider,
    OpenAICompatibleProvider,
    create_provider,
)
from shellpilot.models import ToolCall


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


async def _collect(provider, messages=None, tools=None) -> list[LLMChunk]:
    return [chunk async for chunk in provider.stream_chat(messages or [Message(role="user", content="hi")], tools)]


def test_create_provider_supports_ollama():
    provider = create_provider(provider="ollama", model="llama3.2", base_url="http://localhost:11434")

    assert isinstance(provider, OllamaProvider)
    assert provider.model == "llama3.2"
    assert provider.base_url == "http://localhost:11434"


def test_create_provider_defaults_to_openai_compatible():
    provider = create_provider(model="grok-code-fast-1", api_key="k", base_url="https://api.example.com/v1/")

    assert isinstance(provider, OpenAICompatibleProvider)
    assert provider.base_url == "https://api.example.com/v1"


def test_create_provider_rejects_unknown_name():
    with pytest.raises(ValueError):
        create_provider(provider="carrier-pigeon")


@pytest.mark.asyncio
async def test_openai_stream_yields_text_and_assembled_tool_calls():
    captured: dict = {}
    events = [
        {"choices": [{"delta": {"content": "Let me "}}]},
        {"choices": [{"delta": {"content": "look"}}]},
        {"choices": [{"delta": {"tool_calls": [{"index": 0, "id": "call_a", "function": {"name": "bash", "arguments": '{"comm'}}]}}]},
        {"choices": [{"delta": {"tool_calls": [{"index": 0, "function": {"arguments": 'and": "ls"}'}}]}}]},
        {"choices": [{"delta": {}, "finish_reason": "tool_calls"}]},
        {"choices": [], "usage": {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15}},
    ]
    body = "".join(f"data: {json.dumps(event)}\n\n" for event in events) + "data: [DONE]\n\n"

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["auth"] = request.headers.get("Authorization")
        captured["payload"] = json.loads(request.content)
        return httpx.Response(200, content=body.encode(), headers={"Content-Type": "text/event-stream"})

    provider = OpenAICompatibleProvider(
        model="m", base_url="https://api.example.com/v1", api_key="secret", client=_client(handler)
    )
    chunks = await _collect(provider, tools=[{"type": "function", "function": {"name": "bash"}}])

    assert "".join(chunk.content for chunk in chunks) == "Let me look"
    calls = [call for chunk in chunks for call in chunk.tool_calls]
    assert calls == [ToolCall(id="call_a", name="bash", raw_arguments='{"command": "ls"}')]
    assert chunks[-1].usage["total_tokens"] == 15
    assert captured["url"] == "https://api.example.com/v1/chat/completions"
    assert captured["auth"] == "Bearer secret"
    assert captured["payload"]["stream"] is True
    assert captured["payload"]["tools"][0]["function"]["name"] == "bash"


@pytest.mark.asyncio
async def test_openai_sends_tool_history_in_wire_format():
    captured: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["payload"] = json.loads(request.content)
        return httpx.Response(200, content=b"data: [DONE]\n\n")

    provider = OpenAICompatibleProvider(model="m", client=_client(handler))
    call = ToolCall(id="c1", name="bash", raw_arguments='{"command": "ls"}')
    messages = [
        Message(role="user", content="list"),
        Message(role="assistant", content="", tool_calls=[call]),
        Message(role="tool", content="a.txt", tool_call_id="c1", tool_name="bash"),
    ]

    await _collect(provider, messages)

    wire = captured["payload"]["messages"]
    assert wire[1]["tool_calls"][0] == {
        "id": "c1",
        "type": "function",
        "function": {"name": "bash", "arguments": '{"command": "ls"}'},
    }
    assert wire[2] == {"role": "tool", "content": "a.txt", "tool_call_id": "c1"}


@pytest.mark.asyncio
async def test_openai_error_status_raises_api_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, content=b'{"error": "bad key"}')

    provider = OpenAICompatibleProvider(model="m", client=_client(handler))

    with pytest.raises(LLMAPIError) as exc_info:
        await _collect(provider)

    assert exc_info.value.status_code == 401
    assert "bad key" in str(exc_info.value)


@pytest.mark.asyncio
async def test_ollama_stream_parses_ndjson():
    lines = [
        {"message": {"content": "Hel"}, "done": False},
        {"message": {"content": "lo"}, "done": False},
        {
            "message": {
                "content": "",
                "tool_calls": [{"function": {"name": "view_file", "arguments": {"path": "a.txt"}}}],
            },
            "done": False,
        },
        {"message": {"content": ""}, "done": True, "prompt_eval_count": 7, "eval_count": 3},
    ]
    body = "\n".join(json.dumps(line) for line in lines) + "\n"

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/chat"
        return httpx.Response(200, content=body.encode())

    provider = OllamaProvider(model="llama3.2", base_url="http://ollama.local", client=_client(handler))
    chunks = await _collect(provider)

    assert "".join(chunk.content for chunk in chunks) == "Hello"
    calls = [call for chunk in chunks for call in chunk.tool_calls]
    assert len(calls) == 1
    assert calls[0].name == "view_file"
    assert json.loads(calls[0].raw_arguments) == {"path": "a.txt"}
    assert chunks[-1].usage == {"prompt_tokens": 7, "completion_tokens": 3, "total_tokens": 10}


@pytest.mark.asyncio
async def test_ollama_transport_error_raises_api_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    provider = OllamaProvider(client=_client(handler))

    with pytest.raises(LLMAPIError):
        await _collect(provider)


def test_count_tokens_estimate():
    provider = OllamaProvider()

    assert provider.count_tokens("x" * 40) == 10

"""Streaming model providers over plain HTTP."""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

import httpx

from shellpilot.exceptions import LLMAPIError, LLMError
from shellpilot.logging import get_logger
from shellpilot.models import ToolCall

log = get_logger(__name__)


OLLAMA_NATIVE_BASE_URL = "http://127.0.0.1:11434"
OPENAI_DEFAULT_BASE_URL = "https://api.x.ai/v1"


@dataclass
class Message:
    """A message in the conversation."""

    role: str  # "system", "user", "assistant", "tool"
    content: str
    tool_call_id: str | None = None
    tool_name: str | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)


@dataclass
class LLMChunk:
    """One piece of a streamed completion."""

    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    usage: dict[str, int] = field(default_factory=dict)


class LLMProvider(ABC):
    """Abstract base class for streaming LLM providers."""

    model: str = ""

    @abstractmethod
    def stream_chat(
        self,
        messages: list[Message],
        tools: list[dict[str, Any]] | None = None,
    ) -> AsyncIterator[LLMChunk]:
        pass

    def count_tokens(self, text: str) -> int:
        """Rough estimate: ~1 token per 4 characters for English."""
        return len(text) // 4

    async def close(self) -> None:
        pass


def _decode_arguments(raw: str) -> dict[str, Any]:
    try:
        parsed = json.loads(raw) if raw.strip() else {}
    except json.JSONDecodeError:
        return {}
    return parsed if isinstance(parsed, dict) else {}


class OllamaProvider(LLMProvider):
    """Direct Ollama API provider (native /api/chat, NDJSON stream)."""

    def __init__(
        self,
        model: str = "llama3.2",
        base_url: str = OLLAMA_NATIVE_BASE_URL,
        temperature: float = 0.7,
        max_tokens: int = 4096,
        api_key: str | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize Ollama provider.

        Args:
            model: Ollama model name (e.g., 'llama3.2', 'qwen3:32b')
            base_url: Ollama API base URL
            temperature: Sampling temperature
            max_tokens: Max tokens to generate
            api_key: Optional API key (Ollama usually doesn't need one locally)
            client: Optional preconfigured HTTP client
        """
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.api_key = api_key
        self.client = client or httpx.AsyncClient(timeout=120.0, follow_redirects=True)

    def _convert_messages(self, messages: list[Message]) -> list[dict[str, Any]]:
        result = []
        for msg in messages:
            entry: dict[str, Any] = {"role": msg.role, "content": msg.content or ""}
            if msg.role == "assistant" and msg.tool_calls:
                entry["tool_calls"] = [
                    {"function": {"name": call.name, "arguments": _decode_arguments(call.raw_arguments)}}
                    for call in msg.tool_calls
                ]
            elif msg.role == "tool" and msg.tool_name:
                entry["tool_name"] = msg.tool_name
            result.append(entry)
        return result

    async def stream_chat(
        self,
        messages: list[Message],
        tools: list[dict[str, Any]] | None = None,
    ) -> AsyncIterator[LLMChunk]:
        """Stream a completion."""
        url = f"{self.base_url}/api/chat"
        options: dict[str, Any] = {"temperature": self.temperature}
        if self.max_tokens:
            options["num_predict"] = self.max_tokens

        body: dict[str, Any] = {
            "model": self.model,
            "messages": self._convert_messages(messages),
            "stream": True,
            "options": options,
        }
        if tools:
            body["tools"] = tools

        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        call_seq = 0
        try:
            async with self.client.stream("POST", url, json=body, headers=headers) as response:
                if not response.is_success:
                    error_text = (await response.aread()).decode("utf-8", errors="replace")
                    raise LLMAPIError(
                        f"Ollama API error {response.status_code}: {error_text}",
                        status_code=response.status_code,
                    )

                async for line in response.aiter_lines():
                    if not line.strip():
                        continue
                    try:
                        chunk = json.loads(line)
                    except json.JSONDecodeError:
                        log.debug("Skipping malformed Ollama line", line=line[:200])
                        continue

                    message = chunk.get("message") or {}
                    calls = []
                    for tc in message.get("tool_calls") or []:
                        call_seq += 1
                        function = tc.get("function") or {}
                        arguments = function.get("arguments", {})
                        calls.append(
                            ToolCall(
                                id=str(tc.get("id") or f"ollama_call_{call_seq}"),
                                name=str(function.get("name", "")),
                                raw_arguments=arguments if isinstance(arguments, str) else json.dumps(arguments),
                            )
                        )
                    usage = {}
                    if chunk.get("done"):
                        prompt = int(chunk.get("prompt_eval_count", 0) or 0)
                        completion = int(chunk.get("eval_count", 0) or 0)
                        usage = {
                            "prompt_tokens": prompt,
                            "completion_tokens": completion,
                            "total_tokens": prompt + completion,
                        }
                    if message.get("content") or calls or usage:
                        yield LLMChunk(content=message.get("content") or "", tool_calls=calls, usage=usage)
                    if chunk.get("done"):
                        break
        except LLMError:
            raise
        except httpx.HTTPError as e:
            raise LLMAPIError(f"Ollama streaming error: {e}") from e

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()


class OpenAICompatibleProvider(LLMProvider):
    """OpenAI-compatible /chat/completions provider (SSE stream)."""

    def __init__(
        self,
        model: str,
        base_url: str = OPENAI_DEFAULT_BASE_URL,
        api_key: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 8192,
        client: httpx.AsyncClient | None = None,
    ):
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.client = client or httpx.AsyncClient(timeout=360.0, follow_redirects=True)

    @staticmethod
    def _convert_messages(messages: list[Message]) -> list[dict[str, Any]]:
        result = []
        for msg in messages:
            entry: dict[str, Any] = {"role": msg.role, "content": msg.content or ""}
            if msg.role == "assistant" and msg.tool_calls:
                entry["tool_calls"] = [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {"name": call.name, "arguments": call.raw_arguments or "{}"},
                    }
                    for call in msg.tool_calls
                ]
            elif msg.role == "tool":
                entry["tool_call_id"] = msg.tool_call_id or ""
            result.append(entry)
        return result

    async def stream_chat(
        self,
        messages: list[Message],
        tools: list[dict[str, Any]] | None = None,
    ) -> AsyncIterator[LLMChunk]:
        url = f"{self.base_url}/chat/completions"
        body: dict[str, Any] = {
            "model": self.model,
            "messages": self._convert_messages(messages),
            "stream": True,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "stream_options": {"include_usage": True},
        }
        if tools:
            body["tools"] = tools
            body["tool_choice"] = "auto"

        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        # index -> {"id", "name", "arguments"}
        partial_calls: dict[int, dict[str, str]] = {}
        try:
            async with self.client.stream("POST", url, json=body, headers=headers) as response:
                if not response.is_success:
                    error_text = (await response.aread()).decode("utf-8", errors="replace")
                    raise LLMAPIError(
                        f"API error {response.status_code}: {error_text}",
                        status_code=response.status_code,
                    )

                async for line in response.aiter_lines():
                    line = line.strip()
                    if not line.startswith("data:"):
                        continue
                    data = line[len("data:"):].strip()
                    if data == "[DONE]":
                        break
                    try:
                        chunk = json.loads(data)
                    except json.JSONDecodeError:
                        log.debug("Skipping malformed SSE payload", payload=data[:200])
                        continue

                    if chunk.get("usage"):
                        yield LLMChunk(usage={k: int(v) for k, v in chunk["usage"].items() if isinstance(v, int)})

                    for choice in chunk.get("choices") or []:
                        delta = choice.get("delta") or {}
                        for tc in delta.get("tool_calls") or []:
                            slot = partial_calls.setdefault(
                                int(tc.get("index", 0)), {"id": "", "name": "", "arguments": ""}
                            )
                            if tc.get("id"):
                                slot["id"] = tc["id"]
                            function = tc.get("function") or {}
                            if function.get("name"):
                                slot["name"] += function["name"]
                            if function.get("arguments"):
                                slot["arguments"] += function["arguments"]
                        if delta.get("content"):
                            yield LLMChunk(content=delta["content"])
                        if choice.get("finish_reason") and partial_calls:
                            yield LLMChunk(tool_calls=self._complete_calls(partial_calls))
                            partial_calls = {}
        except LLMError:
            raise
        except httpx.HTTPError as e:
            raise LLMAPIError(f"Streaming error: {e}") from e

        if partial_calls:
            yield LLMChunk(tool_calls=self._complete_calls(partial_calls))

    @staticmethod
    def _complete_calls(partial_calls: dict[int, dict[str, str]]) -> list[ToolCall]:
        calls = []
        for index in sorted(partial_calls):
            slot = partial_calls[index]
            calls.append(
                ToolCall(
                    id=slot["id"] or f"call_{index}",
                    name=slot["name"],
                    raw_arguments=slot["arguments"],
                )
            )
        return calls

    async def close(self) -> None:
        await self.client.aclose()


def create_provider(
    provider: str = "openai",
    model: str = "grok-code-fast-1",
    api_key: str | None = None,
    base_url: str | None = None,
    temperature: float = 0.7,
    max_tokens: int = 8192,
) -> LLMProvider:
    """Create an LLM provider.

    Args:
        provider: Provider name (openai, ollama)
        model: Model name
        api_key: Optional API key
        base_url: Optional base URL
        temperature: Default temperature
        max_tokens: Default max tokens

    Returns:
        Configured LLMProvider instance
    """
    if provider == "ollama":
        return OllamaProvider(
            model=model,
            base_url=base_url or OLLAMA_NATIVE_BASE_URL,
            temperature=temperature,
            max_tokens=max_tokens,
            api_key=api_key,
        )
    if provider in ("openai", "openai-compatible", "xai", "grok"):
        return OpenAICompatibleProvider(
            model=model,
            base_url=base_url or OPENAI_DEFAULT_BASE_URL,
            api_key=api_key,
            temperature=temperature,
            max_tokens=max_tokens,
        )
    raise ValueError(f"Provider '{provider}' not supported. Use 'openai' or 'ollama'.")

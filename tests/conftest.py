"""Shared fixtures for the chatbridge test suite."""

import json

import httpx
import pytest

from chatbridge.config.settings import get_settings
from chatbridge.providers.base import ProviderConfig
from chatbridge.providers.openai import OpenAIProvider


@pytest.fixture
def override_settings(monkeypatch):
    """Factory fixture: set env vars and clear settings cache.

    Usage:
        override_settings(OPENAI_API_KEY="sk-test", DEFAULT_PROVIDER="deepseek")
    """
    def _override(**kwargs):
        for key, value in kwargs.items():
            monkeypatch.setenv(key.upper(), str(value))
        # Clear lru_cache so Settings re-reads env
        get_settings.cache_clear()

    yield _override

    # Always clear cache on teardown so other tests get fresh settings
    get_settings.cache_clear()


@pytest.fixture
def provider_config() -> ProviderConfig:
    return ProviderConfig(
        api_key="sk-test",
        base_url="https://api.openai.com/v1",
        default_model="gpt-4o",
        default_temperature=0.7,
        default_max_tokens=2000,
    )


@pytest.fixture
def make_provider(provider_config):
    """Factory fixture: an OpenAIProvider whose upstream is a handler function.

    Usage:
        provider = make_provider(lambda request: httpx.Response(200, json={...}))
    """
    def _make(handler, provider_cls=OpenAIProvider, config=None):
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return provider_cls(config or provider_config, client=client)

    return _make


def completion_body(content: str = "Hi there!", model: str = "gpt-4o-2024-08-06", usage=(5, 3, 8)) -> dict:
    """Standard non-streaming chat completion response body."""
    body = {
        "id": "chatcmpl-test",
        "object": "chat.completion",
        "model": model,
        "choices": [{
            "index": 0,
            "message": {"role": "assistant", "content": content},
            "finish_reason": "stop",
        }],
    }
    if usage is not None:
        body["usage"] = {
            "prompt_tokens": usage[0],
            "completion_tokens": usage[1],
            "total_tokens": usage[2],
        }
    return body


def sse_frames(deltas: list[str], include_role: bool = True) -> bytes:
    """Frame text deltas as an upstream SSE body, ending with [DONE]."""
    events = []
    if include_role:
        events.append({"choices": [{"index": 0, "delta": {"role": "assistant"}, "finish_reason": None}]})
    for delta in deltas:
        events.append({
            "id": "chatcmpl-test",
            "object": "chat.completion.chunk",
            "choices": [{"index": 0, "delta": {"content": delta}, "finish_reason": None}],
        })
    events.append({"choices": [{"index": 0, "delta": {}, "finish_reason": "stop"}]})
    body = "".join(f"data: {json.dumps(e)}\n\n" for e in events)
    return (body + "data: [DONE]\n\n").encode()


class ChunkedStream(httpx.AsyncByteStream):
    """Response body delivered in fixed pieces; records whether it was closed.

    An exception instance in ``pieces`` is raised when reached, simulating a
    connection dropping mid-stream.
    """

    def __init__(self, pieces):
        self.pieces = list(pieces)
        self.closed = False
        self.reads = 0

    async def __aiter__(self):
        for piece in self.pieces:
            if isinstance(piece, Exception):
                raise piece
            self.reads += 1
            yield piece

    async def aclose(self) -> None:
        self.closed = True
